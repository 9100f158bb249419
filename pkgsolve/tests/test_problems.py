"""Tests for converting libsolv rule infos into problems"""

import solv

from pkgsolve.core.problems import ProblemConverter, RequestProblem, RuleKind
from pkgsolve.core.request import Action, Job
from pkgsolve.core.specs import MatchSpec


class FakeSolvable:

    def __init__(self, sid):
        self.id = sid


class FakeRuleinfo:
    """Job rule info as the binding hands it out."""

    def __init__(self, what, offset=None, rule_type=RuleKind.JOB):
        self.type = int(rule_type)
        self.dep_id = what
        # Job rules report their job queue offset as source solvable
        self.solvable = FakeSolvable(offset) if offset else None
        self.othersolvable = None

    def __str__(self):
        return f"job rule on {self.dep_id}"


class FakePool:

    def dependency_spec(self, dep_id):
        return MatchSpec(f"dep{dep_id}")

    def is_pin(self, sid):
        return False


PIN_SPEC = MatchSpec.parse("B==1.0")
INSTALL_SPEC = MatchSpec.parse("C")


def colliding_jobs(what=7):
    """A pin on solvable `what` next to an install whose dependency id is also `what`."""
    return [
        Job(Action.PIN, solv.Job.SOLVER_INSTALL | solv.Job.SOLVER_SOLVABLE, what, PIN_SPEC,
            candidates=(what,)),
        Job(Action.INSTALL, solv.Job.SOLVER_INSTALL | solv.Job.SOLVER_SOLVABLE_PROVIDES, what,
            INSTALL_SPEC),
    ]


class TestJobRules:
    """Job rules are matched to the job they were made from."""

    def test_job_by_queue_offset(self):
        converter = ProblemConverter(FakePool(), colliding_jobs())
        first = converter.convert(FakeRuleinfo(7))
        second = converter.convert(FakeRuleinfo(7, offset=2))
        assert isinstance(first, RequestProblem)
        assert first.job.action is Action.PIN
        assert first.spec == PIN_SPEC
        assert first.is_pin
        assert second.job.action is Action.INSTALL
        assert second.spec == INSTALL_SPEC
        assert not second.is_pin

    def test_order_of_jobs_does_not_matter(self):
        converter = ProblemConverter(FakePool(), list(reversed(colliding_jobs())))
        assert converter.convert(FakeRuleinfo(7)).spec == INSTALL_SPEC
        assert converter.convert(FakeRuleinfo(7, offset=2)).spec == PIN_SPEC

    def test_unique_what_without_offset(self):
        jobs = colliding_jobs() + [
            Job(Action.REMOVE, solv.Job.SOLVER_ERASE | solv.Job.SOLVER_SOLVABLE_PROVIDES, 11,
                MatchSpec("D")),
        ]
        converter = ProblemConverter(FakePool(), jobs)
        problem = converter.convert(FakeRuleinfo(11, rule_type=RuleKind.JOB_NOTHING_PROVIDES_DEP))
        assert problem.job is jobs[2]
        assert problem.spec == MatchSpec("D")

    def test_ambiguous_job_is_not_guessed(self):
        # Offset past the last solvable: the binding reports no source at all,
        # which reads as offset 0, but job 0 does not match here
        jobs = [Job(Action.INSTALL, 0, 3, MatchSpec("E"))] + colliding_jobs()
        converter = ProblemConverter(FakePool(), jobs)
        problem = converter.convert(FakeRuleinfo(7))
        assert problem.job is None
        assert problem.spec is None

    def test_hidden_job_is_kept(self):
        hidden = Job(Action.PIN, solv.Job.SOLVER_INSTALL | solv.Job.SOLVER_SOLVABLE
                     | solv.Job.SOLVER_WEAK, 5, PIN_SPEC, candidates=(5,), hidden=True)
        problem = ProblemConverter(FakePool(), [hidden]).convert(FakeRuleinfo(5))
        assert problem.job is hidden
        assert not problem.is_pin

    def test_without_jobs(self):
        problem = ProblemConverter(FakePool()).convert(FakeRuleinfo(7))
        assert problem.job is None
        assert problem.spec == MatchSpec("dep7")
