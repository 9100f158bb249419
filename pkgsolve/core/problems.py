"""
Rule level problems reported by libsolv.

libsolv describes a failed solve as a list of rule infos: a rule type plus
source, target and dependency ids whose meaning depends on the type. They are
converted here, once, into one dataclass per rule family so the rest of the
code never has to guess what an id stands for:

    RequestProblem     a job rule (the user asked for something)
    RequiresProblem    a package requires a dependency
    ConflictProblem    two packages cannot be installed together
    ConstrainsProblem  a package constraint (or pin) rejects a package
    OtherProblem       anything else (update, infarch, learnt rules, ...)
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional, Sequence, Union

from .errors import ParseError
from .pool import Pool
from .request import Action, Job
from .specs import MatchSpec

logger = logging.getLogger(__name__)


class RuleKind(IntEnum):
    """libsolv rule info types (SOLVER_RULE_* in solver.h)."""
    UNKNOWN = 0x000
    PKG = 0x100
    PKG_NOT_INSTALLABLE = 0x101
    PKG_NOTHING_PROVIDES_DEP = 0x102
    PKG_REQUIRES = 0x103
    PKG_SELF_CONFLICT = 0x104
    PKG_CONFLICTS = 0x105
    PKG_SAME_NAME = 0x106
    PKG_OBSOLETES = 0x107
    PKG_IMPLICIT_OBSOLETES = 0x108
    PKG_INSTALLED_OBSOLETES = 0x109
    PKG_RECOMMENDS = 0x10a
    PKG_CONSTRAINS = 0x10b
    PKG_SUPPLEMENTS = 0x10c
    UPDATE = 0x200
    FEATURE = 0x300
    JOB = 0x400
    JOB_NOTHING_PROVIDES_DEP = 0x401
    JOB_PROVIDED_BY_SYSTEM = 0x402
    JOB_UNKNOWN_PACKAGE = 0x403
    JOB_UNSUPPORTED = 0x404
    DISTUPGRADE = 0x500
    INFARCH = 0x600
    CHOICE = 0x700
    LEARNT = 0x800
    BEST = 0x900
    YUMOBS = 0xa00
    RECOMMENDS = 0xb00
    BLACK = 0xc00
    STRICT_REPO_PRIORITY = 0xd00

    @classmethod
    def from_engine(cls, value: int) -> Optional["RuleKind"]:
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def is_job(self) -> bool:
        return self & 0xff00 == RuleKind.JOB

    @property
    def is_package(self) -> bool:
        return self & 0xff00 == RuleKind.PKG


CONFLICT_KINDS = frozenset({
    RuleKind.PKG_CONFLICTS,
    RuleKind.PKG_SAME_NAME,
    RuleKind.PKG_OBSOLETES,
    RuleKind.PKG_IMPLICIT_OBSOLETES,
    RuleKind.PKG_INSTALLED_OBSOLETES,
    RuleKind.PKG_CONSTRAINS,
})

REQUIRES_KINDS = frozenset({
    RuleKind.PKG_REQUIRES,
    RuleKind.PKG_NOTHING_PROVIDES_DEP,
    RuleKind.PKG_RECOMMENDS,
})


@dataclass(frozen=True)
class RequestProblem:
    """A job rule. `job` is None when the job could not be identified."""
    kind: RuleKind
    description: str
    dep_id: int
    spec: Optional[MatchSpec]
    job: Optional[Job] = None

    @property
    def is_pin(self) -> bool:
        return self.job is not None and self.job.action is Action.PIN and not self.job.hidden


@dataclass(frozen=True)
class RequiresProblem:
    kind: RuleKind
    description: str
    source_id: int
    dep_id: int
    spec: MatchSpec


@dataclass(frozen=True)
class ConflictProblem:
    kind: RuleKind
    description: str
    source_id: int
    target_id: int
    spec: Optional[MatchSpec] = None


@dataclass(frozen=True)
class ConstrainsProblem:
    """source_id's constraint `spec` rejects target_id.

    When source_is_pin is set the source is a virtual pin package and the
    constraint comes straight from the request.
    """
    kind: RuleKind
    description: str
    source_id: int
    target_id: int
    spec: MatchSpec
    source_is_pin: bool = False


@dataclass(frozen=True)
class OtherProblem:
    kind: RuleKind
    description: str
    source_id: Optional[int] = None
    target_id: Optional[int] = None
    raw_type: int = 0


Problem = Union[RequestProblem, RequiresProblem, ConflictProblem, ConstrainsProblem, OtherProblem]


def _solvable_id(xsolvable) -> Optional[int]:
    return xsolvable.id if xsolvable is not None else None


class ProblemConverter:
    """Converts libsolv rule infos into Problem values."""

    def __init__(self, pool: Pool, jobs: Sequence[Job] = ()):
        self.pool = pool
        self.jobs: List[Job] = list(jobs)

    def _job(self, info, what: int) -> Optional[Job]:
        """Job a job rule was made from.

        The rule source is the job's offset in the submitted job queue, two
        ids per job. The binding only hands it out as a solvable, which it
        cannot do for offset 0 or offsets past the last solvable; `what`
        then picks the job, unless several jobs share it.
        """
        source = info.solvable
        index = (source.id if source is not None else 0) // 2
        if index < len(self.jobs) and self.jobs[index].what == what:
            return self.jobs[index]
        matches = [job for job in self.jobs if job.what == what]
        if len(matches) == 1:
            return matches[0]
        logger.debug("Cannot tell which of %d jobs a rule on %d comes from", len(matches), what)
        return None

    def convert(self, info) -> Problem:
        """Convert one libsolv Ruleinfo."""
        description = str(info)
        kind = RuleKind.from_engine(info.type)
        source_id = _solvable_id(info.solvable)
        target_id = _solvable_id(info.othersolvable)
        dep_id = info.dep_id

        if kind is None:
            logger.debug("Unknown rule type 0x%x: %s", info.type, description)
            return OtherProblem(RuleKind.UNKNOWN, description, raw_type=info.type)

        if kind.is_job:
            job = self._job(info, dep_id)
            if job is not None:
                spec = job.spec
            elif self.jobs:
                # `what` may be a solvable or list id; it names no dependency
                spec = None
            else:
                spec = self._spec(dep_id)
            return RequestProblem(kind, description, dep_id, spec, job)

        if kind in REQUIRES_KINDS and source_id is not None and dep_id:
            return RequiresProblem(kind, description, source_id, dep_id, self._spec(dep_id))

        if kind in CONFLICT_KINDS and source_id is not None and target_id is not None:
            constraint = self.pool.constraint_spec(source_id, dep_id) if dep_id else None
            if constraint is None and dep_id and target_id is not None:
                # libsolv may report the conflict from the other side
                constraint = self.pool.constraint_spec(target_id, dep_id)
                if constraint is not None:
                    source_id, target_id = target_id, source_id
            if constraint is not None:
                return ConstrainsProblem(
                    RuleKind.PKG_CONSTRAINS, description, source_id, target_id,
                    constraint, source_is_pin=self.pool.is_pin(source_id),
                )
            return ConflictProblem(kind, description, source_id, target_id,
                                   self._spec(dep_id) if dep_id else None)

        return OtherProblem(kind, description, source_id, target_id, raw_type=info.type)

    def _spec(self, dep_id: int) -> Optional[MatchSpec]:
        if not dep_id:
            return None
        try:
            return self.pool.dependency_spec(dep_id)
        except ParseError:
            # Dependencies libsolv synthesized itself (rich deps, file deps)
            text = self.pool.solv_pool.dep2str(dep_id)
            logger.debug("Cannot express dependency %r as a match spec", text)
            return MatchSpec(name=text)


def convert_problems(pool: Pool, solv_problems, jobs: Sequence[Job] = ()) -> List[Problem]:
    """Flatten libsolv problems into Problem values, in engine order.

    Args:
        pool: Pool the solver ran on
        solv_problems: Return value of solv.Solver.solve()
        jobs: Jobs submitted to the solver

    Returns:
        List of Problem; identical rule infos are only kept once
    """
    converter = ProblemConverter(pool, jobs)
    problems: List[Problem] = []
    seen = set()
    for problem in solv_problems:
        for rule in problem.findallproblemrules():
            for info in rule.allinfos():
                key = (info.type, _solvable_id(info.solvable),
                       _solvable_id(info.othersolvable), info.dep_id)
                if key in seen:
                    continue
                seen.add(key)
                problems.append(converter.convert(info))
    return problems
