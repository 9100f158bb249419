"""
Translation of user requests into libsolv jobs.

A Request is an ordered list of (action, spec) items plus global flags.
translate_request() turns it into primitive Job values, in item order,
against the Pool's what-provides index:

    install python>=3.9   -> SOLVER_INSTALL | SOLVER_SOLVABLE_PROVIDES
    remove  libfoo        -> SOLVER_ERASE   | SOLVER_SOLVABLE_PROVIDES [| CLEANDEPS]
    pin     numpy==1.26   -> SOLVER_INSTALL | SOLVER_SOLVABLE (virtual pin package)

A spec nothing provides still becomes a job (tagged unknown_target) so that
libsolv reports it and the conflict explanation can name it.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import solv

from .pool import Pool
from .specs import MatchSpec

logger = logging.getLogger(__name__)


class Action(Enum):
    """User level request actions."""
    INSTALL = "install"
    REMOVE = "remove"
    UPDATE = "update"
    PIN = "pin"
    LOCK = "lock"
    FAVOR = "favor"
    DISFAVOR = "disfavor"


# Job verbs for actions that map one to one onto libsolv
ACTION_VERBS = {
    Action.INSTALL: solv.Job.SOLVER_INSTALL,
    Action.REMOVE: solv.Job.SOLVER_ERASE,
    Action.UPDATE: solv.Job.SOLVER_UPDATE,
    Action.LOCK: solv.Job.SOLVER_LOCK,
    Action.FAVOR: solv.Job.SOLVER_FAVOR,
    Action.DISFAVOR: solv.Job.SOLVER_DISFAVOR,
}


@dataclass(frozen=True)
class SolverFlags:
    """Global solver flags."""
    keep_dependencies: bool = True
    keep_user_specs: bool = True
    force_reinstall: bool = False
    allow_downgrade: bool = False
    allow_uninstall: bool = False
    strict_repo_priority: bool = True
    ignore_recommended: bool = True


@dataclass(frozen=True)
class RequestItem:
    """One (action, spec) pair of a Request."""
    action: Action
    spec: MatchSpec

    def __str__(self) -> str:
        return f"{self.action.value} {self.spec}"


class Request:
    """Immutable ordered sequence of request items plus flags."""

    def __init__(self, items: Iterable[Union[RequestItem, Tuple[Action, Union[str, MatchSpec]]]] = (),
                 flags: Optional[SolverFlags] = None):
        """Build a request.

        Args:
            items: RequestItem values or (Action, spec) pairs; specs may be strings
            flags: Global flags (defaults to SolverFlags())

        Raises:
            ParseError: If a spec string is malformed
        """
        parsed = []
        for item in items:
            if not isinstance(item, RequestItem):
                action, spec = item
                item = RequestItem(Action(action), MatchSpec.parse(spec))
            parsed.append(item)
        self._items: Tuple[RequestItem, ...] = tuple(parsed)
        self._flags = flags or SolverFlags()

    @classmethod
    def install(cls, *specs: str, flags: Optional[SolverFlags] = None) -> "Request":
        return cls([(Action.INSTALL, s) for s in specs], flags=flags)

    @classmethod
    def remove(cls, *specs: str, flags: Optional[SolverFlags] = None) -> "Request":
        return cls([(Action.REMOVE, s) for s in specs], flags=flags)

    @property
    def items(self) -> Tuple[RequestItem, ...]:
        return self._items

    @property
    def flags(self) -> SolverFlags:
        return self._flags

    def __iter__(self):
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"Request({[str(i) for i in self._items]!r})"


@dataclass
class Job:
    """A primitive libsolv job derived from a request item.

    `how` is the libsolv verb/selector/modifier bitmask, `what` the selector
    argument (dependency id, solvable id or what-provides list id).
    """
    action: Action
    how: int
    what: int
    spec: MatchSpec
    candidates: Tuple[int, ...] = field(default_factory=tuple)
    unknown_target: bool = False
    hidden: bool = False

    @property
    def selector(self) -> int:
        return self.how & solv.Job.SOLVER_SELECTMASK

    def to_solv(self, pool: Pool) -> solv.Job:
        return pool.solv_pool.Job(self.how, self.what)

    def __str__(self) -> str:
        text = f"{self.action.value} {self.spec}"
        if self.unknown_target:
            text += " (unknown target)"
        if self.hidden:
            text += " (hidden)"
        return text


def _restrict_to_best_repo(pool: Pool, candidates: Sequence[int]) -> List[int]:
    """Keep candidates of the highest priority repository holding one.

    Installed packages are kept regardless, so they stay an option.
    """
    best = None
    for sid in candidates:
        if pool.is_installed(sid):
            continue
        prio = tuple(pool.solvable_repo(sid).priority)
        if best is None or prio > best:
            best = prio
    if best is None:
        return list(candidates)
    return [sid for sid in candidates
            if pool.is_installed(sid) or tuple(pool.solvable_repo(sid).priority) == best]


def _installed_matches(pool: Pool, candidates: Sequence[int]) -> List[int]:
    return [sid for sid in candidates if pool.is_installed(sid)]


class JobTranslator:
    """Translates one Request against one Pool."""

    def __init__(self, pool: Pool, request: Request):
        self.pool = pool
        self.request = request
        self.flags = request.flags
        self.jobs: List[Job] = []
        self._pins: Dict[int, int] = {}

    def translate(self) -> List[Job]:
        # Pins add solvables, which rebuilds the what-provides index and
        # drops every list id handed out before; create them all first.
        for index, item in enumerate(self.request):
            if item.action is Action.PIN:
                self._pins[index] = self.pool.add_pin(item.spec)
        self.pool.create_whatprovides()

        for index, item in enumerate(self.request):
            self._index = index
            handler = getattr(self, f"_translate_{item.action.value}")
            handler(item)
        for job in self.jobs:
            logger.debug("Job: %s (how=0x%x what=%d)", job, job.how, job.what)
        return self.jobs

    # =========================================================================
    # Helpers
    # =========================================================================

    def _provides_job(self, action: Action, verb: int, spec: MatchSpec,
                      candidates: Sequence[int]) -> Job:
        dep_id = self.pool.matchspec2id(spec)
        return Job(
            action=action,
            how=verb | solv.Job.SOLVER_SOLVABLE_PROVIDES,
            what=dep_id,
            spec=spec,
            candidates=tuple(candidates),
            unknown_target=not candidates,
        )

    def _one_of_job(self, action: Action, verb: int, spec: MatchSpec,
                    candidates: Sequence[int]) -> Job:
        what = self.pool.solv_pool.towhatprovides(list(candidates))
        return Job(
            action=action,
            how=verb | solv.Job.SOLVER_SOLVABLE_ONE_OF,
            what=what,
            spec=spec,
            candidates=tuple(candidates),
        )

    def _keep_installed(self, action: Action, spec: MatchSpec, candidates: Sequence[int]):
        """Hidden weak jobs keeping installed matches in place."""
        if self.flags.force_reinstall:
            return
        for sid in _installed_matches(self.pool, candidates):
            self.jobs.append(Job(
                action=action,
                how=solv.Job.SOLVER_INSTALL | solv.Job.SOLVER_SOLVABLE | solv.Job.SOLVER_WEAK,
                what=sid,
                spec=spec,
                candidates=(sid,),
                hidden=True,
            ))

    def _mark_user_installed(self, action: Action, spec: MatchSpec, candidates: Sequence[int]):
        if not self.flags.keep_user_specs:
            return
        if _installed_matches(self.pool, candidates):
            self.jobs.append(Job(
                action=action,
                how=solv.Job.SOLVER_USERINSTALLED | solv.Job.SOLVER_SOLVABLE_PROVIDES,
                what=self.pool.matchspec2id(spec),
                spec=spec,
                candidates=tuple(candidates),
                hidden=True,
            ))

    # =========================================================================
    # Per action translation
    # =========================================================================

    def _translate_install(self, item: RequestItem):
        spec = item.spec
        candidates = self.pool.select(spec, sorted=True)
        verb = ACTION_VERBS[item.action]

        if not candidates:
            self.jobs.append(self._provides_job(item.action, verb, spec, candidates))
            return

        restricted = list(candidates)
        if self.flags.strict_repo_priority:
            restricted = _restrict_to_best_repo(self.pool, restricted)

        if self.flags.force_reinstall:
            installed = _installed_matches(self.pool, restricted)
            if installed:
                keys = {(self.pool.id2pkginfo(sid).name, self.pool.id2pkginfo(sid).evr)
                        for sid in installed}
                others = [sid for sid in restricted if not self.pool.is_installed(sid)
                          and (self.pool.id2pkginfo(sid).name, self.pool.id2pkginfo(sid).evr) in keys]
                if others:
                    restricted = others

        all_providers = self.pool.select_solvables(self.pool.matchspec2id(spec))
        if sorted(restricted) == sorted(all_providers):
            job = self._provides_job(item.action, verb, spec, restricted)
        else:
            # Build pattern, repository priority or reinstall narrowed the set
            job = self._one_of_job(item.action, verb, spec, restricted)
        self.jobs.append(job)
        self._mark_user_installed(item.action, spec, candidates)

    def _translate_update(self, item: RequestItem):
        candidates = self.pool.select(item.spec, sorted=True)
        self.jobs.append(self._provides_job(
            item.action, ACTION_VERBS[item.action], item.spec, candidates))
        self._mark_user_installed(item.action, item.spec, candidates)

    def _translate_remove(self, item: RequestItem):
        verb = ACTION_VERBS[item.action]
        if not self.flags.keep_dependencies:
            verb |= solv.Job.SOLVER_CLEANDEPS
        candidates = self.pool.select(item.spec, sorted=True)
        self.jobs.append(self._provides_job(item.action, verb, item.spec, candidates))

    def _translate_lock(self, item: RequestItem):
        candidates = self.pool.select(item.spec, sorted=True)
        self.jobs.append(self._provides_job(
            item.action, ACTION_VERBS[item.action], item.spec, candidates))
        self._keep_installed(item.action, item.spec, candidates)

    def _translate_favor(self, item: RequestItem):
        candidates = self.pool.select(item.spec, sorted=True)
        self.jobs.append(self._provides_job(
            item.action, ACTION_VERBS[item.action], item.spec, candidates))

    _translate_disfavor = _translate_favor

    def _translate_pin(self, item: RequestItem):
        spec = item.spec
        candidates = self.pool.select(spec, sorted=True)
        pin_id = self._pins[self._index]
        self.jobs.append(Job(
            action=item.action,
            how=solv.Job.SOLVER_INSTALL | solv.Job.SOLVER_SOLVABLE,
            what=pin_id,
            spec=spec,
            candidates=(pin_id,),
            unknown_target=not candidates,
        ))
        self._keep_installed(item.action, spec, candidates)


def translate_request(pool: Pool, request: Request) -> List[Job]:
    """Translate a request into libsolv jobs, in request order.

    Args:
        pool: Pool the request is resolved against
        request: User request

    Returns:
        List of Job
    """
    return JobTranslator(pool, request).translate()
