"""
Transaction derived from a solved request.

The libsolv transaction is ordered once (trans.order()) and that order is
kept: packages are fetched concurrently, then linked and unlinked one step
at a time in engine order. A replaced package is only unlinked once its
replacement has been fetched, so nothing a remaining package depends on
disappears in between.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Set, Tuple

import solv

from .pool import Pool
from .solver import Solver
from .specs import PackageInfo

logger = logging.getLogger(__name__)


class TransactionType(Enum):
    """Type of package transaction."""
    INSTALL = "install"
    REMOVE = "remove"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    REINSTALL = "reinstall"


REPLACING = frozenset({TransactionType.UPGRADE, TransactionType.DOWNGRADE, TransactionType.REINSTALL})

STEP_TYPES = {
    solv.Transaction.SOLVER_TRANSACTION_INSTALL: TransactionType.INSTALL,
    solv.Transaction.SOLVER_TRANSACTION_ERASE: TransactionType.REMOVE,
    solv.Transaction.SOLVER_TRANSACTION_UPGRADE: TransactionType.UPGRADE,
    solv.Transaction.SOLVER_TRANSACTION_DOWNGRADE: TransactionType.DOWNGRADE,
    solv.Transaction.SOLVER_TRANSACTION_REINSTALL: TransactionType.REINSTALL,
    # Same version, different content
    solv.Transaction.SOLVER_TRANSACTION_CHANGE: TransactionType.REINSTALL,
}


@dataclass
class PackageAction:
    """A single package action in a transaction.

    For replacing actions `package` is the new package and `replaces` the
    installed one it takes over from.

    Replacing A-1.0 by A-2.0 is a single UPGRADE (DOWNGRADE for the
    opposite direction) action: A-1.0 is unlinked right before A-2.0 is
    linked, which is a reinstall of A in the sense of unlink-then-link.
    REINSTALL is kept for an unchanged version and build that only needs
    relinking. `is_replacement` is true for all three.
    """
    action: TransactionType
    package: PackageInfo
    solvable_id: int
    replaces: Optional[PackageInfo] = None
    replaces_id: Optional[int] = None

    @property
    def name(self) -> str:
        return self.package.name

    @property
    def from_version(self) -> str:
        return self.replaces.version if self.replaces else ""

    @property
    def is_replacement(self) -> bool:
        return self.action in REPLACING

    def __str__(self) -> str:
        if self.replaces is not None:
            return f"{self.action.value} {self.replaces} -> {self.package}"
        return f"{self.action.value} {self.package}"


class PackageCache(Protocol):
    """Fetches packages to install; returns the local artifact path."""

    def fetch(self, package: PackageInfo) -> Path:
        ...


class Installer(Protocol):
    """Links and unlinks packages in a target environment."""

    def link(self, package: PackageInfo, path: Path, prefix: Path):
        ...

    def unlink(self, package: PackageInfo, prefix: Path):
        ...


@dataclass
class ExecutionConfig:
    """Knobs for Transaction.execute()."""
    target_prefix: Path = Path(".")
    download_threads: int = 4
    stop_on_error: bool = False


@dataclass
class ActionResult:
    """Outcome of one action."""
    action: PackageAction
    success: bool
    error: Optional[str] = None
    path: Optional[Path] = None


@dataclass
class ExecutionReport:
    results: List[ActionResult] = field(default_factory=list)
    aborted: bool = False

    @property
    def success(self) -> bool:
        return not self.aborted and all(r.success for r in self.results)

    @property
    def failed(self) -> List[ActionResult]:
        return [r for r in self.results if not r.success]


class Transaction:
    """Ordered install/remove plan of a solved request."""

    def __init__(self, pool: Pool, solver: Solver):
        """Build the transaction.

        Raises:
            UsageError: If the solver has not solved successfully
        """
        self.pool = pool
        trans = solver.solv_solver.transaction()
        trans.order()

        self.actions: List[PackageAction] = []
        self.to_install: Set[int] = set()
        self.to_remove: Set[int] = set()
        self.to_reinstall: Set[int] = set()

        for s in trans.steps():
            step_type = trans.steptype(s, solv.Transaction.SOLVER_TRANSACTION_SHOW_ACTIVE)
            action = STEP_TYPES.get(step_type)
            if action is None or pool.is_pin(s.id):
                continue

            replaced = None
            if action in REPLACING:
                other = trans.othersolvable(s)
                replaced = other.id if other is not None and other.id else None

            self._add_action(action, s.id, replaced)

        logger.debug("Transaction: %d to install, %d to remove, %d to reinstall",
                     len(self.to_install), len(self.to_remove), len(self.to_reinstall))

    def _add_action(self, action: TransactionType, solvable_id: int, replaced: Optional[int]):
        package = self.pool.id2pkginfo(solvable_id)
        old = self.pool.id2pkginfo(replaced) if replaced is not None else None

        if action is not TransactionType.REINSTALL and old is not None and \
                (old.version, old.build_string) == (package.version, package.build_string):
            # Same name, version and build: the package only needs relinking
            action = TransactionType.REINSTALL

        if action is TransactionType.REINSTALL:
            self.to_reinstall.add(solvable_id)
        elif action is TransactionType.REMOVE:
            self.to_remove.add(solvable_id)
        else:
            self.to_install.add(solvable_id)
            if replaced is not None:
                self.to_remove.add(replaced)

        self.actions.append(PackageAction(action, package, solvable_id, old, replaced))

    def empty(self) -> bool:
        return not self.actions

    def to_conda(self) -> Tuple[List[Tuple[str, str]], List[Tuple[str, str]]]:
        """(channel, filename) pairs to link and to unlink."""
        installs, removes = [], []
        for action in self.actions:
            if action.action is TransactionType.REMOVE:
                removes.append((action.package.channel, action.package.filename))
                continue
            if action.replaces is not None:
                removes.append((action.replaces.channel, action.replaces.filename))
            installs.append((action.package.channel, action.package.filename))
        return installs, removes

    def to_text(self) -> str:
        if not self.actions:
            return "Nothing to do."
        width = max(len(a.action.value) for a in self.actions)
        lines = [f"  {a.action.value.ljust(width)}  {a.package}"
                 + (f" (from {a.replaces.evr})" if a.replaces is not None else "")
                 for a in self.actions]
        return "\n".join(["Transaction:"] + lines)

    def print(self):
        print(self.to_text())

    # =========================================================================
    # Execution
    # =========================================================================

    def _fetch_all(self, cache: PackageCache, config: ExecutionConfig,
                   progress_callback: Optional[Callable[[str, int, int], None]] = None
                   ) -> Dict[int, ActionResult]:
        """Fetch every package to link, in parallel."""
        to_fetch = [a for a in self.actions if a.action is not TransactionType.REMOVE]
        fetched: Dict[int, ActionResult] = {}
        if not to_fetch:
            return fetched

        with ThreadPoolExecutor(max_workers=max(1, config.download_threads)) as executor:
            futures = {executor.submit(cache.fetch, a.package): a for a in to_fetch}
            for done, future in enumerate(as_completed(futures), 1):
                action = futures[future]
                try:
                    fetched[action.solvable_id] = ActionResult(action, True, path=future.result())
                except Exception as e:
                    logger.debug("Fetching %s failed: %s", action.package, e)
                    fetched[action.solvable_id] = ActionResult(action, False, error=str(e))
                if progress_callback:
                    progress_callback(action.name, done, len(to_fetch))
        return fetched

    def execute(self, cache: PackageCache, installer: Installer,
                config: Optional[ExecutionConfig] = None,
                progress_callback: Optional[Callable[[str, int, int], None]] = None) -> ExecutionReport:
        """Fetch, then link/unlink in transaction order.

        Args:
            cache: Package cache collaborator
            installer: Installer collaborator
            config: Execution settings
            progress_callback: Optional callback(name, done, total) during fetching

        Returns:
            ExecutionReport with one ActionResult per action
        """
        config = config or ExecutionConfig()
        report = ExecutionReport()
        fetched = self._fetch_all(cache, config, progress_callback)
        prefix = Path(config.target_prefix)

        for action in self.actions:
            if action.action is TransactionType.REMOVE:
                result = self._apply(action, lambda: installer.unlink(action.package, prefix))
            else:
                staged = fetched[action.solvable_id]
                if not staged.success:
                    # Keep the installed version when its replacement is missing
                    result = staged
                else:
                    def apply(action=action, staged=staged):
                        if action.replaces is not None:
                            installer.unlink(action.replaces, prefix)
                        installer.link(action.package, staged.path, prefix)
                    result = self._apply(action, apply, staged.path)

            report.results.append(result)
            if not result.success:
                logger.warning("%s failed: %s", action, result.error)
                if config.stop_on_error:
                    report.aborted = True
                    break
        return report

    @staticmethod
    def _apply(action: PackageAction, func: Callable[[], None],
               path: Optional[Path] = None) -> ActionResult:
        try:
            func()
        except Exception as e:
            return ActionResult(action, False, error=str(e), path=path)
        return ActionResult(action, True, path=path)
