"""
Solver driving libsolv for one Request.

A Solver is single use:

    solver = Solver(pool, request)
    if solver.try_solve():
        transaction = Transaction(pool, solver)
    else:
        print(solver.explain_problems())

State machine: UNSOLVED -> SOLVED | UNSATISFIABLE. Flags can only be changed
while UNSOLVED; solving twice is a UsageError.
"""

import logging
from enum import Enum
from typing import List, Mapping, Optional

import solv

from .compressed import CompressedProblemsGraph
from .errors import UnsatisfiableError, UsageError
from .explain import problem_tree_msg
from .pool import Pool
from .problems import Problem, RuleKind, convert_problems
from .problems_graph import ProblemsGraph, Relation, simplify_conflicts
from .request import Job, Request, SolverFlags, translate_request

logger = logging.getLogger(__name__)


class SolverState(Enum):
    UNSOLVED = "unsolved"
    SOLVED = "solved"
    UNSATISFIABLE = "unsatisfiable"


class Solver:
    """Resolve one Request against a Pool."""

    def __init__(self, pool: Pool, request: Request, flags: Optional[SolverFlags] = None,
                 classification: Optional[Mapping[RuleKind, Relation]] = None):
        """Initialize solver.

        Args:
            pool: Package pool (must outlive the solver)
            request: Request to solve
            flags: Overrides request.flags
            classification: Rule kind to relation table used for problems_graph()
        """
        self.pool = pool
        self.request = request
        self._flags = flags or request.flags
        self.classification = classification
        self.state = SolverState.UNSOLVED
        self.jobs: List[Job] = []
        self._solver: Optional[solv.Solver] = None
        self._solv_problems = []
        self._problems: Optional[List[Problem]] = None
        self._graph: Optional[ProblemsGraph] = None

    @property
    def flags(self) -> SolverFlags:
        return self._flags

    def set_flags(self, flags: SolverFlags):
        """Replace the global flags.

        Raises:
            UsageError: If the solver already ran
        """
        if self.state is not SolverState.UNSOLVED:
            raise UsageError("Solver flags must be set before solving")
        self._flags = flags

    def is_solved(self) -> bool:
        return self.state is SolverState.SOLVED

    # =========================================================================
    # Solving
    # =========================================================================

    def _configure(self, solver: solv.Solver):
        flags = self._flags
        # Prefer packages compatible with already installed packages
        solver.set_flag(solv.Solver.SOLVER_FLAG_FOCUS_INSTALLED, 1)
        if flags.allow_downgrade:
            solver.set_flag(solv.Solver.SOLVER_FLAG_ALLOW_DOWNGRADE, 1)
        if flags.allow_uninstall:
            solver.set_flag(solv.Solver.SOLVER_FLAG_ALLOW_UNINSTALL, 1)
        if flags.ignore_recommended:
            solver.set_flag(solv.Solver.SOLVER_FLAG_IGNORE_RECOMMENDED, 1)

    def try_solve(self) -> bool:
        """Run libsolv once.

        Returns:
            True if the request is satisfiable

        Raises:
            UsageError: If this solver already ran or the pool is empty
        """
        if self.state is not SolverState.UNSOLVED:
            raise UsageError("A Solver can only solve once; create a new one")
        self.pool.check_usable()

        # Translation may add pin solvables, so do it before freezing the index
        self.request = Request(self.request.items, flags=self._flags)
        self.jobs = translate_request(self.pool, self.request)
        solv_pool = self.pool.solv_pool

        solver = solv_pool.Solver()
        self._configure(solver)
        self._solver = solver

        logger.debug("Solving %d jobs (%d hidden)", len(self.jobs),
                     sum(1 for j in self.jobs if j.hidden))
        problems = solver.solve([job.to_solv(self.pool) for job in self.jobs])

        if problems:
            self._solv_problems = list(problems)
            self.state = SolverState.UNSATISFIABLE
            logger.debug("Request is unsatisfiable: %d problem(s)", len(self._solv_problems))
            return False

        self.state = SolverState.SOLVED
        logger.debug("Request solved")
        return True

    def must_solve(self):
        """Solve, raising if the request is unsatisfiable.

        Raises:
            UnsatisfiableError: Carrying the conflict tree as explanation
        """
        if not self.try_solve():
            explanation = self.explain_problems()
            raise UnsatisfiableError(f"Could not solve request\n{explanation}",
                                     explanation=explanation)

    @property
    def solv_solver(self) -> solv.Solver:
        """Underlying libsolv solver of a solved request."""
        if self.state is not SolverState.SOLVED:
            raise UsageError(f"No solution available (solver is {self.state.value})")
        return self._solver

    # =========================================================================
    # Problems
    # =========================================================================

    def _require_unsatisfiable(self):
        if self.state is not SolverState.UNSATISFIABLE:
            raise UsageError(f"No problems available (solver is {self.state.value})")

    def problems_to_str(self) -> str:
        """One line per libsolv problem."""
        self._require_unsatisfiable()
        lines = ["Encountered problems while solving:"]
        lines += [f"  - {problem}" for problem in self._solv_problems]
        return "\n".join(lines) + "\n"

    def all_problems_to_str(self) -> str:
        """One line per rule implicated in any problem."""
        self._require_unsatisfiable()
        lines = []
        for problem in self._solv_problems:
            for rule in problem.findallproblemrules():
                lines += [f"  - {info}" for info in rule.allinfos()]
        return "\n".join(lines) + "\n"

    def all_problems_structured(self) -> List[Problem]:
        """Rule level problems converted into Problem values."""
        self._require_unsatisfiable()
        if self._problems is None:
            self._problems = convert_problems(self.pool, self._solv_problems, self.jobs)
        return list(self._problems)

    def problems_graph(self) -> ProblemsGraph:
        if self._graph is None:
            self._graph = ProblemsGraph.from_problems(
                self.all_problems_structured(), self.pool, self.classification)
        return self._graph

    def compressed_problems_graph(self) -> CompressedProblemsGraph:
        """Compressed graph of problems_graph(), without uninformative conflicts."""
        return CompressedProblemsGraph.from_problems_graph(simplify_conflicts(self.problems_graph()))

    def explain_problems(self, color: bool = False) -> str:
        """Conflict tree message, the default user facing explanation."""
        return problem_tree_msg(self.compressed_problems_graph(), color=color)
