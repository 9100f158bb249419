"""Core modules for pkgsolve"""

from .compressed import CompressedProblemsGraph, NamedList
from .errors import (
    IntegrityError,
    InvalidHandle,
    NotFound,
    ParseError,
    PkgsolveError,
    UnsatisfiableError,
    UsageError,
)
from .pool import Pool, Priorities, RepoInfo
from .problems_graph import ProblemsGraph, simplify_conflicts
from .request import Action, Request, SolverFlags
from .solver import Solver
from .specs import MatchSpec, PackageInfo
from .transaction import ExecutionConfig, Transaction

__all__ = [
    'Action', 'CompressedProblemsGraph', 'ExecutionConfig', 'IntegrityError',
    'InvalidHandle', 'MatchSpec', 'NamedList', 'NotFound', 'PackageInfo',
    'ParseError', 'PkgsolveError', 'Pool', 'Priorities', 'ProblemsGraph',
    'RepoInfo', 'Request', 'SolverFlags', 'Solver', 'Transaction',
    'UnsatisfiableError', 'UsageError', 'simplify_conflicts',
]
