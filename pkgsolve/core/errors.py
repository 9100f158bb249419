"""Exceptions raised by the resolution engine."""


class PkgsolveError(Exception):
    """Base class for all pkgsolve errors."""


class NotFound(PkgsolveError):
    """A repository or package source is missing."""


class ParseError(PkgsolveError):
    """Repository metadata, cache blob or match spec is malformed."""


class IntegrityError(PkgsolveError):
    """A cached repository does not match the expected fingerprint."""

    def __init__(self, message: str, expected: str = "", actual: str = ""):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class InvalidHandle(PkgsolveError):
    """A RepoInfo or solvable id was used after its repository was removed."""


class UsageError(PkgsolveError):
    """The Solver or Pool was driven in an order it does not support."""


class UnsatisfiableError(PkgsolveError):
    """Raised by Solver.must_solve() when no consistent set exists.

    The explanation is kept on the exception so callers that catch it can
    still print the conflict tree.
    """

    def __init__(self, message: str, explanation: str = ""):
        super().__init__(message)
        self.explanation = explanation
