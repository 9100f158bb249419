"""
Package pool backed by libsolv.

The Pool owns the libsolv pool, every repository in it and the tables that
map libsolv's integer ids back to package facts and match specs. Callers
only ever hold RepoInfo handles and integer solvable ids; both are checked
against the Pool and fail with InvalidHandle once their repository is gone.
"""

import dataclasses
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple, Union

import solv

from .cache import fingerprint_packages, read_cache_file, write_cache_file
from .errors import InvalidHandle, UsageError
from .repodata import RepodataParser, load_repodata
from .specs import MatchSpec, PackageInfo, version_key

logger = logging.getLogger(__name__)

# Map spec operators to libsolv relation flags
OP_FLAGS = {
    '==': solv.REL_EQ,
    '>=': solv.REL_GT | solv.REL_EQ,
    '<=': solv.REL_LT | solv.REL_EQ,
    '>': solv.REL_GT,
    '<': solv.REL_LT,
    '!=': solv.REL_LT | solv.REL_GT,
}

# A constraint "name op version" holds when no package matching one of these
# complementary relations is installed.
CONSTRAINT_COMPLEMENTS = {
    '==': ('<', '>'),
    '!=': ('==',),
    '>=': ('<',),
    '>': ('<=',),
    '<=': ('>',),
    '<': ('>=',),
}

PINS_REPO_NAME = "@pins"
GLOB_CHARS = set('*?[')

# "3.10.0a0" is a pre-release of 3.10.0; rpm ordering needs "3.10.0~a0" for that
PRERELEASE_TAG = re.compile(r'(?<=\d)(?=(?:a|b|rc|dev|alpha|beta)\d)')


def solv_version(version: str) -> str:
    """Version string as compared by libsolv."""
    return PRERELEASE_TAG.sub('~', version)


def solv_evr(pkg: PackageInfo) -> str:
    if pkg.build_string:
        return f"{solv_version(pkg.version)}-{pkg.build_string}"
    return solv_version(pkg.version)


class Priorities(NamedTuple):
    """Repository priority; higher values are preferred."""
    priority: int = 0
    subpriority: int = 0


@dataclass
class _RepoEntry:
    repo: solv.Repo
    name: str
    generation: int
    fingerprint: str = ""
    url: str = ""
    hidden: bool = False
    packages: List[PackageInfo] = field(default_factory=list)
    solvable_ids: List[int] = field(default_factory=list)
    provides_cache: Dict[int, List[int]] = field(default_factory=dict)


class RepoInfo:
    """Lightweight, non-owning handle to a repository living in a Pool."""

    def __init__(self, pool: "Pool", repo_id: int, generation: int):
        self._pool = pool
        self._id = repo_id
        self._generation = generation

    @property
    def id(self) -> int:
        return self._id

    @property
    def name(self) -> str:
        return self._pool._entry(self).name

    @property
    def package_count(self) -> int:
        return len(self._pool._entry(self).solvable_ids)

    @property
    def priority(self) -> Priorities:
        repo = self._pool._entry(self).repo
        return Priorities(repo.priority, repo.subpriority)

    @property
    def fingerprint(self) -> str:
        return self._pool._entry(self).fingerprint

    def is_valid(self) -> bool:
        return self._pool._has_entry(self)

    def __eq__(self, other) -> bool:
        if not isinstance(other, RepoInfo):
            return NotImplemented
        return (self._pool is other._pool and self._id == other._id
                and self._generation == other._generation)

    def __hash__(self) -> int:
        return hash((id(self._pool), self._id, self._generation))

    def __repr__(self) -> str:
        return f"RepoInfo(id={self._id}, generation={self._generation})"


class Pool:
    """Package universe handed to the solver."""

    def __init__(self, arch: str = "x86_64"):
        """Initialize an empty pool.

        Args:
            arch: Architecture given to libsolv (packages are added as noarch)
        """
        self._pool = solv.Pool()
        self._pool.setdisttype(solv.Pool.DISTTYPE_RPM)
        self._pool.setarch(arch)

        self._repos: Dict[int, _RepoEntry] = {}
        self._next_repo_id = 1
        self._generation = 0
        self._installed_id: Optional[int] = None

        # solvable id -> (repo id, package)
        self._solvables: Dict[int, Tuple[int, PackageInfo]] = {}
        # dep id -> spec it was interned from
        self._specs: Dict[int, MatchSpec] = {}
        # (solvable id, conflict dep id) -> constraint spec it encodes
        self._constraints: Dict[Tuple[int, int], MatchSpec] = {}

        self._whatprovides_stale = True
        self._pins_repo: Optional[RepoInfo] = None
        self._pins_by_spec: Dict[str, int] = {}
        self._pin_count = 0

    # =========================================================================
    # Handles
    # =========================================================================

    def _has_entry(self, repo: RepoInfo) -> bool:
        entry = self._repos.get(repo.id)
        return repo._pool is self and entry is not None and entry.generation == repo._generation

    def _entry(self, repo: RepoInfo) -> _RepoEntry:
        if not isinstance(repo, RepoInfo) or not self._has_entry(repo):
            raise InvalidHandle(f"Stale or foreign repository handle: {repo!r}")
        return self._repos[repo.id]

    def _handle(self, repo_id: int) -> RepoInfo:
        return RepoInfo(self, repo_id, self._repos[repo_id].generation)

    @property
    def solv_pool(self) -> solv.Pool:
        """Underlying libsolv pool, with an up to date what-provides index."""
        self.create_whatprovides()
        return self._pool

    # =========================================================================
    # Repository creation and removal
    # =========================================================================

    def add_repo_from_packages(self, packages: Iterable[PackageInfo], name: str = "",
                               add_pip_as_python_dependency: bool = False) -> RepoInfo:
        """Create a repository from an explicit list of packages.

        Args:
            packages: Package facts to add
            name: Repository name
            add_pip_as_python_dependency: Make python packages depend on pip

        Returns:
            Handle to the new repository
        """
        packages = list(packages)
        return self._create_repo(
            name or f"repo-{self._next_repo_id}",
            packages,
            fingerprint=fingerprint_packages(packages),
            add_pip=add_pip_as_python_dependency,
        )

    def add_repo_from_repodata_json(self, path: Union[str, Path], url: str,
                                    name: Optional[str] = None,
                                    add_pip_as_python_dependency: bool = False,
                                    parser: RepodataParser = RepodataParser.JSON) -> RepoInfo:
        """Create a repository from a repodata.json file.

        Raises:
            NotFound: If the file does not exist
            ParseError: If the metadata is malformed
        """
        metadata = load_repodata(path, url=url, parser=parser)
        return self._create_repo(
            name or url,
            metadata.packages,
            fingerprint=metadata.fingerprint,
            url=url,
            add_pip=add_pip_as_python_dependency,
        )

    def add_repo_from_native_serialization(self, path: Union[str, Path], expected: str,
                                           name: Optional[str] = None,
                                           add_pip_as_python_dependency: bool = False) -> RepoInfo:
        """Create a repository from a cache blob written by native_serialize_repo().

        Args:
            path: Cache file
            expected: Fingerprint of the metadata the cache must have been built from
            name: Repository name (defaults to the file stem)

        Raises:
            NotFound: If the cache file does not exist
            ParseError: If the cache is corrupt
            IntegrityError: If the cache fingerprint differs from expected
        """
        fingerprint, packages = read_cache_file(path, expected=expected)
        return self._create_repo(
            name or Path(path).stem,
            packages,
            fingerprint=fingerprint,
            add_pip=add_pip_as_python_dependency,
        )

    def native_serialize_repo(self, repo: RepoInfo, path: Union[str, Path],
                              fingerprint: Optional[str] = None) -> Path:
        """Write a repository to a cache file keyed by its fingerprint.

        Args:
            repo: Repository to serialize
            path: Destination file
            fingerprint: Override of the fingerprint recorded at load time
        """
        entry = self._entry(repo)
        return write_cache_file(path, fingerprint or entry.fingerprint, entry.packages)

    def remove_repo(self, repo: RepoInfo):
        """Remove a repository, invalidating its handle and solvable ids."""
        entry = self._entry(repo)
        for sid in entry.solvable_ids:
            del self._solvables[sid]
        self._constraints = {
            key: spec for key, spec in self._constraints.items() if key[0] in self._solvables
        }
        if self._installed_id == repo.id:
            self._installed_id = None
        if self._pins_repo is not None and self._pins_repo.id == repo.id:
            self._pins_repo = None
        del self._repos[repo.id]
        entry.repo.free(False)
        self._whatprovides_stale = True
        logger.debug("Removed repository %s (%d solvables)", entry.name, len(entry.solvable_ids))

    def _create_repo(self, name: str, packages: List[PackageInfo], fingerprint: str = "",
                     url: str = "", add_pip: bool = False, hidden: bool = False) -> RepoInfo:
        repo_id = self._next_repo_id
        self._next_repo_id += 1
        self._generation += 1

        entry = _RepoEntry(
            repo=self._pool.add_repo(name),
            name=name,
            generation=self._generation,
            fingerprint=fingerprint,
            url=url,
            hidden=hidden,
        )
        entry.repo.appdata = {"repo_id": repo_id}
        self._repos[repo_id] = entry

        if add_pip and any(pkg.name == 'pip' for pkg in packages):
            packages = [
                dataclasses.replace(pkg, depends=pkg.depends + ('pip',))
                if pkg.name == 'python' and 'pip' not in pkg.depends else pkg
                for pkg in packages
            ]

        for pkg in packages:
            self._add_solvable(repo_id, entry, pkg)
        entry.repo.internalize()
        self._whatprovides_stale = True

        logger.debug("Added repository %s with %d packages", name, len(packages))
        return self._handle(repo_id)

    def _add_solvable(self, repo_id: int, entry: _RepoEntry, pkg: PackageInfo) -> int:
        pool = self._pool
        s = entry.repo.add_solvable()
        s.name = pkg.name
        s.evr = solv_evr(pkg)
        s.arch = "noarch"

        # Self-provide so the package satisfies "name op version"
        self_provide = pool.rel2id(pool.str2id(pkg.name), pool.str2id(s.evr), solv.REL_EQ)
        s.add_deparray(solv.SOLVABLE_PROVIDES, self_provide)

        for dep in pkg.depends:
            s.add_deparray(solv.SOLVABLE_REQUIRES, self.matchspec2id(dep))

        for constraint in pkg.constrains:
            spec = MatchSpec.parse(constraint)
            for conflict_id in self._constraint_conflicts(spec):
                s.add_deparray(solv.SOLVABLE_CONFLICTS, conflict_id)
                self._constraints[(s.id, conflict_id)] = spec

        entry.packages.append(pkg)
        entry.solvable_ids.append(s.id)
        self._solvables[s.id] = (repo_id, pkg)
        return s.id

    # =========================================================================
    # Pins
    # =========================================================================

    def add_pin(self, spec: Union[str, MatchSpec]) -> int:
        """Add a virtual package that constrains spec.name to spec.

        Installing the returned solvable forbids every version of the pinned
        package that does not match the spec.

        Returns:
            Solvable id of the pin package
        """
        spec = MatchSpec.parse(spec)
        if self._pins_repo is None or not self._pins_repo.is_valid():
            self._pins_repo = self._create_repo(PINS_REPO_NAME, [], hidden=True)
            self._pins_by_spec.clear()
        entry = self._entry(self._pins_repo)

        # Pins are immutable, so one solvable serves every request pinning the same spec
        existing = self._pins_by_spec.get(str(spec))
        if existing is not None:
            return existing

        self._pin_count += 1
        pin = PackageInfo(
            name=f"pin-{self._pin_count}",
            version="1",
            constrains=(str(spec),),
        )
        sid = self._add_solvable(self._pins_repo.id, entry, pin)
        entry.repo.internalize()
        entry.provides_cache.clear()
        self._whatprovides_stale = True
        self._pins_by_spec[str(spec)] = sid
        return sid

    def clear_pins(self):
        """Drop every pin solvable.

        Solvers that used pins of this pool must not be queried afterwards.
        """
        if self._pins_repo is not None and self._pins_repo.is_valid():
            self.remove_repo(self._pins_repo)
        self._pins_repo = None
        self._pins_by_spec.clear()

    # =========================================================================
    # Installed repository and priorities
    # =========================================================================

    def set_installed_repo(self, repo: RepoInfo):
        """Mark a repository as the installed environment.

        A previously installed repository is silently demoted.
        """
        entry = self._entry(repo)
        if self._installed_id is not None and self._installed_id != repo.id:
            previous = self._repos.get(self._installed_id)
            if previous is not None:
                previous.provides_cache.clear()
        self._pool.installed = entry.repo
        self._installed_id = repo.id
        entry.provides_cache.clear()

    def installed_repo(self) -> Optional[RepoInfo]:
        if self._installed_id is None:
            return None
        return self._handle(self._installed_id)

    def set_repo_priority(self, repo: RepoInfo, priorities: Priorities):
        """Set priority and subpriority of a repository."""
        entry = self._entry(repo)
        priorities = Priorities(*priorities)
        entry.repo.priority = priorities.priority
        entry.repo.subpriority = priorities.subpriority
        entry.provides_cache.clear()
        self._whatprovides_stale = True

    def repos(self) -> List[RepoInfo]:
        """All visible repositories, in creation order."""
        return [self._handle(rid) for rid, entry in self._repos.items() if not entry.hidden]

    def _entries_by_priority(self) -> List[Tuple[int, _RepoEntry]]:
        return sorted(
            self._repos.items(),
            key=lambda item: (-item[1].repo.priority, -item[1].repo.subpriority, item[0]),
        )

    # =========================================================================
    # Id interning and queries
    # =========================================================================

    def set_debuglevel(self, level: int):
        self._pool.set_debuglevel(level)

    def create_whatprovides(self):
        """Rebuild libsolv's what-provides index if any repository changed."""
        if self._whatprovides_stale:
            self._pool.createwhatprovides()
            self._whatprovides_stale = False

    def matchspec2id(self, spec: Union[str, MatchSpec]) -> int:
        """Intern a match spec as a libsolv dependency id.

        Build strings only take part in the relation when the spec pins an
        exact version and build; build patterns are applied by select().
        Ranges and alternatives become libsolv AND/OR relations.
        """
        spec = MatchSpec.parse(spec)
        name_id = self._pool.str2id(spec.name)
        alternatives = spec.alternatives
        if any(not alternative for alternative in alternatives):
            dep_id = name_id
        elif spec.op == '==' and spec.build and not GLOB_CHARS & set(spec.build):
            evr = f"{solv_version(spec.version)}-{spec.build}"
            dep_id = self._pool.rel2id(name_id, self._pool.str2id(evr), solv.REL_EQ)
        else:
            compound = len(alternatives) > 1 or len(alternatives[0]) > 1
            conjunctions = []
            for alternative in alternatives:
                relations = []
                for op, version in alternative:
                    relation = self._relation(name_id, op, version)
                    if compound:
                        # libsolv may report a single relation of a compound dependency
                        self._specs.setdefault(relation, MatchSpec(spec.name, op, version))
                    relations.append(relation)
                conjunctions.append(self._join(relations, solv.REL_AND))
            dep_id = self._join(conjunctions, solv.REL_OR)
        self._specs.setdefault(dep_id, spec)
        return dep_id

    def _relation(self, name_id: int, op: str, version: str) -> int:
        return self._pool.rel2id(name_id, self._pool.str2id(solv_version(version)), OP_FLAGS[op])

    def _join(self, dep_ids: List[int], flag: int) -> int:
        dep_id = dep_ids[0]
        for other in dep_ids[1:]:
            dep_id = self._pool.rel2id(dep_id, other, flag)
        return dep_id

    def _constraint_conflicts(self, spec: MatchSpec) -> List[int]:
        """Conflicts matching exactly the packages a constraint rejects.

        A package is rejected when every alternative fails, and an
        alternative fails when one of its relations has a complement
        matching the package.
        """
        alternatives = spec.alternatives
        if any(not alternative for alternative in alternatives):
            return []
        name_id = self._pool.str2id(spec.name)
        failures = [
            [self._relation(name_id, complement, version)
             for op, version in alternative
             for complement in CONSTRAINT_COMPLEMENTS[op]]
            for alternative in alternatives
        ]
        if len(failures) == 1:
            return failures[0]
        return [self._join([self._join(f, solv.REL_OR) for f in failures], solv.REL_AND)]

    def dependency_spec(self, dep_id: int) -> MatchSpec:
        """Spec a dependency id was interned from."""
        spec = self._specs.get(dep_id)
        if spec is None:
            spec = MatchSpec.parse(self._pool.dep2str(dep_id))
        return spec

    def constraint_spec(self, solvable_id: int, dep_id: int) -> Optional[MatchSpec]:
        """Constraint spec encoded by a conflict of a solvable, if any."""
        return self._constraints.get((solvable_id, dep_id))

    def id2pkginfo(self, solvable_id: int) -> PackageInfo:
        """Package fact behind a solvable id.

        Raises:
            InvalidHandle: If the id does not belong to a live repository
        """
        try:
            return self._solvables[solvable_id][1]
        except KeyError:
            raise InvalidHandle(f"Unknown or removed solvable id: {solvable_id}") from None

    def solvable_repo(self, solvable_id: int) -> RepoInfo:
        try:
            repo_id = self._solvables[solvable_id][0]
        except KeyError:
            raise InvalidHandle(f"Unknown or removed solvable id: {solvable_id}") from None
        return self._handle(repo_id)

    def is_installed(self, solvable_id: int) -> bool:
        entry = self._solvables.get(solvable_id)
        return entry is not None and entry[0] == self._installed_id

    def is_pin(self, solvable_id: int) -> bool:
        """True for the virtual solvables created by add_pin()."""
        if self._pins_repo is None:
            return False
        entry = self._solvables.get(solvable_id)
        return entry is not None and entry[0] == self._pins_repo.id

    def pin_spec(self, solvable_id: int) -> MatchSpec:
        """Spec a pin solvable constrains."""
        return MatchSpec.parse(self.id2pkginfo(solvable_id).constrains[0])

    def solvable(self, solvable_id: int) -> solv.XSolvable:
        """libsolv solvable behind an id (checked like id2pkginfo())."""
        self.id2pkginfo(solvable_id)
        return self._pool.id2solvable(solvable_id)

    def installed_solvables(self) -> List[int]:
        if self._installed_id is None:
            return []
        return list(self._repos[self._installed_id].solvable_ids)

    def select_solvables(self, dep_id: int, sorted: bool = False) -> List[int]:
        """Solvable ids providing a dependency.

        Args:
            dep_id: Dependency id from matchspec2id()
            sorted: Order by name, version and build instead of repository priority

        Returns:
            List of solvable ids, repositories of higher priority first
        """
        self.create_whatprovides()
        providers = None
        result = []
        for repo_id, entry in self._entries_by_priority():
            cached = entry.provides_cache.get(dep_id)
            if cached is None:
                if providers is None:
                    providers = [s.id for s in self._pool.whatprovides(dep_id)]
                cached = [sid for sid in providers
                          if self._solvables.get(sid, (None,))[0] == repo_id]
                entry.provides_cache[dep_id] = cached
            result.extend(cached)

        if sorted:
            result.sort(key=self._solvable_sort_key)
        return result

    def select(self, spec: Union[str, MatchSpec], sorted: bool = False) -> List[int]:
        """Solvable ids matching a spec, build pattern included."""
        spec = MatchSpec.parse(spec)
        ids = self.select_solvables(self.matchspec2id(spec), sorted=sorted)
        if spec.build:
            ids = [sid for sid in ids if spec.matches_build(self._solvables[sid][1].build_string)]
        return ids

    def _solvable_sort_key(self, solvable_id: int):
        pkg = self._solvables[solvable_id][1]
        return (pkg.name, version_key(pkg.version), version_key(pkg.build_string), solvable_id)

    def check_usable(self):
        """Raise UsageError if the pool holds nothing to solve against."""
        if not any(not entry.hidden for entry in self._repos.values()):
            raise UsageError("Pool has no repositories")
