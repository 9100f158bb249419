"""
Directed graph explaining why a request is unsatisfiable.

Nodes are one of four kinds:

    RootNode                  the request itself (always node 0)
    PackageNode               a package implicated in the problem
    UnresolvedDependencyNode  a dependency nothing provides
    ConstraintNode            a constraint (package constrains or user pin)

Edges go from a requirer to what it requires and are labelled with the
MatchSpec involved. Incompatibilities are not edges: they live in a
symmetric ConflictMap next to the graph.

Which libsolv rule kinds produce edges and which produce conflicts is looked
up in RULE_CLASSIFICATION, which callers may override.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Mapping, Optional, Set, Tuple, Union

import networkx as nx

from .pool import Pool
from .problems import (
    ConflictProblem,
    ConstrainsProblem,
    OtherProblem,
    Problem,
    RequestProblem,
    RequiresProblem,
    RuleKind,
)
from .specs import MatchSpec, PackageInfo

logger = logging.getLogger(__name__)

NodeId = int


# =============================================================================
# Nodes
# =============================================================================

@dataclass(frozen=True)
class RootNode:
    def __str__(self) -> str:
        return "root"


@dataclass(frozen=True)
class PackageNode:
    info: PackageInfo

    @property
    def name(self) -> str:
        return self.info.name

    def __str__(self) -> str:
        return f"package {self.info}"


@dataclass(frozen=True)
class UnresolvedDependencyNode:
    spec: MatchSpec

    @property
    def name(self) -> str:
        return self.spec.name

    def __str__(self) -> str:
        return f"unresolved {self.spec}"


@dataclass(frozen=True)
class ConstraintNode:
    spec: MatchSpec

    @property
    def name(self) -> str:
        return self.spec.name

    def __str__(self) -> str:
        return f"constraint {self.spec}"


Node = Union[RootNode, PackageNode, UnresolvedDependencyNode, ConstraintNode]


class ConflictMap:
    """Symmetric relation between node ids."""

    def __init__(self):
        self._partners: Dict[NodeId, Set[NodeId]] = {}

    def add(self, a: NodeId, b: NodeId) -> bool:
        """Record that a and b conflict. Returns False if already known."""
        if a == b:
            raise ValueError(f"Node {a} cannot conflict with itself")
        if self.in_conflict(a, b):
            return False
        self._partners.setdefault(a, set()).add(b)
        self._partners.setdefault(b, set()).add(a)
        return True

    def remove(self, a: NodeId, b: NodeId):
        for x, y in ((a, b), (b, a)):
            partners = self._partners.get(x)
            if partners is not None:
                partners.discard(y)
                if not partners:
                    del self._partners[x]

    def has_conflict(self, a: NodeId) -> bool:
        return a in self._partners

    def conflicts(self, a: NodeId) -> Set[NodeId]:
        return set(self._partners.get(a, ()))

    def in_conflict(self, a: NodeId, b: NodeId) -> bool:
        return b in self._partners.get(a, ())

    def pairs(self) -> List[Tuple[NodeId, NodeId]]:
        """Every conflict once, as (smaller id, larger id), sorted."""
        return sorted((a, b) for a, partners in self._partners.items() for b in partners if a < b)

    def clear(self):
        self._partners.clear()

    def copy(self) -> "ConflictMap":
        other = ConflictMap()
        other._partners = {k: set(v) for k, v in self._partners.items()}
        return other

    def __contains__(self, a: NodeId) -> bool:
        return self.has_conflict(a)

    def __iter__(self) -> Iterator[Tuple[NodeId, Set[NodeId]]]:
        for a in sorted(self._partners):
            yield a, set(self._partners[a])

    def __len__(self) -> int:
        return len(self._partners)

    def __bool__(self) -> bool:
        return bool(self._partners)

    def __eq__(self, other) -> bool:
        if not isinstance(other, ConflictMap):
            return NotImplemented
        return self._partners == other._partners

    def __repr__(self) -> str:
        return f"ConflictMap({self.pairs()!r})"


# =============================================================================
# Rule classification
# =============================================================================

class Relation(Enum):
    """What a rule contributes to the graph."""
    DEPENDENCY = "dependency"   # edge from requirer to every provider
    MISSING = "missing"         # edge from requirer to an unresolved dependency
    CONFLICT = "conflict"       # conflict between source and target
    CONSTRAINT = "constraint"   # edge to a constraint node in conflict with target
    IGNORE = "ignore"


RULE_CLASSIFICATION: Mapping[RuleKind, Relation] = {
    RuleKind.JOB: Relation.DEPENDENCY,
    RuleKind.JOB_PROVIDED_BY_SYSTEM: Relation.DEPENDENCY,
    RuleKind.JOB_NOTHING_PROVIDES_DEP: Relation.MISSING,
    RuleKind.JOB_UNKNOWN_PACKAGE: Relation.MISSING,
    RuleKind.JOB_UNSUPPORTED: Relation.IGNORE,
    RuleKind.PKG_REQUIRES: Relation.DEPENDENCY,
    RuleKind.PKG_NOTHING_PROVIDES_DEP: Relation.MISSING,
    RuleKind.PKG_RECOMMENDS: Relation.IGNORE,
    RuleKind.PKG_CONFLICTS: Relation.CONFLICT,
    RuleKind.PKG_SAME_NAME: Relation.CONFLICT,
    RuleKind.PKG_OBSOLETES: Relation.CONFLICT,
    RuleKind.PKG_IMPLICIT_OBSOLETES: Relation.CONFLICT,
    RuleKind.PKG_INSTALLED_OBSOLETES: Relation.CONFLICT,
    RuleKind.PKG_CONSTRAINS: Relation.CONSTRAINT,
    RuleKind.PKG_NOT_INSTALLABLE: Relation.IGNORE,
    RuleKind.PKG_SELF_CONFLICT: Relation.IGNORE,
    RuleKind.UPDATE: Relation.IGNORE,
    RuleKind.FEATURE: Relation.IGNORE,
    RuleKind.DISTUPGRADE: Relation.IGNORE,
    RuleKind.INFARCH: Relation.IGNORE,
    RuleKind.CHOICE: Relation.IGNORE,
    RuleKind.LEARNT: Relation.IGNORE,
    RuleKind.BEST: Relation.IGNORE,
}


# =============================================================================
# Graph
# =============================================================================

class ProblemsGraph:
    """Graph of packages, dependencies and constraints behind a failed solve."""

    def __init__(self):
        self._graph = nx.DiGraph()
        self._conflicts = ConflictMap()
        self._root = self.add_node(RootNode())

    # -- construction -------------------------------------------------------

    def add_node(self, node: Node) -> NodeId:
        node_id = self._graph.number_of_nodes()
        self._graph.add_node(node_id, node=node)
        return node_id

    def add_edge(self, source: NodeId, target: NodeId, spec: MatchSpec) -> bool:
        """Add a labelled edge. An existing edge keeps its first label."""
        if self._graph.has_edge(source, target):
            return False
        self._graph.add_edge(source, target, spec=spec)
        return True

    def add_conflict(self, a: NodeId, b: NodeId) -> bool:
        if self._root in (a, b):
            raise ValueError("The root node cannot take part in a conflict")
        return self._conflicts.add(a, b)

    @classmethod
    def from_problems(cls, problems: List[Problem], pool: Pool,
                      classification: Optional[Mapping[RuleKind, Relation]] = None) -> "ProblemsGraph":
        """Build the graph from converted libsolv problems.

        Args:
            problems: Problems in engine order
            pool: Pool used to look up packages and providers
            classification: Rule kind to relation table (RULE_CLASSIFICATION by default)
        """
        return _ProblemsGraphCreator(pool, classification).create(problems)

    # -- queries ------------------------------------------------------------

    def root_node(self) -> NodeId:
        return self._root

    def conflicts(self) -> ConflictMap:
        return self._conflicts

    def graph(self) -> Tuple[Dict[NodeId, Node], Dict[Tuple[NodeId, NodeId], MatchSpec]]:
        """Plain copies of (nodes, edges)."""
        return self.nodes(), {(u, v): spec for u, v, spec in self._graph.edges(data="spec")}

    def nodes(self) -> Dict[NodeId, Node]:
        return {n: data for n, data in self._graph.nodes(data="node")}

    def node(self, node_id: NodeId) -> Node:
        return self._graph.nodes[node_id]["node"]

    def successors(self, node_id: NodeId) -> List[NodeId]:
        return sorted(self._graph.successors(node_id))

    def predecessors(self, node_id: NodeId) -> List[NodeId]:
        return sorted(self._graph.predecessors(node_id))

    def edge(self, source: NodeId, target: NodeId) -> MatchSpec:
        return self._graph.edges[source, target]["spec"]

    def has_edge(self, source: NodeId, target: NodeId) -> bool:
        return self._graph.has_edge(source, target)

    def number_of_nodes(self) -> int:
        return self._graph.number_of_nodes()

    @property
    def nx_graph(self) -> nx.DiGraph:
        return self._graph

    def copy(self) -> "ProblemsGraph":
        other = ProblemsGraph.__new__(ProblemsGraph)
        other._graph = self._graph.copy()
        other._conflicts = self._conflicts.copy()
        other._root = self._root
        return other

    def dump(self) -> str:
        """Stable text form, one line per node, edge and conflict."""
        lines = [f"node {n}: {node}" for n, node in sorted(self.nodes().items())]
        lines += [f"edge {u} -> {v}: {spec}" for (u, v), spec in sorted(self.graph()[1].items())]
        lines += [f"conflict {a} <-> {b}" for a, b in self._conflicts.pairs()]
        return "\n".join(lines)

    def __len__(self) -> int:
        return self.number_of_nodes()

    def __repr__(self) -> str:
        return (f"ProblemsGraph(nodes={self._graph.number_of_nodes()}, "
                f"edges={self._graph.number_of_edges()}, conflicts={len(self._conflicts.pairs())})")


class _ProblemsGraphCreator:
    """Turns a problem list into a ProblemsGraph, reusing nodes by key."""

    def __init__(self, pool: Pool, classification: Optional[Mapping[RuleKind, Relation]] = None):
        self.pool = pool
        self.classification = RULE_CLASSIFICATION if classification is None else classification
        self.graph = ProblemsGraph()
        self._lookup: Dict[Tuple[str, object], NodeId] = {}

    def create(self, problems: List[Problem]) -> ProblemsGraph:
        for problem in problems:
            relation = self.classification.get(problem.kind)
            if relation is None:
                logger.warning("Unclassified solver rule %s ignored: %s",
                               problem.kind.name, problem.description)
                continue
            if relation is Relation.IGNORE:
                logger.debug("Ignoring %s rule: %s", problem.kind.name, problem.description)
                continue
            getattr(self, f"_add_{relation.value}")(problem)

        self._connect_orphans()
        logger.debug("Built %r", self.graph)
        return self.graph

    # -- nodes --------------------------------------------------------------

    def _node(self, key: Tuple[str, object], factory) -> NodeId:
        node_id = self._lookup.get(key)
        if node_id is None:
            node_id = self.graph.add_node(factory())
            self._lookup[key] = node_id
        return node_id

    def _package(self, solvable_id: int) -> NodeId:
        return self._node(("solvable", solvable_id),
                          lambda: PackageNode(self.pool.id2pkginfo(solvable_id)))

    def _unresolved(self, spec: MatchSpec) -> NodeId:
        return self._node(("unresolved", str(spec)), lambda: UnresolvedDependencyNode(spec))

    def _constraint(self, spec: MatchSpec) -> NodeId:
        return self._node(("constraint", str(spec)), lambda: ConstraintNode(spec))

    def _source(self, problem: Problem) -> Optional[NodeId]:
        """Node a problem originates from; the root for request rules and pins."""
        if isinstance(problem, RequestProblem):
            return self.graph.root_node()
        source_id = getattr(problem, "source_id", None)
        if source_id is None:
            return None
        if self.pool.is_pin(source_id):
            return self.graph.root_node()
        return self._package(source_id)

    def _providers(self, problem: Union[RequestProblem, RequiresProblem]) -> List[int]:
        if isinstance(problem, RequestProblem) and problem.job is not None:
            ids = problem.job.candidates
        else:
            ids = self.pool.select_solvables(problem.dep_id, sorted=True)
        return [sid for sid in ids if not self.pool.is_pin(sid)]

    # -- relations ----------------------------------------------------------

    def _add_dependency(self, problem: Problem):
        if isinstance(problem, RequestProblem) and problem.is_pin:
            self.graph.add_edge(self.graph.root_node(), self._constraint(problem.spec), problem.spec)
            return
        if isinstance(problem, (RequestProblem, RequiresProblem)):
            if problem.spec is None:
                logger.debug("Dependency rule without spec: %s", problem.description)
                return
            source = self._source(problem)
            providers = self._providers(problem)
            if not providers:
                self.graph.add_edge(source, self._unresolved(problem.spec), problem.spec)
                return
            for sid in providers:
                self.graph.add_edge(source, self._package(sid), problem.spec)
        elif isinstance(problem, ConstrainsProblem):
            self._add_constraint(problem)
        elif isinstance(problem, ConflictProblem):
            target = self._package(problem.target_id)
            spec = problem.spec or MatchSpec(self.pool.id2pkginfo(problem.target_id).name)
            self.graph.add_edge(self._source(problem), target, spec)
        else:
            logger.debug("No dependency in %s rule: %s", problem.kind.name, problem.description)

    def _add_missing(self, problem: Problem):
        if not isinstance(problem, (RequestProblem, RequiresProblem)) or problem.spec is None:
            logger.debug("No missing dependency in %s rule: %s",
                         problem.kind.name, problem.description)
            return
        if isinstance(problem, RequestProblem) and problem.is_pin:
            self.graph.add_edge(self.graph.root_node(), self._constraint(problem.spec), problem.spec)
            return
        self.graph.add_edge(self._source(problem), self._unresolved(problem.spec), problem.spec)

    def _add_conflict(self, problem: Problem):
        if isinstance(problem, ConstrainsProblem) and problem.source_is_pin:
            self._add_constraint(problem)
            return
        if not isinstance(problem, (ConflictProblem, ConstrainsProblem)):
            logger.debug("No conflict in %s rule: %s", problem.kind.name, problem.description)
            return
        self.graph.add_conflict(self._package(problem.source_id), self._package(problem.target_id))

    def _add_constraint(self, problem: Problem):
        if not isinstance(problem, (ConstrainsProblem, ConflictProblem)) or problem.spec is None:
            logger.debug("No constraint in %s rule: %s", problem.kind.name, problem.description)
            return
        constraint = self._constraint(problem.spec)
        self.graph.add_edge(self._source(problem), constraint, problem.spec)
        self.graph.add_conflict(constraint, self._package(problem.target_id))

    def _root_edge(self, node_id: NodeId):
        node = self.graph.node(node_id)
        spec = MatchSpec(node.name) if isinstance(node, PackageNode) else node.spec
        self.graph.add_edge(self.graph.root_node(), node_id, spec)

    def _connect_orphans(self):
        """Hang every node without a parent under the root.

        Dependency cycles nothing else points into still have parents; the
        lowest node id of each such cycle is hung under the root as well.
        """
        root = self.graph.root_node()
        for node_id in sorted(self.graph.nodes()):
            if node_id != root and not self.graph.predecessors(node_id):
                self._root_edge(node_id)

        reachable = nx.descendants(self.graph.nx_graph, root) | {root}
        for node_id in sorted(self.graph.nodes()):
            if node_id in reachable:
                continue
            self._root_edge(node_id)
            reachable |= nx.descendants(self.graph.nx_graph, node_id) | {node_id}


def simplify_conflicts(pbs: ProblemsGraph) -> ProblemsGraph:
    """Drop conflicts that carry no information.

    Two versions of one package that are alternatives for the same
    requirement (they share a predecessor) exclude each other by
    construction, so their same-name conflict is removed.

    Returns:
        A new ProblemsGraph; `pbs` is left untouched
    """
    simplified = pbs.copy()
    conflicts = simplified.conflicts()
    for a, b in pbs.conflicts().pairs():
        node_a, node_b = pbs.node(a), pbs.node(b)
        if not (isinstance(node_a, PackageNode) and isinstance(node_b, PackageNode)):
            continue
        if node_a.name != node_b.name:
            continue
        if set(pbs.predecessors(a)) & set(pbs.predecessors(b)):
            conflicts.remove(a, b)
    return simplified
