"""
Compressed problems graph.

A ProblemsGraph built from a large repository often holds dozens of versions
of one package that are rejected for exactly the same reason. Compression
merges such nodes into named list nodes:

    PackageListNode               versions/builds of one package
    UnresolvedDependencyListNode  missing dependencies of one name
    ConstraintListNode            constraints on one name

Two nodes are merged when they have the same kind and name, the same
labelled edges to and from the same groups and the same conflict partners,
and are not in conflict with each other. Groups are found by iterated
signature refinement, where a signature only ever refers to other groups,
so the result does not depend on node insertion order.
"""

import logging
from typing import Callable, Dict, Hashable, Iterable, Iterator, List, Optional, Tuple, Union

import networkx as nx

from .problems_graph import (
    ConflictMap,
    ConstraintNode,
    NodeId,
    PackageNode,
    ProblemsGraph,
    RootNode,
    UnresolvedDependencyNode,
)
from .specs import PackageInfo, version_key

logger = logging.getLogger(__name__)


def join_trunc(values: Iterable[str], sep: str = "|", etc: str = "...", threshold: int = 5,
               remove_duplicates: bool = True, show: Tuple[int, int] = (2, 1)) -> str:
    """Join values, eliding the middle of long lists.

    Args:
        values: Strings to join
        sep: Separator
        etc: Marker standing for the elided values
        threshold: Longest list joined in full
        remove_duplicates: Drop repeated values (first occurrence kept) before truncating
        show: How many values to keep at the (start, end) of a truncated list

    Returns:
        "1.0|1.1|...|2.0" style string
    """
    values = list(values)
    if remove_duplicates:
        values = list(dict.fromkeys(values))
    head, tail = show
    # Head and tail must not overlap
    if len(values) <= max(threshold, head + tail):
        return sep.join(values)
    return sep.join(values[:head] + [etc] + values[len(values) - tail:])


class NamedList:
    """Ordered list of items sharing a name, without duplicates."""

    def __init__(self, items: Iterable = ()):
        self._items: List = []
        self._keys = set()
        for item in items:
            self.add(item)

    @staticmethod
    def _key(item) -> Hashable:
        return str(item)

    @staticmethod
    def _version(item) -> str:
        return f"{item.op}{item.version}"

    @staticmethod
    def _build(item) -> str:
        return item.build

    def add(self, item) -> bool:
        key = self._key(item)
        if key in self._keys:
            return False
        self._keys.add(key)
        self._items.append(item)
        return True

    def clear(self):
        self._items.clear()
        self._keys.clear()

    def name(self) -> str:
        return self._items[0].name if self._items else ""

    def versions(self) -> List[str]:
        return [self._version(i) for i in self._items]

    def build_strings(self) -> List[str]:
        return [self._build(i) for i in self._items]

    def versions_and_build_strings(self) -> List[str]:
        return [" ".join(p for p in (self._version(i), self._build(i)) if p) for i in self._items]

    def versions_trunc(self, sep: str = "|", etc: str = "...", threshold: int = 5,
                       remove_duplicates: bool = True) -> str:
        return join_trunc(self.versions(), sep, etc, threshold, remove_duplicates)

    def build_strings_trunc(self, sep: str = "|", etc: str = "...", threshold: int = 5,
                            remove_duplicates: bool = True) -> str:
        return join_trunc(self.build_strings(), sep, etc, threshold, remove_duplicates)

    def versions_and_build_strings_trunc(self, sep: str = "|", etc: str = "...", threshold: int = 5,
                                         remove_duplicates: bool = True) -> str:
        return join_trunc(self.versions_and_build_strings(), sep, etc, threshold, remove_duplicates)

    def __iter__(self) -> Iterator:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __getitem__(self, index):
        return self._items[index]

    def __eq__(self, other) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self._items == other._items

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name()!r}, {self.versions_and_build_strings()!r})"


class PackageListNode(NamedList):
    """Versions and builds of one package, unique by (version, build)."""

    @staticmethod
    def _key(item: PackageInfo) -> Hashable:
        return (item.version, item.build_string)

    @staticmethod
    def _version(item: PackageInfo) -> str:
        return item.version

    @staticmethod
    def _build(item: PackageInfo) -> str:
        return item.build_string


class UnresolvedDependencyListNode(NamedList):
    pass


class ConstraintListNode(NamedList):
    pass


class DependencyList(NamedList):
    """Labels of the original edges folded into one compressed edge."""


CompressedNode = Union[RootNode, PackageListNode, UnresolvedDependencyListNode, ConstraintListNode]

MergeCriteria = Callable[[ProblemsGraph, NodeId, NodeId], bool]

_KIND_ORDER = {
    RootNode: 0,
    PackageNode: 1,
    UnresolvedDependencyNode: 2,
    ConstraintNode: 3,
}

_LIST_TYPES = {
    PackageNode: PackageListNode,
    UnresolvedDependencyNode: UnresolvedDependencyListNode,
    ConstraintNode: ConstraintListNode,
}


def _initial_key(node) -> Tuple[int, str]:
    if isinstance(node, RootNode):
        return (0, "")
    return (_KIND_ORDER[type(node)], node.name)


def _content_key(node) -> tuple:
    if isinstance(node, PackageNode):
        info = node.info
        return (info.name, version_key(info.version), version_key(info.build_string),
                info.version, info.build_string)
    if isinstance(node, RootNode):
        return ()
    return (str(node.spec),)


def _rank(keys: Dict[NodeId, tuple]) -> Dict[NodeId, int]:
    index = {key: i for i, key in enumerate(sorted(set(keys.values())))}
    return {n: index[key] for n, key in keys.items()}


def _class_count(colors: Dict[NodeId, int]) -> int:
    return len(set(colors.values()))


class _Partitioner:
    """Computes the merge groups of a ProblemsGraph."""

    def __init__(self, pbs: ProblemsGraph, merge_criteria: Optional[MergeCriteria] = None):
        self.pbs = pbs
        self.merge_criteria = merge_criteria
        self.nodes = pbs.nodes()
        self.graph = pbs.nx_graph
        self.conflicts = pbs.conflicts()

    def partition(self) -> Dict[NodeId, int]:
        colors = _rank({n: _initial_key(node) for n, node in self.nodes.items()})
        while True:
            colors = self._refine(colors)
            split = self._split(colors)
            if _class_count(split) == _class_count(colors):
                return colors
            colors = split

    def _signature(self, n: NodeId, colors: Dict[NodeId, int]) -> tuple:
        out_edges = tuple(sorted({(str(spec), colors[v])
                                  for _, v, spec in self.graph.out_edges(n, data="spec")}))
        in_edges = tuple(sorted({(str(spec), colors[u])
                                 for u, _, spec in self.graph.in_edges(n, data="spec")}))
        partners = tuple(sorted({colors[c] for c in self.conflicts.conflicts(n)}))
        return (colors[n], out_edges, in_edges, partners)

    def _refine(self, colors: Dict[NodeId, int]) -> Dict[NodeId, int]:
        while True:
            refined = _rank({n: self._signature(n, colors) for n in self.nodes})
            if _class_count(refined) == _class_count(colors):
                return refined
            colors = refined

    def _compatible(self, a: NodeId, b: NodeId) -> bool:
        if self.conflicts.in_conflict(a, b):
            return False
        return self.merge_criteria is None or self.merge_criteria(self.pbs, a, b)

    def _split(self, colors: Dict[NodeId, int]) -> Dict[NodeId, int]:
        classes: Dict[int, List[NodeId]] = {}
        for n, color in colors.items():
            classes.setdefault(color, []).append(n)

        keys = {}
        for color, members in classes.items():
            members.sort(key=lambda n: (_content_key(self.nodes[n]), n))
            subgroups: List[List[NodeId]] = []
            for n in members:
                for group in subgroups:
                    if all(self._compatible(n, other) for other in group):
                        group.append(n)
                        break
                else:
                    subgroups.append([n])
            for i, group in enumerate(subgroups):
                for n in group:
                    keys[n] = (color, i)
        return _rank(keys)


class CompressedProblemsGraph:
    """Quotient of a ProblemsGraph by its merge groups."""

    def __init__(self, graph: nx.DiGraph, conflicts: ConflictMap, root: NodeId,
                 members: Dict[NodeId, List[NodeId]]):
        self._graph = graph
        self._conflicts = conflicts
        self._root = root
        self._members = members
        self._group_of = {orig: n for n, origs in members.items() for orig in origs}

    @classmethod
    def from_problems_graph(cls, pbs: ProblemsGraph,
                            merge_criteria: Optional[MergeCriteria] = None) -> "CompressedProblemsGraph":
        """Compress a ProblemsGraph.

        Args:
            pbs: Graph to compress
            merge_criteria: Optional extra predicate two nodes must satisfy to be merged

        Returns:
            CompressedProblemsGraph
        """
        colors = _Partitioner(pbs, merge_criteria).partition()
        nodes = pbs.nodes()

        members: Dict[NodeId, List[NodeId]] = {}
        for orig in sorted(colors, key=lambda o: (_content_key(nodes[o]), o)):
            members.setdefault(colors[orig], []).append(orig)

        graph = nx.DiGraph()
        for group in sorted(members):
            origs = members[group]
            first = nodes[origs[0]]
            if isinstance(first, RootNode):
                node = RootNode()
            elif isinstance(first, PackageNode):
                node = PackageListNode(nodes[o].info for o in origs)
            else:
                node = _LIST_TYPES[type(first)](nodes[o].spec for o in origs)
            graph.add_node(group, node=node)

        for u, v in sorted(pbs.nx_graph.edges(), key=lambda e: (str(pbs.edge(*e)), e)):
            cu, cv = colors[u], colors[v]
            if not graph.has_edge(cu, cv):
                graph.add_edge(cu, cv, deps=DependencyList())
            graph.edges[cu, cv]["deps"].add(pbs.edge(u, v))

        conflicts = ConflictMap()
        for a, b in pbs.conflicts().pairs():
            conflicts.add(colors[a], colors[b])

        compressed = cls(graph, conflicts, colors[pbs.root_node()], members)
        logger.debug("Compressed %d nodes into %d", len(nodes), graph.number_of_nodes())
        return compressed

    def root_node(self) -> NodeId:
        return self._root

    def conflicts(self) -> ConflictMap:
        return self._conflicts

    def graph(self) -> Tuple[Dict[NodeId, CompressedNode], Dict[Tuple[NodeId, NodeId], DependencyList]]:
        return self.nodes(), {(u, v): deps for u, v, deps in self._graph.edges(data="deps")}

    def nodes(self) -> Dict[NodeId, CompressedNode]:
        return {n: node for n, node in self._graph.nodes(data="node")}

    def node(self, node_id: NodeId) -> CompressedNode:
        return self._graph.nodes[node_id]["node"]

    def successors(self, node_id: NodeId) -> List[NodeId]:
        return sorted(self._graph.successors(node_id))

    def predecessors(self, node_id: NodeId) -> List[NodeId]:
        return sorted(self._graph.predecessors(node_id))

    def edge(self, source: NodeId, target: NodeId) -> DependencyList:
        return self._graph.edges[source, target]["deps"]

    def members(self, node_id: NodeId) -> List[NodeId]:
        """Ids of the ProblemsGraph nodes merged into node_id."""
        return list(self._members[node_id])

    def group_of(self, original: NodeId) -> NodeId:
        return self._group_of[original]

    def number_of_nodes(self) -> int:
        return self._graph.number_of_nodes()

    def tree_message(self, color: bool = False) -> str:
        from .explain import problem_tree_msg
        return problem_tree_msg(self, color=color)

    def dump(self) -> str:
        """Stable text form of the compressed graph."""
        lines = []
        for n, node in sorted(self.nodes().items()):
            if isinstance(node, RootNode):
                lines.append(f"node {n}: root")
            else:
                lines.append(f"node {n}: {type(node).__name__} {node.name()} "
                             f"[{node.versions_and_build_strings_trunc(threshold=1000)}]")
        for (u, v), deps in sorted(self.graph()[1].items()):
            lines.append(f"edge {u} -> {v}: {', '.join(str(d) for d in deps)}")
        lines += [f"conflict {a} <-> {b}" for a, b in self._conflicts.pairs()]
        return "\n".join(lines)

    def __len__(self) -> int:
        return self.number_of_nodes()

    def __repr__(self) -> str:
        return (f"CompressedProblemsGraph(nodes={self._graph.number_of_nodes()}, "
                f"edges={self._graph.number_of_edges()})")
