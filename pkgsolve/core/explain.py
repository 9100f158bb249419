"""
Tree rendering of a CompressedProblemsGraph.

The graph is walked depth first from the root. Children reached through
dependencies of the same name are shown together as a "split" (the
alternatives that could satisfy that dependency). Every node gets a status:
leaves are installable unless they are missing or conflict with something
already judged installable, and inner nodes are installable when all their
dependencies are. A typical message:

    Could not solve for the requested packages: A
    The following packages are incompatible
    └─ A 1.0 is uninstallable because it requires
       └─ B >=2.0, which does not exist (perhaps a missing channel).
"""

import enum
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

from . import colors
from .compressed import (
    CompressedProblemsGraph,
    ConstraintListNode,
    DependencyList,
    NamedList,
    PackageListNode,
    UnresolvedDependencyListNode,
)
from .problems_graph import NodeId, RootNode
from .specs import version_key

INDENT = (("│  ", "   "), ("├─ ", "└─ "))


class ExplanationType(enum.Enum):
    # A single node with no ancestors or successors.
    standalone = enum.auto()
    # A root node with no ancestors and at least one successor.
    root = enum.auto()
    # A leaf node with at least one ancestor and no successor.
    leaf = enum.auto()
    # A node that has already been visited.
    visited = enum.auto()
    # The beginning of a dependency split (several children for one dependency).
    split = enum.auto()
    # A regular node with at least one ancestor and at least one successor.
    diving = enum.auto()

    @classmethod
    def from_position(cls, has_predecessors: bool, has_successors: bool,
                      is_visited: bool) -> "ExplanationType":
        if not has_successors:
            return cls.leaf if has_predecessors else cls.standalone
        elif is_visited:
            return cls.visited
        else:
            return cls.diving if has_predecessors else cls.root


@dataclass
class ExplanationNode:
    node_id: Optional[NodeId]
    node_from: Optional[NodeId]
    deps_from: Optional[DependencyList]
    type: ExplanationType
    in_split: bool
    status: bool
    tree_position: List[bool]

    @property
    def depth(self) -> int:
        return len(self.tree_position)


def _list_repr(items: NamedList) -> str:
    versions = list(dict.fromkeys(v for v in items.versions() if v))
    if not versions:
        return items.name()
    if len(versions) == 1:
        return f"{items.name()} {versions[0]}"
    return f"{items.name()} [{items.versions_trunc()}]"


class GraphWalker:
    """Depth first walk producing the ordered explanation lines."""

    def __init__(self, cpg: CompressedProblemsGraph, leaf_status: Callable[[NodeId], bool]):
        self.cpg = cpg
        self.leaf_status = leaf_status

    def split_sort_key(self, node_id: NodeId) -> tuple:
        node = self.cpg.node(node_id)
        if isinstance(node, PackageListNode):
            keys = [version_key(v) for v in node.versions()]
            return (0, min(keys), max(keys))
        return (1, str(node[0]) if node else "")

    def successors_per_dep(self, node_id: NodeId) -> Dict[Tuple[str, int], List[NodeId]]:
        successors: Dict[Tuple[str, int], List[NodeId]] = {}
        for child in self.cpg.successors(node_id):
            kind = 1 if isinstance(self.cpg.node(child), ConstraintListNode) else 0
            key = (self.cpg.edge(node_id, child).name(), kind)
            successors.setdefault(key, []).append(child)
        return successors

    def visit(self, root: NodeId) -> List[ExplanationNode]:
        return self.visit_node(root, None, [], in_split=False, visited={})

    def visit_split(self, node_from: NodeId, children: List[NodeId], tree_position: List[bool],
                    visited: Dict[NodeId, bool]) -> List[ExplanationNode]:
        children = sorted(children, key=self.split_sort_key)
        split = ExplanationNode(
            node_id=None,
            node_from=node_from,
            deps_from=self.cpg.edge(node_from, children[0]),
            type=ExplanationType.split,
            in_split=True,
            status=False,
            tree_position=tree_position,
        )
        path = [split]
        for i, child in enumerate(children):
            child_path = self.visit_node(child, node_from, tree_position + [i == len(children) - 1],
                                         in_split=True, visited=visited)
            path.extend(child_path)
            # Any viable option makes the split viable
            split.status |= child_path[0].status
        return path

    def visit_node(self, node_id: NodeId, node_from: Optional[NodeId], tree_position: List[bool],
                   in_split: bool, visited: Dict[NodeId, bool]) -> List[ExplanationNode]:
        successors = self.successors_per_dep(node_id)
        current = ExplanationNode(
            node_id=node_id,
            node_from=node_from,
            deps_from=self.cpg.edge(node_from, node_id) if node_from is not None else None,
            type=ExplanationType.from_position(
                has_predecessors=bool(tree_position),
                has_successors=bool(successors),
                is_visited=node_id in visited,
            ),
            in_split=in_split,
            status=True,
            tree_position=tree_position,
        )

        if not successors:
            current.status = self.leaf_status(node_id)
            visited[node_id] = current.status
            return [current]
        if node_id in visited:
            current.status = visited[node_id]
            return [current]

        # Mark before descending so cycles end as "visited"
        visited[node_id] = True
        path = [current]
        keys = sorted(successors)
        for i, key in enumerate(keys):
            children = successors[key]
            position = tree_position + [i == len(keys) - 1]
            if len(children) > 1:
                child_path = self.visit_split(node_id, children, position, visited)
            else:
                child_path = self.visit_node(children[0], node_id, position,
                                             in_split=False, visited=visited)
            # Every dependency must be viable for the parent to be
            current.status &= child_path[0].status
            path.extend(child_path)

        visited[node_id] = current.status
        return path


class ProblemExplainer:
    """Turns walker output into text."""

    def __init__(self, cpg: CompressedProblemsGraph, color: bool = False):
        self.cpg = cpg
        self.color_enabled = color
        self.node: Optional[ExplanationNode] = None

    def explain(self, path: List[ExplanationNode]) -> str:
        message: List[str] = []
        for i, self.node in enumerate(path):
            if i == len(path) - 1:
                term = "."
            elif self.node.type in (ExplanationType.leaf, ExplanationType.visited):
                term = ";"
            else:
                term = ""

            if self.node.depth > 0:
                pos = self.node.tree_position
                message += [INDENT[j == len(pos) - 1][is_last] for j, is_last in enumerate(pos)]
            message += [*getattr(self, f"explain_{self.node.type.name}")(), term, "\n"]

        if message:
            message.pop()
        return "".join(message)

    # -- formatting helpers -------------------------------------------------

    def color(self, msg: str) -> str:
        if self.node.status:
            return colors.available(msg, self.color_enabled)
        return colors.unavailable(msg, self.color_enabled)

    def unavailable(self, msg: str) -> str:
        return colors.unavailable(msg, self.color_enabled)

    @property
    def current(self):
        return self.cpg.node(self.node.node_id)

    @property
    def node_repr(self) -> str:
        return self.color(_list_repr(self.current))

    @property
    def dep_repr(self) -> str:
        return self.color(_list_repr(self.node.deps_from))

    def conflict_names(self) -> str:
        partners = sorted(self.cpg.conflicts().conflicts(self.node.node_id))
        names = dict.fromkeys(_list_repr(self.cpg.node(p)) for p in partners)
        return ", ".join(self.unavailable(n) for n in names)

    # -- one method per ExplanationType -------------------------------------

    def explain_standalone(self) -> Tuple[str, ...]:
        return ("The environment could not be satisfied",)

    def explain_root(self) -> Tuple[str, ...]:
        return ("The following packages are incompatible",)

    def explain_diving(self) -> Tuple[str, ...]:
        if self.node.depth == 1:
            return (
                self.node_repr,
                " is installable and it requires" if self.node.status
                else " is uninstallable because it requires",
            )
        return (self.node_repr, ", which requires")

    def explain_split(self) -> Tuple[str, ...]:
        if self.node.depth == 1:
            return (
                self.dep_repr,
                " is installable with the potential options" if self.node.status
                else " is uninstallable with no viable options",
            )
        return (self.dep_repr, " with the potential options" if self.node.status
                else " with no viable options")

    def explain_leaf(self) -> Tuple[str, ...]:
        node = self.current
        top = self.node.depth == 1
        if isinstance(node, UnresolvedDependencyListNode):
            return (self.node_repr, " does not exist (perhaps a typo or a missing channel)")
        if isinstance(node, ConstraintListNode):
            prefix = " is pinned" if self.node.node_from == self.cpg.root_node() else " is constrained"
            if self.cpg.conflicts().has_conflict(self.node.node_id):
                return (self.node_repr, prefix, " and conflicts with ", self.conflict_names())
            return (self.node_repr, prefix)
        if self.node.status:
            return (self.node_repr, " is requested and can be installed" if top
                    else ", which can be installed")
        if self.cpg.conflicts().has_conflict(self.node.node_id):
            return (
                self.node_repr,
                " is uninstallable because it" if top else ", which",
                " conflicts with any installable versions of ",
                self.conflict_names(),
            )
        return (self.node_repr, ", which cannot be installed for an unknown reason")

    def explain_visited(self) -> Tuple[str, ...]:
        return (
            self.node_repr,
            ", which ",
            "can" if self.node.status else "cannot",
            " be installed (as previously explained)",
        )


def header_message(cpg: CompressedProblemsGraph, color: bool = False) -> Optional[str]:
    root = cpg.root_node()
    names = []
    for child in cpg.successors(root):
        if isinstance(cpg.node(child), ConstraintListNode):
            continue
        names.append(cpg.edge(root, child).name())
    names = list(dict.fromkeys(sorted(names)))
    if not names:
        return None
    return "Could not solve for the requested package{s}: {pkgs}".format(
        s="s" if len(names) > 1 else "",
        pkgs=", ".join(colors.unavailable(n, color) for n in names),
    )


def problem_tree_msg(cpg: CompressedProblemsGraph, color: bool = False) -> str:
    """Render the conflict tree of a compressed graph.

    Args:
        cpg: Compressed problems graph
        color: Emit ANSI colors

    Returns:
        Multi-line message
    """
    conflicts = cpg.conflicts()
    # A conflicting package is installable the first time it is met; any
    # later node conflicting with it is not.
    installables: Set[NodeId] = set()

    def leaf_status(node_id: NodeId) -> bool:
        node = cpg.node(node_id)
        if isinstance(node, UnresolvedDependencyListNode):
            return False
        if conflicts.has_conflict(node_id):
            if any(c in installables for c in conflicts.conflicts(node_id)):
                return False
            installables.add(node_id)
        return True

    root = cpg.root_node()
    if isinstance(cpg.node(root), RootNode) and not cpg.successors(root):
        return "The environment could not be satisfied."

    path = GraphWalker(cpg, leaf_status).visit(root)
    body = ProblemExplainer(cpg, color=color).explain(path)
    return "\n".join(m for m in (header_message(cpg, color), body) if m)
