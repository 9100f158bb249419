"""Tests for problems graph compression"""

import random

import pytest

from pkgsolve.core.compressed import (
    CompressedProblemsGraph,
    ConstraintListNode,
    DependencyList,
    NamedList,
    PackageListNode,
    UnresolvedDependencyListNode,
    join_trunc,
)
from pkgsolve.core.problems_graph import (
    ConstraintNode,
    PackageNode,
    ProblemsGraph,
    RootNode,
    UnresolvedDependencyNode,
)
from pkgsolve.core.specs import MatchSpec, PackageInfo


def build_graph(nodes, edges, conflicts=(), order=None):
    """Build a ProblemsGraph from keyed nodes; `order` permutes insertion."""
    pbs = ProblemsGraph()
    ids = {"root": pbs.root_node()}
    for key in order or list(nodes):
        ids[key] = pbs.add_node(nodes[key])
    for source, target, spec in edges:
        pbs.add_edge(ids[source], ids[target], MatchSpec.parse(spec))
    for a, b in conflicts:
        pbs.add_conflict(ids[a], ids[b])
    return pbs, ids


def package(name, version, build=""):
    return PackageNode(PackageInfo(name, version, build))


# A requested in two versions, both requiring a C that does not exist
NODES = {
    "x1": package("X", "1.0"),
    "x2": package("X", "2.0"),
    "c": UnresolvedDependencyNode(MatchSpec.parse("C>=5")),
    "y1": package("Y", "1.0"),
    "y2": package("Y", "2.0"),
    "z": package("Z", "1.0"),
}
EDGES = [
    ("root", "x1", "X"),
    ("root", "x2", "X"),
    ("x1", "c", "C>=5"),
    ("x2", "c", "C>=5"),
    ("root", "y1", "Y"),
    ("root", "y2", "Y"),
    ("root", "z", "Z"),
]
CONFLICTS = [("y1", "z"), ("y2", "z")]


class TestJoinTrunc:

    def test_short_list(self):
        assert join_trunc(["1", "2", "3"]) == "1|2|3"

    def test_long_list(self):
        assert join_trunc([str(i) for i in range(10)]) == "0|1|...|9"

    def test_duplicates(self):
        assert join_trunc(["1", "1", "2"]) == "1|2"
        assert join_trunc(["1", "1", "2"], remove_duplicates=False) == "1|1|2"

    def test_custom(self):
        values = [str(i) for i in range(6)]
        assert join_trunc(values, sep=", ", etc="..", threshold=3, show=(1, 2)) == "0, .., 4, 5"

    def test_threshold_below_shown_values(self):
        assert join_trunc(["a", "b"], threshold=1) == "a|b"
        assert join_trunc(["a", "b", "c"], threshold=1) == "a|b|c"
        assert join_trunc(["a", "b", "c", "d"], threshold=1) == "a|b|...|d"
        assert join_trunc(["a", "b"], threshold=0, show=(0, 0)) == "..."

    def test_idempotent_input(self):
        values = ["1.0", "1.1", "1.2", "1.3", "1.4", "1.5"]
        assert join_trunc(values) == join_trunc(values + values)


class TestNamedList:
    """Tests for the named list node types."""

    def test_package_list(self):
        items = PackageListNode([PackageInfo("X", "1.0", "h1"), PackageInfo("X", "2.0", "h2"),
                                 PackageInfo("X", "1.0", "h1")])
        assert len(items) == 2
        assert items.name() == "X"
        assert items.versions() == ["1.0", "2.0"]
        assert items.build_strings() == ["h1", "h2"]
        assert items.versions_and_build_strings() == ["1.0 h1", "2.0 h2"]
        assert items.versions_trunc() == "1.0|2.0"

    def test_spec_lists(self):
        deps = DependencyList([MatchSpec.parse("B>=2.0"), MatchSpec.parse("B<3")])
        assert deps.name() == "B"
        assert deps.versions() == [">=2.0", "<3"]
        assert not deps.add(MatchSpec.parse("B >= 2.0"))

    def test_empty(self):
        items = NamedList()
        assert not items
        assert items.name() == ""
        assert items.versions_trunc() == ""

    def test_truncation(self):
        items = PackageListNode(PackageInfo("X", f"1.{i}") for i in range(8))
        assert items.versions_trunc() == "1.0|1.1|...|1.7"
        assert items.versions_trunc(threshold=10).count("|") == 7


class TestCompression:
    """Tests for CompressedProblemsGraph.from_problems_graph()."""

    def test_versions_merge(self):
        pbs, ids = build_graph(NODES, EDGES, CONFLICTS)
        cpg = CompressedProblemsGraph.from_problems_graph(pbs)
        x = cpg.group_of(ids["x1"])
        assert cpg.group_of(ids["x2"]) == x
        assert isinstance(cpg.node(x), PackageListNode)
        assert cpg.node(x).versions() == ["1.0", "2.0"]
        assert sorted(cpg.members(x)) == sorted([ids["x1"], ids["x2"]])
        assert isinstance(cpg.node(cpg.group_of(ids["c"])), UnresolvedDependencyListNode)
        # Y versions share their conflict partner and merge too
        assert cpg.group_of(ids["y1"]) == cpg.group_of(ids["y2"])
        assert cpg.number_of_nodes() == 5

    def test_edges_carry_dependency_lists(self):
        pbs, ids = build_graph(NODES, EDGES, CONFLICTS)
        cpg = CompressedProblemsGraph.from_problems_graph(pbs)
        deps = cpg.edge(cpg.root_node(), cpg.group_of(ids["x1"]))
        assert isinstance(deps, DependencyList)
        assert [str(d) for d in deps] == ["X"]

    def test_conflicting_nodes_never_merge(self):
        nodes = {"a1": package("A", "1.0"), "a2": package("A", "2.0")}
        edges = [("root", "a1", "A"), ("root", "a2", "A")]
        pbs, ids = build_graph(nodes, edges, [("a1", "a2")])
        cpg = CompressedProblemsGraph.from_problems_graph(pbs)
        assert cpg.group_of(ids["a1"]) != cpg.group_of(ids["a2"])
        assert cpg.conflicts().in_conflict(cpg.group_of(ids["a1"]), cpg.group_of(ids["a2"]))

    def test_different_labels_do_not_merge(self):
        nodes = {"a1": package("A", "1.0"), "a2": package("A", "2.0")}
        edges = [("root", "a1", "A>=1"), ("root", "a2", "A>=2")]
        pbs, ids = build_graph(nodes, edges)
        cpg = CompressedProblemsGraph.from_problems_graph(pbs)
        assert cpg.group_of(ids["a1"]) != cpg.group_of(ids["a2"])

    def test_different_kinds_do_not_merge(self):
        nodes = {"p": package("A", "1.0"), "k": ConstraintNode(MatchSpec.parse("A<1"))}
        edges = [("root", "p", "A"), ("root", "k", "A")]
        pbs, ids = build_graph(nodes, edges)
        cpg = CompressedProblemsGraph.from_problems_graph(pbs)
        assert cpg.group_of(ids["p"]) != cpg.group_of(ids["k"])
        assert isinstance(cpg.node(cpg.group_of(ids["k"])), ConstraintListNode)

    def test_merge_criteria(self):
        pbs, ids = build_graph(NODES, EDGES, CONFLICTS)
        cpg = CompressedProblemsGraph.from_problems_graph(pbs, merge_criteria=lambda g, a, b: False)
        assert cpg.number_of_nodes() == pbs.number_of_nodes()

    def test_soundness(self):
        pbs, ids = build_graph(NODES, EDGES, CONFLICTS)
        cpg = CompressedProblemsGraph.from_problems_graph(pbs)
        assert isinstance(cpg.node(cpg.root_node()), RootNode)
        # Every original node is in exactly one group
        seen = [orig for n in cpg.nodes() for orig in cpg.members(n)]
        assert sorted(seen) == sorted(pbs.nodes())
        # Every original edge and conflict survives between the groups
        for (u, v), spec in pbs.graph()[1].items():
            assert spec in list(cpg.edge(cpg.group_of(u), cpg.group_of(v)))
        for a, b in pbs.conflicts().pairs():
            assert cpg.conflicts().in_conflict(cpg.group_of(a), cpg.group_of(b))

    @pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
    def test_insertion_order_independent(self, seed):
        reference, _ = build_graph(NODES, EDGES, CONFLICTS)
        expected = CompressedProblemsGraph.from_problems_graph(reference).dump()

        order = list(NODES)
        random.Random(seed).shuffle(order)
        edges = list(EDGES)
        random.Random(seed).shuffle(edges)
        shuffled, _ = build_graph(NODES, edges, CONFLICTS, order=order)
        assert CompressedProblemsGraph.from_problems_graph(shuffled).dump() == expected

    def test_tree_message(self):
        pbs, _ = build_graph(NODES, EDGES, CONFLICTS)
        message = CompressedProblemsGraph.from_problems_graph(pbs).tree_message()
        assert "X [1.0|2.0]" in message
        assert "C >=5" in message
        assert "does not exist" in message
