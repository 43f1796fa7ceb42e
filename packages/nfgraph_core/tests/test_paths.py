"""test_paths.py

Packet path enumeration and the text explanation of an export.
"""

from __future__ import annotations

from conftest import ref
from nfgraph_core.graph.compiler import GraphCompiler
from nfgraph_core.graph.graph_model import Graph
from nfgraph_core.graph.introspection import explain_graph
from nfgraph_core.graph.paths import collect_paths, format_path


def _router(graph: Graph) -> Graph:
    """source -> port filter; match -> splitter -> {v4: snat -> localhost, v6: drop}."""
    graph.add_node("core:destination_port_filter", {"ports": "443"}, node_id="https")
    graph.add_node("core:family_splitter", node_id="fam")
    graph.add_node("core:source_nat", {"address": "192.0.2.1"}, node_id="nat")
    graph.add_node("core:drop", node_id="drop")
    graph.connect(ref("source", "out"), ref("https", "in"))
    graph.connect(ref("https", "match"), ref("fam", "in"))
    graph.connect(ref("https", "non-match"), ref("drop", "in"))
    graph.connect(ref("fam", "ipv4"), ref("nat", "in"))
    graph.connect(ref("fam", "ipv6"), ref("drop", "in"))
    graph.connect(ref("nat", "out"), ref("localhost", "in"))
    return graph


class TestCollectPaths:
    def test_terminals(self, graph: Graph) -> None:
        paths = collect_paths(_router(graph))
        assert list(paths) == ["drop", "localhost"]

    def test_localhost_path(self, graph: Graph) -> None:
        paths = collect_paths(_router(graph))
        (only,) = paths["localhost"]
        assert [p.to_dict() for p in only] == [
            {"variant": "core:destination_port_filter", "params": {"allow": "443"}},
            {"variant": "core:family_splitter", "params": {"family": "ipv4"}},
            {"variant": "core:source_nat", "params": {"addr": "192.0.2.1"}},
        ]

    def test_drop_paths(self, graph: Graph) -> None:
        paths = collect_paths(_router(graph))
        assert sorted(format_path(p) for p in paths["drop"]) == [
            "[core:destination_port_filter allow=443] -> [core:family_splitter family=ipv6]",
            "[core:destination_port_filter exclude=443]",
        ]

    def test_direct_connection(self, graph: Graph) -> None:
        graph.connect(ref("source", "out"), ref("localhost", "in"))
        assert collect_paths(graph) == {"localhost": [[]]}
        assert format_path([]) == "(everything)"

    def test_empty_graph(self, graph: Graph) -> None:
        assert collect_paths(graph) == {"localhost": []}


class TestExplain:
    def test_sections(self, graph: Graph) -> None:
        artifact = GraphCompiler().compile(_router(graph))
        text = explain_graph(artifact)
        assert text.startswith("nfgraph export: apply.sh\n")
        assert "  Nodes:        4" in text
        assert "  1. [source] core:source, incoming" in text
        assert "[localhost] core:localhost, outgoing" in text
        assert "  nat.out -> localhost.in (outgoing)" in text
        assert "Warnings\n--------" not in text

    def test_deterministic(self, graph: Graph) -> None:
        _router(graph)
        compiler = GraphCompiler()
        assert explain_graph(compiler.compile(graph)) == explain_graph(compiler.compile(graph))

    def test_lists_warnings(self, chain_graph: Graph) -> None:
        chain_graph.add_node("core:drop", node_id="orphan")
        text = explain_graph(GraphCompiler().compile(chain_graph))
        assert "Warnings\n--------\n  [unreachable] Node 'orphan' excluded as unreachable" in text
