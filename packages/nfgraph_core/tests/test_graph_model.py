"""test_graph_model.py

Graph edits: nodes, connections, drags, copies and snapshots.

Every refused edit must leave the graph exactly as it was; the tests compare
snapshots before and after.
"""

from __future__ import annotations

import pytest

from conftest import PASS, SPLIT, make_test_bundle, ref
from nfgraph_core.api.errors import (
    CorruptGraph,
    DuplicateNode,
    ExtensionNotFound,
    GraphEditError,
    PermanentNodeRemoval,
    PortOccupied,
    SelfLoop,
    TypeMismatch,
    UnknownNode,
    UnknownPort,
    UnknownType,
)
from nfgraph_core.graph.extensions import ExtensionBundle, ExtensionLoader
from nfgraph_core.graph.graph_model import Connection, Graph
from nfgraph_core.graph.ir_types import PortKind
from nfgraph_core.graph.registry import default_registry


class TestNodes:
    def test_new_graph_has_permanent_nodes(self, graph: Graph) -> None:
        assert list(graph.nodes) == ["source", "localhost"]
        assert graph.connections == {}
        assert graph.extensions == set()

    def test_generated_ids(self, graph: Graph) -> None:
        ids = [graph.add_node(PASS).node_id for _ in range(3)]
        assert ids == ["node-0001", "node-0002", "node-0003"]

    def test_generated_ids_skip_taken(self, graph: Graph) -> None:
        graph.add_node(PASS, node_id="node-0001")
        assert graph.add_node(PASS).node_id == "node-0002"

    def test_node_ports_follow_schema(self, graph: Graph) -> None:
        node = graph.add_node(SPLIT)
        assert [p.name for p in node.ports] == ["in", "a", "b"]
        assert [p.name for p in node.inputs] == ["in"]
        assert [p.name for p in node.outputs] == ["a", "b"]
        assert node.schema is graph.registry.resolve(SPLIT)

    def test_params_and_position_kept(self, graph: Graph) -> None:
        node = graph.add_node(
            "core:source_port_filter", {"ports": "22"}, position=(10, 20.5)
        )
        assert node.params == {"ports": "22"}
        assert node.position == (10.0, 20.5)

    def test_extension_dependency_recorded(self, graph: Graph) -> None:
        graph.add_node("core:drop")
        assert graph.extensions == set()
        graph.add_node(PASS)
        assert graph.extensions == {"test"}

    def test_unknown_type(self, graph: Graph) -> None:
        with pytest.raises(UnknownType):
            graph.add_node("core:teleport")
        assert list(graph.nodes) == ["source", "localhost"]

    def test_duplicate_id(self, graph: Graph) -> None:
        graph.add_node(PASS, node_id="a")
        with pytest.raises(DuplicateNode):
            graph.add_node(PASS, node_id="a")

    @pytest.mark.parametrize("type_id", ["core:source", "core:localhost"])
    def test_second_permanent_node_refused(self, graph: Graph, type_id: str) -> None:
        with pytest.raises(DuplicateNode):
            graph.add_node(type_id)

    def test_invalid_id(self, graph: Graph) -> None:
        with pytest.raises(GraphEditError, match="Invalid node id"):
            graph.add_node(PASS, node_id="9 lives")

    @pytest.mark.parametrize("node_id", ["source", "localhost"])
    def test_permanent_nodes_cannot_be_removed(self, chain_graph: Graph, node_id: str) -> None:
        before = chain_graph.to_snapshot()
        with pytest.raises(PermanentNodeRemoval):
            chain_graph.remove_node(node_id)
        assert chain_graph.to_snapshot() == before

    def test_remove_drops_connections(self, chain_graph: Graph) -> None:
        chain_graph.remove_node("a")
        assert "a" not in chain_graph.nodes
        assert chain_graph.connections == {}

    def test_remove_unknown(self, graph: Graph) -> None:
        with pytest.raises(UnknownNode):
            graph.remove_node("ghost")


class TestConnect:
    def test_connect(self, graph: Graph) -> None:
        graph.add_node(PASS, node_id="a")
        conn = graph.connect(ref("source", "out"), ref("a", "in"))
        assert conn == Connection(ref("source", "out"), ref("a", "in"))
        assert graph.connections == {ref("source", "out"): ref("a", "in")}

    def test_input_accepts_many(self, graph: Graph) -> None:
        graph.add_node(SPLIT, node_id="s")
        graph.connect(ref("source", "out"), ref("s", "in"))
        graph.connect(ref("s", "a"), ref("localhost", "in"))
        graph.connect(ref("s", "b"), ref("localhost", "in"))
        assert [c.output.port for c in graph.incoming("localhost")] == ["a", "b"]

    def test_output_occupied_leaves_graph_unchanged(self, chain_graph: Graph) -> None:
        chain_graph.add_node(PASS, node_id="b")
        before = chain_graph.to_snapshot()
        with pytest.raises(PortOccupied):
            chain_graph.connect(ref("source", "out"), ref("b", "in"))
        assert chain_graph.to_snapshot() == before

    def test_reconnecting_same_pair_is_occupied(self, chain_graph: Graph) -> None:
        with pytest.raises(PortOccupied):
            chain_graph.connect(ref("a", "out"), ref("localhost", "in"))

    def test_self_loop(self, graph: Graph) -> None:
        graph.add_node(PASS, node_id="a")
        with pytest.raises(SelfLoop):
            graph.connect(ref("a", "out"), ref("a", "in"))
        assert graph.connections == {}

    @pytest.mark.parametrize(
        "output, input",
        [
            (("a", "in"), ("b", "in")),
            (("a", "out"), ("b", "out")),
            (("a", "in"), ("b", "out")),
        ],
        ids=["input-as-output", "output-as-input", "reversed"],
    )
    def test_wrong_orientation(self, graph: Graph, output, input) -> None:
        graph.add_node(PASS, node_id="a")
        graph.add_node(PASS, node_id="b")
        with pytest.raises(TypeMismatch):
            graph.connect(ref(*output), ref(*input))
        assert graph.connections == {}

    def test_family_mismatch(self, graph: Graph) -> None:
        bundle = ExtensionBundle.from_dict(
            {
                "id": "fam",
                "nodes": {
                    "v4only": {"display_name": "v4", "input": {"family": "ipv4"}},
                    "v6only": {"display_name": "v6", "input": {"family": "ipv6"}},
                },
            }
        )
        graph.registry.load_extension(bundle)
        graph.add_node("core:family_splitter", node_id="split")
        graph.add_node("fam:v4only", node_id="four")
        graph.add_node("fam:v6only", node_id="six")
        graph.connect(ref("split", "ipv4"), ref("four", "in"))
        with pytest.raises(TypeMismatch, match="family"):
            graph.connect(ref("split", "ipv6"), ref("four", "in"))
        graph.connect(ref("split", "ipv6"), ref("six", "in"))

    def test_flow_mismatch(self, graph: Graph) -> None:
        bundle = ExtensionBundle.from_dict(
            {
                "id": "dir",
                "nodes": {
                    "inbound": {
                        "display_name": "In",
                        "outputs": {"out": {"direction": "incoming"}},
                    },
                    "outbound": {
                        "display_name": "Out",
                        "input": {"direction": "outgoing"},
                    },
                },
            }
        )
        graph.registry.load_extension(bundle)
        graph.add_node("dir:inbound", node_id="i")
        graph.add_node("dir:outbound", node_id="o")
        with pytest.raises(TypeMismatch, match="Flow direction"):
            graph.connect(ref("i", "out"), ref("o", "in"))

    def test_unknown_port(self, graph: Graph) -> None:
        graph.add_node(PASS, node_id="a")
        with pytest.raises(UnknownPort):
            graph.connect(ref("a", "sideways"), ref("localhost", "in"))
        with pytest.raises(UnknownNode):
            graph.connect(ref("ghost", "out"), ref("localhost", "in"))

    def test_disconnect(self, chain_graph: Graph) -> None:
        removed = chain_graph.disconnect(ref("a", "out"))
        assert removed == Connection(ref("a", "out"), ref("localhost", "in"))
        assert chain_graph.disconnect(ref("a", "out")) is None
        assert chain_graph.disconnect(ref("ghost", "out")) is None

    def test_queries(self, graph: Graph) -> None:
        graph.add_node(SPLIT, node_id="s")
        graph.add_node(PASS, node_id="x")
        graph.connect(ref("source", "out"), ref("s", "in"))
        graph.connect(ref("s", "b"), ref("x", "in"))
        graph.connect(ref("s", "a"), ref("localhost", "in"))
        assert graph.successors("s") == ["localhost", "x"]
        assert graph.predecessors("s") == ["source"]
        assert [str(c) for c in graph.outgoing("s")] == [
            "s.a -> localhost.in",
            "s.b -> x.in",
        ]


class TestDrag:
    def test_drag_from_output_severs_connection(self, chain_graph: Graph) -> None:
        state = chain_graph.begin_drag(ref("a", "out"))
        assert state.kind == PortKind.output
        assert state.severed == Connection(ref("a", "out"), ref("localhost", "in"))
        assert ref("a", "out") not in chain_graph.connections

    def test_drag_from_output_reconnects(self, chain_graph: Graph) -> None:
        chain_graph.add_node("core:drop", node_id="d")
        state = chain_graph.begin_drag(ref("a", "out"))
        conn = chain_graph.end_drag(state, ref("d", "in"))
        assert conn == Connection(ref("a", "out"), ref("d", "in"))

    def test_drag_from_input_does_not_change_graph(self, chain_graph: Graph) -> None:
        before = chain_graph.to_snapshot()
        state = chain_graph.begin_drag(ref("a", "in"))
        assert state.kind == PortKind.input
        assert state.severed is None
        assert chain_graph.to_snapshot() == before

    def test_drag_from_input_to_free_output(self, graph: Graph) -> None:
        graph.add_node(PASS, node_id="a")
        state = graph.begin_drag(ref("a", "in"))
        conn = graph.end_drag(state, ref("source", "out"))
        assert conn == Connection(ref("source", "out"), ref("a", "in"))

    def test_drag_from_input_to_occupied_output_rejected(self, chain_graph: Graph) -> None:
        chain_graph.add_node(PASS, node_id="b")
        before = chain_graph.to_snapshot()
        state = chain_graph.begin_drag(ref("b", "in"))
        assert chain_graph.end_drag(state, ref("source", "out")) is None
        assert chain_graph.to_snapshot() == before

    def test_drag_self_loop_propagates(self, graph: Graph) -> None:
        graph.add_node(PASS, node_id="a")
        state = graph.begin_drag(ref("a", "out"))
        with pytest.raises(SelfLoop):
            graph.end_drag(state, ref("a", "in"))


class TestCopy:
    def test_copy_is_independent(self, chain_graph: Graph) -> None:
        other = chain_graph.copy()
        other.remove_node("a")
        other.metadata["x"] = 1
        assert "a" in chain_graph.nodes
        assert chain_graph.connections
        assert chain_graph.metadata == {}

    def test_copy_shares_schema(self, chain_graph: Graph) -> None:
        other = chain_graph.copy()
        assert other.node("a").schema is chain_graph.node("a").schema
        assert other.to_snapshot() == chain_graph.to_snapshot()


class TestSnapshot:
    def test_round_trip(self, chain_graph: Graph) -> None:
        chain_graph.add_node("core:drop", node_id="orphan", position=(5, 6))
        chain_graph.metadata["zoom"] = 2
        snapshot = chain_graph.to_snapshot()
        rebuilt = Graph.from_snapshot(snapshot, chain_graph.registry)
        assert rebuilt.to_snapshot() == snapshot
        assert "orphan" in rebuilt.nodes

    def test_from_dict(self, registry) -> None:
        graph = Graph.from_snapshot(
            {
                "nodes": [
                    {"id": "source", "type": "core:source"},
                    {"id": "localhost", "type": "core:localhost"},
                ],
                "connections": [
                    {
                        "output": {"node": "source", "port": "out"},
                        "input": {"node": "localhost", "port": "in"},
                    }
                ],
            },
            registry,
        )
        assert graph.successors("source") == ["localhost"]

    def test_generated_ids_continue_after_load(self, chain_graph: Graph) -> None:
        chain_graph.add_node(PASS)
        rebuilt = Graph.from_snapshot(chain_graph.to_snapshot(), chain_graph.registry)
        assert rebuilt.add_node(PASS).node_id == "node-0002"

    @pytest.mark.parametrize(
        "mutate, match",
        [
            (lambda d: (d["nodes"].pop(0), d["connections"].clear()), "lacks permanent"),
            (lambda d: d["nodes"].append(dict(d["nodes"][2])), "Duplicate node id"),
            (lambda d: d["connections"][0]["input"].update(node="ghost"), "unknown node"),
            (lambda d: d["connections"][0]["input"].update(port="nope"), "has no port"),
            (lambda d: d["connections"].append(dict(d["connections"][0])), "more than one"),
            (
                lambda d: d["connections"].__setitem__(
                    1, {"output": {"node": "a", "port": "out"}, "input": {"node": "a", "port": "in"}}
                ),
                "itself",
            ),
            (
                lambda d: d["connections"].append(
                    {"output": {"node": "a", "port": "in"}, "input": {"node": "localhost", "port": "in"}}
                ),
                "output to an input",
            ),
            (lambda d: d["nodes"][0].update(type="core:drop"), "must have type"),
            (lambda d: d["nodes"].append({"id": "s2", "type": "core:source"}), "permanent type"),
            (lambda d: d.update(surprise=True), "invalid|Invalid"),
        ],
        ids=[
            "no-source",
            "duplicate-node",
            "missing-node",
            "missing-port",
            "two-from-one-output",
            "self-loop",
            "wrong-orientation",
            "permanent-wrong-type",
            "second-source",
            "extra-field",
        ],
    )
    def test_corrupt_snapshots(self, chain_graph: Graph, mutate, match) -> None:
        data = chain_graph.to_snapshot().model_dump(mode="json")
        mutate(data)
        with pytest.raises(CorruptGraph, match=match):
            Graph.from_snapshot(data, chain_graph.registry)

    def test_unknown_type_on_load(self, chain_graph: Graph) -> None:
        data = chain_graph.to_snapshot().model_dump(mode="json")
        data["nodes"][2]["type"] = "core:teleport"
        with pytest.raises(UnknownType):
            Graph.from_snapshot(data, chain_graph.registry)

    def test_missing_extension(self, chain_graph: Graph) -> None:
        snapshot = chain_graph.to_snapshot()
        with pytest.raises(ExtensionNotFound, match="test"):
            Graph.from_snapshot(snapshot, default_registry())

    def test_extension_loaded_through_loader(self, extension_dir, registry) -> None:
        data = {
            "nodes": [
                {"id": "source", "type": "core:source"},
                {"id": "localhost", "type": "core:localhost"},
                {"id": "geo", "type": "geoip:country", "params": {"code": "fr"}},
            ],
            "extensions": ["geoip"],
        }
        graph = Graph.from_snapshot(data, registry, loader=ExtensionLoader([extension_dir]))
        assert registry.has_extension("geoip")
        assert graph.node("geo").type_id == "geoip:country"
        assert graph.extensions == {"geoip"}

    def test_declared_extension_already_loaded(self, chain_graph: Graph) -> None:
        registry = default_registry()
        registry.load_extension(make_test_bundle())
        rebuilt = Graph.from_snapshot(chain_graph.to_snapshot(), registry)
        assert rebuilt.extensions == {"test"}
