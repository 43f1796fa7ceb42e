"""Shared pytest fixtures for nfgraph_core tests."""

from __future__ import annotations

import random
from pathlib import Path

import pytest

from nfgraph_core.api.errors import GraphEditError
from nfgraph_core.graph.extensions import ExtensionBundle
from nfgraph_core.graph.graph_model import Graph
from nfgraph_core.graph.ir_types import PortRef, input_port, output_port
from nfgraph_core.graph.node_types import (
    BaseNodeType,
    EmitContext,
    Fragment,
    connection_from,
)
from nfgraph_core.graph.registry import NodeTypeRegistry, default_registry

CONTRIB = Path(__file__).resolve().parent.parent / "contrib"
EXTENSIONS = CONTRIB / "extensions"
GRAPHS = CONTRIB / "graphs"

PASS = "test:pass"
SPLIT = "test:split"
GEOIP_BUNDLE = """\
id: geoip
nodes:
  country:
    display_name: Country Filter
    params: {code: Country code}
    outputs:
      match: {rule: "ip saddr @geo_${code}"}
      non-match: {}
    setup:
      - "${NFT} add set ${TABLE} geo_${code} '{ type ipv4_addr; flags interval; }'"
    files:
      zone.txt: "# ${code}\\n"
"""


def ref(node: str, port: str) -> PortRef:
    return PortRef(node=node, port=port)


class PassthroughNode(BaseNodeType):
    """One input, one output; emits a single marker rule."""

    type_id = PASS
    display_name = "Passthrough"
    _ports = (input_port(), output_port("out"))

    def emit(self, node, incoming, outgoing, ctx: EmitContext) -> Fragment:
        verdict = ctx.verdict(connection_from(outgoing, "out"))
        return Fragment(script=f"# pass {node.node_id}\n" + ctx.rule(ctx.chain(node.node_id), verdict))


class SplitNode(BaseNodeType):
    """One input, outputs ``a`` and ``b`` in that order."""

    type_id = SPLIT
    display_name = "Split"
    _ports = (input_port(), output_port("a"), output_port("b"))

    def emit(self, node, incoming, outgoing, ctx: EmitContext) -> Fragment:
        return Fragment(script=f"# split {node.node_id}")


def make_test_bundle() -> ExtensionBundle:
    return ExtensionBundle.from_types("test", [PassthroughNode(), SplitNode()])


def random_graph(graph: Graph, seed: int) -> Graph:
    """Random edits over passthrough and split nodes; cycles allowed."""
    rng = random.Random(seed)
    ids = [graph.add_node(rng.choice([PASS, SPLIT])).node_id for _ in range(8)]
    outputs = [p.ref for nid in ["source"] + ids for p in graph.node(nid).outputs]
    inputs = [p.ref for nid in ids + ["localhost"] for p in graph.node(nid).inputs]
    for out in outputs:
        if rng.random() < 0.8:
            try:
                graph.connect(out, rng.choice(inputs))
            except GraphEditError:
                pass
    return graph


@pytest.fixture
def registry() -> NodeTypeRegistry:
    reg = default_registry()
    reg.load_extension(make_test_bundle())
    return reg


@pytest.fixture
def graph(registry) -> Graph:
    return Graph.new(registry)


@pytest.fixture
def chain_graph(graph) -> Graph:
    """source -> a -> localhost, with ``a`` a passthrough."""
    graph.add_node(PASS, node_id="a")
    graph.connect(ref("source", "out"), ref("a", "in"))
    graph.connect(ref("a", "out"), ref("localhost", "in"))
    return graph


@pytest.fixture
def extension_dir(tmp_path) -> Path:
    directory = tmp_path / "extensions"
    directory.mkdir()
    (directory / "geoip.yaml").write_text(GEOIP_BUNDLE, encoding="utf-8")
    return directory
