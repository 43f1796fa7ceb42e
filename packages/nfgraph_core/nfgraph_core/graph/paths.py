"""nfgraph_core.graph.paths
==========================

Enumerate the packet paths of a graph.

Every path from ``source`` to a terminal node (a node without output
ports) is described by the predicates of the output ports it leaves through,
e.g. ``[allow 10.0.0.0/8] -> [family ipv4]``. Paths are collected on the
normalized graph, in compile order.
"""

from __future__ import annotations

from typing import Dict, List

from nfgraph_core.graph.coloring import color_graph
from nfgraph_core.graph.compiler import GraphCompiler
from nfgraph_core.graph.graph_model import Graph
from nfgraph_core.graph.node_types import Predicate
from nfgraph_core.graph.normalize import normalize

PredicateChain = List[Predicate]


def collect_paths(graph: Graph) -> Dict[str, List[PredicateChain]]:
    """Terminal node id -> every predicate chain that reaches it.

    Terminals appear in compile order; ``localhost`` is always present,
    possibly with no paths.
    """
    dag = normalize(graph).graph
    order = GraphCompiler.order(dag, color_graph(dag))

    reaching: Dict[str, List[PredicateChain]] = {nid: [] for nid in order}
    reaching[order[0]] = [[]]
    for node_id in order:
        node = dag.node(node_id)
        for conn in dag.outgoing(node_id):
            pred = node.schema.predicate(node, conn.output.port)
            step = [] if pred is None or node.is_permanent else [pred]
            reaching[conn.input.node].extend(path + step for path in reaching[node_id])

    return {
        nid: reaching[nid]
        for nid in order
        if not dag.node(nid).outputs
    }


def format_path(path: PredicateChain) -> str:
    if not path:
        return "(everything)"
    parts = []
    for pred in path:
        params = ", ".join(f"{k}={v}" for k, v in sorted(pred.params.items()))
        parts.append(f"[{pred.variant} {params}]" if params else f"[{pred.variant}]")
    return " -> ".join(parts)
