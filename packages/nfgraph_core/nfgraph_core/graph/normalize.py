"""nfgraph_core.graph.normalize
==============================

Reduce an edited graph to the reachable, acyclic subgraph used for export.

Pipeline
--------
1. **Reachability:** breadth-first from ``source``. Nodes never reached are
   dropped from the copy together with their connections. The permanent
   nodes always stay.
2. **Cycle breaking:** depth-first from ``source`` with an on-stack set.
   Successors are visited in the schema's output port order; a connection
   reaching a node on the current path closes a cycle and is removed.

The input graph is never modified. Normalizing an already normalized graph
changes nothing.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Iterator, List, Set, Tuple

from nfgraph_core.graph.diagnostics import Diagnostic, DiagnosticKind
from nfgraph_core.graph.graph_model import Connection, Graph
from nfgraph_core.graph.ir_types import PERMANENT_NODE_IDS, SOURCE_ID

logger = logging.getLogger(__name__)


@dataclass
class NormalizationResult:
    """Outcome of ``normalize``.

    Attributes
    ----------
    graph : Graph
        Reachable, acyclic copy of the input.
    unreachable : list[str]
        Ids of the nodes that were dropped, in the input graph's order.
    removed_connections : list[Connection]
        Back edges removed to break cycles, in discovery order.
    diagnostics : list[Diagnostic]
        One entry per dropped node and per removed connection.
    """

    graph: Graph
    unreachable: List[str] = field(default_factory=list)
    removed_connections: List[Connection] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)


def reachable_nodes(graph: Graph) -> Set[str]:
    """Ids of every node reachable from ``source``."""
    seen = {SOURCE_ID}
    queue: deque[str] = deque([SOURCE_ID])
    while queue:
        node_id = queue.popleft()
        for succ in graph.successors(node_id):
            if succ not in seen:
                seen.add(succ)
                queue.append(succ)
    return seen


def _drop_unreachable(graph: Graph, result: NormalizationResult) -> None:
    reached = reachable_nodes(graph)
    for node_id in list(graph.nodes):
        if node_id in reached or node_id in PERMANENT_NODE_IDS:
            continue
        graph.remove_node(node_id)
        result.unreachable.append(node_id)
        result.diagnostics.append(
            Diagnostic(
                kind=DiagnosticKind.unreachable,
                message=f"Node '{node_id}' excluded as unreachable",
                node_id=node_id,
            )
        )


def _break_cycles(graph: Graph, result: NormalizationResult) -> None:
    visited = {SOURCE_ID}
    on_stack = {SOURCE_ID}
    stack: List[Tuple[str, Iterator[Connection]]] = [
        (SOURCE_ID, iter(graph.outgoing(SOURCE_ID)))
    ]
    while stack:
        node_id, pending = stack[-1]
        conn = next(pending, None)
        if conn is None:
            stack.pop()
            on_stack.discard(node_id)
            continue
        target = conn.input.node
        if target in on_stack:
            graph.disconnect(conn.output)
            result.removed_connections.append(conn)
            result.diagnostics.append(
                Diagnostic(
                    kind=DiagnosticKind.cycle_broken,
                    message=f"Connection {conn} closes a cycle and was removed",
                    node_id=conn.output.node,
                    port=conn.output.port,
                )
            )
        elif target not in visited:
            visited.add(target)
            on_stack.add(target)
            stack.append((target, iter(graph.outgoing(target))))


def normalize(graph: Graph) -> NormalizationResult:
    """Reachable, acyclic copy of ``graph``; never raises for graph content."""
    result = NormalizationResult(graph=graph.copy())
    _drop_unreachable(result.graph, result)
    _break_cycles(result.graph, result)
    for diag in result.diagnostics:
        logger.warning(str(diag))
    return result
