"""nfgraph_core.graph.coloring
=============================

Flow colouring: tag every port ``incoming`` or ``outgoing``.

Two fronts are flooded breadth-first, one round at a time:

* ``incoming`` starts at the outputs of ``source`` and moves downstream
  (output -> connected input, input -> every output of the same node);
* ``outgoing`` starts at the inputs of ``localhost`` and moves upstream
  (input -> every output connected to it, output -> every input of the
  same node).

The first colour to reach a port wins and is never overwritten. A port
reached by a colour its declared flow forbids is a conflict: it stays
uncoloured and stops both fronts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Set

from nfgraph_core.graph.diagnostics import Diagnostic, DiagnosticKind
from nfgraph_core.graph.graph_model import Connection, Graph
from nfgraph_core.graph.ir_types import (
    LOCALHOST_ID,
    SOURCE_ID,
    FlowColor,
    PortKind,
    PortRef,
)

logger = logging.getLogger(__name__)


@dataclass
class Coloring:
    """Port colours of one graph.

    Attributes
    ----------
    colors : dict[PortRef, FlowColor]
        Every successfully coloured port.
    conflicts : set[PortRef]
        Ports where colouring failed.
    diagnostics : list[Diagnostic]
        One ``color_conflict`` entry per conflicted port.
    """

    graph: Graph = field(repr=False)
    colors: Dict[PortRef, FlowColor] = field(default_factory=dict)
    conflicts: Set[PortRef] = field(default_factory=set)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    def color_of(self, ref: PortRef) -> FlowColor:
        if ref in self.conflicts:
            return FlowColor.unset
        return self.colors.get(ref, FlowColor.unset)

    def connection_color(self, conn: Connection) -> FlowColor:
        return self.color_of(conn.output)

    def node_flow(self, node_id: str) -> FlowColor:
        """Flow class used for export ordering; never ``unset``."""
        node = self.graph.node(node_id)
        ports = node.inputs or node.outputs
        if not ports:
            return FlowColor.incoming
        color = self.color_of(ports[0].ref)
        if color == FlowColor.unset:
            return FlowColor.incoming
        return color


def _downstream(graph: Graph, ref: PortRef) -> List[PortRef]:
    if graph.port(ref).kind == PortKind.output:
        target = graph.connections.get(ref)
        return [] if target is None else [target]
    return [p.ref for p in graph.node(ref.node).outputs]


def _upstream(graph: Graph, ref: PortRef) -> List[PortRef]:
    if graph.port(ref).kind == PortKind.input:
        return [out for out, inp in graph.connections.items() if inp == ref]
    return [p.ref for p in graph.node(ref.node).inputs]


def color_graph(graph: Graph) -> Coloring:
    """Colour every port of ``graph`` reachable from a permanent node."""
    coloring = Coloring(graph=graph)
    fronts: Dict[FlowColor, List[PortRef]] = {
        FlowColor.incoming: [p.ref for p in graph.node(SOURCE_ID).outputs],
        FlowColor.outgoing: [p.ref for p in graph.node(LOCALHOST_ID).inputs],
    }

    while fronts[FlowColor.incoming] or fronts[FlowColor.outgoing]:
        # The fronts sit on opposite port kinds in every round, so no port
        # arrives in both.
        arrivals: Dict[PortRef, FlowColor] = {}
        for color, refs in fronts.items():
            for ref in refs:
                arrivals[ref] = color

        fronts = {FlowColor.incoming: [], FlowColor.outgoing: []}
        for ref in sorted(arrivals, key=lambda r: r.sort_key):
            if ref in coloring.colors or ref in coloring.conflicts:
                continue
            color = arrivals[ref]
            declared = graph.port(ref).flow
            if declared != FlowColor.unset and declared != color:
                _conflict(
                    coloring,
                    ref,
                    f"declared {declared.value} but reached by {color.value} flow",
                )
                continue
            coloring.colors[ref] = color
            if color == FlowColor.incoming:
                fronts[color].extend(_downstream(graph, ref))
            else:
                fronts[color].extend(_upstream(graph, ref))

    for diag in coloring.diagnostics:
        logger.warning(str(diag))
    return coloring


def _conflict(coloring: Coloring, ref: PortRef, why: str) -> None:
    coloring.conflicts.add(ref)
    coloring.diagnostics.append(
        Diagnostic(
            kind=DiagnosticKind.color_conflict,
            message=f"Port {ref} {why}",
            node_id=ref.node,
            port=ref.port,
        )
    )
