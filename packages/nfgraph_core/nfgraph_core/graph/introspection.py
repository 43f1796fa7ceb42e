"""nfgraph_core.graph.introspection
==================================

Deterministic text explanation of a compiled graph.

Functions
---------
explain_graph   Multi-line summary of an ExportArtifact.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from nfgraph_core.graph.ir_types import PERMANENT_NODE_IDS

if TYPE_CHECKING:
    from nfgraph_core.graph.compiler import ExportArtifact


def explain_graph(artifact: "ExportArtifact") -> str:
    """Return a deterministic text explanation of a compiled graph.

    Includes:
    * Node and data file counts.
    * Emission order with each node's type and flow class.
    * Connections of the normalized graph, with their colour.
    * Every diagnostic.
    """
    dag = artifact.normalization.graph if artifact.normalization else None
    coloring = artifact.coloring

    lines: list[str] = []
    lines.append(f"nfgraph export: {artifact.entry_point}")
    lines.append("=" * (len(lines[0])))
    lines.append("")

    lines.append("Summary")
    lines.append("-------")
    lines.append(f"  Nodes:        {len(artifact.order) - len(PERMANENT_NODE_IDS)}")
    lines.append(f"  Data files:   {len(artifact.files)}")
    lines.append(f"  Warnings:     {len(artifact.diagnostics)}")
    lines.append("")

    lines.append("Emission order")
    lines.append("--------------")
    for i, node_id in enumerate(artifact.order):
        type_id = dag.node(node_id).type_id if dag else "?"
        flow = artifact.flows.get(node_id)
        flow_tag = f", {flow.value}" if flow is not None else ""
        lines.append(f"  {i + 1}. [{node_id}] {type_id}{flow_tag}")
    lines.append("")

    if dag is not None and dag.connections:
        lines.append("Connections")
        lines.append("-----------")
        for conn in sorted(dag.connection_list(), key=lambda c: c.sort_key):
            color = coloring.connection_color(conn).value if coloring else "unset"
            lines.append(f"  {conn} ({color})")
        lines.append("")

    if artifact.files:
        lines.append("Data files")
        lines.append("----------")
        for rel in artifact.files:
            lines.append(f"  {rel}")
        lines.append("")

    if artifact.diagnostics:
        lines.append("Warnings")
        lines.append("--------")
        for diag in artifact.diagnostics:
            lines.append(f"  {diag}")
        lines.append("")

    return "\n".join(lines)
