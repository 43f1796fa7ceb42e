"""nfgraph_core.graph.graph_spec
================================

Pydantic v2 models for the serialized graph snapshot exchanged with the
editor.

Classes
-------
NodeSpec         One node: id, type, params, position
ConnectionSpec   Output port -> input port
GraphSnapshot    Complete document (nodes, connections, extensions, metadata)

The models only check document shape and intra-document references. Port
existence and orientation depend on the node types and are checked by
``Graph.from_snapshot`` against a registry.
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from pydantic import Field, model_validator

from nfgraph_core.graph.ir_types import PortRef, StrictBaseModel

SNAPSHOT_VERSION = 1


class NodeSpec(StrictBaseModel):
    """One node of the snapshot.

    Attributes
    ----------
    id : str
        Stable node identifier, unique within the graph.
    type : str
        Node type id (``core:source_port_filter``, ``geoip:country`` ...).
    params : dict
        Type specific parameter values.
    position : tuple[float, float]
        Editor position; carried through unchanged.
    """

    id: str = Field(pattern=r"^[A-Za-z][A-Za-z0-9_-]*$")
    type: str
    params: Dict[str, Any] = Field(default_factory=dict)
    position: Tuple[float, float] = (0.0, 0.0)


class ConnectionSpec(StrictBaseModel):
    """Directed connection from an output port to an input port."""

    output: PortRef
    input: PortRef


class GraphSnapshot(StrictBaseModel):
    """Serialized graph.

    Attributes
    ----------
    version : int
        Snapshot format version.
    nodes : list[NodeSpec]
        Every node, reachable or not.
    connections : list[ConnectionSpec]
        Every connection.
    extensions : list[str]
        Extension ids whose node types the graph uses.
    metadata : dict
        Editor data the core does not interpret.
    """

    version: int = SNAPSHOT_VERSION
    nodes: List[NodeSpec]
    connections: List[ConnectionSpec] = Field(default_factory=list)
    extensions: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_unique_node_ids(self) -> "GraphSnapshot":
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"Duplicate node id: '{node.id}'")
            seen.add(node.id)
        return self

    @model_validator(mode="after")
    def _check_connections_reference_existing_nodes(self) -> "GraphSnapshot":
        node_ids = {n.id for n in self.nodes}
        for conn in self.connections:
            for ref in (conn.output, conn.input):
                if ref.node not in node_ids:
                    raise ValueError(
                        f"Connection endpoint '{ref}' references unknown node "
                        f"'{ref.node}'. Available: {sorted(node_ids)}"
                    )
        return self

    @model_validator(mode="after")
    def _check_single_connection_per_output(self) -> "GraphSnapshot":
        seen: set[PortRef] = set()
        for conn in self.connections:
            if conn.output in seen:
                raise ValueError(f"Output port '{conn.output}' has more than one connection")
            seen.add(conn.output)
        return self
