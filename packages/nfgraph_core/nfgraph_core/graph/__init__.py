"""nfgraph_core.graph -- node graph model and nft compiler.

A packet filtering setup is a directed graph of typed nodes. Packets enter
at ``source``, are split by filter nodes and leave at ``localhost`` or a
terminal node. The graph compiles to a shell script driving ``nft``.

Modules
-------
ir_types        PortKind, AddressFamily, FlowColor, PortRef, PortDef, ParamDef
node_types      NodeTypeSchema protocol, BaseNodeType, Fragment, EmitContext
builtins        Built-in node types (core:*)
registry        NodeTypeRegistry: type_id -> node type
extensions      Extension bundle format and loader
graph_spec      GraphSnapshot Pydantic models
graph_model     Graph: nodes, connections, edits, drags
normalize       Reachable, acyclic copy of a graph
coloring        incoming / outgoing flow colouring
compiler        GraphCompiler: normalize -> colour -> order -> emit
paths           Predicate chains of every packet path
introspection   Deterministic text explanation of an export
"""

from nfgraph_core.graph.ir_types import (
    AddressFamily,
    FlowColor,
    ParamDef,
    PortDef,
    PortKind,
    PortRef,
)
from nfgraph_core.graph.node_types import (
    BaseNodeType,
    EmitContext,
    Fragment,
    NodeTypeSchema,
    Predicate,
)
from nfgraph_core.graph.diagnostics import Diagnostic, DiagnosticKind
from nfgraph_core.graph.registry import NodeTypeRegistry, default_registry
from nfgraph_core.graph.extensions import (
    ExtensionBundle,
    ExtensionLoader,
    load_extension_file,
)
from nfgraph_core.graph.graph_spec import ConnectionSpec, GraphSnapshot, NodeSpec
from nfgraph_core.graph.graph_model import Connection, DragState, Graph, Node, Port
from nfgraph_core.graph.normalize import NormalizationResult, normalize
from nfgraph_core.graph.coloring import Coloring, color_graph
from nfgraph_core.graph.compiler import ExportArtifact, GraphCompiler
from nfgraph_core.graph.paths import collect_paths
from nfgraph_core.graph.introspection import explain_graph

__all__ = [
    "AddressFamily",
    "FlowColor",
    "ParamDef",
    "PortDef",
    "PortKind",
    "PortRef",
    "BaseNodeType",
    "EmitContext",
    "Fragment",
    "NodeTypeSchema",
    "Predicate",
    "Diagnostic",
    "DiagnosticKind",
    "NodeTypeRegistry",
    "default_registry",
    "ExtensionBundle",
    "ExtensionLoader",
    "load_extension_file",
    "ConnectionSpec",
    "GraphSnapshot",
    "NodeSpec",
    "Connection",
    "DragState",
    "Graph",
    "Node",
    "Port",
    "NormalizationResult",
    "normalize",
    "Coloring",
    "color_graph",
    "ExportArtifact",
    "GraphCompiler",
    "collect_paths",
    "explain_graph",
]
