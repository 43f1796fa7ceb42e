"""nfgraph_core.graph.graph_model
=================================

In-memory node graph.

Nodes and connections live in id-keyed tables (``nodes`` by node id,
``connections`` by output port) and refer to each other only by id, so
cycles and deletions need no special handling. Every mutating method either
succeeds completely or raises a ``GraphEditError`` subclass and leaves the
graph as it was.

Classes
-------
Port          A port instance on a node
Node          A typed node
Connection    Output port -> input port
DragState     An editor drag in progress
Graph         The graph itself
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple, Union

from pydantic import ValidationError

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
)
from nfgraph_core.graph.builtins import LOCALHOST_TYPE, SOURCE_TYPE
from nfgraph_core.graph.graph_spec import ConnectionSpec, GraphSnapshot, NodeSpec
from nfgraph_core.graph.ir_types import (
    DEFAULT_POSITION,
    LOCALHOST_ID,
    PERMANENT_NODE_IDS,
    SOURCE_ID,
    AddressFamily,
    FlowColor,
    PortDef,
    PortKind,
    PortRef,
    Position,
    families_compatible,
    flows_compatible,
)
from nfgraph_core.graph.node_types import NodeTypeSchema
from nfgraph_core.graph.registry import NodeTypeRegistry

logger = logging.getLogger(__name__)

_NODE_ID_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")
_PERMANENT_TYPES = {SOURCE_ID: SOURCE_TYPE, LOCALHOST_ID: LOCALHOST_TYPE}


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Port:
    node_id: str
    definition: PortDef

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def kind(self) -> PortKind:
        return self.definition.kind

    @property
    def family(self) -> AddressFamily:
        return self.definition.family

    @property
    def flow(self) -> FlowColor:
        return self.definition.flow

    @property
    def ref(self) -> PortRef:
        return PortRef(node=self.node_id, port=self.name)


@dataclass(frozen=True)
class Connection:
    output: PortRef
    input: PortRef

    @property
    def sort_key(self) -> Tuple[str, str, str, str]:
        return self.output.sort_key + self.input.sort_key

    def __str__(self) -> str:
        return f"{self.output} -> {self.input}"


@dataclass
class Node:
    """A node; its ports come from the schema it references."""

    node_id: str
    type_id: str
    schema: NodeTypeSchema = field(repr=False, compare=False)
    params: Dict[str, Any] = field(default_factory=dict)
    position: Position = DEFAULT_POSITION

    @property
    def ports(self) -> List[Port]:
        return [Port(self.node_id, pdef) for pdef in self.schema.ports()]

    @property
    def inputs(self) -> List[Port]:
        return [p for p in self.ports if p.kind == PortKind.input]

    @property
    def outputs(self) -> List[Port]:
        return [p for p in self.ports if p.kind == PortKind.output]

    def port(self, name: str) -> Optional[Port]:
        for p in self.ports:
            if p.name == name:
                return p
        return None

    @property
    def is_permanent(self) -> bool:
        return self.node_id in PERMANENT_NODE_IDS


@dataclass(frozen=True)
class DragState:
    origin: PortRef
    kind: PortKind
    severed: Optional[Connection] = None


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


class Graph:
    """Node graph bound to a node type registry.

    Attributes
    ----------
    registry : NodeTypeRegistry
        Where node types are resolved.
    nodes : dict[str, Node]
        Nodes by id, in insertion order.
    connections : dict[PortRef, PortRef]
        Output port -> input port, in insertion order.
    extensions : set[str]
        Extension ids the graph depends on.
    metadata : dict
        Editor data carried through snapshots unchanged.
    """

    def __init__(self, registry: NodeTypeRegistry) -> None:
        self.registry = registry
        self.nodes: Dict[str, Node] = {}
        self.connections: Dict[PortRef, PortRef] = {}
        self.extensions: Set[str] = set()
        self.metadata: Dict[str, Any] = {}
        self._next_id = 1

    @classmethod
    def new(cls, registry: NodeTypeRegistry) -> "Graph":
        """Empty graph holding only the two permanent nodes."""
        graph = cls(registry)
        graph._insert(SOURCE_ID, SOURCE_TYPE, {}, DEFAULT_POSITION)
        graph._insert(LOCALHOST_ID, LOCALHOST_TYPE, {}, DEFAULT_POSITION)
        return graph

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def node(self, node_id: str) -> Node:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise UnknownNode(f"Unknown node '{node_id}'") from None

    def port(self, ref: PortRef) -> Port:
        port = self.node(ref.node).port(ref.port)
        if port is None:
            raise UnknownPort(f"Node '{ref.node}' has no port '{ref.port}'")
        return port

    def connection_list(self) -> List[Connection]:
        return [Connection(out, inp) for out, inp in self.connections.items()]

    def outgoing(self, node_id: str) -> List[Connection]:
        """Connections leaving ``node_id``, in the schema's port order."""
        result = []
        for port in self.node(node_id).outputs:
            target = self.connections.get(port.ref)
            if target is not None:
                result.append(Connection(port.ref, target))
        return result

    def incoming(self, node_id: str) -> List[Connection]:
        """Connections entering ``node_id``, by input port order then sender."""
        order = {p.name: i for i, p in enumerate(self.node(node_id).inputs)}
        result = [
            Connection(out, inp)
            for out, inp in self.connections.items()
            if inp.node == node_id
        ]
        result.sort(key=lambda c: (order.get(c.input.port, len(order)), c.output.sort_key))
        return result

    def successors(self, node_id: str) -> List[str]:
        return [c.input.node for c in self.outgoing(node_id)]

    def predecessors(self, node_id: str) -> List[str]:
        return [c.output.node for c in self.incoming(node_id)]

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def _insert(
        self, node_id: str, type_id: str, params: Mapping[str, Any], position: Position
    ) -> Node:
        schema = self.registry.resolve(type_id)
        node = Node(
            node_id=node_id,
            type_id=type_id,
            schema=schema,
            params=dict(params),
            position=(float(position[0]), float(position[1])),
        )
        self.nodes[node_id] = node
        if schema.extension_id is not None:
            self.extensions.add(schema.extension_id)
        return node

    def _generate_id(self) -> str:
        while True:
            candidate = f"node-{self._next_id:04d}"
            self._next_id += 1
            if candidate not in self.nodes:
                return candidate

    def add_node(
        self,
        type_id: str,
        params: Optional[Mapping[str, Any]] = None,
        position: Position = DEFAULT_POSITION,
        node_id: Optional[str] = None,
    ) -> Node:
        """Add a node of ``type_id``; its id is generated unless given.

        Raises UnknownType for an unregistered type, DuplicateNode for a
        taken id or a second instance of a permanent node type.
        """
        if type_id in _PERMANENT_TYPES.values():
            raise DuplicateNode(f"'{type_id}' exists once per graph and cannot be added")
        if node_id is None:
            node_id = self._generate_id()
        elif node_id in self.nodes:
            raise DuplicateNode(f"Node id '{node_id}' is already in use")
        elif not _NODE_ID_RE.match(node_id):
            raise GraphEditError(f"Invalid node id '{node_id}'")
        node = self._insert(node_id, type_id, params or {}, position)
        logger.debug(f"Added node {node_id} ({type_id})")
        return node

    def remove_node(self, node_id: str) -> Node:
        """Remove a node and every connection touching it."""
        node = self.node(node_id)
        if node.is_permanent:
            raise PermanentNodeRemoval(f"Node '{node_id}' is permanent and cannot be removed")
        self.connections = {
            out: inp
            for out, inp in self.connections.items()
            if out.node != node_id and inp.node != node_id
        }
        del self.nodes[node_id]
        return node

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def connect(self, output: PortRef, input: PortRef) -> Connection:
        """Connect an output port to an input port.

        Raises
        ------
        UnknownNode / UnknownPort
            If either endpoint does not exist.
        SelfLoop
            If both ports belong to the same node.
        TypeMismatch
            If the orientation is wrong, or the address families or declared
            flow directions are incompatible.
        PortOccupied
            If the output port already has a connection.
        """
        out_port = self.port(output)
        in_port = self.port(input)
        if output.node == input.node:
            raise SelfLoop(f"Cannot connect node '{output.node}' to itself")
        if out_port.kind != PortKind.output or in_port.kind != PortKind.input:
            raise TypeMismatch(
                f"Connections run from an output to an input port; got "
                f"{out_port.kind.value} '{output}' -> {in_port.kind.value} '{input}'"
            )
        if not families_compatible(out_port.family, in_port.family):
            raise TypeMismatch(
                f"Address family {out_port.family.value} of '{output}' does not "
                f"match {in_port.family.value} of '{input}'"
            )
        if not flows_compatible(out_port.flow, in_port.flow):
            raise TypeMismatch(
                f"Flow direction {out_port.flow.value} of '{output}' does not "
                f"match {in_port.flow.value} of '{input}'"
            )
        if output in self.connections:
            raise PortOccupied(
                f"Output port '{output}' is already connected to "
                f"'{self.connections[output]}'"
            )
        self.connections[output] = input
        return Connection(output, input)

    def disconnect(self, output: PortRef) -> Optional[Connection]:
        """Remove the connection leaving ``output``, if there is one."""
        target = self.connections.pop(output, None)
        if target is None:
            return None
        return Connection(output, target)

    def begin_drag(self, ref: PortRef) -> DragState:
        """Start an editor drag at ``ref``.

        Dragging from an output port severs its connection straight away.
        """
        port = self.port(ref)
        severed = None
        if port.kind == PortKind.output:
            severed = self.disconnect(ref)
        return DragState(origin=ref, kind=port.kind, severed=severed)

    def end_drag(self, state: DragState, ref: PortRef) -> Optional[Connection]:
        """Finish a drag on ``ref``.

        A drag that started on an input port and ends on an occupied output
        port is rejected: nothing is connected and None is returned.
        """
        if state.kind == PortKind.output:
            return self.connect(state.origin, ref)
        if self.port(ref).kind == PortKind.output and ref in self.connections:
            logger.debug(f"Drag from {state.origin} rejected: {ref} is occupied")
            return None
        return self.connect(ref, state.origin)

    # ------------------------------------------------------------------
    # Copies and snapshots
    # ------------------------------------------------------------------

    def copy(self) -> "Graph":
        """Independent copy sharing the registry and node type objects."""
        other = Graph(self.registry)
        for node in self.nodes.values():
            other.nodes[node.node_id] = Node(
                node_id=node.node_id,
                type_id=node.type_id,
                schema=node.schema,
                params=copy.deepcopy(node.params),
                position=node.position,
            )
        other.connections = dict(self.connections)
        other.extensions = set(self.extensions)
        other.metadata = copy.deepcopy(self.metadata)
        other._next_id = self._next_id
        return other

    def to_snapshot(self) -> GraphSnapshot:
        return GraphSnapshot(
            nodes=[
                NodeSpec(
                    id=n.node_id,
                    type=n.type_id,
                    params=copy.deepcopy(n.params),
                    position=n.position,
                )
                for n in self.nodes.values()
            ],
            connections=[
                ConnectionSpec(output=out, input=inp)
                for out, inp in self.connections.items()
            ],
            extensions=sorted(self.extensions),
            metadata=copy.deepcopy(self.metadata),
        )

    @classmethod
    def from_snapshot(
        cls,
        snapshot: Union[GraphSnapshot, Dict[str, Any]],
        registry: NodeTypeRegistry,
        loader=None,
    ) -> "Graph":
        """Rebuild a graph from a snapshot.

        Declared extensions missing from ``registry`` are loaded through
        ``loader`` (an ``ExtensionLoader``).

        Raises
        ------
        CorruptGraph
            Malformed document or references (missing nodes or ports, two
            connections from one output, self loops, wrong orientation,
            missing permanent nodes).
        UnknownType
            A node references a type that is not registered.
        ExtensionNotFound
            A declared extension is neither loaded nor findable.
        """
        if not isinstance(snapshot, GraphSnapshot):
            try:
                snapshot = GraphSnapshot.model_validate(snapshot)
            except ValidationError as exc:
                raise CorruptGraph(
                    f"Invalid graph snapshot: {exc}", details={"errors": exc.errors()}
                ) from exc

        for extension_id in snapshot.extensions:
            if registry.has_extension(extension_id):
                continue
            if loader is None:
                raise ExtensionNotFound(extension_id)
            registry.load_extension(loader.load(extension_id))

        graph = cls(registry)
        graph.extensions = set(snapshot.extensions)
        graph.metadata = copy.deepcopy(snapshot.metadata)

        for spec in snapshot.nodes:
            expected = _PERMANENT_TYPES.get(spec.id)
            if expected is not None and spec.type != expected:
                raise CorruptGraph(
                    f"Node '{spec.id}' must have type '{expected}', got '{spec.type}'",
                    details={"node": spec.id},
                )
            if expected is None and spec.type in _PERMANENT_TYPES.values():
                raise CorruptGraph(
                    f"Node '{spec.id}' uses permanent type '{spec.type}'",
                    details={"node": spec.id},
                )
            graph._insert(spec.id, spec.type, spec.params, spec.position)

        missing = [nid for nid in PERMANENT_NODE_IDS if nid not in graph.nodes]
        if missing:
            raise CorruptGraph(
                f"Snapshot lacks permanent node(s): {', '.join(missing)}",
                details={"missing": missing},
            )

        for spec in snapshot.connections:
            try:
                graph.connect(spec.output, spec.input)
            except GraphEditError as exc:
                raise CorruptGraph(
                    f"Bad connection {spec.output} -> {spec.input}: {exc}",
                    details={"output": str(spec.output), "input": str(spec.input)},
                ) from exc

        return graph

    def __repr__(self) -> str:
        return f"<Graph {len(self.nodes)} nodes, {len(self.connections)} connections>"
