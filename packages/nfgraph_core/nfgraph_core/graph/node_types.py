"""nfgraph_core.graph.node_types
================================

NodeTypeSchema protocol and the BaseNodeType convenience class.

A node type declares its ports and parameters and knows how to turn one node
of its type into a script fragment. Built-in types and extension-provided
types implement the same interface; the registry is a plain lookup table
from ``type_id`` to an instance of it.

Design rules
------------
* ``emit`` sees only the node, its own connections and the ``EmitContext``.
  It never looks at other nodes' fragments.
* Fragments are shell text that drive ``nft``; every node owns one chain
  named by ``EmitContext.chain``. The chains themselves are declared by the
  compiler before any fragment runs.
* Data files are returned by bare name; the compiler places them under
  ``data/<node_id>/``. Use ``EmitContext.data_path`` to reference them.
* NAT statements are returned per hook in ``Fragment.nat``; the compiler
  collects them into ``type nat`` base chains. They select packets by the
  mark ``EmitContext.mark`` that the node sets in its own chain.
"""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

from nfgraph_core.api.errors import ExportError
from nfgraph_core.graph.ir_types import FlowColor, ParamDef, PortDef, PortKind

if TYPE_CHECKING:
    from nfgraph_core.graph.graph_model import Connection, Node

_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]+")


# ---------------------------------------------------------------------------
# Emit inputs / outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Fragment:
    """Script text plus the data files it references (name -> content).

    ``nat`` maps a netfilter hook (``prerouting`` or ``postrouting``) to
    NAT statements for that hook's ``type nat`` chain.
    """

    script: str = ""
    files: Dict[str, str] = field(default_factory=dict)
    nat: Dict[str, List[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class Predicate:
    """One condition on a packet path, as collected by ``collect_paths``."""

    variant: str
    params: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"variant": self.variant, "params": dict(sorted(self.params.items()))}


@dataclass
class EmitContext:
    """Naming services handed to ``emit``.

    Attributes
    ----------
    chains : dict[str, str]
        node_id -> nft chain name for every node taking part in the export.
    flow : FlowColor
        Flow class of the node being emitted (never ``unset``).
    data_dir : str
        Directory (relative to the entry point) holding data files.
    mark : int
        Packet mark owned by the node being emitted.
    """

    chains: Dict[str, str]
    flow: FlowColor = FlowColor.incoming
    data_dir: str = "data"
    mark: int = 0

    def chain(self, node_id: str) -> str:
        return self.chains[node_id]

    def data_path(self, node_id: str, name: str) -> str:
        return f"{self.data_dir}/{node_id}/{name}"

    def rule(self, chain: str, statement: str) -> str:
        return f'"$NFT" add rule $TABLE {chain} {shlex.quote(statement)}'

    def verdict(self, connection: Optional["Connection"]) -> str:
        """``goto`` the connected node, or ``return`` when the port is open."""
        if connection is None:
            return "return"
        return f"goto {self.chain(connection.input.node)}"


# ---------------------------------------------------------------------------
# NodeTypeSchema protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class NodeTypeSchema(Protocol):
    """Structural interface for every node type."""

    type_id: str
    display_name: str
    extension_id: Optional[str]

    def ports(self) -> List[PortDef]:
        ...

    def params(self) -> List[ParamDef]:
        ...

    def emit(
        self,
        node: "Node",
        incoming: Sequence["Connection"],
        outgoing: Sequence["Connection"],
        ctx: EmitContext,
    ) -> Fragment:
        ...

    def predicate(self, node: "Node", output: str) -> Optional[Predicate]:
        ...

    def describe(self) -> Dict[str, Any]:
        ...


# ---------------------------------------------------------------------------
# Base class for node types (convenience, not mandatory)
# ---------------------------------------------------------------------------


class BaseNodeType:
    """Convenience base for node types with sensible defaults."""

    type_id: str = "base"
    display_name: str = ""
    extension_id: Optional[str] = None
    _ports: Sequence[PortDef] = ()
    _params: Sequence[ParamDef] = ()

    def ports(self) -> List[PortDef]:
        return list(self._ports)

    def params(self) -> List[ParamDef]:
        return list(self._params)

    def input_ports(self) -> List[PortDef]:
        return [p for p in self.ports() if p.kind == PortKind.input]

    def output_ports(self) -> List[PortDef]:
        return [p for p in self.ports() if p.kind == PortKind.output]

    def port(self, name: str) -> Optional[PortDef]:
        for p in self.ports():
            if p.name == name:
                return p
        return None

    @property
    def is_terminal(self) -> bool:
        return not self.output_ports()

    def resolve_params(self, node: "Node") -> Dict[str, str]:
        """Declared parameters with defaults applied.

        Raises ExportError when a required parameter is missing or empty.
        """
        values: Dict[str, str] = {}
        for pdef in self.params():
            raw = node.params.get(pdef.name, pdef.default)
            if raw is None or str(raw).strip() == "":
                if pdef.required:
                    raise ExportError(
                        node.node_id,
                        f"parameter '{pdef.name}' is required by {self.type_id}",
                    )
                raw = ""
            values[pdef.name] = str(raw).strip()
        return values

    def emit(
        self,
        node: "Node",
        incoming: Sequence["Connection"],
        outgoing: Sequence["Connection"],
        ctx: EmitContext,
    ) -> Fragment:
        raise NotImplementedError(f"Node type '{self.type_id}' cannot be exported")

    def predicate(self, node: "Node", output: str) -> Optional[Predicate]:
        params = {k: str(v) for k, v in node.params.items()}
        return Predicate(variant=self.type_id, params=params)

    def describe(self) -> Dict[str, Any]:
        return {
            "type_id": self.type_id,
            "display_name": self.display_name,
            "extension_id": self.extension_id,
            "ports": [p.model_dump(mode="json") for p in self.ports()],
            "params": [p.model_dump(mode="json") for p in self.params()],
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.type_id}>"


def connection_from(
    outgoing: Sequence["Connection"], port: str
) -> Optional["Connection"]:
    """The connection leaving ``port`` among ``outgoing``, if any."""
    for conn in outgoing:
        if conn.output.port == port:
            return conn
    return None


def header(node: "Node", schema: NodeTypeSchema) -> str:
    label = node.params.get("label") or schema.display_name or schema.type_id
    label = _CONTROL_RE.sub(" ", str(label)).strip()
    return f"# {node.node_id}: {label} ({schema.type_id})"

