"""nfgraph_core.graph.ir_types
==============================

Shared types for the node graph.

Types
-----
PortKind        input / output
AddressFamily   inet (wildcard) / ipv4 / ipv6
FlowColor       unset / incoming / outgoing
PortRef         (node, port) reference, hashable
PortDef         Port declaration on a node type
ParamDef        Parameter declaration on a node type
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict


SOURCE_ID = "source"
LOCALHOST_ID = "localhost"
PERMANENT_NODE_IDS = (SOURCE_ID, LOCALHOST_ID)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class PortKind(str, Enum):
    """Which side of a node a port sits on."""

    input = "input"
    output = "output"


class AddressFamily(str, Enum):
    """Address family carried by a port. ``inet`` matches both."""

    inet = "inet"
    ipv4 = "ipv4"
    ipv6 = "ipv6"


class FlowColor(str, Enum):
    """Packet-flow direction tag.

    On a ``PortDef`` this is a declared constraint (``unset`` accepts either
    direction); on a coloured port it is the propagated flow.
    """

    unset = "unset"
    incoming = "incoming"
    outgoing = "outgoing"


def families_compatible(a: AddressFamily, b: AddressFamily) -> bool:
    return a == AddressFamily.inet or b == AddressFamily.inet or a == b


def flows_compatible(a: FlowColor, b: FlowColor) -> bool:
    return a == FlowColor.unset or b == FlowColor.unset or a == b


# ---------------------------------------------------------------------------
# StrictBaseModel
# ---------------------------------------------------------------------------


class StrictBaseModel(BaseModel):
    """Root model with extra='forbid'."""

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
    )


# ---------------------------------------------------------------------------
# Port references and declarations
# ---------------------------------------------------------------------------


class PortRef(BaseModel):
    """Reference to one port of one node.

    Attributes
    ----------
    node : str
        Node identifier.
    port : str
        Port name, unique within the node's type.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    node: str
    port: str

    @property
    def sort_key(self) -> Tuple[str, str]:
        return (self.node, self.port)

    def __str__(self) -> str:
        return f"{self.node}.{self.port}"


class PortDef(StrictBaseModel):
    """Port declaration on a node type.

    Attributes
    ----------
    name : str
        Port name (``in``, ``match``, ``ipv4`` ...).
    kind : PortKind
        ``input`` ports accept many connections, ``output`` ports one.
    family : AddressFamily
        Address family the port carries.
    flow : FlowColor
        Declared flow constraint; ``unset`` accepts either direction.
    display_name : str
        Label shown by the editor.
    """

    name: str
    kind: PortKind
    family: AddressFamily = AddressFamily.inet
    flow: FlowColor = FlowColor.unset
    display_name: str = ""


class ParamDef(StrictBaseModel):
    """Parameter declaration on a node type."""

    name: str
    display_name: str = ""
    default: Optional[str] = None
    required: bool = True


def input_port(name: str = "in", display_name: str = "", **kw) -> PortDef:
    return PortDef(name=name, kind=PortKind.input, display_name=display_name, **kw)


def output_port(name: str, display_name: str = "", **kw) -> PortDef:
    return PortDef(name=name, kind=PortKind.output, display_name=display_name or name, **kw)


Position = Tuple[float, float]
DEFAULT_POSITION: Position = (0.0, 0.0)
