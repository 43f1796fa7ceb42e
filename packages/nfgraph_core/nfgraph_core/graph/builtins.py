"""nfgraph_core.graph.builtins
==============================

Built-in node types (``core:*``).

Every node owns one nft chain; a connection from an output port becomes a
``goto`` into the chain of the node it leads to, an unconnected output port
becomes ``return`` (the packet falls back to the base chain policy).

Families
--------
* Permanent: Source, Localhost (their chains are written by the compiler)
* Match filters: address, port, protocol, interface, address list file
* Splitter: address family
* Translation: source NAT, destination NAT
* Terminals: drop, accept
"""

from __future__ import annotations

import ipaddress
import re
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from nfgraph_core.api.errors import ExportError
from nfgraph_core.graph.ir_types import (
    AddressFamily,
    ParamDef,
    input_port,
    output_port,
)
from nfgraph_core.graph.node_types import (
    BaseNodeType,
    EmitContext,
    Fragment,
    Predicate,
    connection_from,
    header,
)

SOURCE_TYPE = "core:source"
LOCALHOST_TYPE = "core:localhost"

_PORT_RE = re.compile(r"^\d{1,5}(-\d{1,5})?$")
_PROTO_RE = re.compile(r"^[a-z][a-z0-9-]*$")
_IFNAME_RE = re.compile(r"^[A-Za-z0-9_.:@*-]{1,15}$")


def _split(value: str) -> List[str]:
    return [tok.strip() for tok in value.split(",") if tok.strip()]


def _nft_set(items: Sequence[str]) -> str:
    if len(items) == 1:
        return items[0]
    return "{ " + ", ".join(items) + " }"


def _networks(node_id: str, value: str) -> Tuple[int, List[str]]:
    """Parse a comma separated address list; all entries share one version."""
    nets = []
    for tok in _split(value):
        try:
            nets.append(ipaddress.ip_network(tok, strict=False))
        except ValueError as exc:
            raise ExportError(node_id, f"invalid address '{tok}': {exc}") from exc
    if not nets:
        raise ExportError(node_id, "no address given")
    versions = {n.version for n in nets}
    if len(versions) > 1:
        raise ExportError(node_id, "cannot mix IPv4 and IPv6 addresses in one filter")
    return versions.pop(), [str(n) for n in nets]


# =========================================================================
# Permanent nodes
# =========================================================================


class SourceNode(BaseNodeType):
    """Origin of every packet entering the graph."""

    type_id = SOURCE_TYPE
    display_name = "Incoming Source"
    _ports = (output_port("out", "incoming"),)

    def emit(self, node, incoming, outgoing, ctx: EmitContext) -> Fragment:
        return Fragment()

    def predicate(self, node, output: str) -> Optional[Predicate]:
        return Predicate(variant=self.type_id)


class LocalhostNode(BaseNodeType):
    """The local machine; packets reaching it are delivered."""

    type_id = LOCALHOST_TYPE
    display_name = "Local Machine"
    _ports = (input_port("in", "delivered"),)

    def emit(self, node, incoming, outgoing, ctx: EmitContext) -> Fragment:
        return Fragment()

    def predicate(self, node, output: str) -> Optional[Predicate]:
        return Predicate(variant=self.type_id)


# =========================================================================
# Match filters
# =========================================================================


class _MatchFilter(BaseNodeType):
    """Two-way split: packets matching go to ``match``, the rest to ``non-match``."""

    _ports = (input_port(), output_port("match"), output_port("non-match"))
    _param: str = "value"

    def match_expr(self, node_id: str, value: str) -> str:
        raise NotImplementedError

    def emit(self, node, incoming, outgoing, ctx: EmitContext) -> Fragment:
        values = self.resolve_params(node)
        chain = ctx.chain(node.node_id)
        expr = self.match_expr(node.node_id, values[self._param])
        lines = [
            header(node, self),
            ctx.rule(chain, f"{expr} {ctx.verdict(connection_from(outgoing, 'match'))}"),
            ctx.rule(chain, ctx.verdict(connection_from(outgoing, "non-match"))),
        ]
        return Fragment(script="\n".join(lines))

    def predicate(self, node, output: str) -> Optional[Predicate]:
        value = str(node.params.get(self._param, ""))
        key = "allow" if output == "match" else "exclude"
        return Predicate(variant=self.type_id, params={key: value})


class SourceAddressFilter(_MatchFilter):
    type_id = "core:source_address_filter"
    display_name = "Source Address Filter"
    _param = "address"
    _params = (ParamDef(name="address", display_name="Match source address"),)
    _selector = "saddr"

    def match_expr(self, node_id: str, value: str) -> str:
        version, nets = _networks(node_id, value)
        proto = "ip" if version == 4 else "ip6"
        return f"{proto} {self._selector} {_nft_set(nets)}"


class DestinationAddressFilter(SourceAddressFilter):
    type_id = "core:destination_address_filter"
    display_name = "Destination Address Filter"
    _params = (ParamDef(name="address", display_name="Match destination address"),)
    _selector = "daddr"


class SourcePortFilter(_MatchFilter):
    type_id = "core:source_port_filter"
    display_name = "Source Port Filter"
    _param = "ports"
    _params = (ParamDef(name="ports", display_name="Match source port"),)
    _selector = "sport"

    def match_expr(self, node_id: str, value: str) -> str:
        ports = _split(value)
        if not ports:
            raise ExportError(node_id, "no port given")
        for tok in ports:
            if not _PORT_RE.match(tok) or any(int(p) > 65535 for p in tok.split("-")):
                raise ExportError(node_id, f"invalid port '{tok}'")
        return f"th {self._selector} {_nft_set(ports)}"


class DestinationPortFilter(SourcePortFilter):
    type_id = "core:destination_port_filter"
    display_name = "Destination Port Filter"
    _params = (ParamDef(name="ports", display_name="Match destination port"),)
    _selector = "dport"


class ProtocolFilter(_MatchFilter):
    type_id = "core:protocol_filter"
    display_name = "Protocol Filter"
    _param = "protocol"
    _params = (ParamDef(name="protocol", display_name="Match protocol"),)

    def match_expr(self, node_id: str, value: str) -> str:
        protos = [p.lower() for p in _split(value)]
        if not protos:
            raise ExportError(node_id, "no protocol given")
        for tok in protos:
            if not _PROTO_RE.match(tok):
                raise ExportError(node_id, f"invalid protocol '{tok}'")
        return f"meta l4proto {_nft_set(protos)}"


class InterfaceFilter(_MatchFilter):
    type_id = "core:interface_filter"
    display_name = "Interface Filter"
    _param = "interface"
    _params = (ParamDef(name="interface", display_name="Match interface"),)

    def match_expr(self, node_id: str, value: str) -> str:
        if not _IFNAME_RE.match(value):
            raise ExportError(node_id, f"invalid interface name '{value}'")
        return f'iifname "{value}"'


class FileIpList(_MatchFilter):
    """Match against an address list file read at export time.

    The list is shipped as ``addresses.txt`` next to the entry point and
    loaded into one interval set per address family.
    """

    type_id = "core:file_ip_list"
    display_name = "IP File Filter"
    _param = "path"
    _params = (
        ParamDef(name="path", display_name="Matching list file"),
        ParamDef(name="field", display_name="Address field", default="source", required=False),
    )

    def _read(self, node_id: str, path: str) -> Tuple[List[str], List[str]]:
        try:
            text = Path(path).expanduser().read_text(encoding="utf-8")
        except OSError as exc:
            raise ExportError(node_id, f"cannot read address list '{path}': {exc}") from exc
        v4: List[str] = []
        v6: List[str] = []
        for lineno, raw in enumerate(text.splitlines(), start=1):
            line = raw.split("#", 1)[0].strip()
            if not line:
                continue
            try:
                net = ipaddress.ip_network(line, strict=False)
            except ValueError as exc:
                raise ExportError(node_id, f"{path}:{lineno}: {exc}") from exc
            (v4 if net.version == 4 else v6).append(str(net))
        return v4, v6

    def emit(self, node, incoming, outgoing, ctx: EmitContext) -> Fragment:
        values = self.resolve_params(node)
        selector = {"source": "saddr", "destination": "daddr"}.get(values["field"])
        if selector is None:
            raise ExportError(node.node_id, f"field must be 'source' or 'destination', got '{values['field']}'")
        v4, v6 = self._read(node.node_id, values["path"])
        chain = ctx.chain(node.node_id)
        data_file = ctx.data_path(node.node_id, "addresses.txt")
        match = ctx.verdict(connection_from(outgoing, "match"))
        lines = [header(node, self)]
        for proto, addr_type, entries in (("ip", "ipv4_addr", v4), ("ip6", "ipv6_addr", v6)):
            set_name = f"{chain}_{proto}"
            lines.append(
                f'"$NFT" add set $TABLE {set_name} '
                f"'{{ type {addr_type}; flags interval; }}'"
            )
            if entries:
                lines.append(
                    f"grep {'-F' if proto == 'ip6' else '-vF'} ':' {data_file} | "
                    f"while read -r addr; do "
                    f'"$NFT" add element $TABLE {set_name} "{{ $addr }}"; done'
                )
            lines.append(ctx.rule(chain, f"{proto} {selector} @{set_name} {match}"))
        lines.append(ctx.rule(chain, ctx.verdict(connection_from(outgoing, "non-match"))))
        body = "".join(f"{entry}\n" for entry in v4 + v6)
        return Fragment(script="\n".join(lines), files={"addresses.txt": body})


# =========================================================================
# Splitter
# =========================================================================


class FamilySplitter(BaseNodeType):
    type_id = "core:family_splitter"
    display_name = "Family Splitter"
    _ports = (
        input_port(),
        output_port("ipv4", family=AddressFamily.ipv4),
        output_port("ipv6", family=AddressFamily.ipv6),
    )

    def emit(self, node, incoming, outgoing, ctx: EmitContext) -> Fragment:
        chain = ctx.chain(node.node_id)
        lines = [header(node, self)]
        for family in ("ipv4", "ipv6"):
            verdict = ctx.verdict(connection_from(outgoing, family))
            lines.append(ctx.rule(chain, f"meta nfproto {family} {verdict}"))
        return Fragment(script="\n".join(lines))

    def predicate(self, node, output: str) -> Optional[Predicate]:
        return Predicate(variant=self.type_id, params={"family": output})


# =========================================================================
# Translation
# =========================================================================


class SourceNAT(BaseNodeType):
    """Address translation, applied in a ``type nat`` chain on ``_hook``.

    The node's own chain only marks the packet; the translation rule
    matches that mark.
    """

    type_id = "core:source_nat"
    display_name = "Source Address Translation"
    _ports = (input_port(), output_port("out"))
    _params = (ParamDef(name="address", display_name="Send packet from"),)
    _statement = "snat"
    _hook = "postrouting"

    def emit(self, node, incoming, outgoing, ctx: EmitContext) -> Fragment:
        values = self.resolve_params(node)
        version, nets = _networks(node.node_id, values["address"])
        if len(nets) != 1:
            raise ExportError(node.node_id, "translation needs exactly one address")
        addr = nets[0].split("/")[0]
        proto = "ip" if version == 4 else "ip6"
        chain = ctx.chain(node.node_id)
        mark = f"0x{ctx.mark:x}"
        lines = [
            header(node, self),
            ctx.rule(chain, f"meta mark set {mark}"),
            ctx.rule(chain, ctx.verdict(connection_from(outgoing, "out"))),
        ]
        nat = [f"meta mark {mark} {self._statement} {proto} to {addr}"]
        return Fragment(script="\n".join(lines), nat={self._hook: nat})

    def predicate(self, node, output: str) -> Optional[Predicate]:
        return Predicate(variant=self.type_id, params={"addr": str(node.params.get("address", ""))})


class DestinationNAT(SourceNAT):
    type_id = "core:destination_nat"
    display_name = "Destination Address Translation"
    _params = (ParamDef(name="address", display_name="Direct packet to"),)
    _statement = "dnat"
    _hook = "prerouting"


# =========================================================================
# Terminals
# =========================================================================


class Drop(BaseNodeType):
    type_id = "core:drop"
    display_name = "Drop"
    _ports = (input_port(),)
    _verdict = "drop"

    def emit(self, node, incoming, outgoing, ctx: EmitContext) -> Fragment:
        chain = ctx.chain(node.node_id)
        return Fragment(script="\n".join([header(node, self), ctx.rule(chain, self._verdict)]))

    def predicate(self, node, output: str) -> Optional[Predicate]:
        return Predicate(variant=self.type_id)


class Accept(Drop):
    type_id = "core:accept"
    display_name = "Accept"
    _verdict = "accept"


# =========================================================================
# Catalog
# =========================================================================

_ALL_NODE_TYPES = [
    # Permanent
    SourceNode,
    LocalhostNode,
    # Match filters
    InterfaceFilter,
    FileIpList,
    SourceAddressFilter,
    DestinationAddressFilter,
    SourcePortFilter,
    DestinationPortFilter,
    ProtocolFilter,
    # Splitter
    FamilySplitter,
    # Translation
    SourceNAT,
    DestinationNAT,
    # Terminals
    Drop,
    Accept,
]


def builtin_node_types() -> List[BaseNodeType]:
    """Fresh instances of every built-in node type, in catalog order."""
    return [cls() for cls in _ALL_NODE_TYPES]


BUILTIN_TYPE_IDS: Dict[str, type] = {cls.type_id: cls for cls in _ALL_NODE_TYPES}
