"""nfgraph_core.graph.compiler
=============================

GraphCompiler: normalize -> colour -> order -> emit -> assemble.

Compilation pipeline
--------------------
1. **Normalize:** reachable, acyclic copy of the graph.
2. **Colour:**    flow class of every node.
3. **Order:**     Kahn topological sort of the non-permanent nodes. Ready
                  nodes are taken by ``(flow rank, node id)`` with incoming
                  before outgoing; ``source`` is first and ``localhost`` last.
4. **Emit:**      one ``Fragment`` per node from its node type.
5. **Assemble:**  preamble (table, chains, base chain) + fragments +
                  NAT chains + epilogue, and the data files under
                  ``data/<node_id>/``.

The result is an in-memory ``ExportArtifact``; ``export`` hands it to the
atomic writer.
"""

from __future__ import annotations

import heapq
import logging
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from nfgraph_core.api.errors import ExportError
from nfgraph_core.core.settings import CompilerSettings
from nfgraph_core.export.writer import write_export
from nfgraph_core.graph.coloring import Coloring, color_graph
from nfgraph_core.graph.diagnostics import Diagnostic
from nfgraph_core.graph.graph_model import Graph
from nfgraph_core.graph.ir_types import (
    LOCALHOST_ID,
    PERMANENT_NODE_IDS,
    SOURCE_ID,
    FlowColor,
)
from nfgraph_core.graph.node_types import EmitContext, Fragment
from nfgraph_core.graph.normalize import NormalizationResult, normalize

logger = logging.getLogger(__name__)

_CHAIN_RE = re.compile(r"[^A-Za-z0-9_]")
_FILE_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")

# hook -> priority of the ``type nat`` chain (dstnat, srcnat)
_NAT_PRIORITY = {"prerouting": -100, "postrouting": 100}


@dataclass
class ExportArtifact:
    """A compiled graph, ready to be written.

    Attributes
    ----------
    entry_point : str
        File name of the script.
    script : str
        Complete script text.
    files : dict[str, str]
        Data files by path relative to the output directory.
    order : list[str]
        Node ids in emission order, ``source`` first, ``localhost`` last.
    flows : dict[str, FlowColor]
        Flow class of every ordered node.
    """

    entry_point: str
    script: str
    files: Dict[str, str] = field(default_factory=dict)
    order: List[str] = field(default_factory=list)
    flows: Dict[str, FlowColor] = field(default_factory=dict)
    normalization: Optional[NormalizationResult] = field(default=None, repr=False)
    coloring: Optional[Coloring] = field(default=None, repr=False)

    @property
    def diagnostics(self) -> List[Diagnostic]:
        result: List[Diagnostic] = []
        if self.normalization is not None:
            result.extend(self.normalization.diagnostics)
        if self.coloring is not None:
            result.extend(self.coloring.diagnostics)
        return result


def chain_name(node_id: str) -> str:
    """nft chain owned by ``node_id``."""
    if node_id in PERMANENT_NODE_IDS:
        return node_id
    return "n_" + _CHAIN_RE.sub("_", node_id)


class GraphCompiler:
    """Compile a Graph into an ExportArtifact.

    Usage
    -----
    >>> compiler = GraphCompiler()
    >>> artifact = compiler.compile(graph)
    >>> compiler.export(graph, "out/")
    """

    def __init__(self, settings: Optional[CompilerSettings] = None) -> None:
        self.settings = settings or CompilerSettings()

    def compile(self, graph: Graph) -> ExportArtifact:
        """Full compilation pipeline.

        Raises
        ------
        ExportError
            If a node type cannot emit its node, or two node ids map to the
            same chain name.
        """
        norm = normalize(graph)
        dag = norm.graph
        coloring = color_graph(dag)
        order = self.order(dag, coloring)
        chains = self._chains(order)
        flows = {nid: coloring.node_flow(nid) for nid in order}

        fragments: List[str] = []
        files: Dict[str, str] = {}
        nat: Dict[str, List[str]] = {}
        for index, node_id in enumerate(order):
            if node_id in PERMANENT_NODE_IDS:
                continue
            ctx = EmitContext(
                chains=chains,
                flow=flows[node_id],
                data_dir=self.settings.data_dir,
                mark=index,
            )
            fragment = self._emit(dag, node_id, ctx)
            if fragment.script:
                fragments.append(fragment.script.rstrip("\n"))
            for name, content in sorted(fragment.files.items()):
                if not _FILE_NAME_RE.match(name):
                    raise ExportError(node_id, f"invalid data file name '{name}'")
                files[ctx.data_path(node_id, name)] = content
            for hook, statements in fragment.nat.items():
                self._check_nat_hook(node_id, hook)
                nat.setdefault(hook, []).extend(statements)
            logger.debug(f"Emitted {node_id} ({len(fragment.files)} data files)")

        sections = [self._preamble(dag, order, chains)]
        sections.extend(fragments)
        if nat:
            sections.append(self._nat_chains(nat))
        sections.append(self._epilogue(chains))
        script = "\n\n".join(sections) + "\n"

        logger.info(
            f"Compiled graph: {len(order) - 2} nodes, {len(files)} data files, "
            f"{len(norm.diagnostics) + len(coloring.diagnostics)} warnings"
        )
        return ExportArtifact(
            entry_point=self.settings.entry_point,
            script=script,
            files=dict(sorted(files.items())),
            order=order,
            flows=flows,
            normalization=norm,
            coloring=coloring,
        )

    def export(self, graph: Graph, out_dir) -> ExportArtifact:
        """Compile ``graph`` and write it atomically to ``out_dir``."""
        artifact = self.compile(graph)
        write_export(artifact, Path(out_dir))
        return artifact

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    @staticmethod
    def order(dag: Graph, coloring: Coloring) -> List[str]:
        """Node ids in emission order (Kahn's algorithm).

        ``dag`` must be acyclic; ``normalize`` guarantees it.
        """
        inner = [nid for nid in dag.nodes if nid not in PERMANENT_NODE_IDS]
        in_degree: Dict[str, int] = {nid: 0 for nid in inner}
        for out, inp in dag.connections.items():
            if out.node in in_degree and inp.node in in_degree:
                in_degree[inp.node] += 1

        def key(nid: str) -> Tuple[int, str]:
            rank = 1 if coloring.node_flow(nid) == FlowColor.outgoing else 0
            return (rank, nid)

        ready = [key(nid) for nid, deg in in_degree.items() if deg == 0]
        heapq.heapify(ready)
        result: List[str] = [SOURCE_ID]
        while ready:
            _, node_id = heapq.heappop(ready)
            result.append(node_id)
            for succ in dag.successors(node_id):
                if succ not in in_degree:
                    continue
                in_degree[succ] -= 1
                if in_degree[succ] == 0:
                    heapq.heappush(ready, key(succ))

        if len(result) != len(inner) + 1:
            raise ExportError(
                None,
                f"Topological sort failed: {len(result) - 1}/{len(inner)} "
                "nodes sorted (graph is not acyclic)",
            )
        result.append(LOCALHOST_ID)
        return result

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    @staticmethod
    def _chains(order: List[str]) -> Dict[str, str]:
        chains: Dict[str, str] = {}
        owners: Dict[str, str] = {}
        for node_id in order:
            name = chain_name(node_id)
            if name in owners:
                raise ExportError(
                    node_id, f"chain name '{name}' is already used by node '{owners[name]}'"
                )
            owners[name] = node_id
            chains[node_id] = name
        return chains

    @staticmethod
    def _emit(dag: Graph, node_id: str, ctx: EmitContext) -> Fragment:
        node = dag.node(node_id)
        try:
            fragment = node.schema.emit(
                node, dag.incoming(node_id), dag.outgoing(node_id), ctx
            )
        except ExportError:
            raise
        except Exception as exc:
            raise ExportError(node_id, f"{type(exc).__name__}: {exc}") from exc
        if not isinstance(fragment, Fragment):
            raise ExportError(
                node_id, f"{node.type_id} returned {type(fragment).__name__}, not a Fragment"
            )
        return fragment

    def _preamble(self, dag: Graph, order: List[str], chains: Dict[str, str]) -> str:
        s = self.settings
        table = f"{s.table_family} {s.table_name}"
        lines = [
            "#!/bin/sh",
            "# Generated by nfgraph; edit the graph, not this file.",
            "set -eu",
            'cd "$(dirname "$0")"',
            f'NFT="${{NFT:-{s.nft_binary}}}"',
            f"TABLE={shlex.quote(table)}",
            "",
            '"$NFT" add table $TABLE',
            '"$NFT" flush table $TABLE',
        ]
        base = (
            f"{{ type filter hook {s.base_hook} priority {s.base_priority}; "
            "policy accept; }"
        )
        for node_id in order:
            chain = chains[node_id]
            if node_id == SOURCE_ID:
                lines.append(f'"$NFT" add chain $TABLE {chain} {shlex.quote(base)}')
            else:
                lines.append(f'"$NFT" add chain $TABLE {chain}')

        ctx = EmitContext(chains=chains, data_dir=s.data_dir)
        for conn in dag.outgoing(SOURCE_ID):
            lines.append(ctx.rule(chains[SOURCE_ID], ctx.verdict(conn)))
        return "\n".join(lines)

    def _check_nat_hook(self, node_id: str, hook: str) -> None:
        """The base chain must mark packets before the ``hook`` NAT chain runs."""
        s = self.settings
        priority = _NAT_PRIORITY.get(hook)
        if priority is None:
            raise ExportError(node_id, f"unsupported NAT hook '{hook}'")
        if hook == "prerouting":
            ok = s.base_hook == "prerouting" and s.base_priority < priority
        else:
            ok = s.base_hook != "postrouting" or s.base_priority < priority
        if not ok:
            raise ExportError(
                node_id,
                f"{hook} NAT needs the base chain to run earlier "
                f"(base_hook={s.base_hook}, base_priority={s.base_priority})",
            )

    @staticmethod
    def _nat_chains(nat: Dict[str, List[str]]) -> str:
        ctx = EmitContext(chains={})
        lines = ["# nat"]
        for hook in sorted(nat):
            chain = f"nat_{hook}"
            base = f"{{ type nat hook {hook} priority {_NAT_PRIORITY[hook]}; }}"
            lines.append(f'"$NFT" add chain $TABLE {chain} {shlex.quote(base)}')
            lines.extend(ctx.rule(chain, statement) for statement in nat[hook])
        return "\n".join(lines)

    @staticmethod
    def _epilogue(chains: Dict[str, str]) -> str:
        ctx = EmitContext(chains=chains)
        return "\n".join(["# localhost", ctx.rule(chains[LOCALHOST_ID], "accept")])
