"""nfgraph_core.cli.main

Entry point for `nfgraph` CLI.

Commands:
- nfgraph new graph.json
- nfgraph check graph.json [--strict]
- nfgraph explain graph.json
- nfgraph paths graph.json [--json]
- nfgraph export graph.json out_dir
- nfgraph types [--json]

Common options: --config settings.yaml, --extension-dir DIR, --extension ID,
--verbose.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from nfgraph_core.api.errors import NFGraphError
from nfgraph_core.core.settings import load_settings, settings_path_from_env
from nfgraph_core.graph.compiler import GraphCompiler
from nfgraph_core.graph.coloring import color_graph
from nfgraph_core.graph.extensions import ExtensionLoader
from nfgraph_core.graph.graph_model import Graph
from nfgraph_core.graph.introspection import explain_graph
from nfgraph_core.graph.normalize import normalize
from nfgraph_core.graph.paths import collect_paths, format_path
from nfgraph_core.graph.registry import default_registry
from nfgraph_core.io.snapshot import load_graph, save_snapshot


def _setup(args):
    """Settings, registry and extension loader for one invocation."""
    config = Path(args.config) if args.config else settings_path_from_env()
    settings = load_settings(config)
    level = logging.DEBUG if args.verbose else getattr(logging, settings.log_level)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    registry = default_registry()
    loader = ExtensionLoader(list(args.extension_dirs) + list(settings.extension_paths))
    for extension_id in args.extensions:
        registry.load_extension(loader.load(extension_id))
    return settings, registry, loader


def _load(args):
    settings, registry, loader = _setup(args)
    graph = load_graph(args.graph, registry, loader=loader)
    return settings, graph


def cmd_new(args):
    _, registry, _ = _setup(args)
    path = save_snapshot(Graph.new(registry), args.out)
    print(f"Wrote empty graph to {path}")
    return 0


def cmd_check(args):
    _, graph = _load(args)
    norm = normalize(graph)
    coloring = color_graph(norm.graph)
    diagnostics = norm.diagnostics + coloring.diagnostics
    for diag in diagnostics:
        print(f"warning: {diag}")
    inner = len(norm.graph.nodes) - 2
    print(
        f"{args.graph}: {inner} exported nodes, "
        f"{len(norm.graph.connections)} connections, {len(diagnostics)} warnings"
    )
    return 1 if args.strict and diagnostics else 0


def cmd_explain(args):
    settings, graph = _load(args)
    artifact = GraphCompiler(settings).compile(graph)
    print(explain_graph(artifact))
    return 0


def cmd_paths(args):
    _, graph = _load(args)
    paths = collect_paths(graph)
    if args.json:
        data = {
            nid: [[pred.to_dict() for pred in path] for path in chains]
            for nid, chains in paths.items()
        }
        print(json.dumps(data, indent=2))
        return 0
    for node_id, chains in paths.items():
        print(f"{node_id}:")
        if not chains:
            print("  (no paths)")
        for path in chains:
            print(f"  {format_path(path)}")
    return 0


def cmd_export(args):
    settings, graph = _load(args)
    artifact = GraphCompiler(settings).export(graph, args.out_dir)
    print(
        f"Exported {len(artifact.order) - 2} nodes to {args.out_dir} "
        f"({len(artifact.diagnostics)} warnings)"
    )
    return 0


def cmd_types(args):
    _, registry, _ = _setup(args)
    if args.json:
        print(json.dumps(registry.describe(), indent=2))
        return 0
    for type_id in registry.type_ids():
        schema = registry.resolve(type_id)
        print(f"{type_id:36s} {schema.display_name}")
    return 0


def _add_common(p):
    p.add_argument("--config", type=str, default=None, help="Settings YAML file (default: $NFGRAPH_CONFIG)")
    p.add_argument(
        "--extension-dir", dest="extension_dirs", action="append", default=[],
        help="Directory searched for extension bundles (repeatable)",
    )
    p.add_argument(
        "--extension", dest="extensions", action="append", default=[],
        help="Extension id to load up front (repeatable)",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")


def build_parser():
    p = argparse.ArgumentParser(prog="nfgraph", description="Compile packet filtering graphs to nft scripts.")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_new = sub.add_parser("new", help="Write a graph holding only source and localhost")
    p_new.add_argument("out", help="Snapshot file to create (.json or .yaml)")
    _add_common(p_new)
    p_new.set_defaults(func=cmd_new)

    p_check = sub.add_parser("check", help="Load a graph and report warnings")
    p_check.add_argument("graph", help="Snapshot file")
    p_check.add_argument("--strict", action="store_true", help="Exit with status 1 on warnings")
    _add_common(p_check)
    p_check.set_defaults(func=cmd_check)

    p_explain = sub.add_parser("explain", help="Compile a graph and describe the result")
    p_explain.add_argument("graph", help="Snapshot file")
    _add_common(p_explain)
    p_explain.set_defaults(func=cmd_explain)

    p_paths = sub.add_parser("paths", help="List the packet paths reaching each terminal node")
    p_paths.add_argument("graph", help="Snapshot file")
    p_paths.add_argument("--json", action="store_true", help="JSON output")
    _add_common(p_paths)
    p_paths.set_defaults(func=cmd_paths)

    p_export = sub.add_parser("export", help="Compile a graph into an output directory")
    p_export.add_argument("graph", help="Snapshot file")
    p_export.add_argument("out_dir", help="Output directory (replaced atomically)")
    _add_common(p_export)
    p_export.set_defaults(func=cmd_export)

    p_types = sub.add_parser("types", help="List registered node types")
    p_types.add_argument("--json", action="store_true", help="JSON output")
    _add_common(p_types)
    p_types.set_defaults(func=cmd_types)

    return p


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except NFGraphError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
