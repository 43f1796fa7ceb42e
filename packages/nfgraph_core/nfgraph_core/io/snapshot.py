"""nfgraph_core.io.snapshot

Graph snapshot files.

``.json`` files are read and written as JSON, ``.yaml`` / ``.yml`` as YAML.
Saved output is canonical: fields in model order, nodes and connections in
graph order, extension ids sorted.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError

from nfgraph_core.api.errors import CorruptGraph
from nfgraph_core.graph.graph_model import Graph
from nfgraph_core.graph.graph_spec import GraphSnapshot
from nfgraph_core.graph.registry import NodeTypeRegistry

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in YAML_SUFFIXES


def parse_snapshot(data: Any, source: str = "<memory>") -> GraphSnapshot:
    if not isinstance(data, dict):
        raise CorruptGraph(f"{source}: snapshot must be a mapping")
    try:
        return GraphSnapshot.model_validate(data)
    except ValidationError as exc:
        raise CorruptGraph(
            f"{source}: invalid graph snapshot: {exc}", details={"errors": exc.errors()}
        ) from exc


def load_snapshot(path) -> GraphSnapshot:
    """Read and validate a snapshot file.

    Raises CorruptGraph on unreadable, unparsable or invalid documents.
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) if _is_yaml(path) else json.load(f)
    except OSError as exc:
        raise CorruptGraph(f"Cannot read {path}: {exc}") from exc
    except (json.JSONDecodeError, yaml.YAMLError, UnicodeDecodeError) as exc:
        raise CorruptGraph(f"Cannot parse {path}: {exc}") from exc
    return parse_snapshot(data, source=str(path))


def load_graph(path, registry: NodeTypeRegistry, loader=None) -> Graph:
    """``load_snapshot`` followed by ``Graph.from_snapshot``."""
    return Graph.from_snapshot(load_snapshot(path), registry, loader=loader)


def snapshot_to_dict(snapshot: GraphSnapshot) -> Dict[str, Any]:
    data = snapshot.model_dump(mode="json")
    data["extensions"] = sorted(data["extensions"])
    return data


def dumps_snapshot(snapshot: GraphSnapshot, fmt: str = "json") -> str:
    data = snapshot_to_dict(snapshot)
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)
    if fmt == "json":
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    raise ValueError(f"Unknown snapshot format: {fmt}")


def save_snapshot(obj: Union[Graph, GraphSnapshot], path, fmt: Optional[str] = None) -> Path:
    """Write a graph or snapshot; the format follows the file suffix."""
    path = Path(path)
    snapshot = obj.to_snapshot() if isinstance(obj, Graph) else obj
    if fmt is None:
        fmt = "yaml" if _is_yaml(path) else "json"
    text = dumps_snapshot(snapshot, fmt)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="\n") as f:
        f.write(text)
    logger.debug(f"Saved snapshot with {len(snapshot.nodes)} nodes to {path}")
    return path
