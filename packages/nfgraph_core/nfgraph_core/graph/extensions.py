"""nfgraph_core.graph.extensions
================================

Extension bundles: externally supplied node types.

A bundle file (YAML or JSON) declares node types and, per output port, the
nft match expression that sends packets out through that port::

    id: geoip
    nodes:
      country:
        display_name: Country Filter
        params: {code: Country code}
        input: {family: inet, direction: either}
        outputs:
          match: {rule: "ip saddr @geo_${code}"}
          non-match: {}
        setup:
          - '$NFT add set $TABLE geo_${code} "{ type ipv4_addr; flags interval; }"'

The resulting type id is ``geoip:country``. Templates use ``string.Template``
syntax; the placeholders are the node's parameters plus ``node_id``,
``chain``, ``data`` (the node's data directory), ``NFT`` and ``TABLE``.
Parameter values must match ``_SAFE_VALUE``: letters, digits and
``_ . : / , @ + -``.

Classes
-------
ExtensionManifest   Pydantic model of a bundle file
ExtensionNodeType   Node type built from one manifest entry
ExtensionBundle     Loaded bundle handed to ``NodeTypeRegistry.load_extension``
ExtensionLoader     Finds bundles by id on a list of search directories
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from string import Template
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence

import yaml
from pydantic import Field, ValidationError, model_validator

from nfgraph_core.api.errors import ExportError, ExtensionLoadError, ExtensionNotFound
from nfgraph_core.graph.ir_types import (
    AddressFamily,
    FlowColor,
    ParamDef,
    StrictBaseModel,
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

logger = logging.getLogger(__name__)

BUNDLE_SUFFIXES = (".yaml", ".yml", ".json")

_SAFE_VALUE = re.compile(r"^[A-Za-z0-9_.:/,@+-]*$")

_DIRECTIONS = {
    "either": FlowColor.unset,
    "incoming": FlowColor.incoming,
    "outgoing": FlowColor.outgoing,
}


# ---------------------------------------------------------------------------
# Manifest schema
# ---------------------------------------------------------------------------


class ExtensionPortSpec(StrictBaseModel):
    """Port of an extension node.

    Attributes
    ----------
    family : AddressFamily
        ``inet``, ``ipv4`` or ``ipv6``.
    direction : str
        ``either``, ``incoming`` or ``outgoing``.
    rule : str
        Output ports only: nft match expression sending packets out here.
        Empty means "everything that reaches this rule".
    """

    family: AddressFamily = AddressFamily.inet
    direction: Literal["either", "incoming", "outgoing"] = "either"
    rule: str = ""
    display_name: str = ""


class ExtensionNodeSpec(StrictBaseModel):
    display_name: str
    params: Dict[str, str] = Field(default_factory=dict)
    input: ExtensionPortSpec = Field(default_factory=ExtensionPortSpec)
    outputs: Dict[str, ExtensionPortSpec] = Field(default_factory=dict)
    setup: List[str] = Field(default_factory=list)
    files: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_port_names(self) -> "ExtensionNodeSpec":
        if "in" in self.outputs:
            raise ValueError("output port name 'in' is reserved for the input")
        for name in self.files:
            if not name or "/" in name or name.startswith("."):
                raise ValueError(f"invalid data file name '{name}'")
        return self


class ExtensionManifest(StrictBaseModel):
    id: str = Field(pattern=r"^[a-z][a-z0-9_-]*$")
    version: str = "0"
    description: str = ""
    nodes: Dict[str, ExtensionNodeSpec]

    @model_validator(mode="after")
    def _check_reserved_id(self) -> "ExtensionManifest":
        if self.id == "core":
            raise ValueError("extension id 'core' is reserved for built-in node types")
        return self


# ---------------------------------------------------------------------------
# Node type built from a manifest entry
# ---------------------------------------------------------------------------


class ExtensionNodeType(BaseNodeType):
    """Node type whose export logic is the templated rules of its manifest."""

    def __init__(self, extension_id: str, local_id: str, spec: ExtensionNodeSpec) -> None:
        self.extension_id = extension_id
        self.local_id = local_id
        self.type_id = f"{extension_id}:{local_id}"
        self.display_name = spec.display_name
        self._spec = spec
        ports = [
            input_port(
                "in",
                spec.input.display_name,
                family=spec.input.family,
                flow=_DIRECTIONS[spec.input.direction],
            )
        ]
        for name, out in spec.outputs.items():
            ports.append(
                output_port(
                    name,
                    out.display_name,
                    family=out.family,
                    flow=_DIRECTIONS[out.direction],
                )
            )
        self._ports = tuple(ports)
        self._params = tuple(
            ParamDef(name=pid, display_name=label, default="", required=False)
            for pid, label in spec.params.items()
        )

    def _render(self, node_id: str, text: str, mapping: Dict[str, str]) -> str:
        try:
            return Template(text).substitute(mapping)
        except KeyError as exc:
            raise ExportError(node_id, f"unknown placeholder {exc} in '{text}'") from exc
        except ValueError as exc:
            raise ExportError(node_id, f"bad template '{text}': {exc}") from exc

    def emit(self, node, incoming, outgoing, ctx: EmitContext) -> Fragment:
        chain = ctx.chain(node.node_id)
        mapping = dict(self.resolve_params(node))
        for name, value in mapping.items():
            if not _SAFE_VALUE.match(value):
                raise ExportError(
                    node.node_id,
                    f"parameter '{name}' may only contain letters, digits and _ . : / , @ + -",
                )
        mapping.update(
            node_id=node.node_id,
            chain=chain,
            data=f"{ctx.data_dir}/{node.node_id}",
            NFT='"$NFT"',
            TABLE="$TABLE",
        )
        lines = [header(node, self)]
        lines.extend(self._render(node.node_id, line, mapping) for line in self._spec.setup)
        for name, out in self._spec.outputs.items():
            match = self._render(node.node_id, out.rule, mapping).strip()
            verdict = ctx.verdict(connection_from(outgoing, name))
            lines.append(ctx.rule(chain, f"{match} {verdict}".strip()))
        files = {
            name: self._render(node.node_id, body, mapping)
            for name, body in self._spec.files.items()
        }
        return Fragment(script="\n".join(lines), files=files)

    def predicate(self, node, output: str) -> Optional[Predicate]:
        params = {k: str(node.params.get(k, "")) for k in self._spec.params}
        if output:
            params["output"] = output
        return Predicate(variant=self.type_id, params=params)


# ---------------------------------------------------------------------------
# Bundles
# ---------------------------------------------------------------------------


def _fingerprint(payload: Any) -> str:
    blob = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


@dataclass
class ExtensionBundle:
    """A named set of node types, loaded into a registry as one unit."""

    extension_id: str
    node_types: List[Any]
    fingerprint: str
    source: Optional[Path] = None
    version: str = "0"
    description: str = ""
    manifest: Optional[ExtensionManifest] = field(default=None, repr=False)

    @classmethod
    def from_manifest(
        cls, manifest: ExtensionManifest, source: Optional[Path] = None
    ) -> "ExtensionBundle":
        types = [
            ExtensionNodeType(manifest.id, local_id, spec)
            for local_id, spec in manifest.nodes.items()
        ]
        return cls(
            extension_id=manifest.id,
            node_types=types,
            fingerprint=_fingerprint(manifest.model_dump(mode="json")),
            source=source,
            version=manifest.version,
            description=manifest.description,
            manifest=manifest,
        )

    @classmethod
    def from_types(cls, extension_id: str, node_types: Sequence[Any]) -> "ExtensionBundle":
        """Bundle hand-written node type objects (Python extensions)."""
        for schema in node_types:
            if getattr(schema, "extension_id", None) is None:
                schema.extension_id = extension_id
        payload = [schema.describe() for schema in node_types]
        return cls(
            extension_id=extension_id,
            node_types=list(node_types),
            fingerprint=_fingerprint(payload),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: Optional[Path] = None) -> "ExtensionBundle":
        try:
            manifest = ExtensionManifest.model_validate(data)
        except ValidationError as exc:
            where = f" in {source}" if source else ""
            raise ExtensionLoadError(f"Invalid extension bundle{where}: {exc}") from exc
        return cls.from_manifest(manifest, source=source)


def load_extension_file(path) -> ExtensionBundle:
    """Read and validate one bundle file (YAML or JSON)."""
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ExtensionLoadError(f"Cannot read extension bundle {path}: {exc}") from exc
    except (yaml.YAMLError, UnicodeDecodeError) as exc:
        raise ExtensionLoadError(f"Cannot parse extension bundle {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ExtensionLoadError(f"Extension bundle {path} must be a mapping")
    return ExtensionBundle.from_dict(data, source=path)


class ExtensionLoader:
    """Locate extension bundles by id.

    A bundle for id ``geoip`` is looked up as ``geoip.yaml``, ``geoip.yml``
    or ``geoip.json`` in each search directory, in order; failing that, every
    bundle file in the directories is checked for a matching ``id``.
    """

    def __init__(self, search_paths: Iterable = ()) -> None:
        self.search_paths: List[Path] = [Path(p) for p in search_paths]

    def _candidates(self) -> List[Path]:
        found: List[Path] = []
        for directory in self.search_paths:
            if not directory.is_dir():
                continue
            found.extend(
                sorted(p for p in directory.iterdir() if p.suffix in BUNDLE_SUFFIXES)
            )
        return found

    def find(self, extension_id: str) -> Optional[Path]:
        for directory in self.search_paths:
            for suffix in BUNDLE_SUFFIXES:
                candidate = directory / f"{extension_id}{suffix}"
                if candidate.is_file():
                    return candidate
        for candidate in self._candidates():
            try:
                with open(candidate, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f)
            except (OSError, yaml.YAMLError, UnicodeDecodeError) as exc:
                logger.warning(f"Skipping unreadable extension bundle {candidate}: {exc}")
                continue
            if isinstance(data, dict) and data.get("id") == extension_id:
                return candidate
        return None

    def load(self, extension_id: str) -> ExtensionBundle:
        path = self.find(extension_id)
        if path is None:
            raise ExtensionNotFound(extension_id)
        bundle = load_extension_file(path)
        if bundle.extension_id != extension_id:
            raise ExtensionLoadError(
                f"{path} declares extension '{bundle.extension_id}', "
                f"expected '{extension_id}'"
            )
        return bundle

    def available(self) -> List[str]:
        ids = set()
        for candidate in self._candidates():
            try:
                ids.add(load_extension_file(candidate).extension_id)
            except ExtensionLoadError as exc:
                logger.warning(str(exc))
        return sorted(ids)
