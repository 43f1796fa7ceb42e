"""nfgraph_core.graph.registry

Node type registry: ``type_id`` -> NodeTypeSchema.

Built-in types are registered first; extensions are loaded on top of them,
each as one all-or-nothing step.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from nfgraph_core.api.errors import DuplicateType, ExtensionConflict, UnknownType
from nfgraph_core.graph.builtins import builtin_node_types
from nfgraph_core.graph.node_types import NodeTypeSchema

if TYPE_CHECKING:
    from nfgraph_core.graph.extensions import ExtensionBundle

logger = logging.getLogger(__name__)


class NodeTypeRegistry:
    """Lookup table of node types plus the extensions that contributed them."""

    def __init__(self, types: Optional[Iterable[NodeTypeSchema]] = None) -> None:
        self._types: Dict[str, NodeTypeSchema] = {}
        self._extensions: Dict[str, str] = {}
        for schema in types or ():
            self.register(schema)

    @classmethod
    def with_builtins(cls) -> "NodeTypeRegistry":
        return cls(builtin_node_types())

    # ------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------

    def register(self, schema: NodeTypeSchema) -> None:
        if schema.type_id in self._types:
            raise DuplicateType(schema.type_id)
        self._types[schema.type_id] = schema

    def resolve(self, type_id: str) -> NodeTypeSchema:
        try:
            return self._types[type_id]
        except KeyError:
            raise UnknownType(type_id) from None

    def get(self, type_id: str) -> Optional[NodeTypeSchema]:
        return self._types.get(type_id)

    def type_ids(self) -> List[str]:
        return list(self._types)

    def __contains__(self, type_id: object) -> bool:
        return type_id in self._types

    def __len__(self) -> int:
        return len(self._types)

    # ------------------------------------------------------------------
    # Extensions
    # ------------------------------------------------------------------

    def load_extension(self, bundle: "ExtensionBundle") -> bool:
        """Register every node type of ``bundle`` or none of them.

        Returns False when the same bundle (same id and fingerprint) was
        already loaded, True when it was registered now.

        Raises
        ------
        ExtensionConflict
            If a type id collides with a registered type or repeats inside
            the bundle, or the extension id is already loaded with other
            content.
        """
        loaded = self._extensions.get(bundle.extension_id)
        if loaded is not None:
            if loaded == bundle.fingerprint:
                logger.debug(f"Extension '{bundle.extension_id}' already loaded")
                return False
            raise ExtensionConflict(bundle.extension_id)

        seen: Dict[str, NodeTypeSchema] = {}
        clashes = set()
        for schema in bundle.node_types:
            if schema.type_id in self._types or schema.type_id in seen:
                clashes.add(schema.type_id)
            seen[schema.type_id] = schema
        if clashes:
            raise ExtensionConflict(bundle.extension_id, clashes)

        self._types.update(seen)
        self._extensions[bundle.extension_id] = bundle.fingerprint
        logger.info(
            f"Loaded extension '{bundle.extension_id}' "
            f"({len(seen)} node types)"
        )
        return True

    def extension_ids(self) -> List[str]:
        return sorted(self._extensions)

    def has_extension(self, extension_id: str) -> bool:
        return extension_id in self._extensions

    def describe(self) -> List[Dict[str, Any]]:
        return [self._types[tid].describe() for tid in self._types]


def default_registry() -> NodeTypeRegistry:
    """A fresh registry holding only the built-in node types."""
    return NodeTypeRegistry.with_builtins()
