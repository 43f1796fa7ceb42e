"""
nfgraph_core.api.errors

Typed exceptions for registry, graph editing, snapshot loading and export.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class NFGraphError(Exception):
    """Base nfgraph error."""


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class RegistryError(NFGraphError):
    pass


class DuplicateType(RegistryError):
    def __init__(self, type_id: str):
        super().__init__(f"Node type '{type_id}' is already registered")
        self.type_id = type_id


class UnknownType(RegistryError):
    def __init__(self, type_id: str):
        super().__init__(f"Unknown node type '{type_id}'")
        self.type_id = type_id


class ExtensionConflict(RegistryError):
    def __init__(self, extension_id: str, type_ids=()):
        self.extension_id = extension_id
        self.type_ids = sorted(type_ids)
        if self.type_ids:
            msg = (
                f"Extension '{extension_id}' conflicts on "
                f"{', '.join(self.type_ids)}"
            )
        else:
            msg = f"Extension '{extension_id}' is already loaded with different content"
        super().__init__(msg)


class ExtensionNotFound(RegistryError):
    def __init__(self, extension_id: str):
        super().__init__(f"Extension '{extension_id}' not found")
        self.extension_id = extension_id


class ExtensionLoadError(RegistryError):
    pass


# ---------------------------------------------------------------------------
# Graph editing
# ---------------------------------------------------------------------------


class GraphEditError(NFGraphError):
    """Raised by a graph mutation that was refused; the graph is unchanged."""


class PermanentNodeRemoval(GraphEditError):
    pass


class PortOccupied(GraphEditError):
    pass


class SelfLoop(GraphEditError):
    pass


class TypeMismatch(GraphEditError):
    pass


class UnknownNode(GraphEditError):
    pass


class UnknownPort(GraphEditError):
    pass


class DuplicateNode(GraphEditError):
    pass


# ---------------------------------------------------------------------------
# Snapshot / export
# ---------------------------------------------------------------------------


class CorruptGraph(NFGraphError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ExportError(NFGraphError):
    def __init__(self, node_id: Optional[str], reason: str):
        self.node_id = node_id
        self.reason = reason
        if node_id is None:
            super().__init__(reason)
        else:
            super().__init__(f"Node '{node_id}': {reason}")


class ConfigError(NFGraphError):
    """Unreadable or invalid settings file."""
