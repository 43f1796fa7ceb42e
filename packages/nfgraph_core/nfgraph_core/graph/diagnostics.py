"""nfgraph_core.graph.diagnostics

Non-fatal findings produced while normalizing and colouring a graph.
They never abort a compile; they are collected on the result objects and
logged at WARNING level where they are produced.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class DiagnosticKind(str, Enum):
    unreachable = "unreachable"
    cycle_broken = "cycle_broken"
    color_conflict = "color_conflict"


@dataclass(frozen=True)
class Diagnostic:
    kind: DiagnosticKind
    message: str
    node_id: Optional[str] = None
    port: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "node_id": self.node_id,
            "port": self.port,
        }

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"
