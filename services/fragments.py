"""Prompt fragments: the units the report pipeline passes between stages.

A fragment is created by the assembler, may be swapped for its resolved form
by the resolver, and is turned into a chat content part by the invoker.
Fragments live for one report request and are never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

TEXT = "text"
PENDING_BINARY = "pending_binary"
INLINE_IMAGE = "inline_image"
FILE_HANDLE = "file_handle"

IMAGE = "image"
PDF = "pdf"


@dataclass(frozen=True)
class Fragment:
    kind: str
    section: str
    position: int
    cost: float = 0.0
    text: str = ""
    # Truncation markers are the only fragments allowed past the ceiling.
    marker: bool = False
    # Binary fragments only.
    binary_type: str | None = None
    file: dict[str, Any] | None = None
    ref: str | None = None

    @property
    def is_binary(self) -> bool:
        return self.kind != TEXT


@dataclass
class AssembledPrompt:
    fragments: list[Fragment]
    ceiling: float
    truncated: list[str] = field(default_factory=list)

    @property
    def pending(self) -> list[Fragment]:
        return [f for f in self.fragments if f.kind == PENDING_BINARY]

    @property
    def committed_cost(self) -> float:
        return sum(f.cost for f in self.fragments if not f.marker)

    @property
    def total_cost(self) -> float:
        return sum(f.cost for f in self.fragments)

    def text(self) -> str:
        return "".join(f.text for f in self.fragments if f.kind == TEXT)
