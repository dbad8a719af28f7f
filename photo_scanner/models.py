from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Union

from .utils import normalize_path


class GateDecision(str, Enum):
    PROCESS = "process"
    INDEX_ONLY = "index_only"
    SKIP_ALREADY_DESCRIBED = "already_described"
    SKIP_UNREADABLE_METADATA = "unreadable_metadata"

    @property
    def is_skip(self) -> bool:
        return self in (GateDecision.SKIP_ALREADY_DESCRIBED, GateDecision.SKIP_UNREADABLE_METADATA)


class ItemState(str, Enum):
    PENDING = "pending"
    GATED = "gated"
    DESCRIBING = "describing"
    DESCRIBING_FAILED = "describing_failed"
    DESCRIBED = "described"
    EMBEDDING = "embedding"
    EMBEDDING_FAILED = "embedding_failed"
    EMBEDDED = "embedded"
    PERSISTING = "persisting"
    PERSISTED = "persisted"
    PERSIST_FAILED = "persist_failed"
    SKIPPED = "skipped"


# Allowed successors; anything else is a programming error.
TRANSITIONS: dict[ItemState, frozenset[ItemState]] = {
    ItemState.PENDING: frozenset({ItemState.GATED}),
    ItemState.GATED: frozenset({ItemState.SKIPPED, ItemState.DESCRIBING, ItemState.EMBEDDING}),
    ItemState.DESCRIBING: frozenset({ItemState.DESCRIBED, ItemState.DESCRIBING_FAILED}),
    ItemState.DESCRIBED: frozenset({ItemState.EMBEDDING}),
    ItemState.EMBEDDING: frozenset({ItemState.EMBEDDED, ItemState.EMBEDDING_FAILED}),
    ItemState.EMBEDDED: frozenset({ItemState.PERSISTING}),
    ItemState.PERSISTING: frozenset({ItemState.PERSISTED, ItemState.PERSIST_FAILED}),
}


@dataclass(frozen=True)
class Description:
    text: str
    model: str = ""
    duration_seconds: float = 0.0
    created_at: str = ""


@dataclass
class PhotoRecord:
    path: Path
    mtime: float
    description: Description | None = None
    indexed_id: str | None = None
    persons: list[str] = field(default_factory=list)
    location: str | None = None

    @classmethod
    def from_path(cls, path: Path | str) -> "PhotoRecord":
        resolved = Path(os.path.abspath(path))
        return cls(path=resolved, mtime=resolved.stat().st_mtime)

    @property
    def key(self) -> str:
        return normalize_path(self.path)

    @property
    def folder_name(self) -> str | None:
        name = self.path.parent.name
        return name or None


@dataclass(frozen=True)
class MetadataState:
    description: Description | None = None
    indexed_id: str | None = None
    persons: list[str] = field(default_factory=list)
    location: str | None = None
    has_preview: bool = False


@dataclass(frozen=True)
class Skipped:
    path: Path
    reason: str


@dataclass(frozen=True)
class Succeeded:
    path: Path
    description: str
    vector_id: str


@dataclass(frozen=True)
class Failed:
    path: Path
    error_kind: str
    message: str = ""
    state: ItemState = ItemState.DESCRIBING_FAILED


ProcessingOutcome = Union[Skipped, Succeeded, Failed]


@dataclass
class SearchResult:
    vector_id: str
    file_path: str
    description: str
    folder: str
    score: float
