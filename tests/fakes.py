from __future__ import annotations

import hashlib
import os
import threading
import time
from collections import Counter
from pathlib import Path

from PIL import Image

from photo_scanner.errors import (
    IndexSchemaMismatch,
    IndexUpsertFailed,
    InferenceUnavailable,
    MetadataUnreadable,
    MetadataWriteFailed,
)
from photo_scanner.models import Description, MetadataState


def make_jpeg(path: Path, size: tuple[int, int] = (64, 48), color: str = "red") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path, format="JPEG")
    return path


def _k(path: Path | str) -> str:
    return os.path.normcase(os.path.abspath(path))


class FakeMetadataStore:
    def __init__(self):
        self.descriptions: dict[str, Description] = {}
        self.markers: dict[str, str] = {}
        self.persons: dict[str, list[str]] = {}
        self.previews: dict[str, tuple[bytes, int, int]] = {}
        self.unreadable: set[str] = set()
        self.fail_writes: set[str] = set()
        self.fail_marks: set[str] = set()
        self.calls = Counter()
        self._lock = threading.Lock()

    def set_description(self, path: Path, text: str, model: str = "") -> None:
        self.descriptions[_k(path)] = Description(text=text, model=model)

    def read_state(self, path: Path) -> MetadataState:
        key = _k(path)
        with self._lock:
            self.calls["read_state"] += 1
        if key in self.unreadable:
            raise MetadataUnreadable("corrupt container", path)
        return MetadataState(
            description=self.descriptions.get(key),
            indexed_id=self.markers.get(key),
            persons=list(self.persons.get(key, [])),
            has_preview=key in self.previews,
        )

    def has_preview(self, path: Path) -> bool:
        return self.read_state(path).has_preview

    def write_description(self, path: Path, description: Description) -> None:
        key = _k(path)
        with self._lock:
            self.calls["write_description"] += 1
        if key in self.fail_writes:
            raise MetadataWriteFailed("disk full", path)
        with self._lock:
            self.descriptions[key] = description
            self.markers.pop(key, None)

    def mark_indexed(self, path: Path, vector_id: str) -> None:
        with self._lock:
            self.calls["mark_indexed"] += 1
        if _k(path) in self.fail_marks:
            raise MetadataWriteFailed("read-only file", path)
        with self._lock:
            self.markers[_k(path)] = vector_id

    def write_preview(self, path: Path, preview_jpeg: bytes, *, width: int, height: int) -> None:
        with self._lock:
            self.calls["write_preview"] += 1
            self.previews[_k(path)] = (preview_jpeg, width, height)


class FakeVectorIndex:
    def __init__(self, stored_dimension: int | None = None):
        self.stored_dimension = stored_dimension
        self.entries: dict[str, tuple[list[float], dict[str, str]]] = {}
        self.fail_ids: set[str] = set()
        self.calls = Counter()
        self._lock = threading.Lock()

    def ensure_collection(self, dimension: int) -> None:
        self.calls["ensure_collection"] += 1
        if self.stored_dimension is not None and self.stored_dimension != dimension:
            raise IndexSchemaMismatch(f"stored {self.stored_dimension}, configured {dimension}")
        self.stored_dimension = dimension

    def upsert(self, point_id: str, vector: list[float], payload: dict[str, str]) -> None:
        with self._lock:
            self.calls["upsert"] += 1
        if point_id in self.fail_ids:
            raise IndexUpsertFailed("index unavailable", payload.get("path"))
        with self._lock:
            self.entries[point_id] = (list(vector), dict(payload))

    def get(self, point_id: str) -> dict | None:
        if point_id not in self.entries:
            return None
        return {"id": point_id, **self.entries[point_id][1]}

    def count(self) -> int:
        return len(self.entries)

    def search(self, vector: list[float], top_k: int) -> list[dict]:
        rows = []
        for point_id, (stored, payload) in self.entries.items():
            distance = sum((a - b) ** 2 for a, b in zip(vector, stored))
            rows.append({"id": point_id, "_distance": distance, **payload})
        rows.sort(key=lambda r: r["_distance"])
        return rows[:top_k]


class FakeInference:
    """Deterministic backend that also records how many calls overlap."""

    def __init__(self, dimension: int = 8, delay: float = 0.0):
        self.dimension = dimension
        self.delay = delay
        self.unavailable = False
        self.fail_folders: set[str] = set()
        self.calls = Counter()
        self.hints: list[dict] = []
        self.in_flight = 0
        self.peak_in_flight = 0
        self.before_describe = None
        self._lock = threading.Lock()

    def _enter(self, name: str) -> None:
        with self._lock:
            self.calls[name] += 1
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)

    def _leave(self) -> None:
        with self._lock:
            self.in_flight -= 1

    def describe(self, image_bytes: bytes, *, persons=(), folder_name=None, location=None) -> Description:
        self._enter("describe")
        try:
            if self.before_describe is not None:
                self.before_describe()
            if self.delay:
                time.sleep(self.delay)
            with self._lock:
                self.hints.append({"persons": list(persons), "folder_name": folder_name, "location": location})
            if self.unavailable or folder_name in self.fail_folders:
                raise InferenceUnavailable("backend unreachable")
            return Description(text=f"A quiet scene in {folder_name}", model="fake-vision", duration_seconds=0.01)
        finally:
            self._leave()

    def embed(self, text: str) -> list[float]:
        self._enter("embed")
        try:
            if self.unavailable:
                raise InferenceUnavailable("backend unreachable")
            digest = hashlib.sha256(text.encode("utf-8")).digest()
            return [b / 255.0 for b in digest[: self.dimension]]
        finally:
            self._leave()

    def answer(self, question: str, options) -> str:
        self.calls["answer"] += 1
        return f"{len(list(options))} photos match: {question}"
