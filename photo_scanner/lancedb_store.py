from __future__ import annotations

import logging
import threading
from typing import Any

import lancedb
import pyarrow as pa

from .config import ScannerConfig
from .errors import IndexSchemaMismatch, IndexUpsertFailed, RetryExhausted
from .retry import RetryPolicy
from .utils import utc_now_iso

logger = logging.getLogger(__name__)

VECTOR_COLUMN = "vector"


def collection_schema(dimension: int) -> pa.Schema:
    return pa.schema(
        [
            pa.field("id", pa.string(), nullable=False),
            pa.field(VECTOR_COLUMN, pa.list_(pa.float32(), dimension)),
            pa.field("path", pa.string()),
            pa.field("folder", pa.string()),
            pa.field("description", pa.string()),
            pa.field("model", pa.string()),
            pa.field("updated_at", pa.string()),
        ]
    )


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, (OSError, RuntimeError))


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class LanceVectorIndex:
    """Similarity-search collection keyed by a stable per-file id."""

    def __init__(self, cfg: ScannerConfig, *, retry: RetryPolicy | None = None):
        self.cfg = cfg
        self.name = cfg.collection_name
        self.retry = retry or RetryPolicy.from_config(cfg)
        self.db = lancedb.connect(cfg.lancedb_uri)
        self.dimension: int | None = None
        self._table: Any = None
        self._write_lock = threading.Lock()

    def _table_names(self) -> set[str]:
        try:
            raw = self.db.list_tables()
            if isinstance(raw, dict):
                tables = raw.get("tables", [])
            elif hasattr(raw, "tables"):
                tables = list(getattr(raw, "tables"))
            elif isinstance(raw, list):
                tables = raw
            else:
                tables = list(raw)
            return {str(x) for x in tables}
        except AttributeError:
            return {str(x) for x in self.db.table_names()}

    def ensure_collection(self, dimension: int) -> None:
        if self.name in self._table_names():
            table = self.db.open_table(self.name)
            existing = self._vector_dimension(table.schema)
            if existing != dimension:
                raise IndexSchemaMismatch(
                    f"Collection '{self.name}' stores {existing}-dimensional vectors, "
                    f"configured dimension is {dimension}"
                )
            logger.debug("Opened collection %s (dim=%d)", self.name, dimension)
        else:
            table = self.db.create_table(self.name, schema=collection_schema(dimension))
            logger.info("Created collection %s (dim=%d)", self.name, dimension)
        self._table = table
        self.dimension = dimension

    @staticmethod
    def _vector_dimension(schema: pa.Schema) -> int | None:
        if VECTOR_COLUMN not in schema.names:
            return None
        vtype = schema.field(VECTOR_COLUMN).type
        if pa.types.is_fixed_size_list(vtype):
            return vtype.list_size
        return None

    @property
    def table(self) -> Any:
        if self._table is None:
            raise RuntimeError("ensure_collection() must be called before using the index")
        return self._table

    def upsert(self, point_id: str, vector: list[float], payload: dict[str, str]) -> None:
        if self.dimension is not None and len(vector) != self.dimension:
            raise IndexSchemaMismatch(
                f"Vector has {len(vector)} components, collection '{self.name}' expects {self.dimension}"
            )
        row = {
            "id": point_id,
            VECTOR_COLUMN: [float(x) for x in vector],
            "path": str(payload.get("path", "")),
            "folder": str(payload.get("folder", "")),
            "description": str(payload.get("description", "")),
            "model": str(payload.get("model", "")),
            "updated_at": str(payload.get("updated_at") or utc_now_iso()),
        }
        try:
            self.retry.call(lambda: self._merge(row), is_retryable=is_transient, label=f"upsert {point_id}")
        except RetryExhausted as exc:
            raise IndexUpsertFailed(f"Upsert of {point_id} failed: {exc}", payload.get("path")) from exc
        except (ValueError, TypeError) as exc:
            raise IndexUpsertFailed(f"Upsert of {point_id} rejected: {exc}", payload.get("path")) from exc

    def _merge(self, row: dict[str, Any]) -> None:
        data = pa.Table.from_pylist([row], schema=self.table.schema)
        with self._write_lock:
            (
                self.table.merge_insert("id")
                .when_matched_update_all()
                .when_not_matched_insert_all()
                .execute(data)
            )

    def get(self, point_id: str) -> dict[str, Any] | None:
        rows = self.table.search().where(f"id = {_quote(point_id)}").limit(1).to_list()
        return dict(rows[0]) if rows else None

    def count(self) -> int:
        return self.table.count_rows()

    def search(self, vector: list[float], top_k: int) -> list[dict[str, Any]]:
        search = self.table.search(vector, vector_column_name=VECTOR_COLUMN)
        try:
            search = search.metric("cosine")
        except AttributeError:
            search = search.distance_type("cosine")
        rows = search.limit(max(1, int(top_k))).to_list()
        return [dict(r) for r in rows]
