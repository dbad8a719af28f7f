from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from .config import ScannerConfig
from .errors import IndexSchemaMismatch
from .models import SearchResult
from .utils import distance_to_similarity

logger = logging.getLogger(__name__)


@dataclass
class SearchResponse:
    query: str
    results: list[SearchResult] = field(default_factory=list)
    answer: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "results": [asdict(r) for r in self.results],
            "answer": self.answer,
        }


class PhotoSearch:
    """Natural-language search over the described photos."""

    def __init__(self, cfg: ScannerConfig, *, index: Any, inference: Any):
        self.cfg = cfg
        self.index = index
        self.inference = inference

    def search(self, query: str, top_k: int = 10) -> list[SearchResult]:
        query = query.strip()
        if not query:
            return []

        self.index.ensure_collection(self.cfg.embedding_dimension)
        vector = self.inference.embed(query)
        if len(vector) != self.cfg.embedding_dimension:
            raise IndexSchemaMismatch(
                f"Query embedding has {len(vector)} components, "
                f"collection expects {self.cfg.embedding_dimension}"
            )

        rows = self.index.search(vector, max(1, top_k))
        results = [
            SearchResult(
                vector_id=str(row.get("id", "")),
                file_path=str(row.get("path", "")),
                description=str(row.get("description", "")),
                folder=str(row.get("folder", "")),
                score=round(distance_to_similarity(row.get("_distance")), 6),
            )
            for row in rows
        ]
        results.sort(key=lambda r: r.score, reverse=True)
        logger.debug("Query %r returned %d results", query, len(results))
        return results

    def answer(self, query: str, top_k: int = 5) -> SearchResponse:
        results = self.search(query, top_k)
        response = SearchResponse(query=query, results=results)
        if not results:
            return response

        options = [f"{r.file_path}: {r.description}" for r in results]
        response.answer = self.inference.answer(query, options)
        return response
