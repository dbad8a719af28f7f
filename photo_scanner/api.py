from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

from .config import ScannerConfig
from .inference import InferenceClient
from .ingestion import Orchestrator
from .lancedb_store import LanceVectorIndex
from .metadata_store import ExifToolMetadataStore
from .previews import PreviewEmbedder
from .progress import ProgressReporter, RunSummary
from .search_engine import PhotoSearch, SearchResponse


def open_metadata_store(cfg: ScannerConfig) -> ExifToolMetadataStore:
    metadata = ExifToolMetadataStore.from_config(cfg)
    metadata.check_available()
    return metadata


def build_orchestrator(
    cfg: ScannerConfig,
    *,
    metadata: ExifToolMetadataStore,
    inference: InferenceClient,
    reporter: ProgressReporter | None = None,
    cancel_event: threading.Event | None = None,
) -> Orchestrator:
    return Orchestrator(
        cfg,
        metadata=metadata,
        index=LanceVectorIndex(cfg),
        inference=inference,
        reporter=reporter,
        cancel_event=cancel_event,
    )


def scan(
    root: str | Path,
    *,
    cfg: ScannerConfig | None = None,
    reporter: ProgressReporter | None = None,
    cancel_event: threading.Event | None = None,
) -> RunSummary:
    cfg = cfg or ScannerConfig.from_env()
    with open_metadata_store(cfg) as metadata, InferenceClient(cfg) as inference:
        orchestrator = build_orchestrator(
            cfg, metadata=metadata, inference=inference, reporter=reporter, cancel_event=cancel_event
        )
        return orchestrator.run(root)


def search(query: str, *, top_k: int = 10, answer: bool = False, cfg: ScannerConfig | None = None) -> dict[str, Any]:
    cfg = cfg or ScannerConfig.from_env()
    with InferenceClient(cfg) as inference:
        engine = PhotoSearch(cfg, index=LanceVectorIndex(cfg), inference=inference)
        if answer:
            response = engine.answer(query, top_k=top_k)
        else:
            response = SearchResponse(query=query, results=engine.search(query, top_k=top_k))
    return response.to_dict()


def embed_previews(root: str | Path, *, force: bool = False, cfg: ScannerConfig | None = None) -> dict[str, Any]:
    cfg = cfg or ScannerConfig.from_env()
    with open_metadata_store(cfg) as metadata:
        return PreviewEmbedder(cfg, metadata).run(root, force=force)
