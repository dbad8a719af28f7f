from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable

from .config import ScannerConfig
from .errors import (
    ConfigurationError,
    ImageUnreadable,
    IndexSchemaMismatch,
    IndexUpsertFailed,
    InferenceError,
    ItemError,
    MetadataWriteFailed,
)
from .gate import IdempotencyGate
from .models import (
    TRANSITIONS,
    Description,
    Failed,
    GateDecision,
    ItemState,
    PhotoRecord,
    ProcessingOutcome,
    Skipped,
    Succeeded,
)
from .preprocess import prepare_for_inference
from .progress import ProgressReporter, RunCounters, RunSummary
from .utils import point_id_for, utc_now_iso
from .walker import Walker

logger = logging.getLogger(__name__)


class ItemRun:
    """Forward-only state machine for one photo."""

    def __init__(self, path: Path, on_transition: Callable[[Path, ItemState], None] | None = None):
        self.path = path
        self.state = ItemState.PENDING
        self._on_transition = on_transition

    def advance(self, state: ItemState) -> None:
        if state not in TRANSITIONS.get(self.state, frozenset()):
            raise RuntimeError(f"Illegal transition {self.state.value} -> {state.value} for {self.path}")
        self.state = state
        if self._on_transition is not None:
            self._on_transition(self.path, state)

    def fail(self, state: ItemState, exc: BaseException) -> Failed:
        self.advance(state)
        kind = exc.kind if isinstance(exc, ItemError) else type(exc).__name__
        logger.error("%s for %s: %s", kind, self.path, exc)
        return Failed(path=self.path, error_kind=kind, message=str(exc), state=state)


class Orchestrator:
    """Walks a library and enriches each photo with a description and a vector.

    At most ``cfg.concurrency`` photos are between Pending and a terminal state
    at any time. Item failures are recorded and never stop the run; only
    configuration errors do.
    """

    def __init__(
        self,
        cfg: ScannerConfig,
        *,
        metadata: Any,
        index: Any,
        inference: Any,
        walker: Walker | None = None,
        reporter: ProgressReporter | None = None,
        cancel_event: threading.Event | None = None,
        on_transition: Callable[[Path, ItemState], None] | None = None,
    ):
        self.cfg = cfg
        self.metadata = metadata
        self.index = index
        self.inference = inference
        self.walker = walker or Walker(cfg.supported_exts)
        self.reporter = reporter or ProgressReporter(enabled=False)
        self.cancel_event = cancel_event or threading.Event()
        self.on_transition = on_transition
        self.gate = IdempotencyGate(
            metadata,
            index,
            force=cfg.force,
            regenerate_prefixes=cfg.regenerate_prefixes,
        )
        self._fatal: list[ConfigurationError] = []
        self._fatal_lock = threading.Lock()

    def run(self, root: Path | str) -> RunSummary:
        paths = self.walker.walk(root)
        self.index.ensure_collection(self.cfg.embedding_dimension)

        counters = RunCounters()
        limiter = threading.BoundedSemaphore(self.cfg.concurrency)
        self._fatal = []
        cancelled = False

        self.reporter.start()
        try:
            with ThreadPoolExecutor(max_workers=self.cfg.concurrency, thread_name_prefix="photo-scanner") as pool:
                try:
                    for path in paths:
                        if not self._acquire(limiter):
                            cancelled = True
                            break
                        future = pool.submit(self._run_item, path, counters)
                        future.add_done_callback(lambda _f: limiter.release())
                except KeyboardInterrupt:
                    logger.warning("Interrupted; waiting for in-flight items to finish")
                    self.cancel_event.set()
                    cancelled = True
        finally:
            self.reporter.close()

        if self._fatal:
            raise self._fatal[0]
        return counters.summary(cancelled=cancelled or self.cancel_event.is_set())

    def _acquire(self, limiter: threading.BoundedSemaphore) -> bool:
        while not self.cancel_event.is_set():
            if limiter.acquire(timeout=0.2):
                if self.cancel_event.is_set():
                    limiter.release()
                    return False
                return True
        return False

    def _run_item(self, path: Path, counters: RunCounters) -> None:
        counters.enter()
        try:
            outcome = self.process_path(path)
        except ConfigurationError as exc:
            with self._fatal_lock:
                self._fatal.append(exc)
            self.cancel_event.set()
            logger.error("Configuration error, stopping dispatch: %s", exc)
            outcome = Failed(path=Path(path), error_kind=type(exc).__name__, message=str(exc))
        finally:
            counters.leave()
        counters.record(outcome)
        self.reporter.update(counters, Path(path))

    def process_path(self, path: Path | str) -> ProcessingOutcome:
        item = ItemRun(Path(path), self.on_transition)
        try:
            return self._process(item)
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while processing %s in state %s", item.path, item.state.value)
            return Failed(path=item.path, error_kind=type(exc).__name__, message=str(exc), state=item.state)

    def _process(self, item: ItemRun) -> ProcessingOutcome:
        path = item.path
        try:
            record = PhotoRecord.from_path(path)
        except OSError as exc:
            item.advance(ItemState.GATED)
            item.advance(ItemState.DESCRIBING)
            return item.fail(ItemState.DESCRIBING_FAILED, ImageUnreadable(str(exc), path))
        item.path = record.path

        decision = self.gate.check(record)
        item.advance(ItemState.GATED)
        if decision.is_skip:
            item.advance(ItemState.SKIPPED)
            return Skipped(path=record.path, reason=decision.value)

        if decision is GateDecision.PROCESS:
            item.advance(ItemState.DESCRIBING)
            try:
                description = self._describe(record)
            except (ImageUnreadable, InferenceError) as exc:
                return item.fail(ItemState.DESCRIBING_FAILED, exc)
            item.advance(ItemState.DESCRIBED)
            logger.info(
                'Generated "%s" for "%s", time taken: %.2f seconds, persons: %s',
                description.text,
                record.path,
                description.duration_seconds,
                record.persons,
            )
        else:
            description = record.description
            if description is None:
                raise RuntimeError(f"No stored description to index for {record.path}")

        item.advance(ItemState.EMBEDDING)
        try:
            vector = self.inference.embed(description.text)
        except InferenceError as exc:
            return item.fail(ItemState.EMBEDDING_FAILED, exc)
        if len(vector) != self.cfg.embedding_dimension:
            raise IndexSchemaMismatch(
                f"Embedding model {self.cfg.embedding_model} returned {len(vector)} components, "
                f"collection expects {self.cfg.embedding_dimension}"
            )
        item.advance(ItemState.EMBEDDED)

        item.advance(ItemState.PERSISTING)
        vector_id = point_id_for(record.path)
        try:
            if decision is GateDecision.PROCESS:
                self.metadata.write_description(record.path, description)
            self.index.upsert(vector_id, vector, self._payload(record, description))
            self.metadata.mark_indexed(record.path, vector_id)
        except (MetadataWriteFailed, IndexUpsertFailed) as exc:
            return item.fail(ItemState.PERSIST_FAILED, exc)
        item.advance(ItemState.PERSISTED)
        logger.debug("Upserted %s as %s", record.path, vector_id)
        return Succeeded(path=record.path, description=description.text, vector_id=vector_id)

    def _describe(self, record: PhotoRecord) -> Description:
        image_bytes = prepare_for_inference(record.path, self.cfg.max_image_dim)
        return self.inference.describe(
            image_bytes,
            persons=record.persons if self.cfg.use_person_hint else (),
            folder_name=record.folder_name if self.cfg.use_folder_hint else None,
            location=record.location if self.cfg.use_location_hint else None,
        )

    @staticmethod
    def _payload(record: PhotoRecord, description: Description) -> dict[str, str]:
        return {
            "path": str(record.path),
            "folder": record.folder_name or "",
            "description": description.text,
            "model": description.model,
            "updated_at": utc_now_iso(),
        }
