from __future__ import annotations

import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tqdm import tqdm

from .models import Failed, ProcessingOutcome, Skipped, Succeeded


@dataclass
class RunSummary:
    processed: int
    skipped: int
    failed: int
    skipped_reasons: dict[str, int]
    failures: list[Failed]
    elapsed_seconds: float
    peak_in_flight: int = 0
    cancelled: bool = False

    @property
    def total(self) -> int:
        return self.processed + self.skipped + self.failed

    @property
    def throughput(self) -> float:
        return self.total / self.elapsed_seconds if self.elapsed_seconds > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "skipped_reasons": dict(self.skipped_reasons),
            "failures": [
                {"path": str(f.path), "kind": f.error_kind, "state": f.state.value, "message": f.message}
                for f in self.failures
            ],
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "items_per_second": round(self.throughput, 3),
            "cancelled": self.cancelled,
        }


@dataclass
class RunCounters:
    """Outcome counters shared by all workers of one run."""

    processed: int = 0
    skipped: int = 0
    failed: int = 0
    in_flight: int = 0
    peak_in_flight: int = 0
    skipped_reasons: Counter = field(default_factory=Counter)
    failures: list[Failed] = field(default_factory=list)
    started: float = field(default_factory=time.monotonic)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def enter(self) -> None:
        with self._lock:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)

    def leave(self) -> None:
        with self._lock:
            self.in_flight -= 1

    def record(self, outcome: ProcessingOutcome) -> None:
        with self._lock:
            if isinstance(outcome, Succeeded):
                self.processed += 1
            elif isinstance(outcome, Skipped):
                self.skipped += 1
                self.skipped_reasons[outcome.reason] += 1
            elif isinstance(outcome, Failed):
                self.failed += 1
                self.failures.append(outcome)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {"processed": self.processed, "skipped": self.skipped, "failed": self.failed}

    def summary(self, *, cancelled: bool = False) -> RunSummary:
        with self._lock:
            return RunSummary(
                processed=self.processed,
                skipped=self.skipped,
                failed=self.failed,
                skipped_reasons=dict(self.skipped_reasons),
                failures=sorted(self.failures, key=lambda f: str(f.path)),
                elapsed_seconds=time.monotonic() - self.started,
                peak_in_flight=self.peak_in_flight,
                cancelled=cancelled,
            )


class ProgressReporter:
    """Live tqdm bar; only observes the counters."""

    def __init__(self, *, enabled: bool = True, desc: str = "Processing"):
        self.enabled = enabled
        self.desc = desc
        self._bar: tqdm | None = None
        self._lock = threading.Lock()

    def start(self) -> None:
        self._bar = tqdm(desc=self.desc, unit="img", disable=not self.enabled, dynamic_ncols=True)

    def update(self, counters: RunCounters, path: Path | None = None) -> None:
        if self._bar is None:
            return
        with self._lock:
            self._bar.update(1)
            if path is not None:
                self._bar.set_description_str(f"{self.desc} {path.parent.name}", refresh=False)
            self._bar.set_postfix(counters.snapshot())

    def close(self) -> None:
        if self._bar is not None:
            self._bar.set_description_str("All items have been processed.", refresh=False)
            self._bar.close()
            self._bar = None


def format_summary(summary: RunSummary) -> str:
    lines = [
        f"Processed: {summary.processed}  Skipped: {summary.skipped}  Failed: {summary.failed}",
        f"Elapsed: {summary.elapsed_seconds:.1f}s  ({summary.throughput:.2f} items/s)",
    ]
    if summary.skipped_reasons:
        reasons = ", ".join(f"{k}={v}" for k, v in sorted(summary.skipped_reasons.items()))
        lines.append(f"Skipped by reason: {reasons}")
    if summary.cancelled:
        lines.append("Run cancelled before all items were dispatched.")
    if summary.failures:
        lines.append("Failed items:")
        for failure in summary.failures:
            lines.append(f"  {failure.error_kind:<22} {failure.path}  {failure.message}")
    return "\n".join(lines)
