from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from .config import ScannerConfig
from .errors import RetryExhausted

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter, shared by every network-facing adapter."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.25
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    @classmethod
    def from_config(cls, cfg: ScannerConfig) -> "RetryPolicy":
        return cls(
            max_attempts=cfg.max_attempts,
            base_delay=cfg.retry_base_delay,
            max_delay=cfg.retry_max_delay,
            jitter=cfg.retry_jitter,
        )

    def delay_for(self, attempt: int) -> float:
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay *= 1.0 + random.uniform(-self.jitter, self.jitter)
        return max(0.0, delay)

    def call(
        self,
        func: Callable[[], T],
        *,
        is_retryable: Callable[[BaseException], bool],
        label: str = "",
    ) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return func()
            except Exception as exc:
                if not is_retryable(exc):
                    raise
                if attempt >= self.max_attempts:
                    raise RetryExhausted(attempt, exc) from exc
                delay = self.delay_for(attempt)
                logger.warning(
                    "Retry %d/%d for %s after %.1fs: %s: %s",
                    attempt,
                    self.max_attempts,
                    label or getattr(func, "__name__", "call"),
                    delay,
                    type(exc).__name__,
                    exc,
                )
                self.sleep(delay)
