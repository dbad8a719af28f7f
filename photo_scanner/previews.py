from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any

from .config import ScannerConfig
from .errors import ImageUnreadable, MetadataUnreadable, MetadataWriteFailed
from .preprocess import image_size, render_preview
from .walker import Walker

logger = logging.getLogger(__name__)


class PreviewEmbedder:
    """Embed a small EXIF preview into photos that lack one.

    The dimension tags are rewritten from the actual pixel size on every
    embed, so they never keep values from before a transformation.
    """

    def __init__(self, cfg: ScannerConfig, metadata: Any, *, walker: Walker | None = None):
        self.cfg = cfg
        self.metadata = metadata
        self.walker = walker or Walker(cfg.supported_exts)

    def embed(self, path: Path, *, force: bool = False) -> bool:
        if not force and self.metadata.has_preview(path):
            logger.debug("Preview already present in %s", path)
            return False

        width, height = image_size(path)
        preview = render_preview(
            path,
            self.cfg.preview_width,
            self.cfg.preview_height,
            quality=self.cfg.preview_quality,
        )
        self.metadata.write_preview(path, preview, width=width, height=height)
        logger.info("Embedded preview in %s (%dx%d)", path, width, height)
        return True

    def run(self, root: Path | str, *, force: bool = False) -> dict[str, Any]:
        counts = {"embedded": 0, "present": 0, "failed": 0}
        failures: list[str] = []
        lock = threading.Lock()

        def work(path: Path) -> None:
            try:
                added = self.embed(path, force=force)
            except (ImageUnreadable, MetadataUnreadable, MetadataWriteFailed) as exc:
                logger.error("%s for %s: %s", exc.kind, path, exc)
                with lock:
                    counts["failed"] += 1
                    failures.append(f"{path}: {exc.kind}: {exc}")
                return
            with lock:
                counts["embedded" if added else "present"] += 1

        paths = self.walker.walk(root)
        with ThreadPoolExecutor(max_workers=self.cfg.concurrency, thread_name_prefix="preview") as pool:
            futures = [pool.submit(work, path) for path in paths]
            for future in as_completed(futures):
                future.result()

        return {**counts, "failures": sorted(failures)}
