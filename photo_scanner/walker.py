from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Iterator

from .errors import InvalidRoot

logger = logging.getLogger(__name__)


class Walker:
    """Lazily enumerate image files below a root, depth-first in name order."""

    def __init__(self, extensions: Iterable[str]):
        self.extensions = {e.lower() if e.startswith(".") else f".{e.lower()}" for e in extensions}

    def walk(self, root: Path | str) -> Iterator[Path]:
        root = Path(root)
        if not root.exists():
            raise InvalidRoot(f"Root does not exist: {root}")
        if not root.is_dir():
            raise InvalidRoot(f"Root is not a directory: {root}")
        return self._iter(Path(os.path.abspath(root)))

    def matches(self, path: Path) -> bool:
        return path.suffix.lower() in self.extensions

    def _iter(self, root: Path) -> Iterator[Path]:
        visited: set[str] = set()
        stack = [root]
        while stack:
            directory = stack.pop()
            key = os.path.normcase(os.path.realpath(directory))
            if key in visited:
                logger.debug("Already visited %s, skipping", directory)
                continue
            visited.add(key)

            try:
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as exc:
                logger.warning("Cannot list %s: %s", directory, exc)
                continue

            subdirs: list[Path] = []
            for entry in entries:
                # Hidden entries include the temporary copies metadata writes create.
                if entry.name.startswith("."):
                    continue
                try:
                    if entry.is_dir(follow_symlinks=True):
                        subdirs.append(Path(entry.path))
                    elif entry.is_file(follow_symlinks=True) and self.matches(Path(entry.name)):
                        yield Path(entry.path)
                except OSError as exc:
                    logger.warning("Cannot stat %s: %s", entry.path, exc)

            stack.extend(reversed(subdirs))
