from __future__ import annotations

import logging
from typing import Any, Sequence

from .errors import MetadataUnreadable
from .models import GateDecision, PhotoRecord
from .utils import point_id_for

logger = logging.getLogger(__name__)


class IdempotencyGate:
    """Decide whether a photo still needs work, from its own metadata.

    Description and index entry are checked independently. A description this
    tool wrote (it carries a model name) whose index marker is missing, or whose
    entry is gone from the index or holds a different text, is resumed as
    INDEX_ONLY instead of being described again. Descriptions written by
    other tools are left alone.
    """

    def __init__(
        self,
        metadata: Any,
        index: Any = None,
        *,
        force: bool = False,
        regenerate_prefixes: Sequence[str] = (),
    ):
        self.metadata = metadata
        self.index = index
        self.force = force
        self.regenerate_prefixes = tuple(p for p in regenerate_prefixes if p)

    def check(self, record: PhotoRecord) -> GateDecision:
        try:
            state = self.metadata.read_state(record.path)
        except MetadataUnreadable as exc:
            logger.warning("Skipping %s, metadata unreadable: %s", record.path, exc)
            return GateDecision.SKIP_UNREADABLE_METADATA

        record.description = state.description
        record.indexed_id = state.indexed_id
        record.persons = list(state.persons)
        record.location = state.location

        if self.force:
            return GateDecision.PROCESS

        description = state.description
        if description is None or not description.text.strip():
            return GateDecision.PROCESS

        if self.regenerate_prefixes and description.text.startswith(self.regenerate_prefixes):
            logger.info('Regenerating boilerplate description "%s" for %s', description.text, record.path)
            return GateDecision.PROCESS

        if not description.model and state.indexed_id is None:
            logger.debug('Foreign description "%s" exists for %s', description.text, record.path)
            return GateDecision.SKIP_ALREADY_DESCRIBED

        expected_id = point_id_for(record.path)
        if state.indexed_id == expected_id and self._indexed(expected_id, record, description.text):
            logger.debug('Description "%s" exists for %s', description.text, record.path)
            return GateDecision.SKIP_ALREADY_DESCRIBED

        logger.info("Description exists but its index entry is missing or stale for %s", record.path)
        return GateDecision.INDEX_ONLY

    def _indexed(self, point_id: str, record: PhotoRecord, text: str) -> bool:
        if self.index is None:
            return True
        try:
            row = self.index.get(point_id)
        except (OSError, RuntimeError, ValueError) as exc:
            logger.warning("Cannot check index entry for %s: %s", record.path, exc)
            return False
        if row is None:
            return False
        if str(row.get("description") or "").strip() != text.strip():
            logger.info("Index entry for %s holds an outdated description", record.path)
            return False
        return True
