import tempfile
import unittest
from pathlib import Path

from fakes import FakeMetadataStore, FakeVectorIndex, make_jpeg

from photo_scanner.gate import IdempotencyGate
from photo_scanner.models import GateDecision, PhotoRecord
from photo_scanner.utils import point_id_for


class IdempotencyGateTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.photo = make_jpeg(Path(self._tmp.name) / "Porto" / "a.jpg")
        self.metadata = FakeMetadataStore()
        self.index = FakeVectorIndex(stored_dimension=4)

    def tearDown(self):
        self._tmp.cleanup()

    def _check(self, **kwargs) -> GateDecision:
        gate = IdempotencyGate(self.metadata, self.index, **kwargs)
        return gate.check(PhotoRecord.from_path(self.photo))

    def _mark_done(self) -> None:
        point_id = point_id_for(self.photo)
        self.metadata.set_description(self.photo, "Tiled facades above the river.", model="llava:13b")
        self.metadata.markers[str(PhotoRecord.from_path(self.photo).key)] = point_id
        self.index.entries[point_id] = (
            [0.0] * 4,
            {"path": str(self.photo), "description": "Tiled facades above the river."},
        )

    def test_no_description_is_processed(self):
        self.assertEqual(self._check(), GateDecision.PROCESS)

    def test_described_and_indexed_is_skipped(self):
        self._mark_done()
        self.assertEqual(self._check(), GateDecision.SKIP_ALREADY_DESCRIBED)

    def test_foreign_description_is_skipped(self):
        self.metadata.set_description(self.photo, "Written by hand.")
        self.assertEqual(self._check(), GateDecision.SKIP_ALREADY_DESCRIBED)

    def test_unreadable_metadata_is_skipped(self):
        self.metadata.unreadable.add(PhotoRecord.from_path(self.photo).key)
        with self.assertLogs("photo_scanner.gate", level="WARNING"):
            self.assertEqual(self._check(), GateDecision.SKIP_UNREADABLE_METADATA)

    def test_own_description_without_marker_is_index_only(self):
        self.metadata.set_description(self.photo, "Tiled facades above the river.", model="llava:13b")
        self.assertEqual(self._check(), GateDecision.INDEX_ONLY)

    def test_missing_index_entry_is_index_only(self):
        self._mark_done()
        self.index.entries.clear()
        self.assertEqual(self._check(), GateDecision.INDEX_ONLY)

    def test_edited_description_with_stale_index_entry_is_index_only(self):
        self._mark_done()
        self.metadata.set_description(self.photo, "Edited by hand.", model="llava:13b")
        self.assertEqual(self._check(), GateDecision.INDEX_ONLY)

    def test_force_reprocesses(self):
        self._mark_done()
        self.assertEqual(self._check(force=True), GateDecision.PROCESS)

    def test_regeneration_prefix_reprocesses(self):
        self._mark_done()
        self.metadata.set_description(self.photo, "The image shows a river.", model="llava:13b")
        self.assertEqual(self._check(regenerate_prefixes=["The image"]), GateDecision.PROCESS)
        self.assertEqual(self._check(), GateDecision.SKIP_ALREADY_DESCRIBED)

    def test_record_is_filled_from_metadata(self):
        key = PhotoRecord.from_path(self.photo).key
        self.metadata.persons[key] = ["Alice"]
        record = PhotoRecord.from_path(self.photo)
        IdempotencyGate(self.metadata, self.index).check(record)
        self.assertEqual(record.persons, ["Alice"])
        self.assertIsNone(record.description)


if __name__ == "__main__":
    unittest.main()
