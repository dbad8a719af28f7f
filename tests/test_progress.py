import threading
import unittest
from pathlib import Path

from photo_scanner.models import Failed, ItemState, Skipped, Succeeded
from photo_scanner.progress import RunCounters, format_summary


class RunCountersTests(unittest.TestCase):
    def test_concurrent_records_are_not_lost(self):
        counters = RunCounters()

        def work(n: int) -> None:
            for i in range(200):
                counters.record(Succeeded(path=Path(f"/p/{n}-{i}.jpg"), description="d", vector_id="v"))

        threads = [threading.Thread(target=work, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(counters.snapshot(), {"processed": 1600, "skipped": 0, "failed": 0})

    def test_summary_lists_failures_by_path(self):
        counters = RunCounters()
        counters.record(Skipped(path=Path("/p/a.jpg"), reason="already_described"))
        counters.record(Failed(path=Path("/p/c.jpg"), error_kind="InferenceUnavailable", message="refused"))
        counters.record(
            Failed(path=Path("/p/b.jpg"), error_kind="MetadataWriteFailed", state=ItemState.PERSIST_FAILED)
        )

        summary = counters.summary()
        self.assertEqual([f.path.name for f in summary.failures], ["b.jpg", "c.jpg"])
        self.assertEqual(summary.total, 3)

        text = format_summary(summary)
        self.assertIn("Processed: 0  Skipped: 1  Failed: 2", text)
        self.assertIn("already_described=1", text)
        self.assertIn("InferenceUnavailable", text)
        self.assertIn(str(Path("/p/c.jpg")), text)

        data = summary.to_dict()
        self.assertEqual(data["failures"][0]["state"], "persist_failed")

    def test_peak_in_flight(self):
        counters = RunCounters()
        counters.enter()
        counters.enter()
        counters.leave()
        counters.enter()
        self.assertEqual(counters.peak_in_flight, 2)


if __name__ == "__main__":
    unittest.main()
