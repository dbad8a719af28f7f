import unittest

from fakes import FakeInference, FakeVectorIndex

from photo_scanner.config import ScannerConfig
from photo_scanner.search_engine import PhotoSearch


class PhotoSearchTests(unittest.TestCase):
    def setUp(self):
        self.inference = FakeInference(dimension=8)
        self.index = FakeVectorIndex()
        self.cfg = ScannerConfig.from_env({}, embedding_dimension=8)
        for i, text in enumerate(["Boats in the harbour", "Snow on the peaks", "Market stalls at noon"]):
            self.index.entries[f"id-{i}"] = (
                self.inference.embed(text),
                {"path": f"/photos/{i}.jpg", "folder": "trip", "description": text},
            )

    def test_exact_description_ranks_first(self):
        engine = PhotoSearch(self.cfg, index=self.index, inference=self.inference)
        results = engine.search("Snow on the peaks", top_k=2)
        self.assertEqual(len(results), 2)
        self.assertEqual(results[0].file_path, "/photos/1.jpg")
        self.assertEqual(results[0].description, "Snow on the peaks")
        self.assertAlmostEqual(results[0].score, 1.0)
        self.assertGreaterEqual(results[0].score, results[1].score)

    def test_empty_query_returns_nothing(self):
        engine = PhotoSearch(self.cfg, index=self.index, inference=self.inference)
        self.assertEqual(engine.search("   "), [])
        self.assertEqual(self.inference.calls["embed"], 3)

    def test_answer_uses_retrieved_descriptions(self):
        engine = PhotoSearch(self.cfg, index=self.index, inference=self.inference)
        response = engine.answer("Where were the boats?", top_k=3)
        self.assertEqual(response.answer, "3 photos match: Where were the boats?")
        self.assertEqual(response.to_dict()["query"], "Where were the boats?")
        self.assertEqual(len(response.to_dict()["results"]), 3)


if __name__ == "__main__":
    unittest.main()
