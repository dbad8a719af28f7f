import unittest

from photo_scanner.config import ScannerConfig, parse_extensions
from photo_scanner.errors import ConfigurationError


class ScannerConfigTests(unittest.TestCase):
    def test_defaults_without_environment(self):
        cfg = ScannerConfig.from_env({})
        self.assertEqual(cfg.api_base, "http://localhost:11434/v1")
        self.assertEqual(cfg.vision_model, "llava:13b")
        self.assertEqual(cfg.embedding_model, "mxbai-embed-large")
        self.assertEqual(cfg.collection_name, "photos")
        self.assertEqual(cfg.embedding_dimension, 1024)
        self.assertEqual(cfg.concurrency, 2)
        self.assertEqual(cfg.regenerate_prefixes, ())

    def test_environment_then_overrides(self):
        env = {
            "CHAT_API_BASE": "http://gpu:8000/v1",
            "CHAT_MODEL_IMAGE": "qwen2-vl",
            "PHOTO_SCANNER_CONCURRENCY": "6",
            "PHOTO_SCANNER_EXTENSIONS": "JPG, heic,.png",
            "PHOTO_SCANNER_REGENERATE_PREFIXES": "The image|In this photo",
        }
        cfg = ScannerConfig.from_env(env, concurrency=3, vision_model=None)
        self.assertEqual(cfg.api_base, "http://gpu:8000/v1")
        self.assertEqual(cfg.vision_model, "qwen2-vl")
        self.assertEqual(cfg.concurrency, 3)
        self.assertEqual(cfg.supported_exts, (".jpg", ".heic", ".png"))
        self.assertEqual(cfg.regenerate_prefixes, ("The image", "In this photo"))

    def test_invalid_values_are_configuration_errors(self):
        with self.assertRaises(ConfigurationError):
            ScannerConfig.from_env({"PHOTO_SCANNER_DIMENSION": "large"})
        with self.assertRaises(ConfigurationError):
            ScannerConfig.from_env({}, concurrency=0)
        with self.assertRaises(ConfigurationError):
            ScannerConfig.from_env({}, colour="red")

    def test_api_base_needs_a_scheme(self):
        with self.assertRaises(ConfigurationError):
            ScannerConfig.from_env({}, api_base="localhost:11434/v1")
        cfg = ScannerConfig.from_env({}, api_base="https://backend.test/v1")
        self.assertEqual(cfg.api_base, "https://backend.test/v1")

    def test_parse_extensions_dedupes(self):
        self.assertEqual(parse_extensions("jpg,.JPG,jpeg,,"), (".jpg", ".jpeg"))


if __name__ == "__main__":
    unittest.main()
