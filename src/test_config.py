import os
import unittest
from unittest.mock import patch

from rxresolve.core.config import Settings
from rxresolve.core.exceptions import ConfigurationError


class SettingsFromEnvTests(unittest.TestCase):
    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()
        self.assertEqual(settings.rxnav_base_url, "https://rxnav.nlm.nih.gov/REST")
        self.assertEqual(settings.rxnav_max_entries, 20)
        self.assertEqual(settings.rxnav_timeout_seconds, 30.0)
        self.assertEqual(settings.llm_rerank_top_n, 5)
        self.assertEqual(settings.llm_override_threshold, 0.9)
        self.assertIsNone(settings.embedding_cache_max_entries)
        self.assertIsNone(settings.google_api_key)

    def test_numeric_overrides(self):
        env = {
            "RXNAV_MAX_ENTRIES": "50",
            "RXNAV_TIMEOUT_SECONDS": "2.5",
            "LLM_RERANK_TOP_N": "3",
            "LLM_OVERRIDE_THRESHOLD": "0.95",
            "EMBEDDING_CACHE_MAX_ENTRIES": "1000",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()
        self.assertEqual(settings.rxnav_max_entries, 50)
        self.assertEqual(settings.rxnav_timeout_seconds, 2.5)
        self.assertEqual(settings.llm_rerank_top_n, 3)
        self.assertEqual(settings.llm_override_threshold, 0.95)
        self.assertEqual(settings.embedding_cache_max_entries, 1000)

    def test_invalid_numbers_raise_configuration_error(self):
        for name in (
            "RXNAV_MAX_ENTRIES",
            "RXNAV_TIMEOUT_SECONDS",
            "LLM_RERANK_TOP_N",
            "LLM_OVERRIDE_THRESHOLD",
            "EMBEDDING_CACHE_MAX_ENTRIES",
        ):
            with self.subTest(name=name):
                with patch.dict(os.environ, {name: "lots"}, clear=True):
                    with self.assertRaises(ConfigurationError) as ctx:
                        Settings.from_env()
                self.assertIn(name, str(ctx.exception))

    def test_blank_number_uses_default(self):
        with patch.dict(os.environ, {"LLM_RERANK_TOP_N": "  "}, clear=True):
            self.assertEqual(Settings.from_env().llm_rerank_top_n, 5)

    def test_missing_key_fails_fast(self):
        with self.assertRaises(ConfigurationError):
            Settings(google_api_key=None).require_google_api_key()


if __name__ == "__main__":
    unittest.main()
