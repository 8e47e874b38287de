import unittest
from unittest.mock import patch
from pathlib import Path
import sys

# Add project root to the path to allow imports
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

import core.env

class TestEnvLoading(unittest.TestCase):

    @patch('core.env.os.getenv')
    def test_provider_key_aliases_and_fallback(self, mock_getenv):
        """
        Tests if core.env resolves provider keys through their aliases by mocking os.getenv.
        """
        test_vars = {
            "GOOGLE_API_KEY": "google-key",
            "PPLX_API_KEY": "pplx-key",
            "ANTHROPIC_API_KEY": "",
            "CLAUDE_API_KEY": "claude-key",
            "OLLAMA_BASE_URL": "http://gpu:11434",
        }
        mock_getenv.side_effect = lambda key, default=None: test_vars.get(key, default)

        # 1. Alias lookup
        self.assertEqual(core.env.provider_key("gemini"), "google-key")
        self.assertEqual(core.env.provider_key("perplexity"), "pplx-key")

        # 2. Empty values fall through to the next alias
        self.assertEqual(core.env.provider_key("anthropic"), "claude-key")

        # 3. Missing keys and unknown providers
        self.assertIsNone(core.env.provider_key("openai"))
        self.assertIsNone(core.env.provider_key("nonexistent"))

        # 4. Base URL overrides
        self.assertEqual(core.env.provider_base_url("ollama"), "http://gpu:11434")
        self.assertIsNone(core.env.provider_base_url("gemini"))

    def test_every_provider_has_key_aliases(self):
        from relay.types import PROVIDERS

        for kind in PROVIDERS:
            self.assertIn(kind.value, core.env.PROVIDER_KEY_ALIASES)

if __name__ == '__main__':
    unittest.main()
