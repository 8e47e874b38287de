# -*- coding: utf-8 -*-
"""
Unified Environment Variable Loader.

This module loads environment variables from a .env file and resolves provider
API keys through their aliases. Several providers are commonly configured under
more than one variable name, so lookups walk an ordered list and take the first
non-empty value.

Example:
    from core.env import provider_key
    print(provider_key('gemini'))
"""
import os
from typing import Dict, Tuple

from dotenv import load_dotenv

# Load environment variables from .env file located in the project root
# The search path starts from the current working directory and goes up.
load_dotenv()

# Ordered alias lists, first match wins.
PROVIDER_KEY_ALIASES: Dict[str, Tuple[str, ...]] = {
    'gemini': ('GEMINI_API_KEY', 'GOOGLE_API_KEY', 'VITE_GEMINI_API_KEY'),
    'openrouter': ('OPENROUTER_API_KEY',),
    'perplexity': ('PERPLEXITY_API_KEY', 'PPLX_API_KEY'),
    'openai': ('OPENAI_API_KEY',),
    'ollama': ('OLLAMA_API_KEY',),
    'zai': ('ZAI_API_KEY', 'Z_AI_API_KEY'),
    'anthropic': ('ANTHROPIC_API_KEY', 'CLAUDE_API_KEY'),
}

PROVIDER_URL_ALIASES: Dict[str, Tuple[str, ...]] = {
    'ollama': ('OLLAMA_HOST', 'OLLAMA_BASE_URL', 'OLLAMA_API_URL'),
}

def _first(*keys: str, default: str | None = None) -> str | None:
    """
    Return the value of the first environment variable that is set and not empty.

    Args:
        *keys: A sequence of environment variable names to check.
        default: The default value to return if no variable is found.

    Returns:
        The value of the first found environment variable, or the default value.
    """
    for key in keys:
        val = os.getenv(key)
        if val:
            return val
    return default

def provider_key(provider_id: str) -> str | None:
    """Return the API key configured in the environment for a provider, if any."""
    return _first(*PROVIDER_KEY_ALIASES.get(provider_id, ()))

def provider_base_url(provider_id: str) -> str | None:
    """Return a base URL override configured in the environment for a provider, if any."""
    return _first(*PROVIDER_URL_ALIASES.get(provider_id, ()))
