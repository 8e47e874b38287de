"""Provider configuration supplied to the router.

The provider list comes from a YAML file when one exists, otherwise from the API
keys found in the environment. Either way the result is an immutable
:class:`RouterSettings`; replacing it on the router rebuilds the adapter set.
"""
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from core.config import get_settings
from core.env import provider_base_url, provider_key
from core.errors import ConfigError
from core.logging import get_logger
from relay.types import PROVIDERS, ProviderKind

logger = get_logger(__name__)


class ProviderConfig(BaseModel):
    """One configured provider: kind, enabled flag, key and optional base URL."""

    model_config = ConfigDict(frozen=True)

    provider_id: ProviderKind
    enabled: bool = False
    api_key: Optional[str] = None
    base_url: Optional[str] = None

    @field_validator("api_key", "base_url")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @property
    def is_usable(self) -> bool:
        """Enabled and carrying a key; only usable configs get an adapter."""
        return self.enabled and bool(self.api_key)

    def summary(self) -> Dict[str, Any]:
        """Key-free description for logs."""
        return {
            "provider": self.provider_id.value,
            "enabled": self.enabled,
            "has_key": bool(self.api_key),
        }


class RouterSettings(BaseModel):
    """Ordered provider list. Order is the fallback priority."""

    model_config = ConfigDict(frozen=True)

    providers: Tuple[ProviderConfig, ...] = ()

    @field_validator("providers")
    @classmethod
    def _unique_ids(cls, value: Tuple[ProviderConfig, ...]) -> Tuple[ProviderConfig, ...]:
        seen = set()
        for config in value:
            if config.provider_id in seen:
                raise ValueError(f"provider '{config.provider_id.value}' is listed more than once")
            seen.add(config.provider_id)
        return value

    def enabled(self) -> List[ProviderConfig]:
        return [p for p in self.providers if p.is_usable]

    def get(self, kind: ProviderKind) -> Optional[ProviderConfig]:
        for config in self.providers:
            if config.provider_id == kind:
                return config
        return None


# ---------------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------------


class _ProviderEntry(BaseModel):
    """Raw YAML entry; ``api_key_env`` names the variable holding the key."""

    model_config = ConfigDict(extra="forbid")

    provider_id: ProviderKind
    enabled: bool = True
    api_key: Optional[str] = None
    api_key_env: Optional[str] = None
    base_url: Optional[str] = None


class _ProvidersFile(BaseModel):
    providers: List[_ProviderEntry] = []


def _resolve(entry: _ProviderEntry) -> ProviderConfig:
    api_key = entry.api_key
    if not api_key and entry.api_key_env:
        api_key = os.getenv(entry.api_key_env)
    if not api_key:
        api_key = provider_key(entry.provider_id.value)
    return ProviderConfig(
        provider_id=entry.provider_id,
        enabled=entry.enabled,
        api_key=api_key,
        base_url=entry.base_url or provider_base_url(entry.provider_id.value),
    )


def settings_from_env() -> RouterSettings:
    """Enable every provider whose key is present in the environment, in registry order."""
    providers = []
    for kind in PROVIDERS:
        api_key = provider_key(kind.value)
        if api_key:
            providers.append(
                ProviderConfig(
                    provider_id=kind,
                    enabled=True,
                    api_key=api_key,
                    base_url=provider_base_url(kind.value),
                )
            )
    return RouterSettings(providers=tuple(providers))


def parse_router_settings(data: Any, source: str = "<data>") -> RouterSettings:
    """Validate an already-parsed provider document."""
    if data is None:
        data = {}
    try:
        parsed = _ProvidersFile.model_validate(data)
        return RouterSettings(providers=tuple(_resolve(entry) for entry in parsed.providers))
    except ValidationError as e:
        raise ConfigError(f"Invalid provider configuration in {source}: {e}") from e


def load_router_settings(path: Optional[Union[str, Path]] = None) -> RouterSettings:
    """Load the provider list from YAML, falling back to the environment."""
    if path is None:
        path = get_settings().providers_file
    path = Path(path)
    if not path.exists():
        logger.info(f"No provider file at {path}; using API keys from the environment")
        return settings_from_env()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML file {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read provider file {path}: {e}") from e

    settings = parse_router_settings(data, str(path))
    logger.info(f"Loaded {len(settings.providers)} provider(s) from {path}")
    return settings
