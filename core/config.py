from pathlib import Path
from typing import Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigError
from core.logging import get_logger

# --- Base Path ---
BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_PROVIDERS_FILE = BASE_DIR / 'configs' / 'providers.yml'
logger = get_logger(__name__)

# --- Environment-based Settings ---

class AppSettings(BaseSettings):
    """
    Main application settings loaded from environment variables.
    The .env file is loaded automatically by pydantic-settings.
    """
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # --- General & Core ---
    LOG_LEVEL: str = Field("INFO", description="Log level for the application (e.g., DEBUG, INFO, WARNING, ERROR)")
    LOG_FILE: Optional[str] = Field(None, description="Optional: Path of a rotating JSON log file.")
    RELAY_CONFIG_PATH: Optional[str] = Field(None, description="Optional: Path to a provider list YAML file.")

    # --- Resilient Transport ---
    REQUEST_TIMEOUT: float = Field(30.0, gt=0, description="Per-attempt HTTP timeout in seconds.")
    MAX_RETRIES: int = Field(3, ge=0, description="Retries after the first attempt of an upstream call.")

    # --- Circuit Breaker ---
    CIRCUIT_BREAKER_ENABLED: bool = Field(False, description="Guard every adapter with its own circuit breaker.")
    CIRCUIT_FAILURE_THRESHOLD: int = Field(5, ge=1)
    CIRCUIT_SUCCESS_THRESHOLD: int = Field(2, ge=1)
    CIRCUIT_RESET_TIMEOUT: float = Field(60.0, ge=0, description="Seconds an open circuit waits before probing.")

    # --- Request Batcher ---
    BATCH_SIZE: int = Field(10, ge=1)
    BATCH_DELAY: float = Field(1.0, ge=0, description="Seconds to wait for more items before flushing.")
    BATCH_MAX_RETRIES: int = Field(3, ge=0)
    BATCH_BASE_DELAY: float = Field(1.0, ge=0)
    BATCH_MAX_DELAY: float = Field(30.0, ge=0)

    # --- Monitoring ---
    METRICS_PORT: Optional[int] = Field(None, description="Optional: Port of the Prometheus exporter.")

    @property
    def providers_file(self) -> Path:
        """The provider list YAML file to load."""
        if self.RELAY_CONFIG_PATH:
            return Path(self.RELAY_CONFIG_PATH)
        return DEFAULT_PROVIDERS_FILE

# --- Global Config Instance ---
_settings_instance: Optional[AppSettings] = None

def get_settings() -> AppSettings:
    """
    Returns a singleton instance of the AppSettings object.
    This function controls when the settings are loaded and validated,
    making the application more testable.
    """
    global _settings_instance
    if _settings_instance is None:
        try:
            _settings_instance = AppSettings()
        except ValidationError as e:
            logger.critical(f"FATAL: Configuration validation error: {e}")
            raise ConfigError(f"Invalid environment configuration: {e}") from e
    return _settings_instance

def reset_settings() -> None:
    """Drops the cached settings so the next get_settings() call reloads them."""
    global _settings_instance
    _settings_instance = None
