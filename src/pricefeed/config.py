from dataclasses import dataclass, field, is_dataclass
import os
from pathlib import Path
import sys
import tomllib
from typing import Any, TypeVar

import keyring
from keyring.errors import KeyringError
from loguru import logger

# --- Constants ---
APP_NAME = "pricefeed"
# Use a platform-agnostic user config directory
if sys.platform == "win32":
    CONFIG_DIR = Path.home() / "AppData" / "Roaming" / APP_NAME
else:
    CONFIG_DIR = Path.home() / ".config" / APP_NAME

CONFIG_FILE = CONFIG_DIR / "config.toml"

# --- Keyring Service Name ---
KEYRING_SERVICE_NAME = f"{APP_NAME.lower()}-api-keys"

DEFAULT_CONFIG_TEXT = """\
# pricefeed configuration file
# Add your settings overrides here, for example:
#
# [prices]
# backend = "polling"
# symbols = ["btc", "eth", "sol"]
# poll_interval_s = 5.0
"""

T = TypeVar("T")


# --- Dataclass Models for Settings ---


@dataclass
class GeneralSettings:
    """General application settings."""

    log_level_console: str = "INFO"
    log_level_file: str = "DEBUG"
    log_directory: str = str(CONFIG_DIR / "logs")


@dataclass
class PriceSettings:
    """Settings for the live price backends."""

    backend: str = "polling"
    base_url: str = "https://api.coingecko.com/api/v3"
    stream_url: str = ""
    symbols: list[str] = field(default_factory=lambda: ["btc", "eth"])
    poll_interval_s: float = 5.0
    max_attempts: int = 3
    retry_delay_s: float = 0.5
    request_timeout_s: float = 15.0


@dataclass
class NewsSettings:
    """Settings for the NewsAPI headline fetch."""

    # Note: The API key is stored in the system keyring, not here.
    base_url: str = "https://newsapi.org/v2"
    query: str = "crypto"
    preview_page_size: int = 5
    latest_page_size: int = 20
    max_attempts: int = 2
    retry_delay_s: float = 0.5
    request_timeout_s: float = 15.0


@dataclass
class BookmarkSettings:
    """Settings for the bookmarked article id set."""

    path: str = str(CONFIG_DIR / "bookmarks.json")


@dataclass
class Settings:
    """Root container for all application settings."""

    general: GeneralSettings = field(default_factory=GeneralSettings)
    prices: PriceSettings = field(default_factory=PriceSettings)
    news: NewsSettings = field(default_factory=NewsSettings)
    bookmarks: BookmarkSettings = field(default_factory=BookmarkSettings)


def _update_dataclass(dc_instance: T, data: dict[str, Any]) -> T:
    """Recursively updates a dataclass instance from a dictionary."""
    for f in field_names(dc_instance):
        if f in data:
            field_value = getattr(dc_instance, f)
            if is_dataclass(field_value):
                if isinstance(data[f], dict):
                    _update_dataclass(field_value, data[f])
                else:
                    logger.warning(f"Ignoring non-table value for section '{f}'.")
            else:
                setattr(dc_instance, f, data[f])
    return dc_instance


def field_names(dc_instance: Any) -> list[str]:
    """Helper to get field names from a dataclass instance."""
    return [f.name for f in dc_instance.__dataclass_fields__.values()]


def load_config(path: Path = CONFIG_FILE) -> Settings:
    """Loads settings from a TOML file, merging them with defaults.

    If the config file does not exist, it creates one with commented defaults.

    Args:
        path: The path to the configuration file.

    Returns:
        A populated Settings object.
    """
    settings_obj = Settings()
    logger.info(f"Loading configuration from '{path}'...")

    if not path.exists():
        logger.warning(f"Configuration file not found. Creating default at '{path}'.")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(DEFAULT_CONFIG_TEXT, encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to create default config file: {e}")
        return settings_obj

    try:
        with path.open("rb") as f:
            user_config = tomllib.load(f)
        _update_dataclass(settings_obj, user_config)
        logger.success("Successfully loaded user configuration.")
    except tomllib.TOMLDecodeError as e:
        logger.error(f"Error decoding TOML from '{path}': {e}")
        logger.warning("Using default settings due to configuration error.")
        settings_obj = Settings()
    except OSError as e:
        logger.error(f"Could not read configuration file '{path}': {e}")
        logger.warning("Using default settings due to configuration error.")
        settings_obj = Settings()

    return settings_obj


# --- API Key Management ---


def _env_var_name(service: str) -> str:
    return f"{APP_NAME.upper()}_{service.upper()}_API_KEY"


def get_api_key(service: str) -> str | None:
    """Retrieves the API key for a service.

    The `PRICEFEED_<SERVICE>_API_KEY` environment variable takes precedence
    over the system keyring.

    Args:
        service: The lower-case name of the service (e.g., 'newsapi').

    Returns:
        The API key, or None if not found.
    """
    service = service.lower()
    env_value = os.environ.get(_env_var_name(service), "").strip()
    if env_value:
        return env_value
    try:
        api_key = keyring.get_password(KEYRING_SERVICE_NAME, f"{service}_key")
        if api_key:
            logger.debug(f"Retrieved API key for '{service}' from keyring.")
        return api_key
    except KeyringError as e:
        logger.error(f"Could not retrieve API key from keyring: {e}")
        return None


def set_api_key(service: str, api_key: str) -> None:
    """Stores the API key for a service in the system keyring.

    Args:
        service: The lower-case name of the service.
        api_key: The API key to store.
    """
    service = service.lower()
    try:
        keyring.set_password(KEYRING_SERVICE_NAME, f"{service}_key", api_key)
        logger.info(f"Successfully stored API key for '{service}' in keyring.")
    except KeyringError as e:
        logger.error(f"Could not store API key in keyring: {e}")
