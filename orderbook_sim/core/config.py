"""
Configuration loader for orderbook-sim.

Pydantic models validate the settings; ``load_settings`` merges a YAML file
with environment variables and returns a validated ``Settings`` object.

Design Principles:
- Reference defaults: ``Settings()`` with no input is a complete, working
  configuration (the public endpoints of the three venues, 5000 ms reconnect
  interval, 5 attempts). A YAML file only needs to carry what it changes.
- Environment Overrides: any setting can be overridden by an environment
  variable, e.g. ``venues.okx.max_reconnect_attempts`` by
  ``ORDERBOOK_SIM_VENUES__OKX__MAX_RECONNECT_ATTEMPTS``.
- Clear Errors: validation failures are wrapped in ``ConfigError`` with the
  location of every offending field.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from orderbook_sim.core.events import Venue

# --- Custom Exceptions ---

class ConfigError(Exception):
    """Custom exception for configuration-related errors."""
    pass

# --- Reference endpoints ---

DEFAULT_WS_URLS: Dict[Venue, str] = {
    Venue.OKX: "wss://ws.okx.com:8443/ws/v5/public",
    Venue.BYBIT: "wss://stream.bybit.com/v5/public/linear",
    Venue.DERIBIT: "wss://www.deribit.com/ws/api/v2",
}

DEFAULT_REST_URLS: Dict[Venue, str] = {
    Venue.OKX: "https://www.okx.com/api/v5/market/books",
    Venue.BYBIT: "https://api.bybit.com/v5/market/orderbook",
    Venue.DERIBIT: "https://www.deribit.com/api/v2/public/get_order_book",
}

# --- Pydantic Models for Configuration Sections ---

class VenueSettings(BaseModel):
    """Connection policy for one venue."""
    url: Optional[str] = None
    rest_url: Optional[str] = None
    reconnect_interval_ms: int = Field(5000, gt=0)
    max_reconnect_attempts: int = Field(5, ge=0)
    connect_timeout_sec: float = Field(10.0, gt=0)
    backoff: Literal["fixed", "exponential"] = "exponential"
    backoff_multiplier: float = Field(2.0, ge=1.0)
    max_backoff_ms: int = Field(60_000, gt=0)
    jitter_ratio: float = Field(0.2, ge=0.0, le=1.0)
    queue_maxsize: int = Field(1000, gt=0)
    ping_interval_sec: Optional[float] = Field(20.0, gt=0)

    @field_validator("url", "rest_url")
    def url_must_have_scheme(cls, v):
        if v is not None and "://" not in v:
            raise ValueError(f"'{v}' is not an absolute URL")
        return v


class VenuesSettings(BaseModel):
    """Per-venue settings; missing endpoints fall back to the public defaults."""
    okx: VenueSettings = Field(default_factory=VenueSettings)
    bybit: VenueSettings = Field(default_factory=VenueSettings)
    deribit: VenueSettings = Field(default_factory=VenueSettings)

    @model_validator(mode="after")
    def fill_default_endpoints(self):
        for venue in Venue:
            vs: VenueSettings = getattr(self, venue.value)
            if vs.url is None:
                vs.url = DEFAULT_WS_URLS[venue]
            if vs.rest_url is None:
                vs.rest_url = DEFAULT_REST_URLS[venue]
        return self

    def for_venue(self, venue: Venue | str) -> VenueSettings:
        return getattr(self, Venue(venue).value)


class RuntimeSettings(BaseModel):
    """What the feed watches when started without explicit arguments."""
    default_venue: Venue = Venue.OKX
    default_symbol: str = "BTC-USDT"
    symbols: Dict[Venue, List[str]] = Field(default_factory=lambda: {
        Venue.OKX: ["BTC-USDT", "ETH-USDT"],
        Venue.BYBIT: ["BTCUSDT", "ETHUSDT"],
        Venue.DERIBIT: ["BTC-PERPETUAL", "ETH-PERPETUAL"],
    })


class SimulationSettings(BaseModel):
    """Parameters for the order-impact simulation and book analytics."""
    avg_volume_per_second: float = Field(100.0, gt=0)
    depth_levels: int = Field(15, gt=0)


class RestSettings(BaseModel):
    """One-shot REST snapshot client."""
    rate_limit_rps: float = Field(5.0, gt=0)
    timeout_sec: float = Field(10.0, gt=0)
    depth: int = Field(20, gt=0)


class LoggingSettings(BaseModel):
    """Settings for logging configuration."""
    level: str = Field("INFO", description="The logging level, e.g., DEBUG, INFO, WARNING.")


class Settings(BaseModel):
    """The root Pydantic model for the entire configuration."""
    venues: VenuesSettings = Field(default_factory=VenuesSettings)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
    simulation: SimulationSettings = Field(default_factory=SimulationSettings)
    rest: RestSettings = Field(default_factory=RestSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

# --- Helper Functions ---

ENV_PREFIX = "ORDERBOOK_SIM"


def _load_config_from_yaml(path: Path) -> Dict[str, Any]:
    """Loads the YAML configuration file."""
    if not path.is_file():
        raise ConfigError(f"Configuration file not found at: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML file at {path}: {e}") from e


def _get_env_overrides(prefix: str = ENV_PREFIX) -> Dict[str, Any]:
    """
    Parses environment variables and converts them into a nested dict.
    e.g., ORDERBOOK_SIM_VENUES__OKX__URL becomes {'venues': {'okx': {'url': '...'}}}
    """
    overrides: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(prefix + "_"):
            continue
        parts = key.removeprefix(prefix).strip("_").lower().split("__")
        # Lists, dicts, booleans and numbers arrive JSON-encoded
        if (value.startswith('[') and value.endswith(']')) or \
           (value.startswith('{') and value.endswith('}')) or \
           value.lower() in ['true', 'false', 'null'] or \
           value.replace('.', '', 1).isdigit():
            try:
                parsed_value = json.loads(value.lower() if value.lower() in ['true', 'false', 'null'] else value)
            except json.JSONDecodeError:
                parsed_value = value
        else:
            parsed_value = value

        d = overrides
        for part in parts[:-1]:
            d = d.setdefault(part, {})
        d[parts[-1]] = parsed_value
    return overrides


def _merge_configs(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merges the override dict into the base dict.
    Overwrites values, dictionaries, and lists.
    """
    for key, value in overrides.items():
        if isinstance(value, dict) and key in base and isinstance(base[key], dict):
            base[key] = _merge_configs(base[key], value)
        else:
            base[key] = value
    return base


def _format_validation_error(e: ValidationError) -> str:
    error_details = e.errors()
    error_msg = f"Configuration validation failed with {len(error_details)} error(s):\n"
    for error in error_details:
        loc = " -> ".join(map(str, error['loc'])) if error['loc'] else "root"
        error_msg += f"  - Location: {loc}\n    Message: {error['msg']}\n"
    return error_msg

# --- Public API ---

def settings_from_dict(config: Dict[str, Any]) -> Settings:
    """Validates an already-merged config dict."""
    try:
        return Settings.model_validate(config)
    except ValidationError as e:
        logger.error(_format_validation_error(e))
        raise ConfigError("Failed to validate settings.") from e


def load_settings(path: str | Path | None = "settings.yaml") -> Settings:
    """
    Loads, validates, and returns the application settings.

    Steps:
    1. Loads the base configuration from the YAML file (skipped when ``path``
       is None, in which case the reference defaults are the base).
    2. Scans environment variables for ``ORDERBOOK_SIM_`` overrides.
    3. Merges the overrides into the base configuration.
    4. Validates the result against the ``Settings`` model.

    Raises:
        ConfigError: If the file is missing or unparsable, or validation fails.
    """
    base: Dict[str, Any] = {}
    if path is not None:
        logger.info(f"Loading settings from '{path}'...")
        base = _load_config_from_yaml(Path(path))

    final_config = _merge_configs(base, _get_env_overrides())
    settings = settings_from_dict(final_config)
    logger.success("Settings loaded and validated successfully.")
    return settings


__all__ = [
    "ConfigError",
    "DEFAULT_WS_URLS",
    "DEFAULT_REST_URLS",
    "VenueSettings",
    "VenuesSettings",
    "RuntimeSettings",
    "SimulationSettings",
    "RestSettings",
    "LoggingSettings",
    "Settings",
    "settings_from_dict",
    "load_settings",
]
