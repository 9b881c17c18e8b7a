# src/merchantgeo/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/merchantgeo/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `AMAP_API_KEY`, `MERCHANTGEO_LOG_LEVEL`)
- an external YAML file via `MERCHANTGEO_CONFIG_PATH`

Design rule:
- Tuning knobs (delays, thresholds, grid size) live in YAML, not hard-coded in business logic.
"""

from __future__ import annotations

import copy
import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

from merchantgeo.core.env import load_dotenv_if_present


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `merchantgeo.config`."""
    text = resources.files("merchantgeo.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "merchantgeo"
    log_level: str = "INFO"


class CacheSettings(BaseModel):
    backend: Literal["memory", "file"] = "memory"
    dir: str = ".cache/merchantgeo"
    default_ttl_seconds: int = Field(60 * 60 * 24 * 30, gt=0)


class AmapSettings(BaseModel):
    base_url: str = "https://restapi.amap.com/v3"
    api_key: str | None = None
    timeout_seconds: float = Field(10.0, gt=0)
    batch_delay_seconds: float = Field(0.2, ge=0)


class MockProviderSettings(BaseModel):
    base_lng: float = 116.0
    base_lat: float = 39.8
    batch_delay_seconds: float = Field(0.0, ge=0)


class RetrySettings(BaseModel):
    min_accuracy: float = Field(0.7, ge=0, le=1)
    max_retries: int = Field(3, ge=1)
    backoff_step_seconds: float = Field(1.0, ge=0)


class AddressSettings(BaseModel):
    min_length: int = Field(3, ge=1)
    max_length: int = Field(500, ge=1)
    common_suffixes: list[str] = Field(
        default_factory=lambda: ["市", "区", "县", "镇", "街道", "路", "街", "巷", "号"]
    )


class GeocodingSettings(BaseModel):
    providers: list[Literal["amap", "mock"]] = Field(default_factory=lambda: ["amap", "mock"])
    batch_delay_seconds: float = Field(0.1, ge=0)
    amap: AmapSettings = Field(default_factory=AmapSettings)
    mock: MockProviderSettings = Field(default_factory=MockProviderSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    address: AddressSettings = Field(default_factory=AddressSettings)


class SpatialSettings(BaseModel):
    grid_size_degrees: float = Field(0.01, gt=0)
    default_limit: int = Field(100, ge=1)
    nearest_radius_km: float = Field(50.0, gt=0)
    nearest_limit: int = Field(10, ge=1)


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    geocoding: GeocodingSettings = Field(default_factory=GeocodingSettings)
    spatial: SpatialSettings = Field(default_factory=SpatialSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: the whitelist is kept small on purpose.
    """
    data = dict(data)

    log_level = os.getenv("MERCHANTGEO_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    cache_dir = os.getenv("MERCHANTGEO_CACHE_DIR")
    if cache_dir:
        data.setdefault("cache", {})["dir"] = cache_dir

    cache_backend = os.getenv("MERCHANTGEO_CACHE_BACKEND")
    if cache_backend:
        data.setdefault("cache", {})["backend"] = cache_backend

    amap_key = os.getenv("AMAP_API_KEY")
    if amap_key:
        data.setdefault("geocoding", {}).setdefault("amap", {})["api_key"] = amap_key

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("MERCHANTGEO_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def _logging_config() -> dict[str, Any]:
    return _read_package_yaml("logging.yaml")


def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (a fresh copy callers may mutate)."""
    return copy.deepcopy(_logging_config())
