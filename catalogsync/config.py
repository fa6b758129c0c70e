"""Per-platform sync settings."""

from __future__ import annotations

import os
import pathlib
from dataclasses import dataclass, replace

import yaml

from catalogsync.errors import UnknownPlatformError

SETTINGS_PATH = pathlib.Path(__file__).with_name("platforms.yml")

STOREFRONT_URL = os.environ.get("STOREFRONT_URL", "https://shop.example.com")
BRAND_NAME = os.environ.get("BRAND_NAME", "Storefront")


@dataclass(slots=True)
class PlatformSettings:
    chunk_size: int
    concurrency: int
    request_interval: float
    high_water: float
    default_wait: float = 5.0
    throttle_cap: float = 60.0
    max_attempts: int = 3
    backoff_base: float = 1.0


def load_platform_settings(platform: str, path: pathlib.Path = SETTINGS_PATH) -> PlatformSettings:
    data = yaml.safe_load(path.read_text()) or {}
    if platform not in data:
        raise UnknownPlatformError(platform)
    settings = PlatformSettings(**data[platform])
    return _apply_env(platform, settings)


def _apply_env(platform: str, settings: PlatformSettings) -> PlatformSettings:
    prefix = f"SYNC_{platform.upper()}_"
    overrides: dict[str, object] = {}
    if f"{prefix}CHUNK_SIZE" in os.environ:
        overrides["chunk_size"] = int(os.environ[f"{prefix}CHUNK_SIZE"])
    if f"{prefix}CONCURRENCY" in os.environ:
        overrides["concurrency"] = int(os.environ[f"{prefix}CONCURRENCY"])
    if "SYNC_MAX_ATTEMPTS" in os.environ:
        overrides["max_attempts"] = int(os.environ["SYNC_MAX_ATTEMPTS"])
    if "SYNC_BACKOFF_BASE" in os.environ:
        overrides["backoff_base"] = float(os.environ["SYNC_BACKOFF_BASE"])
    if "SYNC_THROTTLE_CAP" in os.environ:
        overrides["throttle_cap"] = float(os.environ["SYNC_THROTTLE_CAP"])
    return replace(settings, **overrides)
