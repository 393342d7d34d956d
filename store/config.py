"""
Client-side settings for the synchronization store.
Reads from the environment (and a local .env file) with sensible defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

DEFAULT_API_URL = "http://localhost:8000/api/v1"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


@dataclass(frozen=True)
class StoreSettings:
    api_url: str = field(default_factory=lambda: os.getenv("APP_HUB_API_URL", DEFAULT_API_URL))
    timeout: float = field(default_factory=lambda: _env_float("APP_HUB_TIMEOUT", 10.0))
    load_retries: int = field(default_factory=lambda: _env_int("APP_HUB_LOAD_RETRIES", 3))
    retry_base_delay: float = field(
        default_factory=lambda: _env_float("APP_HUB_RETRY_BASE_DELAY", 1.0)
    )
