"""Centralized configuration for environment variables and external APIs.

This module is the single source of truth for configuration used across the
application. Import constants from here rather than calling os.getenv directly
in multiple places.
"""

from __future__ import annotations

import os
from typing import Final

from dotenv import load_dotenv

# Load environment variables from .env if present
load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# --- Local stores ---
MONGODB_URI: Final[str] = os.getenv("MONGODB_URI", "").strip() or "mongodb://localhost:27017"
MONGODB_DATABASE: Final[str] = os.getenv("MONGODB_DATABASE", "mileage_tracker")
MONGODB_MAX_POOL_SIZE: Final[int] = int(os.getenv("MONGODB_MAX_POOL_SIZE", "20"))
MONGODB_SERVER_SELECTION_TIMEOUT_MS: Final[int] = int(
    os.getenv("MONGODB_SERVER_SELECTION_TIMEOUT_MS", "10000"),
)
REDIS_URL: Final[str] = os.getenv("REDIS_URL", "").strip() or "redis://localhost:6379"

# --- Identity ---
USER_ID: Final[str] = os.getenv("USER_ID", "local-user")

# --- Driving detection ---
DRIVING_SPEED_THRESHOLD_MPH: Final[float] = float(
    os.getenv("DRIVING_SPEED_THRESHOLD_MPH", "5"),
)
STATIONARY_DURATION_MS: Final[int] = int(
    os.getenv("STATIONARY_DURATION_MS", str(3 * 60 * 1000)),
)
# ~10 meters
NOISE_FLOOR_MILES: Final[float] = float(os.getenv("NOISE_FLOOR_MILES", "0.006"))
# 0 saves every trip regardless of distance
MIN_TRIP_DISTANCE_MILES: Final[float] = float(
    os.getenv("MIN_TRIP_DISTANCE_MILES", "0"),
)
STATIONARY_WATCHDOG_ENABLED: Final[bool] = _env_bool(
    "STATIONARY_WATCHDOG_ENABLED",
    default=False,
)

# --- Trip progress persistence ---
ORPHAN_GRACE_MS: Final[int] = int(os.getenv("ORPHAN_GRACE_MS", str(60 * 60 * 1000)))
PERSIST_MAX_ATTEMPTS: Final[int] = int(os.getenv("PERSIST_MAX_ATTEMPTS", "3"))
PERSIST_RETRY_DELAY_SECONDS: Final[float] = float(
    os.getenv("PERSIST_RETRY_DELAY_SECONDS", "1.0"),
)

# --- Sync ---
SYNC_INITIAL_DELAY_MS: Final[int] = int(os.getenv("SYNC_INITIAL_DELAY_MS", "1000"))
SYNC_BATCH_SIZE: Final[int] = int(os.getenv("SYNC_BATCH_SIZE", "5"))
SYNC_STARTUP_DELAY_SECONDS: Final[float] = float(
    os.getenv("SYNC_STARTUP_DELAY_SECONDS", "5"),
)
SYNC_INTERVAL_SECONDS: Final[float] = float(
    os.getenv("SYNC_INTERVAL_SECONDS", str(15 * 60)),
)

# --- Remote trip store (PostgREST / Supabase) ---
REMOTE_STORE_URL: Final[str] = os.getenv("REMOTE_STORE_URL", "").rstrip("/")
REMOTE_STORE_API_KEY: Final[str] = os.getenv("REMOTE_STORE_API_KEY", "")
REMOTE_STORE_ACCESS_TOKEN: Final[str] = os.getenv("REMOTE_STORE_ACCESS_TOKEN", "")

# --- Nominatim ---
NOMINATIM_BASE_URL: Final[str] = os.getenv(
    "NOMINATIM_BASE_URL",
    "https://nominatim.openstreetmap.org",
).rstrip("/")
NOMINATIM_USER_AGENT: Final[str] = os.getenv(
    "NOMINATIM_USER_AGENT",
    "MileageTracker/1.0",
)

# --- Logging ---
LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO").upper()


def get_nominatim_reverse_url() -> str:
    return f"{NOMINATIM_BASE_URL}/reverse"


__all__ = [
    "DRIVING_SPEED_THRESHOLD_MPH",
    "LOG_LEVEL",
    "MIN_TRIP_DISTANCE_MILES",
    "MONGODB_DATABASE",
    "MONGODB_MAX_POOL_SIZE",
    "MONGODB_SERVER_SELECTION_TIMEOUT_MS",
    "MONGODB_URI",
    "NOISE_FLOOR_MILES",
    "NOMINATIM_BASE_URL",
    "NOMINATIM_USER_AGENT",
    "ORPHAN_GRACE_MS",
    "PERSIST_MAX_ATTEMPTS",
    "PERSIST_RETRY_DELAY_SECONDS",
    "REDIS_URL",
    "REMOTE_STORE_ACCESS_TOKEN",
    "REMOTE_STORE_API_KEY",
    "REMOTE_STORE_URL",
    "STATIONARY_DURATION_MS",
    "STATIONARY_WATCHDOG_ENABLED",
    "SYNC_BATCH_SIZE",
    "SYNC_INITIAL_DELAY_MS",
    "SYNC_INTERVAL_SECONDS",
    "SYNC_STARTUP_DELAY_SECONDS",
    "USER_ID",
    "get_nominatim_reverse_url",
]
