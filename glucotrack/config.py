from __future__ import annotations

import os
from pathlib import Path
from secrets import token_hex

# Base directories
BASE_DIR = Path(__file__).resolve().parent.parent
CACHE_DIR = Path(os.environ.get("GLUCOTRACK_CACHE_DIR", BASE_DIR / ".cache"))


def _int_from_env(name: str, default: int) -> int:
    """Best-effort conversion for optional integer environment settings."""
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _float_from_env(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _bool_from_env(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# Managed backend (PostgREST-style HTTP API)
BACKEND_URL = os.environ.get("GLUCOTRACK_BACKEND_URL", "")
BACKEND_API_KEY = os.environ.get("GLUCOTRACK_API_KEY", "")
REQUEST_TIMEOUT = _int_from_env("GLUCOTRACK_REQUEST_TIMEOUT", 20)
SUBSCRIBE_TIMEOUT = _float_from_env("GLUCOTRACK_SUBSCRIBE_TIMEOUT", 10.0)

TABLE_PREFIX = os.environ.get("GLUCOTRACK_TABLE_PREFIX", "")
GLUCOSE_TABLE = f"{TABLE_PREFIX}glucose_readings"
MEALS_TABLE = f"{TABLE_PREFIX}meals"
TREATMENTS_TABLE = f"{TABLE_PREFIX}insulin_logs"
MESSAGES_TABLE = f"{TABLE_PREFIX}messages"

# Chart navigation
DISPLAY_TIMEZONE = os.environ.get("GLUCOTRACK_DISPLAY_TZ", "UTC")
SWIPE_THRESHOLD = _int_from_env("GLUCOTRACK_SWIPE_THRESHOLD", 50)

# Chat
MARK_READ_ON_DELIVERY = _bool_from_env("GLUCOTRACK_MARK_READ_ON_DELIVERY", True)

# Dashboard shell
_RAW_STORAGE_SECRET = os.environ.get("STORAGE_SECRET")
if _RAW_STORAGE_SECRET:
    STORAGE_SECRET = _RAW_STORAGE_SECRET
    STORAGE_SECRET_FROM_ENV = True
else:
    STORAGE_SECRET = token_hex(32)
    STORAGE_SECRET_FROM_ENV = False

# Glucose targets
TARGET_SEVERE_LOW = 50
TARGET_LOW = 70
TARGET_MILD_HIGH = 150
TARGET_HIGH = 180
TARGET_SEVERE_HIGH = 250

BG_CATEGORIES = [
    f"<{TARGET_SEVERE_LOW}",
    f"{TARGET_SEVERE_LOW}-{TARGET_LOW - 1}",
    f"{TARGET_LOW}-{TARGET_MILD_HIGH}",
    f"{TARGET_MILD_HIGH + 1}-{TARGET_HIGH}",
    f"{TARGET_HIGH + 1}-{TARGET_SEVERE_HIGH}",
    f">{TARGET_SEVERE_HIGH}",
]

# Palette
STRONG_RED = "#960200"
LIGHT_RED = "#CE6C47"
MILD_YELLOW = "#FFD046"
LIGHT_GREEN = "#49D49D"
MEAL_ORANGE = "#f59e0b"
TREATMENT_VIOLET = "#8b5cf6"

__all__ = [
    "BASE_DIR",
    "CACHE_DIR",
    "BACKEND_URL",
    "BACKEND_API_KEY",
    "REQUEST_TIMEOUT",
    "SUBSCRIBE_TIMEOUT",
    "TABLE_PREFIX",
    "GLUCOSE_TABLE",
    "MEALS_TABLE",
    "TREATMENTS_TABLE",
    "MESSAGES_TABLE",
    "DISPLAY_TIMEZONE",
    "SWIPE_THRESHOLD",
    "MARK_READ_ON_DELIVERY",
    "STORAGE_SECRET",
    "STORAGE_SECRET_FROM_ENV",
    "TARGET_SEVERE_LOW",
    "TARGET_LOW",
    "TARGET_MILD_HIGH",
    "TARGET_HIGH",
    "TARGET_SEVERE_HIGH",
    "BG_CATEGORIES",
    "STRONG_RED",
    "LIGHT_RED",
    "MILD_YELLOW",
    "LIGHT_GREEN",
    "MEAL_ORANGE",
    "TREATMENT_VIOLET",
]
