from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date, datetime
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dateutil import parser
from dotenv import load_dotenv


_BASE_DIR = Path(__file__).resolve().parent
# Always load the env file that lives next to this settings module.
load_dotenv(_BASE_DIR / ".env")

DEFAULT_DEMO_DATE = "2026-01-15"


def _required(key: str) -> str:
    value = os.getenv(key)
    if not value:
        raise RuntimeError(f"{key} must be set")
    return value


def _csv_env(key: str, default: str | None = None) -> list[str]:
    raw = os.getenv(key, default or "")
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def _bool_env(key: str, default: bool = False) -> bool:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _date_env(key: str, default: str) -> date:
    raw = os.getenv(key) or default
    try:
        return date.fromisoformat(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"{key} must be a YYYY-MM-DD date, got {raw!r}") from exc


def _instant_env(key: str) -> Optional[datetime]:
    raw = os.getenv(key)
    if not raw:
        return None
    try:
        value = parser.isoparse(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"{key} must be an ISO-8601 instant, got {raw!r}") from exc
    if not value.tzinfo:
        raise RuntimeError(f"{key} must carry a UTC offset, got {raw!r}")
    return value


@dataclass(frozen=True)
class Settings:
    store_backend: str
    supabase_url: str | None
    supabase_key: str | None
    store_timeout: float
    business_utc_offset_minutes: int
    demo_mode: bool
    demo_fixed_date: date
    default_duration_minutes: int
    booking_min_start: datetime | None
    cors_origins: List[str]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    supabase_url = os.getenv("SUPABASE_URL")
    backend = os.getenv("STORE_BACKEND") or ("supabase" if supabase_url else "memory")
    backend = backend.strip().lower()
    if backend not in {"supabase", "memory"}:
        raise RuntimeError(f"STORE_BACKEND must be 'supabase' or 'memory', got {backend!r}")
    return Settings(
        store_backend=backend,
        supabase_url=_required("SUPABASE_URL") if backend == "supabase" else supabase_url,
        supabase_key=_required("SUPABASE_KEY") if backend == "supabase" else os.getenv("SUPABASE_KEY"),
        store_timeout=float(os.getenv("STORE_TIMEOUT", "20")),
        business_utc_offset_minutes=int(os.getenv("BUSINESS_UTC_OFFSET_MINUTES", "540")),
        demo_mode=_bool_env("DEMO_MODE"),
        demo_fixed_date=_date_env("DEMO_FIXED_DATE", DEFAULT_DEMO_DATE),
        default_duration_minutes=int(os.getenv("DEFAULT_DURATION_MINUTES", "60")),
        booking_min_start=_instant_env("BOOKING_MIN_START"),
        cors_origins=_csv_env("BACKEND_CORS_ORIGINS", "*"),
    )
