# application settings, read from the environment (and a .env file if present)
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

APP_NAME = "stockdesk"
APP_VERSION = "1.0.0"


def _env_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None


def _env_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}") from None


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    environment: str = "development"

    db_path: str = "data/stockdesk.sqlite"
    pool_min: int = 1
    pool_max: int = 5
    connect_timeout: float = 5.0
    acquire_timeout: float = 30.0
    idle_timeout: float = 30.0

    session_timeout_hours: float = 24
    session_sweep_seconds: float = 3600
    session_revalidate_seconds: float = 60

    rate_limit_max: int = 100
    rate_limit_window: float = 60.0

    usd_to_cup_rate: float = 395.0
    bcrypt_rounds: int = 12
    lenient_numeric_fields: bool = False

    low_stock_threshold: int = 5
    medium_stock_threshold: int = 20

    admin_username: str | None = None
    admin_password: str | None = None

    @property
    def debug(self) -> bool:
        return self.environment != "production"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        settings = cls(
            environment=os.getenv("APP_ENV", "development").strip().lower(),
            db_path=os.getenv("DB_PATH", cls.db_path),
            pool_min=_env_int("DB_POOL_MIN", cls.pool_min),
            pool_max=_env_int("DB_POOL_MAX", cls.pool_max),
            connect_timeout=_env_float("DB_CONNECT_TIMEOUT", cls.connect_timeout),
            acquire_timeout=_env_float("DB_ACQUIRE_TIMEOUT", cls.acquire_timeout),
            idle_timeout=_env_float("DB_IDLE_TIMEOUT", cls.idle_timeout),
            session_timeout_hours=_env_float(
                "SESSION_TIMEOUT_HOURS", cls.session_timeout_hours
            ),
            session_sweep_seconds=_env_float(
                "SESSION_SWEEP_SECONDS", cls.session_sweep_seconds
            ),
            session_revalidate_seconds=_env_float(
                "SESSION_REVALIDATE_SECONDS", cls.session_revalidate_seconds
            ),
            rate_limit_max=_env_int("RATE_LIMIT_MAX", cls.rate_limit_max),
            rate_limit_window=_env_float("RATE_LIMIT_WINDOW", cls.rate_limit_window),
            usd_to_cup_rate=_env_float("USD_TO_CUP_RATE", cls.usd_to_cup_rate),
            bcrypt_rounds=_env_int("BCRYPT_ROUNDS", cls.bcrypt_rounds),
            lenient_numeric_fields=_env_bool(
                "LENIENT_NUMERIC_FIELDS", cls.lenient_numeric_fields
            ),
            low_stock_threshold=_env_int("LOW_STOCK_THRESHOLD", cls.low_stock_threshold),
            medium_stock_threshold=_env_int(
                "MEDIUM_STOCK_THRESHOLD", cls.medium_stock_threshold
            ),
            admin_username=os.getenv("ADMIN_USERNAME") or None,
            admin_password=os.getenv("ADMIN_PASSWORD") or None,
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        problems = []
        if self.pool_min < 1 or self.pool_max < 1:
            problems.append("pool sizes must be positive")
        if self.pool_min > self.pool_max:
            problems.append("DB_POOL_MIN cannot exceed DB_POOL_MAX")
        for name in ("connect_timeout", "acquire_timeout", "idle_timeout"):
            if getattr(self, name) <= 0:
                problems.append(f"{name} must be positive")
        if self.session_timeout_hours <= 0:
            problems.append("SESSION_TIMEOUT_HOURS must be positive")
        if self.usd_to_cup_rate <= 0:
            problems.append("USD_TO_CUP_RATE must be positive")
        if not 4 <= self.bcrypt_rounds <= 31:
            problems.append("BCRYPT_ROUNDS must be between 4 and 31")
        if self.low_stock_threshold > self.medium_stock_threshold:
            problems.append("LOW_STOCK_THRESHOLD cannot exceed MEDIUM_STOCK_THRESHOLD")
        if problems:
            raise ValueError("Invalid configuration: " + "; ".join(problems))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
