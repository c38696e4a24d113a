"""
Marketplace runtime configuration.

Values come from the process environment, after loading the project-root .env
file (python-dotenv). Domain constants such as the purchaser cap or the price
ceiling are code, not configuration.

Environment variables:
- MARKETPLACE_STORAGE: "memory" (default) or "supabase"
- MATCHED_PROVIDERS_LIMIT: providers kept per lead at capture (default 5)
- PAYMENT_TIMEOUT_SECONDS: longest wait for the payment gateway (default 10)
- NOTIFICATION_WORKERS: parent notification threads (default 2)
- LOG_LEVEL: logging level name (default INFO)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"

STORAGE_BACKENDS = ("memory", "supabase")


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"Invalid environment variable {name}: expected an integer, got {raw!r}") from None
    if value < minimum:
        raise RuntimeError(f"Invalid environment variable {name}: must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"Invalid environment variable {name}: expected a number, got {raw!r}") from None
    if not value > 0 or value == float("inf"):
        raise RuntimeError(f"Invalid environment variable {name}: must be a positive number, got {raw!r}")
    return value


@dataclass(frozen=True, slots=True)
class MarketplaceConfig:
    storage: str = "memory"
    matched_providers_limit: int = 5
    payment_timeout_seconds: float = 10.0
    notification_workers: int = 2
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.storage not in STORAGE_BACKENDS:
            raise RuntimeError(
                f"Invalid environment variable MARKETPLACE_STORAGE: "
                f"expected one of {', '.join(STORAGE_BACKENDS)}, got {self.storage!r}"
            )
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise RuntimeError(f"Invalid environment variable LOG_LEVEL: unknown level {self.log_level!r}")

    @staticmethod
    def from_env() -> "MarketplaceConfig":
        load_dotenv(dotenv_path=env_path)
        return MarketplaceConfig(
            storage=(os.getenv("MARKETPLACE_STORAGE") or "memory").strip().lower(),
            matched_providers_limit=_env_int("MATCHED_PROVIDERS_LIMIT", 5),
            payment_timeout_seconds=_env_float("PAYMENT_TIMEOUT_SECONDS", 10.0),
            notification_workers=_env_int("NOTIFICATION_WORKERS", 2),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
        )


__all__ = ["STORAGE_BACKENDS", "MarketplaceConfig"]
