from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from hackjudge.errors import ValidationError

# Persisted file next to this package, same as the single-file app kept it next to main.py
DEFAULT_DB_PATH = os.path.join(os.path.dirname(__file__), "judging.sqlite")

STORAGE_KINDS = ("sqlite", "memory")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    db_path: str = DEFAULT_DB_PATH
    storage: str = "sqlite"
    db_timeout: float = 5.0
    admin_password: str = "admin123"
    log_level: str = "INFO"
    seed_demo: bool = False


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Read JUDGING_* environment variables into a Settings instance."""
    env = os.environ if env is None else env

    storage = env.get("JUDGING_STORAGE", "sqlite").strip().lower()
    if storage not in STORAGE_KINDS:
        raise ValidationError(f"JUDGING_STORAGE must be one of {', '.join(STORAGE_KINDS)}, got '{storage}'.")

    raw_timeout = env.get("JUDGING_DB_TIMEOUT", "5")
    try:
        timeout = float(raw_timeout)
    except ValueError:
        raise ValidationError(f"JUDGING_DB_TIMEOUT must be a number of seconds, got '{raw_timeout}'.") from None
    if timeout <= 0:
        raise ValidationError("JUDGING_DB_TIMEOUT must be positive.")

    return Settings(
        db_path=env.get("JUDGING_DB_PATH", DEFAULT_DB_PATH),
        storage=storage,
        db_timeout=timeout,
        admin_password=env.get("JUDGING_ADMIN_PASSWORD", "admin123"),
        log_level=env.get("JUDGING_LOG_LEVEL", "INFO").upper(),
        seed_demo=_flag(env.get("JUDGING_SEED_DEMO", "0")),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
