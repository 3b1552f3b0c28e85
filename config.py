#!/usr/bin/env python3
"""
config.py — Settings and game-balance constants

Two kinds of knobs live here:
- runtime settings (paths, debounce, retry policy), read from the environment
  after loading an optional `.env` file
- game-balance constants (start space, penalties, debt capacity)

Everything else receives its settings explicitly; nothing reads the environment
after `load_settings()` has run.

by Sziller
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv


# -----------------------------
# Game-balance constants
# -----------------------------
START_POSITION = "OWNER-SCOPE-INITIATION"
FINISH_SPACE = "FINISH"

NEGOTIATION_TIME_PENALTY = 1
DEBT_CAPACITY_MULTIPLIER = 3
DEFAULT_LOAN_PERCENT = 10

# Spaces that need more than one roll before the turn can move on
MULTI_ROLL_SPACES: Dict[str, int] = {
    "CON-INITIATION": 2,
}

STORE_VERSION = "1.2"
STORE_PREFIX = "game_"

# Oldest game-log entries are dropped past this many
GAME_LOG_LIMIT = 500

MAIN_PATH: List[str] = [
    "OWNER-SCOPE-INITIATION",
    "OWNER-FUND-INITIATION",
    "PM-DECISION-CHECK",
    "ARCH-INITIATION",
    "ARCH-FEE-REVIEW",
    "ARCH-SCOPE-CHECK",
    "ENG-INITIATION",
    "ENG-FEE-REVIEW",
    "ENG-SCOPE-CHECK",
    "REG-DOB-FEE-REVIEW",
    "REG-DOB-TYPE-SELECT",
    "REG-DOB-PLAN-EXAM",
    "REG-FDNY-FEE-REVIEW",
    "REG-FDNY-PLAN-EXAM",
    "CON-INITIATION",
    "CON-ISSUES",
    "CON-INSPECT",
    "REG-DOB-FINAL-REVIEW",
    "FINISH",
]

PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_DATA_DIR = PACKAGE_DIR / "data"


# -----------------------------
# Runtime settings
# -----------------------------
@dataclass(frozen=True)
class Settings:
    data_dir: Path = DEFAULT_DATA_DIR
    save_dir: Optional[Path] = None         # None -> in-memory storage
    debounce_ms: int = 100
    retry_attempts: int = 3
    retry_backoff_ms: int = 50
    ready_timeout_s: float = 5.0
    seed: Optional[int] = None
    log_level: str = "INFO"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Ignoring non-integer %s=%r", name, raw)
        return default


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Build Settings from environment variables (PERMITPATH_*).

    A `.env` file is loaded first when present; real environment variables win.
    """
    load_dotenv(env_file, override=False)

    data_dir = os.environ.get("PERMITPATH_DATA_DIR", "").strip()
    save_dir = os.environ.get("PERMITPATH_SAVE_DIR", "").strip()
    seed_raw = os.environ.get("PERMITPATH_SEED", "").strip()
    timeout_raw = os.environ.get("PERMITPATH_READY_TIMEOUT_S", "").strip()

    try:
        ready_timeout = float(timeout_raw) if timeout_raw else 5.0
    except ValueError:
        ready_timeout = 5.0

    return Settings(
        data_dir=Path(data_dir) if data_dir else DEFAULT_DATA_DIR,
        save_dir=Path(save_dir) if save_dir else None,
        debounce_ms=_env_int("PERMITPATH_DEBOUNCE_MS", 100),
        retry_attempts=max(1, _env_int("PERMITPATH_RETRY_ATTEMPTS", 3)),
        retry_backoff_ms=max(0, _env_int("PERMITPATH_RETRY_BACKOFF_MS", 50)),
        ready_timeout_s=ready_timeout,
        seed=int(seed_raw) if seed_raw.lstrip("-").isdigit() else None,
        log_level=os.environ.get("PERMITPATH_LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


def configure_logging(settings: Settings) -> None:
    """Apply the configured level to the root logger (idempotent)."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s | %(message)s",
    )
