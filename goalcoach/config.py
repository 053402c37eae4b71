"""
Central configuration for the coaching core.

Values come from the environment (a .env file is picked up automatically).
Credentials are only checked when a client is first requested, so modules
can be imported without them.
"""
import os
from dotenv import load_dotenv, find_dotenv

load_dotenv(find_dotenv())


def _bool_env(name: str, default: str = "false") -> bool:
    value = os.getenv(name, default).strip().lower()
    return value in {"1", "true", "yes", "y"}


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


# Models for the three LLM collaborators
COACH_MODEL: str = os.getenv("COACH_MODEL", "gpt-5-nano")
DETAIL_MODEL: str = os.getenv("DETAIL_MODEL", COACH_MODEL)
VERIFY_MODEL: str = os.getenv("VERIFY_MODEL", COACH_MODEL)

# Seconds before an LLM request is abandoned
LLM_TIMEOUT: float = _float_env("LLM_TIMEOUT", 30.0)

# Cross-device reconciliation
SYNC_INTERVAL_SECONDS: float = _float_env("SYNC_INTERVAL_SECONDS", 30.0)
SYNC_RECONCILE_DELAY: float = _float_env("SYNC_RECONCILE_DELAY", 0.5)

# Store-side list query cache
CACHE_TTL_SECONDS: float = _float_env("CACHE_TTL_SECONDS", 300.0)
CACHE_MAX_ENTRIES: int = _int_env("CACHE_MAX_ENTRIES", 256)

# Compare-and-set attempts for streak writes
ECONOMY_WRITE_ATTEMPTS: int = _int_env("ECONOMY_WRITE_ATTEMPTS", 5)

# Times a failed store write is tried before it is dropped
SYNC_WRITE_ATTEMPTS: int = _int_env("SYNC_WRITE_ATTEMPTS", 5)

# Scale completion XP by how early the goal was finished
TIME_BONUS_ENABLED: bool = _bool_env("TIME_BONUS_ENABLED", "false")

# Coaching cadence
QUESTIONS_PER_CYCLE: int = 3
GOALS_BEFORE_CONCLUDE: int = 3
