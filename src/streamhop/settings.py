"""
Runtime settings, read from the environment (and a local .env file if present).
"""
from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


@dataclass(frozen=True)
class Settings:
    timeout: float = 15.0             # per HTTP call, seconds
    retries: int = 2                  # extra attempts for transient hop failures
    backoff: float = 0.5              # base delay, doubled per attempt
    max_hops: int = 8
    probe_fanout: int = 4             # concurrent frame probes
    deadline: Optional[float] = 60.0  # whole resolution, seconds (None = unbounded)
    min_interval: float = 0.0         # per-resolution spacing between requests
    user_agent: str = DEFAULT_UA
    proxy: Optional[str] = None
    sites_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        deadline = _env_float("STREAMHOP_DEADLINE", 60.0)
        return cls(
            timeout=_env_float("STREAMHOP_TIMEOUT", 15.0),
            retries=_env_int("STREAMHOP_RETRIES", 2),
            backoff=_env_float("STREAMHOP_BACKOFF", 0.5),
            max_hops=_env_int("STREAMHOP_MAX_HOPS", 8),
            probe_fanout=_env_int("STREAMHOP_PROBE_FANOUT", 4),
            deadline=deadline if deadline > 0 else None,
            min_interval=_env_float("STREAMHOP_MIN_INTERVAL", 0.0),
            user_agent=os.getenv("STREAMHOP_USER_AGENT") or DEFAULT_UA,
            proxy=os.getenv("STREAMHOP_PROXY") or None,
            sites_path=os.getenv("STREAMHOP_SITES") or None,
        )
