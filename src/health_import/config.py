from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger("etl.health")

NEGATIVE_DURATION_POLICIES = ("clamp", "drop")


@dataclass
class ImportCfg:
    store_dir: Path = Path("data") / "health"
    progress_every: int = 10_000
    chunk_bytes: int = 1 << 20
    write_retries: int = 2
    retry_backoff_s: float = 0.2
    negative_duration: str = "clamp"

    @classmethod
    def from_env(cls) -> "ImportCfg":
        """Build a config from ETL_* environment variables.

        Unset or invalid values keep the dataclass default.
        """
        cfg = cls()
        store = os.getenv("ETL_HEALTH_DIR")
        if store:
            cfg.store_dir = Path(store)
        cfg.progress_every = _env_int("ETL_PROGRESS_EVERY", cfg.progress_every, minimum=1)
        cfg.chunk_bytes = _env_int("ETL_CHUNK_BYTES", cfg.chunk_bytes, minimum=1)
        cfg.write_retries = _env_int("ETL_WRITE_RETRIES", cfg.write_retries, minimum=0)
        policy = os.getenv("ETL_NEGATIVE_DURATION")
        if policy:
            if policy.lower() in NEGATIVE_DURATION_POLICIES:
                cfg.negative_duration = policy.lower()
            else:
                logger.warning("ignoring ETL_NEGATIVE_DURATION=%r (expected one of %s)",
                               policy, ", ".join(NEGATIVE_DURATION_POLICIES))
        return cfg


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        val = int(raw)
    except ValueError:
        logger.warning("ignoring %s=%r (not an integer)", name, raw)
        return default
    if val < minimum:
        logger.warning("ignoring %s=%d (must be >= %d)", name, val, minimum)
        return default
    return val
