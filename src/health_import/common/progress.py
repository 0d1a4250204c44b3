# health_import/common/progress.py
from __future__ import annotations
import io
import logging
import os
import sys
import time
from contextlib import contextmanager
from typing import IO, Iterator, Optional

from tqdm import tqdm

logger = logging.getLogger("etl.health")


def should_show_tqdm() -> bool:
    """Decide whether progress bars are drawn.

    - ETL_TQDM=1 forces display
    - ETL_TQDM=0 disables
    - CI environment disables
    - otherwise only when stdout is a TTY (with a fallback for Git Bash/MSYS)
    """
    if os.getenv("ETL_TQDM") == "1":
        return True
    if os.getenv("ETL_TQDM") == "0":
        return False
    if os.getenv("CI"):
        return False
    try:
        if hasattr(sys.stdout, "isatty") and sys.stdout.isatty():
            return True
    except ValueError:
        # stdout already closed
        return False
    # Git Bash / MSYS2 report isatty() False in interactive terminals
    return bool(os.getenv("MSYSTEM"))


class Timer:
    def __init__(self, label: str = "task"):
        self.label = label
        self.start = 0.0
        self.elapsed = 0.0

    def __enter__(self):
        self.start = time.perf_counter()
        logger.info(">>> %s ...", self.label)
        return self

    def __exit__(self, exc_type, exc, tb):
        self.elapsed = time.perf_counter() - self.start
        status = "OK" if exc is None else "ERROR"
        logger.info("[%s] %s: %.2fs", status, self.label, self.elapsed)
        return False


@contextmanager
def progress_bar(total: Optional[int], desc: str = "", unit: str = "B") -> Iterator[tqdm]:
    """Context manager that returns a tqdm bar.

    unit='B' (the default) scales byte counts; callers counting items
    should pass unit='records'.
    """
    disable = not should_show_tqdm()
    with tqdm(total=total, desc=desc, unit=unit, unit_scale=(unit == "B"), disable=disable) as bar:
        yield bar


class ProgressFile(io.BufferedReader):
    """Binary reader that advances a progress bar by the bytes it returns."""

    def __init__(self, raw: IO[bytes], bar):
        super().__init__(raw)  # type: ignore[arg-type]
        self._bar = bar

    def read(self, size: int = -1) -> bytes:  # type: ignore[override]
        b = super().read(size)
        if b:
            self._bar.update(len(b))
        return b

    def readinto(self, b) -> int:  # type: ignore[override]
        n = super().readinto(b)
        if n:
            self._bar.update(n)
        return n


@contextmanager
def progress_open(raw: IO[bytes], total: Optional[int], desc: str = "Reading archive") -> Iterator[ProgressFile]:
    """Wrap an open binary stream so reads drive a byte progress bar."""
    with progress_bar(total=total, desc=desc, unit="B") as bar:
        pf = ProgressFile(raw, bar)
        try:
            yield pf
        finally:
            pf.detach()
