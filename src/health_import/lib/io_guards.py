"""Atomic JSON write helpers.

Day records are read by other processes while an import is running, so a
record must never be observable half-written. Writers go through
``atomic_write_json()``: the payload is written to a temporary file in the
target directory and moved into place with ``Path.replace`` (atomic on POSIX
and on Windows for same-volume moves).
"""
from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any


def atomic_write_json(obj: Any, path: Path, *, indent: int = 2) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w", delete=False, dir=str(p.parent), prefix=p.name + ".tmp.", encoding="utf-8"
    ) as tf:
        tmp = Path(tf.name)
        try:
            json.dump(obj, tf, indent=indent, ensure_ascii=False)
            tf.flush()
            os.fsync(tf.fileno())
        except BaseException:
            tf.close()
            tmp.unlink(missing_ok=True)
            raise
    try:
        tmp.replace(p)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


def read_json(path: Path, default: Any = None) -> Any:
    """Return the parsed JSON at ``path``, or ``default`` if the file is missing."""
    p = Path(path)
    try:
        with p.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError:
        return default
