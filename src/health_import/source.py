"""Open a health export as a forward-only byte stream.

Accepts either the bare ``export.xml`` or the ``export.zip`` produced by the
Health app (``apple_health_export/export.xml`` inside). Zip members are
decompressed on the fly; nothing is extracted to disk.
"""
from __future__ import annotations

import fnmatch
import logging
import zipfile
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import IO, Iterator, Optional

from .common.progress import progress_open
from .errors import ArchiveReadError

logger = logging.getLogger("etl.health")

EXPORT_MEMBER_PATTERNS = ("export.xml", "*/export.xml")


def _norm_posix_lower(name: str) -> str:
    return str(PurePosixPath(name)).lower()


def find_export_member(names: list[str]) -> Optional[str]:
    """Return the first zip member that looks like the main export document.

    ``export_cda.xml`` (the clinical document) never matches.
    """
    for pat in EXPORT_MEMBER_PATTERNS:
        for n in names:
            if fnmatch.fnmatch(_norm_posix_lower(n), pat):
                return n
    return None


@contextmanager
def open_archive(path: str | Path, *, remove_after: bool = False) -> Iterator[IO[bytes]]:
    """Yield a binary stream over the export document at ``path``.

    With ``remove_after=True`` the file is deleted once the stream closes,
    whether the import succeeded or not (used for temporary upload copies).
    """
    p = Path(path)
    try:
        with _open_raw(p) as (raw, total):
            with progress_open(raw, total, desc=f"Reading {p.name}") as stream:
                yield stream
    finally:
        if remove_after:
            try:
                p.unlink(missing_ok=True)
                logger.debug("removed temporary archive %s", p)
            except OSError as e:
                logger.warning("could not remove temporary archive %s: %s", p, e)


@contextmanager
def _open_raw(p: Path) -> Iterator[tuple[IO[bytes], Optional[int]]]:
    if not p.is_file():
        raise ArchiveReadError(f"archive not found: {p}")

    if zipfile.is_zipfile(p):
        try:
            zf = zipfile.ZipFile(p, mode="r")
        except (zipfile.BadZipFile, OSError) as e:
            raise ArchiveReadError(f"failed to open zip archive {p}: {e}") from e
        with zf:
            member = find_export_member(zf.namelist())
            if member is None:
                raise ArchiveReadError(f"no export.xml inside {p}")
            info = zf.getinfo(member)
            logger.info("streaming %s from %s (%.1f MB uncompressed)",
                        member, p.name, info.file_size / (1024 * 1024))
            with zf.open(member, "r") as fh:
                yield fh, info.file_size
        return

    try:
        fh = p.open("rb")
    except OSError as e:
        raise ArchiveReadError(f"failed to open {p}: {e}") from e
    with fh:
        size = p.stat().st_size
        logger.info("streaming %s (%.1f MB)", p.name, size / (1024 * 1024))
        yield fh, size
