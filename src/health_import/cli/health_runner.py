#!/usr/bin/env python3
"""Command line runner for health imports.

Subcommands:

- ``xml``  stream an ``export.xml`` / ``export.zip`` into the day store
- ``json`` ingest a Health Auto Export JSON payload
- ``show`` print one stored day record

Exit codes: 0 ok, 2 bad input, 3 storage failure, 4 cancelled/unexpected.
"""
from __future__ import annotations
import argparse
import json
import logging
import os
import sys
from pathlib import Path

from ..common.progress import progress_bar
from ..config import ImportCfg
from ..errors import (
    ArchiveReadError,
    DayMergeError,
    ImportCancelled,
    PayloadValidationError,
    StorageWriteError,
)
from ..ingest_json import ingest_payload
from ..pipeline import import_archive
from ..reporter import COMPLETE, PROGRESS
from ..store import DayStore

EXIT_OK = 0
EXIT_BAD_INPUT = 2
EXIT_STORAGE = 3
EXIT_OTHER = 4

logger = logging.getLogger("etl.health.cli")


def _configure_logging() -> None:
    # honor ETL_LOG_LEVEL once; default INFO
    lvl_name = os.getenv("ETL_LOG_LEVEL", "INFO")
    lvl = getattr(logging, lvl_name.upper(), None)
    if not isinstance(lvl, int):
        lvl = logging.INFO
    logging.basicConfig(level=lvl, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="health-import")
    parser.add_argument("--store", default=None,
                        help="Day store directory (default: $ETL_HEALTH_DIR or data/health)")
    sub = parser.add_subparsers(dest="cmd")

    p_xml = sub.add_parser("xml", help="Import an export.xml or export.zip")
    p_xml.add_argument("path", help="Path to export.xml / export.zip")
    p_xml.add_argument("--remove-source", action="store_true", dest="remove_source",
                       help="Delete the input file when done (temporary uploads)")
    p_xml.add_argument("--negative-duration", choices=("clamp", "drop"), default=None,
                       help="Sleep intervals ending before they start: clamp to 0 or drop")

    p_json = sub.add_parser("json", help="Ingest a Health Auto Export JSON payload")
    p_json.add_argument("path", help="Path to payload .json")

    p_show = sub.add_parser("show", help="Print one stored day record")
    p_show.add_argument("date", help="YYYY-MM-DD")
    return parser


def _run_xml(args, cfg: ImportCfg, store_dir: Path) -> int:
    with progress_bar(total=None, desc="Records", unit="records") as bar:
        def sink(event: str, payload: dict) -> None:
            if event == PROGRESS:
                bar.update(payload["processed"] - bar.n)
            elif event == COMPLETE:
                bar.set_postfix(days=payload["days"])

        summary = import_archive(args.path, store_dir, cfg=cfg, on_event=sink,
                                 remove_source=args.remove_source)
    print(json.dumps({
        "days": summary.days,
        "records": summary.records,
        "skipped": summary.skipped,
        "malformed": summary.malformed,
    }))
    return EXIT_OK


def _run_json(args, store_dir: Path) -> int:
    p = Path(args.path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise PayloadValidationError(f"cannot read payload {p}: {e}") from e
    result = ingest_payload(raw, DayStore(store_dir))
    print(json.dumps(result))
    return EXIT_OK


def _run_show(args, store_dir: Path) -> int:
    store = DayStore(store_dir)
    try:
        if not store.exists(args.date):
            print(f"no record for {args.date} in {store_dir}", file=sys.stderr)
            return EXIT_BAD_INPUT
        record = store.read_day(args.date)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_BAD_INPUT
    print(json.dumps(record, indent=2))
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    _configure_logging()

    parser = build_parser()
    args = parser.parse_args(argv)
    if args.cmd is None:
        parser.print_help()
        return EXIT_BAD_INPUT

    cfg = ImportCfg.from_env()
    if getattr(args, "negative_duration", None):
        cfg.negative_duration = args.negative_duration
    store_dir = Path(args.store) if args.store else cfg.store_dir

    try:
        if args.cmd == "xml":
            return _run_xml(args, cfg, store_dir)
        if args.cmd == "json":
            return _run_json(args, store_dir)
        return _run_show(args, store_dir)
    except (ArchiveReadError, PayloadValidationError) as e:
        print(f"ERROR: bad input: {e}", file=sys.stderr)
        return EXIT_BAD_INPUT
    except (StorageWriteError, DayMergeError) as e:
        print(f"ERROR: storage failure: {e}", file=sys.stderr)
        return EXIT_STORAGE
    except ImportCancelled as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_OTHER
    except Exception:
        logger.exception("unexpected failure in %s", args.cmd)
        return EXIT_OTHER


if __name__ == "__main__":
    raise SystemExit(main())
