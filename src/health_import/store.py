"""Day-partitioned JSON store: one ``<root>/<YYYY-MM-DD>.json`` file per date."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .lib.io_guards import atomic_write_json, read_json
from .normalize import extract_date_key

logger = logging.getLogger("etl.health.store")

DayRecord = dict[str, Any]


class DayStore:
    def __init__(self, root: str | Path):
        self.root = Path(root)

    def path_for(self, date_key: str) -> Path:
        if extract_date_key(date_key) != date_key:
            raise ValueError(f"not a YYYY-MM-DD date key: {date_key!r}")
        return self.root / f"{date_key}.json"

    def read_day(self, date_key: str) -> DayRecord:
        """Return the stored record, or an empty ``{date, metrics: {}}`` one.

        Raises ``ValueError`` when the file is not a JSON object with a
        ``metrics`` mapping.
        """
        path = self.path_for(date_key)
        data = read_json(path, default=None)
        if data is None:
            return {"date": date_key, "metrics": {}}
        if not isinstance(data, dict) or not isinstance(data.get("metrics", {}), dict):
            raise ValueError(f"{path} is not a day record")
        data.setdefault("date", date_key)
        data.setdefault("metrics", {})
        return data

    def write_day(self, date_key: str, record: DayRecord) -> Path:
        record["updated"] = datetime.now(timezone.utc).isoformat()
        path = self.path_for(date_key)
        atomic_write_json(record, path)
        logger.debug("wrote %s", path)
        return path

    def exists(self, date_key: str) -> bool:
        return self.path_for(date_key).is_file()

    def dates(self) -> list[str]:
        if not self.root.is_dir():
            return []
        out = []
        for p in self.root.glob("*.json"):
            if extract_date_key(p.stem) == p.stem:
                out.append(p.stem)
        return sorted(out)
