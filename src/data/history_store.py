"""Closed Position History Store
===============================

JSON file persistence for closed positions:

    {"closed": [ {...}, {...} ], "timestamp": 1700000000.0}

Records are plain dicts ordered by close time. Writes go through a temp
file and an atomic replace so a crash never leaves a half-written file.
A file that cannot be read is moved aside as `<name>.corrupt-<ts>`
before the caller starts over, so the next write never overwrites it.

Author: SURIOTA Team
"""
import json
import os
import shutil
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Union

from src.utils.logger import get_logger

log = get_logger("store")


class HistoryPersistenceError(Exception):
    """History file could not be read or written"""


class JsonHistoryStore:
    """Closed-position history in a single JSON file"""

    def __init__(self, data_dir: Union[str, Path] = "data", filename: str = "positions.json"):
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / filename

    def load(self) -> List[Dict]:
        """Load closed position records

        An unreadable or malformed file is quarantined before raising.

        Returns:
            List of records (empty when the file does not exist)

        Raises:
            HistoryPersistenceError: file unreadable or malformed
        """
        if not self.path.exists():
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            self.quarantine()
            raise HistoryPersistenceError(f"Failed to read {self.path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("closed", []), list):
            self.quarantine()
            raise HistoryPersistenceError(f"Unexpected history layout in {self.path}")

        records = data.get("closed", [])
        log.info(f"Loaded {len(records)} closed positions from {self.path}")
        return records

    def save(self, records: List[Dict]):
        """Write all closed position records

        Raises:
            HistoryPersistenceError: file could not be written
        """
        payload = {"closed": records, "timestamp": time.time()}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")

        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            raise HistoryPersistenceError(f"Failed to write {self.path}: {e}") from e

    def quarantine(self, keep_original: bool = False) -> Path:
        """Set the current file aside as `<name>.corrupt-<ts>`

        Args:
            keep_original: Copy instead of move (file is still partly usable)

        Returns:
            Path of the quarantined copy

        Raises:
            HistoryPersistenceError: file could not be moved or copied
        """
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        target = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")

        try:
            if keep_original:
                shutil.copy2(self.path, target)
            else:
                os.replace(self.path, target)
        except OSError as e:
            raise HistoryPersistenceError(f"Failed to quarantine {self.path}: {e}") from e

        log.warning(f"Quarantined history file {self.path} -> {target}")
        return target
