import calendar
import fcntl
import logging
import os
import re
import threading
from datetime import date
from pathlib import Path
from typing import List, Optional
from .models import ChangeLogEntry, LibrarySyncState

logger = logging.getLogger(__name__)

LOG_DATE_FORMAT = "%Y%m%d"

def one_month_before(day: date) -> date:
    """Same day of the previous month, clamped to that month's last day."""
    year, month = (day.year - 1, 12) if day.month == 1 else (day.year, day.month - 1)
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))

class StateManager:
    """
    Owns everything written to DATA_DIR: one snapshot file per library and
    one change log file per day. Snapshot writes and log appends are guarded
    by separate locks.
    """

    def __init__(self, data_dir: str):
        self.data_dir = Path(data_dir)
        self._snapshot_lock = threading.Lock()
        self._log_lock = threading.Lock()

    def snapshot_path(self, address: str) -> Path:
        name = re.sub(r"[^0-9A-Za-z]", "_", address)
        return self.data_dir / f"{name}.json"

    def log_path(self, day: date) -> Path:
        return self.data_dir / f"Log_{day.strftime(LOG_DATE_FORMAT)}.jsonl"

    def _ensure_dir(self):
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Directory {self.data_dir} created to store media data")

    def save_snapshot(self, address: str, media: LibrarySyncState) -> bool:
        path = self.snapshot_path(address)
        tmp_path = path.with_suffix('.tmp')
        payload = media.model_dump_json(by_alias=True, indent=2)

        with self._snapshot_lock:
            try:
                self._ensure_dir()
                with open(tmp_path, 'w', encoding='utf-8') as f:
                    fcntl.flock(f, fcntl.LOCK_EX)
                    try:
                        f.write(payload)
                        f.flush()
                        os.fsync(f.fileno())
                    finally:
                        fcntl.flock(f, fcntl.LOCK_UN)

                # Atomic rename
                os.replace(tmp_path, path)
            except OSError as e:
                logger.error(f"Failed to save snapshot to {path}: {e}")
                return False

        logger.info(f"Saved media for {address} to {path}")
        return True

    def load_snapshot(self, address: str) -> LibrarySyncState:
        path = self.snapshot_path(address)
        if not path.exists():
            logger.info(f"No snapshot file found at {path}")
            return LibrarySyncState()

        try:
            with open(path, 'r', encoding='utf-8') as f:
                return LibrarySyncState.model_validate_json(f.read())
        except (OSError, ValueError) as e:
            logger.warning(f"There was an issue reading the content in {path}: {e}")
            return LibrarySyncState()

    def append_changes(self, entries: List[ChangeLogEntry], today: Optional[date] = None) -> bool:
        if not entries:
            return True

        today = today or date.today()
        path = self.log_path(today)

        with self._log_lock:
            try:
                self._ensure_dir()
                with open(path, 'a', encoding='utf-8') as f:
                    fcntl.flock(f, fcntl.LOCK_EX)
                    try:
                        for entry in entries:
                            f.write(entry.model_dump_json() + "\n")
                    finally:
                        fcntl.flock(f, fcntl.LOCK_UN)
            except OSError as e:
                logger.error(f"Failed to write change log {path}: {e}")
                return False

            # Housekeeping, runs daily so no file is skipped
            old_path = self.log_path(one_month_before(today))
            try:
                if old_path.exists():
                    old_path.unlink()
                    logger.info(f"Removed expired change log {old_path}")
            except OSError as e:
                logger.warning(f"Failed to remove expired change log {old_path}: {e}")

        return True

    def read_changes(self, day: date) -> List[ChangeLogEntry]:
        path = self.log_path(day)
        if not path.exists():
            return []

        entries = []
        with open(path, 'r', encoding='utf-8') as f:
            for number, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(ChangeLogEntry.model_validate_json(line))
                except ValueError as e:
                    # Partial line from an interrupted append
                    logger.warning(f"Skipping unreadable line {number} in {path}: {e}")
        return entries
