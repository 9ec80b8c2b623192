"""
Append-only audit log for policy-gate.

Every evaluation appends exactly one JSON line to a file partitioned by
the entry's UTC date:

    <log_dir>/policy-gate-YYYYMMDD.log

Design Principles:
    - Append-only: entries are never updated or deleted here (rotation and
      retention belong to whoever owns the log directory)
    - Atomic per line: an exclusive flock is held only around the single
      write of one line, so parallel CI jobs on the same host never
      interleave bytes and never wait on each other's whole evaluation
    - Fail-closed: any OS error surfaces as AuditWriteError, which the gate
      treats as fatal
"""

import fcntl
import json
import os
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Iterator

from pydantic import ValidationError

from policygate.errors import AuditWriteError
from policygate.log import get_logger
from policygate.schema import AuditEntry

logger = get_logger(__name__)

LOG_PREFIX = "policy-gate-"
LOG_SUFFIX = ".log"


def log_filename(day: date | datetime) -> str:
    """File name for one UTC day, e.g. policy-gate-20261018.log."""
    if isinstance(day, datetime):
        day = day.astimezone(UTC).date() if day.tzinfo else day.date()
    return f"{LOG_PREFIX}{day.strftime('%Y%m%d')}{LOG_SUFFIX}"


def encode_entry(entry: AuditEntry) -> bytes:
    """One compact JSON object terminated by a newline."""
    line = json.dumps(entry.to_record(), separators=(",", ":"), ensure_ascii=False)
    return (line + "\n").encode("utf-8")


class AuditRecorder:
    """
    Writes and reads the day-partitioned audit log.

    Usage:
        recorder = AuditRecorder("logs/audit")
        path = recorder.record(entry)

    Attributes:
        log_dir: Directory holding the daily log files
    """

    def __init__(self, log_dir: str | Path) -> None:
        self.log_dir = Path(log_dir)

    def log_path_for(self, day: date | datetime) -> Path:
        """Path of the log file that holds entries for `day` (UTC)."""
        return self.log_dir / log_filename(day)

    def record(self, entry: AuditEntry) -> Path:
        """
        Append one entry to its day's log.

        Args:
            entry: The audit entry to persist

        Returns:
            Path of the file the entry was appended to

        Raises:
            AuditWriteError: Directory creation, open, lock, write or fsync failed
        """
        path = self.log_path_for(entry.timestamp)
        data = encode_entry(entry)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
        except OSError as e:
            raise AuditWriteError(log_path=str(path), underlying_error=str(e)) from e

        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            try:
                size = os.fstat(fd).st_size
                try:
                    _write_all(fd, data)
                    os.fsync(fd)
                except OSError:
                    # Drop any partial line so the next append starts on a fresh line
                    os.ftruncate(fd, size)
                    raise
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError as e:
            raise AuditWriteError(log_path=str(path), underlying_error=str(e)) from e
        finally:
            os.close(fd)

        logger.debug("audit entry %s appended to %s", entry.evaluation_id, path)
        return path

    def iter_entries(self, day: date | datetime | None = None) -> Iterator[AuditEntry]:
        """
        Yield the entries recorded on one UTC day (today by default).

        Lines that are not valid entries are skipped with a warning.
        """
        path = self.log_path_for(day or datetime.now(UTC))
        if not path.exists():
            return

        with path.open(encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield AuditEntry.model_validate(json.loads(line))
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.warning("skipping unreadable audit line %s:%d: %s", path, lineno, e)

    def read_entries(self, day: date | datetime | None = None) -> list[AuditEntry]:
        """All entries recorded on one UTC day."""
        return list(self.iter_entries(day))

    def list_days(self) -> list[str]:
        """YYYYMMDD stamps of the days that have a log file, oldest first."""
        if not self.log_dir.is_dir():
            return []
        return sorted(
            p.name[len(LOG_PREFIX):-len(LOG_SUFFIX)]
            for p in self.log_dir.glob(f"{LOG_PREFIX}*{LOG_SUFFIX}")
        )


def _write_all(fd: int, data: bytes) -> None:
    """os.write until every byte is out (short writes are possible on some filesystems)."""
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]
