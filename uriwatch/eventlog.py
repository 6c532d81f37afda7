"""Append-only CSV event log of probe results.

File layout: one header row followed by one row per probe:

    epoch,iso_utc,http_code,latency_ms,success,curl_exit,error
    1700000000,2023-11-14T22:13:20Z,200,123.456,1,0,
    1700000030,2023-11-14T22:13:50Z,000,15001.022,0,28,timeout after 15s: ...

The log has a single writer (one running monitor). There is no file locking,
so two monitors sharing a log file will corrupt each other's pruning.
"""

import contextlib
import logging
import os
import shutil
import tempfile
from collections.abc import Iterator
from pathlib import Path

from .models import ProbeResult

logger = logging.getLogger(__name__)

HEADER = "epoch,iso_utc,http_code,latency_ms,success,curl_exit,error"

FIELD_SEPARATOR = ","

_FIELD_COUNT = 7


class EventLogError(Exception):
    """Raised when the event log cannot be written or rewritten."""

    pass


def escape_error(message: str) -> str:
    """Make an error message safe for a single log field."""
    return " ".join(message.replace(FIELD_SEPARATOR, ";").split())


def format_row(result: ProbeResult) -> str:
    """Serialize a ProbeResult as one newline-terminated log row."""
    return FIELD_SEPARATOR.join(
        (
            str(result.started_at),
            result.started_iso,
            f"{result.http_status:03d}",
            f"{result.latency_ms:.3f}",
            "1" if result.success else "0",
            str(result.transport_exit_code),
            escape_error(result.error_message),
        )
    ) + "\n"


def parse_row(line: str) -> ProbeResult | None:
    """Parse one log row, returning None for the header, blank or malformed rows."""
    line = line.rstrip("\r\n")
    if not line or line.startswith("epoch,"):
        return None

    fields = line.split(FIELD_SEPARATOR, _FIELD_COUNT - 1)
    if len(fields) != _FIELD_COUNT:
        return None

    epoch, iso, http_code, latency, success, exit_code, error = fields
    try:
        return ProbeResult(
            started_at=int(float(epoch)),
            started_iso=iso,
            http_status=int(http_code),
            latency_ms=float(latency),
            success=success.strip() == "1",
            transport_exit_code=int(exit_code),
            error_message=error,
        )
    except (ValueError, OverflowError):
        return None


def _row_epoch(line: str) -> int | None:
    """Extract the epoch field of a raw row without parsing the rest."""
    head = line.split(FIELD_SEPARATOR, 1)[0]
    try:
        return int(float(head))
    except (ValueError, OverflowError):
        return None


class EventLog:
    """Durable, append-only record of every probe result.

    Example:
        log = EventLog("logs/example.csv")
        log.ensure()
        log.append(result)
        recent = list(log.scan(since_epoch=now - 600))
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def ensure(self) -> None:
        """Create the log (and its directory) with only the header row if absent.

        Raises:
            EventLogError: If the directory or file cannot be created.
        """
        if self.path.exists():
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise EventLogError(f"Cannot create log directory {self.path.parent}: {e}")
        try:
            with open(self.path, "x", encoding="utf-8") as f:
                f.write(HEADER + "\n")
        except FileExistsError:
            return
        except OSError as e:
            raise EventLogError(f"Cannot create event log {self.path}: {e}")
        logger.info("Created event log at %s", self.path)

    def append(self, result: ProbeResult) -> None:
        """Append one row and flush it to disk before returning.

        Raises:
            EventLogError: If the row cannot be written (disk full, permissions).
        """
        self.ensure()
        row = format_row(result)
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(row)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise EventLogError(f"Cannot append to event log {self.path}: {e}")

    def scan(self, since_epoch: int | None = None) -> Iterator[ProbeResult]:
        """Yield rows with started_at >= since_epoch in file order (oldest first).

        The file is read fresh on every call; malformed rows are skipped.
        A missing log yields nothing.

        Raises:
            EventLogError: If the file exists but cannot be read.
        """
        try:
            f = open(self.path, encoding="utf-8")
        except FileNotFoundError:
            return
        except OSError as e:
            raise EventLogError(f"Cannot read event log {self.path}: {e}")

        with f:
            try:
                for line_number, line in enumerate(f, start=1):
                    result = parse_row(line)
                    if result is None:
                        if line.strip() and not line.startswith("epoch,"):
                            logger.debug("Skipping malformed row %d in %s", line_number, self.path)
                        continue
                    if since_epoch is None or result.started_at >= since_epoch:
                        yield result
            except (OSError, UnicodeDecodeError) as e:
                raise EventLogError(f"Cannot read event log {self.path}: {e}")

    def last(self) -> ProbeResult | None:
        """Return the most recently appended row, or None for an empty log."""
        latest: ProbeResult | None = None
        for latest in self.scan():
            pass
        return latest

    def prune(self, cutoff_epoch: int) -> int:
        """Rewrite the log keeping the header and rows with started_at >= cutoff_epoch.

        Kept rows are copied verbatim. The new content is written to a temporary
        file in the same directory and moved into place, so a crash leaves either
        the old or the new log, never a partial one.

        Returns:
            Number of rows removed.

        Raises:
            EventLogError: If the log cannot be rewritten.
        """
        if not self.path.exists():
            self.ensure()
            return 0

        removed = 0
        tmp_path: str | None = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as out, open(self.path, encoding="utf-8") as src:
                out.write(HEADER + "\n")
                for line in src:
                    if not line.strip() or line.startswith("epoch,"):
                        continue
                    epoch = _row_epoch(line)
                    if epoch is not None and epoch >= cutoff_epoch:
                        out.write(line if line.endswith("\n") else line + "\n")
                    else:
                        removed += 1
                out.flush()
                os.fsync(out.fileno())
            shutil.copymode(self.path, tmp_path)
            os.replace(tmp_path, self.path)
        except (OSError, UnicodeDecodeError) as e:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)
            raise EventLogError(f"Cannot prune event log {self.path}: {e}")

        if removed:
            logger.info("Pruned %d rows older than %d from %s", removed, cutoff_epoch, self.path)
        return removed
