"""Data models for probe results and rolling-window statistics."""

from dataclasses import dataclass
from datetime import UTC, datetime

# HTTP status recorded when no response was obtained.
NO_STATUS = 0


def utc_iso(epoch: int) -> str:
    """Format epoch seconds as an ISO-8601 UTC timestamp (e.g. 2024-01-01T12:00:00Z)."""
    return datetime.fromtimestamp(epoch, UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class ProbeResult:
    """Result of a single probe of the target URI.

    Attributes:
        started_at: Epoch seconds when the probe was issued.
        started_iso: The same instant as an ISO-8601 UTC string.
        http_status: HTTP status code, or NO_STATUS if no response was obtained.
        latency_ms: Elapsed time of the attempt in milliseconds, measured even on failure.
        success: True iff the transport completed and http_status < 400.
        transport_exit_code: 0 on transport success, non-zero on timeout/DNS/connection failure.
        error_message: Failure description, empty string on success.
    """

    started_at: int
    started_iso: str
    http_status: int
    latency_ms: float
    success: bool
    transport_exit_code: int = 0
    error_message: str = ""


@dataclass(frozen=True)
class Window:
    """A fixed-duration lookback period, e.g. Window("10m", 600)."""

    label: str
    duration_seconds: int


# Standard window set, shortest first.
DEFAULT_WINDOWS: tuple[Window, ...] = (
    Window("10m", 600),
    Window("30m", 1800),
    Window("1h", 3600),
    Window("24h", 86400),
)


@dataclass(frozen=True)
class WindowStats:
    """Statistics for one window. None means "n/a" (no data).

    Attributes:
        window: The window these statistics cover.
        total: Rows with started_at >= now - duration.
        success_count: Successful rows in the window.
        failure_count: Failed rows in the window.
        latency_considered_count: Successful rows (failed probes carry no latency).
        latency_ok_count: Successful rows with latency_ms <= the SLO threshold.
        latency_avg_ms: Mean latency of successful rows, or None.
        latency_peak_ms: Maximum latency of successful rows, or None.
    """

    window: Window
    total: int = 0
    success_count: int = 0
    failure_count: int = 0
    latency_considered_count: int = 0
    latency_ok_count: int = 0
    latency_avg_ms: float | None = None
    latency_peak_ms: float | None = None

    @property
    def availability_pct(self) -> float | None:
        if self.total == 0:
            return None
        return self.success_count / self.total * 100

    @property
    def latency_ok_pct(self) -> float | None:
        if self.latency_considered_count == 0:
            return None
        return self.latency_ok_count / self.latency_considered_count * 100


@dataclass(frozen=True)
class Report:
    """One aggregation of the event log.

    Attributes:
        now: Epoch seconds the windows were evaluated against.
        total_checks: Rows in the entire log (not windowed).
        total_failures: Failed rows in the entire log.
        windows: One WindowStats per configured window, in configuration order.
    """

    now: int
    total_checks: int
    total_failures: int
    windows: tuple[WindowStats, ...]
