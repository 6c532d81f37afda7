"""Terminal dashboard for the latest probe and rolling-window statistics."""

import math
from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING

from rich.console import Console
from rich.text import Text

from .models import ProbeResult, Report, WindowStats, utc_iso

if TYPE_CHECKING:
    from .config import WatchConfig

NA = "n/a"

BAR_WIDTH = 24
BAR_FILLED = "#"
BAR_EMPTY = "."

GOOD_THRESHOLD = 99.0
WARNING_THRESHOLD = 95.0


class Level(Enum):
    """Health classification of a percentage."""

    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"
    NEUTRAL = "neutral"


LEVEL_STYLES = {
    Level.GOOD: "green",
    Level.WARNING: "yellow",
    Level.CRITICAL: "red",
    Level.NEUTRAL: "bright_black",
}


def _is_missing(value: float | None) -> bool:
    return value is None or not math.isfinite(value) or value < 0


def classify(pct: float | None) -> Level:
    """Classify a percentage: >= 99 good, >= 95 warning, else critical; n/a neutral."""
    if _is_missing(pct):
        return Level.NEUTRAL
    if pct >= GOOD_THRESHOLD:
        return Level.GOOD
    if pct >= WARNING_THRESHOLD:
        return Level.WARNING
    return Level.CRITICAL


def render_bar(pct: float | None, width: int = BAR_WIDTH) -> str:
    """Proportional bar: round(pct * width / 100) filled cells, clamped to [0, width].

    A missing percentage renders as an all-empty bar; callers style it with the
    neutral level to tell it apart from a real 0%.
    """
    if _is_missing(pct):
        return BAR_EMPTY * width
    # Half-up rounding
    filled = math.floor(pct * width / 100 + 0.5)
    filled = max(0, min(width, filled))
    return BAR_FILLED * filled + BAR_EMPTY * (width - filled)


def format_percent(pct: float | None) -> str:
    if _is_missing(pct):
        return NA
    return f"{pct:.2f}%"


def format_ms(value: float | None) -> str:
    if _is_missing(value):
        return NA
    return f"{value:.1f} ms"


def _format_number(value: float) -> str:
    """Render a config number without a trailing .0 (30.0 -> 30, 0.5 -> 0.5)."""
    return f"{value:g}"


_COLUMNS = ("Window", "Checks", "OK", "Fail", "Availability", "Latency %", "Avg Lat", "Max Lat")
_WIDTHS = (8, 8, 8, 8, 15, 15, 12, 12)
_RULES = ("------", "------", "--", "----", "------------", "---------", "-------", "-------")


def _table_line(cells: Sequence[str]) -> str:
    return " ".join(f"{cell:<{width}}" for cell, width in zip(cells, _WIDTHS)).rstrip()


def build_dashboard(
    *,
    uri: str,
    interval_seconds: float,
    timeout_seconds: float,
    latency_slo_ms: float,
    log_file: str,
    now: int,
    last: ProbeResult | None,
    total_checks: int,
    total_failures: int,
    windows: Sequence[WindowStats],
) -> Text:
    """Build one dashboard snapshot. Identical inputs give identical output."""
    text = Text()
    text.append("URI Availability Monitor\n", style="bold")
    text.append(f"Target URI: {uri}\n")
    text.append(
        f"Interval: {_format_number(interval_seconds)}s | "
        f"Timeout: {_format_number(timeout_seconds)}s | "
        f"Latency SLO: {_format_number(latency_slo_ms)}ms\n"
    )
    text.append(f"Log file: {log_file}\n")
    text.append(f"Current UTC: {utc_iso(now)}\n\n")

    text.append("Last check: ")
    if last is None:
        text.append("no samples yet\n")
    elif last.success:
        text.append("SUCCESS", style="green")
        text.append(f" at {last.started_iso} | HTTP {last.http_status:03d} | {last.latency_ms:.3f} ms\n")
    else:
        text.append("FAILURE", style="red")
        text.append(
            f" at {last.started_iso} | HTTP {last.http_status:03d} | {last.latency_ms:.3f} ms"
            f" | {last.error_message or 'error'}\n"
        )

    text.append(f"Total checks: {total_checks} | Total failures: {total_failures}\n\n")

    text.append(_table_line(_COLUMNS) + "\n")
    text.append(_table_line(_RULES) + "\n")

    for stats in windows:
        availability = stats.availability_pct
        latency_pct = stats.latency_ok_pct
        avail_style = LEVEL_STYLES[classify(availability)]
        latency_style = LEVEL_STYLES[classify(latency_pct)]

        text.append(" ".join(
            f"{cell:<{width}}"
            for cell, width in zip(
                (stats.window.label, str(stats.total), str(stats.success_count), str(stats.failure_count)),
                _WIDTHS,
            )
        ) + " ")
        text.append(f"{format_percent(availability):<15}", style=avail_style)
        text.append(" ")
        text.append(f"{format_percent(latency_pct):<15}", style=latency_style)
        text.append(f" {format_ms(stats.latency_avg_ms):<12} {format_ms(stats.latency_peak_ms)}\n")

        text.append(" " * 9 + "avail [")
        text.append(render_bar(availability), style=avail_style)
        text.append("]  lat [")
        text.append(render_bar(latency_pct), style=latency_style)
        text.append("]\n")

    text.append("\nCtrl+C to stop.")
    return text


class Dashboard:
    """Redraws the dashboard on a terminal.

    Example:
        dashboard = Dashboard.from_config(config)
        dashboard.draw(now, last_result, report)
    """

    @classmethod
    def from_config(cls, config: "WatchConfig", console: Console | None = None) -> "Dashboard":
        return cls(
            uri=config.uri or "(from log)",
            interval_seconds=config.interval_seconds,
            timeout_seconds=config.timeout_seconds,
            latency_slo_ms=config.latency_slo_ms,
            log_file=config.log_file,
            clear_screen=config.clear_screen,
            console=console,
        )

    def __init__(
        self,
        *,
        uri: str,
        interval_seconds: float,
        timeout_seconds: float,
        latency_slo_ms: float,
        log_file: str,
        clear_screen: bool = True,
        console: Console | None = None,
    ) -> None:
        self._uri = uri
        self._interval_seconds = interval_seconds
        self._timeout_seconds = timeout_seconds
        self._latency_slo_ms = latency_slo_ms
        self._log_file = log_file
        self._clear_screen = clear_screen
        self._console = console or Console(highlight=False)

    def render(self, now: int, last: ProbeResult | None, report: Report) -> Text:
        """Build the snapshot for a Report without drawing it."""
        return build_dashboard(
            uri=self._uri,
            interval_seconds=self._interval_seconds,
            timeout_seconds=self._timeout_seconds,
            latency_slo_ms=self._latency_slo_ms,
            log_file=self._log_file,
            now=now,
            last=last,
            total_checks=report.total_checks,
            total_failures=report.total_failures,
            windows=report.windows,
        )

    def draw(self, now: int, last: ProbeResult | None, report: Report) -> None:
        """Clear the terminal (if enabled) and print a fresh snapshot."""
        snapshot = self.render(now, last, report)
        if self._clear_screen:
            self._console.clear()
        self._console.print(snapshot, soft_wrap=True)
