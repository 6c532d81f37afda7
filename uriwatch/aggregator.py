"""Rolling-window statistics over the event log.

Two aggregators share one definition: a row counts toward a window when
started_at >= now - duration, and latency statistics only consider
successful rows.

RescanAggregator re-reads the whole log every evaluation. The log is bounded
by pruning, so this stays cheap at the default cadence. RollingAggregator
keeps per-window accumulators in memory and produces identical reports
without touching the file after it has been seeded.

Latency sums are kept in integer microseconds so both aggregators compute
bit-identical averages.
"""

import logging
from collections import deque
from collections.abc import Iterable, Sequence

from .eventlog import EventLog
from .models import ProbeResult, Report, Window, WindowStats

logger = logging.getLogger(__name__)


def _to_micros(latency_ms: float) -> int:
    return round(latency_ms * 1000)


class _WindowAccumulator:
    """Counters for one window. Supports removal for sliding use."""

    def __init__(self, window: Window, slo_ms: float) -> None:
        self.window = window
        self.slo_ms = slo_ms
        self.total = 0
        self.success = 0
        self.latency_count = 0
        self.latency_ok = 0
        self.latency_sum_us = 0
        self.latency_peak: float | None = None

    def add(self, row: ProbeResult) -> None:
        self.total += 1
        if not row.success:
            return
        self.success += 1
        self.latency_count += 1
        self.latency_sum_us += _to_micros(row.latency_ms)
        if row.latency_ms <= self.slo_ms:
            self.latency_ok += 1
        if self.latency_peak is None or row.latency_ms > self.latency_peak:
            self.latency_peak = row.latency_ms

    def remove(self, row: ProbeResult) -> None:
        """Undo add(). The caller maintains latency_peak."""
        self.total -= 1
        if not row.success:
            return
        self.success -= 1
        self.latency_count -= 1
        self.latency_sum_us -= _to_micros(row.latency_ms)
        if row.latency_ms <= self.slo_ms:
            self.latency_ok -= 1

    def stats(self) -> WindowStats:
        if self.latency_count:
            avg = self.latency_sum_us / self.latency_count / 1000
            peak = self.latency_peak
        else:
            avg = peak = None
        return WindowStats(
            window=self.window,
            total=self.total,
            success_count=self.success,
            failure_count=self.total - self.success,
            latency_considered_count=self.latency_count,
            latency_ok_count=self.latency_ok,
            latency_avg_ms=avg,
            latency_peak_ms=peak,
        )


def aggregate(
    rows: Iterable[ProbeResult],
    now: int,
    windows: Sequence[Window],
    slo_ms: float,
) -> Report:
    """Compute one WindowStats per window, plus running totals, in a single pass.

    Args:
        rows: Every row of the log, in any order.
        now: Epoch seconds to evaluate the windows against.
        windows: Windows to evaluate.
        slo_ms: Latency threshold; successful rows at or below it count as compliant.

    Returns:
        Report with WindowStats in the order of `windows`.
    """
    accumulators = [_WindowAccumulator(w, slo_ms) for w in windows]
    total_checks = 0
    total_failures = 0

    for row in rows:
        total_checks += 1
        if not row.success:
            total_failures += 1
        age = now - row.started_at
        for acc in accumulators:
            if age <= acc.window.duration_seconds:
                acc.add(row)

    return Report(
        now=now,
        total_checks=total_checks,
        total_failures=total_failures,
        windows=tuple(acc.stats() for acc in accumulators),
    )


class RescanAggregator:
    """Aggregates by reading the full event log on every evaluation."""

    def __init__(self, event_log: EventLog, windows: Sequence[Window], slo_ms: float) -> None:
        self._event_log = event_log
        self._windows = tuple(windows)
        self._slo_ms = slo_ms

    def record(self, result: ProbeResult) -> None:
        """No-op: the next evaluation reads the appended row from the log."""

    def reload(self) -> None:
        """No-op: nothing is cached between evaluations."""

    def evaluate(self, now: int) -> Report:
        return aggregate(self._event_log.scan(), now, self._windows, self._slo_ms)


class _SlidingWindow:
    """One window's rows in arrival order, with a monotonic deque for the peak."""

    def __init__(self, window: Window, slo_ms: float) -> None:
        self.acc = _WindowAccumulator(window, slo_ms)
        self.rows: deque[tuple[int, ProbeResult]] = deque()
        # (seq, latency) of successful rows, latencies strictly decreasing
        self.peaks: deque[tuple[int, float]] = deque()

    def add(self, seq: int, row: ProbeResult) -> None:
        self.rows.append((seq, row))
        self.acc.add(row)
        if row.success:
            while self.peaks and self.peaks[-1][1] <= row.latency_ms:
                self.peaks.pop()
            self.peaks.append((seq, row.latency_ms))
        self.acc.latency_peak = self.peaks[0][1] if self.peaks else None

    def evict(self, now: int) -> None:
        cutoff = now - self.acc.window.duration_seconds
        while self.rows and self.rows[0][1].started_at < cutoff:
            seq, row = self.rows.popleft()
            self.acc.remove(row)
            if self.peaks and self.peaks[0][0] == seq:
                self.peaks.popleft()
        self.acc.latency_peak = self.peaks[0][1] if self.peaks else None


class RollingAggregator:
    """Incremental aggregator updated on every appended row.

    Rows are expected in non-decreasing started_at order. An out-of-order row
    triggers a rebuild from the rows still held, which keeps the output equal
    to a full rescan. Evaluation time is expected to move forward; rows
    evicted by an earlier, later `now` are not restored.
    """

    def __init__(self, event_log: EventLog, windows: Sequence[Window], slo_ms: float) -> None:
        self._event_log = event_log
        self._windows = tuple(windows)
        self._slo_ms = slo_ms
        self._reset()

    def _reset(self) -> None:
        self._sliding = [_SlidingWindow(w, self._slo_ms) for w in self._windows]
        self._seq = 0
        self._latest_started_at: int | None = None
        self._total_checks = 0
        self._total_failures = 0

    def _longest(self) -> _SlidingWindow:
        return max(self._sliding, key=lambda s: s.acc.window.duration_seconds)

    def _add(self, row: ProbeResult) -> None:
        self._seq += 1
        for sliding in self._sliding:
            sliding.add(self._seq, row)
        self._latest_started_at = row.started_at

    def reload(self) -> None:
        """Reseed every accumulator from the event log (after a prune)."""
        self._reset()
        for row in self._event_log.scan():
            self.record(row)
        logger.debug("Rolling aggregator seeded with %d rows", self._total_checks)

    def record(self, result: ProbeResult) -> None:
        """Account for a newly appended row."""
        self._total_checks += 1
        if not result.success:
            self._total_failures += 1

        if self._latest_started_at is not None and result.started_at < self._latest_started_at:
            held = [row for _, row in self._longest().rows]
            held.append(result)
            held.sort(key=lambda r: r.started_at)
            for sliding in self._sliding:
                sliding.rows.clear()
                sliding.peaks.clear()
                sliding.acc = _WindowAccumulator(sliding.acc.window, self._slo_ms)
            self._latest_started_at = None
            for row in held:
                self._add(row)
            return

        self._add(result)

    def evaluate(self, now: int) -> Report:
        stats = []
        for sliding in self._sliding:
            sliding.evict(now)
            stats.append(sliding.acc.stats())
        return Report(
            now=now,
            total_checks=self._total_checks,
            total_failures=self._total_failures,
            windows=tuple(stats),
        )
