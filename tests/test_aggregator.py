"""Tests for the aggregator module."""

from pathlib import Path

import pytest

from uriwatch.aggregator import RescanAggregator, RollingAggregator, aggregate
from uriwatch.eventlog import EventLog
from uriwatch.models import DEFAULT_WINDOWS, ProbeResult, Window, utc_iso

NOW = 1_700_000_000
SLO_MS = 1000


def _result(started_at: int, success: bool = True, latency_ms: float = 100.0) -> ProbeResult:
    return ProbeResult(
        started_at=started_at,
        started_iso=utc_iso(started_at),
        http_status=200 if success else 503,
        latency_ms=latency_ms,
        success=success,
        transport_exit_code=0,
        error_message="" if success else "http_status_503",
    )


def _by_label(report, label: str):
    return next(s for s in report.windows if s.window.label == label)


@pytest.fixture
def event_log(tmp_path: Path) -> EventLog:
    log = EventLog(tmp_path / "target.csv")
    log.ensure()
    return log


class TestAggregate:
    """Tests for the single-pass aggregate function."""

    def test_availability_scenario(self) -> None:
        """9 of 10 successful rows in the last 10 minutes is 90% availability."""
        rows = [_result(NOW - i * 30, success=(i != 3)) for i in range(10)]

        report = aggregate(rows, NOW, DEFAULT_WINDOWS, SLO_MS)
        stats = _by_label(report, "10m")

        assert stats.total == 10
        assert stats.success_count == 9
        assert stats.failure_count == 1
        assert stats.availability_pct == pytest.approx(90.0)

    def test_latency_scenario(self) -> None:
        """Latencies 100..1000 with a 500ms SLO: 50% compliant, avg 550, peak 1000."""
        rows = [_result(NOW - i * 30, latency_ms=100.0 * (i + 1)) for i in range(10)]

        report = aggregate(rows, NOW, DEFAULT_WINDOWS, 500)
        stats = _by_label(report, "10m")

        assert stats.latency_considered_count == 10
        assert stats.latency_ok_pct == pytest.approx(50.0)
        assert stats.latency_avg_ms == pytest.approx(550.0)
        assert stats.latency_peak_ms == 1000.0

    def test_empty_log(self) -> None:
        """No rows means zero counts and n/a everywhere."""
        report = aggregate([], NOW, DEFAULT_WINDOWS, SLO_MS)

        assert report.total_checks == 0
        assert report.total_failures == 0
        assert [s.window for s in report.windows] == list(DEFAULT_WINDOWS)
        for stats in report.windows:
            assert stats.total == 0
            assert stats.availability_pct is None
            assert stats.latency_ok_pct is None
            assert stats.latency_avg_ms is None
            assert stats.latency_peak_ms is None

    def test_failed_rows_excluded_from_latency(self) -> None:
        """Failed probes never count toward latency statistics."""
        rows = [
            _result(NOW - 10, latency_ms=200.0),
            _result(NOW - 20, success=False, latency_ms=15000.0),
        ]

        stats = _by_label(aggregate(rows, NOW, DEFAULT_WINDOWS, SLO_MS), "10m")

        assert stats.latency_considered_count == 1
        assert stats.latency_ok_pct == pytest.approx(100.0)
        assert stats.latency_peak_ms == 200.0

    def test_only_failures_latency_na(self) -> None:
        """A window of only failures has availability 0% but latency n/a."""
        rows = [_result(NOW - i, success=False) for i in range(3)]

        stats = _by_label(aggregate(rows, NOW, DEFAULT_WINDOWS, SLO_MS), "10m")

        assert stats.total == 3
        assert stats.availability_pct == 0.0
        assert stats.latency_ok_pct is None
        assert stats.latency_avg_ms is None

    def test_window_boundary_inclusive(self) -> None:
        """A row exactly one duration old is inside the window."""
        rows = [_result(NOW - 600), _result(NOW - 601)]

        report = aggregate(rows, NOW, DEFAULT_WINDOWS, SLO_MS)

        assert _by_label(report, "10m").total == 1
        assert _by_label(report, "30m").total == 2

    def test_overlapping_windows(self) -> None:
        """Rows count toward every window that covers them."""
        rows = [
            _result(NOW - 60),
            _result(NOW - 1200, success=False),
            _result(NOW - 3000),
            _result(NOW - 50000),
        ]

        report = aggregate(rows, NOW, DEFAULT_WINDOWS, SLO_MS)

        assert [s.total for s in report.windows] == [1, 2, 3, 4]
        assert [s.failure_count for s in report.windows] == [0, 1, 1, 1]

    def test_totals_cover_entire_log(self) -> None:
        """Running totals include rows outside every window."""
        rows = [_result(NOW - 200000, success=False), _result(NOW - 10)]

        report = aggregate(rows, NOW, DEFAULT_WINDOWS, SLO_MS)

        assert report.total_checks == 2
        assert report.total_failures == 1
        assert _by_label(report, "24h").total == 1

    def test_latency_at_slo_is_compliant(self) -> None:
        """latency_ms == SLO counts as compliant."""
        rows = [_result(NOW, latency_ms=1000.0), _result(NOW, latency_ms=1000.001)]

        stats = _by_label(aggregate(rows, NOW, DEFAULT_WINDOWS, SLO_MS), "10m")

        assert stats.latency_ok_count == 1

    def test_custom_windows_order_preserved(self) -> None:
        """Stats come back in configuration order."""
        windows = (Window("1h", 3600), Window("5m", 300))

        report = aggregate([_result(NOW)], NOW, windows, SLO_MS)

        assert [s.window.label for s in report.windows] == ["1h", "5m"]

    def test_availability_matches_definition(self) -> None:
        """availability_pct equals success_count / total * 100 for every window."""
        rows = [_result(NOW - i * 97, success=(i % 4 != 0)) for i in range(200)]

        for stats in aggregate(rows, NOW, DEFAULT_WINDOWS, SLO_MS).windows:
            assert stats.availability_pct == stats.success_count / stats.total * 100


class TestRescanAggregator:
    """Tests for RescanAggregator."""

    def test_reads_event_log(self, event_log: EventLog) -> None:
        """Evaluation reflects rows in the log."""
        aggregator = RescanAggregator(event_log, DEFAULT_WINDOWS, SLO_MS)
        event_log.append(_result(NOW - 5))
        event_log.append(_result(NOW - 4, success=False))

        report = aggregator.evaluate(NOW)

        assert report.total_checks == 2
        assert _by_label(report, "10m").availability_pct == pytest.approx(50.0)

    def test_sees_external_edits(self, event_log: EventLog) -> None:
        """Rows removed from the file disappear on the next evaluation."""
        aggregator = RescanAggregator(event_log, DEFAULT_WINDOWS, SLO_MS)
        event_log.append(_result(NOW - 100000))
        event_log.append(_result(NOW))
        assert aggregator.evaluate(NOW).total_checks == 2

        event_log.prune(NOW - 10)

        assert aggregator.evaluate(NOW).total_checks == 1


class TestRollingAggregator:
    """Tests for RollingAggregator."""

    def _feed(self, event_log: EventLog, rolling: RollingAggregator, row: ProbeResult) -> None:
        event_log.append(row)
        rolling.record(row)

    def test_matches_rescan_over_time(self, event_log: EventLog) -> None:
        """Reports are identical to a full rescan as windows slide forward."""
        rolling = RollingAggregator(event_log, DEFAULT_WINDOWS, SLO_MS)
        rolling.reload()
        rescan = RescanAggregator(event_log, DEFAULT_WINDOWS, SLO_MS)

        base = NOW - 2 * 86400
        for i in range(400):
            started_at = base + i * 450
            row = _result(
                started_at,
                success=(i % 7 != 0),
                latency_ms=((i * 37) % 1500) + 0.125,
            )
            self._feed(event_log, rolling, row)
            now = started_at + 5
            assert rolling.evaluate(now) == rescan.evaluate(now), f"diverged at row {i}"

    def test_peak_drops_when_evicted(self, event_log: EventLog) -> None:
        """The peak follows the largest latency still inside the window."""
        rolling = RollingAggregator(event_log, (Window("10m", 600),), SLO_MS)
        self._feed(event_log, rolling, _result(NOW, latency_ms=900.0))
        self._feed(event_log, rolling, _result(NOW + 300, latency_ms=200.0))
        self._feed(event_log, rolling, _result(NOW + 400, latency_ms=300.0))

        assert rolling.evaluate(NOW + 500).windows[0].latency_peak_ms == 900.0
        assert rolling.evaluate(NOW + 601).windows[0].latency_peak_ms == 300.0
        assert rolling.evaluate(NOW + 1001).windows[0].latency_peak_ms is None

    def test_out_of_order_rows(self, event_log: EventLog) -> None:
        """An older row arriving late still matches the rescan result."""
        rolling = RollingAggregator(event_log, DEFAULT_WINDOWS, SLO_MS)
        rescan = RescanAggregator(event_log, DEFAULT_WINDOWS, SLO_MS)
        for started_at, latency in [(NOW - 100, 400.0), (NOW - 10, 250.0), (NOW - 700, 1200.0), (NOW - 50, 80.0)]:
            self._feed(event_log, rolling, _result(started_at, latency_ms=latency))

        assert rolling.evaluate(NOW) == rescan.evaluate(NOW)

    def test_reload_seeds_from_log(self, event_log: EventLog) -> None:
        """reload() picks up existing history, including after a prune."""
        for i in range(6):
            event_log.append(_result(NOW - i * 40000, success=(i % 2 == 0)))
        rolling = RollingAggregator(event_log, DEFAULT_WINDOWS, SLO_MS)
        rescan = RescanAggregator(event_log, DEFAULT_WINDOWS, SLO_MS)

        rolling.reload()
        assert rolling.evaluate(NOW) == rescan.evaluate(NOW)

        event_log.prune(NOW - 90000)
        rolling.reload()
        assert rolling.evaluate(NOW) == rescan.evaluate(NOW)
        assert rolling.evaluate(NOW).total_checks == 3

    def test_empty(self, event_log: EventLog) -> None:
        """An empty aggregator reports n/a everywhere."""
        rolling = RollingAggregator(event_log, DEFAULT_WINDOWS, SLO_MS)
        rolling.reload()

        report = rolling.evaluate(NOW)

        assert report.total_checks == 0
        assert all(s.availability_pct is None for s in report.windows)
