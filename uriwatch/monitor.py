"""Probe loop: probe, record, aggregate, render, sleep, repeat."""

import logging
import time
from enum import Enum
from threading import Event

from .aggregator import RescanAggregator, RollingAggregator
from .config import WatchConfig
from .dashboard import Dashboard
from .eventlog import EventLog
from .models import ProbeResult, Report
from .probe import probe_uri

logger = logging.getLogger(__name__)


class MonitorState(Enum):
    """Where the loop is within a cycle."""

    INITIALIZING = "initializing"
    PROBING = "probing"
    RECORDING = "recording"
    PRUNING = "pruning"
    AGGREGATING = "aggregating"
    RENDERING = "rendering"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


class Monitor:
    """Single-threaded monitor for one target URI.

    Cycles run strictly one after another. Every prune_every cycles the event
    log is compacted to the retention horizon right after the new row is
    recorded. The loop only stops between cycles, and every row is flushed at
    append time, so interrupting it needs no teardown.

    Example:
        monitor = Monitor(config, EventLog(config.log_file), Dashboard.from_config(config))
        monitor.run(stop_event)
    """

    def __init__(
        self,
        config: WatchConfig,
        event_log: EventLog,
        dashboard: Dashboard | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            config: Target, cadence and window configuration.
            event_log: Log this monitor exclusively owns.
            dashboard: Renderer to draw after each cycle, or None for headless runs.
        """
        self._config = config
        self._event_log = event_log
        self._dashboard = dashboard
        aggregator_cls = RollingAggregator if config.incremental else RescanAggregator
        self._aggregator = aggregator_cls(event_log, config.windows, config.latency_slo_ms)
        self._state = MonitorState.INITIALIZING
        self._cycle_count = 0
        self._last_result: ProbeResult | None = None

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def last_result(self) -> ProbeResult | None:
        return self._last_result

    def _set_state(self, state: MonitorState) -> None:
        self._state = state
        logger.debug("Cycle %d: %s", self._cycle_count, state.value)

    def initialize(self) -> None:
        """Create the event log if needed and load existing history.

        Raises:
            EventLogError: If the log cannot be created or read.
        """
        self._set_state(MonitorState.INITIALIZING)
        self._event_log.ensure()
        self._aggregator.reload()

    def run_cycle(self) -> Report:
        """Run one probe cycle and return the statistics it rendered.

        Raises:
            EventLogError: If the result cannot be recorded or the log pruned.
        """
        self._set_state(MonitorState.PROBING)
        result = probe_uri(
            self._config.uri,
            self._config.timeout_seconds,
            self._config.header_dict,
        )

        self._set_state(MonitorState.RECORDING)
        self._event_log.append(result)
        self._aggregator.record(result)
        self._last_result = result
        self._cycle_count += 1

        if not result.success:
            logger.info(
                "Probe failed: HTTP %03d, exit %d, %s",
                result.http_status,
                result.transport_exit_code,
                result.error_message,
            )

        if self._cycle_count % self._config.prune_every == 0:
            self._set_state(MonitorState.PRUNING)
            self.prune()

        self._set_state(MonitorState.AGGREGATING)
        now = int(time.time())
        report = self._aggregator.evaluate(now)

        self._set_state(MonitorState.RENDERING)
        if self._dashboard is not None:
            self._dashboard.draw(now, result, report)

        return report

    def prune(self) -> int:
        """Drop rows older than the retention horizon (longest window + margin)."""
        cutoff = int(time.time()) - self._config.retention_seconds
        removed = self._event_log.prune(cutoff)
        self._aggregator.reload()
        return removed

    def _sleep_seconds(self, cycle_started: float) -> float:
        """Delay before the next probe.

        Fixed-delay by default: the full interval after the cycle's work. With
        fixed_rate the cycle's own duration is subtracted.
        """
        if not self._config.fixed_rate:
            return self._config.interval_seconds
        elapsed = time.monotonic() - cycle_started
        return max(0.0, self._config.interval_seconds - elapsed)

    def run(self, stop_event: Event | None = None, max_cycles: int | None = None) -> None:
        """Run cycles until stop_event is set or max_cycles have completed.

        Raises:
            EventLogError: If the event log cannot be written; the loop stops.
        """
        stop_event = stop_event or Event()
        self.initialize()
        logger.info(
            "Monitoring %s every %gs (timeout %gs, SLO %gms), log %s",
            self._config.uri,
            self._config.interval_seconds,
            self._config.timeout_seconds,
            self._config.latency_slo_ms,
            self._config.log_file,
        )

        try:
            while not stop_event.is_set():
                cycle_started = time.monotonic()
                self.run_cycle()

                if max_cycles is not None and self._cycle_count >= max_cycles:
                    break

                self._set_state(MonitorState.SLEEPING)
                stop_event.wait(timeout=self._sleep_seconds(cycle_started))
        finally:
            self._set_state(MonitorState.STOPPED)

        logger.info("Monitor stopped after %d cycles", self._cycle_count)
