"""Monitoring engine for memkeeper."""

import asyncio
import dataclasses
import logging
import threading
from collections.abc import Callable
from datetime import datetime
from queue import Queue

from memkeeper.aggregator import aggregate, family_totals, sort_by_memory
from memkeeper.cleanup import (
    Terminator,
    plan_smart_cleanup,
    recommend,
    select_all_workers,
    select_family_purge,
    select_idle_workers,
    terminate_all,
    terminate_process,
)
from memkeeper.config import MonitorConfig
from memkeeper.history import HistoryTracker, PressureAlerter
from memkeeper.models import (
    CleanupResult,
    CleanupStatus,
    MemoryTrend,
    MonitorState,
    PressureAlert,
    Recommendation,
    RecommendedAction,
)
from memkeeper.sources import Sampler, default_sampler, read_total_memory_mb

logger = logging.getLogger(__name__)


class MemoryMonitor:
    """
    Periodic memory sampler and cleanup coordinator.

    A daemon thread refreshes the published state every ``refresh_interval``
    seconds. All writes go through one lock, so refreshes and cleanups never
    interleave; readers use ``state`` without blocking and always get a
    complete snapshot from a single cycle. Pressure alerts are pushed to a
    thread-safe Queue for the notification dispatcher.
    """

    def __init__(
        self,
        config: MonitorConfig | None = None,
        alert_queue: Queue[PressureAlert] | None = None,
        sampler: Sampler | None = None,
        terminator: Terminator = terminate_process,
        total_memory_mb: float | None = None,
    ) -> None:
        """
        Initialize the MemoryMonitor.

        Args:
            config: Tunables; defaults are used when omitted.
            alert_queue: Receives PressureAlert objects when thresholds are crossed.
            sampler: Source of process and memory data for each cycle.
            terminator: Sends the termination request for a pid.
            total_memory_mb: Installed memory; read from the OS when omitted.

        Raises:
            StartupError: If installed memory cannot be determined.
        """
        self._config = config or MonitorConfig()
        self._alert_queue = alert_queue
        self._sampler = sampler or default_sampler(self._config)
        self._terminate = terminator
        self._total_mb = total_memory_mb if total_memory_mb is not None else read_total_memory_mb()
        self._refresh_interval = self._config.refresh_interval

        self._history = HistoryTracker(
            capacity=self._config.history_capacity,
            trend_threshold_mb=self._config.trend_threshold_mb,
        )
        self._alerter = PressureAlerter(
            critical=self._config.alert_critical_percent,
            high=self._config.alert_high_percent,
            reset=self._config.alert_reset_percent,
        )

        self._state = MonitorState()
        self._write_lock = threading.Lock()
        self._refreshing = threading.Event()
        self._cleanup_status = CleanupStatus.IDLE
        self._cleanup_lock = threading.Lock()

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._timers: list[threading.Timer] = []
        self._timers_lock = threading.Lock()

    @property
    def config(self) -> MonitorConfig:
        """Active configuration."""
        return self._config

    @property
    def refresh_interval(self) -> float:
        """Seconds between automatic refreshes."""
        return self._refresh_interval

    @refresh_interval.setter
    def refresh_interval(self, value: float) -> None:
        """Set the refresh interval."""
        self._refresh_interval = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def total_memory_mb(self) -> float:
        """Installed memory read at startup."""
        return self._total_mb

    @property
    def state(self) -> MonitorState:
        """The last published snapshot."""
        return self._state

    @property
    def is_refreshing(self) -> bool:
        """True while a refresh cycle is in flight."""
        return self._refreshing.is_set()

    @property
    def cleanup_status(self) -> CleanupStatus:
        """Status of the most recent smart cleanup."""
        return self._cleanup_status

    @property
    def is_running(self) -> bool:
        """Check if the refresh thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the refresh thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="MemoryMonitor",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the refresh thread and cancel pending follow-up refreshes.

        Args:
            timeout: How long to wait for the thread to stop (seconds).
        """
        self._stop_event.set()
        with self._timers_lock:
            for timer in self._timers:
                timer.cancel()
            self._timers.clear()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _poll_loop(self) -> None:
        """Main loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                self.refresh()
            except Exception:
                logger.exception("Refresh failed; will retry on the next tick")

            self._stop_event.wait(timeout=self._refresh_interval)

    def refresh(self, wait: bool = False) -> bool:
        """
        Run one sampling cycle and publish the result.

        Args:
            wait: Block until any in-flight refresh finishes and then run.
                When False a request made during another refresh is dropped.

        Returns:
            True if this call performed a refresh.
        """
        if not self._write_lock.acquire(blocking=wait):
            logger.debug("Refresh already in progress; request dropped")
            return False
        try:
            self._refreshing.set()
            alert = self._refresh_locked()
        finally:
            self._refreshing.clear()
            self._write_lock.release()

        if alert is not None:
            self._dispatch(alert)
        return True

    def _refresh_locked(self) -> PressureAlert | None:
        """Sample, aggregate and publish. Caller holds the write lock."""
        previous = self._state
        # Trends compare against the snapshot that was current before this cycle
        self._history.record_family_memory(previous.groups)

        records = self._sampler.sample_processes()
        counters = self._sampler.sample_counters()
        swap_used_mb = self._sampler.sample_swap() if counters is not None else 0.0

        if records is None:
            logger.debug("Process table unavailable; keeping previous processes")
            records = list(previous.processes)
        groups, stats = aggregate(records, counters, self._total_mb, swap_used_mb)
        if stats is None:
            logger.debug("Memory counters unavailable; keeping previous stats")
            stats = previous.stats

        if stats is not None:
            self._history.record(stats)

        self._state = MonitorState(
            processes=tuple(sort_by_memory(records)),
            groups=tuple(groups),
            stats=stats,
            history=self._history.series(),
            tracked=family_totals(records, self._config.tracked_families),
            trends={group.key: self._history.trend(group.key, groups) for group in groups},
            pressure_trend=self._history.overall_trend(),
            last_refresh=datetime.now(),
            last_cleanup_saved_mb=previous.last_cleanup_saved_mb,
        )

        if stats is None:
            return None
        return self._alerter.check(stats.used_percent)

    def _dispatch(self, alert: PressureAlert) -> None:
        """Hand an alert to the notification dispatcher."""
        if self._alert_queue is not None:
            self._alert_queue.put(alert)

    def _publish_saved(self, saved_mb: float) -> None:
        """Record the memory released by the last targeted cleanup."""
        with self._write_lock:
            self._state = dataclasses.replace(self._state, last_cleanup_saved_mb=saved_mb)

    def _family_memory(self, key: str) -> float:
        group = self._state.group(key)
        return group.total_memory_mb if group is not None else 0.0

    def _schedule(self, delay: float, callback: Callable[[], None]) -> None:
        """Run ``callback`` on a daemon timer after ``delay`` seconds."""
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        with self._timers_lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()

    def _schedule_followup(self, key: str, before_mb: float) -> None:
        """Re-measure a family after a targeted cleanup."""

        def followup() -> None:
            self.refresh(wait=True)
            saved = before_mb - self._family_memory(key)
            self._publish_saved(saved)
            logger.info("Cleanup of %s released %.0f MB", key, saved)

        self._schedule(self._config.followup_delay, followup)

    def wait_for_followups(self, timeout: float | None = None) -> None:
        """Block until scheduled follow-up refreshes have run."""
        with self._timers_lock:
            timers = list(self._timers)
        for timer in timers:
            timer.join(timeout=timeout)

    def trend(self, key: str) -> MemoryTrend:
        """Memory trend of a family between the last two refreshes."""
        return self._state.trend(key)

    def overall_trend(self) -> MemoryTrend:
        """Direction of the used-memory series."""
        return self._state.pressure_trend

    def recommendations(self) -> list[Recommendation]:
        """Cleanup suggestions for the current snapshot."""
        return recommend(self._state, self._config)

    def kill_process(self, pid: int) -> bool:
        """Ask one process to exit and refresh shortly afterwards."""
        delivered = self._terminate(pid)
        logger.info("Terminate pid %d: %s", pid, "sent" if delivered else "not delivered")
        self._schedule(self._config.kill_refresh_delay, lambda: self.refresh(wait=True))
        return delivered

    def purge_family(self, key: str, keep_top: int = 0) -> int:
        """
        Terminate every member of a family except its ``keep_top`` largest.

        Returns:
            Number of termination requests issued; 0 for an unknown family.
        """
        group = self._state.group(key)
        if group is None:
            return 0
        killed = terminate_all(select_family_purge(group, keep_top), self._terminate)
        logger.info("Purged %d of %d %s processes", killed, group.process_count, key)
        if killed:
            self._schedule_followup(key, group.total_memory_mb)
        return killed

    def trim_helpers(self, name: str = "Chrome", keep_top: int | None = None) -> int:
        """Trim a family's helper processes down to the ``keep_top`` largest."""
        if keep_top is None:
            keep_top = self._config.helper_keep
        return self.purge_family(name, keep_top)

    def cleanup_idle_workers(self, family: str = "Claude") -> int:
        """Terminate a family's small idle background workers."""
        before = self._family_memory(family)
        killed = terminate_all(select_idle_workers(self._state.processes, family), self._terminate)
        logger.info("Cleaned %d idle %s workers", killed, family)
        if killed:
            self._schedule_followup(family, before)
        return killed

    def kill_all_workers(self, family: str = "Claude") -> int:
        """Terminate every member of a family except its main sessions."""
        before = self._family_memory(family)
        killed = terminate_all(select_all_workers(self._state.processes, family), self._terminate)
        logger.info("Killed %d %s workers", killed, family)
        if killed:
            self._schedule_followup(family, before)
        return killed

    def apply_recommendation(self, recommendation: Recommendation) -> int:
        """
        Run the cleanup a recommendation points at.

        Returns:
            Number of termination requests issued; 0 for advisory-only
            recommendations.
        """
        if recommendation.action is RecommendedAction.CLEAN_IDLE_WORKERS:
            return self.cleanup_idle_workers()
        if recommendation.action is RecommendedAction.TRIM_HELPERS:
            return self.trim_helpers("Chrome", keep_top=self._config.recommend_helper_keep)
        return 0

    async def smart_cleanup(self) -> CleanupResult:
        """
        Terminate idle helper processes across the whole system.

        Decisions use the currently published snapshot. After signalling, the
        cleanup waits ``settle_delay`` seconds for processes to exit, then
        refreshes and reports the drop in used memory.

        Returns:
            The outcome; an empty result when another cleanup is running or
            the cleanup failed.
        """
        with self._cleanup_lock:
            if self._cleanup_status is CleanupStatus.RUNNING:
                logger.info("Smart cleanup already running")
                return CleanupResult()
            self._cleanup_status = CleanupStatus.RUNNING

        status = CleanupStatus.FAILED
        killed = 0
        skipped = 0
        try:
            state = self._state
            before = state.stats.used_mb if state.stats is not None else 0.0
            plan = plan_smart_cleanup(state.groups, self._config)
            skipped = plan.skipped_active
            killed = terminate_all(plan.targets, self._terminate)
            logger.info("Smart cleanup signalled %d processes, spared %d active", killed, skipped)

            await asyncio.sleep(self._config.settle_delay)
            await asyncio.to_thread(self.refresh, True)

            after_stats = self._state.stats
            after = after_stats.used_mb if after_stats is not None else 0.0
            result = CleanupResult(
                killed_count=killed,
                freed_mb=max(0.0, before - after),
                skipped_active=skipped,
            )
            status = CleanupStatus.COMPLETED
            return result
        except Exception:
            logger.exception("Smart cleanup failed")
            return CleanupResult(killed_count=killed, skipped_active=skipped)
        finally:
            self._cleanup_status = status
