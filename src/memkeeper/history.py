"""Rolling pressure history, per-family trends and alert hysteresis."""

import logging
from collections import deque
from collections.abc import Iterable

from memkeeper.models import AlertLevel, MemoryStats, MemoryTrend, PressureAlert, ProcessGroup

logger = logging.getLogger(__name__)


class HistoryTracker:
    """
    Bounded series of used-memory percentages plus last-cycle family totals.

    The previous-family map is replaced at the start of each refresh with
    the groups that were published before it, so a trend always compares
    the current cycle against the one immediately before.
    """

    def __init__(self, capacity: int = 60, trend_threshold_mb: float = 50.0) -> None:
        """
        Initialize the tracker.

        Args:
            capacity: Maximum number of samples kept (oldest evicted first).
            trend_threshold_mb: Absolute change needed to report a trend.
        """
        self._series: deque[float] = deque(maxlen=capacity)
        self._previous: dict[str, float] = {}
        self._trend_threshold = trend_threshold_mb

    @property
    def capacity(self) -> int:
        """Maximum number of samples kept."""
        return self._series.maxlen or 0

    def record(self, stats: MemoryStats) -> None:
        """Append the stats' used percentage to the series."""
        self._series.append(stats.used_percent_exact)

    def record_family_memory(self, groups: Iterable[ProcessGroup]) -> None:
        """Remember each group's summed memory for the next cycle's trends."""
        self._previous = {group.key: group.total_memory_mb for group in groups}

    def previous_memory(self, key: str) -> float | None:
        """Summed memory of a family in the previous cycle."""
        return self._previous.get(key)

    def trend(self, key: str, groups: Iterable[ProcessGroup]) -> MemoryTrend:
        """
        Compare a family's current total against the previous cycle.

        Args:
            key: Family key.
            groups: The currently published groups.
        """
        previous = self._previous.get(key)
        if previous is None:
            return MemoryTrend.STABLE
        current = next((g.total_memory_mb for g in groups if g.key == key), None)
        if current is None:
            return MemoryTrend.STABLE

        diff = current - previous
        if diff > self._trend_threshold:
            return MemoryTrend.INCREASING
        if diff < -self._trend_threshold:
            return MemoryTrend.DECREASING
        return MemoryTrend.STABLE

    def overall_trend(self, window: int = 5, threshold: float = 3.0) -> MemoryTrend:
        """Mean of the newest ``window`` samples against the ``window`` before."""
        series = list(self._series)
        if len(series) < 3:
            return MemoryTrend.STABLE

        recent = series[-window:]
        older = series[-2 * window : -window] if len(series) > window else []
        recent_avg = sum(recent) / len(recent)
        older_avg = sum(older) / len(older) if older else recent_avg

        diff = recent_avg - older_avg
        if diff > threshold:
            return MemoryTrend.INCREASING
        if diff < -threshold:
            return MemoryTrend.DECREASING
        return MemoryTrend.STABLE

    def series(self) -> tuple[float, ...]:
        """Samples, oldest first."""
        return tuple(self._series)

    def __len__(self) -> int:
        return len(self._series)


class PressureAlerter:
    """
    Decides when a used-memory percentage deserves a notification.

    Alerts fire once on the way up through each threshold. After an alert at
    or above the high threshold, usage has to fall below the reset threshold
    before the next crossing alerts again.
    """

    def __init__(self, critical: int = 90, high: int = 85, reset: int = 80) -> None:
        self._critical = critical
        self._high = high
        self._reset = reset
        self._last_alert_percent = 0

    @property
    def last_alert_percent(self) -> int:
        """Percentage at the last alert or reset."""
        return self._last_alert_percent

    def check(self, percent: int) -> PressureAlert | None:
        """Feed one sample; returns an alert when a threshold is crossed."""
        last = self._last_alert_percent

        if percent >= self._critical and last < self._critical:
            self._last_alert_percent = percent
            logger.info("Memory usage crossed %d%% (now %d%%)", self._critical, percent)
            return PressureAlert(
                level=AlertLevel.CRITICAL,
                percent=percent,
                title="Critical Memory Pressure",
                body=f"Memory usage is at {percent}%. Consider closing some applications.",
            )
        if percent >= self._high and last < self._high:
            self._last_alert_percent = percent
            logger.info("Memory usage crossed %d%% (now %d%%)", self._high, percent)
            return PressureAlert(
                level=AlertLevel.HIGH,
                percent=percent,
                title="High Memory Usage",
                body=f"Memory usage is at {percent}%. You may experience slowdowns.",
            )
        if percent < self._reset and last >= self._high:
            self._last_alert_percent = percent
        return None
