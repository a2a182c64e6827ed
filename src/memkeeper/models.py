"""Data models for memkeeper."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class PressureLevel(Enum):
    """Qualitative memory pressure tiers."""

    NORMAL = "Normal"
    MODERATE = "Moderate"
    HIGH = "High"
    CRITICAL = "Critical"


class MemoryTrend(Enum):
    """Direction of a memory series between two refreshes."""

    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"

    @property
    def arrow(self) -> str:
        """Glyph used by the front-end."""
        return {"increasing": "↗", "decreasing": "↘", "stable": ""}[self.value]


class AlertLevel(Enum):
    """Severity of a pressure alert."""

    HIGH = "high"
    CRITICAL = "critical"


class CleanupStatus(Enum):
    """Lifecycle of a cleanup invocation."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RecommendedAction(Enum):
    """Cleanup actions a recommendation can point at."""

    CLEAN_IDLE_WORKERS = "clean_idle_workers"
    TRIM_HELPERS = "trim_helpers"


def format_mb(mb: float) -> str:
    """Format megabytes as a human-readable string."""
    if mb >= 1024:
        return f"{mb / 1024:.1f} GB"
    return f"{mb:.0f} MB"


def display_name(name: str) -> str:
    """Basename of a path-like process name."""
    if "/" in name:
        return name.rstrip("/").rsplit("/", 1)[-1] or name
    return name


def is_system_user(user: str) -> bool:
    """True for root and underscore-prefixed service accounts (_windowserver)."""
    return user == "root" or user.startswith("_")


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """Immutable snapshot of one process row from the process table."""

    pid: int
    name: str  # raw executable name, may be a full path
    memory_mb: float  # resident set size
    cpu_percent: float  # 0.0 - 100.0 * core_count
    user: str

    @property
    def display_name(self) -> str:
        """Executable basename when the name is path-like."""
        return display_name(self.name)

    @property
    def is_system(self) -> bool:
        """True for root and the underscore-prefixed service accounts."""
        return is_system_user(self.user)


@dataclass(slots=True, frozen=True)
class ProcessGroup:
    """Processes that belong to one application family."""

    key: str
    name: str
    icon: str
    color: str
    processes: tuple[ProcessRecord, ...]  # memory descending
    total_memory_mb: float
    total_cpu: float

    @property
    def process_count(self) -> int:
        """Number of member processes."""
        return len(self.processes)


@dataclass(slots=True, frozen=True)
class FamilyTotals:
    """Process count and summed memory for a tracked family."""

    count: int = 0
    memory_mb: float = 0.0


@dataclass(slots=True, frozen=True)
class MemoryStats:
    """
    Point-in-time system memory snapshot, all values in megabytes.

    ``used_mb`` is always ``total_mb - free_mb``. The component fields come
    from separate OS counters and may overlap, so they are not expected to
    add up to ``used_mb``.
    """

    total_mb: float
    used_mb: float
    free_mb: float
    wired_mb: float = 0.0
    compressed_mb: float = 0.0
    active_mb: float = 0.0
    inactive_mb: float = 0.0
    swap_used_mb: float = 0.0

    @property
    def used_percent_exact(self) -> float:
        """Used memory as a float percentage."""
        if self.total_mb <= 0:
            return 0.0
        return self.used_mb * 100 / self.total_mb

    @property
    def used_percent(self) -> int:
        """Used memory as a truncated integer percentage in [0, 100]."""
        return min(100, max(0, int(self.used_percent_exact)))

    @property
    def pressure_level(self) -> PressureLevel:
        """Pressure tier; each cut point belongs to the higher tier."""
        percent = self.used_percent
        if percent >= 85:
            return PressureLevel.CRITICAL
        if percent >= 70:
            return PressureLevel.HIGH
        if percent >= 50:
            return PressureLevel.MODERATE
        return PressureLevel.NORMAL

    @property
    def pressure_description(self) -> str:
        """Short human-readable advice for the current pressure."""
        percent = self.used_percent
        if percent >= 90:
            return "Memory critically low. Close apps or restart."
        if percent >= 85:
            return "Heavy pressure. Consider closing unused apps."
        if percent >= 70:
            return "Elevated usage. Monitor closely."
        if percent >= 50:
            return "Moderate usage. System running well."
        return "Low usage. Plenty of headroom."


@dataclass(slots=True, frozen=True)
class CleanupResult:
    """Outcome of one cleanup invocation."""

    killed_count: int = 0
    freed_mb: float = 0.0
    skipped_active: int = 0


@dataclass(slots=True, frozen=True)
class PressureAlert:
    """A threshold crossing to be delivered by a notification dispatcher."""

    level: AlertLevel
    percent: int
    title: str
    body: str


@dataclass(slots=True, frozen=True)
class Recommendation:
    """Contextual cleanup suggestion; ``action`` is None for advice only."""

    title: str
    description: str
    action: RecommendedAction | None = None


@dataclass(slots=True, frozen=True)
class MonitorState:
    """
    Everything a refresh publishes, swapped in as one object.

    Readers hold on to whichever instance they fetched, so groups and stats
    they see always come from the same cycle.
    """

    processes: tuple[ProcessRecord, ...] = ()
    groups: tuple[ProcessGroup, ...] = ()
    stats: MemoryStats | None = None
    history: tuple[float, ...] = ()
    tracked: dict[str, FamilyTotals] = field(default_factory=dict)
    trends: dict[str, MemoryTrend] = field(default_factory=dict)  # per family key
    pressure_trend: MemoryTrend = MemoryTrend.STABLE
    last_refresh: datetime | None = None
    last_cleanup_saved_mb: float = 0.0

    def group(self, key: str) -> ProcessGroup | None:
        """Look up a group by family key."""
        for group in self.groups:
            if group.key == key:
                return group
        return None

    def totals(self, key: str) -> FamilyTotals:
        """Tracked family totals, zero when the family is not tracked."""
        return self.tracked.get(key, FamilyTotals())

    def trend(self, key: str) -> MemoryTrend:
        """Trend of a family between this cycle and the previous one."""
        return self.trends.get(key, MemoryTrend.STABLE)
