"""Cleanup policies: which processes to terminate, and how.

The selection functions are pure and work on an already published snapshot.
Signalling goes through ``terminate_process``, which sends a graceful
termination request and does not wait for the process to exit.
"""

import logging
import os
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

import psutil

from memkeeper.classifier import is_member, keeps_children
from memkeeper.config import MonitorConfig
from memkeeper.models import (
    MonitorState,
    ProcessGroup,
    ProcessRecord,
    Recommendation,
    RecommendedAction,
    format_mb,
)

logger = logging.getLogger(__name__)

Terminator = Callable[[int], bool]


@dataclass(slots=True, frozen=True)
class SmartCleanupPlan:
    """Processes chosen by smart cleanup and how many were spared as active."""

    targets: tuple[ProcessRecord, ...]
    skipped_active: int


def terminate_process(pid: int) -> bool:
    """
    Ask a process to exit with SIGTERM.

    Processes that are already gone, zombies and processes we are not
    allowed to signal are ignored; the caller only learns about them through
    the memory measured afterwards.

    Returns:
        True if the signal was delivered.
    """
    if pid <= 0 or pid == os.getpid():
        return False
    try:
        psutil.Process(pid).terminate()
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as e:
        logger.debug("Could not terminate pid %d: %s", pid, type(e).__name__)
        return False
    return True


def terminate_all(records: Iterable[ProcessRecord], terminator: Terminator = terminate_process) -> int:
    """Signal every record; returns how many termination requests were issued."""
    issued = 0
    for record in records:
        terminator(record.pid)
        issued += 1
    return issued


def select_family_purge(group: ProcessGroup, keep_top: int = 0) -> list[ProcessRecord]:
    """
    Members of a group past the ``keep_top`` largest.

    No activity check is made: this is an explicit user request.
    """
    return list(group.processes[max(0, keep_top) :])


def select_idle_workers(
    records: Sequence[ProcessRecord],
    family: str = "Claude",
    busy_cpu: float = 1.0,
    max_memory_mb: float = 100.0,
    idle_cpu: float = 0.5,
) -> list[ProcessRecord]:
    """
    Small idle background workers of a family.

    Busy members and the command-line entry point (``cli.js``) are spared;
    of the rest only those under ``max_memory_mb`` with CPU below
    ``idle_cpu`` are selected.
    """
    targets = []
    for record in records:
        if not is_member(record, family):
            continue
        if record.cpu_percent > busy_cpu:
            continue
        if "cli.js" in record.name:
            continue
        if record.memory_mb < max_memory_mb and record.cpu_percent < idle_cpu:
            targets.append(record)
    return targets


def select_all_workers(
    records: Sequence[ProcessRecord],
    family: str = "Claude",
    keep: int = 3,
    main_min_mb: float = 150.0,
) -> list[ProcessRecord]:
    """
    Every member of a family except its main sessions.

    Main sessions are the first ``keep`` members (in the given order) above
    ``main_min_mb``.
    """
    members = [r for r in records if is_member(r, family)]
    kept = {r.pid for r in [m for m in members if m.memory_mb > main_min_mb][:keep]}
    return [r for r in members if r.pid not in kept]


def _is_protected(record: ProcessRecord, protected_apps: Sequence[str]) -> bool:
    return any(app in record.name for app in protected_apps)


def plan_smart_cleanup(groups: Iterable[ProcessGroup], config: MonitorConfig) -> SmartCleanupPlan:
    """
    Choose idle, non-essential, non-primary processes across all groups.

    Per group, in memory order, a member is spared when it is a protected
    system app, runs as a system user, is the group's largest process, is
    one of the first ``browser_keep`` members of a tab-heavy family, is using
    CPU (counted as active), or is below ``min_kill_mb``.
    """
    targets: list[ProcessRecord] = []
    skipped_active = 0
    own_pid = os.getpid()

    for group in groups:
        if group.key.startswith("_") or group.key == "root":
            continue
        tab_heavy = keeps_children(group.key)

        for index, record in enumerate(group.processes):
            if _is_protected(record, config.protected_apps):
                continue
            if record.is_system:
                continue
            # The largest member is presumed to be the application itself
            if index == 0:
                continue
            if tab_heavy and index < config.browser_keep:
                continue
            if record.cpu_percent > config.active_cpu_percent:
                skipped_active += 1
                continue
            if record.memory_mb < config.min_kill_mb:
                continue
            if record.pid == own_pid:
                continue
            targets.append(record)

    return SmartCleanupPlan(targets=tuple(targets), skipped_active=skipped_active)


def recommend(state: MonitorState, config: MonitorConfig) -> list[Recommendation]:
    """Cleanup suggestions for the current snapshot, only under pressure."""
    stats = state.stats
    if stats is None or stats.used_percent <= config.recommend_above_percent:
        return []

    recommendations = []
    workers = state.totals("Claude")
    if workers.count > config.recommend_worker_count:
        recommendations.append(
            Recommendation(
                title="Clean Claude Processes",
                description=f"{workers.count} processes using {format_mb(workers.memory_mb)}",
                action=RecommendedAction.CLEAN_IDLE_WORKERS,
            )
        )
    helpers = state.totals("Chrome")
    if helpers.count > config.recommend_helper_count:
        recommendations.append(
            Recommendation(
                title="Trim Chrome Helpers",
                description=f"{helpers.count} helpers using {format_mb(helpers.memory_mb)}",
                action=RecommendedAction.TRIM_HELPERS,
            )
        )
    if stats.swap_used_mb > config.recommend_swap_mb:
        recommendations.append(
            Recommendation(
                title="High Swap Usage",
                description=f"{stats.swap_used_mb / 1024:.1f} GB using SSD storage",
            )
        )
    return recommendations
