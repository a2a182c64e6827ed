"""Grouping of processes into families and memory statistics assembly."""

from collections import defaultdict
from collections.abc import Iterable, Sequence

from memkeeper.classifier import classify, family_color, family_icon, is_member
from memkeeper.models import FamilyTotals, MemoryStats, ProcessGroup, ProcessRecord
from memkeeper.parsers import VmStatCounters


def sort_by_memory(records: Iterable[ProcessRecord]) -> list[ProcessRecord]:
    """Records ordered by resident memory, largest first (pid breaks ties)."""
    return sorted(records, key=lambda r: (-r.memory_mb, r.pid))


def group_processes(records: Iterable[ProcessRecord]) -> list[ProcessGroup]:
    """
    Partition records by family key.

    Every record lands in exactly one group. Members are sorted by memory
    descending; groups by summed memory descending, ties by family key.
    """
    partitions: dict[str, list[ProcessRecord]] = defaultdict(list)
    for record in records:
        partitions[classify(record)].append(record)

    groups = []
    for key, members in partitions.items():
        ordered = sort_by_memory(members)
        groups.append(
            ProcessGroup(
                key=key,
                name=key,
                icon=family_icon(key),
                color=family_color(key),
                processes=tuple(ordered),
                total_memory_mb=sum(r.memory_mb for r in ordered),
                total_cpu=sum(r.cpu_percent for r in ordered),
            )
        )
    groups.sort(key=lambda g: (-g.total_memory_mb, g.key))
    return groups


def family_totals(records: Iterable[ProcessRecord], keys: Sequence[str]) -> dict[str, FamilyTotals]:
    """Count and summed memory of the records belonging to each tracked family."""
    counts = dict.fromkeys(keys, 0)
    memory = dict.fromkeys(keys, 0.0)
    for record in records:
        for key in keys:
            if is_member(record, key):
                counts[key] += 1
                memory[key] += record.memory_mb
    return {key: FamilyTotals(count=counts[key], memory_mb=memory[key]) for key in keys}


def build_memory_stats(
    counters: VmStatCounters, total_mb: float, swap_used_mb: float = 0.0
) -> MemoryStats:
    """Scale page counts to megabytes; used is total minus free."""
    free_mb = counters.to_mb(counters.free)
    return MemoryStats(
        total_mb=total_mb,
        used_mb=total_mb - free_mb,
        free_mb=free_mb,
        wired_mb=counters.to_mb(counters.wired),
        compressed_mb=counters.to_mb(counters.compressed),
        active_mb=counters.to_mb(counters.active),
        inactive_mb=counters.to_mb(counters.inactive),
        swap_used_mb=swap_used_mb,
    )


def aggregate(
    records: Iterable[ProcessRecord],
    counters: VmStatCounters | None,
    total_mb: float,
    swap_used_mb: float = 0.0,
) -> tuple[list[ProcessGroup], MemoryStats | None]:
    """
    Groups and memory stats for one sampling cycle.

    Args:
        records: Parsed process table.
        counters: Parsed vm_stat counters, None when unavailable.
        total_mb: Installed memory, read once at startup.
        swap_used_mb: Used swap for the same cycle.
    """
    groups = group_processes(records)
    if counters is None:
        return groups, None
    return groups, build_memory_stats(counters, total_mb, swap_used_mb)
