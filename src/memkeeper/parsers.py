"""Parsers for the text output of the OS memory and process queries.

Every parser is tolerant: a line it cannot read is dropped and the rest of
the output is still used.
"""

import re
from dataclasses import dataclass

from memkeeper.models import ProcessRecord

DEFAULT_PAGE_SIZE = 16384

_BYTES_PER_MB = 1024 * 1024
_SWAP_USED_RE = re.compile(r"used = ([0-9.]+)M")

# vm_stat label -> VmStatCounters field
_VM_STAT_LABELS = {
    "Pages free:": "free",
    "Pages active:": "active",
    "Pages inactive:": "inactive",
    "Pages wired down:": "wired",
    "Pages occupied by compressor:": "compressed",
}


@dataclass(slots=True, frozen=True)
class VmStatCounters:
    """Page counts read from ``vm_stat`` output."""

    page_size: int
    free: float = 0.0
    active: float = 0.0
    inactive: float = 0.0
    wired: float = 0.0
    compressed: float = 0.0

    def to_mb(self, pages: float) -> float:
        """Convert a page count to megabytes."""
        return pages * self.page_size / _BYTES_PER_MB


def parse_process_table(text: str, min_memory_mb: float = 1.0) -> list[ProcessRecord]:
    """
    Parse ``ps -axo pid,rss,%cpu,user,comm`` output.

    The command column may contain spaces, so each row is split into at most
    five fields. The header row, blank lines and rows with non-numeric
    pid/rss/cpu are skipped.

    Args:
        text: Raw command output.
        min_memory_mb: Rows at or below this resident size are dropped.

    Returns:
        Records in the order they appear in the output.
    """
    records: list[ProcessRecord] = []
    for line in text.splitlines():
        parts = line.split(None, 4)
        if len(parts) < 5:
            continue
        try:
            pid = int(parts[0])
            rss_kb = float(parts[1])
            cpu = float(parts[2])
        except ValueError:
            continue

        memory_mb = rss_kb / 1024.0
        if memory_mb <= min_memory_mb:
            continue

        records.append(
            ProcessRecord(
                pid=pid,
                name=parts[4].strip(),
                memory_mb=memory_mb,
                cpu_percent=max(0.0, cpu),
                user=parts[3],
            )
        )
    return records


def _page_count(line: str) -> float:
    """Read the number after the colon of a vm_stat line (``1234.`` style)."""
    _, sep, value = line.partition(":")
    if not sep:
        return 0.0
    try:
        return float(value.strip().replace(".", ""))
    except ValueError:
        return 0.0


def parse_vm_stat(text: str, default_page_size: int = DEFAULT_PAGE_SIZE) -> VmStatCounters | None:
    """
    Extract page size and page counts from ``vm_stat`` output.

    Args:
        text: Raw command output.
        default_page_size: Used when the output does not state a page size.

    Returns:
        The counters, or None when no page counter line was recognized.
    """
    page_size = default_page_size
    counts: dict[str, float] = {}

    for line in text.splitlines():
        if "page size of" in line:
            for token in line.split():
                if token.isdigit():
                    page_size = int(token)
                    break
            continue
        for label, field_name in _VM_STAT_LABELS.items():
            if label in line:
                counts[field_name] = _page_count(line)
                break

    if not counts:
        return None
    return VmStatCounters(page_size=page_size, **counts)


def parse_swap_usage(text: str) -> float:
    """Extract used swap in MB from ``sysctl vm.swapusage``; 0.0 if absent."""
    match = _SWAP_USED_RE.search(text)
    if match is None:
        return 0.0
    try:
        return float(match.group(1))
    except ValueError:
        return 0.0
