"""Samplers that query the OS for the process table and memory counters.

A sampler only reports what it saw this cycle: None means the query was
unavailable, and the monitor keeps its previously published value.

* ``CommandSampler``: ``ps``, ``vm_stat`` and ``sysctl vm.swapusage`` (macOS)
* ``PsutilSampler``: ``ps`` for processes, psutil for memory counters
"""

import logging
import sys
from abc import ABC, abstractmethod

import psutil

from memkeeper.commands import run_query
from memkeeper.config import MonitorConfig
from memkeeper.exceptions import StartupError
from memkeeper.models import ProcessRecord
from memkeeper.parsers import VmStatCounters, parse_process_table, parse_swap_usage, parse_vm_stat

logger = logging.getLogger(__name__)

# BSD ps selects every process with -ax; on procps -e does, and -e would
# mean "show environment" on macOS.
PS_COMMAND = (
    ("ps", "-axo", "pid=,rss=,%cpu=,user=,comm=")
    if sys.platform == "darwin"
    else ("ps", "-eo", "pid=,rss=,%cpu=,user=,comm=")
)
VM_STAT_COMMAND = ("vm_stat",)
SWAP_COMMAND = ("sysctl", "vm.swapusage")


def read_total_memory_mb() -> float:
    """
    Installed physical memory in megabytes.

    Raises:
        StartupError: If the total cannot be determined.
    """
    try:
        total = psutil.virtual_memory().total
    except (OSError, RuntimeError, psutil.Error) as e:
        raise StartupError(f"Could not read physical memory size: {e}") from e
    if total <= 0:
        raise StartupError(f"Physical memory size reported as {total} bytes")
    return total / 1024 / 1024


class Sampler(ABC):
    """Interface every sampling backend implements."""

    @abstractmethod
    def sample_processes(self) -> list[ProcessRecord] | None:
        """Current process table, or None if it could not be read."""

    @abstractmethod
    def sample_counters(self) -> VmStatCounters | None:
        """Current memory counters, or None if they could not be read."""

    @abstractmethod
    def sample_swap(self) -> float:
        """Used swap in MB; 0.0 when unknown."""


class CommandSampler(Sampler):
    """Reads everything from command-line tools with bounded waits."""

    def __init__(self, config: MonitorConfig | None = None) -> None:
        self._config = config or MonitorConfig()

    def sample_processes(self) -> list[ProcessRecord] | None:
        output = run_query(PS_COMMAND, timeout=self._config.ps_timeout)
        if output is None:
            return None
        return parse_process_table(output, min_memory_mb=self._config.min_process_mb)

    def sample_counters(self) -> VmStatCounters | None:
        output = run_query(VM_STAT_COMMAND, timeout=self._config.vm_stat_timeout)
        if output is None:
            return None
        counters = parse_vm_stat(output, default_page_size=self._config.default_page_size)
        if counters is None:
            logger.debug("vm_stat output had no page counters")
        return counters

    def sample_swap(self) -> float:
        output = run_query(SWAP_COMMAND, timeout=self._config.swap_timeout)
        if output is None:
            return 0.0
        return parse_swap_usage(output)


class PsutilSampler(CommandSampler):
    """
    Process table from ``ps``, memory counters from psutil.

    psutil reports bytes, so the counters use a page size of one byte.
    Available memory stands in for free pages, which keeps reclaimable cache
    out of the used figure.
    """

    def sample_counters(self) -> VmStatCounters | None:
        try:
            mem = psutil.virtual_memory()
        except (OSError, RuntimeError, psutil.Error) as e:
            logger.debug("psutil.virtual_memory failed: %s", e)
            return None
        return VmStatCounters(
            page_size=1,
            free=float(mem.available),
            active=float(getattr(mem, "active", 0)),
            inactive=float(getattr(mem, "inactive", 0)),
            wired=float(getattr(mem, "wired", 0)),
        )

    def sample_swap(self) -> float:
        try:
            return psutil.swap_memory().used / 1024 / 1024
        except (OSError, RuntimeError, psutil.Error) as e:
            logger.debug("psutil.swap_memory failed: %s", e)
            return 0.0


def default_sampler(config: MonitorConfig | None = None) -> Sampler:
    """The command-line sampler on macOS, the psutil-backed one elsewhere."""
    if sys.platform == "darwin":
        return CommandSampler(config)
    return PsutilSampler(config)
