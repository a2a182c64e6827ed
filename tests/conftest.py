"""Shared fixtures and test doubles for the memkeeper test suite."""

from queue import Queue

import pytest

from memkeeper.config import MonitorConfig
from memkeeper.models import PressureAlert, ProcessRecord
from memkeeper.monitor import MemoryMonitor
from memkeeper.parsers import VmStatCounters
from memkeeper.sources import Sampler

TOTAL_MB = 16384.0


def make_record(
    pid: int,
    name: str,
    memory_mb: float = 100.0,
    cpu_percent: float = 0.0,
    user: str = "alice",
) -> ProcessRecord:
    """Build a ProcessRecord with sensible defaults."""
    return ProcessRecord(pid=pid, name=name, memory_mb=memory_mb, cpu_percent=cpu_percent, user=user)


def counters_for_percent(percent: float, total_mb: float = TOTAL_MB) -> VmStatCounters:
    """Counters (1-byte pages) whose truncated used percentage is ``percent``."""
    # aim at the middle of the integer bucket so float error cannot truncate down
    free_mb = total_mb * (100 - (percent + 0.5)) / 100
    return VmStatCounters(page_size=1, free=free_mb * 1024 * 1024)


class FakeSampler(Sampler):
    """Sampler returning whatever the test assigns to its attributes."""

    def __init__(
        self,
        processes: list[ProcessRecord] | None = None,
        counters: VmStatCounters | None = None,
        swap_mb: float = 0.0,
    ) -> None:
        self.processes = processes
        self.counters = counters
        self.swap_mb = swap_mb
        self.calls = 0

    def sample_processes(self) -> list[ProcessRecord] | None:
        self.calls += 1
        return None if self.processes is None else list(self.processes)

    def sample_counters(self) -> VmStatCounters | None:
        return self.counters

    def sample_swap(self) -> float:
        return self.swap_mb


class RecordingTerminator:
    """Terminator double that remembers which pids it was asked to signal."""

    def __init__(self, deliver: bool = True) -> None:
        self.pids: list[int] = []
        self._deliver = deliver

    def __call__(self, pid: int) -> bool:
        self.pids.append(pid)
        return self._deliver


@pytest.fixture
def fast_config() -> MonitorConfig:
    """Config with all delays shortened for tests."""
    return MonitorConfig(
        refresh_interval=0.1,
        settle_delay=0.0,
        followup_delay=0.0,
        kill_refresh_delay=0.0,
    )


@pytest.fixture
def sampler() -> FakeSampler:
    """A fake sampler at 40% usage with no processes."""
    return FakeSampler(processes=[], counters=counters_for_percent(40))


@pytest.fixture
def terminator() -> RecordingTerminator:
    """A terminator that records pids instead of signalling."""
    return RecordingTerminator()


@pytest.fixture
def alert_queue() -> Queue[PressureAlert]:
    """Queue receiving pressure alerts."""
    return Queue()


@pytest.fixture
def monitor(fast_config, sampler, terminator, alert_queue):
    """A MemoryMonitor wired to the fakes; stopped after the test."""
    mon = MemoryMonitor(
        config=fast_config,
        alert_queue=alert_queue,
        sampler=sampler,
        terminator=terminator,
        total_memory_mb=TOTAL_MB,
    )
    yield mon
    mon.stop()
