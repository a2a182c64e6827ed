"""Tests for the cleanup policies."""

import os
import random

import psutil
import pytest

from conftest import make_record
from memkeeper.aggregator import group_processes
from memkeeper.cleanup import (
    plan_smart_cleanup,
    recommend,
    select_all_workers,
    select_family_purge,
    select_idle_workers,
    terminate_all,
    terminate_process,
)
from memkeeper.config import MonitorConfig
from memkeeper.models import FamilyTotals, MemoryStats, MonitorState, RecommendedAction
from memkeeper.parsers import parse_process_table


@pytest.fixture
def config():
    """Default configuration."""
    return MonitorConfig()


class TestFamilyPurge:
    """Tests for family purge and helper trim selection."""

    def test_chrome_helper_scenario(self):
        """Test keeping the top helper terminates only the smaller one."""
        text = (
            "  PID    RSS  %CPU USER   COMM\n"
            "  901 2099200  0.0 alice  Google Chrome Helper\n"
            "  902  51200  0.0 alice  Google Chrome Helper\n"
        )
        group = group_processes(parse_process_table(text))[0]
        targets = select_family_purge(group, keep_top=1)

        assert [r.pid for r in targets] == [902]
        assert terminate_all(targets, terminator=lambda pid: True) == 1

    def test_keep_zero_takes_all(self):
        """Test keep_top=0 selects every member."""
        group = group_processes([make_record(1, "Docker", 10.0), make_record(2, "docker-proxy", 20.0)])[0]
        assert {r.pid for r in select_family_purge(group, keep_top=0)} == {1, 2}

    def test_no_activity_check(self):
        """Test busy members are still purged."""
        group = group_processes(
            [make_record(1, "Docker", 500.0), make_record(2, "docker-proxy", 20.0, cpu_percent=90.0)]
        )[0]
        assert [r.pid for r in select_family_purge(group, keep_top=1)] == [2]

    def test_keep_more_than_members(self):
        """Test a large keep count selects nothing."""
        group = group_processes([make_record(1, "Docker", 10.0)])[0]
        assert select_family_purge(group, keep_top=5) == []


class TestWorkerCleanup:
    """Tests for the idle worker and all-worker policies."""

    def test_idle_workers(self):
        """Test only small idle workers are selected."""
        records = [
            make_record(1, "claude", 400.0, 0.0),  # too large
            make_record(2, "claude", 60.0, 0.2),  # small and idle
            make_record(3, "claude", 60.0, 5.0),  # busy
            make_record(4, "node claude/cli.js", 40.0, 0.0),  # entry point
            make_record(5, "claude", 60.0, 0.7),  # not busy, not idle either
            make_record(6, "Slack", 10.0, 0.0),  # other family
        ]
        assert [r.pid for r in select_idle_workers(records)] == [2]

    def test_all_workers_keeps_main_sessions(self):
        """Test the first three large sessions survive."""
        records = [
            make_record(1, "claude", 500.0),
            make_record(2, "claude", 400.0),
            make_record(3, "claude", 300.0),
            make_record(4, "claude", 200.0),
            make_record(5, "claude", 100.0),
            make_record(6, "Safari", 900.0),
        ]
        assert [r.pid for r in select_all_workers(records)] == [4, 5]


class TestSmartCleanup:
    """Tests for plan_smart_cleanup()."""

    def test_keeps_main_process(self, config):
        """Test the largest member of every group is spared."""
        groups = group_processes([make_record(1, "Slack", 400.0), make_record(2, "Slack Helper", 300.0)])
        plan = plan_smart_cleanup(groups, config)
        assert [r.pid for r in plan.targets] == [2]

    def test_skips_active(self, config):
        """Test processes using CPU are spared and counted."""
        groups = group_processes(
            [
                make_record(1, "Slack", 400.0),
                make_record(2, "Slack Helper", 300.0, cpu_percent=0.2),
                make_record(3, "Slack Helper", 200.0, cpu_percent=0.1),
            ]
        )
        plan = plan_smart_cleanup(groups, config)
        assert [r.pid for r in plan.targets] == [3]
        assert plan.skipped_active == 1

    def test_skips_small(self, config):
        """Test processes under 50 MB are not worth terminating."""
        groups = group_processes([make_record(1, "Slack", 400.0), make_record(2, "Slack Helper", 49.0)])
        assert plan_smart_cleanup(groups, config).targets == ()

    def test_browser_keeps_first_five(self, config):
        """Test tab-heavy families keep their five largest members."""
        records = [make_record(i, "Google Chrome Helper", 1000.0 - i) for i in range(1, 9)]
        plan = plan_smart_cleanup(group_processes(records), config)
        assert [r.pid for r in plan.targets] == [6, 7, 8]

    def test_skips_system_and_protected(self, config):
        """Test system users and protected apps are never selected."""
        records = [
            make_record(1, "Finder", 400.0),
            make_record(2, "Finder", 300.0),
            make_record(3, "mds_stores", 500.0, user="_spotlight"),
            make_record(4, "mds_stores", 400.0, user="root"),
            make_record(5, "mds_stores", 300.0, user="_spotlight"),
        ]
        assert plan_smart_cleanup(group_processes(records), config).targets == ()

    def test_never_targets_busy_or_primary(self, config):
        """Test, over random process sets, that no busy or primary process is chosen."""
        rng = random.Random(1234)
        names = ["Slack", "Slack Helper", "Google Chrome Helper", "claude", "Code Helper", "Docker"]
        for _ in range(50):
            records = [
                make_record(
                    pid,
                    rng.choice(names),
                    memory_mb=rng.uniform(1.5, 800.0),
                    cpu_percent=rng.choice([0.0, 0.05, 0.1, 0.11, 3.0]),
                )
                for pid in range(1, 40)
            ]
            groups = group_processes(records)
            plan = plan_smart_cleanup(groups, config)
            primary = {g.processes[0].pid for g in groups}

            for record in plan.targets:
                assert record.cpu_percent <= 0.1
                assert record.pid not in primary
                assert record.memory_mb >= 50.0

    def test_never_targets_self(self, config):
        """Test the monitor's own process is never selected."""
        records = [
            make_record(1, "python3", 900.0),
            make_record(os.getpid(), "python3", 500.0),
        ]
        assert plan_smart_cleanup(group_processes(records), config).targets == ()


class TestTerminateProcess:
    """Tests for the termination primitive."""

    def test_missing_process(self):
        """Test an unknown pid is absorbed."""
        pid = 2**22 + 12345
        while psutil.pid_exists(pid):
            pid += 1
        assert terminate_process(pid) is False

    def test_refuses_self_and_invalid(self):
        """Test the caller's own pid and non-positive pids are not signalled."""
        assert terminate_process(os.getpid()) is False
        assert terminate_process(0) is False
        assert terminate_process(-1) is False

    def test_terminate_all_counts_requests(self):
        """Test undelivered requests still count as issued."""
        records = [make_record(1, "a"), make_record(2, "b")]
        assert terminate_all(records, terminator=lambda pid: False) == 2


class TestRecommendations:
    """Tests for recommend()."""

    def _state(self, percent: float, claude: int = 0, chrome: int = 0, swap: float = 0.0):
        stats = MemoryStats(
            total_mb=1000.0, used_mb=percent * 10, free_mb=1000.0 - percent * 10, swap_used_mb=swap
        )
        tracked = {
            "Claude": FamilyTotals(count=claude, memory_mb=claude * 50.0),
            "Chrome": FamilyTotals(count=chrome, memory_mb=chrome * 100.0),
        }
        return MonitorState(stats=stats, tracked=tracked)

    def test_quiet_when_not_under_pressure(self, config):
        """Test no recommendations at or below 70% used."""
        assert recommend(self._state(70, claude=20, chrome=20, swap=5000), config) == []

    def test_all_recommendations(self, config):
        """Test each recommendation fires above its threshold."""
        recs = recommend(self._state(80, claude=6, chrome=9, swap=2500), config)
        assert [r.title for r in recs] == [
            "Clean Claude Processes",
            "Trim Chrome Helpers",
            "High Swap Usage",
        ]
        assert recs[0].action is RecommendedAction.CLEAN_IDLE_WORKERS
        assert recs[1].action is RecommendedAction.TRIM_HELPERS
        assert recs[2].action is None
        assert recs[1].description == "9 helpers using 900 MB"

    def test_counts_at_threshold(self, config):
        """Test counts equal to the threshold do not recommend."""
        assert recommend(self._state(80, claude=5, chrome=8), config) == []

    def test_no_stats(self, config):
        """Test the initial state recommends nothing."""
        assert recommend(MonitorState(), config) == []
