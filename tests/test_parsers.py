"""Tests for the command output parsers."""

import pytest

from memkeeper.parsers import VmStatCounters, parse_process_table, parse_swap_usage, parse_vm_stat

PS_OUTPUT = """\
  PID    RSS  %CPU USER             COMM
    1  14336   0.0 root             /sbin/launchd
  412 2099200  12.5 alice            /Applications/Google Chrome.app/Contents/Frameworks/Google Chrome Helper (Renderer)
  413  51200   0.0 alice            Google Chrome Helper
  500    512   0.0 alice            tiny
  501   1024   0.0 alice            exactly-one-mb
  502   1100   0.3 _spotlight       mds_stores
"""

VM_STAT_OUTPUT = """\
Mach Virtual Memory Statistics: (page size of 16384 bytes)
Pages free:                              100000.
Pages active:                            300000.
Pages inactive:                          250000.
Pages speculative:                         4000.
Pages throttled:                              0.
Pages wired down:                        120000.
Pages purgeable:                           9000.
"Translation faults":                 123456789.
Pages copy-on-write:                    7654321.
Pages occupied by compressor:             80000.
"""

SWAP_OUTPUT = "vm.swapusage: total = 2048.00M  used = 1234.50M  free = 813.50M  (encrypted)\n"


class TestParseProcessTable:
    """Tests for parse_process_table."""

    def test_header_is_skipped(self):
        """Test the header row produces no record."""
        records = parse_process_table(PS_OUTPUT)
        assert all(r.pid != 0 for r in records)
        assert [r.pid for r in records] == [1, 412, 413, 502]

    def test_fields(self):
        """Test values are converted to the record's units."""
        records = {r.pid: r for r in parse_process_table(PS_OUTPUT)}

        helper = records[412]
        assert helper.memory_mb == pytest.approx(2050.0)
        assert helper.cpu_percent == 12.5
        assert helper.user == "alice"
        assert helper.name.endswith("Google Chrome Helper (Renderer)")
        assert helper.display_name == "Google Chrome Helper (Renderer)"

    def test_command_with_spaces_is_kept_whole(self):
        """Test the command column may contain spaces."""
        records = {r.pid: r for r in parse_process_table(PS_OUTPUT)}
        assert records[413].name == "Google Chrome Helper"

    def test_memory_floor(self):
        """Test processes at or below 1 MB are excluded."""
        records = parse_process_table(PS_OUTPUT)
        assert all(r.memory_mb > 1 for r in records)
        assert 500 not in {r.pid for r in records}
        assert 501 not in {r.pid for r in records}

    def test_custom_floor(self):
        """Test the memory floor is configurable."""
        records = parse_process_table(PS_OUTPUT, min_memory_mb=100.0)
        assert [r.pid for r in records] == [412]

    @pytest.mark.parametrize(
        "line",
        [
            "",
            "   ",
            "123 4096 0.0 alice",
            "abc 4096 0.0 alice Foo",
            "123 lots 0.0 alice Foo",
            "123 4096 n/a alice Foo",
        ],
    )
    def test_malformed_lines_dropped(self, line):
        """Test lines without the five required fields produce nothing."""
        assert parse_process_table(line) == []

    def test_malformed_line_does_not_abort(self):
        """Test a bad line in the middle does not stop parsing."""
        text = "10 4096 0.0 alice Foo\ngarbage line here ok now\n11 8192 0.0 alice Bar\n"
        assert [r.pid for r in parse_process_table(text)] == [10, 11]

    def test_headerless_output(self):
        """Test output without a header keeps its first row."""
        records = parse_process_table("  77 20480 1.0 alice Slack\n")
        assert len(records) == 1
        assert records[0].memory_mb == pytest.approx(20.0)


class TestParseVmStat:
    """Tests for parse_vm_stat."""

    def test_counters(self):
        """Test page size and counters are read."""
        counters = parse_vm_stat(VM_STAT_OUTPUT)

        assert counters == VmStatCounters(
            page_size=16384,
            free=100000,
            active=300000,
            inactive=250000,
            wired=120000,
            compressed=80000,
        )

    def test_to_mb(self):
        """Test page counts scale by page size."""
        counters = parse_vm_stat(VM_STAT_OUTPUT)
        assert counters.to_mb(counters.free) == pytest.approx(1562.5)

    def test_default_page_size(self):
        """Test the page size falls back when the header is missing."""
        counters = parse_vm_stat("Pages free: 10.\n")
        assert counters.page_size == 16384
        assert counters.free == 10

    def test_page_size_from_header(self):
        """Test a 4 KiB page size is picked up."""
        text = "Mach Virtual Memory Statistics: (page size of 4096 bytes)\nPages free: 256.\n"
        counters = parse_vm_stat(text)
        assert counters.page_size == 4096
        assert counters.to_mb(counters.free) == pytest.approx(1.0)

    def test_unparseable_counter_is_zero(self):
        """Test a counter with a broken value reads as zero."""
        counters = parse_vm_stat("Pages free: lots\nPages active: 5.\n")
        assert counters.free == 0
        assert counters.active == 5

    def test_no_counters_is_no_data(self):
        """Test output without any page counter is treated as unavailable."""
        assert parse_vm_stat("command not found\n") is None
        assert parse_vm_stat("") is None


class TestParseSwapUsage:
    """Tests for parse_swap_usage."""

    def test_used(self):
        """Test used swap is extracted in MB."""
        assert parse_swap_usage(SWAP_OUTPUT) == pytest.approx(1234.5)

    def test_missing(self):
        """Test output without the pattern yields zero."""
        assert parse_swap_usage("vm.swapusage: unavailable") == 0.0
