"""memkeeper - Main Textual application."""

import argparse
import logging
import sys
from pathlib import Path
from queue import Empty, Queue

from textual import work
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.logging import TextualHandler
from textual.widgets import DataTable, Footer, Sparkline, Static

from memkeeper.config import MonitorConfig, load_config
from memkeeper.exceptions import MemkeeperError
from memkeeper.models import (
    AlertLevel,
    CleanupStatus,
    MemoryTrend,
    MonitorState,
    PressureAlert,
    PressureLevel,
    ProcessGroup,
    Recommendation,
    format_mb,
)
from memkeeper.monitor import MemoryMonitor

logger = logging.getLogger(__name__)

PRESSURE_COLORS = {
    PressureLevel.NORMAL: "green",
    PressureLevel.MODERATE: "yellow",
    PressureLevel.HIGH: "dark_orange",
    PressureLevel.CRITICAL: "red",
}


class MemoryHeader(Static):
    """Header widget showing memory usage, pressure and history."""

    DEFAULT_CSS = """
    MemoryHeader {
        height: auto;
        min-height: 6;
        padding: 1;
        background: $surface;
    }

    MemoryHeader Sparkline {
        height: 2;
    }
    """

    def compose(self) -> ComposeResult:
        """Compose the header layout."""
        yield Horizontal(
            Static("Loading memory info...", id="mem-info"),
            Static("", id="pressure-info"),
        )
        yield Sparkline([], id="history")

    def update_state(self, state: MonitorState, trend: MemoryTrend) -> None:
        """Update the header from a published monitor state."""
        stats = state.stats
        if stats is None:
            return
        color = PRESSURE_COLORS[stats.pressure_level]

        bar_len = min(stats.used_percent // 5, 20)
        bar = f"[{color}]█[/{color}]" * bar_len + "[dim]░[/dim]" * (20 - bar_len)
        mem_text = (
            f"Mem\\[{bar}] {stats.used_percent:3d}%  "
            f"{format_mb(stats.used_mb)}/{format_mb(stats.total_mb)}\n"
            f"Wired {format_mb(stats.wired_mb)}  Compressed {format_mb(stats.compressed_mb)}  "
            f"Swap {format_mb(stats.swap_used_mb)}"
        )
        trend_text = {
            MemoryTrend.INCREASING: "Rising",
            MemoryTrend.DECREASING: "Falling",
            MemoryTrend.STABLE: "Stable",
        }[trend]
        pressure_text = (
            f"[b {color}]{stats.pressure_level.value}[/b {color}]  {trend_text}\n"
            f"{stats.pressure_description}"
        )

        try:
            self.query_one("#mem-info", Static).update(mem_text)
            self.query_one("#pressure-info", Static).update(pressure_text)
            self.query_one("#history", Sparkline).data = list(state.history)
        except Exception:
            pass  # Widget not mounted yet


class GroupTable(Container):
    """Container for the table of application families."""

    DEFAULT_CSS = """
    GroupTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize GroupTable."""
        super().__init__(*args, **kwargs)
        self._keys: list[str] = []

    @property
    def keys(self) -> list[str]:
        """Family keys in display order."""
        return list(self._keys)

    @property
    def selected_key(self) -> str | None:
        """Family key under the cursor."""
        table = self.query_one("#group-table", DataTable)
        row = table.cursor_row
        if 0 <= row < len(self._keys):
            return self._keys[row]
        return None

    def compose(self) -> ComposeResult:
        """Compose the group table."""
        yield DataTable(id="group-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#group-table", DataTable)
        table.cursor_type = "row"

        table.add_column("Family", key="family", width=28)
        table.add_column("Procs", key="count", width=6)
        table.add_column("Memory", key="memory", width=10)
        table.add_column("CPU%", key="cpu", width=7)
        table.add_column("", key="trend", width=2)
        table.add_column("Largest", key="largest")

    def update_groups(self, groups: tuple[ProcessGroup, ...], trends: dict[str, MemoryTrend]) -> None:
        """Replace the table contents, keeping the cursor on the same row index."""
        table = self.query_one("#group-table", DataTable)
        cursor = table.cursor_row
        table.clear()
        self._keys = []
        for group in groups:
            trend = trends.get(group.key, MemoryTrend.STABLE)
            table.add_row(
                group.name[:28],
                str(group.process_count),
                format_mb(group.total_memory_mb),
                f"{group.total_cpu:5.1f}",
                trend.arrow,
                group.processes[0].display_name[:40],
                key=group.key,
            )
            self._keys.append(group.key)
        if self._keys:
            table.move_cursor(row=min(max(cursor, 0), len(self._keys) - 1))


class MemkeeperApp(App):
    """Main memkeeper application."""

    TITLE = "memkeeper"
    SUB_TITLE = "Memory Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header {
        dock: top;
        height: auto;
    }

    Horizontal {
        height: auto;
    }

    #mem-info {
        width: 1fr;
        padding-right: 2;
    }

    #pressure-info {
        width: 1fr;
        padding-left: 2;
    }

    #recommendations {
        height: auto;
        color: $warning;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
        ("s", "smart_cleanup", "Smart cleanup"),
        ("p", "purge_selected", "Purge family"),
        ("t", "trim_helpers", "Trim Chrome"),
        ("w", "clean_workers", "Idle workers"),
        ("a", "apply_recommendation", "Apply tip"),
    ]

    def __init__(
        self,
        config: MonitorConfig | None = None,
        monitor: MemoryMonitor | None = None,
        alert_queue: Queue[PressureAlert] | None = None,
    ) -> None:
        """
        Initialize the MemkeeperApp.

        Args:
            config: Monitor configuration, used when no monitor is given.
            monitor: A ready monitor; one is created when omitted.
            alert_queue: Queue the monitor pushes alerts to.
        """
        super().__init__()
        self._alert_queue: Queue[PressureAlert] = alert_queue if alert_queue is not None else Queue()
        self._monitor = monitor or MemoryMonitor(config, alert_queue=self._alert_queue)
        self._shown_state: MonitorState | None = None

    @property
    def monitor(self) -> MemoryMonitor:
        """The monitor feeding this app."""
        return self._monitor

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield MemoryHeader(id="header")
        yield Static("", id="recommendations")
        yield GroupTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the monitor when the app is mounted."""
        self._monitor.start()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Render a newly published state and deliver pending alerts."""
        state = self._monitor.state
        # Every publish swaps in a new object, including the saved-memory update
        if state.last_refresh is not None and state is not self._shown_state:
            self._shown_state = state
            self._update_ui(state)

        while True:
            try:
                alert = self._alert_queue.get_nowait()
            except Empty:
                break
            self.deliver_alert(alert)

    def deliver_alert(self, alert: PressureAlert) -> None:
        """Show a pressure alert as a toast."""
        severity = "error" if alert.level is AlertLevel.CRITICAL else "warning"
        self.notify(alert.body, title=alert.title, severity=severity, timeout=10)

    def _update_ui(self, state: MonitorState) -> None:
        """Update the widgets from a published state."""
        try:
            self.query_one("#header", MemoryHeader).update_state(state, state.pressure_trend)
            self.query_one(GroupTable).update_groups(state.groups, state.trends)
            self.query_one("#recommendations", Static).update(
                format_recommendations(self._monitor.recommendations(), state.last_cleanup_saved_mb)
            )
        except Exception:
            logger.exception("Failed to render monitor state")

    def action_refresh(self) -> None:
        """Refresh now."""
        self._refresh_in_background()

    @work(thread=True, exclusive=True, group="refresh")
    def _refresh_in_background(self) -> None:
        self._monitor.refresh()

    def action_smart_cleanup(self) -> None:
        """Start a smart cleanup unless one is already running."""
        if self._monitor.cleanup_status is CleanupStatus.RUNNING:
            self.notify("Smart cleanup already running")
            return
        self.notify("Smart cleanup started")
        self._run_smart_cleanup()

    @work(group="cleanup")
    async def _run_smart_cleanup(self) -> None:
        result = await self._monitor.smart_cleanup()
        self.notify(
            f"Closed {result.killed_count} processes, freed {format_mb(result.freed_mb)}, "
            f"kept {result.skipped_active} active",
            title="Smart cleanup",
        )

    def action_purge_selected(self) -> None:
        """Purge the selected family, keeping its largest process."""
        key = self.query_one(GroupTable).selected_key
        if key is None:
            return
        killed = self._monitor.purge_family(key, keep_top=1)
        self.notify(f"Closed {killed} {key} processes")

    def action_trim_helpers(self) -> None:
        """Trim Chrome helpers."""
        killed = self._monitor.trim_helpers("Chrome")
        self.notify(f"Closed {killed} Chrome helpers")

    def action_clean_workers(self) -> None:
        """Clean idle Claude workers."""
        killed = self._monitor.cleanup_idle_workers()
        self.notify(f"Cleaned {killed} Claude processes")

    def action_apply_recommendation(self) -> None:
        """Run the first recommendation that has an action."""
        for recommendation in self._monitor.recommendations():
            if recommendation.action is not None:
                killed = self._monitor.apply_recommendation(recommendation)
                self.notify(f"Closed {killed} processes", title=recommendation.title)
                return
        self.notify("Nothing to clean up")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self.exit()


def format_recommendations(recommendations: list[Recommendation], saved_mb: float = 0.0) -> str:
    """One line per recommendation, after the result of the last targeted cleanup."""
    lines = [f"💡 {r.title}: {r.description}" for r in recommendations]
    if saved_mb > 0:
        lines.insert(0, f"✓ Last cleanup freed {format_mb(saved_mb)}")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    """Command-line options for the memkeeper entry point."""
    parser = argparse.ArgumentParser(prog="memkeeper", description="Terminal memory monitor")
    parser.add_argument("--config", type=Path, help="TOML file with a [monitor] table")
    parser.add_argument("--interval", type=float, help="seconds between refreshes")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="logging level (default: WARNING)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Entry point for the memkeeper application."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level, handlers=[TextualHandler()])

    try:
        config = load_config(args.config) if args.config else MonitorConfig()
        app = MemkeeperApp(config=config)
    except MemkeeperError as e:
        print(f"memkeeper: {e}", file=sys.stderr)
        sys.exit(1)

    if args.interval is not None:
        app.monitor.refresh_interval = args.interval
    app.run()


if __name__ == "__main__":
    main()
