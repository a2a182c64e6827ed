"""Exception types raised by memkeeper.

Transient problems (a query timing out, a process refusing to die) never
surface as exceptions; only faults the caller must act on are defined here.
"""


class MemkeeperError(Exception):
    """Base class for memkeeper errors."""


class StartupError(MemkeeperError):
    """The monitor could not be initialized (e.g. total memory unknown)."""


class ConfigError(MemkeeperError):
    """A configuration file is missing, malformed or holds invalid values."""

    def __init__(self, message: str, field_name: str | None = None) -> None:
        super().__init__(message)
        self.field_name = field_name
