"""Bounded-wait execution of the OS query commands."""

import logging
import subprocess
from collections.abc import Sequence

logger = logging.getLogger(__name__)


def run_query(args: Sequence[str], timeout: float) -> str | None:
    """
    Run a query command and return its stdout.

    The child is killed if it does not finish within ``timeout`` seconds.
    Every failure mode is reported as None so callers can keep their
    previous value for this cycle.

    Args:
        args: Command and arguments; no shell is involved.
        timeout: Wall-clock limit in seconds.

    Returns:
        Captured stdout, or None if the command could not be started,
        timed out, exited non-zero or printed nothing.
    """
    try:
        proc = subprocess.Popen(
            list(args),
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except FileNotFoundError:
        logger.warning("Query command not found: %s", args[0])
        return None
    except OSError as e:
        logger.warning("Could not start %s: %s", args[0], e)
        return None

    try:
        stdout, _ = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.communicate()
        logger.debug("%s timed out after %.1fs; child killed", args[0], timeout)
        return None

    if proc.returncode != 0:
        logger.debug("%s exited with status %d", args[0], proc.returncode)
        return None
    if not stdout.strip():
        return None
    return stdout
