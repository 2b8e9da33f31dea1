"""Timestamp and duration helpers."""

import time
from datetime import datetime


def now() -> str:
    """Compact local timestamp for directory names, e.g. '20261019_142501'."""
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def now_exact() -> str:
    """ISO 8601 timestamp with microseconds."""
    return datetime.now().isoformat()


def epoch_ms() -> int:
    """Wall-clock milliseconds since the epoch (used in job ids)."""
    return int(time.time() * 1000)


def elapsed_ms(start_monotonic: float) -> int:
    """Milliseconds elapsed since a time.monotonic() reading."""
    return int((time.monotonic() - start_monotonic) * 1000)


def format_duration(duration_ms: int) -> str:
    """
    Format a duration for log and CLI output.

    Examples:
        format_duration(850)     # "850ms"
        format_duration(12_340)  # "12.34s"
        format_duration(95_000)  # "1m 35s"
    """
    if duration_ms < 1000:
        return f"{duration_ms}ms"
    seconds = duration_ms / 1000
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, rem = divmod(int(seconds), 60)
    return f"{minutes}m {rem}s"
