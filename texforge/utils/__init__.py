"""
Shared utilities for texforge.

Common functionality used across contexts:
- Logger setup
- Timestamps and durations
- Content hashing
- PDF inspection
"""

from texforge.utils.timestamp import elapsed_ms, format_duration, now, now_exact

__all__ = ["elapsed_ms", "format_duration", "now", "now_exact"]
