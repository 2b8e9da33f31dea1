"""Content digests used as cache keys."""

import hashlib
from typing import Iterable


def digest_key(parts: Iterable[str]) -> str:
    """Digest an ordered sequence of strings, separated so ("ab", "c") != ("a", "bc")."""
    h = hashlib.sha256()
    for part in parts:
        h.update(part.encode("utf-8", errors="ignore"))
        h.update(b"|")
    return h.hexdigest()
