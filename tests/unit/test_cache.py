"""Unit tests for the compilation result cache."""

import time

import pytest

from texforge.contexts.compilation.cache import ResultCache
from texforge.contexts.compilation.models import (
    CompilationOptions,
    CompilationResult,
    CompilerChoice,
)

OPTIONS = CompilationOptions()


def success(job_id="job_1", artifact=b"%PDF-1.4 fake"):
    return CompilationResult(job_id=job_id, success=True, artifact_bytes=artifact)


@pytest.mark.unit
def test_put_and_get():
    """Test a stored success is returned for the same source and options."""
    cache = ResultCache()
    cache.put("source", OPTIONS, success())

    assert cache.get("source", OPTIONS).job_id == "job_1"
    assert cache.get("source", CompilationOptions(compiler=CompilerChoice.XELATEX)) is None
    assert cache.get("other", OPTIONS) is None


@pytest.mark.unit
def test_failures_are_not_stored():
    """Test failed results never enter the cache."""
    cache = ResultCache()
    cache.put("source", OPTIONS, CompilationResult(job_id="job_1", success=False))

    assert len(cache) == 0


@pytest.mark.unit
def test_lru_eviction():
    """Test the least recently used entry is evicted at capacity."""
    cache = ResultCache(max_entries=2)
    cache.put("a", OPTIONS, success("job_a"))
    cache.put("b", OPTIONS, success("job_b"))
    cache.get("a", OPTIONS)
    cache.put("c", OPTIONS, success("job_c"))

    assert cache.get("b", OPTIONS) is None
    assert cache.get("a", OPTIONS) is not None
    assert cache.get("c", OPTIONS) is not None
    assert ResultCache.key_for("a", OPTIONS) in cache


@pytest.mark.unit
def test_expired_entries_are_misses(monkeypatch):
    """Test entries older than max_age_seconds are dropped on lookup."""
    cache = ResultCache(max_age_seconds=10)
    cache.put("source", OPTIONS, success())

    real_monotonic = time.monotonic
    monkeypatch.setattr(time, "monotonic", lambda: real_monotonic() + 60)

    assert cache.get("source", OPTIONS) is None
    assert len(cache) == 0


@pytest.mark.unit
def test_invalidate_by_source():
    """Test invalidation removes every option variant of one source."""
    cache = ResultCache()
    cache.put("a", OPTIONS, success())
    cache.put("a", CompilationOptions(compiler=CompilerChoice.LUALATEX), success())
    cache.put("b", OPTIONS, success())

    assert cache.invalidate("a") == 2
    assert len(cache) == 1
    assert cache.invalidate() == 1
    assert len(cache) == 0


@pytest.mark.unit
def test_stats():
    """Test hit rate and size accounting."""
    cache = ResultCache()
    cache.put("a", OPTIONS, success(artifact=b"12345"))
    cache.get("a", OPTIONS)
    cache.get("a", OPTIONS)
    cache.get("missing", OPTIONS)

    stats = cache.stats()
    assert stats.entries == 1
    assert stats.hits == 2
    assert stats.misses == 1
    assert stats.hit_rate == pytest.approx(2 / 3)
    assert stats.total_bytes == 5

    cache.clear()
    assert cache.stats().hit_rate == 0.0
