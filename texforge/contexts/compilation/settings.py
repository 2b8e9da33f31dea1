"""
Runtime configuration for the compilation scheduler.

Scalar settings come from environment variables (a local .env file is loaded
first). Structured settings (compiler binaries, probe candidates, rerun
markers) come from YAML loaded through OmegaConf: the bundled
texforge/config/compilers.yaml, with an optional user file merged over it.

Examples:
    >>> settings = CompilerSettings.from_env()
    >>> settings.max_concurrent_jobs
    2

    >>> settings = CompilerSettings(max_concurrent_jobs=4, temp_root=Path("/tmp/tf"))
"""

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from omegaconf import OmegaConf

from texforge.contexts.compilation.log_parser import DEFAULT_RERUN_MARKERS
from texforge.contexts.compilation.logger import _log_warning
from texforge.contexts.compilation.models import DEFAULT_TIMEOUT_MS, CompilerChoice

load_dotenv()

BUNDLED_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "compilers.yaml"

# Probes must stay lightweight regardless of configuration
MAX_PROBE_TIMEOUT_MS = 5_000


def _default_temp_root() -> Path:
    return Path(tempfile.gettempdir()) / "texforge"


def _default_binaries() -> Dict[str, str]:
    return {choice.value: choice.value for choice in CompilerChoice}


def _default_candidates() -> Dict[str, List[str]]:
    return {choice.value: [choice.value] for choice in CompilerChoice}


@dataclass
class CompilerSettings:
    """
    Scheduler, processor and prober settings.

    Attributes:
        max_concurrent_jobs: Concurrency ceiling (jobs compiling at once)
        temp_root: Parent of the per-job working directories
        default_timeout_ms: Per-pass timeout when a job does not set one
        max_passes: Upper bound on compiler invocations per job
        keep_workdirs: Skip working directory removal (for debugging)
        cache_enabled: Serve repeated sources from the result cache
        cache_max_entries: Result cache capacity
        cache_max_age_seconds: Result cache entry lifetime
        probe_timeout_ms: Timeout for each availability probe (capped at 5s)
        terminate_grace_seconds: Wait between SIGTERM and SIGKILL
        logs_path: Parent directory for CLI session logs
        retained_outcomes: Finished outcomes kept for a late wait() (0 keeps none)
        binaries: Compiler name -> executable used for compilation
        candidates: Compiler name -> ordered probe candidates
        rerun_markers: Log substrings that trigger another pass
    """

    max_concurrent_jobs: int = 2
    temp_root: Path = field(default_factory=_default_temp_root)
    default_timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_passes: int = 3
    keep_workdirs: bool = False
    cache_enabled: bool = False
    cache_max_entries: int = 100
    cache_max_age_seconds: float = 24 * 60 * 60
    probe_timeout_ms: int = MAX_PROBE_TIMEOUT_MS
    terminate_grace_seconds: float = 2.0
    logs_path: Path = Path("outs/logs")
    retained_outcomes: int = 16
    binaries: Dict[str, str] = field(default_factory=_default_binaries)
    candidates: Dict[str, List[str]] = field(default_factory=_default_candidates)
    rerun_markers: List[str] = field(default_factory=lambda: list(DEFAULT_RERUN_MARKERS))

    def __post_init__(self) -> None:
        self.max_concurrent_jobs = max(1, int(self.max_concurrent_jobs))
        self.max_passes = max(1, int(self.max_passes))
        self.retained_outcomes = max(0, int(self.retained_outcomes))
        self.probe_timeout_ms = min(max(1, int(self.probe_timeout_ms)), MAX_PROBE_TIMEOUT_MS)
        self.temp_root = Path(self.temp_root)
        self.logs_path = Path(self.logs_path)

    def binary_for(self, compiler: CompilerChoice) -> str:
        """Executable for a compiler choice, falling back to its bare name."""
        return self.binaries.get(compiler.value) or compiler.value

    @classmethod
    def from_env(cls, config_path: Optional[Path] = None) -> "CompilerSettings":
        """
        Load settings from environment and YAML config.

        Args:
            config_path: Optional user YAML merged over the bundled config
                (defaults to TEXFORGE_CONFIG_PATH if set)

        Returns:
            CompilerSettings with sane defaults for anything unset
        """
        if config_path is None and os.getenv("TEXFORGE_CONFIG_PATH"):
            config_path = Path(os.environ["TEXFORGE_CONFIG_PATH"])
        config = load_compiler_config(config_path)

        return cls(
            max_concurrent_jobs=_env_int("TEXFORGE_MAX_CONCURRENT_JOBS", 2),
            temp_root=Path(os.getenv("TEXFORGE_TEMP_ROOT") or _default_temp_root()),
            default_timeout_ms=_env_int("TEXFORGE_DEFAULT_TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
            max_passes=_env_int("TEXFORGE_MAX_PASSES", 3),
            keep_workdirs=_env_bool("TEXFORGE_KEEP_WORKDIRS", default=False),
            cache_enabled=_env_bool("TEXFORGE_CACHE_ENABLED", default=False),
            cache_max_entries=_env_int("TEXFORGE_CACHE_MAX_ENTRIES", 100),
            cache_max_age_seconds=_env_float("TEXFORGE_CACHE_MAX_AGE_SECONDS", 24 * 60 * 60),
            probe_timeout_ms=_env_int("TEXFORGE_PROBE_TIMEOUT_MS", MAX_PROBE_TIMEOUT_MS),
            terminate_grace_seconds=_env_float("TEXFORGE_TERMINATE_GRACE_SECONDS", 2.0),
            logs_path=Path(os.getenv("TEXFORGE_LOGS_PATH", "outs/logs")),
            retained_outcomes=_env_int("TEXFORGE_RETAINED_OUTCOMES", 16),
            binaries={str(k): str(v) for k, v in config.get("binaries", {}).items()},
            candidates={
                str(k): [str(p) for p in (v or [])]
                for k, v in config.get("candidates", {}).items()
            },
            rerun_markers=[str(m) for m in config.get("rerun_markers", DEFAULT_RERUN_MARKERS)],
        )


def load_compiler_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load compilers.yaml, merging an optional user file over the bundled defaults.

    Lists in the user file replace the bundled lists rather than extending them.

    Args:
        config_path: Optional user YAML file

    Returns:
        Plain dict with "binaries", "candidates" and "rerun_markers"
    """
    config = OmegaConf.load(BUNDLED_CONFIG_PATH)
    if config_path is not None:
        config = OmegaConf.merge(config, OmegaConf.load(Path(config_path)))
    return OmegaConf.to_container(config, resolve=True)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        _log_warning(f"Ignoring {name}={value!r}: not an integer, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        _log_warning(f"Ignoring {name}={value!r}: not a number, using {default}")
        return default


def _env_bool(name: str, *, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}
