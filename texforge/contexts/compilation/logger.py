"""
Compilation context logger.

Provides logging interface for the compilation context with automatic [compile] prefix.
All compilation modules should import from this module, not from utils.logger directly.
"""

from pathlib import Path
from typing import Dict, Optional

from loguru import logger

from texforge.utils.logger import setup_logger as _setup_logger
from texforge.utils.timestamp import format_duration

CONTEXT_PREFIX = "[compile]"


def setup_compilation_logger(
    log_dir: Path,
    extra_provenance: Optional[Dict[str, object]] = None,
    verbose: bool = False,
) -> Path:
    """
    Setup logger for the compilation context.

    Configures loguru with provenance tracking and compilation-specific context.

    Args:
        log_dir: Directory for this compilation session
        extra_provenance: Settings worth recording in the log header
        verbose: Show DEBUG messages on the console as well

    Returns:
        Path to log file

    Example:
        from texforge.contexts.compilation.logger import setup_compilation_logger

        log_file = setup_compilation_logger(log_dir)
    """
    return _setup_logger(
        context_name="compile",
        log_dir=log_dir,
        extra_provenance=extra_provenance,
        console_level="DEBUG" if verbose else "INFO",
    )


# Wrapper functions with automatic [compile] prefix


def _log_info(message: str) -> None:
    """Log info message with [compile] prefix."""
    logger.info(f"{CONTEXT_PREFIX} {message}")


def _log_success(message: str) -> None:
    """Log success message with [compile] prefix."""
    logger.success(f"{CONTEXT_PREFIX} {message}")


def _log_error(message: str) -> None:
    """Log error message with [compile] prefix."""
    logger.error(f"{CONTEXT_PREFIX} {message}")


def _log_warning(message: str) -> None:
    """Log warning message with [compile] prefix."""
    logger.warning(f"{CONTEXT_PREFIX} {message}")


def _log_debug(message: str) -> None:
    """Log debug message with [compile] prefix."""
    logger.debug(f"{CONTEXT_PREFIX} {message}")


# High-level compilation-specific logging helpers


def log_job_submitted(job) -> None:
    """Log acceptance of a job into the queue."""
    _log_info(f"Queued {job.id} (priority {job.priority}, {job.options.compiler.value})")
    _log_debug(f"  Source length: {len(job.source)} characters")
    preview = job.source[:300] + ("..." if len(job.source) > 300 else "")
    _log_debug(f"  Source preview: {preview!r}")


def log_job_start(job, working_dir: Path, max_passes: int) -> None:
    """Log start of job processing with context."""
    _log_info(f"Starting {job.id}")
    _log_debug(f"  Working directory: {working_dir}")
    _log_debug(f"  Options: {job.options}")
    _log_debug(f"  Max passes: {max_passes}")


def log_pass_result(job_id: str, pass_number: int, max_passes: int, outcome) -> None:
    """Log the outcome of a single compiler invocation."""
    if outcome.timed_out:
        _log_warning(f"{job_id}: pass {pass_number}/{max_passes} timed out")
        return
    _log_debug(
        f"{job_id}: pass {pass_number}/{max_passes} exited {outcome.exit_code} "
        f"({format_duration(outcome.duration_ms)}, "
        f"{len(outcome.stdout)} stdout / {len(outcome.stderr)} stderr chars)"
    )


def log_job_result(result, verbose: bool = False) -> None:
    """
    Log job result with diagnostics.

    Args:
        result: CompilationResult from the job processor
        verbose: Show more warnings/errors (default: False)
    """
    elapsed = format_duration(result.duration_ms)
    if result.success:
        origin = " (cached)" if result.from_cache else ""
        _log_success(
            f"{result.job_id}: compiled{origin} in {result.passes} pass(es), "
            f"{len(result.warnings)} warnings ({elapsed})"
        )
    else:
        _log_error(f"{result.job_id}: compilation failed, {len(result.errors)} errors ({elapsed})")
        error_limit = 10 if verbose else 5
        for i, err in enumerate(result.errors[:error_limit], 1):
            _log_error(f"  Error {i}: {err}")
        if len(result.errors) > error_limit:
            _log_error(f"  ... and {len(result.errors) - error_limit} more errors")

    # Warnings can be verbose, keep them at debug level
    if result.warnings:
        warning_limit = 10 if verbose else 3
        for i, warn in enumerate(result.warnings[:warning_limit], 1):
            _log_debug(f"  Warning {i}: {warn}")
        if len(result.warnings) > warning_limit:
            _log_debug(f"  ... and {len(result.warnings) - warning_limit} more warnings")

    # Raw output bypasses the format template so multi-line logs stay readable
    if (verbose or not result.success) and result.log:
        logger.opt(raw=True).debug(
            f"\n{'=' * 80}\nCOMPILER OUTPUT ({result.job_id}):\n{'=' * 80}\n{result.log}\n"
        )


def log_job_cancelled(job_id: str, was_running: bool) -> None:
    state = "running" if was_running else "queued"
    _log_warning(f"Cancelled {state} job {job_id}")


def log_probe_result(report) -> None:
    """Log the availability report from the compiler prober."""
    if report.available:
        version = f" (version {report.version})" if report.version else ""
        _log_info(f"Available compilers: {', '.join(report.compilers)}{version}")
        for name, path in report.paths.items():
            _log_debug(f"  {name}: {path}")
    else:
        _log_error("No LaTeX compiler available. Install TeX Live, MiKTeX, or MacTeX.")
