"""
Job processing: drive one compilation job from source text to result.

Steps:
    1. Prepare an isolated working directory keyed by job id
    2. Write the source to document.tex
    3. Run the compiler up to max_passes times, rerunning while the log asks for it
    4. Read document.pdf (missing PDF = failure, even after a clean exit)
    5. Parse the last pass's log into errors/warnings and assemble the result
    6. Remove the working directory in the background, whatever the outcome

Preparation and spawn failures end the job with a single fatal error. A timeout
ends the pass loop and the job fails with the partial log. Cancellation
propagates as asyncio.CancelledError after the compiler has been terminated.
"""

import asyncio
import dataclasses
import shutil
import time
from pathlib import Path
from typing import Callable, List, Optional, Set, Tuple

from texforge.contexts.compilation.cache import ResultCache
from texforge.contexts.compilation.exceptions import CompilationSetupError, ProcessSpawnError
from texforge.contexts.compilation.log_parser import LogParser
from texforge.contexts.compilation.logger import (
    _log_debug,
    _log_warning,
    log_job_start,
    log_pass_result,
)
from texforge.contexts.compilation.models import (
    ARTIFACT_FILENAME,
    SOURCE_FILENAME,
    CompilationError,
    CompilationJob,
    CompilationProgress,
    CompilationResult,
    CompilationWarning,
    ErrorKind,
    ProgressStage,
)
from texforge.contexts.compilation.process_runner import ProcessOutcome, ProcessRunner
from texforge.contexts.compilation.settings import CompilerSettings
from texforge.utils.pdf_processing import page_count
from texforge.utils.timestamp import elapsed_ms

ProgressReporter = Callable[[CompilationProgress], None]

# Progress milestones (percent)
PREPARING_PERCENT = 10
FIRST_PASS_PERCENT = 30
PER_PASS_PERCENT = 20
LAST_PASS_PERCENT_CAP = 75
PROCESSING_PERCENT = 80


class JobProcessor:
    """
    Run compilation jobs against the configured LaTeX binaries.

    Args:
        settings: Compiler settings (temp root, binaries, passes, cache)
        runner: Process runner (default: one built from settings)
        parser: Log parser (default: one using the configured rerun markers)
        cache: Result cache (default: created when settings.cache_enabled)
    """

    def __init__(
        self,
        settings: CompilerSettings,
        runner: Optional[ProcessRunner] = None,
        parser: Optional[LogParser] = None,
        cache: Optional[ResultCache] = None,
    ):
        self.settings = settings
        self.runner = runner or ProcessRunner(settings.terminate_grace_seconds)
        self.parser = parser or LogParser(settings.rerun_markers)
        if cache is None and settings.cache_enabled:
            cache = ResultCache(settings.cache_max_entries, settings.cache_max_age_seconds)
        self.cache = cache
        self._cleanups: Set[asyncio.Task] = set()

    def working_dir_for(self, job: CompilationJob) -> Path:
        return self.settings.temp_root / job.id

    def build_args(self, job: CompilationJob, working_dir: Path, source_path: Path) -> List[str]:
        """Compiler command line (without the executable)."""
        args = [
            "-interaction=nonstopmode",
            "-file-line-error",
            f"-output-directory={working_dir}",
        ]
        if job.options.enable_sync_map:
            args.append("-synctex=1")
        if job.options.allow_shell_escape:
            args.append("-shell-escape")
        args.append(str(source_path))
        return args

    async def process(
        self, job: CompilationJob, report: Optional[ProgressReporter] = None
    ) -> CompilationResult:
        """
        Compile one job.

        Args:
            job: The job to run
            report: Receives the non-terminal progress milestones

        Returns:
            CompilationResult (never raises for compile, setup or spawn failures)

        Raises:
            asyncio.CancelledError: If the job is cancelled while running
        """
        start = time.monotonic()
        report = report or _ignore_progress

        cached = await self._from_cache(job, start)
        if cached is not None:
            return cached

        report(
            CompilationProgress(
                job.id,
                ProgressStage.PREPARING,
                PREPARING_PERCENT,
                "Preparing compilation environment",
            )
        )
        working_dir = self.working_dir_for(job)
        try:
            try:
                source_path = await asyncio.to_thread(_prepare_workdir, job, working_dir)
            except CompilationSetupError as error:
                _log_warning(f"{job.id}: {error.message} ({error.path})")
                return _fatal_result(job, str(error), start)

            log_job_start(job, working_dir, self.settings.max_passes)

            try:
                outcome, passes = await self._run_passes(job, working_dir, source_path, report)
            except ProcessSpawnError as error:
                _log_warning(f"{job.id}: {error.message}")
                return _fatal_result(job, error.message, start, passes=1)

            report(
                CompilationProgress(
                    job.id, ProgressStage.PROCESSING, PROCESSING_PERCENT, "Processing output"
                )
            )
            return await self._assemble(job, outcome, passes, working_dir, start)
        finally:
            self._schedule_cleanup(working_dir)

    async def _run_passes(
        self,
        job: CompilationJob,
        working_dir: Path,
        source_path: Path,
        report: ProgressReporter,
    ) -> Tuple[ProcessOutcome, int]:
        max_passes = self.settings.max_passes
        binary = self.settings.binary_for(job.options.compiler)
        args = self.build_args(job, working_dir, source_path)

        pass_number = 0
        outcome = None
        for pass_index in range(max_passes):
            pass_number = pass_index + 1
            percent = min(FIRST_PASS_PERCENT + pass_index * PER_PASS_PERCENT, LAST_PASS_PERCENT_CAP)
            report(
                CompilationProgress(
                    job.id,
                    ProgressStage.COMPILING,
                    percent,
                    f"Compilation pass {pass_number}/{max_passes} "
                    f"with {job.options.compiler.value}",
                )
            )

            outcome = await self.runner.run(
                binary, args, cwd=working_dir, timeout_ms=job.options.timeout_ms
            )
            log_pass_result(job.id, pass_number, max_passes, outcome)

            # Timeouts are terminal, never retried
            if outcome.timed_out:
                break
            if pass_number < max_passes and self.parser.needs_another_pass(outcome.combined_output):
                _log_debug(f"{job.id}: log requests another pass")
                continue
            break

        return outcome, pass_number

    async def _assemble(
        self,
        job: CompilationJob,
        outcome: ProcessOutcome,
        passes: int,
        working_dir: Path,
        start: float,
    ) -> CompilationResult:
        log = outcome.combined_output
        parsed = self.parser.parse(log)
        errors = list(parsed.errors)
        warnings = list(parsed.warnings)

        if outcome.timed_out:
            timeout_message = f"Compilation timed out after {job.options.timeout_ms}ms"
            log = f"{log}\n{timeout_message}"
            errors.append(CompilationError(message=timeout_message, kind=ErrorKind.FATAL))

        artifact_bytes = await asyncio.to_thread(_read_artifact, working_dir / ARTIFACT_FILENAME)
        if artifact_bytes is None and not errors:
            errors.append(
                CompilationError(message="PDF file was not generated", kind=ErrorKind.FATAL)
            )

        success = outcome.exit_clean and artifact_bytes is not None
        if not success:
            if not errors:
                errors.append(
                    CompilationError(
                        message=f"Compiler exited with code {outcome.exit_code}",
                        kind=ErrorKind.FATAL,
                    )
                )
            return CompilationResult(
                job_id=job.id,
                success=False,
                log=log,
                errors=errors,
                warnings=warnings,
                duration_ms=elapsed_ms(start),
                passes=passes,
            )

        artifact_path = None
        if job.options.output_dir is not None:
            artifact_path = await self._persist_artifact(job, artifact_bytes)
            if artifact_path is None:
                warnings.append(
                    CompilationWarning(
                        message=f"Could not copy PDF to {job.options.output_dir}"
                    )
                )

        result = CompilationResult(
            job_id=job.id,
            success=True,
            log=log,
            errors=errors,
            warnings=warnings,
            duration_ms=elapsed_ms(start),
            artifact_bytes=artifact_bytes,
            artifact_path=artifact_path,
            passes=passes,
            page_count=await asyncio.to_thread(page_count, artifact_bytes),
        )
        if self.cache is not None:
            self.cache.put(job.source, job.options, result)
        return result

    async def _from_cache(self, job: CompilationJob, start: float) -> Optional[CompilationResult]:
        if self.cache is None:
            return None
        cached = self.cache.get(job.source, job.options)
        if cached is None:
            return None

        _log_debug(f"{job.id}: served from cache (originally {cached.job_id})")
        artifact_path = None
        if job.options.output_dir is not None:
            artifact_path = await self._persist_artifact(job, cached.artifact_bytes)
        return dataclasses.replace(
            cached,
            job_id=job.id,
            duration_ms=elapsed_ms(start),
            artifact_path=artifact_path,
            from_cache=True,
        )

    async def _persist_artifact(self, job: CompilationJob, data: bytes) -> Optional[Path]:
        target = Path(job.options.output_dir) / f"{job.id}.pdf"
        try:
            await asyncio.to_thread(_write_bytes, target, data)
        except OSError as error:
            _log_warning(f"{job.id}: failed to copy PDF to {target}: {error}")
            return None
        return target

    def _schedule_cleanup(self, working_dir: Path) -> None:
        if self.settings.keep_workdirs:
            _log_debug(f"Keeping working directory {working_dir}")
            return
        task = asyncio.get_running_loop().create_task(
            asyncio.to_thread(_remove_workdir, working_dir)
        )
        self._cleanups.add(task)
        task.add_done_callback(self._cleanups.discard)

    async def drain(self) -> None:
        """Wait for scheduled working directory removals to finish."""
        while self._cleanups:
            await asyncio.gather(*list(self._cleanups), return_exceptions=True)


def _ignore_progress(progress: CompilationProgress) -> None:
    pass


def _fatal_result(
    job: CompilationJob, message: str, start: float, passes: int = 0
) -> CompilationResult:
    return CompilationResult(
        job_id=job.id,
        success=False,
        log=message,
        errors=[CompilationError(message=message, kind=ErrorKind.FATAL)],
        duration_ms=elapsed_ms(start),
        passes=passes,
    )


def _prepare_workdir(job: CompilationJob, working_dir: Path) -> Path:
    try:
        working_dir.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        raise CompilationSetupError(
            "Failed to create working directory",
            job_id=job.id,
            path=working_dir,
            original_error=error,
        ) from error

    source_path = working_dir / SOURCE_FILENAME
    try:
        source_path.write_text(job.source, encoding="utf-8")
    except OSError as error:
        raise CompilationSetupError(
            "Failed to write source file",
            job_id=job.id,
            path=source_path,
            original_error=error,
        ) from error
    return source_path


def _read_artifact(path: Path) -> Optional[bytes]:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as error:
        _log_warning(f"Failed to read {path}: {error}")
        return None


def _write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def _remove_workdir(working_dir: Path) -> None:
    try:
        shutil.rmtree(working_dir)
    except FileNotFoundError:
        return
    except OSError as error:
        # Not part of the job's outcome
        _log_warning(f"Failed to remove working directory {working_dir}: {error}")
