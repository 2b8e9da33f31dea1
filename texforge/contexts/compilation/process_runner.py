"""
Single compiler invocation with timeout and cancellation.

The runner spawns exactly one child process, pumps its stdout/stderr into
accumulators while it runs, and terminates it when the timeout fires or when
the awaiting task is cancelled.
"""

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from texforge.contexts.compilation.exceptions import ProcessSpawnError
from texforge.contexts.compilation.logger import _log_debug, _log_warning
from texforge.utils.timestamp import elapsed_ms

READ_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class ProcessOutcome:
    """
    Result of one child process run.

    Attributes:
        exit_code: Process return code (negative signal number if killed)
        stdout: Decoded standard output collected so far
        stderr: Decoded standard error collected so far
        timed_out: The process was terminated because it exceeded its timeout
        duration_ms: Wall-clock runtime
    """

    exit_code: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_ms: int = 0

    @property
    def exit_clean(self) -> bool:
        """Exit code 0 without a timeout. Necessary, not sufficient, for success."""
        return self.exit_code == 0 and not self.timed_out

    @property
    def combined_output(self) -> str:
        return f"{self.stdout}\n{self.stderr}"


class ProcessRunner:
    """Spawn compiler processes with a hard timeout and SIGTERM-then-SIGKILL shutdown."""

    def __init__(self, terminate_grace_seconds: float = 2.0):
        self.terminate_grace_seconds = terminate_grace_seconds

    async def run(
        self,
        binary: str,
        args: Sequence[str],
        cwd: Optional[Path] = None,
        timeout_ms: int = 30_000,
    ) -> ProcessOutcome:
        """
        Run one child process to completion, timeout, or cancellation.

        Args:
            binary: Executable path or name (resolved through PATH)
            args: Arguments after the executable
            cwd: Working directory for the child
            timeout_ms: Wall-clock limit before the child is terminated

        Returns:
            ProcessOutcome with exit code, collected output and timeout flag

        Raises:
            ProcessSpawnError: If the executable is missing or cannot be started
            asyncio.CancelledError: If the awaiting task is cancelled (the child
                is terminated before the error propagates)
        """
        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                binary,
                *args,
                cwd=str(cwd) if cwd is not None else None,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as error:
            raise ProcessSpawnError(binary, error) from error

        _log_debug(f"Spawned pid {process.pid}: {binary} {' '.join(args)}")

        stdout_chunks: List[bytes] = []
        stderr_chunks: List[bytes] = []
        pumps = [
            asyncio.create_task(_pump(process.stdout, stdout_chunks)),
            asyncio.create_task(_pump(process.stderr, stderr_chunks)),
        ]

        timed_out = False
        try:
            try:
                await asyncio.wait_for(process.wait(), timeout=timeout_ms / 1000)
            except asyncio.TimeoutError:
                timed_out = True
                _log_warning(f"pid {process.pid} exceeded {timeout_ms}ms, terminating")
                await asyncio.shield(self._terminate(process))
            except asyncio.CancelledError:
                _log_debug(f"pid {process.pid} cancelled, terminating")
                await asyncio.shield(self._terminate(process))
                raise

            await self._collect(pumps)
        finally:
            # No reader outlives the run, including on cancellation
            for task in pumps:
                if not task.done():
                    task.cancel()

        return ProcessOutcome(
            exit_code=process.returncode,
            stdout=_decode(stdout_chunks),
            stderr=_decode(stderr_chunks),
            timed_out=timed_out,
            duration_ms=elapsed_ms(start),
        )

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.terminate_grace_seconds)
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    async def _collect(self, pumps: List[asyncio.Task]) -> None:
        # Grandchildren can hold the pipes open after the child exits
        _, pending = await asyncio.wait(pumps, timeout=self.terminate_grace_seconds)
        for task in pending:
            task.cancel()


async def _pump(stream: Optional[asyncio.StreamReader], chunks: List[bytes]) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        chunks.append(chunk)


def _decode(chunks: List[bytes]) -> str:
    # Replace invalid UTF-8 bytes instead of crashing (font metadata is often latin-1)
    return b"".join(chunks).decode("utf-8", errors="replace")
