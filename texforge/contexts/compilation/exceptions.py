"""Custom exceptions for the compilation context."""

from pathlib import Path
from typing import Optional


class CompilationSetupError(Exception):
    """
    Exception raised when a job's working directory or source file cannot be prepared.

    Attributes:
        message: Error description
        job_id: Job being prepared
        path: Filesystem path that failed
        original_error: The underlying OSError
    """

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        path: Optional[Path] = None,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.job_id = job_id
        self.path = path
        self.original_error = original_error

        parts = [message]
        if path is not None:
            parts.append(f"Path: {path}")
        if original_error is not None:
            parts.append(f"Original error: {original_error}")

        super().__init__("\n".join(parts))


class ProcessSpawnError(Exception):
    """
    Exception raised when the compiler binary cannot be started.

    Attributes:
        binary: Executable that was requested
        original_error: The OSError raised by the spawn attempt
    """

    def __init__(self, binary: str, original_error: Optional[Exception] = None):
        self.binary = binary
        self.original_error = original_error

        if isinstance(original_error, FileNotFoundError):
            message = f"Compiler not found: {binary}"
        elif isinstance(original_error, PermissionError):
            message = f"Compiler is not executable: {binary}"
        else:
            message = f"Failed to start compiler {binary}: {original_error}"
        self.message = message

        super().__init__(message)


class UnknownJobError(KeyError):
    """Raised when waiting on a job id with no pending or stored outcome."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(job_id)

    def __str__(self) -> str:
        return f"Unknown job: {self.job_id}"
