"""
Data model for the compilation context.

Jobs and options are created once at submission and never mutated. Results,
diagnostics and progress records are derived data produced while a job runs.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from texforge.contexts.compilation.logger import _log_warning

DEFAULT_PRIORITY = 1
DEFAULT_TIMEOUT_MS = 30_000

# Fixed filenames inside a job's working directory
SOURCE_FILENAME = "document.tex"
ARTIFACT_FILENAME = "document.pdf"


class CompilerChoice(str, Enum):
    PDFLATEX = "pdflatex"
    XELATEX = "xelatex"
    LUALATEX = "lualatex"


class ProgressStage(str, Enum):
    QUEUED = "queued"
    PREPARING = "preparing"
    COMPILING = "compiling"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ErrorKind(str, Enum):
    ERROR = "error"
    FATAL = "fatal"


class WarningKind(str, Enum):
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class CompilationOptions:
    """
    Per-job compiler options.

    Attributes:
        compiler: Which LaTeX engine to run
        timeout_ms: Wall-clock limit for each compiler pass
        allow_shell_escape: Pass -shell-escape to the compiler
        enable_sync_map: Pass -synctex=1 (source/PDF position mapping)
        output_dir: Directory that receives a copy of the PDF as <job id>.pdf
    """

    compiler: CompilerChoice = CompilerChoice.PDFLATEX
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    allow_shell_escape: bool = False
    enable_sync_map: bool = True
    output_dir: Optional[Path] = None

    @classmethod
    def resolve(
        cls,
        raw: "Optional[CompilationOptions | Mapping[str, Any]]" = None,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> "CompilationOptions":
        """
        Build fully-defaulted options from user input.

        Accepts None, an existing CompilationOptions, or a mapping with any
        subset of the fields. Invalid values fall back to their defaults with a
        warning; nothing is ever rejected.
        """
        if raw is None:
            return cls(timeout_ms=default_timeout_ms)

        if isinstance(raw, CompilationOptions):
            values: Dict[str, Any] = {
                "compiler": raw.compiler,
                "timeout_ms": raw.timeout_ms,
                "allow_shell_escape": raw.allow_shell_escape,
                "enable_sync_map": raw.enable_sync_map,
                "output_dir": raw.output_dir,
            }
        else:
            values = dict(raw)

        unknown = set(values) - {
            "compiler",
            "timeout_ms",
            "allow_shell_escape",
            "enable_sync_map",
            "output_dir",
        }
        if unknown:
            _log_warning(f"Ignoring unknown compilation options: {sorted(unknown)}")

        return cls(
            compiler=_coerce_compiler(values.get("compiler")),
            timeout_ms=_coerce_timeout(values.get("timeout_ms"), default_timeout_ms),
            allow_shell_escape=_coerce_bool(
                values.get("allow_shell_escape"), False, "allow_shell_escape"
            ),
            enable_sync_map=_coerce_bool(values.get("enable_sync_map"), True, "enable_sync_map"),
            output_dir=_coerce_path(values.get("output_dir")),
        )

    @property
    def cache_fingerprint(self) -> List[str]:
        """Option values that change the produced PDF."""
        return [
            self.compiler.value,
            str(self.allow_shell_escape),
            str(self.enable_sync_map),
        ]


def _coerce_compiler(value: Any) -> CompilerChoice:
    if value is None:
        return CompilerChoice.PDFLATEX
    if isinstance(value, CompilerChoice):
        return value
    try:
        return CompilerChoice(str(value).strip().lower())
    except ValueError:
        _log_warning(f"Unknown compiler {value!r}, falling back to pdflatex")
        return CompilerChoice.PDFLATEX


def _coerce_timeout(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        timeout = int(value)
    except (TypeError, ValueError):
        _log_warning(f"Invalid timeout_ms {value!r}, using {default}")
        return default
    if timeout <= 0:
        _log_warning(f"Non-positive timeout_ms {timeout}, using {default}")
        return default
    return timeout


def _coerce_bool(value: Any, default: bool, name: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "1", "yes", "false", "0", "no"):
        return value.lower() in ("true", "1", "yes")
    if isinstance(value, int):
        return bool(value)
    _log_warning(f"Invalid {name} {value!r}, using {default}")
    return default


def _coerce_path(value: Any) -> Optional[Path]:
    if value is None or value == "":
        return None
    try:
        return Path(value)
    except TypeError:
        _log_warning(f"Invalid output_dir {value!r}, ignoring")
        return None


@dataclass(frozen=True)
class CompilationJob:
    """
    One request to compile source text into a PDF.

    Attributes:
        id: Unique job identifier
        source: LaTeX document text
        options: Fully-resolved compilation options
        priority: Higher values are served first
        submitted_at: time.monotonic() reading at submission (FIFO tie-break)
        sequence: Submission counter (tie-break for equal timestamps)
    """

    id: str
    source: str
    options: CompilationOptions
    priority: int = DEFAULT_PRIORITY
    submitted_at: float = 0.0
    sequence: int = 0

    @property
    def queue_key(self):
        """Sort key: priority descending, then submission order."""
        return (-self.priority, self.submitted_at, self.sequence)


@dataclass(frozen=True)
class CompilationError:
    """A compiler error extracted from the log, or a fatal job failure."""

    message: str
    kind: ErrorKind = ErrorKind.ERROR
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    context: Optional[str] = None

    def __str__(self) -> str:
        location = f"{self.file}:{self.line}: " if self.file and self.line else ""
        return f"{location}{self.message}"


@dataclass(frozen=True)
class CompilationWarning:
    """A compiler warning or informational message extracted from the log."""

    message: str
    kind: WarningKind = WarningKind.WARNING
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    context: Optional[str] = None

    def __str__(self) -> str:
        location = f"{self.file}:{self.line}: " if self.file and self.line else ""
        return f"{location}{self.message}"


@dataclass(frozen=True)
class CompilationResult:
    """
    Final outcome of a non-cancelled job.

    Attributes:
        job_id: Job this result belongs to
        success: Last pass exited cleanly and the PDF exists
        artifact_bytes: PDF contents (success only)
        artifact_path: Persisted PDF copy (success with output_dir only)
        log: Combined stdout/stderr of the last compiler pass
        errors: Parsed errors, in log order
        warnings: Parsed warnings, in log order
        duration_ms: Wall-clock processing time
        passes: Number of compiler invocations
        page_count: Pages in the PDF (None if unknown)
        from_cache: Served from the result cache without running the compiler
    """

    job_id: str
    success: bool
    log: str = ""
    errors: List[CompilationError] = field(default_factory=list)
    warnings: List[CompilationWarning] = field(default_factory=list)
    duration_ms: int = 0
    artifact_bytes: Optional[bytes] = field(default=None, repr=False)
    artifact_path: Optional[Path] = None
    passes: int = 0
    page_count: Optional[int] = None
    from_cache: bool = False

    @property
    def fatal_errors(self) -> List[CompilationError]:
        return [e for e in self.errors if e.kind == ErrorKind.FATAL]


@dataclass(frozen=True)
class CompilationProgress:
    job_id: str
    stage: ProgressStage
    percent: int
    message: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.stage in (ProgressStage.COMPLETED, ProgressStage.FAILED)


@dataclass(frozen=True)
class QueueStatus:
    pending: int = 0
    active: int = 0
    total: int = 0


@dataclass(frozen=True)
class AvailabilityReport:
    """
    Result of probing the configured compiler binaries.

    Attributes:
        available: At least one compiler answered
        compilers: Names of compilers that answered, in configured order
        version: Version string from the first available compiler
        paths: Compiler name -> candidate path that answered
    """

    available: bool
    compilers: List[str] = field(default_factory=list)
    version: Optional[str] = None
    paths: Dict[str, str] = field(default_factory=dict)
