"""
Compilation Context

Responsibilities:
- Queues compilation jobs by priority and submission order
- Runs the LaTeX compiler with a concurrency ceiling, per-pass timeouts and reruns
- Parses compiler logs into structured errors and warnings
- Probes which LaTeX compilers are installed
- Publishes progress and outcomes on an event channel

Owns: Job lifecycle, compiler processes, per-job working directories
Never: Edits document source
"""

from texforge.contexts.compilation.events import (
    CancelledEvent,
    CompletedEvent,
    EventChannel,
    ProgressEvent,
    Subscription,
)
from texforge.contexts.compilation.exceptions import (
    CompilationSetupError,
    ProcessSpawnError,
    UnknownJobError,
)
from texforge.contexts.compilation.log_parser import LogParser, parse_log
from texforge.contexts.compilation.models import (
    AvailabilityReport,
    CompilationError,
    CompilationJob,
    CompilationOptions,
    CompilationProgress,
    CompilationResult,
    CompilationWarning,
    CompilerChoice,
    ProgressStage,
    QueueStatus,
)
from texforge.contexts.compilation.scheduler import CompilationScheduler
from texforge.contexts.compilation.settings import CompilerSettings

__all__ = [
    "AvailabilityReport",
    "CancelledEvent",
    "CompilationError",
    "CompilationJob",
    "CompilationOptions",
    "CompilationProgress",
    "CompilationResult",
    "CompilationScheduler",
    "CompilationSetupError",
    "CompilationWarning",
    "CompilerChoice",
    "CompilerSettings",
    "CompletedEvent",
    "EventChannel",
    "LogParser",
    "ProcessSpawnError",
    "ProgressEvent",
    "ProgressStage",
    "QueueStatus",
    "Subscription",
    "UnknownJobError",
    "parse_log",
]
