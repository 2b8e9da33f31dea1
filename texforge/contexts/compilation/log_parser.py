"""
LaTeX log parsing.

Turns raw compiler output into structured errors and warnings, and detects
logs that ask for another compilation pass. The parser makes one linear scan
over the lines and keeps no state across lines except a small context window
attached to each diagnostic. Lines that match nothing are ignored, so any text
is accepted without raising.

Recognised patterns, first match wins per line:
    1. ./file.tex:12: LaTeX Error: ...          -> error (file, line)
       ./file.tex:12: Undefined control sequence -> error (file, line)
    2. ! Emergency stop.                         -> fatal
    3. ./file.tex:12: ... Warning: ...           -> warning (file, line)
    4. Warning: ... / LaTeX [Font] Warning: ...  -> warning
    5. Package name Warning: / Package name Info: -> warning / info
    6. Overfull/Underfull \\hbox (...)           -> info (line if given)
"""

import re
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Iterable, List, Optional, Sequence

from texforge.contexts.compilation.models import (
    CompilationError,
    CompilationWarning,
    ErrorKind,
    WarningKind,
)

CONTEXT_LINES = 2

DEFAULT_RERUN_MARKERS = (
    "Rerun to get cross-references right",
    "There were undefined references",
    "Label(s) may have changed",
)


class LogPatterns:
    """Compiled line patterns, in priority order."""

    FILE_LINE_ERROR = re.compile(
        r"^(?P<file>.+?):(?P<line>\d+):\s*(?P<prefix>.*)Error:\s*(?P<message>.+)$"
    )
    UNDEFINED_CONTROL_SEQUENCE = re.compile(
        r"^(?P<file>.+?):(?P<line>\d+):\s*(?P<message>Undefined control sequence)"
    )
    FATAL = re.compile(r"^!\s*(?P<message>.+)$")
    FILE_LINE_WARNING = re.compile(
        r"^(?P<file>.+?):(?P<line>\d+):\s*(?P<prefix>.+?)Warning:\s*(?P<message>.+)$"
    )
    BARE_WARNING = re.compile(r"^(?:LaTeX(?:\s+\w+)?\s+)?Warning:\s*(?P<message>.+)$")
    PACKAGE_MESSAGE = re.compile(
        r"^Package\s+(?P<package>[\w.-]+)\s+(?P<keyword>Warning|Info):\s*(?P<message>.+)$"
    )
    BAD_BOX = re.compile(
        r"^(?P<message>(?:Over|Under)full \\[hv]box \([^)]*\).*?)"
        r"(?:\s+at lines?\s+(?P<line>\d+)(?:--\d+)?)?\s*$"
    )


@dataclass
class ParsedLog:
    """Errors and warnings extracted from one log, in log order."""

    errors: List[CompilationError] = field(default_factory=list)
    warnings: List[CompilationWarning] = field(default_factory=list)


class LogParser:
    """
    Extract diagnostics from LaTeX output.

    Args:
        rerun_markers: Substrings that mean another pass would change the
            output. Matched case-insensitively.
        context_lines: Lines of surrounding text attached to each diagnostic
    """

    def __init__(
        self,
        rerun_markers: Optional[Iterable[str]] = None,
        context_lines: int = CONTEXT_LINES,
    ):
        markers = DEFAULT_RERUN_MARKERS if rerun_markers is None else rerun_markers
        self.rerun_markers = tuple(m for m in markers if m)
        self.context_lines = context_lines
        self._lowered_markers = tuple(m.lower() for m in self.rerun_markers)

    def needs_another_pass(self, log: Optional[str]) -> bool:
        """True if the log contains any rerun marker."""
        if not log:
            return False
        lowered = log.lower()
        return any(marker in lowered for marker in self._lowered_markers)

    def parse(self, log: Optional[str]) -> ParsedLog:
        """
        Parse compiler output into errors and warnings.

        Args:
            log: Combined stdout/stderr text (None and "" are accepted)

        Returns:
            ParsedLog with diagnostics in the order they appear
        """
        parsed = ParsedLog()
        if not log:
            return parsed

        lines = log.splitlines()
        for index, line in enumerate(lines):
            error = self._match_error(lines, index, line)
            if error is not None:
                parsed.errors.append(error)
                continue

            warning = self._match_warning(lines, index, line)
            if warning is not None:
                parsed.warnings.append(warning)

        return parsed

    def _match_error(
        self, lines: Sequence[str], index: int, line: str
    ) -> Optional[CompilationError]:
        match = LogPatterns.FILE_LINE_ERROR.match(line)
        if match is None:
            match = LogPatterns.UNDEFINED_CONTROL_SEQUENCE.match(line)
        if match:
            return CompilationError(
                message=match.group("message").strip(),
                kind=ErrorKind.ERROR,
                file=_basename(match.group("file")),
                line=int(match.group("line")),
                context=self._context(lines, index),
            )

        match = LogPatterns.FATAL.match(line)
        if match:
            return CompilationError(
                message=match.group("message").strip(),
                kind=ErrorKind.FATAL,
                context=self._context(lines, index),
            )

        return None

    def _match_warning(
        self, lines: Sequence[str], index: int, line: str
    ) -> Optional[CompilationWarning]:
        match = LogPatterns.FILE_LINE_WARNING.match(line)
        if match:
            return CompilationWarning(
                message=match.group("message").strip(),
                kind=WarningKind.WARNING,
                file=_basename(match.group("file")),
                line=int(match.group("line")),
                context=self._context(lines, index),
            )

        match = LogPatterns.BARE_WARNING.match(line)
        if match:
            return CompilationWarning(
                message=match.group("message").strip(),
                kind=WarningKind.WARNING,
                context=self._context(lines, index),
            )

        match = LogPatterns.PACKAGE_MESSAGE.match(line)
        if match:
            kind = WarningKind.WARNING if match.group("keyword") == "Warning" else WarningKind.INFO
            return CompilationWarning(
                message=f"{match.group('package')}: {match.group('message').strip()}",
                kind=kind,
                context=self._context(lines, index),
            )

        match = LogPatterns.BAD_BOX.match(line)
        if match:
            line_number = match.group("line")
            return CompilationWarning(
                message=match.group("message").strip(),
                kind=WarningKind.INFO,
                line=int(line_number) if line_number else None,
                context=self._context(lines, index),
            )

        return None

    def _context(self, lines: Sequence[str], index: int) -> str:
        start = max(0, index - self.context_lines)
        end = min(len(lines), index + self.context_lines + 1)
        return "\n".join(lines[start:end])


def _basename(path: str) -> str:
    # Logs print paths as written on the command line (./document.tex, /tmp/x/document.tex)
    return PurePath(path.strip()).name or path.strip()


_default_parser = LogParser()


def parse_log(log: Optional[str]) -> ParsedLog:
    """Parse a log with the default rerun markers and context window."""
    return _default_parser.parse(log)


def needs_another_pass(log: Optional[str]) -> bool:
    """Check a log against the default rerun markers."""
    return _default_parser.needs_another_pass(log)
