"""
Compiler availability probing.

Each configured compiler is probed independently with a lightweight
`--version` invocation. Candidate paths for one compiler are tried in order
until one answers; different compilers are probed concurrently.
"""

import asyncio
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from texforge.contexts.compilation.exceptions import ProcessSpawnError
from texforge.contexts.compilation.logger import _log_debug, log_probe_result
from texforge.contexts.compilation.models import AvailabilityReport
from texforge.contexts.compilation.process_runner import ProcessRunner

VERSION_PATTERN = re.compile(r"\d+\.\d+(?:\.\d+)?")
VERSION_ARGS = ("--version",)


@dataclass(frozen=True)
class _ProbeHit:
    compiler: str
    path: str
    output: str


class CompilerProber:
    """
    Probe a fixed set of candidate compiler binaries.

    Args:
        candidates: Compiler name -> ordered candidate paths
        runner: Process runner used for the version queries
        timeout_ms: Timeout for each version query
    """

    def __init__(
        self,
        candidates: Dict[str, Sequence[str]],
        runner: Optional[ProcessRunner] = None,
        timeout_ms: int = 5_000,
    ):
        self.candidates = {name: list(paths) for name, paths in candidates.items()}
        self.runner = runner or ProcessRunner(terminate_grace_seconds=0.5)
        self.timeout_ms = timeout_ms

    async def probe(self) -> AvailabilityReport:
        """
        Probe every configured compiler.

        Returns:
            AvailabilityReport listing the compilers that answered, in configured
            order, with the version taken from the first of them
        """
        names = list(self.candidates)
        outcomes = await asyncio.gather(
            *(self._probe_compiler(name, self.candidates[name]) for name in names),
            return_exceptions=True,
        )

        hits: List[_ProbeHit] = []
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, BaseException):
                _log_debug(f"Probe for {name} raised {outcome!r}")
                continue
            if outcome is not None:
                hits.append(outcome)

        version = None
        if hits:
            match = VERSION_PATTERN.search(hits[0].output)
            version = match.group(0) if match else None

        report = AvailabilityReport(
            available=bool(hits),
            compilers=[hit.compiler for hit in hits],
            version=version,
            paths={hit.compiler: hit.path for hit in hits},
        )
        log_probe_result(report)
        return report

    async def _probe_compiler(self, name: str, paths: Sequence[str]) -> Optional[_ProbeHit]:
        for path in paths:
            try:
                outcome = await self.runner.run(path, VERSION_ARGS, timeout_ms=self.timeout_ms)
            except ProcessSpawnError as error:
                _log_debug(f"  {name}: {error.message}")
                continue

            if outcome.exit_clean and outcome.stdout.strip():
                _log_debug(f"  {name}: available via {path}")
                return _ProbeHit(compiler=name, path=path, output=outcome.stdout)

            reason = "timed out" if outcome.timed_out else f"exit {outcome.exit_code}"
            _log_debug(f"  {name}: version check failed for {path} ({reason})")

        _log_debug(f"  {name}: not available after {len(paths)} candidate(s)")
        return None
