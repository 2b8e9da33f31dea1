"""
Shared test fixtures.

Unit tests run the real scheduler and process runner against fake compiler
executables: small Python scripts generated per test that print a canned log,
optionally sleep, write document.pdf into the -output-directory and record
every invocation as a JSON line.
"""

import json
import stat
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from texforge.contexts.compilation.models import CompilerChoice
from texforge.contexts.compilation.settings import CompilerSettings

DEFAULT_VERSION_OUTPUT = "pdfTeX 3.141592653-2.6-1.40.25 (TeX Live 2024)\n"

_FAKE_COMPILER_TEMPLATE = '''#!{python}
import json
import sys
import time
from pathlib import Path

CONFIG = json.loads({config!r})
PDF = {pdf!r}


def record(event):
    with open(CONFIG["calls"], "a") as handle:
        handle.write(json.dumps(dict(event, time=time.time())) + "\\n")


args = sys.argv[1:]
if "--version" in args:
    sys.stdout.write(CONFIG["version_output"])
    sys.exit(CONFIG["version_exit_code"])

record({{"event": "start", "args": args}})
time.sleep(CONFIG["sleep"])
sys.stdout.write(CONFIG["log"])
sys.stderr.write(CONFIG["stderr"])
sys.stdout.flush()

output_dir = "."
for arg in args:
    if arg.startswith("-output-directory="):
        output_dir = arg.split("=", 1)[1]
if CONFIG["write_pdf"]:
    Path(output_dir, "document.pdf").write_bytes(PDF)

record({{"event": "end"}})
sys.exit(CONFIG["exit_code"])
'''


def minimal_pdf(pages: int = 1) -> bytes:
    """Smallest well-formed PDF with the given number of blank pages."""
    kids = " ".join(f"{3 + i} 0 R" for i in range(pages))
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {pages} >>".encode(),
    ]
    objects.extend(
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>" for _ in range(pages)
    )

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, 1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"

    xref_offset = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += (
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\n"
        f"startxref\n{xref_offset}\n%%EOF\n"
    ).encode()
    return bytes(out)


@dataclass
class FakeCompiler:
    """Handle on a generated compiler script and its invocation record."""

    path: Path
    calls_file: Path

    def __str__(self) -> str:
        return str(self.path)

    def records(self) -> List[Dict]:
        if not self.calls_file.exists():
            return []
        # Drop a trailing line the child may still be writing
        lines = self.calls_file.read_text().split("\n")[:-1]
        return [json.loads(line) for line in lines if line.strip()]

    @property
    def invocations(self) -> int:
        return sum(1 for record in self.records() if record["event"] == "start")

    @property
    def calls(self) -> List[List[str]]:
        return [record["args"] for record in self.records() if record["event"] == "start"]

    def max_overlap(self) -> int:
        """Largest number of invocations that were running at the same time."""
        running = peak = 0
        for record in sorted(self.records(), key=lambda r: r["time"]):
            running += 1 if record["event"] == "start" else -1
            peak = max(peak, running)
        return peak


@pytest.fixture
def fake_compiler(tmp_path):
    """
    Factory for fake compiler executables.

    Example:
        compiler = fake_compiler(log="Rerun to get cross-references right", exit_code=0)
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    counter = {"n": 0}

    def _make(
        name: str = "pdflatex",
        log: str = "This is pdfTeX\nOutput written on document.pdf (1 page).\n",
        exit_code: int = 0,
        sleep: float = 0.0,
        write_pdf: bool = True,
        stderr: str = "",
        pages: int = 1,
        version_output: str = DEFAULT_VERSION_OUTPUT,
        version_exit_code: int = 0,
    ) -> FakeCompiler:
        counter["n"] += 1
        path = bin_dir / f"{name}-{counter['n']}"
        calls_file = bin_dir / f"{name}-{counter['n']}.calls"
        config = json.dumps(
            {
                "calls": str(calls_file),
                "log": log,
                "stderr": stderr,
                "exit_code": exit_code,
                "sleep": sleep,
                "write_pdf": write_pdf,
                "version_output": version_output,
                "version_exit_code": version_exit_code,
            }
        )
        path.write_text(
            _FAKE_COMPILER_TEMPLATE.format(
                python=sys.executable, config=config, pdf=minimal_pdf(pages)
            )
        )
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return FakeCompiler(path=path, calls_file=calls_file)

    return _make


@pytest.fixture
def make_settings(tmp_path):
    """Factory for CompilerSettings pointing every compiler at one binary."""

    def _make(binary: Optional[object] = None, **overrides) -> CompilerSettings:
        binary_path = str(binary) if binary is not None else str(tmp_path / "missing-compiler")
        values = {
            "temp_root": tmp_path / "work",
            "binaries": {choice.value: binary_path for choice in CompilerChoice},
            "candidates": {choice.value: [binary_path] for choice in CompilerChoice},
            "terminate_grace_seconds": 0.5,
            "logs_path": tmp_path / "logs",
        }
        values.update(overrides)
        return CompilerSettings(**values)

    return _make
