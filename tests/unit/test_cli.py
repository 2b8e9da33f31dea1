"""Unit tests for the texforge command line, run against fake compilers."""

import sys

import pytest
from loguru import logger
from typer.testing import CliRunner

from texforge.cli import app

runner = CliRunner()

DOCUMENT = "\\documentclass{article}\\begin{document}Hi\\end{document}\n"


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    monkeypatch.delenv("TEXFORGE_CONFIG_PATH", raising=False)
    monkeypatch.setenv("TEXFORGE_TEMP_ROOT", str(tmp_path / "work"))
    monkeypatch.setenv("TEXFORGE_LOGS_PATH", str(tmp_path / "logs"))
    monkeypatch.setenv("TEXFORGE_TERMINATE_GRACE_SECONDS", "0.5")
    yield monkeypatch
    # The CLI points loguru at the runner's captured stderr
    logger.remove()
    logger.add(sys.stderr)


def use_compiler(env, compiler):
    for name in ("TEXFORGE_PDFLATEX", "TEXFORGE_XELATEX", "TEXFORGE_LUALATEX"):
        env.setenv(name, str(compiler))


@pytest.mark.unit
def test_no_command_shows_help():
    """Test running without a command prints help."""
    result = runner.invoke(app, [])

    assert result.exit_code == 0
    assert "compile" in result.output
    assert "probe" in result.output


@pytest.mark.unit
def test_compile_writes_pdf_next_to_source(cli_env, fake_compiler, tmp_path):
    """Test a successful compile writes <stem>.pdf and exits 0."""
    use_compiler(cli_env, fake_compiler())
    source = tmp_path / "paper.tex"
    source.write_text(DOCUMENT)

    result = runner.invoke(app, ["compile", str(source)])

    assert result.exit_code == 0, result.output
    assert "paper.tex: compiled" in result.output
    assert "Succeeded: 1/1" in result.output
    assert (tmp_path / "paper.pdf").read_bytes().startswith(b"%PDF-")


@pytest.mark.unit
def test_compile_multiple_files_into_output_dir(cli_env, fake_compiler, tmp_path):
    """Test several files compile through the queue into --output-dir."""
    compiler = fake_compiler()
    use_compiler(cli_env, compiler)
    sources = []
    for name in ("a.tex", "b.tex", "c.tex"):
        path = tmp_path / name
        path.write_text(DOCUMENT)
        sources.append(str(path))
    output_dir = tmp_path / "build"

    result = runner.invoke(
        app, ["compile", *sources, "--output-dir", str(output_dir), "--concurrency", "2"]
    )

    assert result.exit_code == 0, result.output
    assert sorted(p.name for p in output_dir.iterdir()) == ["a.pdf", "b.pdf", "c.pdf"]
    assert compiler.invocations == 3
    assert "Succeeded: 3/3" in result.output


@pytest.mark.unit
def test_compile_failure_exits_nonzero(cli_env, fake_compiler, tmp_path):
    """Test a failed job prints its errors and exits 1."""
    log = "./document.tex:1: Undefined control sequence.\n"
    use_compiler(cli_env, fake_compiler(log=log, exit_code=1, write_pdf=False))
    source = tmp_path / "broken.tex"
    source.write_text(DOCUMENT)

    result = runner.invoke(app, ["compile", str(source), "--no-synctex"])

    assert result.exit_code == 1
    assert "broken.tex: failed with 1 errors" in result.output
    assert "document.tex:1: Undefined control sequence" in result.output
    assert not (tmp_path / "broken.pdf").exists()


@pytest.mark.unit
def test_compile_missing_file_is_usage_error(cli_env, tmp_path):
    """Test nonexistent inputs are rejected before anything runs."""
    result = runner.invoke(app, ["compile", str(tmp_path / "missing.tex")])

    assert result.exit_code == 2


@pytest.mark.unit
def test_probe_reports_available_compiler(cli_env, fake_compiler, tmp_path):
    """Test probe lists the compilers that answered."""
    working = fake_compiler()
    config = tmp_path / "compilers.yaml"
    config.write_text(
        "candidates:\n"
        f"  pdflatex: ['{working}']\n"
        f"  xelatex: ['{tmp_path / 'missing'}']\n"
        f"  lualatex: ['{tmp_path / 'missing'}']\n"
    )
    cli_env.setenv("TEXFORGE_CONFIG_PATH", str(config))

    result = runner.invoke(app, ["probe"])

    assert result.exit_code == 0, result.output
    assert "LaTeX available (version 3.141592653)" in result.output
    assert f"pdflatex: {working}" in result.output


@pytest.mark.unit
def test_probe_nothing_available(cli_env, tmp_path):
    """Test probe exits 1 when no compiler answers."""
    config = tmp_path / "compilers.yaml"
    missing = tmp_path / "missing"
    config.write_text(
        "candidates:\n"
        f"  pdflatex: ['{missing}']\n"
        f"  xelatex: ['{missing}']\n"
        f"  lualatex: ['{missing}']\n"
    )
    cli_env.setenv("TEXFORGE_CONFIG_PATH", str(config))

    result = runner.invoke(app, ["probe"])

    assert result.exit_code == 1
    assert "No LaTeX compiler found" in result.output
