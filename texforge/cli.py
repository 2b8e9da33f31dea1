"""
LaTeX Compilation CLI

Compiles LaTeX files through the compilation scheduler and checks which
compilers are installed.

Commands:
    compile - Compile one or more LaTeX files to PDF
    probe   - Report the available LaTeX compilers

Examples:\n

    texforge compile paper.tex                               # Compile one file

    texforge compile ch1.tex ch2.tex --concurrency 2         # Compile in parallel

    texforge compile paper.tex --compiler xelatex --verbose  # Engine + full output

    texforge probe                                           # List installed compilers
"""

import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import typer
from typing_extensions import Annotated

from texforge.contexts.compilation.events import ProgressEvent, Subscription
from texforge.contexts.compilation.logger import setup_compilation_logger
from texforge.contexts.compilation.models import (
    DEFAULT_PRIORITY,
    CompilationOptions,
    CompilationResult,
    CompilerChoice,
)
from texforge.contexts.compilation.scheduler import CompilationScheduler
from texforge.contexts.compilation.settings import CompilerSettings
from texforge.utils.timestamp import format_duration, now

app = typer.Typer(
    help="Compile LaTeX documents to PDF through a prioritised job queue",
    add_completion=False,
    invoke_without_command=True,
)


@app.callback()
def main(ctx: typer.Context):
    """Show help by default when no command is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("compile")
def compile_command(
    files: Annotated[
        List[Path],
        typer.Argument(
            help="LaTeX source files to compile",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ],
    compiler: Annotated[
        CompilerChoice,
        typer.Option("--compiler", "-c", help="LaTeX engine to run"),
    ] = CompilerChoice.PDFLATEX,
    timeout_ms: Annotated[
        Optional[int],
        typer.Option("--timeout-ms", "-t", help="Per-pass timeout in milliseconds", min=1),
    ] = None,
    priority: Annotated[
        int,
        typer.Option("--priority", "-p", help="Job priority (higher starts first)"),
    ] = DEFAULT_PRIORITY,
    concurrency: Annotated[
        Optional[int],
        typer.Option("--concurrency", "-j", help="Maximum jobs compiling at once", min=1),
    ] = None,
    output_dir: Annotated[
        Optional[Path],
        typer.Option(
            "--output-dir",
            "-o",
            help="Directory for the PDFs (default: next to each source)",
            file_okay=False,
        ),
    ] = None,
    shell_escape: Annotated[
        bool,
        typer.Option("--shell-escape", help="Allow the compiler to run external commands"),
    ] = False,
    no_synctex: Annotated[
        bool,
        typer.Option("--no-synctex", help="Do not generate the SyncTeX position map"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Show debug logging and every warning",
        ),
    ] = False,
):
    """
    Compile LaTeX files to PDF.

    Every file becomes one job in the scheduler. Progress is printed as jobs
    move through the queue; the PDF of each successful job is written as
    <source name>.pdf.

    Examples:\n

        $ texforge compile paper.tex                        # Compile a file

        $ texforge compile *.tex -j 4 -o build              # Four at once, into build/

        $ texforge compile paper.tex --timeout-ms 120000    # Allow slow documents
    """
    settings = CompilerSettings.from_env()
    log_file = setup_compilation_logger(
        settings.logs_path / f"compile_{now()}",
        extra_provenance={
            "Compiler": compiler.value,
            "Files": len(files),
            "Max concurrent jobs": concurrency or settings.max_concurrent_jobs,
        },
        verbose=verbose,
    )

    options = CompilationOptions.resolve(
        {
            "compiler": compiler,
            "timeout_ms": timeout_ms,
            "allow_shell_escape": shell_escape,
            "enable_sync_map": not no_synctex,
        },
        default_timeout_ms=settings.default_timeout_ms,
    )

    typer.secho(
        f"\nCompiling {len(files)} file(s) with {compiler.value}", fg=typer.colors.BLUE, bold=True
    )
    typer.echo("")

    outcomes = asyncio.run(_compile_files(files, options, priority, concurrency, settings))

    typer.echo("")
    failed = 0
    for source_path, result in outcomes:
        if result is None:
            failed += 1
            typer.secho(f"✗ {source_path.name}: cancelled", fg=typer.colors.YELLOW, bold=True)
            continue

        if result.success:
            pdf_path = _write_pdf(result, source_path, output_dir)
            typer.secho(
                f"✓ {source_path.name}: compiled in {format_duration(result.duration_ms)}",
                fg=typer.colors.GREEN,
                bold=True,
            )
            typer.echo(f"  Passes: {result.passes}, pages: {result.page_count or '?'}")
            typer.echo(f"  Warnings: {len(result.warnings)}")
            if verbose:
                for warning in result.warnings[:10]:
                    typer.echo(f"  - {warning}")
                if len(result.warnings) > 10:
                    typer.echo(f"  ... and {len(result.warnings) - 10} more")
            typer.echo(f"  PDF: {pdf_path}")
        else:
            failed += 1
            typer.secho(
                f"✗ {source_path.name}: failed with {len(result.errors)} errors",
                fg=typer.colors.RED,
                bold=True,
            )
            for error in result.errors[:10]:
                typer.secho(f"  - {error}", fg=typer.colors.RED)
            if len(result.errors) > 10:
                typer.echo(f"  ... and {len(result.errors) - 10} more")

    typer.echo("")
    typer.echo(f"Succeeded: {len(outcomes) - failed}/{len(outcomes)}")
    typer.echo(f"Log: {log_file}")
    typer.echo("")

    raise typer.Exit(code=1 if failed else 0)


@app.command("probe")
def probe_command():
    """
    Report which LaTeX compilers are installed.

    Tries each configured candidate path with --version. Exits with code 1 when
    no compiler answers.

    Examples:\n

        $ texforge probe
    """
    settings = CompilerSettings.from_env()
    report = asyncio.run(_probe(settings))

    if report.available:
        version = f" (version {report.version})" if report.version else ""
        typer.secho(f"\n✓ LaTeX available{version}", fg=typer.colors.GREEN, bold=True)
        for name in report.compilers:
            typer.echo(f"  {name}: {report.paths.get(name, name)}")
        typer.echo("")
        raise typer.Exit(code=0)

    typer.secho("\n✗ No LaTeX compiler found", fg=typer.colors.RED, bold=True)
    typer.echo("  Install TeX Live, MiKTeX or MacTeX, or set TEXFORGE_PDFLATEX.")
    typer.echo("")
    raise typer.Exit(code=1)


async def _compile_files(
    files: List[Path],
    options: CompilationOptions,
    priority: int,
    concurrency: Optional[int],
    settings: CompilerSettings,
) -> List[Tuple[Path, Optional[CompilationResult]]]:
    async with CompilationScheduler(settings) as scheduler:
        if concurrency:
            scheduler.concurrency = concurrency

        # Subscribe before submitting so the queued events are not missed
        subscription = scheduler.events.subscribe()
        sources: Dict[str, Path] = {}
        for path in files:
            job_id = scheduler.submit(path.read_text(encoding="utf-8"), options, priority)
            sources[job_id] = path

        printer = asyncio.create_task(_print_progress(subscription, sources))
        # Waiters are registered before any job can finish
        results = await asyncio.gather(*(scheduler.wait(job_id) for job_id in sources))
        outcomes = list(zip(sources.values(), results))
        subscription.close()
        await printer

    return outcomes


async def _print_progress(subscription: Subscription, sources: Dict[str, Path]) -> None:
    async for event in subscription:
        if isinstance(event, ProgressEvent):
            progress = event.progress
            name = sources[progress.job_id].name if progress.job_id in sources else progress.job_id
            typer.echo(f"  [{name}] {progress.percent:>3}% {progress.message}")


async def _probe(settings: CompilerSettings):
    async with CompilationScheduler(settings) as scheduler:
        return await scheduler.probe_availability()


def _write_pdf(result: CompilationResult, source_path: Path, output_dir: Optional[Path]) -> Path:
    target_dir = output_dir or source_path.parent
    target_dir.mkdir(parents=True, exist_ok=True)
    pdf_path = target_dir / f"{source_path.stem}.pdf"
    pdf_path.write_bytes(result.artifact_bytes)
    return pdf_path


if __name__ == "__main__":
    app()
