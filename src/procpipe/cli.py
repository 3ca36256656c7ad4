"""Command line interface for running process pipelines."""

from __future__ import annotations

import json
import os
from pathlib import Path

import typer

from .command import Command
from .config import default_config
from .context import with_timeout
from .errors import ConfigurationError
from .escaping import shell_escape_pipeline
from .logging_utils import get_logger
from .result import Result, first_error

# Enable rich-rendered help panels by default; allow opt-out via PROCPIPE_CLI_RICH=0/false.
_rich_pref = os.getenv("PROCPIPE_CLI_RICH", "").strip().lower()
try:  # Typer <0.12.3 lacks rich_utils
    typer.rich_utils.USE_RICH = _rich_pref not in {"0", "false", "no", "off"}  # type: ignore[attr-defined]
except AttributeError:
    pass

app = typer.Typer(help="Run external programs and pipelines with deterministic results.")

PIPE_TOKEN = "|"


def split_stages(argv: list[str]) -> list[list[str]]:
    """Split ``argv`` into stages on literal ``|`` tokens."""

    stages: list[list[str]] = [[]]
    for token in argv:
        if token == PIPE_TOKEN:
            stages.append([])
        else:
            stages[-1].append(token)
    if any(not stage for stage in stages):
        raise typer.BadParameter("every pipeline stage needs a program name")
    return stages


def build_chain(
    stages: list[list[str]],
    *,
    best_effort: bool = False,
    timeout: float | None = None,
    pty: bool = False,
    shadow: bool | None = None,
    workdir: Path | None = None,
    env: list[str] | None = None,
) -> Command:
    """Build a :class:`Command` chain from split argv stages."""

    root = Command(stages[0][0], *stages[0][1:])
    last = root
    for stage in stages[1:]:
        last = last.pipe(stage[0], *stage[1:])

    ctx = with_timeout(timeout) if timeout is not None and timeout > 0 else None
    for stage_cmd in root.stages():
        if ctx is not None:
            stage_cmd.with_context(ctx)
        if workdir is not None:
            stage_cmd.dir(workdir)
        if env:
            stage_cmd.env(*env)

    if best_effort:
        root.pipe_best_effort()
    if pty:
        root.with_pty()
    if shadow is True:
        root.shadow_on()
    elif shadow is False:
        root.shadow_off()
    return last


def _exit_code_for(result: Result) -> int:
    if result.exit_code >= 0:
        return result.exit_code
    if result.signal is not None:
        return 128 + int(result.signal)
    return 1


@app.command(
    help="Run PROG [ARGS] with stages separated by a literal '|' token (quote it for your shell)."
)
def run(
    argv: list[str] = typer.Argument(..., help="Program, arguments and '|' separators"),
    best_effort: bool = typer.Option(
        False, "--best-effort", help="Report the last stage and the first error found", is_flag=True
    ),
    timeout: float | None = typer.Option(None, help="Kill every stage after this many seconds"),
    combined: bool = typer.Option(
        False, "--combined", help="Print interleaved stdout+stderr of the primary stage", is_flag=True
    ),
    pty: bool = typer.Option(False, "--pty", help="Run a single command under a pseudo-terminal"),
    per_stage: bool = typer.Option(
        False, "--per-stage", help="Report one result per stage (implies --json)", is_flag=True
    ),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON", is_flag=True),
    shadow: bool | None = typer.Option(
        None, "--shadow/--no-shadow", help="Echo the pipeline to stderr before and after running"
    ),
    workdir: Path | None = typer.Option(None, "--dir", help="Working directory for every stage"),
    env: list[str] | None = typer.Option(None, "--env", "-e", help="KEY=VALUE (repeatable)"),
):
    stages = split_stages(argv)
    chain = build_chain(
        stages,
        best_effort=best_effort,
        timeout=timeout,
        pty=pty,
        shadow=shadow,
        workdir=workdir,
        env=env,
    )

    if per_stage:
        try:
            results = chain.pipeline_results()
        except ConfigurationError as exc:
            raise typer.BadParameter(str(exc)) from exc
        typer.echo(json.dumps([res.to_dict() for res in results], indent=2))
        failed = first_error(results) is not None or any(res.exit_code != 0 for res in results)
        raise typer.Exit(code=1 if failed else 0)

    if combined:
        try:
            result, text = chain.run_combined()
        except ConfigurationError as exc:
            raise typer.BadParameter(str(exc)) from exc
    else:
        result = chain.run()
        text = result.stdout
        if isinstance(result.err, ConfigurationError):
            raise typer.BadParameter(str(result.err))

    if as_json:
        payload = result.to_dict()
        if combined:
            payload["combined"] = text
        typer.echo(json.dumps(payload, indent=2))
    else:
        if text:
            typer.echo(text, nl=False)
        if result.stderr and not combined:
            typer.echo(result.stderr, nl=False, err=True)
        if result.err is not None:
            typer.secho(f"error: {result.err}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=_exit_code_for(result))


@app.command(help="Print the POSIX shell-escaped form of a pipeline without running it.")
def escape(
    argv: list[str] = typer.Argument(..., help="Program, arguments and '|' separators"),
):
    typer.echo(shell_escape_pipeline(split_stages(argv)))


@app.command(help="Show the effective configuration (defaults plus PROCPIPE_* overrides).")
def config():
    typer.echo(json.dumps(default_config().to_dict(), indent=2))


def main() -> None:
    """Console script entry point for the procpipe CLI (Typer app)."""
    get_logger()
    app()


if __name__ == "__main__":  # pragma: no cover
    app()
