"""Command-line interface for buildbench.

Subcommands:
    buildbench run-variant VARIANT_ID   Build one variant and time it
    buildbench run-matrix               Build every variant in order
    buildbench list-variants            Print the variant registry
    buildbench show REPORT              Display a saved JSON report

Run commands exit 0 when every attempted build succeeded, 1 when any
failed, and 2 on configuration errors.
"""

from __future__ import annotations

import signal
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import click

from buildbench import __version__
from buildbench.logging import setup_logging
from buildbench.matrix.errors import ConfigurationError

EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """buildbench: time a project's release build across toolchain variants."""


def _run_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by run-variant and run-matrix."""
    options = [
        click.option(
            "--profile",
            "profile_path",
            type=click.Path(exists=True, dir_okay=False, path_type=Path),
            default=None,
            help="YAML profile defining variants, commands and environment.",
        ),
        click.option(
            "--working-dir",
            type=click.Path(file_okay=False, path_type=Path),
            default=None,
            help="Project checkout to build in (default: profile value or '.').",
        ),
        click.option(
            "--log-dir",
            type=click.Path(file_okay=False, path_type=Path),
            default=None,
            help="Write each build's output to LOG_DIR/<variant>.<phase>.log.",
        ),
        click.option(
            "--timeout",
            type=float,
            default=None,
            help="Per-build timeout in seconds (default: none).",
        ),
        click.option(
            "--output",
            "-o",
            type=click.Path(dir_okay=False, path_type=Path),
            default=None,
            help="Save the report as JSON to this file.",
        ),
        click.option(
            "--env",
            "env_pairs",
            type=str,
            multiple=True,
            help="KEY=VALUE base environment override (repeatable).",
        ),
        click.option(
            "--no-fetch",
            is_flag=True,
            default=False,
            help="Skip the dependency fetch before each build.",
        ),
        click.option("-v", "--verbose", is_flag=True, help="Show detailed output."),
        click.option("-q", "--quiet", is_flag=True, help="Only show warnings and errors."),
        click.option(
            "--log-file",
            type=click.Path(dir_okay=False, path_type=Path),
            default=None,
            help="Also write a DEBUG log to this file.",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


# Signals that end the runner.  Builds run in their own session, so these
# are not delivered to them and must be turned into a clean shutdown.
TERMINATION_SIGNALS: tuple[signal.Signals, ...] = tuple(
    getattr(signal, name) for name in ("SIGTERM", "SIGHUP", "SIGQUIT") if hasattr(signal, name)
)


@contextmanager
def _termination_as_exit() -> Iterator[None]:
    """Turn termination signals into SystemExit so running builds get torn down."""

    def _handle(signum: int, frame: object) -> None:
        raise SystemExit(128 + signum)

    previous = {sig: signal.signal(sig, _handle) for sig in TERMINATION_SIGNALS}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            if handler is not None:
                signal.signal(sig, handler)


# ---------------------------------------------------------------------------
# run-variant / run-matrix
# ---------------------------------------------------------------------------


@main.command("run-variant")
@click.argument("variant_id")
@_run_options
def run_variant_cmd(variant_id: str, **kwargs: Any) -> None:
    """Build a single variant and report its timing.

    \b
    Examples:
        buildbench run-variant codegenunits-1 --working-dir ./project
        buildbench run-variant codegenunits-16-nightly --log-dir logs
    """
    _execute(variant_ids=(variant_id,), continue_on_failure=False, **kwargs)


@main.command("run-matrix")
@click.option(
    "--continue-on-failure",
    is_flag=True,
    default=False,
    help="Keep building the remaining variants after a failure.",
)
@click.option(
    "--variant",
    "variant_ids",
    type=str,
    multiple=True,
    help="Only run this variant (repeatable; registry order is kept).",
)
@_run_options
def run_matrix_cmd(
    continue_on_failure: bool,
    variant_ids: tuple[str, ...],
    **kwargs: Any,
) -> None:
    """Build every variant in registry order and report the timings.

    Stops at the first failing variant unless --continue-on-failure is
    given.  The working directory is shared and never cleaned between
    variants.

    \b
    Examples:
        buildbench run-matrix --working-dir ./project -o report.json
        buildbench run-matrix --profile matrix.yaml --continue-on-failure
    """
    _execute(
        variant_ids=variant_ids or None,
        continue_on_failure=continue_on_failure,
        **kwargs,
    )


def _execute(  # noqa: PLR0913
    *,
    variant_ids: tuple[str, ...] | None,
    continue_on_failure: bool,
    profile_path: Path | None,
    working_dir: Path | None,
    log_dir: Path | None,
    timeout: float | None,
    output: Path | None,
    env_pairs: tuple[str, ...],
    no_fetch: bool,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    from buildbench.matrix.config import (
        check_config,
        config_from_profile,
        load_profile,
        parse_env_pairs,
    )
    from buildbench.matrix.display import format_output_paths, format_report
    from buildbench.matrix.environment import capture_base_environment
    from buildbench.matrix.executor import BuildExecutor
    from buildbench.matrix.results import save_report
    from buildbench.matrix.runner import MatrixOptions, MatrixRunner

    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)

    try:
        profile_data = load_profile(profile_path) if profile_path else {}
        config = config_from_profile(
            profile_data,
            cli_overrides={
                "working_dir": working_dir,
                "continue_on_failure": continue_on_failure or None,
                "timeout": timeout,
                "env": parse_env_pairs(env_pairs),
                "no_fetch": no_fetch or None,
                "log_dir": log_dir,
                "output": output,
            },
            profile_dir=profile_path.parent if profile_path else None,
        )
        check_config(config)
        registry = config.registry
        if variant_ids is not None:
            registry = registry.select(variant_ids)
        base_env = capture_base_environment(overrides=config.env)
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(EXIT_CONFIG_ERROR) from exc

    executor = BuildExecutor(log_dir=config.log_dir, timeout=config.timeout)
    options = MatrixOptions(
        working_directory=config.working_dir,
        continue_on_failure=config.continue_on_failure,
        build_command=config.build_command,
        fetch_command=config.fetch_command,
    )
    runner = MatrixRunner(registry, base_env, executor, options)

    try:
        with _termination_as_exit():
            report = runner.run()
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(EXIT_CONFIG_ERROR) from exc
    except KeyboardInterrupt:
        click.echo("\nBuild matrix interrupted.", err=True)
        raise SystemExit(130)  # noqa: B904

    click.echo()
    click.echo(format_report(report, total_variants=len(registry)))
    paths = format_output_paths(report)
    if paths:
        click.echo()
        click.echo(paths)

    if config.output is not None:
        save_report(config.output, report)
        click.echo(f"\nReport saved to: {config.output}")

    if not report.succeeded:
        raise SystemExit(EXIT_FAILED)


# ---------------------------------------------------------------------------
# list-variants
# ---------------------------------------------------------------------------


@main.command("list-variants")
@click.option(
    "--profile",
    "profile_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML profile defining variants (default: the stock matrix).",
)
def list_variants(profile_path: Path | None) -> None:
    """Print the variant registry in run order."""
    from buildbench.matrix.config import load_profile, registry_from_profile
    from buildbench.matrix.display import format_registry

    try:
        data = load_profile(profile_path) if profile_path else {}
        registry = registry_from_profile(data.get("variants"))
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(EXIT_CONFIG_ERROR) from exc

    click.echo(format_registry(registry))


# ---------------------------------------------------------------------------
# show
# ---------------------------------------------------------------------------


@main.command("show")
@click.argument("report_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def show(report_path: Path) -> None:
    """Display a report saved with run-matrix --output.

    REPORT_PATH is the JSON file written by a previous run.
    """
    from buildbench.matrix.display import format_report
    from buildbench.matrix.results import load_report

    try:
        report = load_report(report_path)
    except ValueError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(EXIT_CONFIG_ERROR) from exc
    click.echo(format_report(report))
