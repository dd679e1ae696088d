"""Matrix execution engine.

Orchestrates, strictly one build at a time:
1. Variant enumeration (registry order)
2. Environment construction per variant
3. Untimed dependency fetch, then the timed build
4. Stop-or-continue policy on failure
5. Progress reporting and the final report

The runner never retries and never cleans the working directory; both
are left to the caller.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path

from buildbench.logging import VariantLogger, get_logger
from buildbench.matrix.config import DEFAULT_BUILD_COMMAND, DEFAULT_FETCH_COMMAND
from buildbench.matrix.environment import Environment, build_environment
from buildbench.matrix.errors import ConfigurationError
from buildbench.matrix.executor import BuildExecutor
from buildbench.matrix.results import ExecutionResult, MatrixReport, MatrixStatus
from buildbench.matrix.variants import Variant, VariantRegistry

log = get_logger("runner")

EnvironmentBuilder = Callable[[Environment, Variant], Environment]


# ---------------------------------------------------------------------------
# Options and progress
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MatrixOptions:
    """Per-run policy for the matrix runner."""

    working_directory: Path = field(default_factory=lambda: Path("."))
    continue_on_failure: bool = False
    build_command: tuple[str, ...] = DEFAULT_BUILD_COMMAND
    fetch_command: tuple[str, ...] | None = DEFAULT_FETCH_COMMAND
    variant_ids: tuple[str, ...] | None = None  # Subset to run; None = all


@dataclass
class MatrixProgress:
    """Progress info passed to the callback."""

    phase: str  # "start" or "done"
    index: int  # 0-based position in the run
    total: int
    variant_id: str
    result: ExecutionResult | None = None


ProgressCallback = Callable[[MatrixProgress], None]


# ---------------------------------------------------------------------------
# MatrixRunner
# ---------------------------------------------------------------------------


class MatrixRunner:
    """Builds every variant of a registry once and reports the timings.

    Usage::

        runner = MatrixRunner(registry, base_env, BuildExecutor(), options)
        report = runner.run()

    A runner goes ``idle -> running -> succeeded | failed`` and runs
    exactly once.
    """

    def __init__(
        self,
        registry: VariantRegistry,
        base_environment: Environment,
        executor: BuildExecutor,
        options: MatrixOptions | None = None,
        *,
        environment_builder: EnvironmentBuilder = build_environment,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        self.registry = registry
        self.base_environment = base_environment
        self.executor = executor
        self.options = options or MatrixOptions()
        self.environment_builder = environment_builder
        self.progress: ProgressCallback = progress_callback or self._default_progress
        self.status = MatrixStatus.IDLE
        self.report: MatrixReport | None = None

    def run(self) -> MatrixReport:
        """Execute the matrix.

        Returns:
            The final MatrixReport.

        Raises:
            ConfigurationError: If the base environment is malformed or
                ``variant_ids`` names an unknown variant.
            RuntimeError: If this runner has already run.
        """
        if self.status is not MatrixStatus.IDLE:
            raise RuntimeError(f"MatrixRunner already used (status: {self.status.value}).")

        registry = self.registry
        if self.options.variant_ids is not None:
            registry = registry.select(self.options.variant_ids)
        variants = registry.enumerate()

        self.status = MatrixStatus.RUNNING
        started_at = time.strftime("%Y-%m-%dT%H:%M:%S%z")
        log.info(
            "Running %d variant(s) in %s%s",
            len(variants),
            self.options.working_directory,
            " (continue on failure)" if self.options.continue_on_failure else "",
        )

        results: list[ExecutionResult] = []
        try:
            for index, variant in enumerate(variants):
                self.progress(
                    MatrixProgress(
                        phase="start", index=index, total=len(variants), variant_id=variant.id
                    )
                )
                result = self._run_variant(variant)
                results.append(result)
                self.progress(
                    MatrixProgress(
                        phase="done",
                        index=index,
                        total=len(variants),
                        variant_id=variant.id,
                        result=result,
                    )
                )
                if result.failed and not self.options.continue_on_failure:
                    log.warning(
                        "Stopping at variant %d/%d (%s): %s",
                        index + 1,
                        len(variants),
                        variant.id,
                        result.status.value,
                    )
                    break
        except BaseException:
            self.status = MatrixStatus.FAILED
            raise

        report = MatrixReport.from_results(
            results,
            continue_on_failure=self.options.continue_on_failure,
            started_at=started_at,
            finished_at=time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        )
        self.status = report.status
        self.report = report
        return report

    def _run_variant(self, variant: Variant) -> ExecutionResult:
        """Fetch (untimed) then build (timed) one variant."""
        vlog = VariantLogger(log, variant.id)
        try:
            env = self.environment_builder(self.base_environment, variant)
        except ConfigurationError as exc:
            raise ConfigurationError(f"Variant '{variant.id}': {exc}") from exc
        vlog.debug("RUSTFLAGS=%r RUSTUP_TOOLCHAIN=%s", variant.rustflags, variant.channel.value)

        if self.options.fetch_command is not None:
            fetched = self.executor.run(
                env,
                self.options.working_directory,
                self.options.fetch_command,
                variant_id=variant.id,
                phase="fetch",
            )
            if fetched.failed:
                vlog.error("Dependency fetch failed (%s)", fetched.status.value)
                return fetched

        return self.executor.run(
            env,
            self.options.working_directory,
            self.options.build_command,
            variant_id=variant.id,
            phase="build",
        )

    @staticmethod
    def _default_progress(progress: MatrixProgress) -> None:
        """Default progress callback: log one line per event."""
        counter = f"[{progress.index + 1}/{progress.total}]"
        if progress.phase == "start":
            log.info("%s %s: building...", counter, progress.variant_id)
        elif progress.result is not None:
            log.info(
                "%s %s: %s in %.2fs",
                counter,
                progress.variant_id,
                progress.result.status.value,
                progress.result.duration_s,
            )


def run_matrix(
    registry: VariantRegistry,
    base_environment: Environment,
    executor: BuildExecutor,
    options: MatrixOptions | None = None,
    *,
    environment_builder: EnvironmentBuilder = build_environment,
    progress_callback: ProgressCallback | None = None,
) -> MatrixReport:
    """Run every variant in *registry*; see :class:`MatrixRunner`."""
    runner = MatrixRunner(
        registry,
        base_environment,
        executor,
        options,
        environment_builder=environment_builder,
        progress_callback=progress_callback,
    )
    return runner.run()


def run_variant(
    registry: VariantRegistry,
    variant_id: str,
    base_environment: Environment,
    executor: BuildExecutor,
    options: MatrixOptions | None = None,
    *,
    environment_builder: EnvironmentBuilder = build_environment,
    progress_callback: ProgressCallback | None = None,
) -> MatrixReport:
    """Run a single variant by id and return a one-result report.

    Raises:
        ConfigurationError: If *variant_id* is not registered.
    """
    single = replace(options or MatrixOptions(), variant_ids=(variant_id,))
    return run_matrix(
        registry,
        base_environment,
        executor,
        single,
        environment_builder=environment_builder,
        progress_callback=progress_callback,
    )
