"""Tests for buildbench.matrix.runner — matrix execution engine."""

from __future__ import annotations

import sys
import tempfile
import unittest
from pathlib import Path

from matrix_test_helpers import (
    SUCCEED_COMMAND,
    FakeExecutor,
    make_base_env,
    make_registry,
)

from buildbench.matrix.environment import freeze_environment
from buildbench.matrix.errors import ConfigurationError
from buildbench.matrix.executor import BuildExecutor
from buildbench.matrix.results import ExecutionStatus, MatrixStatus
from buildbench.matrix.runner import (
    MatrixOptions,
    MatrixProgress,
    MatrixRunner,
    run_matrix,
    run_variant,
)
from buildbench.matrix.variants import Channel, Variant, VariantRegistry


def _options(**kwargs: object) -> MatrixOptions:
    defaults: dict[str, object] = {"working_directory": Path(".")}
    defaults.update(kwargs)
    return MatrixOptions(**defaults)  # type: ignore[arg-type]


class TestStopOnFailure(unittest.TestCase):
    def test_stops_at_first_failure(self) -> None:
        executor = FakeExecutor(build_statuses={"B": ExecutionStatus.FAIL})
        report = run_matrix(make_registry("A", "B", "C"), make_base_env(), executor, _options())

        self.assertEqual([r.variant_id for r in report.results], ["A", "B"])
        self.assertIs(report.status, MatrixStatus.FAILED)
        self.assertEqual(report.failed_at, 1)
        self.assertEqual(executor.built, ["A", "B"])
        self.assertNotIn("C", [c.variant_id for c in executor.calls])

    def test_spawn_failure_also_stops(self) -> None:
        executor = FakeExecutor(build_statuses={"A": ExecutionStatus.SPAWN_ERROR})
        report = run_matrix(make_registry("A", "B"), make_base_env(), executor, _options())
        self.assertEqual(len(report.results), 1)
        self.assertEqual(report.failed_at, 0)
        self.assertIs(report.results[0].status, ExecutionStatus.SPAWN_ERROR)

    def test_all_succeed(self) -> None:
        executor = FakeExecutor()
        report = run_matrix(make_registry("A", "B", "C"), make_base_env(), executor, _options())
        self.assertIs(report.status, MatrixStatus.SUCCEEDED)
        self.assertIsNone(report.failed_at)
        self.assertEqual(len(report.results), 3)


class TestContinueOnFailure(unittest.TestCase):
    def test_runs_everything(self) -> None:
        executor = FakeExecutor(build_statuses={"B": ExecutionStatus.FAIL})
        report = run_matrix(
            make_registry("A", "B", "C"),
            make_base_env(),
            executor,
            _options(continue_on_failure=True),
        )
        self.assertEqual([r.variant_id for r in report.results], ["A", "B", "C"])
        self.assertIs(report.status, MatrixStatus.FAILED)
        self.assertEqual(report.failed_at, 1)
        self.assertIs(report.results[2].status, ExecutionStatus.OK)
        self.assertTrue(report.continue_on_failure)

    def test_failures_listed(self) -> None:
        executor = FakeExecutor(
            build_statuses={"A": ExecutionStatus.FAIL, "C": ExecutionStatus.TIMEOUT}
        )
        report = run_matrix(
            make_registry("A", "B", "C"),
            make_base_env(),
            executor,
            _options(continue_on_failure=True),
        )
        self.assertEqual([r.variant_id for r in report.failures], ["A", "C"])
        self.assertEqual(report.failed_at, 0)


class TestFetchPhase(unittest.TestCase):
    def test_fetch_before_build(self) -> None:
        executor = FakeExecutor()
        run_matrix(make_registry("A"), make_base_env(), executor, _options())
        self.assertEqual([c.phase for c in executor.calls], ["fetch", "build"])
        self.assertEqual(executor.calls[0].command, ("cargo", "fetch"))
        self.assertEqual(executor.calls[1].command, ("cargo", "build", "--release"))

    def test_fetch_uses_variant_environment(self) -> None:
        executor = FakeExecutor()
        run_matrix(make_registry("A"), make_base_env(), executor, _options())
        fetch_env, build_env = (c.environment for c in executor.calls)
        self.assertEqual(fetch_env, build_env)

    def test_fetch_failure_recorded_and_build_skipped(self) -> None:
        executor = FakeExecutor(fetch_statuses={"A": ExecutionStatus.FAIL})
        report = run_matrix(make_registry("A", "B"), make_base_env(), executor, _options())
        self.assertEqual(executor.built, [])
        self.assertEqual(len(report.results), 1)
        self.assertIs(report.results[0].status, ExecutionStatus.FAIL)
        self.assertEqual(report.results[0].phase, "fetch")

    def test_fetch_disabled(self) -> None:
        executor = FakeExecutor()
        run_matrix(make_registry("A"), make_base_env(), executor, _options(fetch_command=None))
        self.assertEqual([c.phase for c in executor.calls], ["build"])

    def test_build_timing_excludes_fetch(self) -> None:
        executor = FakeExecutor()
        report = run_matrix(make_registry("A"), make_base_env(), executor, _options())
        self.assertEqual(report.results[0].duration_s, 1.0)
        self.assertEqual(report.results[0].phase, "build")


class TestEnvironmentPerVariant(unittest.TestCase):
    def test_each_variant_gets_own_flags(self) -> None:
        registry = VariantRegistry(
            [
                Variant(id="s10", channel=Channel.STABLE, codegen_units=10),
                Variant(id="n1", channel=Channel.NIGHTLY, codegen_units=1, threads=8),
            ]
        )
        executor = FakeExecutor()
        run_matrix(registry, make_base_env(), executor, _options(fetch_command=None))
        envs = {c.variant_id: c.environment for c in executor.calls}
        self.assertEqual(envs["s10"]["RUSTFLAGS"], "-Ccodegen-units=10")
        self.assertEqual(envs["n1"]["RUSTFLAGS"], "-Ccodegen-units=1 -Zthreads=8")
        self.assertEqual(envs["n1"]["RUSTUP_TOOLCHAIN"], "nightly")
        for env in envs.values():
            self.assertEqual(env["CARGO_BUILD_JOBS"], "1")

    def test_custom_environment_builder(self) -> None:
        seen: list[str] = []

        def builder(base: object, variant: Variant) -> dict[str, str]:
            seen.append(variant.id)
            return {"CUSTOM": variant.id}

        executor = FakeExecutor()
        runner = MatrixRunner(
            make_registry("A", "B"),
            make_base_env(),
            executor,
            _options(fetch_command=None),
            environment_builder=builder,  # type: ignore[arg-type]
        )
        runner.run()
        self.assertEqual(seen, ["A", "B"])
        self.assertEqual(executor.calls[1].environment, {"CUSTOM": "B"})

    def test_malformed_base_is_configuration_error(self) -> None:
        executor = FakeExecutor()
        with self.assertRaises(ConfigurationError) as ctx:
            run_matrix(
                make_registry("A"),
                freeze_environment({"CARGO_BUILD_JOBS": "1"}),
                executor,
                _options(),
            )
        self.assertEqual(executor.calls, [])
        self.assertIn("Variant 'A'", str(ctx.exception))


class TestRunnerLifecycle(unittest.TestCase):
    def test_state_transitions(self) -> None:
        runner = MatrixRunner(make_registry("A"), make_base_env(), FakeExecutor(), _options())
        self.assertIs(runner.status, MatrixStatus.IDLE)
        report = runner.run()
        self.assertIs(runner.status, MatrixStatus.SUCCEEDED)
        self.assertIs(runner.report, report)

    def test_failed_state(self) -> None:
        executor = FakeExecutor(build_statuses={"A": ExecutionStatus.FAIL})
        runner = MatrixRunner(make_registry("A"), make_base_env(), executor, _options())
        runner.run()
        self.assertIs(runner.status, MatrixStatus.FAILED)

    def test_runs_only_once(self) -> None:
        runner = MatrixRunner(make_registry("A"), make_base_env(), FakeExecutor(), _options())
        runner.run()
        with self.assertRaises(RuntimeError):
            runner.run()

    def test_interrupt_propagates(self) -> None:
        class InterruptingExecutor(FakeExecutor):
            def run(self, *args: object, **kwargs: object):  # type: ignore[override]
                raise KeyboardInterrupt

        runner = MatrixRunner(
            make_registry("A"), make_base_env(), InterruptingExecutor(), _options()
        )
        with self.assertRaises(KeyboardInterrupt):
            runner.run()
        self.assertIs(runner.status, MatrixStatus.FAILED)
        self.assertIsNone(runner.report)

    def test_progress_callback(self) -> None:
        events: list[MatrixProgress] = []
        runner = MatrixRunner(
            make_registry("A", "B"),
            make_base_env(),
            FakeExecutor(),
            _options(),
            progress_callback=events.append,
        )
        runner.run()
        self.assertEqual(
            [(e.phase, e.variant_id, e.index) for e in events],
            [("start", "A", 0), ("done", "A", 0), ("start", "B", 1), ("done", "B", 1)],
        )
        self.assertEqual(events[0].total, 2)
        self.assertIsNotNone(events[1].result)

    def test_default_progress_logs(self) -> None:
        with self.assertLogs("buildbench", level="INFO") as cm:
            run_matrix(make_registry("A"), make_base_env(), FakeExecutor(), _options())
        self.assertTrue(any("[1/1] A" in line for line in cm.output))


class TestSubsets(unittest.TestCase):
    def test_variant_ids_keep_registry_order(self) -> None:
        executor = FakeExecutor()
        report = run_matrix(
            make_registry("A", "B", "C"),
            make_base_env(),
            executor,
            _options(variant_ids=("C", "A")),
        )
        self.assertEqual([r.variant_id for r in report.results], ["A", "C"])

    def test_unknown_variant_id(self) -> None:
        with self.assertRaises(ConfigurationError):
            run_matrix(
                make_registry("A"),
                make_base_env(),
                FakeExecutor(),
                _options(variant_ids=("Z",)),
            )

    def test_run_variant(self) -> None:
        executor = FakeExecutor()
        report = run_variant(
            make_registry("A", "B", "C"), "B", make_base_env(), executor, _options()
        )
        self.assertEqual([r.variant_id for r in report.results], ["B"])
        self.assertEqual(executor.built, ["B"])


class TestEndToEnd(unittest.TestCase):
    """Real subprocesses through the real executor."""

    def _registry(self) -> VariantRegistry:
        return VariantRegistry(
            [
                Variant(id="stable-cu1", channel=Channel.STABLE, codegen_units=1),
                Variant(id="stable-cu10", channel=Channel.STABLE, codegen_units=10),
                Variant(id="nightly-cu1-t8", channel=Channel.NIGHTLY, codegen_units=1, threads=8),
            ]
        )

    def test_three_variants_succeed_in_order(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            report = run_matrix(
                self._registry(),
                make_base_env(),
                BuildExecutor(),
                MatrixOptions(
                    working_directory=Path(tmpdir),
                    build_command=SUCCEED_COMMAND,
                    fetch_command=None,
                ),
            )
        ids = [r.variant_id for r in report.results]
        self.assertEqual(ids, ["stable-cu1", "stable-cu10", "nightly-cu1-t8"])
        self.assertEqual(len(set(ids)), 3)
        self.assertTrue(all(r.status is ExecutionStatus.OK for r in report.results))
        self.assertTrue(report.succeeded)

    def test_builds_see_their_flags(self) -> None:
        record = (
            "import os; open('flags.txt', 'a').write("
            "os.environ['RUSTFLAGS'] + '|' + os.environ['CARGO_BUILD_JOBS'] + '\\n')"
        )
        with tempfile.TemporaryDirectory() as tmpdir:
            run_matrix(
                self._registry(),
                make_base_env(),
                BuildExecutor(),
                MatrixOptions(
                    working_directory=Path(tmpdir),
                    build_command=(sys.executable, "-c", record),
                    fetch_command=None,
                ),
            )
            lines = (Path(tmpdir) / "flags.txt").read_text().splitlines()
        self.assertEqual(
            lines,
            [
                "-Ccodegen-units=1|1",
                "-Ccodegen-units=10|1",
                "-Ccodegen-units=1 -Zthreads=8|1",
            ],
        )

    def test_path_like_variant_ids_with_log_dir(self) -> None:
        registry = VariantRegistry(
            [
                Variant(id="stable-cu1", codegen_units=1),
                Variant(id="stable/cu=10", codegen_units=10),
            ]
        )
        with tempfile.TemporaryDirectory() as tmpdir:
            log_dir = Path(tmpdir) / "logs"
            report = run_matrix(
                registry,
                make_base_env(),
                BuildExecutor(log_dir=log_dir),
                MatrixOptions(
                    working_directory=Path(tmpdir),
                    build_command=SUCCEED_COMMAND,
                    fetch_command=None,
                ),
            )
            logs = sorted(p.name for p in log_dir.iterdir())
        self.assertTrue(report.succeeded)
        self.assertEqual([r.variant_id for r in report.results], ["stable-cu1", "stable/cu=10"])
        self.assertEqual(logs, ["stable-cu1.build.log", "stable_cu_10.build.log"])

    def test_unwritable_log_dir_keeps_report(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            blocker = Path(tmpdir) / "logs"
            blocker.write_text("not a directory")
            report = run_matrix(
                self._registry(),
                make_base_env(),
                BuildExecutor(log_dir=blocker),
                MatrixOptions(
                    working_directory=Path(tmpdir),
                    build_command=SUCCEED_COMMAND,
                    fetch_command=None,
                    continue_on_failure=True,
                ),
            )
        self.assertEqual(len(report.results), 3)
        self.assertEqual(report.failed_at, 0)
        self.assertTrue(all(r.status is ExecutionStatus.SPAWN_ERROR for r in report.results))


if __name__ == "__main__":
    unittest.main()
