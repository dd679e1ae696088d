"""Timed execution of one external build.

Runs the build command as a child process in its own session under an
explicit environment, waits for it, and captures wall-clock time plus
child CPU time via ``resource.getrusage``.  Spawn failures come back as
results, never as exceptions.  If the wait is interrupted the child's
whole process group is killed before the interruption propagates.
"""

from __future__ import annotations

import os
import re
import resource
import signal
import subprocess
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import IO

from buildbench.logging import VariantLogger, get_logger
from buildbench.matrix.environment import Environment
from buildbench.matrix.errors import ConfigurationError
from buildbench.matrix.results import ExecutionResult, ExecutionStatus

log = get_logger("executor")

# Host variables a child needs to start and locate binaries at all.
PLATFORM_PASSTHROUGH_VARS: tuple[str, ...] = ("PATH", "HOME", "USER", "LANG", "TMPDIR", "TERM")

# Grace period between SIGTERM and SIGKILL when tearing down a build.
_TERMINATE_GRACE_S = 5.0

# Characters allowed in a log file name; anything else becomes "_".
_UNSAFE_FILENAME_CHARS = re.compile(r"[^\w.-]")


def child_environment(
    environment: Environment,
    host_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return the full environment handed to the child process.

    Only :data:`PLATFORM_PASSTHROUGH_VARS` are taken from the host; the
    variant environment replaces everything else and wins on conflicts.
    """
    host = os.environ if host_env is None else host_env
    env = {name: host[name] for name in PLATFORM_PASSTHROUGH_VARS if name in host}
    env.update(environment)
    return env


def log_filename(variant_id: str, phase: str) -> str:
    """File name for one invocation's captured output.

    Variant ids are arbitrary strings, so path separators and other
    unsafe characters are replaced.
    """
    stem = _UNSAFE_FILENAME_CHARS.sub("_", variant_id) or "build"
    return f"{stem}.{phase}.log"


class BuildExecutor:
    """Runs one build command at a time and times it.

    Args:
        log_dir: If set, each invocation's stdout and stderr go to
            ``<log_dir>/<variant_id>.<phase>.log`` (see
            :func:`log_filename`) and that path is the result's output
            handle.  Otherwise the child inherits the parent's streams.
        timeout: Optional per-invocation limit in seconds.
    """

    def __init__(
        self,
        *,
        log_dir: Path | None = None,
        timeout: float | None = None,
    ) -> None:
        self.log_dir = log_dir
        self.timeout = timeout

    def run(
        self,
        environment: Environment,
        working_directory: Path,
        command: Sequence[str],
        *,
        variant_id: str = "",
        phase: str = "build",
    ) -> ExecutionResult:
        """Run *command* in *working_directory* under *environment*.

        Raises:
            ConfigurationError: If *command* is empty or
                *working_directory* is not a directory.
        """
        if not command:
            raise ConfigurationError("Build command cannot be empty.")
        working_directory = Path(working_directory)
        if not working_directory.is_dir():
            raise ConfigurationError(f"Working directory does not exist: {working_directory}")

        vlog = VariantLogger(log, variant_id or "-")
        argv = [str(part) for part in command]
        env = child_environment(environment)

        start_time = time.strftime("%Y-%m-%dT%H:%M:%S%z")
        output_path: Path | None = None
        output: IO[str] | None = None
        if self.log_dir is not None:
            output_path = self.log_dir / log_filename(variant_id, phase)
            try:
                self.log_dir.mkdir(parents=True, exist_ok=True)
                output = open(output_path, "w", encoding="utf-8")  # noqa: SIM115
            except OSError as exc:
                vlog.error("Cannot open build log %s: %s", output_path, exc)
                return _spawn_error(variant_id, phase, start_time, f"build log: {exc}")

        vlog.debug("%s: %s (cwd=%s)", phase, " ".join(argv), working_directory)
        try:
            pre_rusage = resource.getrusage(resource.RUSAGE_CHILDREN)
            wall_start = time.monotonic()
            try:
                proc = subprocess.Popen(
                    argv,
                    cwd=str(working_directory),
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=output,
                    stderr=subprocess.STDOUT if output is not None else None,
                    start_new_session=True,
                )
            except OSError as exc:
                vlog.error("Failed to start %s: %s", argv[0], exc)
                return _spawn_error(
                    variant_id, phase, start_time, str(exc), output_path=output_path
                )

            exit_code, timed_out = self._wait(proc, vlog)
            wall_time = time.monotonic() - wall_start
            post_rusage = resource.getrusage(resource.RUSAGE_CHILDREN)
        finally:
            if output is not None:
                output.close()

        if timed_out:
            status = ExecutionStatus.TIMEOUT
        elif exit_code == 0:
            status = ExecutionStatus.OK
        else:
            status = ExecutionStatus.FAIL

        result = ExecutionResult(
            variant_id=variant_id,
            start_time=start_time,
            duration_s=round(max(wall_time, 0.0), 6),
            exit_code=exit_code,
            status=status,
            phase=phase,
            output_path=str(output_path) if output_path else None,
            user_time_s=round(max(post_rusage.ru_utime - pre_rusage.ru_utime, 0.0), 6),
            sys_time_s=round(max(post_rusage.ru_stime - pre_rusage.ru_stime, 0.0), 6),
        )
        vlog.debug("%s finished: exit %d in %.2fs", phase, exit_code, result.duration_s)
        return result

    def _wait(self, proc: subprocess.Popen[bytes], vlog: VariantLogger) -> tuple[int, bool]:
        """Wait for *proc*; return (exit code, timed out)."""
        try:
            return proc.wait(timeout=self.timeout), False
        except subprocess.TimeoutExpired:
            vlog.warning("Build exceeded %ss timeout, killing it", self.timeout)
            _kill_process_group(proc.pid, signal.SIGKILL)
            proc.wait()
            return -1, True
        except (KeyboardInterrupt, SystemExit):
            vlog.warning("Interrupted, terminating build process group %d", proc.pid)
            terminate_process_group(proc)
            raise


def _spawn_error(
    variant_id: str,
    phase: str,
    start_time: str,
    error: str,
    *,
    output_path: Path | None = None,
) -> ExecutionResult:
    return ExecutionResult(
        variant_id=variant_id,
        start_time=start_time,
        duration_s=0.0,
        exit_code=-1,
        status=ExecutionStatus.SPAWN_ERROR,
        phase=phase,
        output_path=str(output_path) if output_path else None,
        error=error,
    )


def terminate_process_group(proc: subprocess.Popen[bytes]) -> None:
    """SIGTERM the child's process group, escalate to SIGKILL, and reap it."""
    _kill_process_group(proc.pid, signal.SIGTERM)
    try:
        proc.wait(timeout=_TERMINATE_GRACE_S)
    except subprocess.TimeoutExpired:
        _kill_process_group(proc.pid, signal.SIGKILL)
        proc.wait()


def _kill_process_group(pid: int, sig: int) -> None:
    """Send *sig* to the process group led by *pid*."""
    try:
        os.killpg(os.getpgid(pid), sig)
    except (ProcessLookupError, PermissionError):
        pass
