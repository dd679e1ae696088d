"""Matrix result data structures and serialization.

Hierarchy::

    MatrixReport (one matrix run)
      → results: tuple[ExecutionResult, ...]   (execution order)

Both types are frozen.  A report can be exported to a JSON file for
later display; nothing reads it back during a run.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

log = logging.getLogger("buildbench")


class ExecutionStatus(str, enum.Enum):
    """Outcome of one build invocation."""

    OK = "ok"
    FAIL = "fail"  # Process ran and exited non-zero.
    SPAWN_ERROR = "spawn_error"  # Process could not be started.
    TIMEOUT = "timeout"


class MatrixStatus(str, enum.Enum):
    """Lifecycle of a matrix run."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Per-variant result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExecutionResult:
    """Result of building one variant."""

    variant_id: str
    start_time: str  # ISO-8601, local time
    duration_s: float
    exit_code: int
    status: ExecutionStatus
    output_path: str | None = None  # Captured stdout/stderr; not parsed.
    user_time_s: float = 0.0
    sys_time_s: float = 0.0
    error: str = ""
    phase: str = "build"  # Step that produced this result: "fetch" or "build".

    @property
    def failed(self) -> bool:
        return self.status is not ExecutionStatus.OK

    @property
    def cpu_time_s(self) -> float:
        """Total child CPU time (user + system)."""
        return self.user_time_s + self.sys_time_s

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        d: dict[str, Any] = {
            "variant_id": self.variant_id,
            "start_time": self.start_time,
            "duration_s": round(self.duration_s, 6),
            "exit_code": self.exit_code,
            "status": self.status.value,
            "output_path": self.output_path,
            "user_time_s": round(self.user_time_s, 6),
            "sys_time_s": round(self.sys_time_s, 6),
            "phase": self.phase,
        }
        if self.error:
            d["error"] = self.error
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionResult:
        """Deserialize from a dict, ignoring unknown fields."""
        known = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in known}
        filtered["status"] = ExecutionStatus(filtered["status"])
        return cls(**filtered)


# ---------------------------------------------------------------------------
# Matrix report
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MatrixReport:
    """Outcome of one matrix run.

    ``failed_at`` is the index into ``results`` of the first failing
    variant, or None when every attempted variant succeeded.
    """

    results: tuple[ExecutionResult, ...]
    status: MatrixStatus
    failed_at: int | None = None
    continue_on_failure: bool = False
    started_at: str = ""
    finished_at: str = ""

    @classmethod
    def from_results(
        cls,
        results: list[ExecutionResult] | tuple[ExecutionResult, ...],
        *,
        continue_on_failure: bool = False,
        started_at: str = "",
        finished_at: str = "",
    ) -> MatrixReport:
        """Build a report, deriving status and ``failed_at`` from *results*."""
        failed_at = next((i for i, r in enumerate(results) if r.failed), None)
        status = MatrixStatus.SUCCEEDED if failed_at is None else MatrixStatus.FAILED
        return cls(
            results=tuple(results),
            status=status,
            failed_at=failed_at,
            continue_on_failure=continue_on_failure,
            started_at=started_at,
            finished_at=finished_at,
        )

    @property
    def succeeded(self) -> bool:
        return self.status is MatrixStatus.SUCCEEDED

    @property
    def failures(self) -> list[ExecutionResult]:
        """Every failed result, in execution order."""
        return [r for r in self.results if r.failed]

    @property
    def total_duration_s(self) -> float:
        """Sum of the timed build durations."""
        return sum(r.duration_s for r in self.results)

    def result_for(self, variant_id: str) -> ExecutionResult | None:
        """Return the result for *variant_id*, or None if it was not attempted."""
        for r in self.results:
            if r.variant_id == variant_id:
                return r
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "status": self.status.value,
            "failed_at": self.failed_at,
            "continue_on_failure": self.continue_on_failure,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "results": [r.to_dict() for r in self.results],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MatrixReport:
        """Deserialize from a dict."""
        return cls(
            results=tuple(ExecutionResult.from_dict(r) for r in data.get("results", [])),
            status=MatrixStatus(data["status"]),
            failed_at=data.get("failed_at"),
            continue_on_failure=data.get("continue_on_failure", False),
            started_at=data.get("started_at", ""),
            finished_at=data.get("finished_at", ""),
        )


# ---------------------------------------------------------------------------
# I/O functions
# ---------------------------------------------------------------------------


def save_report(path: Path, report: MatrixReport) -> None:
    """Write *report* as indented JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report.to_dict(), indent=2) + "\n")
    log.info("Wrote %s", path)


def load_report(path: Path) -> MatrixReport:
    """Load a report written by :func:`save_report`.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: If *path* is not valid JSON or not a matrix report.
    """
    if not path.exists():
        raise FileNotFoundError(f"Report not found: {path}")
    try:
        data = json.loads(path.read_text())
        if not isinstance(data, dict):
            raise TypeError(f"expected a JSON object, got {type(data).__name__}")
        report = MatrixReport.from_dict(data)
        if report.failed_at is not None and not 0 <= report.failed_at < len(report.results):
            raise ValueError("failed_at out of range")
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise ValueError(f"Not a buildbench report: {path} ({exc})") from exc
    return report
