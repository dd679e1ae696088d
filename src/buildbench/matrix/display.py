"""Terminal rendering of variants and matrix reports."""

from __future__ import annotations

from buildbench.formatting import format_duration, format_status_icon, format_table
from buildbench.matrix.results import ExecutionResult, ExecutionStatus, MatrixReport
from buildbench.matrix.variants import VariantRegistry


def format_result_line(result: ExecutionResult) -> str:
    """One summary line: identifier, duration, status.

    Spawn failures carry the spawn error; build failures the exit code.
    A failure in a step other than the build names that step.
    """
    line = f"{result.variant_id:30s} {format_duration(result.duration_s):>12s}  "
    if result.status is ExecutionStatus.FAIL and result.phase != "build":
        line += f"✗ {result.phase.upper()} FAILED"
    else:
        line += format_status_icon(result.status.value)
        if result.failed and result.phase != "build":
            line += f" [{result.phase}]"
    if result.error:
        line += f" ({result.error})"
    elif result.failed and result.exit_code >= 0:
        line += f" (exit {result.exit_code})"
    return line


def format_report(report: MatrixReport, *, total_variants: int | None = None) -> str:
    """Render a per-variant summary and the overall outcome.

    *total_variants* is the number of variants that were scheduled; when
    it exceeds the number of results, the skipped count is shown.
    """
    lines = [format_result_line(r) for r in report.results]
    lines.append("")

    overall = format_status_icon(report.status.value)
    if report.failed_at is not None:
        failed = report.results[report.failed_at]
        overall += f" at variant {report.failed_at + 1} ({failed.variant_id})"
    lines.append(f"Overall: {overall}")

    n_failed = len(report.failures)
    lines.append(
        f"Built {len(report.results)} variant(s), {n_failed} failed, "
        f"total build time {format_duration(report.total_duration_s)}"
    )
    if total_variants is not None and total_variants > len(report.results):
        lines.append(f"Not attempted: {total_variants - len(report.results)} variant(s)")
    return "\n".join(lines)


def format_output_paths(report: MatrixReport) -> str:
    """List where each result's build output was captured, if anywhere."""
    rows = [[r.variant_id, r.output_path] for r in report.results if r.output_path]
    if not rows:
        return ""
    return "Build logs:\n" + format_table(["Variant", "Log"], rows)


def format_registry(registry: VariantRegistry) -> str:
    """Render the registry as a table in declaration order."""
    rows = [
        [
            v.id,
            v.channel.value,
            str(v.codegen_units),
            str(v.threads) if v.threads is not None else "-",
            v.rustflags,
        ]
        for v in registry.enumerate()
    ]
    return format_table(
        ["Variant", "Channel", "Codegen units", "Threads", "RUSTFLAGS"],
        rows,
        right_align=(2, 3),
        indent=0,
    )
