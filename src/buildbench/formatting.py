"""Shared text formatting helpers for buildbench.

Durations, status labels and aligned tables for CLI output.
"""

from __future__ import annotations

from collections.abc import Sequence


def format_duration(seconds: float) -> str:
    """Format a build duration.

    Examples: ``'0.42s'``, ``'12.30s'``, ``'3m 05.2s'``, ``'1h 02m 05s'``.
    Sub-minute values keep two decimals since that is the range where
    variant differences are usually read off.
    """
    if seconds < 60:
        return f"{seconds:.2f}s"
    if seconds < 3600:
        m, s = divmod(seconds, 60)
        return f"{int(m)}m {s:04.1f}s"
    total = int(seconds)
    h, rest = divmod(total, 3600)
    m, s = divmod(rest, 60)
    return f"{h}h {m:02d}m {s:02d}s"


def format_status_icon(status: str) -> str:
    """Return a visual status label for an execution status string."""
    icons: dict[str, str] = {
        "ok": "✓ OK",
        "fail": "✗ BUILD FAILED",
        "spawn_error": "⚠ SPAWN FAILED",
        "timeout": "⏱ TIMEOUT",
        "succeeded": "✓ SUCCEEDED",
        "failed": "✗ FAILED",
    }
    return icons.get(status, status.upper())


def format_table(
    headers: Sequence[str],
    rows: Sequence[Sequence[str]],
    *,
    right_align: Sequence[int] = (),
    indent: int = 2,
) -> str:
    """Render rows as a space-aligned text table.

    Column widths come from the widest cell.  Columns whose index is in
    *right_align* are right-justified; the rest are left-justified.
    Short rows are padded with empty cells.
    """
    if not headers:
        return ""

    ncols = len(headers)
    cells = [list(headers)] + [list(row)[:ncols] + [""] * (ncols - len(row)) for row in rows]
    widths = [max(len(row[ci]) for row in cells) for ci in range(ncols)]

    prefix = " " * indent
    lines = []
    for row in cells:
        parts = [
            cell.rjust(widths[ci]) if ci in right_align else cell.ljust(widths[ci])
            for ci, cell in enumerate(row)
        ]
        lines.append(prefix + "  ".join(parts).rstrip())
    return "\n".join(lines)
