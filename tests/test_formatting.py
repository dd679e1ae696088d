"""Tests for buildbench.formatting — shared text helpers."""

from __future__ import annotations

import unittest

from buildbench.formatting import format_duration, format_status_icon, format_table


class TestFormatDuration(unittest.TestCase):
    def test_seconds(self) -> None:
        self.assertEqual(format_duration(0), "0.00s")
        self.assertEqual(format_duration(12.346), "12.35s")

    def test_minutes(self) -> None:
        self.assertEqual(format_duration(65.2), "1m 05.2s")
        self.assertEqual(format_duration(600), "10m 00.0s")

    def test_hours(self) -> None:
        self.assertEqual(format_duration(3725), "1h 02m 05s")


class TestFormatStatusIcon(unittest.TestCase):
    def test_known(self) -> None:
        self.assertEqual(format_status_icon("ok"), "✓ OK")
        self.assertIn("SPAWN", format_status_icon("spawn_error"))
        self.assertIn("BUILD", format_status_icon("fail"))

    def test_unknown_uppercased(self) -> None:
        self.assertEqual(format_status_icon("weird"), "WEIRD")


class TestFormatTable(unittest.TestCase):
    def test_alignment(self) -> None:
        text = format_table(["Name", "N"], [["a", "1"], ["long", "100"]], right_align=(1,))
        lines = text.splitlines()
        self.assertEqual(lines[0], "  Name    N")
        self.assertEqual(lines[1], "  a       1")
        self.assertEqual(lines[2], "  long  100")

    def test_short_rows_padded(self) -> None:
        text = format_table(["A", "B"], [["x"]], indent=0)
        self.assertEqual(text.splitlines()[1], "x")

    def test_no_headers(self) -> None:
        self.assertEqual(format_table([], [["x"]]), "")


if __name__ == "__main__":
    unittest.main()
