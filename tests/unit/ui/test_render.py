from __future__ import annotations

import io
import sys

import pytest

from publisher_info_store.ui.render import create_renderer


class _TtyBuffer(io.StringIO):
    def isatty(self) -> bool:
        return True


def test_status_labels_are_plain_text_even_on_a_terminal(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    buffer = _TtyBuffer()
    monkeypatch.setattr(sys, "stdout", buffer)
    monkeypatch.delenv("NO_COLOR", raising=False)

    renderer = create_renderer()
    renderer.ok("activity_visits_rebuild")
    renderer.fail("activity_visits_rebuild: FOREIGN KEY constraint failed")

    assert buffer.getvalue().splitlines() == [
        "  OK  activity_visits_rebuild",
        "  FAIL  activity_visits_rebuild: FOREIGN KEY constraint failed",
    ]


def test_table_pads_columns_and_skips_empty_rows(capsys: pytest.CaptureFixture[str]) -> None:
    renderer = create_renderer()

    renderer.table(["publisher", "duration"], [])
    renderer.table(["publisher", "duration"], [["a.com", "120"], ["long.example", "5"]])

    assert capsys.readouterr().out.splitlines() == [
        "  publisher     duration",
        "  ------------  --------",
        "  a.com         120     ",
        "  long.example  5       ",
    ]
