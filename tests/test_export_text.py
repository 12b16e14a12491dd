"""Tests for the plain text export transform."""

import pytest

from export_text import (
    EXPORT_FILENAME,
    build_export_artifact,
    markdown_to_plain_text,
    pipes_to_tabs,
    remove_separator_lines,
    replace_section_headings,
    strip_bold_markers,
)


def test_replace_section_headings() -> None:
    """Numbered headings become dividers keeping the section number."""
    assert replace_section_headings("### 2. Plan") == "\n\n--- 2. ---\nPlan"


def test_replace_section_headings_ignores_unnumbered() -> None:
    assert replace_section_headings("### Notes\n") == "### Notes\n"


def test_strip_bold_markers() -> None:
    assert strip_bold_markers("**Pane A** is **2x3**") == "Pane A is 2x3"


def test_pipes_to_tabs() -> None:
    assert pipes_to_tabs("a|b|c") == "a\tb\tc"


def test_remove_separator_lines() -> None:
    """Only lines that are exactly '---' are removed."""
    text = "head\n---\nbody\n--- 1. ---\nnext"
    assert remove_separator_lines(text) == "head\nbody\n--- 1. ---\nnext"


def test_separator_inside_line_is_kept() -> None:
    assert markdown_to_plain_text("A---\nB") == "A---\nB"


def test_pipe_divider_row_survives() -> None:
    assert markdown_to_plain_text("Qty|Size\n---|---\n2|3") == "Qty\tSize\n---\t---\n2\t3"


def test_section_heading_and_bold() -> None:
    output = markdown_to_plain_text("### 1. Items\n**Pane A** 2x3\n")
    assert output.startswith("--- 1. ---\n")
    assert "Pane A 2x3" in output
    assert "**" not in output
    assert output == "--- 1. ---\nItems\nPane A 2x3"


def test_table_flattening() -> None:
    output = markdown_to_plain_text("Qty|Size|Notes\n---\n2|3x4|ok")
    assert output == "Qty\tSize\tNotes\n2\t3x4\tok"


def test_trims_whitespace() -> None:
    assert markdown_to_plain_text("\n\n  plan  \n\n") == "plan"


@pytest.mark.parametrize("text", [
    "Plain text\nwith lines",
    "Khổ 1: 2 tấm\tkính",
    "",
])
def test_idempotent_on_clean_text(text: str) -> None:
    once = markdown_to_plain_text(text)
    assert markdown_to_plain_text(once) == once


def test_export_artifact() -> None:
    artifact = build_export_artifact("**Kính** 5mm")
    assert artifact.filename == EXPORT_FILENAME == "ket_qua_cat_kinh.txt"
    assert artifact.media_type.startswith("text/plain")
    assert artifact.content == "Kính 5mm".encode("utf-8")
    assert artifact.content_disposition == 'attachment; filename="ket_qua_cat_kinh.txt"'


@pytest.mark.parametrize("text", [None, ""])
def test_export_artifact_without_result(text) -> None:
    assert build_export_artifact(text) is None
