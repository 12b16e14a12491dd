"""
Export of analysis results as plain text.
Flattens the markdown returned by the AI into a tab-separated text file.
"""

import re
from dataclasses import dataclass
from typing import Callable, List, Optional

EXPORT_FILENAME = "ket_qua_cat_kinh.txt"
EXPORT_MEDIA_TYPE = "text/plain; charset=utf-8"

SECTION_HEADING_RE = re.compile(r'###\s(\d\.)\s')
BOLD_MARKER = "**"
TABLE_PIPE = "|"
SEPARATOR_LINE_RE = re.compile(r'^---\n', re.MULTILINE)


def replace_section_headings(text: str) -> str:
    """Turn '### N. ' headings into '--- N. ---' dividers."""
    return SECTION_HEADING_RE.sub(r'\n\n--- \1 ---\n', text)


def strip_bold_markers(text: str) -> str:
    return text.replace(BOLD_MARKER, "")


def pipes_to_tabs(text: str) -> str:
    return text.replace(TABLE_PIPE, "\t")


def remove_separator_lines(text: str) -> str:
    """Drop table divider lines consisting of exactly '---'."""
    return SEPARATOR_LINE_RE.sub("", text)


def trim(text: str) -> str:
    return text.strip()


# Applied in this order
EXPORT_RULES: List[Callable[[str], str]] = [
    replace_section_headings,
    strip_bold_markers,
    pipes_to_tabs,
    remove_separator_lines,
    trim,
]


def markdown_to_plain_text(markdown_text: str) -> str:
    """
    Flatten the markdown result into plain text for export.

    Args:
        markdown_text: Result text as returned by the analysis service

    Returns:
        Plain text with section dividers, no bold markers and tab separated tables
    """
    text = markdown_text
    for rule in EXPORT_RULES:
        text = rule(text)
    return text


@dataclass(frozen=True)
class ExportArtifact:
    """A downloadable text file built from an analysis result."""
    filename: str
    media_type: str
    content: bytes

    @property
    def content_disposition(self) -> str:
        return f'attachment; filename="{self.filename}"'


def build_export_artifact(markdown_text: Optional[str]) -> Optional[ExportArtifact]:
    """Build the export file, or None when there is nothing to export."""
    if not markdown_text:
        return None
    return ExportArtifact(
        filename=EXPORT_FILENAME,
        media_type=EXPORT_MEDIA_TYPE,
        content=markdown_to_plain_text(markdown_text).encode("utf-8"),
    )
