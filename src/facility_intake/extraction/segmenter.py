"""Sheet segmentation and line-aligned chunking.

Spreadsheet converters emit one text blob with ``=== Sheet: <name> ===``
header lines between sheets. :func:`split_sheets` recovers the named blocks;
:func:`chunk_sheet` slices an oversized block into chunks that never split a
line and that concatenate back to the original content exactly.
"""

from __future__ import annotations

import re

from facility_intake.constants import DEFAULT_SHEET_NAME, MAX_CHUNK_SIZE
from facility_intake.core.types import Chunk, Document, Sheet

SHEET_MARKER = re.compile(r"^=== Sheet: (.+?) ===[ \t]*(?:\r?\n|$)", re.MULTILINE)


def split_sheets(text: str, document_id: str) -> list[Sheet]:
    """Split raw document text on sheet markers.

    Text before the first marker is kept as its own sheet when it has any
    non-blank content. Without markers the whole text is one sheet.
    """
    matches = list(SHEET_MARKER.finditer(text))
    if not matches:
        return [Sheet(name=DEFAULT_SHEET_NAME, content=text, document_id=document_id)]

    sheets: list[Sheet] = []
    preamble = text[: matches[0].start()]
    if preamble.strip():
        sheets.append(
            Sheet(name=DEFAULT_SHEET_NAME, content=preamble, document_id=document_id)
        )
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        sheets.append(
            Sheet(
                name=match.group(1).strip(),
                content=text[match.end() : end],
                document_id=document_id,
            )
        )
    return sheets


def chunk_sheet(sheet: Sheet, max_size: int = MAX_CHUNK_SIZE) -> list[Chunk]:
    """Split a sheet into line-aligned chunks of at most ``max_size`` bytes.

    Sizes are UTF-8 byte counts, not character counts.

    Lines keep their terminators, so joining the chunks' content in index
    order reproduces ``sheet.content``. A single line longer than
    ``max_size`` becomes a chunk of its own rather than being cut.
    """
    if max_size < 1:
        raise ValueError("max_size must be positive")
    content = sheet.content
    if len(content.encode()) <= max_size:
        return [
            Chunk(
                sheet_name=sheet.name,
                content=content,
                index=0,
                total=1,
                document_id=sheet.document_id,
            )
        ]

    pieces: list[str] = []
    current: list[str] = []
    current_len = 0
    for line in _lines(content):
        size = len(line.encode())
        if current and current_len + size > max_size:
            pieces.append("".join(current))
            current, current_len = [], 0
        current.append(line)
        current_len += size
    if current:
        pieces.append("".join(current))

    return [
        Chunk(
            sheet_name=sheet.name,
            content=piece,
            index=i,
            total=len(pieces),
            document_id=sheet.document_id,
        )
        for i, piece in enumerate(pieces)
    ]


def sheets_for_document(document: Document) -> list[Sheet]:
    """Sheets for a document, preferring explicit per-sheet data."""
    if document.sheet_data:
        return [
            Sheet(name=name, content=content, document_id=document.document_id)
            for name, content in document.sheet_data.items()
        ]
    return split_sheets(document.text, document.document_id)


def is_substantive(sheet: Sheet, min_chars: int) -> bool:
    return len(sheet.content.strip()) > min_chars


def _lines(text: str) -> list[str]:
    """Split on ``\\n`` only, keeping terminators."""
    lines = text.split("\n")
    out = [line + "\n" for line in lines[:-1]]
    if lines[-1]:
        out.append(lines[-1])
    return out
