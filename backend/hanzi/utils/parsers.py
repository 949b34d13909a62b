"""Character list CSV parsing and rendering.

Uploaded files have a header row followed by
`Character,Pinyin,Meaning,Phrase` lines. Columns are positional; the
header text itself is not checked so spreadsheet exports with localized
headings still import. Parsers return plain dictionaries; the service
layer validates and stores them.
"""

import csv
import io
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import ValidationError
from ..models import Character

EXPORT_HEADER = ("Character", "Pinyin", "Meaning", "Phrase")
TEMPLATE_CSV = "Character,Pinyin,Meaning,Phrase\n备,bèi,prepare,准备\n文,wén,writing,文字"


def decode_upload(file_bytes: bytes) -> str:
    """Decode uploaded bytes as UTF-8, dropping a BOM if present."""
    try:
        return file_bytes.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationError("CSV file must be UTF-8 encoded")


def parse_character_csv(file_bytes: bytes, filename: Optional[str] = None) -> Tuple[List[Dict], List[Dict]]:
    """Parse an uploaded character list.

    Returns `(items, errors)`. Each item has `line`, `character`,
    `pinyin`, `meaning` and `phrase` keys. Rows missing any of the first three
    fields are reported in `errors` with their 1-based line number;
    blank lines are ignored.
    """
    if filename and not filename.lower().endswith((".csv", ".txt")):
        raise ValidationError("Unsupported file type; upload a .csv file")
    text = decode_upload(file_bytes)
    reader = csv.reader(io.StringIO(text))
    items = []
    errors = []
    for line_no, row in enumerate(reader, start=1):
        if line_no == 1:
            continue  # header
        fields = [c.strip() for c in row]
        if not any(fields):
            continue
        fields = fields + [""] * (4 - len(fields))
        char, pinyin, meaning, phrase = fields[:4]
        if not (char and pinyin and meaning):
            errors.append({"line": line_no, "error": "character, pinyin and meaning are required"})
            continue
        items.append({"line": line_no, "character": char, "pinyin": pinyin, "meaning": meaning, "phrase": phrase})
    return items, errors


def render_character_csv(characters: Iterable[Character]) -> str:
    """Render characters in the upload format so an export can be re-imported."""
    lines = [",".join(EXPORT_HEADER)]
    for c in characters:
        lines.append(f"{c.character},{c.pinyin},{c.meaning},{c.phrase or ''}")
    return "\n".join(lines)


def export_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"my-characters-{today.isoformat()}.csv"
