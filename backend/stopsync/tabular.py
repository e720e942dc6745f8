"""Quote-aware delimited text handling.

Reading splits one line at a time with a small in-quote / out-of-quote state
machine. Writing uses the same quoting rule the browser client used: a value
is quoted only when it contains a comma or a double quote.
"""

import json
import logging
from typing import Any, Iterable

logger = logging.getLogger("stopsync.tabular")

QUOTE = '"'


def _unquote(raw: str) -> str:
    """Strip the surrounding quotes of one field.

    A properly quoted field also has its doubled interior quotes collapsed.
    A stray quote on only one side is dropped without touching the rest.
    """
    if len(raw) >= 2 and raw[0] == QUOTE and raw[-1] == QUOTE:
        return raw[1:-1].replace('""', QUOTE)
    if raw.startswith(QUOTE):
        raw = raw[1:]
    if raw.endswith(QUOTE):
        raw = raw[:-1]
    return raw


def split_line(line: str, delimiter: str = ",", unquote: bool = True) -> list[str]:
    """Split one line into fields, ignoring delimiters inside quoted spans."""
    fields: list[str] = []
    buf: list[str] = []
    in_quotes = False

    for ch in line:
        if ch == QUOTE:
            # "" inside a field toggles twice and leaves the state unchanged
            in_quotes = not in_quotes
            buf.append(ch)
        elif ch == delimiter and not in_quotes:
            fields.append("".join(buf))
            buf = []
        else:
            buf.append(ch)
    fields.append("".join(buf))

    if in_quotes:
        logger.debug(f"Unbalanced quotes in line: {line[:80]!r}")

    if unquote:
        return [_unquote(f) for f in fields]
    return fields


def split_header(line: str, delimiter: str = ",") -> list[str]:
    """Header tokens are trimmed but otherwise kept verbatim for re-export."""
    return [h.strip() for h in split_line(line, delimiter, unquote=False)]


def split_lines(text: str) -> list[str]:
    """Break a document into non-blank lines (BOM and CR tolerant)."""
    text = text.lstrip("\ufeff").strip()
    if not text:
        return []
    lines = []
    for line in text.split("\n"):
        line = line.rstrip("\r")
        if line.strip():
            lines.append(line)
    return lines


def fit_row(fields: list[str], width: int) -> list[str]:
    """Pad short rows with empty strings and drop fields past the header width."""
    if len(fields) >= width:
        return fields[:width]
    return fields + [""] * (width - len(fields))


def format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def quote_field(value: Any) -> str:
    text = format_value(value)
    if "," in text or QUOTE in text:
        return QUOTE + text.replace(QUOTE, '""') + QUOTE
    return text


def join_row(values: Iterable[Any]) -> str:
    return ",".join(quote_field(v) for v in values)
