"""Delimited-text splitting for broker CSV exports.

A bare double quote always toggles quoted mode and is dropped from the output;
there is no ``""`` escape. Delimiters inside a quoted run are kept literally.
"""

from __future__ import annotations

import re

DELIMITERS = {
    ",": ",",
    ";": ";",
    "\t": "\t",
    "\\t": "\t",
    "tab": "\t",
}

_LINE_BREAK_RE = re.compile(r"\r?\n")


def normalize_delimiter(value: str | None) -> str:
    if value is None or value == "":
        return ","
    key = value if value in DELIMITERS else value.strip().lower()
    try:
        return DELIMITERS[key]
    except KeyError:
        raise ValueError(f"Unsupported delimiter {value!r}; use ',', ';' or tab.") from None


def tokenize_line(line: str, delimiter: str = ",") -> list[str]:
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False

    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    fields.append("".join(current).strip())
    return fields


def numbered_lines(text: str) -> list[tuple[int, str]]:
    """Non-blank trimmed lines with their 1-based position in ``text``."""
    numbered = []
    for number, line in enumerate(_LINE_BREAK_RE.split(text), start=1):
        line = line.strip()
        if line:
            numbered.append((number, line))
    return numbered


def split_lines(text: str) -> list[str]:
    return [line for _, line in numbered_lines(text)]


def tokenize_text(text: str, delimiter: str = ",") -> list[list[str]]:
    return [tokenize_line(line, delimiter) for line in split_lines(text)]
