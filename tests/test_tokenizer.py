from __future__ import annotations

import pytest

from tradelog.ingest.tokenizer import (
    normalize_delimiter,
    numbered_lines,
    split_lines,
    tokenize_line,
    tokenize_text,
)


def test_quoted_field_keeps_delimiter() -> None:
    assert tokenize_line('a,"b,c",d', ",") == ["a", "b,c", "d"]


def test_quotes_toggle_without_escape_doubling() -> None:
    assert tokenize_line('x,"say ""hi""",y') == ["x", "say hi", "y"]


def test_fields_are_trimmed_and_trailing_empty_field_kept() -> None:
    assert tokenize_line("  NQ ; Long ;", ";") == ["NQ", "Long", ""]


def test_split_lines_handles_crlf_and_blank_lines() -> None:
    text = "\r\n\nh1,h2\r\n1,2\r\n\r\n  \n3,4\n\n"
    assert split_lines(text) == ["h1,h2", "1,2", "3,4"]


def test_numbered_lines_keep_positions_of_the_raw_text() -> None:
    text = "\r\n\nh1,h2\r\n1,2\r\n\r\n  \n3,4\n\n"
    assert numbered_lines(text) == [(3, "h1,h2"), (4, "1,2"), (7, "3,4")]


def test_tokenize_text_uses_tab_delimiter() -> None:
    rows = tokenize_text("Symbol\tQty\nES\t2\n", normalize_delimiter("tab"))
    assert rows == [["Symbol", "Qty"], ["ES", "2"]]


def test_normalize_delimiter_aliases() -> None:
    assert normalize_delimiter(None) == ","
    assert normalize_delimiter("") == ","
    assert normalize_delimiter("\\t") == "\t"
    assert normalize_delimiter("TAB") == "\t"
    assert normalize_delimiter(";") == ";"
    with pytest.raises(ValueError, match="Unsupported delimiter"):
        normalize_delimiter("|")
