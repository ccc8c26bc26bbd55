from __future__ import annotations

import datetime as dt

import pytest

from revsite.content import byte_offset, parse_front_matter, parse_page_meta
from revsite.errors import FrontMatterError, InvalidStartMarker, UnexpectedEof


def test_no_front_matter() -> None:
    text = "\nHello world!;\n"
    assert parse_front_matter(text) == (None, 0, text)


def test_plain_text_is_returned_unchanged() -> None:
    assert parse_front_matter("no markers here") == (None, 0, "no markers here")


@pytest.mark.parametrize("text", ["", "\n\n", "\r\n"])
def test_blank_input_has_no_front_matter(text: str) -> None:
    assert parse_front_matter(text) == (None, 0, text)


def test_unterminated_front_matter_is_eof() -> None:
    text = '\n+++\ntitle = "Hello World!"\n\nHello.\n'
    with pytest.raises(UnexpectedEof):
        parse_front_matter(text)


@pytest.mark.parametrize("text", ["+++", "+++\n", "+++\n\n"])
def test_only_opening_marker_is_eof(text: str) -> None:
    with pytest.raises(UnexpectedEof):
        parse_front_matter(text)


def test_invalid_start_marker_wrong_characters() -> None:
    text = '\n+a+\ntitle = "Hello World!"\n+a+\nHello.\n'
    with pytest.raises(InvalidStartMarker):
        parse_front_matter(text)


def test_invalid_start_marker_not_enough_chars() -> None:
    text = '\n++\ntitle = "Hello World!"\n++\nHello.\n'
    with pytest.raises(InvalidStartMarker):
        parse_front_matter(text)


def test_empty_front_matter() -> None:
    assert parse_front_matter("\n+++\n+++\nHello.") == ("", 9, "Hello.")
    assert parse_front_matter("+++\n+++\nBody") == ("", 8, "Body")


def test_simple_front_matter() -> None:
    text = '\n+++\ntitle = "Hello World!"\n+++\nHello.'
    assert parse_front_matter(text) == ('title = "Hello World!"', 32, "Hello.")


def test_multiline_front_matter_skips_blank_lines_before_body() -> None:
    text = "+++\na = 1\nb = 2\n+++\n\n\nBody\n"
    front_matter, offset, body = parse_front_matter(text)
    assert front_matter == "a = 1\nb = 2"
    assert body == "Body\n"
    assert text[offset:] == body


def test_closing_marker_must_match_opening_count() -> None:
    text = "++++\na = 1\n+++\nb\n++++\nBody"
    front_matter, _, body = parse_front_matter(text)
    assert front_matter == "a = 1\n+++\nb"
    assert body == "Body"


def test_closing_marker_at_end_of_input() -> None:
    assert parse_front_matter("+++\na = 1\n+++") == ("a = 1", 13, "")
    assert parse_front_matter("+++\na = 1\n+++\n\n") == ("a = 1", 15, "")


def test_single_character_body() -> None:
    assert parse_front_matter("+++\n+++\nH") == ("", 8, "H")


def test_crlf_line_breaks() -> None:
    assert parse_front_matter("+++\r\n+++\r\nBody") == ("", 10, "Body")


def test_parsing_the_body_again_finds_no_front_matter() -> None:
    _, _, body = parse_front_matter('+++\ntitle = "x"\n+++\nSome body text.')
    assert parse_front_matter(body) == (None, 0, body)


def test_byte_offset_counts_utf8_bytes() -> None:
    text = "+++\ntitle = \"é\"\n+++\nBody"
    _, offset, _ = parse_front_matter(text)
    assert byte_offset(text, offset) == offset + 1
    assert text.encode("utf-8")[byte_offset(text, offset):] == b"Body"


def test_page_meta_reads_known_keys() -> None:
    now = dt.datetime(2024, 5, 6, 7, 8, 9, tzinfo=dt.timezone.utc)
    meta = parse_page_meta(
        "\n".join(
            [
                'title = "Hi"',
                'template = "base.hbs"',
                'description = "desc"',
                "draft = true",
                'keywords = ["a", "b"]',
                "date = 2024-01-02T03:04:05Z",
                "expiry_date = 2024-02-03T04:05:06+02:00",
                'unknown = "ignored"',
            ]
        ),
        now=now,
    )

    assert meta.title == "Hi"
    assert meta.template == "base.hbs"
    assert meta.description == "desc"
    assert meta.draft is True
    assert meta.keywords == "a, b"
    assert meta.date == dt.datetime(2024, 1, 2, 3, 4, 5)
    assert meta.expiry_date == dt.datetime(2024, 2, 3, 2, 5, 6)
    assert meta.summary is None
    assert meta.publish_date is None


def test_page_meta_defaults() -> None:
    meta = parse_page_meta(None)
    assert meta.title is None
    assert meta.draft is False

    meta = parse_page_meta("")
    assert meta.draft is False
    assert meta.keywords is None


def test_partial_dates_take_the_current_local_time() -> None:
    now = dt.datetime(2024, 5, 6, 7, 8, 9, tzinfo=dt.timezone.utc)
    local_now = now.astimezone()
    meta = parse_page_meta("date = 2024-01-02\npublish_date = 10:30:00", now=now)

    expected_date = (
        dt.datetime.combine(dt.date(2024, 1, 2), local_now.time())
        .replace(tzinfo=local_now.tzinfo)
        .astimezone(dt.timezone.utc)
        .replace(tzinfo=None)
    )
    expected_publish = (
        dt.datetime.combine(local_now.date(), dt.time(10, 30))
        .replace(tzinfo=local_now.tzinfo)
        .astimezone(dt.timezone.utc)
        .replace(tzinfo=None)
    )
    assert meta.date == expected_date
    assert meta.publish_date == expected_publish


def test_quoted_partial_dates_match_native_ones() -> None:
    now = dt.datetime(2024, 5, 6, 13, 45, tzinfo=dt.timezone.utc)

    native = parse_page_meta("date = 2024-01-02\npublish_date = 10:00:00", now=now)
    quoted = parse_page_meta('date = "2024-01-02"\npublish_date = "10:00"', now=now)

    assert quoted.date == native.date
    assert quoted.publish_date == native.publish_date


def test_quoted_datetime_with_offset() -> None:
    meta = parse_page_meta('date = "2024-01-02T03:04:05+01:00"')
    assert meta.date == dt.datetime(2024, 1, 2, 2, 4, 5)


def test_invalid_toml_is_a_front_matter_error() -> None:
    with pytest.raises(FrontMatterError):
        parse_page_meta("title = ")


def test_invalid_date_value_is_rejected() -> None:
    with pytest.raises(FrontMatterError):
        parse_page_meta('date = "not a date"')
