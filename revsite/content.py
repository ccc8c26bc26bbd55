from __future__ import annotations

import datetime as dt
from dataclasses import dataclass

try:
    import tomllib as toml
except ImportError:
    import tomli as toml

from .errors import FrontMatterError, InvalidStartMarker, UnexpectedEof
from .utils import parse_bool

MIN_MARKER_COUNT = 3
MARKER = "+"
LINE_BREAKS = ("\n", "\r")
DATE_KEYS = ("date", "expiry_date", "publish_date")
TEXT_KEYS = ("description", "excerpt", "summary", "template", "title")


@dataclass(slots=True)
class SearchForBeginMarker:
    pass


@dataclass(slots=True)
class StartedBeginMarker:
    marker_count: int


@dataclass(slots=True)
class EndedBeginMarker:
    marker_count: int


@dataclass(slots=True)
class StartedFrontMatter:
    marker_count: int
    front_matter_start: int
    front_matter_end: int
    end_marker_count: int | None


@dataclass(slots=True)
class EndedFrontMatter:
    front_matter_start: int
    front_matter_end: int


@dataclass(slots=True)
class Done:
    front_matter_start: int
    front_matter_end: int
    contents_start: int


def parse_front_matter(text: str) -> tuple[str | None, int, str]:
    """Split ``text`` into ``(front_matter, contents_start, body)``.

    A front matter block opens with a line of at least three ``+`` and closes
    with a line holding the same number of ``+``. Without an opening marker the
    whole text is the body and the offset is 0. ``contents_start`` is a
    character index into ``text``.
    """
    state: object = SearchForBeginMarker()

    for idx, ch in enumerate(text):
        if isinstance(state, SearchForBeginMarker):
            if ch == MARKER:
                state = StartedBeginMarker(marker_count=1)
            elif ch not in LINE_BREAKS:
                return None, 0, text

        elif isinstance(state, StartedBeginMarker):
            if ch == MARKER:
                state.marker_count += 1
            elif ch in LINE_BREAKS:
                if state.marker_count < MIN_MARKER_COUNT:
                    raise InvalidStartMarker()
                state = EndedBeginMarker(marker_count=state.marker_count)
            else:
                raise InvalidStartMarker()

        elif isinstance(state, EndedBeginMarker):
            if ch in LINE_BREAKS:
                continue
            state = StartedFrontMatter(
                marker_count=state.marker_count,
                front_matter_start=idx,
                front_matter_end=idx,
                end_marker_count=1 if ch == MARKER else 0,
            )

        elif isinstance(state, StartedFrontMatter):
            if ch in LINE_BREAKS:
                if state.end_marker_count == state.marker_count:
                    state = EndedFrontMatter(state.front_matter_start, state.front_matter_end)
                else:
                    state.front_matter_end = idx
                    state.end_marker_count = 0
            elif ch == MARKER:
                if state.end_marker_count is not None:
                    state.end_marker_count += 1
            else:
                state.front_matter_end = idx
                state.end_marker_count = None

        elif isinstance(state, EndedFrontMatter):
            if ch in LINE_BREAKS:
                continue
            state = Done(state.front_matter_start, state.front_matter_end, idx)
            break

    if isinstance(state, SearchForBeginMarker):
        return None, 0, text
    if isinstance(state, StartedFrontMatter) and state.end_marker_count == state.marker_count:
        # closing marker on the last line, without a trailing line break
        state = EndedFrontMatter(state.front_matter_start, state.front_matter_end)
    if isinstance(state, EndedFrontMatter):
        state = Done(state.front_matter_start, state.front_matter_end, len(text))
    if not isinstance(state, Done):
        raise UnexpectedEof()

    front_matter = text[state.front_matter_start : state.front_matter_end]
    return front_matter, state.contents_start, text[state.contents_start :]


def byte_offset(text: str, char_offset: int) -> int:
    return len(text[:char_offset].encode("utf-8"))


@dataclass(slots=True)
class PageMeta:
    date: dt.datetime | None = None
    description: str | None = None
    excerpt: str | None = None
    draft: bool = False
    expiry_date: dt.datetime | None = None
    keywords: str | None = None
    publish_date: dt.datetime | None = None
    summary: str | None = None
    template: str | None = None
    title: str | None = None


def parse_page_meta(front_matter: str | None, now: dt.datetime | None = None) -> PageMeta:
    """Read the recognised keys out of a TOML front matter block.

    Dates are normalised to naive UTC. A date without a time takes the current
    local time of day, a time without a date takes today's local date, and a
    value without an offset is read in the local offset.
    """
    meta = PageMeta()
    if front_matter is None:
        return meta
    try:
        document = toml.loads(front_matter)
    except toml.TOMLDecodeError as exc:
        raise FrontMatterError(f"invalid TOML front matter: {exc}") from exc

    local_now = (now or dt.datetime.now()).astimezone()
    for key in DATE_KEYS:
        if key in document:
            setattr(meta, key, parse_date(document[key], local_now, key))
    for key in TEXT_KEYS:
        value = document.get(key)
        if value is not None:
            setattr(meta, key, str(value))
    keywords = document.get("keywords")
    if isinstance(keywords, list):
        meta.keywords = ", ".join(str(item) for item in keywords)
    elif keywords is not None:
        meta.keywords = str(keywords)
    meta.draft = parse_bool(document.get("draft", False))
    return meta


def parse_date(value: object, now: dt.datetime, key: str = "date") -> dt.datetime:
    if isinstance(value, str):
        value = _parse_date_string(value.strip(), key)
    if isinstance(value, dt.datetime):
        moment = value
    elif isinstance(value, dt.date):
        moment = dt.datetime.combine(value, now.time())
    elif isinstance(value, dt.time):
        moment = dt.datetime.combine(now.date(), value)
    else:
        raise FrontMatterError(f"invalid datetime for {key}: {value!r}")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=now.tzinfo)
    return moment.astimezone(dt.timezone.utc).replace(tzinfo=None)


def _parse_date_string(text: str, key: str) -> dt.datetime | dt.date | dt.time:
    for parse in (dt.date.fromisoformat, dt.datetime.fromisoformat, dt.time.fromisoformat):
        try:
            return parse(text)
        except ValueError:
            continue
    raise FrontMatterError(f"invalid datetime for {key}: {text!r}")
