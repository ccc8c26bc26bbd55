from __future__ import annotations

import html
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import markdown

MARKDOWN_EXTENSIONS = ["fenced_code", "tables", "codehilite"]
LINK_TAG_RE = re.compile(r"<(?P<name>a|link)(?P<attrs>\s[^>]*)?>", re.IGNORECASE)
HREF_RE = re.compile(
    r"""(?P<lead>\shref\s*=\s*)(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)'|(?P<bare>[^\s"'>]+?)(?=/?$|\s))""",
    re.IGNORECASE,
)
INTEGRITY_RE = re.compile(
    r"""\sintegrity\s*=\s*(?:"[^"]*"|'[^']*'|[^\s"'>]+)""",
    re.IGNORECASE,
)
LATE_KEYS = ("content",)


@dataclass(slots=True)
class LinkTarget:
    href: str
    route: str
    integrity: str | None = None


def render_markdown(text: str) -> str:
    md = markdown.Markdown(extensions=MARKDOWN_EXTENSIONS)
    return md.convert(text)


def render_template(template: str, **context: str) -> str:
    output = template
    for key, value in context.items():
        if key in LATE_KEYS:
            continue
        output = _substitute(output, key, value)
    for key in LATE_KEYS:
        if key in context:
            output = _substitute(output, key, context[key])
    return output


def _substitute(output: str, key: str, value: str) -> str:
    output = output.replace(f"{{{{{{{key}}}}}}}", value)
    return output.replace(f"{{{{{key}}}}}", value)


def rewrite_html(html_text: str, resolve: Callable[[str, str], LinkTarget | None]) -> str:
    """Rewrite the ``href`` of every ``<a>`` and ``<link>`` tag.

    ``resolve(tag_name, href)`` returns the replacement target or ``None`` to
    leave the tag untouched. ``<link>`` tags also receive the target's
    ``integrity`` attribute when one is given.
    """

    def repl(match: re.Match) -> str:
        name = match.group("name")
        attrs = match.group("attrs") or ""
        href_match = HREF_RE.search(attrs)
        if href_match is None:
            return match.group(0)
        raw = _attr_value(href_match)
        target = resolve(name.lower(), html.unescape(raw))
        if target is None:
            return match.group(0)
        attrs = (
            attrs[: href_match.start()]
            + f'{href_match.group("lead")}"{html.escape(target.href, quote=True)}"'
            + attrs[href_match.end() :]
        )
        if name.lower() == "link" and target.integrity:
            attrs = _set_integrity(attrs, target.integrity)
        return f"<{name}{attrs}>"

    return LINK_TAG_RE.sub(repl, html_text)


def _attr_value(match: re.Match) -> str:
    for group in ("dq", "sq", "bare"):
        value = match.group(group)
        if value is not None:
            return value
    return ""


def _set_integrity(attrs: str, integrity: str) -> str:
    attrs = INTEGRITY_RE.sub("", attrs)
    closing = ""
    stripped = attrs.rstrip()
    if stripped.endswith("/"):
        closing = " /"
        stripped = stripped[:-1].rstrip()
    return f'{stripped} integrity="{integrity}"{closing}'


def write_text(path: Path, text: str) -> None:
    write_bytes(path, text.encode("utf-8"))


def write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
