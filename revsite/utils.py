from __future__ import annotations

import posixpath
from urllib.parse import urljoin, urlsplit

from .errors import EncodingError


def parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y", "on"}
    return False


def parse_int(value: object, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def join_url(base: str, path: str) -> str:
    base = base.rstrip("/")
    path = path.lstrip("/")
    if not path:
        return base + "/"
    return f"{base}/{path}"


def base_url_dir(base: str) -> str:
    """Return ``base`` with exactly one trailing slash so it can act as a directory."""
    return base.rstrip("/") + "/"


def is_absolute_url(href: str) -> bool:
    parts = urlsplit(href)
    return bool(parts.scheme) or href.startswith("//")


def resolve_href(page_url: str, href: str) -> str:
    return urljoin(page_url, href)


def path_relative_to_base(url: str, base: str) -> str | None:
    """Return the path of ``url`` relative to ``base``.

    ``None`` is returned when the two URLs live on different origins. A result
    starting with ``../`` means the url escapes the base.
    """
    target = urlsplit(url)
    root = urlsplit(base_url_dir(base))
    if (target.scheme, target.netloc) != (root.scheme, root.netloc):
        return None
    target_path = target.path or "/"
    if target_path.startswith(root.path):
        return target_path[len(root.path):]
    relative = posixpath.relpath(target_path, root.path)
    if target_path.endswith("/") and relative != ".":
        relative += "/"
    return relative


def relative_route(from_route: str, to_route: str) -> str:
    """Relative URL that leads from the page at ``from_route`` to ``to_route``."""
    start = posixpath.dirname(from_route) or "."
    return posixpath.relpath(to_route, start)


def decode_utf8(data: bytes, logical_path: str, what: str = "file") -> str:
    try:
        return bytes(data).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise EncodingError(logical_path, what) from exc
