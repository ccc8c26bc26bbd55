"""Builds a revision.

Consumes the hashed assets of one scan and records them, inside the caller's
transaction, as a new immutable revision.
"""

from __future__ import annotations

import enum
import logging
import posixpath
from typing import Iterable

import csscompressor
from sqlalchemy.orm import Session

from .assets import Asset
from .cache import ContentStore, hash_hex, input_file_id
from .content import byte_offset, parse_front_matter, parse_page_meta
from .errors import ClassificationError, FrontMatterError, RouteConflictError
from .models import Page, Revision, RevisionFile, Route, create_input_file, create_revision_row
from .utils import decode_utf8

logger = logging.getLogger(__name__)

INLINE_EXTENSIONS = frozenset({"hbs", "html", "md"})


class FileKind(enum.Enum):
    ASSET = "assets"
    CONTENT = "content"
    STATIC = "static"
    TEMPLATE = "templates"
    UNKNOWN = ""


def classify(logical_path: str) -> tuple[FileKind, str]:
    """Return the kind of a file and its path below the kind's directory."""
    prefix, _, rest = logical_path.partition("/")
    if rest:
        for kind in FileKind:
            if kind is not FileKind.UNKNOWN and kind.value == prefix:
                return kind, rest
    return FileKind.UNKNOWN, logical_path


def extension(path: str) -> str:
    return posixpath.splitext(path)[1].lstrip(".").lower()


def is_inline(logical_path: str) -> bool:
    return extension(logical_path) in INLINE_EXTENSIONS


def is_stylesheet(kind: FileKind, relative: str) -> bool:
    return kind is FileKind.ASSET and extension(relative) == "css"


def hashed_filename(relative: str, digest: str) -> str:
    directory, name = posixpath.split(relative)
    stem, ext = posixpath.splitext(name)
    return posixpath.join(directory, f"{stem}.{digest}{ext}")


def content_route(relative: str) -> str | None:
    if not relative.endswith(".md"):
        return None
    return relative[: -len(".md")] + ".html"


def minify_stylesheet(asset: Asset) -> Asset:
    text = decode_utf8(asset.contents.tobytes(), asset.meta.logical_path, "stylesheet")
    return asset.with_contents(csscompressor.compress(text).encode("utf-8"))


def create_revision(
    session: Session,
    assets: Iterable[Asset],
    store: ContentStore,
    unknown_files: str = "error",
) -> Revision:
    """Record every asset in ``assets`` as part of a new revision.

    Must run inside a transaction: any exception leaves nothing visible.
    Files written to ``store`` are not rolled back.
    """
    revision = create_revision_row(session)
    routes: dict[str, str] = {}
    count = 0
    for asset in assets:
        try:
            if _add_asset(session, revision, asset, store, routes, unknown_files):
                count += 1
        finally:
            asset.release()
    logger.info("Revision %d holds %d files and %d routes", revision.id, count, len(routes))
    return revision


def _add_asset(
    session: Session,
    revision: Revision,
    asset: Asset,
    store: ContentStore,
    routes: dict[str, str],
    unknown_files: str,
) -> bool:
    logical_path = asset.meta.logical_path
    kind, relative = classify(logical_path)
    if kind is FileKind.UNKNOWN:
        if unknown_files == "skip":
            logger.warning("Skipping file outside the source directories: %s", logical_path)
            return False
        raise ClassificationError(logical_path)

    if is_stylesheet(kind, relative):
        asset = minify_stylesheet(asset)

    digest = hash_hex(asset.hash)
    file_id = input_file_id(logical_path, asset.hash)
    inline = is_inline(logical_path)
    data = asset.contents.tobytes() if inline else None

    created = create_input_file(session, file_id, logical_path, asset.hash, data)
    if not inline:
        store.store(digest, asset.contents.data)
    session.add(RevisionFile(revision_id=revision.id, input_file_id=file_id))

    if kind is FileKind.ASSET:
        route = hashed_filename(relative, digest) if is_stylesheet(kind, relative) else relative
        _add_route(session, revision, route, file_id, routes)
    elif kind is FileKind.STATIC:
        _add_route(session, revision, relative, file_id, routes)
    elif kind is FileKind.CONTENT:
        route = content_route(relative)
        if route is not None:
            _add_route(session, revision, route, file_id, routes)
            _add_page(session, asset, file_id, created)

    session.flush()
    return True


def _add_route(
    session: Session, revision: Revision, route: str, file_id: str, routes: dict[str, str]
) -> None:
    if route in routes:
        raise RouteConflictError(route, routes[route], file_id)
    routes[route] = file_id
    logger.debug("Adding route: %s", route)
    session.add(Route(revision_id=revision.id, route=route, input_file_id=file_id))


def _add_page(session: Session, asset: Asset, file_id: str, created: bool) -> None:
    try:
        text = asset.contents.tobytes().decode("utf-8")
    except UnicodeDecodeError as exc:
        error = FrontMatterError("content is not valid UTF-8")
        error.path = asset.meta.logical_path
        raise error from exc
    try:
        front_matter, contents_start, _ = parse_front_matter(text)
        meta = parse_page_meta(front_matter)
    except FrontMatterError as exc:
        exc.path = asset.meta.logical_path
        raise
    if not created:
        return
    session.add(
        Page(
            input_file_id=file_id,
            front_matter=front_matter,
            offset=byte_offset(text, contents_start),
            date=meta.date,
            description=meta.description,
            excerpt=meta.excerpt,
            draft=meta.draft,
            expiry_date=meta.expiry_date,
            keywords=meta.keywords,
            template=meta.template,
            publish_date=meta.publish_date,
            summary=meta.summary,
            title=meta.title,
        )
    )
