"""Publishes a revision for distribution."""

from __future__ import annotations

import html
import logging
from pathlib import Path
from urllib.parse import unquote, urlsplit

from sqlalchemy.orm import Session

from .cache import ContentStore, sri_hash
from .content import byte_offset, parse_front_matter, parse_page_meta
from .errors import IntegrityError, InvalidPathError, TemplateNotFound
from .models import InputFile, Page, Revision, Route, input_files_for_revision, routes_for_revision, template_for_revision
from .render import LinkTarget, render_markdown, render_template, rewrite_html, write_bytes, write_text
from .revision import FileKind, classify, extension
from .utils import decode_utf8, is_absolute_url, join_url, path_relative_to_base, relative_route, resolve_href

logger = logging.getLogger(__name__)

FALLBACK_PREFIXES = ("assets/", "static/", "content/")
CONTEXT_KEYS = ("title", "description", "summary", "excerpt", "keywords")


def publish_revision(
    session: Session,
    revision: Revision,
    dest: Path,
    base_url: str,
    store: ContentStore,
) -> int:
    """Render every route of ``revision`` below ``dest``. Returns the number of files written."""
    dest = Path(dest)
    if dest.exists():
        if not dest.is_dir():
            raise InvalidPathError(f"build directory is not a directory: {dest}")
    else:
        dest.mkdir(parents=True)
    publisher = Publisher(session, revision, dest, base_url, store)
    return publisher.run()


class Publisher:
    def __init__(
        self,
        session: Session,
        revision: Revision,
        dest: Path,
        base_url: str,
        store: ContentStore,
    ) -> None:
        self.session = session
        self.revision = revision
        self.dest = dest
        self.base_url = base_url
        self.store = store
        self.routes = routes_for_revision(session, revision.id)
        self.files = {item.id: item for item in input_files_for_revision(session, revision.id)}
        self.route_table = {route.route: route.input_file_id for route in self.routes}
        self.logical_routes: dict[str, str] = {}
        for route in self.routes:
            logical_path = self.files[route.input_file_id].logical_path
            self.logical_routes.setdefault(logical_path, route.route)
        self._templates: dict[str, str] = {}
        self._integrity: dict[str, str] = {}

    def run(self) -> int:
        for route in self.routes:
            self.publish_route(route)
        return len(self.routes)

    def publish_route(self, route: Route) -> None:
        path = self.dest / route.route
        path.parent.mkdir(parents=True, exist_ok=True)
        input_file = self.files[route.input_file_id]
        kind, _ = classify(input_file.logical_path)
        logger.debug("Writing file: %s", path)

        if kind is FileKind.CONTENT:
            write_text(path, self.render_page(route, input_file))
        elif kind in (FileKind.ASSET, FileKind.STATIC):
            if input_file.contents is None:
                self.store.copy_to(input_file.cache_file_name, path)
            elif extension(input_file.logical_path) == "html":
                text = decode_utf8(input_file.contents, input_file.logical_path)
                write_text(path, self.rewrite(text, route.route))
            else:
                write_bytes(path, input_file.contents)

    def render_page(self, route: Route, input_file: InputFile) -> str:
        if input_file.contents is None:
            raise IntegrityError(f"content page has no inline contents: {input_file.logical_path}")
        page = self.session.get(Page, input_file.id)
        if page is None:
            page = self._page_from_contents(input_file)
        body = decode_utf8(input_file.contents[page.offset :], input_file.logical_path, "page")
        rendered = render_markdown(body)
        if page.template:
            context = page_context(page)
            rendered = render_template(self.template(page.template), content=rendered, **context)
        return self.rewrite(rendered, route.route)

    def _page_from_contents(self, input_file: InputFile) -> Page:
        text = decode_utf8(input_file.contents, input_file.logical_path, "page")
        front_matter, contents_start, _ = parse_front_matter(text)
        meta = parse_page_meta(front_matter)
        return Page(
            input_file_id=input_file.id,
            front_matter=front_matter,
            offset=byte_offset(text, contents_start),
            template=meta.template,
            title=meta.title,
            description=meta.description,
            summary=meta.summary,
            excerpt=meta.excerpt,
            keywords=meta.keywords,
            date=meta.date,
        )

    def template(self, name: str) -> str:
        cached = self._templates.get(name)
        if cached is not None:
            return cached
        input_file = template_for_revision(self.session, self.revision.id, name)
        if input_file is None:
            raise TemplateNotFound(f"template not found in revision {self.revision.id}: {name}")
        data = input_file.contents
        if data is None:
            data = self.store.read(input_file.cache_file_name)
        text = decode_utf8(data, input_file.logical_path, "template")
        self._templates[name] = text
        return text

    def rewrite(self, html_text: str, page_route: str) -> str:
        page_url = join_url(self.base_url, page_route)
        return rewrite_html(html_text, lambda tag, href: self.resolve(page_route, page_url, tag, href))

    def resolve(self, page_route: str, page_url: str, tag: str, href: str) -> LinkTarget | None:
        href = href.strip()
        if not href or href.startswith("#") or is_absolute_url(href):
            return None
        parts = urlsplit(resolve_href(page_url, href))
        relative = path_relative_to_base(parts._replace(query="", fragment="").geturl(), self.base_url)
        if relative is None or relative.startswith("../"):
            logger.debug("Link %s in %s points outside the site", href, page_route)
            return None
        relative = unquote(relative)

        route = self._match_route(relative)
        if route is not None:
            new_href = href
        else:
            route = self._match_logical_path(relative)
            if route is None:
                logger.warning("Unresolved link %s in %s", href, page_route)
                return None
            new_href = relative_route(page_route, route)
            if parts.query:
                new_href += "?" + parts.query
            if parts.fragment:
                new_href += "#" + parts.fragment

        integrity = self.integrity(route) if tag == "link" else None
        return LinkTarget(href=new_href, route=route, integrity=integrity)

    def _match_route(self, relative: str) -> str | None:
        candidates = [relative]
        if relative in ("", ".") or relative.endswith("/"):
            candidates = [relative.rstrip(".") + "index.html"]
        for candidate in candidates:
            if candidate in self.route_table:
                return candidate
        return None

    def _match_logical_path(self, relative: str) -> str | None:
        for prefix in FALLBACK_PREFIXES:
            route = self.logical_routes.get(prefix + relative)
            if route is not None:
                return route
        return None

    def integrity(self, route: str) -> str:
        cached = self._integrity.get(route)
        if cached is not None:
            return cached
        input_file = self.files[self.route_table[route]]
        data = input_file.contents
        if data is None:
            data = self.store.read(input_file.cache_file_name)
        value = sri_hash(data)
        self._integrity[route] = value
        return value


def page_context(page: Page) -> dict[str, str]:
    context = {}
    for key in CONTEXT_KEYS:
        value = getattr(page, key)
        context[key] = html.escape(value) if value else ""
    context["date"] = page.date.isoformat() if page.date else ""
    return context
