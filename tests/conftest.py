from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest
from sqlalchemy import func, select

from revsite.assets import walk
from revsite.cache import ContentStore
from revsite.db import connect, dispose, transaction
from revsite.revision import create_revision


@pytest.fixture
def write_tree(tmp_path: Path) -> Callable[..., Path]:
    def write(files: dict[str, str | bytes], root: Path | None = None) -> Path:
        root = root or tmp_path / "src"
        root.mkdir(parents=True, exist_ok=True)
        for rel, data in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data.encode("utf-8") if isinstance(data, str) else data)
        return root

    return write


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'site.db'}"


@pytest.fixture
def session_factory(database_url: str):
    factory = connect(database_url)
    yield factory
    dispose(factory)


@pytest.fixture
def store(tmp_path: Path) -> ContentStore:
    return ContentStore(tmp_path / "cache")


@pytest.fixture
def build(session_factory, store: ContentStore):
    def run(src: Path, **kwargs):
        def consume(assets):
            with transaction(session_factory) as session:
                return create_revision(session, assets, store, **kwargs)

        return walk(src, consume, workers=2)

    return run


@pytest.fixture
def count_rows(session_factory):
    def count(model) -> int:
        with session_factory() as session:
            return session.scalar(select(func.count()).select_from(model))

    return count
