from __future__ import annotations

import logging

import pytest
from sqlalchemy import select

from revsite.cleanup import cleanup, delete_revision
from revsite.db import transaction
from revsite.errors import RevisionNotFound
from revsite.models import InputFile, Page, Revision, RevisionFile, Route


def _cache_name(session_factory, logical_path: str) -> str:
    with session_factory() as session:
        input_file = session.scalars(select(InputFile).where(InputFile.logical_path == logical_path)).one()
        return input_file.contents_hash.hex()


def test_delete_then_cleanup_removes_unreferenced_files(
    write_tree, build, session_factory, store, count_rows
) -> None:
    src = write_tree({"static/foo.txt": "foo", "content/index.md": "+++\ntitle = \"x\"\n+++\nHi"})
    revision = build(src)
    name = _cache_name(session_factory, "static/foo.txt")
    assert store.path_for(name).exists()

    with transaction(session_factory) as session:
        delete_revision(session, revision.id)
    assert count_rows(Revision) == 0
    assert count_rows(Route) == 0
    assert count_rows(RevisionFile) == 0
    assert count_rows(InputFile) == 2

    with transaction(session_factory) as session:
        result = cleanup(session, store)

    assert result.input_files == 2
    assert result.cache_files == 1
    assert result.missing_cache_files == 0
    assert count_rows(InputFile) == 0
    assert count_rows(Page) == 0
    assert not store.path_for(name).exists()


def test_cleanup_keeps_files_of_live_revisions(write_tree, build, session_factory, store, count_rows) -> None:
    src = write_tree({"static/foo.txt": "foo"})
    first = build(src)
    old_name = _cache_name(session_factory, "static/foo.txt")
    write_tree({"static/foo.txt": "bar", "static/shared.txt": "shared"})
    build(src)

    with transaction(session_factory) as session:
        delete_revision(session, first.id)
    with transaction(session_factory) as session:
        result = cleanup(session, store)

    assert result.input_files == 1
    assert not store.path_for(old_name).exists()
    assert count_rows(InputFile) == 2
    with session_factory() as session:
        for input_file in session.scalars(select(InputFile)):
            assert store.path_for(input_file.cache_file_name).exists()


def test_cleanup_without_garbage_does_nothing(write_tree, build, session_factory, store, count_rows) -> None:
    build(write_tree({"static/foo.txt": "foo"}))

    with transaction(session_factory) as session:
        result = cleanup(session, store)

    assert result.input_files == 0
    assert count_rows(InputFile) == 1


def test_missing_cache_file_is_logged(write_tree, build, session_factory, store, caplog) -> None:
    revision = build(write_tree({"static/foo.txt": "foo"}))
    name = _cache_name(session_factory, "static/foo.txt")
    store.path_for(name).unlink()

    with transaction(session_factory) as session:
        delete_revision(session, revision.id)
    with caplog.at_level(logging.ERROR, logger="revsite.cleanup"):
        with transaction(session_factory) as session:
            result = cleanup(session, store)

    assert result.input_files == 1
    assert result.cache_files == 0
    assert result.missing_cache_files == 1
    assert "Cache path does not exist" in caplog.text


def test_delete_unknown_revision(session_factory) -> None:
    with pytest.raises(RevisionNotFound):
        with transaction(session_factory) as session:
            delete_revision(session, 42)
