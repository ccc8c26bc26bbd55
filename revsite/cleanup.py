from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .cache import ContentStore
from .errors import RevisionNotFound
from .models import InputFile, Page, Revision, RevisionFile, Route, get_revision, unreferenced_clause

logger = logging.getLogger(__name__)

SYNC_OFF = {"synchronize_session": False}


@dataclass(slots=True)
class CleanupResult:
    input_files: int = 0
    cache_files: int = 0
    missing_cache_files: int = 0


def cleanup(session: Session, store: ContentStore) -> CleanupResult:
    """Remove input files no revision references, along with their cache entries.

    Runs in the caller's transaction. Relies on the store's isolation level
    against builds running at the same time.
    """
    result = CleanupResult()
    orphan_ids = select(InputFile.id).where(unreferenced_clause())
    for input_file in session.scalars(select(InputFile).where(unreferenced_clause())):
        result.input_files += 1
        name = input_file.cache_file_name
        if name is None:
            continue
        path = store.path_for(name)
        if store.remove(name):
            result.cache_files += 1
            logger.info("Removed file %s", path)
        else:
            result.missing_cache_files += 1
            logger.error("Cache path does not exist for input file %s: %s", input_file.id, path)

    session.execute(delete(Page).where(Page.input_file_id.in_(orphan_ids)), execution_options=SYNC_OFF)
    session.execute(delete(InputFile).where(unreferenced_clause()), execution_options=SYNC_OFF)
    return result


def delete_revision(session: Session, revision_id: int) -> None:
    revision = get_revision(session, revision_id)
    if revision is None:
        raise RevisionNotFound(f"revision {revision_id} does not exist")
    session.execute(delete(Route).where(Route.revision_id == revision_id), execution_options=SYNC_OFF)
    session.execute(delete(RevisionFile).where(RevisionFile.revision_id == revision_id), execution_options=SYNC_OFF)
    session.execute(delete(Revision).where(Revision.id == revision_id), execution_options=SYNC_OFF)
    logger.info("Deleted revision %d", revision_id)
