from __future__ import annotations

import datetime as dt
import logging

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
    exists,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

logger = logging.getLogger(__name__)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class InputFile(Base):
    """One distinct (logical path, contents) pair, shared by every revision that uses it."""

    __tablename__ = "input_files"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    logical_path: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    contents_hash: Mapped[bytes] = mapped_column(LargeBinary(32), nullable=False)
    contents: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    @property
    def is_inline(self) -> bool:
        return self.contents is not None

    @property
    def cache_file_name(self) -> str | None:
        if self.is_inline:
            return None
        return self.contents_hash.hex()


class Revision(Base):
    __tablename__ = "revisions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class RevisionFile(Base):
    __tablename__ = "revision_files"

    revision_id: Mapped[int] = mapped_column(
        ForeignKey("revisions.id", ondelete="CASCADE"), primary_key=True
    )
    input_file_id: Mapped[str] = mapped_column(
        ForeignKey("input_files.id"), primary_key=True, index=True
    )


class Route(Base):
    __tablename__ = "routes"

    revision_id: Mapped[int] = mapped_column(
        ForeignKey("revisions.id", ondelete="CASCADE"), primary_key=True
    )
    route: Mapped[str] = mapped_column(Text, primary_key=True)
    input_file_id: Mapped[str] = mapped_column(ForeignKey("input_files.id"), nullable=False)


class Page(Base):
    __tablename__ = "pages"

    input_file_id: Mapped[str] = mapped_column(ForeignKey("input_files.id"), primary_key=True)
    front_matter: Mapped[str | None] = mapped_column(Text, nullable=True)
    offset: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    date: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    excerpt: Mapped[str | None] = mapped_column(Text, nullable=True)
    draft: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expiry_date: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)
    keywords: Mapped[str | None] = mapped_column(Text, nullable=True)
    template: Mapped[str | None] = mapped_column(String(255), nullable=True)
    publish_date: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)


def create_revision_row(session: Session) -> Revision:
    revision = Revision()
    session.add(revision)
    session.flush()
    return revision


def create_input_file(
    session: Session,
    file_id: str,
    logical_path: str,
    contents_hash: bytes,
    contents: bytes | None,
) -> bool:
    """Insert the input file unless a row with ``file_id`` exists. Returns True when inserted."""
    if session.get(InputFile, file_id) is not None:
        return False
    session.add(
        InputFile(
            id=file_id,
            logical_path=logical_path,
            contents_hash=contents_hash,
            contents=contents,
        )
    )
    session.flush()
    logger.debug("Inserted input file: %s", file_id)
    return True


def get_revision(session: Session, revision_id: int) -> Revision | None:
    return session.get(Revision, revision_id)


def latest_revision(session: Session) -> Revision | None:
    query = select(Revision).order_by(Revision.created_at.desc(), Revision.id.desc()).limit(1)
    return session.scalars(query).first()


def routes_for_revision(session: Session, revision_id: int) -> list[Route]:
    query = select(Route).where(Route.revision_id == revision_id).order_by(Route.route)
    return list(session.scalars(query))


def input_files_for_revision(session: Session, revision_id: int) -> list[InputFile]:
    query = (
        select(InputFile)
        .join(RevisionFile, RevisionFile.input_file_id == InputFile.id)
        .where(RevisionFile.revision_id == revision_id)
    )
    return list(session.scalars(query))


def template_for_revision(session: Session, revision_id: int, name: str) -> InputFile | None:
    query = (
        select(InputFile)
        .join(RevisionFile, RevisionFile.input_file_id == InputFile.id)
        .where(RevisionFile.revision_id == revision_id)
        .where(InputFile.logical_path == f"templates/{name}")
    )
    return session.scalars(query).first()


def unreferenced_clause():
    return ~exists().where(RevisionFile.input_file_id == InputFile.id)
