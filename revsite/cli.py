from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Iterable, Iterator

from sqlalchemy.exc import SQLAlchemyError

from .assets import Asset, walk
from .cache import ContentStore
from .cleanup import CleanupResult, cleanup, delete_revision
from .config import (
    DEFAULT_BASE_URL,
    DEFAULT_BUILD_DIR,
    DEFAULT_CACHE_DIR,
    DEFAULT_CONFIG,
    UNKNOWN_FILE_POLICIES,
    Settings,
    default_database_url,
    default_log_level,
    load_config,
    settings_from_args,
)
from .db import connect, dispose, transaction
from .errors import RevisionNotFound, SiteError
from .models import Revision, get_revision, latest_revision
from .publish import publish_revision
from .revision import create_revision
from .utils import parse_int

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def create(src: Path, settings: Settings) -> int:
    """Scan ``src`` into a new revision and return its id."""
    session_factory = connect(settings.database_url)
    store = ContentStore(settings.cache_dir)

    def consume(assets: Iterator[Asset]) -> Revision:
        with transaction(session_factory) as session:
            return create_revision(session, assets, store, settings.unknown_files)

    try:
        revision = walk(src, consume, workers=settings.workers)
    finally:
        dispose(session_factory)
    logger.info("Created revision %d", revision.id)
    return revision.id


def publish(revision_id: int | None, base_url: str, build_dir: Path, settings: Settings) -> int:
    session_factory = connect(settings.database_url)
    store = ContentStore(settings.cache_dir)
    try:
        with transaction(session_factory) as session:
            if revision_id is None:
                revision = latest_revision(session)
                if revision is None:
                    raise RevisionNotFound("there are no revisions to publish")
            else:
                revision = get_revision(session, revision_id)
                if revision is None:
                    raise RevisionNotFound(f"revision {revision_id} does not exist")
            logger.info("Building revision %d at %s", revision.id, build_dir)
            publish_revision(session, revision, build_dir, base_url, store)
            return revision.id
    finally:
        dispose(session_factory)


def delete(revision_id: int, settings: Settings) -> None:
    session_factory = connect(settings.database_url)
    try:
        with transaction(session_factory) as session:
            logger.info("Deleting revision %d", revision_id)
            delete_revision(session, revision_id)
    finally:
        dispose(session_factory)


def clean(settings: Settings) -> CleanupResult:
    session_factory = connect(settings.database_url)
    store = ContentStore(settings.cache_dir)
    try:
        with transaction(session_factory) as session:
            logger.info("Cleaning up")
            return cleanup(session, store)
    finally:
        dispose(session_factory)


def run_create(args: argparse.Namespace, settings: Settings) -> None:
    revision_id = create(Path(args.src_dir), settings)
    print(f"Created revision {revision_id}")


def run_publish(args: argparse.Namespace, settings: Settings) -> None:
    build_dir = Path(args.build_dir)
    revision_id = publish(args.revision, args.base_url, build_dir, settings)
    print(f"Published revision {revision_id} to {build_dir}")


def run_delete(args: argparse.Namespace, settings: Settings) -> None:
    delete(args.revision, settings)
    print(f"Deleted revision {args.revision}")


def run_cleanup(args: argparse.Namespace, settings: Settings) -> None:
    result = clean(settings)
    print(
        f"Removed {result.input_files} input files and {result.cache_files} cache files"
        f" ({result.missing_cache_files} missing)."
    )


COMMANDS = {
    "create": run_create,
    "publish": run_publish,
    "delete": run_delete,
    "cleanup": run_cleanup,
}


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    argv = list(sys.argv[1:] if argv is None else argv)
    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument("--config", default=DEFAULT_CONFIG)
    pre_args, _ = pre_parser.parse_known_args(argv)
    config = load_config(Path(pre_args.config))

    def cfg_str(key: str, default: str) -> str:
        value = config.get(key)
        return default if value is None else str(value)

    def cfg_int(key: str, default: int) -> int:
        return parse_int(config.get(key), default)

    parser = argparse.ArgumentParser(description="Incremental static site builder.")
    parser.add_argument("--config", default=pre_args.config, help="Path to site config file (TOML/YAML/JSON).")
    parser.add_argument(
        "--cache-dir",
        default=cfg_str("cache_dir", DEFAULT_CACHE_DIR),
        help="Directory holding content-addressed file contents.",
    )
    parser.add_argument(
        "--database-url",
        default=default_database_url(config),
        help="SQLAlchemy URL of the metadata store (defaults to $DATABASE_URL).",
    )
    parser.add_argument(
        "--workers",
        default=cfg_int("workers", 0),
        type=int,
        help="Number of hashing worker threads (0 = auto).",
    )
    parser.add_argument(
        "--unknown-files",
        choices=UNKNOWN_FILE_POLICIES,
        default=cfg_str("unknown_files", "error"),
        help="What to do with files outside assets/, content/, static/ and templates/.",
    )
    parser.add_argument("--log-level", default=default_log_level(config), help="Logging level.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    create_parser = subparsers.add_parser("create", help="Create a new revision of the site.")
    create_parser.add_argument("-s", "--src-dir", default=cfg_str("src_dir", "./"), help="Source directory.")

    publish_parser = subparsers.add_parser("publish", help="Publish a revision of the site.")
    publish_parser.add_argument(
        "--base-url",
        default=cfg_str("base_url", DEFAULT_BASE_URL),
        help="URL the site is served from, used to resolve links.",
    )
    publish_parser.add_argument(
        "-b",
        "--build-dir",
        default=cfg_str("build_dir", DEFAULT_BUILD_DIR),
        help="Directory to publish the build.",
    )
    publish_parser.add_argument(
        "-r",
        "--revision",
        type=int,
        default=None,
        help="Revision to publish (defaults to the latest).",
    )

    delete_parser = subparsers.add_parser("delete", help="Delete a revision.")
    delete_parser.add_argument("-r", "--revision", type=int, required=True, help="Revision to delete.")

    subparsers.add_parser("cleanup", help="Remove unreachable data in the database and cache.")
    return parser.parse_args(argv)


def configure_logging(args: argparse.Namespace) -> None:
    level = logging.DEBUG if args.verbose else getattr(logging, str(args.log_level).upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def main(argv: Iterable[str] | None = None) -> None:
    try:
        args = parse_args(argv)
        configure_logging(args)
        settings = settings_from_args(args)
        start = time.perf_counter()
        COMMANDS[args.command](args, settings)
    except (SiteError, OSError, SQLAlchemyError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    elapsed = time.perf_counter() - start
    logger.info("Completed in %.2fs.", elapsed)


if __name__ == "__main__":
    main()
