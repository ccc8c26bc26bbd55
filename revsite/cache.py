from __future__ import annotations

import base64
import hashlib
import logging
import shutil
from pathlib import Path

import blake3

from .errors import IntegrityError

logger = logging.getLogger(__name__)


def content_hash(logical_path: str, data: bytes) -> bytes:
    digest = blake3.blake3()
    digest.update(logical_path.encode("utf-8"))
    digest.update(b"/")
    digest.update(data)
    return digest.digest()


def hash_hex(value: bytes) -> str:
    return value.hex()


def input_file_id(logical_path: str, contents_hash: bytes) -> str:
    return f"{hash_hex(contents_hash)},{logical_path}"


def sri_hash(data: bytes) -> str:
    digest = hashlib.sha384(data).digest()
    return "sha384-" + base64.b64encode(digest).decode("ascii")


class ContentStore:
    """Flat directory of files named by the lowercase hex of their content hash.

    Entries are written at most once and never modified. Writes happen outside
    the metadata transaction, so an aborted build may leave unreferenced files
    behind until ``cleanup`` runs.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, name: str) -> Path:
        return self.root / name

    def store(self, name: str, data: bytes) -> bool:
        """Write ``data`` under ``name`` unless it exists. Returns True when written."""
        path = self.path_for(name)
        if path.exists():
            existing = path.stat().st_size
            if existing != len(data):
                raise IntegrityError(
                    f"cache entry {path} holds {existing} bytes, expected {len(data)}"
                )
            return False
        self.root.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{name}.tmp")
        with tmp_path.open("wb") as stream:
            stream.write(data)
        tmp_path.replace(path)
        logger.debug("Cached %s (%d bytes)", name, len(data))
        return True

    def require(self, name: str) -> Path:
        path = self.path_for(name)
        if not path.is_file():
            raise IntegrityError(f"cache entry is missing: {path}")
        return path

    def read(self, name: str) -> bytes:
        return self.require(name).read_bytes()

    def copy_to(self, name: str, dest: Path) -> None:
        shutil.copyfile(self.require(name), dest)

    def remove(self, name: str) -> bool:
        path = self.path_for(name)
        if not path.exists():
            return False
        path.unlink()
        return True
