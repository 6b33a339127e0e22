"""File-backed store for cached emails.

One Markdown file per email, named after the record's stable id. The store is
read in full by batch commands; each record is written back individually.
"""

from __future__ import annotations

import shutil
from pathlib import Path

import structlog

from outlook_email.exceptions import (
    AmbiguousIdError,
    CacheIOError,
    OutlookEmailError,
    RecordNotFoundError,
)
from outlook_email.models import Record
from outlook_email.storage.codec import decode_record, encode_record

logger = structlog.get_logger()

_SUFFIX = ".md"


def normalize_record_id(value: str) -> str:
    """Turn a file name, path, or id typed by the user into a lookup key."""

    name = Path(value.strip()).name
    for suffix in (".md", ".yml"):
        if name.endswith(suffix):
            name = name[: -len(suffix)]
    return name.lower()


class RecordStore:
    """Repository for reading and writing cached email records."""

    def __init__(self, storage_dir: Path) -> None:
        """Create a store.

        Args:
            storage_dir: Directory holding the cached email files.
        """

        self._storage_dir = storage_dir

    @property
    def storage_dir(self) -> Path:
        return self._storage_dir

    def load_all(self) -> list[Record]:
        """Load every cached record.

        Files that fail to parse are skipped with a warning. A missing storage
        directory is an empty cache.

        Raises:
            CacheIOError: If the storage directory cannot be listed.
        """

        if not self._storage_dir.exists():
            return []

        try:
            paths = sorted(p for p in self._storage_dir.iterdir() if p.name.endswith(_SUFFIX))
        except OSError as exc:
            raise CacheIOError(f"Failed to read storage directory {self._storage_dir}: {exc}") from exc

        records: list[Record] = []
        for path in paths:
            try:
                records.append(self._read(path))
            except (OSError, OutlookEmailError) as exc:
                logger.warning("record_load_failed", path=str(path), error=str(exc))
        return records

    def load(self, record_id: str) -> Record | None:
        """Load one record by its full id, or None when it is not cached."""

        path = self._path(record_id)
        if not path.exists():
            return None
        try:
            return self._read(path)
        except OSError as exc:
            raise CacheIOError(f"Failed to read {path}: {exc}") from exc

    def exists(self, record_id: str) -> bool:
        return self._path(record_id).exists()

    def find(self, partial_id: str) -> Record:
        """Find a record by full id or unique id prefix.

        Raises:
            RecordNotFoundError: If nothing matches.
            AmbiguousIdError: If the prefix matches several records.
        """

        normalized = normalize_record_id(partial_id)
        if not normalized:
            raise RecordNotFoundError(f"Email not found: {partial_id}")

        records = self.load_all()
        for record in records:
            if record.stored_id == normalized:
                return record

        matches = [r for r in records if r.stored_id.startswith(normalized)]
        if not matches:
            raise RecordNotFoundError(f"Email not found: {partial_id}")
        if len(matches) > 1:
            raise AmbiguousIdError(partial_id, [r.stored_id for r in matches])
        return matches[0]

    def save(self, record: Record) -> None:
        """Write a record to its file, replacing any previous content.

        Raises:
            CacheIOError: If the file cannot be written.
        """

        path = self._path(record.stored_id)
        try:
            self._storage_dir.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8", newline="") as fh:
                fh.write(encode_record(record))
        except OSError as exc:
            raise CacheIOError(f"Failed to save email {record.stored_id}: {exc}") from exc
        logger.debug("record_saved", record_id=record.stored_id)

    def delete(self, record_id: str) -> None:
        """Remove a record file.

        Raises:
            CacheIOError: If the file cannot be removed.
        """

        path = self._path(record_id)
        try:
            path.unlink()
        except OSError as exc:
            raise CacheIOError(f"Failed to delete email {record_id}: {exc}") from exc
        logger.debug("record_deleted", record_id=record_id)

    def clear(self) -> int:
        """Remove every entry in the storage directory and return how many were removed."""

        try:
            self._storage_dir.mkdir(parents=True, exist_ok=True)
            entries = list(self._storage_dir.iterdir())
            for entry in entries:
                if entry.is_dir():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
        except OSError as exc:
            raise CacheIOError(f"Failed to clear {self._storage_dir}: {exc}") from exc

        logger.info("storage_cleared", removed=len(entries))
        return len(entries)

    def _path(self, record_id: str) -> Path:
        return self._storage_dir / f"{record_id}{_SUFFIX}"

    def _read(self, path: Path) -> Record:
        with path.open("r", encoding="utf-8", newline="") as fh:
            text = fh.read()
        return decode_record(text, record_id=path.name[: -len(_SUFFIX)])
