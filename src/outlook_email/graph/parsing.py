"""Helpers for turning mailbox API messages into cached records."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from outlook_email.exceptions import ValidationError
from outlook_email.models import Record


def hash_remote_id(remote_id: str) -> str:
    """Derive the stable cache id for a message from its remote id at first sight."""

    return hashlib.sha1(remote_id.encode("utf-8")).hexdigest()


def message_to_record(
    message: dict[str, Any],
    *,
    source_folder: str | None = None,
    stored_at: datetime | None = None,
) -> Record:
    """Convert a mailbox API message to a Record.

    Args:
        message: Message dict as returned by the messages endpoints.
        source_folder: Folder the message was pulled from (provenance).
        stored_at: Cache timestamp. Defaults to now.

    Returns:
        Record: Cacheable record keyed by the hash of the message id.

    Raises:
        ValidationError: If the message does not fit the record model.
    """

    remote_id = str(message.get("id") or "")
    document = dict(message)
    document["_stored_id"] = hash_remote_id(remote_id)
    document["_stored_at"] = stored_at or datetime.now(timezone.utc)
    if source_folder:
        document["_source_folder"] = source_folder
    # Offline state is never taken from the remote side.
    document.pop("offline", None)
    try:
        return Record.model_validate(document)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid message in response: {exc}") from exc
