"""Text format for cached emails.

Each email is stored as a Markdown file: a YAML front matter block holding
every record field except the body content, a heading with the subject, and a
fenced code block tagged with the body content type::

    ---
    _stored_id: f86bca...
    subject: Hello
    body:
      contentType: html
    ---

    # Hello

    ```html
    <p>Hi</p>
    ```
"""

from __future__ import annotations

import re
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from outlook_email.exceptions import ValidationError
from outlook_email.models import Body, Record

_FRONT_MATTER_RE = re.compile(r"\A---\n(.*?)\n---[ \t]*(?:\n|\Z)", re.DOTALL)
_BODY_RE = re.compile(r"^```([A-Za-z0-9_-]*)\n(.*)\n```[ \t]*\n?\Z", re.DOTALL | re.MULTILINE)


def encode_record(record: Record) -> str:
    """Render a record in the cached file format."""

    document = record.to_document()
    body = document.pop("body", None)
    if body is not None:
        # Only the content type lives in the header; content goes in the fence.
        document["body"] = {"contentType": body.get("contentType", "html")}

    front_matter = yaml.safe_dump(
        document,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=1_000_000,
    )

    heading = (record.display_subject.splitlines() or [""])[0]
    parts = [f"---\n{front_matter}---\n", f"\n# {heading}\n"]
    if record.body is not None:
        parts.append(f"\n```{record.body.content_type}\n{record.body.content}\n```\n")
    return "".join(parts)


def decode_record(text: str, record_id: str | None = None) -> Record:
    """Parse a cached file back into a record.

    Args:
        text: File content.
        record_id: Id derived from the file name; used when the header lacks one.

    Raises:
        ValidationError: If the front matter is missing or malformed.
    """

    match = _FRONT_MATTER_RE.match(text)
    if match is None:
        raise ValidationError("Invalid email file: missing front matter")

    try:
        document: Any = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        raise ValidationError(f"Invalid email file front matter: {exc}") from exc
    if not isinstance(document, dict):
        raise ValidationError("Invalid email file: front matter is not a mapping")

    if record_id is not None:
        document.setdefault("_stored_id", record_id)

    header_body = document.pop("body", None)
    body_match = _BODY_RE.search(text, match.end())

    try:
        record = Record.model_validate(document)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid email file fields: {exc}") from exc

    if body_match is not None:
        content_type = body_match.group(1) or "text"
        if isinstance(header_body, dict) and header_body.get("contentType"):
            content_type = str(header_body["contentType"])
        record.body = Body(content_type=content_type, content=body_match.group(2))
    elif isinstance(header_body, dict):
        record.body = Body(content_type=str(header_body.get("contentType") or "html"))

    return record
