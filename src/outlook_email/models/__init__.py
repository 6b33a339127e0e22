"""Data models for outlook-email.

This module contains Pydantic models for data validation and serialization.
Field aliases follow the mailbox API's camelCase names so a cached record
keeps the shape of the message it was pulled from.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

NO_SUBJECT = "(No Subject)"


class EmailAddress(BaseModel):
    """A display name and address pair."""

    name: Optional[str] = Field(default=None, description="Display name")
    address: Optional[str] = Field(default=None, description="Email address")


class Recipient(BaseModel):
    """Wrapper used by the mailbox API for senders and recipients."""

    model_config = ConfigDict(populate_by_name=True)

    email_address: EmailAddress = Field(alias="emailAddress", description="Address details")

    def label(self) -> str:
        addr = self.email_address
        if addr.name and addr.address:
            return f"{addr.name} <{addr.address}>"
        return addr.address or addr.name or ""


class Body(BaseModel):
    """Message body payload."""

    model_config = ConfigDict(populate_by_name=True)

    content_type: str = Field(default="html", alias="contentType", description="html or text")
    content: str = Field(default="", description="Raw body content")


class PendingChanges(BaseModel):
    """Mutations queued offline and not yet applied to the mailbox."""

    model_config = ConfigDict(populate_by_name=True)

    read: Optional[bool] = Field(default=None, description="Target read state")
    move_to_folder: Optional[str] = Field(
        default=None,
        alias="moveToFolder",
        description="Display name of the destination folder",
    )
    delete: Optional[bool] = Field(default=None, description="Soft-delete marker")

    def is_empty(self) -> bool:
        return self.read is None and not self.move_to_folder and not self.delete


class OfflineState(BaseModel):
    """Local-only state attached to a cached record."""

    model_config = ConfigDict(populate_by_name=True)

    read: Optional[bool] = Field(default=None, description="Last known synced read state")
    read_at: Optional[datetime] = Field(default=None, alias="readAt")
    processed: Optional[bool] = Field(default=None, description="Local triage flag")
    pending: Optional[PendingChanges] = Field(default=None, description="Queued changes")
    last_sync: Optional[datetime] = Field(default=None, description="Last successful apply")

    def is_empty(self) -> bool:
        return (
            self.read is None
            and self.read_at is None
            and not self.processed
            and (self.pending is None or self.pending.is_empty())
            and self.last_sync is None
        )


class Record(BaseModel):
    """A cached representation of one remote mailbox item."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    stored_id: str = Field(alias="_stored_id", description="Stable content-derived id")
    stored_at: Optional[datetime] = Field(default=None, alias="_stored_at")
    source_folder: Optional[str] = Field(
        default=None,
        alias="_source_folder",
        description="Folder the record was pulled from",
    )

    remote_id: Optional[str] = Field(default=None, alias="id", description="Remote message id")
    subject: Optional[str] = Field(default=None)
    received_at: Optional[datetime] = Field(default=None, alias="receivedDateTime")
    from_: Optional[Recipient] = Field(default=None, alias="from")
    sender: Optional[Recipient] = Field(default=None)
    to_recipients: list[Recipient] = Field(default_factory=list, alias="toRecipients")
    cc_recipients: list[Recipient] = Field(default_factory=list, alias="ccRecipients")
    bcc_recipients: list[Recipient] = Field(default_factory=list, alias="bccRecipients")
    is_read: Optional[bool] = Field(default=None, alias="isRead")
    flag: Optional[dict[str, Any]] = Field(default=None)
    body_preview: Optional[str] = Field(default=None, alias="bodyPreview")
    importance: Optional[str] = Field(default=None)
    has_attachments: Optional[bool] = Field(default=None, alias="hasAttachments")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    web_link: Optional[str] = Field(default=None, alias="webLink")
    parent_folder_id: Optional[str] = Field(default=None, alias="parentFolderId")
    parent_folder_name: Optional[str] = Field(default=None, alias="parentFolderName")

    body: Optional[Body] = Field(default=None)
    offline: Optional[OfflineState] = Field(default=None)

    @property
    def short_id(self) -> str:
        return self.stored_id[:6]

    @property
    def display_subject(self) -> str:
        return self.subject or NO_SUBJECT

    @property
    def folder(self) -> str:
        """Folder used for local grouping: provenance first, then current parent."""
        return self.source_folder or self.parent_folder_name or ""

    def sender_label(self) -> str:
        if self.from_ is None:
            return "Unknown"
        return self.from_.label() or "Unknown"

    def to_document(self) -> dict[str, Any]:
        """Serialize to the camelCase mapping stored in the cache."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Folder(BaseModel):
    """Remote mail folder. Resolved per command, never cached."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(description="Remote folder id")
    display_name: str = Field(default="", alias="displayName")
    parent_folder_id: Optional[str] = Field(default=None, alias="parentFolderId")
    child_folder_count: int = Field(default=0, alias="childFolderCount")
    unread_item_count: Optional[int] = Field(default=None, alias="unreadItemCount")
    total_item_count: Optional[int] = Field(default=None, alias="totalItemCount")


__all__ = [
    "NO_SUBJECT",
    "Body",
    "EmailAddress",
    "Folder",
    "OfflineState",
    "PendingChanges",
    "Recipient",
    "Record",
]
