"""Mailbox REST API client implementation.

This module provides a client for the Microsoft Graph mail endpoints used by
outlook-email: paged folder and message listings plus the read/move/delete
mutations replayed by `apply`.

Notes:
    Every HTTP failure is translated into `GraphAPIError` carrying a
    `FailureKind`. `with_auth_retry` switches on that kind; it never inspects
    error messages.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError

from outlook_email.config import Settings
from outlook_email.exceptions import FailureKind, GraphAPIError
from outlook_email.graph.session import TokenSession
from outlook_email.models import Folder

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_MESSAGE_FIELDS: tuple[str, ...] = (
    "id",
    "from",
    "sender",
    "subject",
    "receivedDateTime",
    "isRead",
    "flag",
    "body",
    "bodyPreview",
    "importance",
    "hasAttachments",
    "conversationId",
    "toRecipients",
    "ccRecipients",
    "bccRecipients",
    "webLink",
    "parentFolderId",
)

FOLDER_FIELDS: tuple[str, ...] = (
    "id",
    "displayName",
    "parentFolderId",
    "childFolderCount",
    "unreadItemCount",
    "totalItemCount",
)

_AUTH_ERROR_CODES = frozenset({"InvalidAuthenticationToken", "Unauthorized"})


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a collection listing."""

    items: list[T]
    next_cursor: str | None


@dataclass(frozen=True)
class MoveResult:
    """Identity of a message after it was moved."""

    new_remote_id: str | None
    web_link: str | None


def translate_error(response: httpx.Response) -> GraphAPIError:
    """Map an error response to a `GraphAPIError` with the matching `FailureKind`."""

    code: str | None = None
    message = response.text
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        code = payload["error"].get("code")
        message = payload["error"].get("message") or message

    status = response.status_code
    if status == 401 or code in _AUTH_ERROR_CODES:
        kind = FailureKind.UNAUTHORIZED
    elif status == 404:
        kind = FailureKind.NOT_FOUND
    elif status == 429:
        kind = FailureKind.RATE_LIMITED
    else:
        kind = FailureKind.OTHER

    text = f"{status} {code}: {message}" if code else f"{status}: {message}"
    return GraphAPIError(text, kind=kind, status_code=status)


class GraphClient:
    """Mailbox API client for folder, message and mutation operations.

    The client reads its bearer token from a `TokenSession` on every request,
    so renewing the session is enough to recover from an expired token.
    """

    def __init__(
        self,
        session: TokenSession,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            session: Token session supplying the bearer token.
            settings: Application settings. If None, uses default settings.
            transport: Optional httpx transport (tests use `httpx.MockTransport`).
        """
        from outlook_email.config import get_settings

        self.settings = settings or get_settings()
        self.session = session
        self._http = httpx.AsyncClient(
            base_url=self.settings.graph_base_url,
            timeout=self.settings.request_timeout,
            transport=transport,
        )
        logger.debug("graph_client_initialized", base_url=self.settings.graph_base_url)

    async def __aenter__(self) -> GraphClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def with_auth_retry(self, operation: Callable[[GraphClient], Awaitable[T]]) -> T:
        """Run `operation`, renewing the session and retrying once on an auth failure.

        Any other failure, and any failure of the retried attempt, propagates
        unchanged.
        """

        try:
            return await operation(self)
        except GraphAPIError as exc:
            if exc.kind is not FailureKind.UNAUTHORIZED:
                raise
            logger.info("graph_auth_retry", error=str(exc))

        await self.session.invalidate()
        return await operation(self)

    # Folders

    async def get_folder_page(
        self,
        parent_id: str | None = None,
        *,
        cursor: str | None = None,
        page_size: int | None = None,
    ) -> Page[Folder]:
        """Fetch one page of root folders, or of the children of `parent_id`."""

        if cursor:
            data = await self._request("GET", cursor)
        else:
            path = f"/me/mailFolders/{parent_id}/childFolders" if parent_id else "/me/mailFolders"
            params = {
                "$select": ",".join(FOLDER_FIELDS),
                "$top": str(page_size or self.settings.folder_page_size),
            }
            data = await self._request("GET", path, params=params)

        page = _to_page(data)
        return Page([_parse_folder(item) for item in page.items], page.next_cursor)

    async def iter_folder_pages(self, parent_id: str | None = None) -> AsyncIterator[list[Folder]]:
        """Yield folder pages, following cursors until exhausted."""

        cursor: str | None = None
        while True:
            page = await self.get_folder_page(parent_id, cursor=cursor)
            if not page.items:
                return
            yield page.items
            if not page.next_cursor:
                return
            cursor = page.next_cursor

    async def list_folders(self, parent_id: str | None = None) -> list[Folder]:
        folders: list[Folder] = []
        async for items in self.iter_folder_pages(parent_id):
            folders.extend(items)
        return folders

    async def create_folder(self, display_name: str) -> Folder:
        logger.info("creating_folder", display_name=display_name)
        data = await self._request("POST", "/me/mailFolders", json={"displayName": display_name})
        return _parse_folder(data)

    # Messages

    async def get_record_page(
        self,
        folder_id: str | None = None,
        *,
        filter_expr: str | None = None,
        search: str | None = None,
        select: tuple[str, ...] = DEFAULT_MESSAGE_FIELDS,
        order_by: str | None = None,
        page_size: int | None = None,
        cursor: str | None = None,
    ) -> Page[dict[str, Any]]:
        """Fetch one page of messages.

        Args:
            folder_id: Folder id or well-known name; None lists all folders.
            filter_expr: Server-side ``$filter`` expression.
            search: Free-text ``$search`` query.
            select: Fields to return.
            order_by: ``$orderby`` clause, e.g. ``receivedDateTime desc``.
            page_size: Items per page. Defaults to settings.message_page_size.
            cursor: Continuation cursor from a previous page; other arguments are ignored.
        """

        if cursor:
            data = await self._request("GET", cursor)
            return _to_page(data)

        path = f"/me/mailFolders/{folder_id}/messages" if folder_id else "/me/messages"
        params: dict[str, str] = {
            "$select": ",".join(select),
            "$top": str(page_size or self.settings.message_page_size),
        }
        if filter_expr:
            params["$filter"] = filter_expr
        if search:
            params["$search"] = f'"{search}"'
        if order_by:
            params["$orderby"] = order_by

        logger.info("listing_messages", folder_id=folder_id or "all", filter=filter_expr, search=search)
        data = await self._request("GET", path, params=params)
        return _to_page(data)

    async def iter_record_pages(
        self,
        folder_id: str | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[list[dict[str, Any]]]:
        """Yield message pages, following cursors until exhausted."""

        cursor: str | None = None
        while True:
            page = await self.get_record_page(folder_id, cursor=cursor, **kwargs)
            if not page.items:
                return
            yield page.items
            if not page.next_cursor:
                return
            cursor = page.next_cursor

    async def set_read_state(self, remote_id: str, is_read: bool) -> None:
        logger.info("setting_read_state", remote_id=remote_id, is_read=is_read)
        await self._request("PATCH", f"/me/messages/{remote_id}", json={"isRead": is_read})

    async def delete_record(self, remote_id: str) -> None:
        logger.info("deleting_message", remote_id=remote_id)
        await self._request("DELETE", f"/me/messages/{remote_id}")

    async def move_record(self, remote_id: str, destination_folder_id: str) -> MoveResult:
        """Move a message; the mailbox assigns it a new id and permalink."""

        logger.info("moving_message", remote_id=remote_id, destination_folder_id=destination_folder_id)
        data = await self._request(
            "POST",
            f"/me/messages/{remote_id}/move",
            json={"destinationId": destination_folder_id},
        )
        return MoveResult(new_remote_id=data.get("id"), web_link=data.get("webLink"))

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.session.access_token}"}
        try:
            response = await self._http.request(method, url, params=params, json=json, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("graph_request_failed", method=method, url=url, error=str(exc))
            raise GraphAPIError(f"{method} {url} failed: {exc}") from exc

        if response.is_error:
            error = translate_error(response)
            logger.warning(
                "graph_request_failed",
                method=method,
                url=url,
                status=response.status_code,
                kind=error.kind.value,
            )
            raise error

        if response.status_code == 204 or not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise GraphAPIError(f"{method} {url} returned invalid JSON") from exc
        return data if isinstance(data, dict) else {}


def _parse_folder(data: dict[str, Any]) -> Folder:
    try:
        return Folder.model_validate(data)
    except PydanticValidationError as exc:
        raise GraphAPIError(f"Invalid folder in response: {exc}") from exc


def _to_page(data: dict[str, Any]) -> Page[dict[str, Any]]:
    items = data.get("value") or []
    return Page([item for item in items if isinstance(item, dict)], data.get("@odata.nextLink"))
