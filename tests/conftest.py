"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import itertools
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx
import pytest
import structlog

from outlook_email.config import Settings
from outlook_email.graph import GraphClient, TokenSession
from outlook_email.graph.parsing import hash_remote_id
from outlook_email.models import Record
from outlook_email.storage import RecordStore

BASE_URL = "https://graph.test/v1.0"
WELL_KNOWN = {"inbox": "Inbox"}


class SequenceTokenSource:
    """Token source handing out the given tokens in order (the last one repeats)."""

    def __init__(self, tokens: tuple[str, ...] = ("token-1",)) -> None:
        self.tokens = tokens
        self.calls = 0

    async def fetch(self) -> str:
        token = self.tokens[min(self.calls, len(self.tokens) - 1)]
        self.calls += 1
        return token


class FakeGraph:
    """In-memory stand-in for the mailbox REST API, served through httpx.MockTransport."""

    def __init__(self, page_size: int | None = None) -> None:
        self.folders: dict[str, dict[str, Any]] = {}
        self.children: dict[str | None, list[str]] = {None: []}
        self.messages: dict[str, dict[str, Any]] = {}
        self.requests: list[tuple[str, str]] = []
        self.rejected_tokens: set[str] = set()
        self.failures: dict[tuple[str, str], int] = {}
        self.page_size = page_size
        self._ids = itertools.count(1)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # Setup helpers

    def add_folder(self, name: str, parent: str | None = None, folder_id: str | None = None) -> str:
        folder_id = folder_id or f"folder-{next(self._ids)}"
        self.folders[folder_id] = {
            "id": folder_id,
            "displayName": name,
            "parentFolderId": parent,
            "childFolderCount": 0,
            "unreadItemCount": 0,
            "totalItemCount": 0,
        }
        self.children.setdefault(parent, []).append(folder_id)
        self.children.setdefault(folder_id, [])
        if parent is not None:
            self.folders[parent]["childFolderCount"] += 1
        return folder_id

    def add_message(
        self,
        remote_id: str,
        folder_id: str,
        *,
        subject: str = "Hello",
        is_read: bool = False,
        received: str = "2024-01-10T09:30:00Z",
    ) -> dict[str, Any]:
        message = {
            "id": remote_id,
            "subject": subject,
            "receivedDateTime": received,
            "isRead": is_read,
            "from": {"emailAddress": {"name": "Alice", "address": "alice@example.com"}},
            "toRecipients": [{"emailAddress": {"name": "Bob", "address": "bob@example.com"}}],
            "body": {"contentType": "html", "content": f"<p>{subject}</p>"},
            "webLink": f"https://outlook.test/{remote_id}",
            "parentFolderId": folder_id,
        }
        self.messages[remote_id] = message
        return message

    def calls(self, method: str, prefix: str = "") -> list[str]:
        return [path for m, path in self.requests if m == method and path.startswith(prefix)]

    # Request handling

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/v1.0")
        self.requests.append((request.method, path))

        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if token in self.rejected_tokens:
            return _error(401, "InvalidAuthenticationToken", "Access token has expired")

        status = self.failures.get((request.method, path))
        if status is not None:
            return _error(status, "ErrorInternalServerError" if status >= 500 else "Error", "injected")

        parts = [p for p in path.split("/") if p]
        if parts[:2] == ["me", "mailFolders"]:
            return self._folders(request, parts[2:])
        if parts[:2] == ["me", "messages"]:
            return self._messages(request, parts[2:])
        return _error(404, "ErrorInvalidUrl", path)

    def _folders(self, request: httpx.Request, rest: list[str]) -> httpx.Response:
        if not rest:
            if request.method == "POST":
                name = json.loads(request.content)["displayName"]
                return httpx.Response(201, json=self.folders[self.add_folder(name)])
            return self._page(request, [self.folders[i] for i in self.children[None]])

        folder_id = self._folder_id(rest[0])
        if folder_id is None:
            return _error(404, "ErrorItemNotFound", "folder not found")
        if rest[1:] == ["childFolders"]:
            return self._page(request, [self.folders[i] for i in self.children.get(folder_id, [])])
        if rest[1:] == ["messages"]:
            items = [m for m in self.messages.values() if m["parentFolderId"] == folder_id]
            return self._page(request, self._filter(request, items))
        return _error(404, "ErrorInvalidUrl", request.url.path)

    def _messages(self, request: httpx.Request, rest: list[str]) -> httpx.Response:
        if not rest:
            return self._page(request, self._filter(request, list(self.messages.values())))

        message = self.messages.get(rest[0])
        if message is None:
            return _error(404, "ErrorItemNotFound", "message not found")

        if request.method == "PATCH":
            message.update(json.loads(request.content))
            return httpx.Response(200, json=message)
        if request.method == "DELETE":
            del self.messages[rest[0]]
            return httpx.Response(204)
        if request.method == "POST" and rest[1:] == ["move"]:
            destination = self._folder_id(json.loads(request.content)["destinationId"])
            if destination is None:
                return _error(404, "ErrorItemNotFound", "destination not found")
            del self.messages[rest[0]]
            moved = dict(message, id=f"{rest[0]}-moved", parentFolderId=destination)
            moved["webLink"] = f"https://outlook.test/{moved['id']}"
            self.messages[moved["id"]] = moved
            return httpx.Response(201, json=moved)
        return httpx.Response(200, json=message)

    def _folder_id(self, key: str) -> str | None:
        if key in self.folders:
            return key
        name = WELL_KNOWN.get(key.lower())
        for folder in self.folders.values():
            if name is not None and folder["displayName"] == name:
                return folder["id"]
        return None

    def _filter(self, request: httpx.Request, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        params = request.url.params
        if "isRead eq false" in params.get("$filter", ""):
            items = [m for m in items if not m["isRead"]]
        search = params.get("$search", "").strip('"').lower()
        if search:
            items = [m for m in items if search in m["subject"].lower()]
        if params.get("$orderby", "").startswith("receivedDateTime desc"):
            items = sorted(items, key=lambda m: m["receivedDateTime"], reverse=True)
        return items

    def _page(self, request: httpx.Request, items: list[dict[str, Any]]) -> httpx.Response:
        params = request.url.params
        top = self.page_size or int(params.get("$top", "100"))
        skip = int(params.get("$skip", "0"))
        body: dict[str, Any] = {"value": items[skip : skip + top]}
        if skip + top < len(items):
            body["@odata.nextLink"] = str(request.url.copy_merge_params({"$skip": str(skip + top)}))
        return httpx.Response(200, json=body)


def _error(status: int, code: str, message: str) -> httpx.Response:
    return httpx.Response(status, json={"error": {"code": code, "message": message}})


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo logging configuration done by CLI tests."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Provide isolated settings for testing."""
    return Settings(
        _env_file=None,
        graph_base_url=BASE_URL,
        access_token="token-1",
        token_cache_path=tmp_path / "tokens.yaml",
        storage_dir=tmp_path / "storage",
        log_level="DEBUG",
    )


@pytest.fixture
def store(settings: Settings) -> RecordStore:
    return RecordStore(settings.storage_dir)


@pytest.fixture
def fake_graph() -> FakeGraph:
    return FakeGraph()


@pytest.fixture
def token_source() -> SequenceTokenSource:
    return SequenceTokenSource()


@pytest.fixture
def open_client(fake_graph: FakeGraph, settings: Settings, token_source: SequenceTokenSource):
    """Factory for initialized clients talking to the fake mailbox."""

    @asynccontextmanager
    async def _open(*_: Any):
        session = TokenSession(token_source)
        await session.init()
        async with GraphClient(session, settings, transport=fake_graph.transport()) as client:
            yield client

    return _open


@pytest.fixture
def make_record():
    """Factory for cached records keyed by the hash of their remote id."""

    def _make(remote_id: str = "AAMk-1", **fields: Any) -> Record:
        document: dict[str, Any] = {
            "_stored_id": hash_remote_id(remote_id),
            "_stored_at": datetime(2024, 1, 10, 10, 0, tzinfo=timezone.utc),
            "_source_folder": "Inbox",
            "id": remote_id,
            "subject": "Quarterly report",
            "receivedDateTime": "2024-01-10T09:30:00Z",
            "from": {"emailAddress": {"name": "Alice", "address": "alice@example.com"}},
            "toRecipients": [{"emailAddress": {"name": "Bob", "address": "bob@example.com"}}],
            "isRead": False,
            "webLink": f"https://outlook.test/{remote_id}",
            "body": {"contentType": "html", "content": "<p>Numbers attached.</p>"},
        }
        document.update(fields)
        return Record.model_validate(document)

    return _make
