"""Folder lookup by display name.

Folders are resolved breadth-first from the root folder collection. Names are
compared trimmed and case-insensitively; the first match in BFS order wins, so
duplicate names resolve to the shallowest, earliest-listed folder.
"""

from __future__ import annotations

from collections import deque
from collections.abc import AsyncIterator

import structlog

from outlook_email.graph.client import GraphClient
from outlook_email.models import Folder

logger = structlog.get_logger()


def normalize_folder_name(name: str) -> str:
    return name.strip().casefold()


class FolderResolver:
    """Resolves folder display names to folders for one command invocation."""

    def __init__(self, client: GraphClient) -> None:
        self.client = client

    async def resolve(self, name: str) -> Folder | None:
        """Find a folder by display name, or return None.

        Raises:
            GraphAPIError: If any folder page cannot be fetched.
        """

        target = normalize_folder_name(name)
        queue: deque[Folder] = deque(await self.client.list_folders())

        while queue:
            folder = queue.popleft()
            if normalize_folder_name(folder.display_name) == target:
                logger.debug("folder_resolved", name=name, folder_id=folder.id)
                return folder
            if folder.child_folder_count > 0:
                queue.extend(await self.client.list_folders(folder.id))

        logger.info("folder_not_found", name=name)
        return None

    async def resolve_or_create(self, name: str) -> Folder:
        """Resolve a folder, creating it at the root when it does not exist."""

        folder = await self.resolve(name)
        if folder is not None:
            return folder
        return await self.client.create_folder(name.strip())

    async def walk(self) -> AsyncIterator[tuple[int, Folder]]:
        """Yield ``(depth, folder)`` for every folder, depth-first in listed order."""

        stack: list[tuple[int, Folder]] = [(0, f) for f in reversed(await self.client.list_folders())]
        while stack:
            depth, folder = stack.pop()
            yield depth, folder
            if folder.child_folder_count > 0:
                children = await self.client.list_folders(folder.id)
                stack.extend((depth + 1, child) for child in reversed(children))
