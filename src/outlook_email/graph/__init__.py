"""Mailbox API access: token session, client, folder resolution and parsing."""

from .client import GraphClient, MoveResult, Page
from .folders import FolderResolver
from .session import TokenSession

__all__ = ["FolderResolver", "GraphClient", "MoveResult", "Page", "TokenSession"]
