"""Access token session for the mailbox API.

A `TokenSession` owns the bearer token used by `GraphClient`. It is created
once per command and passed explicitly to the client:

- `init()` loads a still-valid token from the YAML token cache, or fetches one.
- `invalidate()` drops the cached token and fetches a fresh one. The client
  calls it when a request fails with an authentication error.
"""

from __future__ import annotations

import asyncio
import base64
import json
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Protocol

import structlog
import yaml

from outlook_email.config import Settings
from outlook_email.exceptions import AuthenticationError, ConfigurationError

logger = structlog.get_logger()

_TOKEN_RE = re.compile(r"TOKEN=([A-Za-z0-9\-_.]+)")


class TokenSource(Protocol):
    """Something that can produce a fresh access token."""

    async def fetch(self) -> str: ...


class StaticTokenSource:
    """Token source returning a pre-configured token."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def fetch(self) -> str:
        return self._token


class CommandTokenSource:
    """Token source that runs a shell command printing ``TOKEN=<value>``."""

    def __init__(self, command: str) -> None:
        self.command = command

    async def fetch(self) -> str:
        logger.info("token_command_started", command=self.command)
        try:
            proc = await asyncio.create_subprocess_shell(
                self.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()
        except OSError as exc:
            raise AuthenticationError(f"Failed to get access token: {exc}") from exc

        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise AuthenticationError(
                f"Failed to get access token: command exited with {proc.returncode}: {detail}"
            )

        match = _TOKEN_RE.search(stdout.decode("utf-8", errors="replace"))
        if match is None:
            raise AuthenticationError("Failed to get access token: token not found in command output")
        return match.group(1)


def token_expiry(token: str) -> datetime | None:
    """Return the ``exp`` claim of a JWT access token, or None if it is not a JWT."""

    parts = token.split(".")
    if len(parts) != 3:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
        return datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
    except (ValueError, KeyError, TypeError, OverflowError, OSError):
        return None


class TokenSession:
    """Holds the current access token and knows how to renew it."""

    def __init__(
        self,
        source: TokenSource,
        cache_path: Path | None = None,
        expiry_buffer_seconds: int = 300,
        cache_key: str = "email",
    ) -> None:
        """Create a session.

        Args:
            source: Where fresh tokens come from.
            cache_path: YAML token cache file. None disables on-disk caching.
            expiry_buffer_seconds: Cached tokens expiring sooner than this are ignored.
            cache_key: Section of the cache file owned by this session.
        """

        self._source = source
        self._cache_path = cache_path
        self._buffer = timedelta(seconds=expiry_buffer_seconds)
        self._cache_key = cache_key
        self._token: str | None = None
        self._expires_at: datetime | None = None
        self.refresh_count = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenSession:
        """Build a session from application settings.

        Raises:
            ConfigurationError: If neither a static token nor a token command is configured.
        """

        if settings.access_token:
            return cls(StaticTokenSource(settings.access_token), cache_path=None)
        if settings.token_command:
            return cls(
                CommandTokenSource(settings.token_command),
                cache_path=settings.token_cache_path,
                expiry_buffer_seconds=settings.token_expiry_buffer_seconds,
            )
        raise ConfigurationError(
            "No access token configured. Set OUTLOOK_EMAIL_TOKEN_COMMAND or OUTLOOK_EMAIL_ACCESS_TOKEN."
        )

    @property
    def access_token(self) -> str:
        if self._token is None:
            raise AuthenticationError("Session is not initialized. Call await TokenSession.init() first.")
        return self._token

    @property
    def expires_at(self) -> datetime | None:
        return self._expires_at

    async def init(self) -> str:
        """Load a cached token or fetch a fresh one."""

        if self._token is not None:
            return self._token

        cached = self._load_cached()
        if cached is not None:
            logger.debug("token_cache_hit", expires_at=self._expires_at.isoformat() if self._expires_at else None)
            return cached
        return await self._fetch_fresh()

    async def invalidate(self) -> str:
        """Forget the current token, clear it from the cache, and fetch a new one."""

        logger.info("token_invalidated")
        self._token = None
        self._expires_at = None
        self._remove_cached()
        return await self._fetch_fresh()

    async def _fetch_fresh(self) -> str:
        token = await self._source.fetch()
        self._token = token
        self._expires_at = token_expiry(token)
        self.refresh_count += 1
        self._save_cached()
        logger.info("token_acquired", expires_at=self._expires_at.isoformat() if self._expires_at else None)
        return token

    def _read_cache(self) -> dict[str, Any]:
        if self._cache_path is None or not self._cache_path.exists():
            return {}
        try:
            data = yaml.safe_load(self._cache_path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("token_cache_load_failed", path=str(self._cache_path), error=str(exc))
            return {}
        return data if isinstance(data, dict) else {}

    def _write_cache(self, data: dict[str, Any]) -> None:
        if self._cache_path is None:
            return
        try:
            self._cache_path.parent.mkdir(parents=True, exist_ok=True)
            self._cache_path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
        except OSError as exc:
            logger.warning("token_cache_save_failed", path=str(self._cache_path), error=str(exc))

    def _load_cached(self) -> str | None:
        entry = self._read_cache().get(self._cache_key)
        if not isinstance(entry, dict):
            return None

        token = entry.get("access_token")
        expires_raw = entry.get("expires_at")
        if not token or not expires_raw:
            return None

        try:
            expires_at = (
                expires_raw if isinstance(expires_raw, datetime) else datetime.fromisoformat(str(expires_raw))
            )
        except ValueError:
            return None
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        if expires_at <= datetime.now(timezone.utc) + self._buffer:
            return None

        self._token = str(token)
        self._expires_at = expires_at
        return self._token

    def _save_cached(self) -> None:
        # Only tokens with a known expiry are worth persisting.
        if self._cache_path is None or self._token is None or self._expires_at is None:
            return
        data = self._read_cache()
        data[self._cache_key] = {
            "access_token": self._token,
            "expires_at": self._expires_at.isoformat(),
            "cached_at": datetime.now(timezone.utc).isoformat(),
        }
        self._write_cache(data)

    def _remove_cached(self) -> None:
        if self._cache_path is None:
            return
        data = self._read_cache()
        if self._cache_key in data:
            del data[self._cache_key]
            self._write_cache(data)
