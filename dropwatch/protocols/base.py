"""Base class for protocol adapters.

Every adapter lists the files in a resolved remote directory and keeps the
ones whose name matches the resolved name pattern. Subclasses implement
``_list`` and translate their library's exceptions into the categorized
adapter errors; the base class enforces the call timeout (or, for adapters
wrapping a blocking client, leaves it to the client sockets) and makes
sure nothing uncategorized leaves ``list_matching``.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import posixpath
from abc import ABC, abstractmethod
from concurrent.futures import Executor
from functools import partial
from typing import List, Optional

from dropwatch.credentials import SecretResolver
from dropwatch.domain import ConnectionSettings, Protocol, RemoteFile
from dropwatch.errors import (
    AdapterError,
    AuthenticationFailure,
    ConnectionTimeout,
    ProtocolError,
    SecretResolutionError,
)

logger = logging.getLogger(__name__)


def matches_name(name: str, pattern: Optional[str], file_extension: Optional[str] = None) -> bool:
    """Match a filename against a ``*``/``?`` wildcard pattern, ignoring case.

    Args:
        name: Remote file name (no directory part)
        pattern: Wildcard pattern; empty or ``*`` matches everything
        file_extension: Optional extension filter, with or without leading dot
    """
    if pattern and pattern != "*":
        if not fnmatch.fnmatchcase(name.lower(), pattern.lower()):
            return False

    if file_extension:
        wanted = file_extension.lstrip(".").lower()
        actual = posixpath.splitext(name)[1].lstrip(".").lower()
        if actual != wanted:
            return False

    return True


def join_path(base: str, path: str) -> str:
    """Join two remote path fragments with exactly one slash between them."""
    if not base:
        return path
    if not path:
        return base
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


class ProtocolAdapter(ABC):
    """Lists matching files at a remote location for one protocol.

    Adapters never retry. A call either returns the matching files (possibly
    none) or raises one of AuthenticationFailure, ConnectionTimeout,
    ProtocolError or PermissionDenied.
    """

    protocol: Protocol

    # Adapters that run a blocking client in worker threads rely on the
    # client's socket timeouts; time spent queued for a thread is not counted.
    blocking: bool = False

    def __init__(self, secret_resolver: SecretResolver, executor: Optional[Executor] = None) -> None:
        self._secrets = secret_resolver
        self._executor = executor

    async def list_matching(
        self,
        path: str,
        name_pattern: str,
        settings: ConnectionSettings,
        timeout: float,
        file_extension: Optional[str] = None,
    ) -> List[RemoteFile]:
        """List files under ``path`` whose names match ``name_pattern``.

        Args:
            path: Resolved directory path (tokens already substituted)
            name_pattern: Resolved filename pattern, may contain wildcards
            settings: Connection settings for this adapter's protocol
            timeout: Upper bound in seconds for the whole call; for blocking
                adapters, for each network operation
            file_extension: Optional extension filter

        Returns:
            Matching remote files; an empty list when nothing matches

        Raises:
            AdapterError: A categorized failure
        """
        self._check_settings(settings)

        files = await self._guarded(self._list(path, settings, timeout), settings, timeout)

        matched = [
            f for f in files
            if matches_name(f.name or posixpath.basename(f.url), name_pattern, file_extension)
        ]
        logger.debug(
            f"{self.protocol.value} listing of {settings.location}{path}: "
            f"{len(files)} entries, {len(matched)} matching {name_pattern!r}"
        )
        return matched

    async def test_connection(self, settings: ConnectionSettings, timeout: float) -> bool:
        """Check that the location is reachable with the configured credentials."""
        self._check_settings(settings)
        try:
            await self._guarded(self._open_session(settings, timeout), settings, timeout)
        except AdapterError as e:
            logger.warning(
                f"{self.protocol.value} connection test to {settings.location} failed: "
                f"{e.category.value}: {e}"
            )
            return False
        return True

    async def _guarded(self, coro, settings: ConnectionSettings, timeout: float):
        try:
            if self.blocking:
                return await coro
            return await asyncio.wait_for(coro, timeout=timeout)
        except AdapterError:
            raise
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise ConnectionTimeout(
                f"{self.protocol.value} call to {settings.location} timed out after {timeout}s"
            ) from e
        except SecretResolutionError as e:
            raise AuthenticationFailure(
                f"Credentials for {settings.location} could not be resolved", str(e)
            ) from e
        except Exception as e:
            raise ProtocolError(
                f"Unexpected {self.protocol.value} error for {settings.location}",
                f"{type(e).__name__}: {e}",
            ) from e

    async def _run_sync(self, func, *args, **kwargs):
        """Run a blocking client call on the adapter executor (the loop default if none)."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(func, *args, **kwargs))

    def _check_settings(self, settings: ConnectionSettings) -> None:
        if settings.protocol is not self.protocol:
            raise ProtocolError(
                f"{type(self).__name__} cannot use {settings.protocol.value} settings"
            )

    @abstractmethod
    async def _list(self, path: str, settings: ConnectionSettings, timeout: float) -> List[RemoteFile]:
        """Return every file directly under ``path`` (names filled in)."""

    @abstractmethod
    async def _open_session(self, settings: ConnectionSettings, timeout: float) -> None:
        """Open and close a session against the location."""
