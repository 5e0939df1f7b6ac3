"""HTTPS adapter built on ``httpx``.

The listing endpoint at ``base_url/path`` either answers with a JSON array
of file entries::

    [{"name": "data_20250124.csv", "url": "...", "size": 512,
      "lastModified": "2025-01-24T01:58:00Z"}]

or serves a single file, in which case ``Content-Length`` and
``Last-Modified`` describe it.
"""

from __future__ import annotations

import logging
import posixpath
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import httpx

from dropwatch.credentials import SecretResolver
from dropwatch.domain import HttpsAuthType, HttpsSettings, Protocol, RemoteFile
from dropwatch.errors import (
    AuthenticationFailure,
    ConnectionTimeout,
    PermissionDenied,
    ProtocolError,
)
from dropwatch.protocols.base import ProtocolAdapter, join_path

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    text = str(value)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError):
            logger.debug(f"Unparseable HTTP timestamp: {text!r}")
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class HttpsAdapter(ProtocolAdapter):
    """Lists files exposed by an HTTPS endpoint."""

    protocol = Protocol.HTTPS

    def __init__(
        self,
        secret_resolver: SecretResolver,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(secret_resolver)
        self._transport = transport

    def _client(self, settings: HttpsSettings, timeout: float) -> httpx.AsyncClient:
        headers: Dict[str, str] = {"Accept": "application/json"}
        auth: Optional[httpx.Auth] = None

        if settings.auth_type is HttpsAuthType.BASIC:
            password = self._secrets.resolve(settings.secret_ref or "")
            auth = httpx.BasicAuth(settings.username or "", password)
        elif settings.auth_type is HttpsAuthType.BEARER:
            token = self._secrets.resolve(settings.secret_ref or "")
            headers["Authorization"] = f"Bearer {token}"
        elif settings.auth_type is HttpsAuthType.API_KEY:
            headers["X-API-Key"] = self._secrets.resolve(settings.secret_ref or "")

        return httpx.AsyncClient(
            headers=headers,
            auth=auth,
            timeout=timeout,
            follow_redirects=settings.follow_redirects,
            max_redirects=settings.max_redirects,
            transport=self._transport,
        )

    async def _list(self, path: str, settings: HttpsSettings, timeout: float) -> List[RemoteFile]:
        url = join_path(settings.base_url, path)
        async with self._client(settings, timeout) as client:
            response = await self._send(client, "GET", url, settings)

        if response.status_code == 404:
            logger.info(f"HTTPS listing {url} not found")
            return []
        self._raise_for_status(response, url)

        content_type = response.headers.get("content-type", "")
        if "json" in content_type.lower():
            return self._parse_listing(response, url)

        name = posixpath.basename(urlsplit(str(response.url)).path)
        length = response.headers.get("content-length")
        return [RemoteFile(
            url=str(response.url),
            size=int(length) if length and length.isdigit() else None,
            last_modified_remote=_parse_timestamp(response.headers.get("last-modified")),
            name=name,
        )]

    async def _open_session(self, settings: HttpsSettings, timeout: float) -> None:
        async with self._client(settings, timeout) as client:
            response = await self._send(client, "HEAD", settings.base_url, settings)
        self._raise_for_status(response, settings.base_url)

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        settings: HttpsSettings,
    ) -> httpx.Response:
        try:
            return await client.request(method, url)
        except httpx.TimeoutException as e:
            raise ConnectionTimeout(f"HTTPS request to {url} timed out", str(e)) from e
        except httpx.TooManyRedirects as e:
            raise ProtocolError(
                f"HTTPS request to {url} exceeded {settings.max_redirects} redirects", str(e)
            ) from e
        except httpx.HTTPError as e:
            raise ProtocolError(f"HTTPS request to {url} failed", str(e)) from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, url: str) -> None:
        status = response.status_code
        if status == 401:
            raise AuthenticationFailure(f"HTTPS endpoint {url} rejected credentials", "401")
        if status == 403:
            raise PermissionDenied(f"HTTPS endpoint {url} denied access", "403")
        if status >= 400:
            raise ProtocolError(
                f"HTTPS endpoint {url} returned {status}", response.reason_phrase
            )

    @staticmethod
    def _parse_listing(response: httpx.Response, url: str) -> List[RemoteFile]:
        try:
            entries = response.json()
        except ValueError as e:
            raise ProtocolError(f"HTTPS listing at {url} is not valid JSON", str(e)) from e

        if not isinstance(entries, list):
            raise ProtocolError(f"HTTPS listing at {url} is not a JSON array")

        files: List[RemoteFile] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            # Keys are matched case-insensitively
            fields = {str(k).lower(): v for k, v in entry.items()}
            name = fields.get("name") or ""
            file_url = fields.get("url") or join_path(url, name)
            if not name:
                name = posixpath.basename(urlsplit(file_url).path)
            size = fields.get("size")
            files.append(RemoteFile(
                url=file_url,
                size=int(size) if isinstance(size, (int, float)) and size > 0 else None,
                last_modified_remote=_parse_timestamp(fields.get("lastmodified")),
                name=name,
            ))
        return files
