"""Object storage adapter for S3-compatible buckets, using the MinIO client."""

from __future__ import annotations

import logging
import posixpath
from concurrent.futures import Executor
from typing import Callable, List, Optional

import urllib3
from minio import Minio
from minio.error import InvalidResponseError, S3Error, ServerError

from dropwatch.credentials import SecretResolver
from dropwatch.domain import ObjectStorageSettings, Protocol, RemoteFile
from dropwatch.errors import (
    AuthenticationFailure,
    ConnectionTimeout,
    PermissionDenied,
    ProtocolError,
)
from dropwatch.protocols.base import ProtocolAdapter, join_path

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ObjectStorageSettings, Optional[str], float], Minio]

_AUTH_ERROR_CODES = {
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "InvalidToken",
    "AuthorizationHeaderMalformed",
}
_PERMISSION_ERROR_CODES = {"AccessDenied", "AllAccessDisabled", "AccountProblem"}
_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchPrefix"}


def _default_client_factory(
    settings: ObjectStorageSettings,
    secret_key: Optional[str],
    timeout: float,
) -> Minio:
    # retries=False: the adapter must not retry on its own
    http_client = urllib3.PoolManager(
        timeout=urllib3.Timeout(connect=timeout, read=timeout),
        retries=False,
    )
    return Minio(
        settings.endpoint,
        access_key=settings.access_key,
        secret_key=secret_key,
        secure=settings.secure,
        region=settings.region,
        http_client=http_client,
    )


def search_prefix(settings: ObjectStorageSettings, path: str) -> str:
    """Object key prefix for a resolved path: configured prefix + path, as a folder."""
    prefix = join_path(settings.prefix, path).strip("/")
    return f"{prefix}/" if prefix else ""


class ObjectStorageAdapter(ProtocolAdapter):
    """Lists objects directly under a key prefix in a bucket."""

    protocol = Protocol.OBJECT_STORAGE
    blocking = True

    def __init__(
        self,
        secret_resolver: SecretResolver,
        client_factory: Optional[ClientFactory] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        super().__init__(secret_resolver, executor)
        self._client_factory = client_factory or _default_client_factory

    async def _list(
        self,
        path: str,
        settings: ObjectStorageSettings,
        timeout: float,
    ) -> List[RemoteFile]:
        client = self._client_factory(
            settings, self._secrets.resolve_optional(settings.secret_ref), timeout
        )
        prefix = search_prefix(settings, path)
        return await self._run_sync(self._list_sync, client, settings, prefix)

    async def _open_session(self, settings: ObjectStorageSettings, timeout: float) -> None:
        client = self._client_factory(
            settings, self._secrets.resolve_optional(settings.secret_ref), timeout
        )
        exists = await self._run_sync(self._call, client.bucket_exists, settings, settings.bucket)
        if not exists:
            raise ProtocolError(f"Bucket {settings.bucket} does not exist on {settings.endpoint}")

    def _list_sync(self, client: Minio, settings: ObjectStorageSettings, prefix: str) -> List[RemoteFile]:
        objects = self._call(
            lambda: list(client.list_objects(settings.bucket, prefix=prefix or None, recursive=False)),
            settings,
        )
        if objects is None:
            return []

        scheme = "https" if settings.secure else "http"
        files: List[RemoteFile] = []
        for obj in objects:
            if obj.is_dir:
                continue
            files.append(RemoteFile(
                url=f"{scheme}://{settings.endpoint}/{settings.bucket}/{obj.object_name}",
                size=obj.size,
                last_modified_remote=obj.last_modified,
                name=posixpath.basename(obj.object_name),
            ))
        return files

    @staticmethod
    def _call(func, settings: ObjectStorageSettings, *args):
        """Invoke a client call and translate MinIO/urllib3 errors.

        Returns None when the service reports the key or prefix as missing.
        """
        location = settings.location
        try:
            return func(*args)
        except S3Error as e:
            if e.code in _NOT_FOUND_CODES:
                logger.info(f"Object storage prefix not found in {location}")
                return None
            if e.code in _AUTH_ERROR_CODES:
                raise AuthenticationFailure(
                    f"Object storage rejected credentials for {location}", e.code
                ) from e
            if e.code in _PERMISSION_ERROR_CODES:
                raise PermissionDenied(f"Access denied to {location}", e.code) from e
            raise ProtocolError(f"Object storage error for {location}", f"{e.code}: {e.message}") from e
        except (InvalidResponseError, ServerError) as e:
            raise ProtocolError(f"Unexpected object storage response from {location}", str(e)) from e
        except urllib3.exceptions.TimeoutError as e:
            raise ConnectionTimeout(f"Object storage request to {location} timed out", str(e)) from e
        except urllib3.exceptions.HTTPError as e:
            raise ProtocolError(f"Object storage request to {location} failed", str(e)) from e