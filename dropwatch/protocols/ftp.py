"""FTP/FTPS adapter built on the standard library ``ftplib`` client."""

from __future__ import annotations

import ftplib
import logging
import posixpath
from concurrent.futures import Executor
from datetime import datetime, timezone
from typing import Callable, List, Optional

from dropwatch.credentials import SecretResolver
from dropwatch.domain import FtpSettings, Protocol, RemoteFile
from dropwatch.errors import (
    AuthenticationFailure,
    ConnectionTimeout,
    PermissionDenied,
    ProtocolError,
)
from dropwatch.protocols.base import ProtocolAdapter, join_path

logger = logging.getLogger(__name__)

FtpFactory = Callable[[bool, float], ftplib.FTP]

# Replies meaning the server does not implement MLSD
_UNSUPPORTED_COMMAND_CODES = {"500", "501", "502", "504"}


def _default_ftp_factory(use_tls: bool, timeout: float) -> ftplib.FTP:
    if use_tls:
        return ftplib.FTP_TLS(timeout=timeout)
    return ftplib.FTP(timeout=timeout)


def _reply_code(error: Exception) -> str:
    return str(error)[:3]


def parse_ftp_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an MLSD ``modify`` fact or MDTM reply (``YYYYMMDDHHMMSS[.sss]``, UTC)."""
    if not value:
        return None
    value = value.strip()
    if value.startswith("213 "):
        value = value[4:]
    try:
        return datetime.strptime(value[:14], "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        logger.debug(f"Unparseable FTP timestamp: {value!r}")
        return None


class FtpAdapter(ProtocolAdapter):
    """Lists files in a directory on an FTP or FTPS server.

    Listing prefers MLSD and falls back to NLST with SIZE/MDTM lookups for
    servers that do not implement it. A missing directory (550) is reported
    as zero matches.
    """

    protocol = Protocol.FTP
    blocking = True

    def __init__(
        self,
        secret_resolver: SecretResolver,
        ftp_factory: Optional[FtpFactory] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        super().__init__(secret_resolver, executor)
        self._ftp_factory = ftp_factory or _default_ftp_factory

    async def _list(self, path: str, settings: FtpSettings, timeout: float) -> List[RemoteFile]:
        password = self._secrets.resolve_optional(settings.password_ref) or ""
        return await self._run_sync(self._list_sync, path, settings, password, timeout)

    async def _open_session(self, settings: FtpSettings, timeout: float) -> None:
        password = self._secrets.resolve_optional(settings.password_ref) or ""
        await self._run_sync(self._open_session_sync, settings, password, timeout)

    def _open_session_sync(self, settings: FtpSettings, password: str, timeout: float) -> None:
        with self._translate_errors(settings, "/"):
            ftp = self._connect(settings, password, timeout)
            try:
                ftp.voidcmd("NOOP")
            finally:
                self._close(ftp)

    def _list_sync(
        self,
        path: str,
        settings: FtpSettings,
        password: str,
        timeout: float,
    ) -> List[RemoteFile]:
        directory = "/" + path.strip("/") if path.strip("/") else "/"
        with self._translate_errors(settings, directory) as outcome:
            ftp = self._connect(settings, password, timeout)
            try:
                return self._list_directory(ftp, directory, settings)
            finally:
                self._close(ftp)
        # Reached only when a missing directory was translated to "no files"
        return outcome.files

    def _connect(self, settings: FtpSettings, password: str, timeout: float) -> ftplib.FTP:
        ftp = self._ftp_factory(settings.use_tls, timeout)
        ftp.connect(settings.host, settings.port, timeout=timeout)
        ftp.login(settings.username, password)
        if settings.use_tls and isinstance(ftp, ftplib.FTP_TLS):
            ftp.prot_p()
        ftp.set_pasv(settings.passive_mode)
        return ftp

    @staticmethod
    def _close(ftp: ftplib.FTP) -> None:
        try:
            ftp.quit()
        except (ftplib.Error, OSError, EOFError) as e:
            logger.debug(f"FTP QUIT failed, closing socket: {e}")
            ftp.close()

    def _list_directory(self, ftp: ftplib.FTP, directory: str, settings: FtpSettings) -> List[RemoteFile]:
        try:
            entries = list(ftp.mlsd(directory, facts=["type", "size", "modify"]))
        except ftplib.error_perm as e:
            if _reply_code(e) not in _UNSUPPORTED_COMMAND_CODES:
                raise
            logger.debug(f"MLSD not supported by {settings.host}, falling back to NLST")
            return self._list_with_nlst(ftp, directory, settings)

        files: List[RemoteFile] = []
        for name, facts in entries:
            if facts.get("type", "file") != "file":
                continue
            size = facts.get("size")
            files.append(RemoteFile(
                url=self._file_url(settings, directory, name),
                size=int(size) if size and size.isdigit() else None,
                last_modified_remote=parse_ftp_timestamp(facts.get("modify")),
                name=name,
            ))
        return files

    def _list_with_nlst(self, ftp: ftplib.FTP, directory: str, settings: FtpSettings) -> List[RemoteFile]:
        files: List[RemoteFile] = []
        for entry in ftp.nlst(directory):
            name = posixpath.basename(entry.rstrip("/"))
            if not name or name in (".", ".."):
                continue
            full_path = join_path(directory, name)
            try:
                size = ftp.size(full_path)
            except ftplib.error_perm:
                # SIZE is refused for directories
                continue
            try:
                modified = parse_ftp_timestamp(ftp.voidcmd(f"MDTM {full_path}"))
            except ftplib.error_perm:
                modified = None
            files.append(RemoteFile(
                url=self._file_url(settings, directory, name),
                size=size,
                last_modified_remote=modified,
                name=name,
            ))
        return files

    @staticmethod
    def _file_url(settings: FtpSettings, directory: str, name: str) -> str:
        return f"ftp://{settings.host}:{settings.port}{join_path(directory, name)}"

    def _translate_errors(self, settings: FtpSettings, directory: str) -> "_FtpErrorTranslator":
        return _FtpErrorTranslator(settings, directory)


class _FtpErrorTranslator:
    """Context manager mapping ftplib and socket errors onto adapter errors."""

    def __init__(self, settings: FtpSettings, directory: str) -> None:
        self.settings = settings
        self.directory = directory
        self.files: List[RemoteFile] = []

    def __enter__(self) -> "_FtpErrorTranslator":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is None:
            return False

        host = self.settings.host
        if isinstance(exc, ftplib.error_perm):
            code = _reply_code(exc)
            if code in ("530", "332"):
                raise AuthenticationFailure(f"FTP login rejected by {host}", str(exc)) from exc
            if code == "550":
                message = str(exc).lower()
                if "permission" in message or "access" in message or "denied" in message:
                    raise PermissionDenied(
                        f"FTP access to {self.directory} denied on {host}", str(exc)
                    ) from exc
                logger.info(f"FTP directory {self.directory} not found on {host}")
                return True
            raise ProtocolError(f"FTP command rejected by {host}", str(exc)) from exc
        if isinstance(exc, TimeoutError):
            raise ConnectionTimeout(f"FTP connection to {host} timed out", str(exc)) from exc
        if isinstance(exc, (ftplib.error_temp, ftplib.error_reply, ftplib.error_proto, EOFError)):
            raise ProtocolError(f"FTP protocol error from {host}", str(exc)) from exc
        if isinstance(exc, OSError):
            raise ProtocolError(f"FTP connection to {host} failed", str(exc)) from exc
        return False
