"""Dispatch from a configuration's protocol to its adapter."""

from __future__ import annotations

from concurrent.futures import Executor
from typing import Dict, Optional

from dropwatch.credentials import SecretResolver
from dropwatch.domain import Protocol
from dropwatch.errors import ProtocolError
from dropwatch.protocols.base import ProtocolAdapter
from dropwatch.protocols.ftp import FtpAdapter
from dropwatch.protocols.https import HttpsAdapter
from dropwatch.protocols.object_storage import ObjectStorageAdapter


class AdapterRegistry:
    """Holds exactly one adapter per supported protocol.

    Example:
        registry = AdapterRegistry.default(EnvironmentSecretResolver())
        adapter = registry.get(configuration.protocol)
    """

    def __init__(self, adapters: Optional[Dict[Protocol, ProtocolAdapter]] = None) -> None:
        self._adapters: Dict[Protocol, ProtocolAdapter] = {}
        for adapter in (adapters or {}).values():
            self.register(adapter)

    @classmethod
    def default(cls, secret_resolver: SecretResolver, executor: Optional[Executor] = None) -> "AdapterRegistry":
        """Build the standard adapters; ``executor`` runs the blocking FTP and MinIO clients."""
        return cls({
            Protocol.FTP: FtpAdapter(secret_resolver, executor=executor),
            Protocol.HTTPS: HttpsAdapter(secret_resolver),
            Protocol.OBJECT_STORAGE: ObjectStorageAdapter(secret_resolver, executor=executor),
        })

    def register(self, adapter: ProtocolAdapter) -> None:
        self._adapters[Protocol(adapter.protocol)] = adapter

    def get(self, protocol: Protocol) -> ProtocolAdapter:
        try:
            return self._adapters[Protocol(protocol)]
        except KeyError:
            raise ProtocolError(f"No adapter registered for protocol {protocol}") from None

    def __contains__(self, protocol: object) -> bool:
        return protocol in self._adapters
