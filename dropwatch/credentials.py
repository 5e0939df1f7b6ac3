"""Secret resolution by reference.

Configurations only hold references such as ``partner-a/ftp-password``.
Adapters resolve them at call time and never log the resolved value.
"""

from __future__ import annotations

import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Dict, Mapping, Optional

from dropwatch.errors import SecretResolutionError

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")


class SecretResolver(ABC):
    """Turns a secret reference into a credential."""

    @abstractmethod
    def resolve(self, reference: str) -> str:
        """Return the credential for ``reference``.

        Raises:
            SecretResolutionError: If the reference is unknown
        """

    def resolve_optional(self, reference: Optional[str]) -> Optional[str]:
        if not reference:
            return None
        return self.resolve(reference)


class EnvironmentSecretResolver(SecretResolver):
    """Reads secrets from environment variables.

    A reference is upper-cased and every run of non-alphanumeric characters
    becomes an underscore, so ``partner-a/ftp-password`` with the default
    prefix maps to ``DROPWATCH_SECRET_PARTNER_A_FTP_PASSWORD``.
    """

    def __init__(self, prefix: str = "DROPWATCH_SECRET_", environ: Optional[Mapping[str, str]] = None):
        self._prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def variable_name(self, reference: str) -> str:
        return self._prefix + _NON_ALNUM.sub("_", reference).strip("_").upper()

    def resolve(self, reference: str) -> str:
        name = self.variable_name(reference)
        value = self._environ.get(name)
        if value is None:
            logger.warning(f"Secret reference {reference!r} not found (expected {name})")
            raise SecretResolutionError(reference)
        return value


class StaticSecretResolver(SecretResolver):
    """Resolves references from an in-memory mapping."""

    def __init__(self, secrets: Optional[Dict[str, str]] = None):
        self._secrets: Dict[str, str] = dict(secrets or {})

    def set(self, reference: str, value: str) -> None:
        self._secrets[reference] = value

    def resolve(self, reference: str) -> str:
        try:
            return self._secrets[reference]
        except KeyError:
            raise SecretResolutionError(reference) from None
