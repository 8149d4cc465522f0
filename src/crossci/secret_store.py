# secret_store.py
from __future__ import annotations

import os
from typing import Mapping, Optional, Protocol

from .errors import SecretNotFound


class SecretStore(Protocol):
    def lookup(self, name: str) -> str:
        ...


class MappingSecretStore:
    """Secrets held in a plain mapping (tests, embedding)."""

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values = dict(values or {})

    def lookup(self, name: str) -> str:
        try:
            return self._values[name]
        except KeyError:
            raise SecretNotFound(message=f"secret '{name}' is not bound") from None


class EnvSecretStore:
    """
    Secrets injected by the runner as environment variables.

    With a prefix, ``lookup("GITHUB_TOKEN")`` reads ``<prefix>GITHUB_TOKEN``.
    """

    def __init__(self, prefix: str = "", environ: Optional[Mapping[str, str]] = None):
        self.prefix = prefix
        self._environ = environ

    def lookup(self, name: str) -> str:
        env = os.environ if self._environ is None else self._environ
        key = f"{self.prefix}{name}"
        value = env.get(key)
        if value is None:
            raise SecretNotFound(
                message=f"secret '{name}' is not bound",
                details={"env": key},
            )
        return value
