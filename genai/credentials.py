from __future__ import annotations

import getpass
import os
from typing import Protocol

from .errors import MissingCredentialError


class CredentialProvider(Protocol):
    @property
    def api_key(self) -> str: ...

    def has_credential(self) -> bool: ...

    def request_credential(self) -> None: ...


class EnvCredentialProvider:
    """Reads the API key from the environment and can prompt for one on a terminal."""

    def __init__(self, env_vars: tuple[str, ...] = ("GEMINI_API_KEY", "API_KEY")) -> None:
        self.env_vars = env_vars
        self._prompted: str | None = None

    @property
    def api_key(self) -> str:
        if self._prompted:
            return self._prompted
        for name in self.env_vars:
            value = os.getenv(name, "").strip()
            if value:
                return value
        return ""

    def has_credential(self) -> bool:
        return bool(self.api_key)

    def request_credential(self) -> None:
        value = getpass.getpass(f"{self.env_vars[0]}: ").strip()
        if not value:
            raise MissingCredentialError("No API key entered")
        self._prompted = value


class StaticCredentialProvider:
    def __init__(self, api_key: str) -> None:
        self.api_key = api_key.strip()

    def has_credential(self) -> bool:
        return bool(self.api_key)

    def request_credential(self) -> None:
        if not self.api_key:
            raise MissingCredentialError("Static credential provider has no API key")
