from __future__ import annotations

from dataclasses import dataclass


class MissingCredentialError(RuntimeError):
    pass


@dataclass(frozen=True)
class GenAIError(Exception):
    code: str
    message: str
    operation: str
    retryable: bool = False

    def __str__(self) -> str:
        return f"{self.code}({self.operation}): {self.message}"
