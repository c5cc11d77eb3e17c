"""
result.py
Outcome of a core operation: the value plus whether the store accepted it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Result:
    ok: bool
    value: Any = None
    error: str | None = None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(ok=True, value=value)

    @classmethod
    def fail(cls, error: Exception | str, default: Any = None) -> "Result":
        return cls(ok=False, value=default, error=str(error))

    def __bool__(self) -> bool:
        return self.ok
