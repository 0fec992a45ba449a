"""
Result type
Explicit success/failure values for calls whose failure is tolerated
(durable storage writes, remote gateway calls).
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Result:
    ok: bool
    value: Any = None
    error: Optional[str] = None
    status_code: Optional[int] = None

    @classmethod
    def success(cls, value=None, status_code=None):
        return cls(ok=True, value=value, status_code=status_code)

    @classmethod
    def failure(cls, error, status_code=None):
        return cls(ok=False, error=str(error), status_code=status_code)

    def __bool__(self):
        return self.ok
