"""
Typed outcomes for mutation intents.
"""
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


ErrorKind = Literal["validation", "import", "stale_reference", "store_write"]


class OperationError(BaseModel):
    kind: ErrorKind
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class OperationResult(BaseModel):
    ok: bool
    value: Any = None
    error: Optional[OperationError] = None

    @classmethod
    def success(cls, value: Any = None) -> "OperationResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, **details: Any) -> "OperationResult":
        return cls(ok=False, error=OperationError(kind=kind, message=message, details=details))


class OperationFailed(Exception):
    """Raised inside an intent; converted to a failed OperationResult at the intent boundary."""

    def __init__(self, kind: ErrorKind, message: str, **details: Any):
        self.kind = kind
        self.message = message
        self.details = details
        super().__init__(message)

    def to_result(self) -> OperationResult:
        return OperationResult.failure(self.kind, self.message, **self.details)
