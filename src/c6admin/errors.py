"""Error taxonomy shared by the engines and the HTTP layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List


@dataclass(eq=False)
class PanelError(Exception):
    message: str
    path: str | None = None
    detail: dict | None = None

    code: ClassVar[str] = "PANEL_ERROR"
    status: ClassVar[int] = 500

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        if self.path:
            return f"{self.message} (path={self.path})"
        return self.message

    def to_issue(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "path": self.path, "detail": self.detail}


class NotFoundError(PanelError):
    code = "NOT_FOUND"
    status = 404


class ForbiddenError(PanelError):
    code = "FORBIDDEN"
    status = 403


class InvalidArgumentError(PanelError):
    code = "INVALID_ARGUMENT"
    status = 400


@dataclass(eq=False)
class ValidationFailedError(PanelError):
    """Raised by the base record layer when a value fails field validation."""

    issues: List[Dict[str, Any]] = field(default_factory=list)

    code: ClassVar[str] = "VALIDATION_FAILED"
    status: ClassVar[int] = 400
