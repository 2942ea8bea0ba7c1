"""c6admin kernel utilities."""

from .coerce import normalize_bool
from .errors import (
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
    PanelError,
    ValidationFailedError,
)
from .list_query import ListQuery, parse_list_query

__all__ = [
    "ForbiddenError",
    "InvalidArgumentError",
    "ListQuery",
    "NotFoundError",
    "PanelError",
    "ValidationFailedError",
    "normalize_bool",
    "parse_list_query",
]
