"""Boolean normalization for request values."""

from __future__ import annotations

from typing import Any


_TRUE_VALUES = ("true", "1")
_FALSE_VALUES = ("false", "0")


def normalize_bool(value: Any) -> Any:
    """Map the accepted boolean spellings to ``True``/``False``.

    ``"true"``, ``"1"`` and ``1`` become ``True``; ``"false"``, ``"0"`` and ``0``
    become ``False``. Real booleans are returned as-is and anything else is
    passed through untouched so the record layer can reject it.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return value
    if isinstance(value, str):
        if value in _TRUE_VALUES:
            return True
        if value in _FALSE_VALUES:
            return False
    return value
