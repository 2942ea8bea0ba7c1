"""List-query options (filters, sort, pagination) for schema-described rows."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from .coerce import normalize_bool
from .errors import InvalidArgumentError


Row = Dict[str, Any]
Sort = Tuple[str, str]

_PARAM_RE = re.compile(r"^(filters|sorts)\[([^\]]+)\]$")
_DIRECTIONS = ("asc", "desc")
_NUMERIC_TYPES = {"integer", "int", "number", "decimal", "float"}
_BOOLEAN_TYPES = {"boolean", "bool"}


@dataclass
class ListQuery:
    filters: Dict[str, str] = field(default_factory=dict)
    sort: Sort | None = None
    page: int = 0
    size: int | None = None


def _parse_int(value: Any, name: str) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise InvalidArgumentError(f"{name} must be an integer", name) from None


def parse_list_query(params: Mapping[str, Any]) -> ListQuery:
    """Parse Sprunje-style query parameters.

    Accepts ``filters[<field>]=<value>``, ``sorts[<field>]=asc|desc``,
    ``page`` (zero-based) and ``size`` (a positive integer or ``all``).
    """
    query = ListQuery()
    sorts: List[Sort] = []
    for key, value in params.items():
        match = _PARAM_RE.match(key)
        if match:
            kind, name = match.groups()
            if kind == "filters":
                if value is None or str(value) == "":
                    continue
                query.filters[name] = str(value)
            else:
                direction = str(value or "asc").strip().lower()
                sorts.append((name, direction))
            continue
        if key == "page":
            query.page = _parse_int(value, "page")
        elif key == "size":
            if str(value).strip().lower() in ("", "all"):
                query.size = None
            else:
                query.size = _parse_int(value, "size")
    if len(sorts) > 1:
        raise InvalidArgumentError("Only one sort field is supported", "sorts")
    if sorts:
        query.sort = sorts[0]
    return query


def schema_fields(schema: dict) -> Dict[str, dict]:
    fields = schema.get("fields") if isinstance(schema, dict) else None
    if isinstance(fields, dict):
        return {name: spec for name, spec in fields.items() if isinstance(spec, dict)}
    if isinstance(fields, list):
        return {f["name"]: f for f in fields if isinstance(f, dict) and isinstance(f.get("name"), str)}
    return {}


def primary_key(schema: dict) -> str:
    return schema.get("primary_key") or "id"


def listable_fields(schema: dict) -> List[str]:
    pk = primary_key(schema)
    names = [name for name, spec in schema_fields(schema).items() if spec.get("listable")]
    if pk not in names:
        names.insert(0, pk)
    return names


def project_row(row: Row, names: Iterable[str]) -> Row:
    return {name: row.get(name) for name in names}


def check_filters(schema: dict, filters: Mapping[str, Any]) -> None:
    fields = schema_fields(schema)
    for name in filters:
        spec = fields.get(name)
        if spec is None:
            raise InvalidArgumentError(f"Unknown filter field: {name}", f"filters.{name}")
        if not spec.get("listable") or not spec.get("filterable"):
            raise InvalidArgumentError(f"Field is not filterable: {name}", f"filters.{name}")


def check_sort(schema: dict, sort: Sort | None) -> None:
    if sort is None:
        return
    name, direction = sort
    spec = schema_fields(schema).get(name)
    if spec is None:
        raise InvalidArgumentError(f"Unknown sort field: {name}", f"sorts.{name}")
    if not spec.get("listable") or not spec.get("sortable"):
        raise InvalidArgumentError(f"Field is not sortable: {name}", f"sorts.{name}")
    if direction not in _DIRECTIONS:
        raise InvalidArgumentError("Sort direction must be asc or desc", f"sorts.{name}")


def check_page(page: int, size: int | None) -> None:
    if not isinstance(page, int) or isinstance(page, bool) or page < 0:
        raise InvalidArgumentError("page must be a non-negative integer", "page")
    if size is not None and (not isinstance(size, int) or isinstance(size, bool) or size <= 0):
        raise InvalidArgumentError("size must be a positive integer", "size")


def default_sort(schema: dict) -> Sort | None:
    declared = schema.get("default_sort")
    if isinstance(declared, dict):
        fields = schema_fields(schema)
        for name, direction in declared.items():
            spec = fields.get(name) or {}
            if spec.get("sortable") and direction in _DIRECTIONS:
                return (name, direction)
    return None


def _matches(value: Any, needle: str, ftype: str | None) -> bool:
    if value is None:
        return False
    if ftype in _BOOLEAN_TYPES:
        return value == normalize_bool(needle)
    if ftype in _NUMERIC_TYPES:
        try:
            return float(value) == float(needle.strip())
        except (TypeError, ValueError):
            return False
    return needle.casefold() in str(value).casefold()


def apply_filters(rows: List[Row], filters: Mapping[str, str], schema: dict) -> List[Row]:
    if not filters:
        return list(rows)
    fields = schema_fields(schema)
    out = []
    for row in rows:
        if all(_matches(row.get(name), str(needle), fields.get(name, {}).get("type")) for name, needle in filters.items()):
            out.append(row)
    return out


def _sort_key(value: Any) -> tuple:
    if value is None:
        return (0, "")
    if isinstance(value, str):
        return (1, value.casefold())
    return (1, value)


def sort_rows(rows: List[Row], sort: Sort | None, pk: str) -> List[Row]:
    """Sort by one field; rows that compare equal keep primary-key ascending order."""
    ordered = sorted(rows, key=lambda r: _sort_key(r.get(pk)))
    if sort is None:
        return ordered
    name, direction = sort
    return sorted(ordered, key=lambda r: _sort_key(r.get(name)), reverse=direction == "desc")


def paginate(rows: List[Row], page: int, size: int | None) -> Tuple[List[Row], dict]:
    total = len(rows)
    if size is None:
        return list(rows), {"page": 0, "size": None, "pages": 1 if total else 0}
    start = page * size
    pages = math.ceil(total / size) if total else 0
    return rows[start : start + size], {"page": page, "size": size, "pages": pages}
