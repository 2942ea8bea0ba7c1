"""CRUD6 model schema validation."""

from __future__ import annotations

import re
from typing import Any, Dict, List

from c6admin.list_query import schema_fields


Issue = Dict[str, Any]


REQUIRED_TOP_KEYS = ("model", "table", "fields", "primary_key")
ALLOWED_FIELD_TYPES = {
    "integer",
    "number",
    "decimal",
    "string",
    "text",
    "email",
    "password",
    "boolean",
    "date",
    "datetime",
}
ALLOWED_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE"}
_IDENT_RE = re.compile(r"^[a-z_][a-z0-9_]*$")
_ACTION_KEY_RE = re.compile(r"^[a-z][a-z0-9_-]*$")


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def _validate_fields(schema: dict, errors: List[Issue]) -> None:
    fields = schema.get("fields")
    if not isinstance(fields, dict) or not fields:
        errors.append(_issue("SCHEMA_FIELDS_INVALID", "fields must be a non-empty object", "fields"))
        return
    for name, spec in fields.items():
        path = f"fields.{name}"
        if not isinstance(spec, dict):
            errors.append(_issue("SCHEMA_FIELD_INVALID", "field spec must be object", path))
            continue
        if not _IDENT_RE.match(name):
            errors.append(_issue("SCHEMA_FIELD_NAME_INVALID", f"invalid field name: {name}", path))
        ftype = spec.get("type")
        if ftype not in ALLOWED_FIELD_TYPES:
            errors.append(_issue("SCHEMA_FIELD_TYPE_INVALID", f"unsupported field type: {ftype}", f"{path}.type"))
        if "searchable" in spec:
            errors.append(_issue("SCHEMA_FIELD_SEARCHABLE", "use filterable instead of searchable", f"{path}.searchable"))
        listable = spec.get("listable", False)
        for attr in ("sortable", "filterable"):
            if attr in spec and not listable:
                errors.append(_issue("SCHEMA_FIELD_NOT_LISTABLE", f"{attr} requires listable", f"{path}.{attr}"))
        if spec.get("toggle") and ftype != "boolean":
            errors.append(_issue("SCHEMA_TOGGLE_INVALID", "toggle is only valid on boolean fields", f"{path}.toggle"))


def _validate_default_sort(schema: dict, errors: List[Issue]) -> None:
    default_sort = schema.get("default_sort")
    if default_sort is None:
        return
    if not isinstance(default_sort, dict):
        errors.append(_issue("SCHEMA_DEFAULT_SORT_INVALID", "default_sort must be object", "default_sort"))
        return
    fields = schema_fields(schema)
    for name, direction in default_sort.items():
        path = f"default_sort.{name}"
        spec = fields.get(name)
        if spec is None:
            errors.append(_issue("SCHEMA_DEFAULT_SORT_UNKNOWN", f"default sort field not found: {name}", path))
            continue
        if not spec.get("listable") or not spec.get("sortable"):
            errors.append(_issue("SCHEMA_DEFAULT_SORT_INVALID", "default sort field must be listable and sortable", path))
        if direction not in ("asc", "desc"):
            errors.append(_issue("SCHEMA_DEFAULT_SORT_INVALID", "direction must be asc or desc", path))


def _validate_actions(schema: dict, errors: List[Issue]) -> None:
    actions = schema.get("actions", [])
    if not isinstance(actions, list):
        errors.append(_issue("SCHEMA_ACTIONS_INVALID", "actions must be list", "actions"))
        return
    fields = schema_fields(schema)
    seen = set()
    for idx, action in enumerate(actions):
        path = f"actions[{idx}]"
        if not isinstance(action, dict):
            errors.append(_issue("SCHEMA_ACTION_INVALID", "action must be object", path))
            continue
        key = action.get("key")
        if not isinstance(key, str) or not _ACTION_KEY_RE.match(key):
            errors.append(_issue("SCHEMA_ACTION_KEY_INVALID", "action key must be a slug", f"{path}.key"))
        elif key in fields:
            errors.append(_issue("SCHEMA_ACTION_KEY_SHADOWED", f"action key collides with field: {key}", f"{path}.key"))
        elif key in seen:
            errors.append(_issue("SCHEMA_ACTION_KEY_DUPLICATE", f"duplicate action key: {key}", f"{path}.key"))
        seen.add(key)
        if not isinstance(action.get("permission"), str) or not action.get("permission"):
            errors.append(_issue("SCHEMA_ACTION_PERMISSION_MISSING", "action permission is required", f"{path}.permission"))
        method = action.get("method", "POST")
        if not isinstance(method, str) or method.upper() not in ALLOWED_METHODS:
            errors.append(_issue("SCHEMA_ACTION_METHOD_INVALID", f"unsupported method: {method}", f"{path}.method"))


def _validate_relationships(schema: dict, errors: List[Issue]) -> None:
    relationships = schema.get("relationships", [])
    if not isinstance(relationships, list):
        errors.append(_issue("SCHEMA_RELATIONSHIPS_INVALID", "relationships must be list", "relationships"))
        return
    names = set()
    for idx, rel in enumerate(relationships):
        path = f"relationships[{idx}]"
        if not isinstance(rel, dict):
            errors.append(_issue("SCHEMA_RELATIONSHIP_INVALID", "relationship must be object", path))
            continue
        if rel.get("type") != "many_to_many":
            errors.append(_issue("SCHEMA_RELATIONSHIP_TYPE_INVALID", "only many_to_many is supported", f"{path}.type"))
        for key in ("name", "pivot_table", "foreign_key", "related_key"):
            value = rel.get(key)
            if not isinstance(value, str) or not _IDENT_RE.match(value):
                errors.append(_issue("SCHEMA_RELATIONSHIP_INVALID", f"{key} is required", f"{path}.{key}"))
        permissions = rel.get("permissions")
        if permissions is not None and not isinstance(permissions, dict):
            errors.append(_issue("SCHEMA_RELATIONSHIP_INVALID", "permissions must be object", f"{path}.permissions"))
        if isinstance(rel.get("name"), str):
            names.add(rel["name"])
    for idx, detail in enumerate(schema.get("details") or []):
        path = f"details[{idx}]"
        if not isinstance(detail, dict) or not isinstance(detail.get("model"), str):
            errors.append(_issue("SCHEMA_DETAIL_INVALID", "detail must name a model", path))
            continue
        via = detail.get("via")
        if via is not None and via not in names:
            errors.append(_issue("SCHEMA_DETAIL_VIA_UNKNOWN", f"via relationship not declared: {via}", f"{path}.via"))


def validate_schema(schema: dict) -> List[Issue]:
    errors: List[Issue] = []
    if not isinstance(schema, dict):
        return [_issue("SCHEMA_INVALID", "schema must be object", "$")]
    for key in REQUIRED_TOP_KEYS:
        if key not in schema:
            errors.append(_issue("SCHEMA_KEY_MISSING", f"missing required key: {key}", key))
    if errors:
        return errors
    for key in ("model", "table", "primary_key"):
        if not isinstance(schema.get(key), str) or not _IDENT_RE.match(schema[key]):
            errors.append(_issue("SCHEMA_KEY_INVALID", f"{key} must be an identifier", key))
    _validate_fields(schema, errors)
    if isinstance(schema.get("fields"), dict) and schema.get("primary_key") not in schema["fields"]:
        errors.append(_issue("SCHEMA_PRIMARY_KEY_MISSING", "primary key must be declared in fields", "primary_key"))
    _validate_default_sort(schema, errors)
    _validate_actions(schema, errors)
    _validate_relationships(schema, errors)
    permissions = schema.get("permissions")
    if permissions is not None and not isinstance(permissions, dict):
        errors.append(_issue("SCHEMA_PERMISSIONS_INVALID", "permissions must be object", "permissions"))
    return errors
