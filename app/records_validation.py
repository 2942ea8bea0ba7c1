"""Field validation for the base single-field update primitive."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from c6admin.errors import NotFoundError, ValidationFailedError
from c6admin.list_query import primary_key, schema_fields


_STRING_TYPES = ("string", "text", "email", "password")
_INTEGER_TYPES = ("integer", "int")
_NUMBER_TYPES = ("number", "decimal", "float")


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> dict:
    return {"code": code, "message": message, "path": path, "detail": detail}


def coerce_record_id(schema: dict, raw: Any) -> Any:
    """Convert a route parameter to the primary key's declared type."""
    pk = primary_key(schema)
    spec = schema_fields(schema).get(pk) or {}
    if spec.get("type") in _INTEGER_TYPES:
        try:
            return int(str(raw).strip())
        except (TypeError, ValueError):
            raise NotFoundError(f"{schema.get('model')} not found: {raw}", pk) from None
    return raw


def validate_field_value(field_id: str, field: dict, value: Any) -> list[dict]:
    errors: list[dict] = []
    if value is None:
        if field.get("required") or field.get("nullable") is False:
            errors.append(_issue("REQUIRED_FIELD", f"Missing required field: {field_id}", field_id))
        return errors
    ftype = field.get("type")
    if ftype in _STRING_TYPES:
        if not isinstance(value, str):
            errors.append(_issue("TYPE_MISMATCH", f"{field_id} must be a string", field_id))
        elif field.get("required") and not value.strip():
            errors.append(_issue("REQUIRED_FIELD", f"Missing required field: {field_id}", field_id))
        elif ftype == "email" and "@" not in value:
            errors.append(_issue("INVALID_EMAIL", f"{field_id} must be an email address", field_id))
    elif ftype in _INTEGER_TYPES:
        if not isinstance(value, int) or isinstance(value, bool):
            errors.append(_issue("TYPE_MISMATCH", f"{field_id} must be an integer", field_id))
    elif ftype in _NUMBER_TYPES:
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            errors.append(_issue("TYPE_MISMATCH", f"{field_id} must be a number", field_id))
    elif ftype == "boolean":
        if not isinstance(value, bool):
            errors.append(_issue("TYPE_MISMATCH", f"{field_id} must be a boolean", field_id))
    elif ftype == "date":
        if not isinstance(value, str):
            errors.append(_issue("TYPE_MISMATCH", f"{field_id} must be a date string", field_id))
        else:
            try:
                date.fromisoformat(value)
            except ValueError:
                errors.append(_issue("INVALID_DATE", f"{field_id} must be YYYY-MM-DD", field_id))
    elif ftype == "datetime":
        if not isinstance(value, str):
            errors.append(_issue("TYPE_MISMATCH", f"{field_id} must be a datetime string", field_id))
        else:
            try:
                datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                errors.append(_issue("INVALID_DATETIME", f"{field_id} must be ISO8601", field_id))
    # ignore unknown types
    return errors


def field_update_value(schema: dict, field_id: str, payload: dict) -> Any:
    """Extract and validate ``payload[field_id]`` for a single-field update."""
    field = schema_fields(schema).get(field_id)
    if field is None:
        raise NotFoundError(f"Field not found: {field_id}", field_id)
    if field.get("editable") is False or field_id == primary_key(schema):
        issue = _issue("FIELD_READONLY", f"{field_id} cannot be updated", field_id)
        raise ValidationFailedError(issue["message"], field_id, issues=[issue])
    if not isinstance(payload, dict) or field_id not in payload:
        issue = _issue("REQUIRED_FIELD", f"Missing value for field: {field_id}", field_id)
        raise ValidationFailedError(issue["message"], field_id, issues=[issue])
    value = payload[field_id]
    errors = validate_field_value(field_id, field, value)
    if errors:
        raise ValidationFailedError(errors[0]["message"], field_id, issues=errors)
    return value
