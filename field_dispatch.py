"""Schema-driven single-field update and custom action dispatch."""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from c6admin.coerce import normalize_bool
from c6admin.errors import ForbiddenError, InvalidArgumentError, NotFoundError
from c6admin.list_query import primary_key, schema_fields
from schema_store import find_relationship, permission_for


logger = logging.getLogger("c6admin.dispatch")

TOGGLE_KEY = "toggle"
RELATION_OPERATIONS = ("attach", "detach")

ActionHandler = Callable[[dict, dict, dict], Any]


@dataclass(frozen=True)
class FieldEntry:
    name: str
    type: str | None
    toggle: bool = False
    spec: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_toggle(self) -> bool:
        return self.type == "boolean" and self.toggle


@dataclass(frozen=True)
class ActionEntry:
    key: str
    method: str = "POST"
    permission: str | None = None
    spec: Dict[str, Any] = field(default_factory=dict, compare=False)


class ActionRegistry:
    """Custom action handlers keyed by (model, action key)."""

    def __init__(self) -> None:
        self._handlers: Dict[tuple, ActionHandler] = {}

    def register(self, model: str, key: str, handler: ActionHandler) -> None:
        self._handlers[(model, key)] = handler

    def get(self, model: str, key: str) -> ActionHandler | None:
        return self._handlers.get((model, key))

    def keys(self, model: str) -> List[str]:
        return sorted(key for (m, key) in self._handlers if m == model)


def resolve_entry(schema: dict, name: str) -> FieldEntry | ActionEntry | None:
    spec = schema_fields(schema).get(name)
    if spec is not None:
        return FieldEntry(name=name, type=spec.get("type"), toggle=spec.get("toggle") is True, spec=spec)
    for action in schema.get("actions") or []:
        if isinstance(action, dict) and action.get("key") == name:
            return ActionEntry(
                key=name,
                method=str(action.get("method") or "POST").upper(),
                permission=action.get("permission"),
                spec=action,
            )
    return None


def _toggle_requested(entry: FieldEntry, payload: dict) -> bool:
    # A null value counts as absent. Only a JSON ``true`` counts as the marker,
    # and it wins over an explicit value.
    return payload.get(entry.name) is None or payload.get(TOGGLE_KEY) is True


def _record_lock(records: Any, schema: dict, record_id: Any):
    lock = getattr(records, "lock_record", None)
    if callable(lock) and record_id is not None:
        return lock(schema, record_id), True
    return contextlib.nullcontext(), False


def _dispatch_toggle(schema: dict, record: dict, entry: FieldEntry, params: dict, records: Any) -> Any:
    record_id = record.get(primary_key(schema))
    guard, locked = _record_lock(records, schema, record_id)
    with guard:
        current_record = records.get(schema, record_id) if locked else record
        current = current_record.get(entry.name)
        params[entry.name] = not current
        logger.info(
            "field_toggle model=%s record_id=%s field=%s current=%s new=%s",
            schema.get("model"),
            record_id,
            entry.name,
            current,
            params[entry.name],
        )
        return records.update_field(schema, current_record, entry.name, params)


def _dispatch_action(schema: dict, record: dict, entry: ActionEntry, params: dict, ctx: dict, deps: dict) -> Any:
    model = schema.get("model")
    authorizer = deps.get("authorizer")
    actor = ctx.get("actor")
    if not entry.permission or authorizer is None or not authorizer(actor, entry.permission):
        logger.warning("action_forbidden model=%s action=%s permission=%s", model, entry.key, entry.permission)
        raise ForbiddenError("Access denied", entry.key, {"permission": entry.permission})
    registry = deps.get("actions")
    handler = registry.get(model, entry.key) if registry is not None else None
    if handler is None:
        raise NotFoundError(f"Action handler not registered: {entry.key}", entry.key)
    logger.info("action_invoke model=%s action=%s record_id=%s", model, entry.key, record.get(primary_key(schema)))
    return handler(record, params, ctx)


def dispatch_update(schema: dict, record: dict, name: str, payload: dict | None, ctx: dict, deps: dict) -> Any:
    """Route a single-field update or a named custom action.

    ``deps["records"]`` is the base record layer (``update_field`` and,
    optionally, ``get``/``lock_record``), ``deps["actions"]`` an
    :class:`ActionRegistry` and ``deps["authorizer"]`` a
    ``(actor, permission_slug) -> bool`` callable. Errors raised by any of
    them propagate unchanged.
    """
    records = deps.get("records")
    params = dict(payload or {})
    entry = resolve_entry(schema, name)

    if isinstance(entry, ActionEntry):
        return _dispatch_action(schema, record, entry, params, ctx, deps)

    if isinstance(entry, FieldEntry) and entry.is_toggle:
        if _toggle_requested(entry, params):
            return _dispatch_toggle(schema, record, entry, params, records)
        params[entry.name] = normalize_bool(params[entry.name])
        logger.info(
            "field_bool_normalized model=%s field=%s value=%r",
            schema.get("model"),
            entry.name,
            params[entry.name],
        )
    elif entry is None:
        logger.error("field_unknown model=%s field=%s", schema.get("model"), name)

    return records.update_field(schema, record, name, params)


def _check_relation_ids(ids: Any) -> List[Any]:
    if not isinstance(ids, list) or not ids:
        raise InvalidArgumentError("ids must be a non-empty list", "ids")
    for value in ids:
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise InvalidArgumentError("ids must contain integers or strings", "ids")
    return list(dict.fromkeys(ids))


def dispatch_relation(schema: dict, record: dict, relation: str, operation: str, ids: Any, ctx: dict, deps: dict) -> Any:
    """Attach or detach related ids on a declared many-to-many relationship."""
    if operation not in RELATION_OPERATIONS:
        raise InvalidArgumentError(f"Unsupported relation operation: {operation}", "operation")
    rel = find_relationship(schema, relation)
    if rel is None or rel.get("type") != "many_to_many":
        raise NotFoundError(f"Relationship not found: {relation}", relation)
    permission = (rel.get("permissions") or {}).get(operation) or permission_for(schema, "update")
    authorizer = deps.get("authorizer")
    if not permission or authorizer is None or not authorizer(ctx.get("actor"), permission):
        logger.warning("relation_forbidden model=%s relation=%s operation=%s", schema.get("model"), relation, operation)
        raise ForbiddenError("Access denied", relation, {"permission": permission})
    clean_ids = _check_relation_ids(ids)
    records = deps.get("records")
    if operation == "attach":
        return records.attach_related(schema, record, relation, clean_ids)
    return records.detach_related(schema, record, relation, clean_ids)
