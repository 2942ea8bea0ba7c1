"""Custom record actions declared in CRUD6 schemas."""

from __future__ import annotations

import logging
from typing import Any

from c6admin.list_query import primary_key
from field_dispatch import ActionRegistry


logger = logging.getLogger("c6admin.actions")


def make_reset_password(records: Any, schemas: Any):
    """Expire a user's password so a reset is required at next login."""

    def reset_password(record: dict, payload: dict, ctx: dict) -> dict:
        schema = schemas.get("users")
        record_id = record.get(primary_key(schema))
        updated = records.save(schema, record_id, {"password_last_set": None})
        logger.info(
            "password_reset user_id=%s by=%s",
            record_id,
            (ctx.get("actor") or {}).get("user_id"),
        )
        return {
            "message": f"Password reset requested for {updated.get('user_name')}",
            "record": {k: v for k, v in updated.items() if k != "password"},
        }

    return reset_password


def build_action_registry(records: Any, schemas: Any) -> ActionRegistry:
    registry = ActionRegistry()
    registry.register("users", "reset-password", make_reset_password(records, schemas))
    return registry
