"""Permission checks: a user holds a slug when one of their roles grants it."""

from __future__ import annotations

import logging
import os
from typing import Any, Set

from c6admin.errors import ForbiddenError, NotFoundError
from provenance_query import USER_PERMISSIONS, ProvenanceQueryEngine


logger = logging.getLogger("c6admin.authz")


def root_user_id() -> Any:
    raw = os.getenv("C6_ROOT_USER_ID", "1").strip()
    return int(raw) if raw.isdigit() else raw


def actor_user_id(actor: Any) -> Any:
    if not isinstance(actor, dict):
        return None
    return actor.get("user_id")


class Authorizer:
    def __init__(self, engine: ProvenanceQueryEngine) -> None:
        self._engine = engine

    def permission_slugs(self, user_id: Any) -> Set[str]:
        try:
            result = self._engine.query(user_id, USER_PERMISSIONS)
        except NotFoundError:
            return set()
        return {row.get("slug") for row in result["rows"] if row.get("slug")}

    def check_access(self, actor: Any, slug: str) -> bool:
        user_id = actor_user_id(actor)
        if user_id is None:
            return False
        if user_id == root_user_id():
            return True
        allowed = slug in self.permission_slugs(user_id)
        if not allowed:
            logger.warning("access_denied user_id=%s permission=%s", user_id, slug)
        return allowed

    __call__ = check_access

    def require(self, actor: Any, slug: str | None) -> None:
        if not slug or not self.check_access(actor, slug):
            raise ForbiddenError("Access denied", None, {"permission": slug})
