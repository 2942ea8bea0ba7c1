"""Demo data for the in-memory store (mirrors the test user seeds)."""

from __future__ import annotations

from typing import Any


PERMISSIONS = [
    ("uri_dashboard", "View dashboard"),
    ("uri_users", "View users"),
    ("view_user_field", "View user details"),
    ("update_user_field", "Edit users"),
    ("uri_roles", "View roles"),
    ("update_role_field", "Edit roles"),
    ("uri_permissions", "View permissions"),
    ("view_permission_field", "View permission details"),
    ("update_permission", "Edit permissions"),
    ("uri_groups", "View groups"),
    ("clear_cache", "Clear cache"),
]

ROLES = [
    ("site-admin", "Site Administrator", [p for p, _ in PERMISSIONS]),
    ("group-admin", "Group Administrator", ["uri_dashboard", "uri_users", "view_user_field", "update_user_field"]),
    ("user", "User", ["uri_dashboard"]),
]

USERS = [
    ("admin", "Root", "Admin", ["site-admin"]),
    ("alice", "Alice", "Martin", ["group-admin", "user"]),
    ("bob", "Bob", "Durand", ["user"]),
]


def seed_demo(records: Any) -> dict:
    """Insert users, roles, permissions and a group; return ids by slug/name."""
    ids: dict = {"permissions": {}, "roles": {}, "users": {}, "groups": {}}
    group = records.insert("groups", {"slug": "terran", "name": "Terran", "description": None, "icon": None})
    ids["groups"]["terran"] = group["id"]
    for slug, name in PERMISSIONS:
        row = records.insert("permissions", {"slug": slug, "name": name, "conditions": "always()", "description": None})
        ids["permissions"][slug] = row["id"]
    for slug, name, perms in ROLES:
        row = records.insert("roles", {"slug": slug, "name": name, "description": None})
        ids["roles"][slug] = row["id"]
        for perm in perms:
            records.link("permission_roles", {"role_id": row["id"], "permission_id": ids["permissions"][perm]})
    for user_name, first, last, roles in USERS:
        row = records.insert(
            "users",
            {
                "user_name": user_name,
                "first_name": first,
                "last_name": last,
                "email": f"{user_name}@example.com",
                "locale": "en_US",
                "group_id": group["id"],
                "flag_verified": True,
                "flag_enabled": True,
                "password": None,
                "password_last_set": "2024-01-01T00:00:00Z",
            },
        )
        ids["users"][user_name] = row["id"]
        for role in roles:
            records.link("role_users", {"user_id": row["id"], "role_id": ids["roles"][role]})
    return ids
