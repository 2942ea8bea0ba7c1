import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.schema_validate import validate_schema
from app.stores import MemoryRecordStore
from c6admin.errors import InvalidArgumentError, NotFoundError
from c6admin.list_query import ListQuery
from provenance_query import (
    PERMISSION_USERS,
    USER_PERMISSIONS,
    ProvenanceQueryEngine,
    via_relation_from_schemas,
)
from schema_store import SchemaStore


class CountingReader:
    def __init__(self, inner) -> None:
        self.inner = inner
        self.calls = []

    def get_row(self, table, pk, row_id):
        self.calls.append(("get_row", table))
        return self.inner.get_row(table, pk, row_id)

    def fetch_rows(self, table, pk, ids):
        self.calls.append(("fetch_rows", table))
        return self.inner.fetch_rows(table, pk, ids)

    def linked_ids(self, join, left_ids):
        self.calls.append(("linked_ids", join.table))
        return self.inner.linked_ids(join, left_ids)


class TestProvenanceQuery(unittest.TestCase):
    def setUp(self) -> None:
        self.schemas = SchemaStore(validator=validate_schema)
        self.store = MemoryRecordStore(self.schemas)
        self.engine = ProvenanceQueryEngine(self.store, self.schemas)

    def _user(self, user_name: str) -> int:
        row = self.store.insert(
            "users",
            {
                "user_name": user_name,
                "first_name": user_name.title(),
                "last_name": "Test",
                "email": f"{user_name}@example.com",
                "flag_enabled": True,
                "flag_verified": True,
                "password": "secret-hash",
            },
        )
        return row["id"]

    def _role(self, name: str) -> int:
        return self.store.insert("roles", {"slug": name.lower(), "name": name})["id"]

    def _permission(self, slug: str, name: str | None = None) -> int:
        return self.store.insert("permissions", {"slug": slug, "name": name or slug, "conditions": "always()"})["id"]

    def _grant(self, role_id: int, *permission_ids: int) -> None:
        for pid in permission_ids:
            self.store.link("permission_roles", {"role_id": role_id, "permission_id": pid})

    def _assign(self, user_id: int, *role_ids: int) -> None:
        for rid in role_ids:
            self.store.link("role_users", {"user_id": user_id, "role_id": rid})

    def test_owner_without_roles_returns_empty(self) -> None:
        user_id = self._user("loner")
        self._permission("orphan")
        result = self.engine.query(user_id, USER_PERMISSIONS)
        self.assertEqual(result["rows"], [])
        self.assertEqual(result["count"], 0)
        self.assertEqual(result["count_filtered"], 0)

    def test_permission_granted_by_two_roles_appears_once(self) -> None:
        user_id = self._user("alice")
        r1 = self._role("R1")
        r2 = self._role("R2")
        perm = self._permission("P")
        self._grant(r1, perm)
        self._grant(r2, perm)
        self._assign(user_id, r1, r2)

        result = self.engine.query(user_id, USER_PERMISSIONS)
        self.assertEqual(result["count"], 1)
        self.assertEqual(len(result["rows"]), 1)
        row = result["rows"][0]
        self.assertEqual(row["id"], perm)
        self.assertEqual(row["roles_via"], ["R1", "R2"])

    def test_returns_every_permission_of_a_role(self) -> None:
        user_id = self._user("bob")
        role = self._role("Editors")
        p1 = self._permission("test_permission_1")
        p2 = self._permission("test_permission_2")
        self._grant(role, p1, p2)
        self._assign(user_id, role)

        result = self.engine.query(user_id, USER_PERMISSIONS)
        self.assertEqual([r["slug"] for r in result["rows"]], ["test_permission_1", "test_permission_2"])
        for row in result["rows"]:
            self.assertEqual(row["roles_via"], ["Editors"])

    def test_unrelated_roles_do_not_leak(self) -> None:
        user_id = self._user("carol")
        mine = self._role("Mine")
        other = self._role("Other")
        p1 = self._permission("mine_perm")
        p2 = self._permission("other_perm")
        self._grant(mine, p1)
        self._grant(other, p1, p2)
        self._assign(user_id, mine)

        rows = self.engine.query(user_id, USER_PERMISSIONS)["rows"]
        self.assertEqual([r["slug"] for r in rows], ["mine_perm"])
        self.assertEqual(rows[0]["roles_via"], ["Mine"])

    def test_filter_by_slug_substring(self) -> None:
        user_id = self._user("dave")
        role = self._role("Filters")
        self._grant(role, self._permission("filter_test_1"), self._permission("other_permission"))
        self._assign(user_id, role)

        result = self.engine.query(user_id, USER_PERMISSIONS, filters={"slug": "FILTER_test"})
        self.assertEqual(result["count"], 2)
        self.assertEqual(result["count_filtered"], 1)
        self.assertEqual(len(result["rows"]), 1)
        self.assertEqual(result["rows"][0]["slug"], "filter_test_1")

    def test_filtering_only_narrows(self) -> None:
        user_id = self._user("erin")
        role = self._role("Many")
        self._grant(role, *[self._permission(f"perm_{i}") for i in range(6)])
        self._assign(user_id, role)

        everything = self.engine.query(user_id, USER_PERMISSIONS)["rows"]
        for needle in ("perm", "perm_1", "nothing", "_"):
            narrowed = self.engine.query(user_id, USER_PERMISSIONS, filters={"slug": needle})["rows"]
            self.assertLessEqual(len(narrowed), len(everything))
            self.assertTrue(all(row in everything for row in narrowed))

    def test_pagination_is_stable(self) -> None:
        user_id = self._user("frank")
        role = self._role("Pager")
        # duplicate names force the primary-key tie-break
        ids = [self._permission(f"slug_{i}", name=f"Name {i % 2}") for i in range(5)]
        self._grant(role, *ids)
        self._assign(user_id, role)

        seen = []
        for page in range(3):
            result = self.engine.query(user_id, USER_PERMISSIONS, sort=("name", "asc"), page=page, size=2)
            self.assertEqual(result["page_info"], {"page": page, "size": 2, "pages": 3})
            seen.extend(row["id"] for row in result["rows"])
        self.assertEqual(len(seen), 5)
        self.assertEqual(sorted(seen), sorted(ids))
        repeat = [row["id"] for row in self.engine.query(user_id, USER_PERMISSIONS, sort=("name", "asc"))["rows"]]
        self.assertEqual(seen, repeat)

    def test_sort_ties_break_on_primary_key_ascending(self) -> None:
        user_id = self._user("gina")
        role = self._role("Ties")
        a = self._permission("b_slug", name="Same")
        b = self._permission("a_slug", name="Same")
        c = self._permission("c_slug", name="Zed")
        self._grant(role, c, b, a)
        self._assign(user_id, role)

        asc = [r["id"] for r in self.engine.query(user_id, USER_PERMISSIONS, sort=("name", "asc"))["rows"]]
        desc = [r["id"] for r in self.engine.query(user_id, USER_PERMISSIONS, sort=("name", "desc"))["rows"]]
        self.assertEqual(asc, [a, b, c])
        self.assertEqual(desc, [c, a, b])

    def test_default_sort_comes_from_schema(self) -> None:
        user_id = self._user("hank")
        role = self._role("Defaults")
        self._grant(role, self._permission("z", name="Zulu"), self._permission("a", name="Alpha"))
        self._assign(user_id, role)
        rows = self.engine.query(user_id, USER_PERMISSIONS)["rows"]
        self.assertEqual([r["name"] for r in rows], ["Alpha", "Zulu"])

    def test_unknown_owner_raises_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            self.engine.query(999, USER_PERMISSIONS)

    def test_invalid_filter_and_sort_fields(self) -> None:
        user_id = self._user("ivan")
        with self.assertRaises(InvalidArgumentError):
            self.engine.query(user_id, USER_PERMISSIONS, filters={"missing": "x"})
        with self.assertRaises(InvalidArgumentError):
            self.engine.query(user_id, USER_PERMISSIONS, filters={"id": "1"})
        with self.assertRaises(InvalidArgumentError):
            self.engine.query(user_id, USER_PERMISSIONS, filters={"roles_via": "R1"})
        with self.assertRaises(InvalidArgumentError):
            self.engine.query(user_id, USER_PERMISSIONS, sort=("conditions", "asc"))
        with self.assertRaises(InvalidArgumentError):
            self.engine.query(user_id, USER_PERMISSIONS, sort=("name", "sideways"))
        with self.assertRaises(InvalidArgumentError):
            self.engine.query(user_id, USER_PERMISSIONS, page=-1)
        with self.assertRaises(InvalidArgumentError):
            self.engine.query(user_id, USER_PERMISSIONS, size=0)

    def test_users_for_permission_hide_unlisted_fields(self) -> None:
        u1 = self._user("jane")
        u2 = self._user("kyle")
        r1 = self._role("Alpha")
        r2 = self._role("Beta")
        perm = self._permission("shared")
        self._grant(r1, perm)
        self._grant(r2, perm)
        self._assign(u1, r1, r2)
        self._assign(u2, r2)

        result = self.engine.query(perm, PERMISSION_USERS)
        self.assertEqual(result["count"], 2)
        by_name = {row["user_name"]: row for row in result["rows"]}
        self.assertEqual(by_name["jane"]["roles_via"], ["Alpha", "Beta"])
        self.assertEqual(by_name["kyle"]["roles_via"], ["Beta"])
        self.assertNotIn("password", by_name["jane"])

        filtered = self.engine.query(perm, PERMISSION_USERS, filters={"user_name": "kyle"})
        self.assertEqual([r["user_name"] for r in filtered["rows"]], ["kyle"])

    def test_boolean_filter_uses_coercion(self) -> None:
        perm = self._permission("flagged")
        role = self._role("Flags")
        self._grant(role, perm)
        on = self._user("on_user")
        off = self._user("off_user")
        self.store.save(self.schemas.get("users"), off, {"flag_enabled": False})
        self._assign(on, role)
        self._assign(off, role)

        rows = self.engine.query(perm, PERMISSION_USERS, filters={"flag_enabled": "0"})["rows"]
        self.assertEqual([r["user_name"] for r in rows], ["off_user"])

    def test_run_accepts_list_query(self) -> None:
        user_id = self._user("lena")
        role = self._role("Runner")
        self._grant(role, self._permission("one"), self._permission("two"))
        self._assign(user_id, role)
        result = self.engine.run(user_id, USER_PERMISSIONS, ListQuery(filters={"slug": "tw"}))
        self.assertEqual([r["slug"] for r in result["rows"]], ["two"])

    def test_reads_in_two_steps(self) -> None:
        user_id = self._user("mia")
        roles = [self._role(f"Role {i}") for i in range(3)]
        perms = [self._permission(f"p{i}") for i in range(4)]
        for role in roles:
            self._grant(role, *perms)
        self._assign(user_id, *roles)

        reader = CountingReader(self.store)
        ProvenanceQueryEngine(reader, self.schemas).query(user_id, USER_PERMISSIONS)
        kinds = [kind for kind, _ in reader.calls]
        self.assertEqual(kinds.count("linked_ids"), 2)
        self.assertEqual(kinds.count("fetch_rows"), 2)

    def test_relation_from_schemas_matches_builtin(self) -> None:
        users = self.schemas.get("users")
        roles = self.schemas.get("roles")
        permissions = self.schemas.get("permissions")
        self.assertEqual(via_relation_from_schemas(users, roles, "permissions"), USER_PERMISSIONS)
        self.assertEqual(via_relation_from_schemas(permissions, roles, "users"), PERMISSION_USERS)
        with self.assertRaises(NotFoundError):
            via_relation_from_schemas(users, roles, "groups")


if __name__ == "__main__":
    unittest.main()
