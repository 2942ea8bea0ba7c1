import json
import os
import sys
import tempfile
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.schema_validate import validate_schema
from c6admin.errors import NotFoundError
from schema_store import SchemaStore, find_detail, find_relationship, normalize_schema, permission_for


def _minimal(**overrides):
    schema = {
        "model": "widgets",
        "table": "widgets",
        "primary_key": "id",
        "fields": {
            "id": {"type": "integer", "listable": True, "sortable": True},
            "name": {"type": "string", "listable": True, "sortable": True, "filterable": True},
            "enabled": {"type": "boolean", "toggle": True},
        },
    }
    schema.update(overrides)
    return schema


def _codes(schema):
    return {issue["code"] for issue in validate_schema(normalize_schema(schema))}


class TestShippedSchemas(unittest.TestCase):
    def test_all_shipped_schemas_validate(self) -> None:
        store = SchemaStore(validator=validate_schema)
        models = store.list_models()
        self.assertEqual(models, ["groups", "permissions", "roles", "users"])
        for model in models:
            with self.subTest(model=model):
                schema = store.get(model)
                self.assertEqual(validate_schema(schema), [])
                self.assertEqual(schema["model"], model)

    def test_lookup_helpers(self) -> None:
        users = SchemaStore().get("users")
        self.assertEqual(find_relationship(users, "roles")["pivot_table"], "role_users")
        self.assertIsNone(find_relationship(users, "groups"))
        self.assertEqual(find_detail(users, "permissions")["via"], "roles")
        self.assertEqual(permission_for(users, "update"), "update_user_field")
        self.assertIsNone(permission_for(users, "export"))


class TestSchemaStore(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def _write(self, name, payload) -> None:
        with open(os.path.join(self.tmp.name, f"{name}.json"), "w", encoding="utf-8") as handle:
            json.dump(payload, handle)

    def test_unknown_and_malformed_names_are_not_found(self) -> None:
        store = SchemaStore(self.tmp.name)
        for model in ("missing", "../users", "Users", ""):
            with self.subTest(model=model):
                with self.assertRaises(NotFoundError):
                    store.get(model)

    def test_returns_copies(self) -> None:
        self._write("widgets", _minimal())
        store = SchemaStore(self.tmp.name, validator=validate_schema)
        first = store.get("widgets")
        first["fields"]["name"]["type"] = "integer"
        self.assertEqual(store.get("widgets")["fields"]["name"]["type"], "string")

    def test_list_fields_are_keyed_by_name(self) -> None:
        raw = _minimal(fields=[{"name": "id", "type": "integer"}, {"name": "title", "type": "string"}])
        schema = normalize_schema(raw)
        self.assertEqual(schema["fields"], {"id": {"type": "integer"}, "title": {"type": "string"}})
        self.assertEqual(schema["actions"], [])
        self.assertEqual(schema["permissions"], {})

    def test_invalid_schema_is_refused(self) -> None:
        self._write("broken", _minimal(model="broken", primary_key="uuid"))
        store = SchemaStore(self.tmp.name, validator=validate_schema)
        with self.assertRaises(ValueError):
            store.get("broken")
        with self.assertRaises(ValueError):
            store.register("other", {"table": "other", "fields": {"id": {"type": "blob"}}})

    def test_register_and_invalidate(self) -> None:
        store = SchemaStore(self.tmp.name, validator=validate_schema)
        store.register("widgets", _minimal())
        self.assertEqual(store.list_models(), ["widgets"])
        self.assertEqual(store.get("widgets")["table"], "widgets")
        store.invalidate("widgets")
        with self.assertRaises(NotFoundError):
            store.get("widgets")


class TestSchemaValidate(unittest.TestCase):
    def test_minimal_schema_is_valid(self) -> None:
        self.assertEqual(_codes(_minimal()), set())

    def test_missing_keys(self) -> None:
        self.assertIn("SCHEMA_KEY_MISSING", {i["code"] for i in validate_schema({"model": "x"})})
        self.assertEqual(validate_schema([])[0]["code"], "SCHEMA_INVALID")

    def test_field_rules(self) -> None:
        fields = _minimal()["fields"]
        fields["bad"] = {"type": "blob"}
        fields["legacy"] = {"type": "string", "searchable": True}
        fields["hidden"] = {"type": "string", "sortable": True}
        fields["count"] = {"type": "integer", "toggle": True}
        codes = _codes(_minimal(fields=fields))
        self.assertIn("SCHEMA_FIELD_TYPE_INVALID", codes)
        self.assertIn("SCHEMA_FIELD_SEARCHABLE", codes)
        self.assertIn("SCHEMA_FIELD_NOT_LISTABLE", codes)
        self.assertIn("SCHEMA_TOGGLE_INVALID", codes)

    def test_default_sort_rules(self) -> None:
        self.assertIn("SCHEMA_DEFAULT_SORT_UNKNOWN", _codes(_minimal(default_sort={"missing": "asc"})))
        self.assertIn("SCHEMA_DEFAULT_SORT_INVALID", _codes(_minimal(default_sort={"enabled": "asc"})))
        self.assertIn("SCHEMA_DEFAULT_SORT_INVALID", _codes(_minimal(default_sort={"name": "up"})))

    def test_action_rules(self) -> None:
        actions = [
            {"key": "name", "permission": "p"},
            {"key": "archive", "permission": "p"},
            {"key": "archive", "permission": "p"},
            {"key": "Bad Key", "permission": "p"},
            {"key": "purge"},
            {"key": "export", "permission": "p", "method": "FETCH"},
        ]
        codes = _codes(_minimal(actions=actions))
        self.assertIn("SCHEMA_ACTION_KEY_SHADOWED", codes)
        self.assertIn("SCHEMA_ACTION_KEY_DUPLICATE", codes)
        self.assertIn("SCHEMA_ACTION_KEY_INVALID", codes)
        self.assertIn("SCHEMA_ACTION_PERMISSION_MISSING", codes)
        self.assertIn("SCHEMA_ACTION_METHOD_INVALID", codes)

    def test_relationship_rules(self) -> None:
        relationships = [
            {"name": "tags", "type": "has_many", "pivot_table": "widget_tags", "foreign_key": "widget_id", "related_key": "tag_id"},
            {"name": "owners", "type": "many_to_many"},
        ]
        details = [{"model": "permissions", "via": "roles"}]
        codes = _codes(_minimal(relationships=relationships, details=details))
        self.assertIn("SCHEMA_RELATIONSHIP_TYPE_INVALID", codes)
        self.assertIn("SCHEMA_RELATIONSHIP_INVALID", codes)
        self.assertIn("SCHEMA_DETAIL_VIA_UNKNOWN", codes)

    def test_primary_key_must_be_declared(self) -> None:
        self.assertIn("SCHEMA_PRIMARY_KEY_MISSING", _codes(_minimal(primary_key="uuid")))


if __name__ == "__main__":
    unittest.main()
