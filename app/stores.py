"""In-memory record store: base CRUD primitives and relation reads."""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Sequence, Tuple

from app.records_validation import field_update_value
from c6admin.errors import NotFoundError, ValidationFailedError
from c6admin.list_query import primary_key, schema_fields
from schema_store import find_relationship


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class MemoryRecordStore:
    def __init__(self, schemas=None) -> None:
        self._schemas = schemas
        self._tables: Dict[str, Dict[Any, dict]] = {}
        self._pivots: Dict[str, List[dict]] = {}
        self._seq: Dict[str, int] = {}
        # (table, id) -> [lock, holders]; dropped once no thread holds or waits
        self._locks: Dict[Tuple[str, Any], list] = {}
        self._guard = threading.Lock()

    def _bucket(self, table: str) -> Dict[Any, dict]:
        return self._tables.setdefault(table, {})

    # raw table access (seeding, dashboards)

    def insert(self, table: str, values: dict, pk: str = "id") -> dict:
        with self._guard:
            row = copy.deepcopy(values)
            if row.get(pk) is None:
                self._seq[table] = self._seq.get(table, 0) + 1
                row[pk] = self._seq[table]
            elif isinstance(row[pk], int):
                self._seq[table] = max(self._seq.get(table, 0), row[pk])
            row.setdefault("created_at", _now())
            self._bucket(table)[row[pk]] = row
            return copy.deepcopy(row)

    def link(self, pivot_table: str, values: dict) -> None:
        with self._guard:
            rows = self._pivots.setdefault(pivot_table, [])
            if values not in rows:
                rows.append(dict(values))

    def count(self, table: str) -> int:
        return len(self._bucket(table))

    def latest(self, table: str, order_field: str = "created_at", limit: int = 8) -> list[dict]:
        rows = sorted(self._bucket(table).values(), key=lambda r: r.get(order_field) or "", reverse=True)
        return [copy.deepcopy(r) for r in rows[:limit]]

    def database_info(self) -> dict:
        return {"connection": "memory", "type": "memory", "name": None, "version": None}

    # relation reads

    def get_row(self, table: str, pk: str, row_id: Any) -> dict | None:
        row = self._bucket(table).get(row_id)
        return copy.deepcopy(row) if row else None

    def fetch_rows(self, table: str, pk: str, ids: Sequence[Any]) -> list[dict]:
        bucket = self._bucket(table)
        return [copy.deepcopy(bucket[i]) for i in dict.fromkeys(ids) if i in bucket]

    def linked_ids(self, join, left_ids: Sequence[Any]) -> list[tuple]:
        wanted = set(left_ids)
        pairs = {
            (row.get(join.left_key), row.get(join.right_key))
            for row in self._pivots.get(join.table, [])
            if row.get(join.left_key) in wanted
        }
        return sorted(pairs)

    # base CRUD

    def get(self, schema: dict, record_id: Any) -> dict:
        row = self.get_row(schema["table"], primary_key(schema), record_id)
        if row is None:
            raise NotFoundError(f"{schema.get('model')} not found: {record_id}", primary_key(schema))
        return row

    def save(self, schema: dict, record_id: Any, changes: dict) -> dict:
        with self._guard:
            row = self._bucket(schema["table"]).get(record_id)
            if row is None:
                raise NotFoundError(f"{schema.get('model')} not found: {record_id}", primary_key(schema))
            row.update(copy.deepcopy(changes))
            return copy.deepcopy(row)

    def _check_unique(self, schema: dict, field_id: str, value: Any, record_id: Any) -> None:
        if not (schema_fields(schema).get(field_id) or {}).get("unique") or value is None:
            return
        for other_id, row in self._bucket(schema["table"]).items():
            if other_id != record_id and row.get(field_id) == value:
                issue = {
                    "code": "UNIQUE_VIOLATION",
                    "message": f"{field_id} must be unique",
                    "path": field_id,
                    "detail": {"table": schema["table"], "column": field_id},
                }
                raise ValidationFailedError(issue["message"], field_id, issues=[issue])

    def update_field(self, schema: dict, record: dict, field_id: str, payload: dict) -> dict:
        value = field_update_value(schema, field_id, payload)
        record_id = record.get(primary_key(schema))
        self._check_unique(schema, field_id, value, record_id)
        return self.save(schema, record_id, {field_id: value})

    @contextmanager
    def lock_record(self, schema: dict, record_id: Any) -> Iterator[None]:
        key = (schema["table"], record_id)
        with self._guard:
            entry = self._locks.setdefault(key, [threading.RLock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def _relation(self, schema: dict, relation: str) -> Tuple[dict, str, str]:
        rel = find_relationship(schema, relation)
        if rel is None:
            raise NotFoundError(f"Relationship not found: {relation}", relation)
        related = rel.get("related") or relation
        related_table = related
        related_pk = "id"
        if self._schemas is not None:
            related_schema = self._schemas.get(related)
            related_table = related_schema["table"]
            related_pk = primary_key(related_schema)
        return rel, related_table, related_pk

    def attach_related(self, schema: dict, record: dict, relation: str, ids: Sequence[Any]) -> dict:
        rel, related_table, related_pk = self._relation(schema, relation)
        missing = [i for i in ids if self.get_row(related_table, related_pk, i) is None]
        if missing:
            raise NotFoundError(f"{related_table} not found: {missing}", "ids", {"missing": missing})
        record_id = record.get(primary_key(schema))
        for related_id in ids:
            self.link(rel["pivot_table"], {rel["foreign_key"]: record_id, rel["related_key"]: related_id})
        return {"relation": relation, "attached": list(ids)}

    def detach_related(self, schema: dict, record: dict, relation: str, ids: Sequence[Any]) -> dict:
        rel, _, _ = self._relation(schema, relation)
        record_id = record.get(primary_key(schema))
        wanted = set(ids)
        with self._guard:
            rows = self._pivots.get(rel["pivot_table"], [])
            kept = [
                row
                for row in rows
                if not (row.get(rel["foreign_key"]) == record_id and row.get(rel["related_key"]) in wanted)
            ]
            detached = len(rows) - len(kept)
            self._pivots[rel["pivot_table"]] = kept
        return {"relation": relation, "detached": detached}
