"""DB-backed record store for CRUD6 tables."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

from psycopg2 import sql

from app.db import database_info, execute, fetch_all, fetch_one, get_conn, transaction
from app.records_validation import field_update_value
from c6admin.errors import NotFoundError
from c6admin.list_query import primary_key
from schema_store import find_relationship


logger = logging.getLogger("c6admin.db")


def _ident(name: str) -> sql.Identifier:
    return sql.Identifier(name)


class DbRecordStore:
    def __init__(self, schemas) -> None:
        self._schemas = schemas

    # relation reads

    def get_row(self, table: str, pk: str, row_id: Any) -> dict | None:
        query = sql.SQL("select * from {} where {} = %s").format(_ident(table), _ident(pk))
        with get_conn() as conn:
            return fetch_one(conn, query, [row_id], query_name=f"{table}.get")

    def fetch_rows(self, table: str, pk: str, ids: Sequence[Any]) -> list[dict]:
        if not ids:
            return []
        query = sql.SQL("select * from {} where {} = any(%s) order by {}").format(_ident(table), _ident(pk), _ident(pk))
        with get_conn() as conn:
            return fetch_all(conn, query, [list(ids)], query_name=f"{table}.fetch_rows")

    def linked_ids(self, join, left_ids: Sequence[Any]) -> list[tuple]:
        if not left_ids:
            return []
        query = sql.SQL("select distinct {l} as left_id, {r} as right_id from {t} where {l} = any(%s) order by 1, 2").format(
            l=_ident(join.left_key),
            r=_ident(join.right_key),
            t=_ident(join.table),
        )
        with get_conn() as conn:
            rows = fetch_all(conn, query, [list(left_ids)], query_name=f"{join.table}.linked_ids")
        return [(row["left_id"], row["right_id"]) for row in rows]

    def count(self, table: str) -> int:
        query = sql.SQL("select count(*) as n from {}").format(_ident(table))
        with get_conn() as conn:
            row = fetch_one(conn, query, query_name=f"{table}.count")
        return int(row["n"]) if row else 0

    def latest(self, table: str, order_field: str = "created_at", limit: int = 8) -> list[dict]:
        query = sql.SQL("select * from {} order by {} desc limit %s").format(_ident(table), _ident(order_field))
        with get_conn() as conn:
            return fetch_all(conn, query, [limit], query_name=f"{table}.latest")

    def database_info(self) -> dict:
        return database_info()

    # base CRUD

    def get(self, schema: dict, record_id: Any) -> dict:
        row = self.get_row(schema["table"], primary_key(schema), record_id)
        if row is None:
            raise NotFoundError(f"{schema.get('model')} not found: {record_id}", primary_key(schema))
        return row

    def save(self, schema: dict, record_id: Any, changes: dict) -> dict:
        pk = primary_key(schema)
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(_ident(column)) for column in changes
        )
        query = sql.SQL("update {} set {} where {} = %s returning *").format(_ident(schema["table"]), assignments, _ident(pk))
        with get_conn() as conn:
            row = fetch_one(conn, query, [*changes.values(), record_id], query_name=f"{schema['table']}.save")
        if row is None:
            raise NotFoundError(f"{schema.get('model')} not found: {record_id}", pk)
        return row

    def update_field(self, schema: dict, record: dict, field_id: str, payload: dict) -> dict:
        value = field_update_value(schema, field_id, payload)
        return self.save(schema, record.get(primary_key(schema)), {field_id: value})

    @contextmanager
    def lock_record(self, schema: dict, record_id: Any) -> Iterator[None]:
        pk = primary_key(schema)
        query = sql.SQL("select {} from {} where {} = %s for update").format(_ident(pk), _ident(schema["table"]), _ident(pk))
        with transaction() as conn:
            fetch_one(conn, query, [record_id], query_name=f"{schema['table']}.lock")
            yield

    def _relation(self, schema: dict, relation: str) -> tuple[dict, dict]:
        rel = find_relationship(schema, relation)
        if rel is None:
            raise NotFoundError(f"Relationship not found: {relation}", relation)
        return rel, self._schemas.get(rel.get("related") or relation)

    def attach_related(self, schema: dict, record: dict, relation: str, ids: Sequence[Any]) -> dict:
        rel, related_schema = self._relation(schema, relation)
        related_pk = primary_key(related_schema)
        found = {row[related_pk] for row in self.fetch_rows(related_schema["table"], related_pk, ids)}
        missing = [i for i in ids if i not in found]
        if missing:
            raise NotFoundError(f"{related_schema['table']} not found: {missing}", "ids", {"missing": missing})
        query = sql.SQL(
            "insert into {t} ({fk}, {rk}) select %s, unnest(%s) on conflict do nothing"
        ).format(t=_ident(rel["pivot_table"]), fk=_ident(rel["foreign_key"]), rk=_ident(rel["related_key"]))
        with get_conn() as conn:
            execute(conn, query, [record.get(primary_key(schema)), list(ids)], query_name=f"{rel['pivot_table']}.attach")
        return {"relation": relation, "attached": list(ids)}

    def detach_related(self, schema: dict, record: dict, relation: str, ids: Sequence[Any]) -> dict:
        rel, _ = self._relation(schema, relation)
        query = sql.SQL("delete from {t} where {fk} = %s and {rk} = any(%s)").format(
            t=_ident(rel["pivot_table"]),
            fk=_ident(rel["foreign_key"]),
            rk=_ident(rel["related_key"]),
        )
        with get_conn() as conn:
            detached = execute(conn, query, [record.get(primary_key(schema)), list(ids)], query_name=f"{rel['pivot_table']}.detach")
        logger.info("relation_detach table=%s record_id=%s detached=%s", rel["pivot_table"], record.get(primary_key(schema)), detached)
        return {"relation": relation, "detached": detached}
