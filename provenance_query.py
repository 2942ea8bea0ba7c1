"""Provenance query engine for two-hop many-to-many ("via") listings.

Answers questions like "which permissions does this user hold, and through
which roles" without database-specific aggregates: intermediates and targets
are fetched in two steps and grouped in memory so ordering and deduplication
do not depend on the storage engine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Protocol, Sequence, Tuple

from c6admin.errors import InvalidArgumentError, NotFoundError
from c6admin.list_query import (
    ListQuery,
    Sort,
    apply_filters,
    check_filters,
    check_page,
    check_sort,
    default_sort,
    listable_fields,
    paginate,
    primary_key,
    project_row,
    sort_rows,
)
from schema_store import find_relationship


logger = logging.getLogger("c6admin.provenance")

Row = Dict[str, Any]


@dataclass(frozen=True)
class JoinSpec:
    table: str
    left_key: str
    right_key: str


@dataclass(frozen=True)
class ViaRelation:
    name: str
    owner_model: str
    intermediate_model: str
    target_model: str
    owner_join: JoinSpec
    target_join: JoinSpec
    display_field: str = "name"

    @property
    def via_key(self) -> str:
        return f"{self.name}_via"


USER_PERMISSIONS = ViaRelation(
    name="roles",
    owner_model="users",
    intermediate_model="roles",
    target_model="permissions",
    owner_join=JoinSpec("role_users", "user_id", "role_id"),
    target_join=JoinSpec("permission_roles", "role_id", "permission_id"),
)

PERMISSION_USERS = ViaRelation(
    name="roles",
    owner_model="permissions",
    intermediate_model="roles",
    target_model="users",
    owner_join=JoinSpec("permission_roles", "permission_id", "role_id"),
    target_join=JoinSpec("role_users", "role_id", "user_id"),
)


class RelationReader(Protocol):
    def get_row(self, table: str, pk: str, row_id: Any) -> Row | None: ...

    def fetch_rows(self, table: str, pk: str, ids: Sequence[Any]) -> List[Row]: ...

    def linked_ids(self, join: JoinSpec, left_ids: Sequence[Any]) -> List[Tuple[Any, Any]]: ...


class SchemaSource(Protocol):
    def get(self, model: str) -> dict: ...


def via_relation_from_schemas(owner_schema: dict, intermediate_schema: dict, target_model: str, via: str | None = None) -> ViaRelation:
    """Build a relation from the two schemas' ``many_to_many`` declarations."""
    via_name = via or intermediate_schema.get("model")
    owner_rel = find_relationship(owner_schema, via_name)
    if owner_rel is None or owner_rel.get("type") != "many_to_many":
        raise NotFoundError(f"Relationship not declared: {owner_schema.get('model')}.{via_name}", "via")
    target_rel = find_relationship(intermediate_schema, target_model)
    if target_rel is None or target_rel.get("type") != "many_to_many":
        raise NotFoundError(f"Relationship not declared: {intermediate_schema.get('model')}.{target_model}", "target")
    return ViaRelation(
        name=via_name,
        owner_model=owner_schema.get("model"),
        intermediate_model=intermediate_schema.get("model"),
        target_model=target_model,
        owner_join=JoinSpec(owner_rel["pivot_table"], owner_rel["foreign_key"], owner_rel["related_key"]),
        target_join=JoinSpec(target_rel["pivot_table"], target_rel["foreign_key"], target_rel["related_key"]),
        display_field=intermediate_schema.get("title_field") or "name",
    )


def _unique(values: List[Any]) -> List[Any]:
    return list(dict.fromkeys(values))


class ProvenanceQueryEngine:
    def __init__(self, reader: RelationReader, schemas: SchemaSource) -> None:
        self._reader = reader
        self._schemas = schemas

    def run(self, owner_id: Any, relation: ViaRelation, list_query: ListQuery) -> dict:
        return self.query(
            owner_id,
            relation,
            filters=list_query.filters,
            sort=list_query.sort,
            page=list_query.page,
            size=list_query.size,
        )

    def query(
        self,
        owner_id: Any,
        relation: ViaRelation,
        filters: Mapping[str, str] | None = None,
        sort: Sort | None = None,
        page: int = 0,
        size: int | None = None,
    ) -> dict:
        owner_schema = self._schemas.get(relation.owner_model)
        inter_schema = self._schemas.get(relation.intermediate_model)
        target_schema = self._schemas.get(relation.target_model)
        filters = dict(filters or {})
        if relation.via_key in filters:
            raise InvalidArgumentError(f"Field is not filterable: {relation.via_key}", f"filters.{relation.via_key}")
        check_filters(target_schema, filters)
        check_sort(target_schema, sort)
        check_page(page, size)

        owner = self._reader.get_row(owner_schema["table"], primary_key(owner_schema), owner_id)
        if owner is None:
            raise NotFoundError(f"{relation.owner_model} not found: {owner_id}", "owner_id")

        rows = self._collect(owner_id, relation, inter_schema, target_schema)
        total = len(rows)
        rows = apply_filters(rows, filters, target_schema)
        filtered = len(rows)
        rows = sort_rows(rows, sort or default_sort(target_schema), primary_key(target_schema))
        page_rows, page_info = paginate(rows, page, size)
        logger.info(
            "provenance_query owner_model=%s owner_id=%s target=%s count=%s filtered=%s returned=%s",
            relation.owner_model,
            owner_id,
            relation.target_model,
            total,
            filtered,
            len(page_rows),
        )
        return {"count": total, "count_filtered": filtered, "rows": page_rows, "page_info": page_info}

    def _collect(self, owner_id: Any, relation: ViaRelation, inter_schema: dict, target_schema: dict) -> List[Row]:
        inter_pk = primary_key(inter_schema)
        target_pk = primary_key(target_schema)

        owner_links = self._reader.linked_ids(relation.owner_join, [owner_id])
        inter_ids = _unique([right for _, right in owner_links])
        if not inter_ids:
            return []
        intermediates = sorted(
            self._reader.fetch_rows(inter_schema["table"], inter_pk, inter_ids),
            key=lambda r: r.get(inter_pk),
        )
        position = {row.get(inter_pk): idx for idx, row in enumerate(intermediates)}
        names = {row.get(inter_pk): row.get(relation.display_field) for row in intermediates}

        grouped: Dict[Any, List[Any]] = {}
        for inter_id, target_id in self._reader.linked_ids(relation.target_join, list(position)):
            if inter_id not in position:
                continue
            grouped.setdefault(target_id, []).append(inter_id)
        if not grouped:
            return []

        columns = listable_fields(target_schema)
        rows: List[Row] = []
        for target in self._reader.fetch_rows(target_schema["table"], target_pk, list(grouped)):
            via_ids = sorted(_unique(grouped.get(target.get(target_pk), [])), key=position.__getitem__)
            row = project_row(target, columns)
            row[relation.via_key] = _unique([names[i] for i in via_ids])
            rows.append(row)
        return rows
