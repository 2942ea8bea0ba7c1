"""JSON schema loader for CRUD6 models."""

from __future__ import annotations

import copy
import json
import logging
import os
import re
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List

from c6admin.errors import NotFoundError


_MODEL_RE = re.compile(r"^[a-z][a-z0-9_]*$")
_DEFAULT_DIR = Path(__file__).resolve().parent / "schema" / "crud6"
logger = logging.getLogger("c6admin.schema")


def default_schema_dir() -> Path:
    configured = os.getenv("C6_SCHEMA_DIR", "").strip()
    return Path(configured) if configured else _DEFAULT_DIR


def normalize_schema(raw: dict) -> dict:
    """Return a copy with ``fields`` keyed by name and list sections defaulted."""
    schema = copy.deepcopy(raw)
    fields = schema.get("fields")
    if isinstance(fields, list):
        keyed: Dict[str, dict] = {}
        for item in fields:
            if isinstance(item, dict) and isinstance(item.get("name"), str):
                spec = dict(item)
                keyed[spec.pop("name")] = spec
        schema["fields"] = keyed
    elif not isinstance(fields, dict):
        schema["fields"] = {}
    for key in ("actions", "relationships", "details"):
        if not isinstance(schema.get(key), list):
            schema[key] = []
    if not isinstance(schema.get("permissions"), dict):
        schema["permissions"] = {}
    schema.setdefault("primary_key", "id")
    schema.setdefault("table", schema.get("model"))
    return schema


class SchemaStore:
    """Loads ``<model>.json`` from a directory once and hands out copies.

    ``validator`` receives the normalized schema and returns a list of issues;
    a schema with issues is refused.
    """

    def __init__(
        self,
        schema_dir: str | Path | None = None,
        validator: Callable[[dict], List[dict]] | None = None,
    ) -> None:
        self._dir = Path(schema_dir) if schema_dir is not None else default_schema_dir()
        self._validator = validator
        self._cache: Dict[str, dict] = {}
        self._lock = threading.Lock()

    @property
    def schema_dir(self) -> Path:
        return self._dir

    def register(self, model: str, raw: dict) -> dict:
        schema = normalize_schema({"model": model, **raw})
        self._check(model, schema)
        with self._lock:
            self._cache[model] = schema
        return copy.deepcopy(schema)

    def _check(self, model: str, schema: dict) -> None:
        if self._validator is None:
            return
        issues = self._validator(schema)
        if issues:
            logger.error("schema_invalid model=%s issues=%s", model, issues)
            raise ValueError(f"Schema {model} is invalid: {issues[0].get('message')}")

    def _load(self, model: str) -> dict:
        path = self._dir / f"{model}.json"
        if not path.is_file():
            raise NotFoundError(f"Schema not found: {model}", "model")
        raw = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"Schema {model} must be a JSON object")
        schema = normalize_schema(raw)
        self._check(model, schema)
        logger.info("schema_loaded model=%s path=%s", model, path)
        return schema

    def get(self, model: str) -> dict:
        if not isinstance(model, str) or not _MODEL_RE.match(model):
            raise NotFoundError(f"Schema not found: {model}", "model")
        with self._lock:
            schema = self._cache.get(model)
            if schema is None:
                schema = self._load(model)
                self._cache[model] = schema
        return copy.deepcopy(schema)

    def list_models(self) -> List[str]:
        models = set(self._cache)
        if self._dir.is_dir():
            models.update(p.stem for p in self._dir.glob("*.json") if _MODEL_RE.match(p.stem))
        return sorted(models)

    def invalidate(self, model: str | None = None) -> None:
        with self._lock:
            if model is None:
                self._cache.clear()
            else:
                self._cache.pop(model, None)


def find_relationship(schema: dict, name: str) -> dict | None:
    for rel in schema.get("relationships") or []:
        if isinstance(rel, dict) and rel.get("name") == name:
            return rel
    return None


def find_detail(schema: dict, target_model: str) -> dict | None:
    for detail in schema.get("details") or []:
        if isinstance(detail, dict) and detail.get("model") == target_model:
            return detail
    return None


def permission_for(schema: dict, operation: str) -> Any:
    return (schema.get("permissions") or {}).get(operation)
