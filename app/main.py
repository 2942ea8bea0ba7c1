"""FastAPI app for the c6admin panel."""

from __future__ import annotations

import logging
import os
import platform
import sys
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi import __version__ as fastapi_version
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

from app.auth import JwtAuthMiddleware
from app.authz import Authorizer, actor_user_id, root_user_id
from app.record_actions import build_action_registry
from app.records_validation import coerce_record_id
from app.schema_validate import validate_schema
from app.seed import seed_demo
from app.stores import MemoryRecordStore
from c6admin.errors import ForbiddenError, NotFoundError, PanelError, ValidationFailedError
from c6admin.list_query import parse_list_query
from field_dispatch import ActionEntry, dispatch_relation, dispatch_update, resolve_entry
from provenance_query import ProvenanceQueryEngine, via_relation_from_schemas
from schema_store import SchemaStore, find_detail, permission_for


app = FastAPI(title="c6admin")
logger = logging.getLogger("c6admin")
logging.basicConfig(level=logging.INFO)

USE_DB = os.getenv("USE_DB", "").strip() == "1"

schemas = SchemaStore(validator=validate_schema)
records: Any = None
engine: ProvenanceQueryEngine | None = None
authorizer: Authorizer | None = None
actions = None
_system_info: dict = {}


def bind_records(store: Any) -> None:
    """Wire the engines and action handlers to a record store."""
    global records, engine, authorizer, actions
    records = store
    engine = ProvenanceQueryEngine(store, schemas)
    authorizer = Authorizer(engine)
    actions = build_action_registry(store, schemas)
    _system_info.clear()


if USE_DB:
    from app.stores_db import DbRecordStore

    bind_records(DbRecordStore(schemas))
else:
    bind_records(MemoryRecordStore(schemas))
    if os.getenv("C6_SEED_DEMO", "").strip() == "1":
        seed_demo(records)

app.add_middleware(
    JwtAuthMiddleware,
    jwks_url=os.getenv("C6_AUTH_JWKS_URL", "").strip() or None,
    issuer=os.getenv("C6_AUTH_ISSUER", "").strip() or None,
    audience=os.getenv("C6_AUTH_AUDIENCE", "").strip() or None,
    default_user_id=root_user_id(),
)


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _wrap_db_constraint_error(exc: Exception) -> dict | None:
    diag = getattr(exc, "diag", None)
    constraint = getattr(diag, "constraint_name", None) if diag else None
    table = getattr(diag, "table_name", None) if diag else None
    column = getattr(diag, "column_name", None) if diag else None
    if constraint or table or column:
        return {"constraint": constraint, "table": table, "column": column}
    return None


@app.exception_handler(PanelError)
async def panel_error_handler(request: Request, exc: PanelError):
    if isinstance(exc, ValidationFailedError):
        body = {"ok": False, "errors": exc.issues or [exc.to_issue()], "warnings": []}
        return JSONResponse(jsonable_encoder(body), status_code=exc.status)
    return _error_response(exc.code, exc.message, exc.path, exc.detail, status=exc.status)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    constraint = _wrap_db_constraint_error(exc)
    if constraint:
        logger.warning("record_write_failed path=%s detail=%s", request.url.path, constraint)
        return _error_response("RECORD_WRITE_FAILED", "Record update failed due to constraint", "record", detail=constraint, status=400)
    logger.exception("unhandled_error path=%s", request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


async def _safe_json(request: Request) -> dict:
    try:
        body = await request.json()
    except Exception:
        return {}
    return body if isinstance(body, dict) else {}


def _resolve_actor(request: Request) -> dict:
    user = getattr(request.state, "user", None)
    if not isinstance(user, dict) or user.get("id") is None:
        raise ForbiddenError("Authenticated user required", "Authorization")
    return {"user_id": user.get("id"), "email": user.get("email"), "claims": user.get("claims")}


def _require(actor: dict, slug: str | None) -> None:
    authorizer.require(actor, slug)


def _load_record(schema: dict, raw_id: str) -> dict:
    return records.get(schema, coerce_record_id(schema, raw_id))


def _deps() -> dict:
    return {"records": records, "actions": actions, "authorizer": authorizer}


def _public_record(schema: dict, record: Any) -> Any:
    if not isinstance(record, dict):
        return record
    hidden = {name for name, spec in (schema.get("fields") or {}).items() if spec.get("type") == "password"}
    return {k: v for k, v in record.items() if k not in hidden}


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


@app.get("/api/dashboard")
def dashboard(request: Request):
    actor = _resolve_actor(request)
    _require(actor, "uri_dashboard")
    users_schema = schemas.get("users")
    counter = {model: records.count(schemas.get(model)["table"]) for model in ("users", "roles", "groups")}
    latest = [_public_record(users_schema, row) for row in records.latest(users_schema["table"], "created_at", 8)]
    return _ok_response({"counter": counter, "users": latest})


def _build_system_info() -> dict:
    return {
        "framework_version": fastapi_version,
        "python_version": platform.python_version(),
        "database": records.database_info(),
        "project_path": str(ROOT),
        "schema_dir": str(schemas.schema_dir),
        "models": schemas.list_models(),
    }


@app.get("/api/c6/config/info")
def system_info(request: Request):
    actor = _resolve_actor(request)
    _require(actor, "uri_dashboard")
    if not _system_info:
        _system_info.update(_build_system_info())
    return _ok_response(dict(_system_info))


@app.delete("/api/c6/cache")
def clear_cache(request: Request):
    actor = _resolve_actor(request)
    _require(actor, "clear_cache")
    schemas.invalidate()
    _system_info.clear()
    logger.info("cache_cleared by=%s", actor_user_id(actor))
    return _ok_response({"message": "Cache cleared"})


@app.get("/api/crud6/{model}/{record_id}/via/{target}")
def list_via(request: Request, model: str, record_id: str, target: str):
    actor = _resolve_actor(request)
    owner_schema = schemas.get(model)
    detail = find_detail(owner_schema, target)
    if detail is None or not detail.get("via"):
        raise NotFoundError(f"No via listing declared for {model}.{target}", "target")
    _require(actor, detail.get("permission") or permission_for(owner_schema, "read"))
    intermediate_schema = schemas.get(detail["via"])
    relation = via_relation_from_schemas(owner_schema, intermediate_schema, target, via=detail["via"])
    list_query = parse_list_query(dict(request.query_params))
    result = engine.run(coerce_record_id(owner_schema, record_id), relation, list_query)
    return _ok_response(result)


def _method_not_allowed(entry: ActionEntry) -> JSONResponse:
    return _error_response("METHOD_NOT_ALLOWED", f"{entry.key} requires {entry.method}", entry.key, status=405)


@app.put("/api/crud6/{model}/{record_id}/{name}")
async def update_field(request: Request, model: str, record_id: str, name: str):
    actor = _resolve_actor(request)
    schema = schemas.get(model)
    entry = resolve_entry(schema, name)
    if isinstance(entry, ActionEntry):
        if entry.method != request.method:
            return _method_not_allowed(entry)
    else:
        _require(actor, permission_for(schema, "update"))
    record = _load_record(schema, record_id)
    payload = await _safe_json(request)
    result = dispatch_update(schema, record, name, payload, {"actor": actor, "method": "PUT"}, _deps())
    logger.info("record_field_updated model=%s record_id=%s name=%s by=%s", model, record_id, name, actor_user_id(actor))
    return _ok_response({"record": _public_record(schema, result)})


async def _run_action(request: Request, model: str, record_id: str, action: str):
    actor = _resolve_actor(request)
    schema = schemas.get(model)
    entry = resolve_entry(schema, action)
    if not isinstance(entry, ActionEntry):
        raise NotFoundError(f"Action not found: {action}", action)
    if entry.method != request.method:
        return _method_not_allowed(entry)
    record = _load_record(schema, record_id)
    payload = await _safe_json(request)
    result = dispatch_update(schema, record, action, payload, {"actor": actor, "method": request.method}, _deps())
    return _ok_response({"result": result})


@app.post("/api/crud6/{model}/{record_id}/a/{action}")
async def run_action(request: Request, model: str, record_id: str, action: str):
    return await _run_action(request, model, record_id, action)


@app.post("/api/users/{record_id}/password-reset")
async def password_reset(request: Request, record_id: str):
    return await _run_action(request, "users", record_id, "reset-password")


async def _change_relation(request: Request, model: str, record_id: str, relation: str, operation: str):
    actor = _resolve_actor(request)
    schema = schemas.get(model)
    record = _load_record(schema, record_id)
    body = await _safe_json(request)
    result = dispatch_relation(schema, record, relation, operation, body.get("ids"), {"actor": actor}, _deps())
    return _ok_response(result)


@app.post("/api/crud6/{model}/{record_id}/{relation}")
async def attach_relation(request: Request, model: str, record_id: str, relation: str):
    return await _change_relation(request, model, record_id, relation, "attach")


@app.delete("/api/crud6/{model}/{record_id}/{relation}")
async def detach_relation(request: Request, model: str, record_id: str, relation: str):
    return await _change_relation(request, model, record_id, relation, "detach")
