# appforge/server.py
from __future__ import annotations

import logging
import os
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .archive import ArchiveImportError
from .concurrency import ProjectLocks, get_project_locks
from .config import DEFAULT_CONFIG, ConfigError
from .llm_client import LLMClient, ModelClient, ModelResponseError, StreamAborted
from .models import SchemaValidationError
from .project_store import JsonFileProjectStore, ProjectNotFoundError, ProjectStore, ProjectStoreError
from .routes import projects_router
from .stages import NoChangesProduced
from .state import ProjectBusyError, TransitionError

log = logging.getLogger(__name__)

TAGS_METADATA = [
    {"name": "projects", "description": "Project lifecycle (generate/modify/import/export)"},
]

# (exception type, HTTP status), most specific first.
ERROR_STATUS: List[Tuple[type, int]] = [
    (ProjectNotFoundError, 404),
    (ProjectBusyError, 409),
    (TransitionError, 409),
    (NoChangesProduced, 422),
    (ArchiveImportError, 400),
    (SchemaValidationError, 502),
    (ModelResponseError, 502),
    (StreamAborted, 502),
    (ConfigError, 500),
    (ProjectStoreError, 500),
]


def _parse_cors_origins() -> Tuple[List[str], bool]:
    raw = os.getenv("APPFORGE_CORS_ORIGINS", "").strip()
    if not raw:
        return ["*"], False
    return [o.strip() for o in raw.split(",") if o.strip()], True


def _lazy_client_factory(cfg: Dict[str, Any]) -> Callable[[], ModelClient]:
    lock = threading.Lock()
    holder: Dict[str, ModelClient] = {}

    def get_client() -> ModelClient:
        with lock:
            if "client" not in holder:
                holder["client"] = LLMClient(cfg)
            return holder["client"]

    return get_client


def _error_handler(status: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        log.warning(
            "request failed",
            extra={"meta": {"path": request.url.path, "status": status, "error": type(exc).__name__, "err": str(exc)}},
        )
        return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})

    return handler


def create_app(
    cfg: Optional[Dict[str, Any]] = None,
    *,
    store: Optional[ProjectStore] = None,
    client_factory: Optional[Callable[[], ModelClient]] = None,
    locks: Optional[ProjectLocks] = None,
) -> FastAPI:
    cfg = cfg or DEFAULT_CONFIG
    app = FastAPI(title="App Forge Server", version="0.1.0", openapi_tags=TAGS_METADATA)

    allow_origins, allow_credentials = _parse_cors_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.cfg = cfg
    app.state.store = store if store is not None else JsonFileProjectStore(cfg["store"]["path"])
    app.state.get_client = client_factory or _lazy_client_factory(cfg)
    app.state.locks = locks or get_project_locks()
    app.state.chats = {}

    for exc_type, status in ERROR_STATUS:
        app.add_exception_handler(exc_type, _error_handler(status))

    app.include_router(projects_router)

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"ok": True}

    return app


def run(args_ns, cfg: Dict[str, Any]) -> int:
    import uvicorn

    server_cfg = cfg.get("server") or {}
    host = getattr(args_ns, "host", None) or server_cfg.get("host", "127.0.0.1")
    port = int(getattr(args_ns, "port", None) or server_cfg.get("port", 8770))
    level = str((cfg.get("logging") or {}).get("level", "INFO")).lower()
    uvicorn.run(create_app(cfg), host=host, port=port, log_level=level)
    return 0


__all__ = ["ERROR_STATUS", "create_app", "run"]
