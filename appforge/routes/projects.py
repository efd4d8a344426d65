# appforge/routes/projects.py
from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel, Field

from ..archive import archive_filename, write_archive
from ..chat import ProjectChat
from ..config import ConfigError
from ..file_tree import Directory, Leaf, tree_for_project, walk
from ..models import Project
from ..project_store import delete_project, get_project
from ..prompts import build_modification_request
from ..reconcile import unified_diff
from ..stages import generate_project, import_archive, modify_project

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])


# ---------- Schemas

class GenerateRequest(BaseModel):
    prompt: str = Field(..., min_length=1, description="Free-text description of the app to build.")


class ModifyRequest(BaseModel):
    suggestion_ids: List[str] = Field(default_factory=list, description="Review suggestion ids to implement.")
    custom_request: str = Field("", description="Additional free-text change request.")
    include_diff: bool = Field(False, description="Include a unified diff of the touched files.")


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    reset: bool = Field(False, description="Start a fresh conversation before sending.")


class ProjectSummary(BaseModel):
    id: str
    appName: str
    appDescription: str
    prompt: str
    createdAt: str
    fileCount: int


class ModifyResponse(BaseModel):
    project: Dict[str, Any]
    changeSummary: str
    changed: List[str]
    added: List[str]
    diff: Optional[str] = None


# ---------- Utilities

def _store(request: Request):
    return request.app.state.store


def _client(request: Request):
    return request.app.state.get_client()


def _client_or_none(request: Request):
    try:
        return request.app.state.get_client()
    except ConfigError:
        return None


def _require(request: Request, project_id: str) -> Project:
    project = get_project(_store(request), project_id)
    if project is None:
        raise HTTPException(status_code=404, detail=f"Project not found: {project_id}")
    return project


def _summary(p: Project) -> ProjectSummary:
    return ProjectSummary(
        id=p.id,
        appName=p.plan.app_name,
        appDescription=p.plan.app_description,
        prompt=p.prompt,
        createdAt=p.created_at,
        fileCount=len(p.files),
    )


# ---------- Routes

@router.get("", response_model=List[ProjectSummary])
def list_projects(request: Request) -> List[ProjectSummary]:
    return [_summary(p) for p in _store(request).load_all()]


@router.post("/generate")
def generate(request: Request, body: GenerateRequest) -> Dict[str, Any]:
    project = generate_project(
        body.prompt,
        _client(request),
        _store(request),
        locks=request.app.state.locks,
    )
    return project.to_dict()


@router.post("/import")
async def import_zip(request: Request) -> Dict[str, Any]:
    data = await request.body()
    if not data:
        raise HTTPException(status_code=400, detail="Request body must be a zip archive")
    client = await run_in_threadpool(_client_or_none, request)
    project = await run_in_threadpool(import_archive, data, client, _store(request))
    return project.to_dict()


@router.get("/{project_id}")
def get_one(request: Request, project_id: str) -> Dict[str, Any]:
    return _require(request, project_id).to_dict()


@router.delete("/{project_id}")
def delete_one(request: Request, project_id: str) -> Dict[str, Any]:
    if request.app.state.locks.is_busy(project_id):
        raise HTTPException(status_code=409, detail=f"Project {project_id} has a transition in flight")
    if not delete_project(_store(request), project_id):
        raise HTTPException(status_code=404, detail=f"Project not found: {project_id}")
    request.app.state.chats.pop(project_id, None)
    return {"ok": True, "id": project_id}


@router.get("/{project_id}/tree")
def get_tree(request: Request, project_id: str) -> Dict[str, Any]:
    project = _require(request, project_id)
    rows = []
    for row in walk(tree_for_project(project)):
        entry: Dict[str, Any] = {"depth": row.depth, "name": row.name, "path": row.path, "isDir": row.is_dir}
        if isinstance(row.node, Leaf):
            entry["description"] = row.node.payload.description
        elif isinstance(row.node, Directory):
            entry["children"] = len(row.node)
        rows.append(entry)
    return {"id": project.id, "rows": rows}


@router.post("/{project_id}/modify", response_model=ModifyResponse)
def modify(request: Request, project_id: str, body: ModifyRequest) -> ModifyResponse:
    project = _require(request, project_id)
    text = build_modification_request(project.review, body.suggestion_ids, body.custom_request)
    if text is None:
        raise HTTPException(status_code=400, detail="Select at least one suggestion or provide a custom request")

    result = modify_project(
        project,
        text,
        _client(request),
        _store(request),
        locks=request.app.state.locks,
        accept_truncated=bool(request.app.state.cfg["parser"]["accept_truncated"]),
    )
    diff = None
    if body.include_diff:
        diff = unified_diff(result.previous.files, result.project.files, result.changed | result.added)
    return ModifyResponse(
        project=result.project.to_dict(),
        changeSummary=result.change_summary,
        changed=sorted(result.changed),
        added=sorted(result.added),
        diff=diff,
    )


@router.get("/{project_id}/export")
def export_zip(request: Request, project_id: str) -> Response:
    project = _require(request, project_id)
    return Response(
        content=write_archive(project),
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{archive_filename(project)}"'},
    )


def _chat_stream(session: ProjectChat, message: str) -> Iterator[str]:
    """Stream the answer; a failure ends the body with the error turn text."""
    try:
        yield from session.send(message)
    except Exception:
        yield "\n\n" + session.history[-1].text


@router.post("/{project_id}/chat")
def chat(request: Request, project_id: str, body: ChatRequest) -> StreamingResponse:
    project = _require(request, project_id)
    chats: Dict[str, ProjectChat] = request.app.state.chats
    session = chats.get(project_id)
    if session is None or body.reset:
        session = ProjectChat(_client(request), project.plan)
        chats[project_id] = session
    return StreamingResponse(_chat_stream(session, body.message), media_type="text/plain; charset=utf-8")


@router.get("/{project_id}/chat")
def chat_history(request: Request, project_id: str) -> Dict[str, Any]:
    _require(request, project_id)
    session: Optional[ProjectChat] = request.app.state.chats.get(project_id)
    turns = session.history if session is not None else []
    return {"id": project_id, "history": [{"role": t.role, "text": t.text} for t in turns]}
