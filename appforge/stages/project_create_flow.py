# appforge/stages/project_create_flow.py
# -*- coding: utf-8 -*-
"""
Initial project generation (Drafting -> Ready).

generate_project(prompt, client, store, ...) runs three model steps:

- a structured plan call producing the AppPlan,
- one streamed call per planned file (best-effort: a file whose generation
  fails gets FILE_ERROR_PLACEHOLDER and the walk continues),
- a structured review of the finished file set.

Progress goes to an optional on_status(GenerationStatus) callback using the
stage names Planning / Generating Code / Reviewing Code / Done; every change
to the working copy goes to on_update(Project).

An aborted stream (StreamAborted) is a hard stop: the files that arrived are
persisted as the project's baseline with an empty review and the abort is
re-raised. A failed plan or review call persists nothing.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Mapping, Optional

from ..concurrency import ProjectLocks, get_project_locks
from ..llm_client import ModelClient, StreamAborted
from ..logging_utils import start_action
from ..models import AppPlan, GenerationStatus, Project, StructuredReview
from ..project_store import ProjectStore, add_project
from ..prompts import file_code_prompt, plan_prompt, review_prompt
from ..schemas import PLAN, REVIEW, load_schema
from ..state import ProjectState
from ..stream_parser import FileContentDelta

logger = logging.getLogger(__name__)

FILE_ERROR_PLACEHOLDER = "// Error generating code for this file. Please try modifying it."

StatusCallback = Callable[[GenerationStatus], None]
UpdateCallback = Callable[[Project], None]


def _progress_for(index: int, total: int) -> int:
    """Generating Code spans 25..75 across the planned files."""
    if total <= 0:
        return 75
    return 25 + round(50 * index / total)


def _report(on_status: Optional[StatusCallback], stage: str, message: str, progress: int, current_file: Optional[str] = None) -> None:
    if on_status is not None:
        on_status(GenerationStatus(stage=stage, message=message, progress=progress, current_file=current_file))


def request_plan(prompt: str, client: ModelClient) -> AppPlan:
    raw = client.chat_json(plan_prompt(prompt), schema=load_schema(PLAN), stage="PLAN")
    return AppPlan.from_dict(raw)


def request_review(files: Mapping[str, str], client: ModelClient) -> StructuredReview:
    raw = client.chat_json(review_prompt(files), schema=load_schema(REVIEW), stage="REVIEW")
    return StructuredReview.decode(raw)


def _generate_file(
    state: ProjectState,
    plan: AppPlan,
    path: str,
    client: ModelClient,
    *,
    on_update: Optional[UpdateCallback],
    cancel: Optional[threading.Event],
) -> None:
    content = ""
    for chunk in client.stream_text(file_code_prompt(plan, path), stage="FILE_CODE", cancel=cancel):
        content += chunk
        working = state.apply(FileContentDelta(path=path, content_so_far=content))
        if on_update is not None:
            on_update(working)
    state.set_file(path, content)


def generate_project(
    prompt: str,
    client: ModelClient,
    store: ProjectStore,
    *,
    on_status: Optional[StatusCallback] = None,
    on_update: Optional[UpdateCallback] = None,
    cancel: Optional[threading.Event] = None,
    locks: Optional[ProjectLocks] = None,
) -> Project:
    prompt = (prompt or "").strip()
    if not prompt:
        raise ValueError("prompt must not be empty")
    locks = locks or get_project_locks()

    _report(on_status, "Planning", "Generating app plan...", 10)
    plan = request_plan(prompt, client)
    state = ProjectState.draft(Project.new(prompt, plan))
    project_id = state.committed.id

    with locks.hold(project_id), start_action(logger, "generate_project", project_id=project_id) as act:
        if on_update is not None:
            on_update(state.working)
        total = len(plan.file_structure)
        failed = []
        try:
            for i, descriptor in enumerate(plan.file_structure):
                _report(
                    on_status,
                    "Generating Code",
                    f"Generating {descriptor.path} ({i + 1}/{total})...",
                    _progress_for(i, total),
                    current_file=descriptor.path,
                )
                try:
                    _generate_file(state, plan, descriptor.path, client, on_update=on_update, cancel=cancel)
                except StreamAborted:
                    raise
                except Exception as e:
                    logger.warning(
                        "file generation failed; using placeholder",
                        extra={"meta": {"project_id": project_id, "path": descriptor.path, "err": str(e)}},
                    )
                    failed.append(descriptor.path)
                    working = state.set_file(descriptor.path, FILE_ERROR_PLACEHOLDER)
                    if on_update is not None:
                        on_update(working)

            _report(on_status, "Reviewing Code", "Performing code review...", 85)
            review = request_review(state.working.files, client)
        except StreamAborted:
            partial = state.keep_partial()
            add_project(store, partial)
            act.update(aborted=True, files=len(partial.files))
            raise
        except Exception:
            state.rollback()
            raise

        project = state.commit(review)
        add_project(store, project)
        act.update(files=len(project.files), failed=failed)

    _report(on_status, "Done", "Project generated successfully!", 100)
    return project


__all__ = ["FILE_ERROR_PLACEHOLDER", "generate_project", "request_plan", "request_review"]
