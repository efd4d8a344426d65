# appforge/stages/modify_flow.py
"""
Streamed project modification (Ready -> Modifying -> Ready).

The model answers in the file-block protocol; every parser event is folded
into the working copy as it arrives. Outcomes:

- success: the changed and added files are reconciled against the
  pre-modification snapshot, a change analysis (summary + fresh review) is
  requested, and the result is committed and persisted;
- zero files produced: rolled back, NoChangesProduced raised;
- model or analysis error: rolled back (files and review together), re-raised;
- StreamAborted: whatever arrived becomes the new baseline (prior review
  kept), persisted, and the abort re-raised.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, FrozenSet, Optional

from ..concurrency import ProjectLocks, get_project_locks
from ..llm_client import ModelClient, StreamAborted
from ..logging_utils import start_action
from ..models import ChangeAnalysis, Project
from ..project_store import ProjectNotFoundError, ProjectStore, get_project, replace_project
from ..prompts import change_analysis_prompt, modification_prompt
from ..reconcile import diff_snapshots
from ..schemas import CHANGE_ANALYSIS, load_schema
from ..state import ProjectState
from ..stream_parser import StreamParser

logger = logging.getLogger(__name__)


class NoChangesProduced(RuntimeError):
    """The model stream contained no recognisable file block."""

    def __init__(self, project_id: str) -> None:
        super().__init__("The model did not produce any file changes. Try rephrasing the request.")
        self.project_id = project_id


@dataclass(frozen=True)
class ModificationResult:
    project: Project
    previous: Project
    change_summary: str
    changed: FrozenSet[str]
    added: FrozenSet[str]


def analyze_changes(before: Project, after: Project, client: ModelClient) -> ChangeAnalysis:
    raw = client.chat_json(
        change_analysis_prompt(before.files, after.files),
        schema=load_schema(CHANGE_ANALYSIS),
        stage="ANALYZE_CHANGES",
    )
    return ChangeAnalysis.from_dict(raw)


def _stream_into(
    state: ProjectState,
    parser: StreamParser,
    client: ModelClient,
    prompt: str,
    *,
    on_update: Optional[Callable[[Project], None]],
    cancel: Optional[threading.Event],
) -> None:
    for fragment in client.stream_text(prompt, stage="MODIFY", cancel=cancel):
        for event in parser.feed(fragment):
            working = state.apply(event)
            if on_update is not None:
                on_update(working)
    for event in parser.end():
        working = state.apply(event)
        if on_update is not None:
            on_update(working)


def modify_project(
    project: Project,
    request: str,
    client: ModelClient,
    store: ProjectStore,
    *,
    locks: Optional[ProjectLocks] = None,
    on_update: Optional[Callable[[Project], None]] = None,
    cancel: Optional[threading.Event] = None,
    accept_truncated: bool = True,
) -> ModificationResult:
    request = (request or "").strip()
    if not request:
        raise ValueError("modification request must not be empty")
    locks = locks or get_project_locks()

    with locks.hold(project.id), start_action(logger, "modify_project", project_id=project.id) as act:
        # The caller may hold an older copy; start from what is stored now.
        current = get_project(store, project.id)
        if current is None:
            raise ProjectNotFoundError(project.id)
        state = ProjectState.ready(current)
        before = state.begin_modification()
        parser = StreamParser(accept_truncated=accept_truncated)

        try:
            _stream_into(
                state,
                parser,
                client,
                modification_prompt(request, before.plan, before.files),
                on_update=on_update,
                cancel=cancel,
            )
        except StreamAborted:
            if parser.open_path is not None:
                logger.info(
                    "keeping partial content of open file",
                    extra={"meta": {"project_id": project.id, "path": parser.open_path}},
                )
            partial = state.keep_partial()
            replace_project(store, partial)
            act.update(aborted=True)
            raise
        except Exception:
            state.rollback()
            raise

        if parser.truncated_path is not None:
            state.discard_path(parser.truncated_path)
        if not state.completed_files:
            state.rollback()
            act.update(no_changes=True, empty_stream=parser.is_empty)
            raise NoChangesProduced(project.id)

        after = state.working
        changes = diff_snapshots(before.files, after.files)
        try:
            analysis = analyze_changes(before, after, client)
        except Exception:
            state.rollback()
            raise

        committed = state.commit(analysis.review)
        replace_project(store, committed)
        act.update(changed=sorted(changes.changed), added=sorted(changes.added))

    return ModificationResult(
        project=committed,
        previous=before,
        change_summary=analysis.change_summary,
        changed=changes.changed,
        added=changes.added,
    )


__all__ = ["ModificationResult", "NoChangesProduced", "analyze_changes", "modify_project"]
