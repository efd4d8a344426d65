# appforge/state.py
"""
Project state transitions.

``apply_event`` is the only function that folds parser output into a project;
``ProjectState`` wraps it with the committed/working pair needed for the
Drafting -> Ready and Ready -> Modifying -> Ready transitions, including
rollback to the exact pre-transition files and review.

Projects are immutable values: every update produces a new ``Project`` with a
new ``files`` mapping, so a committed snapshot can never be touched by an
in-flight stream.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import replace
from typing import Dict, Optional

from .models import Project, StructuredReview
from .stream_parser import FileComplete, FileContentDelta, StreamEnd, StreamEvent

logger = logging.getLogger(__name__)


class TransitionError(RuntimeError):
    """A transition was requested from a phase that does not allow it."""


class ProjectBusyError(TransitionError):
    """Another transition for the same project is already in flight."""

    def __init__(self, project_id: str) -> None:
        super().__init__(f"project {project_id} already has a transition in flight")
        self.project_id = project_id


class Phase(str, enum.Enum):
    DRAFTING = "drafting"
    READY = "ready"
    MODIFYING = "modifying"
    IMPORTING = "importing"


def apply_event(project: Project, event: StreamEvent) -> Project:
    """Fold one parser event into ``project`` and return the updated value."""
    if isinstance(event, FileContentDelta):
        path, content = event.path, event.content_so_far
    elif isinstance(event, FileComplete):
        path, content = event.path, event.final_content
    elif isinstance(event, StreamEnd):
        return project
    else:
        raise TypeError(f"unsupported stream event: {event!r}")

    if project.files.get(path) == content:
        return project
    files: Dict[str, str] = dict(project.files)
    files[path] = content
    return replace(project, files=files)


class ProjectState:
    """Committed project plus the working copy of an in-flight transition."""

    def __init__(self, project: Project, phase: Phase = Phase.READY) -> None:
        self._committed = project
        self._working = project
        self._phase = phase
        self._touched: Dict[str, str] = {}

    # ---------- constructors ----------

    @classmethod
    def draft(cls, project: Project) -> "ProjectState":
        """Start the initial generation of a freshly planned project."""
        return cls(project, phase=Phase.DRAFTING)

    @classmethod
    def ready(cls, project: Project) -> "ProjectState":
        return cls(project, phase=Phase.READY)

    @classmethod
    def begin_import(cls, project: Project) -> "ProjectState":
        """Start an import whose files are already known (plan may still be inferred)."""
        return cls(project, phase=Phase.IMPORTING)

    # ---------- views ----------

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def committed(self) -> Project:
        """Last externally visible state; never holds partial stream content."""
        return self._committed

    @property
    def working(self) -> Project:
        """Working copy; may hold partial content while a transition is in flight."""
        return self._working

    @property
    def in_flight(self) -> bool:
        return self._phase is not Phase.READY

    @property
    def completed_files(self) -> Dict[str, str]:
        """Files completed during the current transition."""
        return dict(self._touched)

    # ---------- transitions ----------

    def begin_modification(self) -> Project:
        """Ready -> Modifying. Returns the snapshot the transition will revert to."""
        if self._phase is not Phase.READY:
            raise TransitionError(f"cannot modify a project in phase {self._phase.value}")
        self._phase = Phase.MODIFYING
        self._working = self._committed
        self._touched = {}
        return self._committed

    def apply(self, event: StreamEvent) -> Project:
        self._require_in_flight("apply")
        self._working = apply_event(self._working, event)
        if isinstance(event, FileComplete):
            self._touched[event.path] = event.final_content
        return self._working

    def set_file(self, path: str, content: str) -> Project:
        """Record a whole file at once (per-file generation and placeholders)."""
        return self.apply(FileComplete(path=path, final_content=content))

    def discard_path(self, path: str) -> Project:
        """Revert one path of the working copy to its committed content (or drop it)."""
        self._require_in_flight("discard_path")
        files: Dict[str, str] = dict(self._working.files)
        if path in self._committed.files:
            files[path] = self._committed.files[path]
        else:
            files.pop(path, None)
        self._touched.pop(path, None)
        self._working = replace(self._working, files=files)
        return self._working

    def commit(self, review: Optional[StructuredReview] = None) -> Project:
        """In-flight -> Ready with the working files and (optionally) a fresh review."""
        self._require_in_flight("commit")
        project = self._working if review is None else self._working.with_review(review)
        self._seal(project)
        return project

    def rollback(self) -> Project:
        """Discard the attempt: files and review revert together."""
        self._require_in_flight("rollback")
        logger.info(
            "rolling back transition",
            extra={"meta": {"project_id": self._committed.id, "phase": self._phase.value}},
        )
        self._seal(self._committed)
        return self._committed

    def keep_partial(self) -> Project:
        """Hard stop (stream aborted): what arrived becomes the new baseline.

        The review of the last committed state is kept since no fresh review
        exists for the partial files.
        """
        self._require_in_flight("keep_partial")
        project = self._working.with_review(self._committed.review)
        logger.warning(
            "stream aborted; keeping partial content",
            extra={"meta": {"project_id": project.id, "paths": sorted(self._touched)}},
        )
        self._seal(project)
        return project

    # ---------- internals ----------

    def _require_in_flight(self, op: str) -> None:
        if self._phase is Phase.READY:
            raise TransitionError(f"{op}() requires a transition in flight")

    def _seal(self, project: Project) -> None:
        self._committed = project
        self._working = project
        self._phase = Phase.READY
        self._touched = {}


__all__ = ["Phase", "ProjectBusyError", "ProjectState", "TransitionError", "apply_event"]
