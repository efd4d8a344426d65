# appforge/concurrency.py
"""appforge.concurrency

Per-project serialisation of transitions. A project may have at most one
generation/modification in flight; a second request for the same project is
rejected with ``ProjectBusyError`` rather than queued.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Set

from .state import ProjectBusyError


class ProjectLocks:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._busy: Set[str] = set()

    def is_busy(self, project_id: str) -> bool:
        with self._lock:
            return project_id in self._busy

    @contextmanager
    def hold(self, project_id: str) -> Iterator[None]:
        with self._lock:
            if project_id in self._busy:
                raise ProjectBusyError(project_id)
            self._busy.add(project_id)
        try:
            yield
        finally:
            with self._lock:
                self._busy.discard(project_id)


PROJECT_LOCKS = ProjectLocks()


def get_project_locks() -> ProjectLocks:
    return PROJECT_LOCKS


__all__ = ["ProjectLocks", "PROJECT_LOCKS", "get_project_locks"]
