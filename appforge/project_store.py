# appforge/project_store.py
from __future__ import annotations

import json
import logging
import os
import pathlib
import tempfile
import threading
from typing import Any, Callable, List, Optional, Protocol, Sequence

from .models import Project, SchemaValidationError

logger = logging.getLogger(__name__)


class ProjectStoreError(RuntimeError):
    """The stored collection exists but cannot be read, so it must not be overwritten."""


class ProjectNotFoundError(LookupError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"project not found: {project_id}")
        self.project_id = project_id


class ProjectStore(Protocol):
    """
    Persistence capability: the ordered project list, read and replaced wholesale.

    ``load_records``/``save_records`` work on the raw stored records so that a
    rewrite keeps records this version cannot decode. ``load_records`` raises
    ProjectStoreError when the collection itself is unreadable.
    """

    def load_all(self) -> List[Project]:
        ...

    def save_all(self, projects: Sequence[Project]) -> None:
        ...

    def load_records(self) -> List[Any]:
        ...

    def save_records(self, records: Sequence[Any]) -> None:
        ...


def _atomic_write_text(path: pathlib.Path, text: str) -> None:
    """Write to a temp file in the target directory, then os.replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path: Optional[pathlib.Path] = None
    try:
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", delete=False, dir=str(path.parent), prefix=path.name + "."
        ) as tf:
            tf.write(text)
            tmp_path = pathlib.Path(tf.name)
        os.replace(str(tmp_path), str(path))
    finally:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()


def decode_projects(raw: Any) -> List[Project]:
    """Decode a stored collection; records that cannot be decoded are skipped."""
    if not isinstance(raw, list):
        logger.warning("project collection is not a list; reading as empty")
        return []
    out: List[Project] = []
    for idx, record in enumerate(raw):
        if not isinstance(record, dict):
            logger.warning("skipping non-object project record", extra={"meta": {"index": idx}})
            continue
        try:
            out.append(Project.from_dict(record))
        except (KeyError, SchemaValidationError) as e:
            logger.warning(
                "skipping unreadable project record",
                extra={"meta": {"index": idx, "project_id": record.get("id"), "err": str(e)}},
            )
    return out


def _record_id(record: Any) -> Optional[str]:
    if isinstance(record, dict) and "id" in record:
        return str(record["id"])
    return None


_SAVE_LOCK = threading.RLock()


def _rewrite(store: ProjectStore, change: Callable[[List[Any]], bool]) -> bool:
    """Apply ``change`` to the raw records; saved only when it reports a change."""
    with _SAVE_LOCK:
        records = store.load_records()
        if not change(records):
            return False
        store.save_records(records)
    return True


def get_project(store: ProjectStore, project_id: str) -> Optional[Project]:
    return next((p for p in store.load_all() if p.id == project_id), None)


def add_project(store: ProjectStore, project: Project) -> Project:
    def append(records: List[Any]) -> bool:
        records.append(project.to_dict())
        return True

    _rewrite(store, append)
    return project


def replace_project(store: ProjectStore, project: Project) -> Project:
    """Replace the stored record with the same id (appended when missing)."""

    def swap(records: List[Any]) -> bool:
        for i, record in enumerate(records):
            if _record_id(record) == project.id:
                records[i] = project.to_dict()
                break
        else:
            records.append(project.to_dict())
        return True

    _rewrite(store, swap)
    return project


def delete_project(store: ProjectStore, project_id: str) -> bool:
    def drop(records: List[Any]) -> bool:
        kept = [r for r in records if _record_id(r) != project_id]
        if len(kept) == len(records):
            return False
        records[:] = kept
        return True

    return _rewrite(store, drop)


class JsonFileProjectStore:
    """The whole collection as one JSON array on disk."""

    def __init__(self, path: os.PathLike | str) -> None:
        self.path = pathlib.Path(path)
        self._lock = threading.RLock()

    def load_records(self) -> List[Any]:
        with self._lock:
            if not self.path.exists():
                return []
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise ProjectStoreError(f"cannot read project store {self.path}: {e}") from e
        if not isinstance(raw, list):
            raise ProjectStoreError(f"project store {self.path} does not hold a list")
        return raw

    def load_all(self) -> List[Project]:
        try:
            raw = self.load_records()
        except ProjectStoreError as e:
            logger.error("failed to load projects", extra={"meta": {"path": str(self.path), "err": str(e)}})
            return []
        return decode_projects(raw)

    def save_records(self, records: Sequence[Any]) -> None:
        text = json.dumps(list(records), indent=2, ensure_ascii=False)
        with self._lock:
            _atomic_write_text(self.path, text)
        logger.debug("projects saved", extra={"meta": {"path": str(self.path), "count": len(records)}})

    def save_all(self, projects: Sequence[Project]) -> None:
        self.save_records([p.to_dict() for p in projects])


class MemoryProjectStore:
    """In-process store; holds serialised records so reads decode like the file store."""

    def __init__(self, records: Optional[List[Any]] = None) -> None:
        self._records: List[Any] = list(records or [])
        self._lock = threading.RLock()

    def load_records(self) -> List[Any]:
        with self._lock:
            return json.loads(json.dumps(self._records))

    def load_all(self) -> List[Project]:
        return decode_projects(self.load_records())

    def save_records(self, records: Sequence[Any]) -> None:
        with self._lock:
            self._records = json.loads(json.dumps(list(records)))

    def save_all(self, projects: Sequence[Project]) -> None:
        self.save_records([p.to_dict() for p in projects])


__all__ = [
    "JsonFileProjectStore",
    "MemoryProjectStore",
    "ProjectNotFoundError",
    "ProjectStore",
    "ProjectStoreError",
    "add_project",
    "decode_projects",
    "delete_project",
    "get_project",
    "replace_project",
]
