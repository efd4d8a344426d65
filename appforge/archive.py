# appforge/archive.py
"""
Zip archive codec for projects.

Layout written by ``write_archive``::

    project.json      {prompt, plan, review, createdAt}
    <path>            one entry per file, at its project path verbatim

``read_archive`` accepts archives re-packed by other tools: the shallowest
``project.json`` defines the project root (its directory prefix is stripped
from every file path), directory entries and ``__MACOSX/`` resource forks are
ignored, and an archive without ``project.json`` yields raw files only so the
caller can infer a plan.
"""
from __future__ import annotations

import io
import json
import logging
import re
import zipfile
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .models import AppPlan, Project, SchemaValidationError, StructuredReview

logger = logging.getLogger(__name__)

METADATA_NAME = "project.json"
MACOSX_PREFIX = "__MACOSX/"


class ArchiveImportError(ValueError):
    """The archive cannot be turned into a project."""


@dataclass(frozen=True)
class ArchiveMetadata:
    prompt: str
    plan: AppPlan
    review: StructuredReview
    created_at: Optional[str] = None


@dataclass(frozen=True)
class ArchiveContents:
    files: Dict[str, str] = field(default_factory=dict)
    metadata: Optional[ArchiveMetadata] = None
    metadata_path: Optional[str] = None

    @property
    def needs_inference(self) -> bool:
        """True when the plan and review must be synthesised from the files."""
        return self.metadata is None


def archive_filename(project: Project) -> str:
    return re.sub(r"\s+", "_", project.plan.app_name) + ".zip"


def write_archive(project: Project) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(METADATA_NAME, json.dumps(project.metadata(), indent=2, ensure_ascii=False))
        for path, content in project.files.items():
            zf.writestr(path, content)
    data = buf.getvalue()
    logger.info(
        "archive written",
        extra={"meta": {"project_id": project.id, "files": len(project.files), "bytes": len(data)}},
    )
    return data


def _is_metadata_entry(name: str) -> bool:
    return name == METADATA_NAME or name.endswith("/" + METADATA_NAME)


def _depth(name: str) -> int:
    return len(name.split("/"))


def _decode(zf: zipfile.ZipFile, info: zipfile.ZipInfo) -> str:
    return zf.read(info).decode("utf-8", errors="replace")


def _parse_metadata(raw: str, where: str) -> ArchiveMetadata:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ArchiveImportError(f"Import failed: could not read {where} from the zip file ({e.msg}).") from e
    if not isinstance(data, dict):
        raise ArchiveImportError(f"Import failed: {where} must contain a JSON object.")
    try:
        plan = AppPlan.from_dict(data.get("plan"), strict=False)
    except SchemaValidationError as e:
        raise ArchiveImportError(f"Import failed: {where} has an invalid plan: {e.message}") from e
    created = data.get("createdAt")
    return ArchiveMetadata(
        prompt=str(data.get("prompt") or ""),
        plan=plan,
        review=StructuredReview.decode(data.get("review")),
        created_at=created if isinstance(created, str) else None,
    )


def read_archive(data: bytes) -> ArchiveContents:
    try:
        zf = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise ArchiveImportError(f"Import failed: not a valid zip archive ({e}).") from e

    with zf:
        entries: List[zipfile.ZipInfo] = [
            info for info in zf.infolist() if not info.is_dir() and not info.filename.startswith(MACOSX_PREFIX)
        ]
        candidates = sorted(
            (info.filename for info in entries if _is_metadata_entry(info.filename)),
            key=lambda name: (_depth(name), name),
        )

        if not candidates:
            files = {info.filename: _decode(zf, info) for info in entries}
            if not files:
                raise ArchiveImportError("Import failed: The zip file is empty or contains no files.")
            logger.info("archive has no project.json; plan will be inferred", extra={"meta": {"files": len(files)}})
            return ArchiveContents(files=files)

        meta_path = candidates[0]
        root = meta_path[: -len(METADATA_NAME)]
        metadata = _parse_metadata(zf.read(meta_path).decode("utf-8", errors="replace"), meta_path)

        files = {}
        for info in entries:
            name = info.filename
            if name == meta_path or not name.startswith(root):
                continue
            rel = name[len(root):]
            if rel:
                files[rel] = _decode(zf, info)

    if not files and metadata.plan.file_structure:
        raise ArchiveImportError(
            "Import failed: project.json was found, but no source code files could be located in the archive."
        )
    logger.info(
        "archive read",
        extra={"meta": {"metadata_path": meta_path, "root": root or "<root>", "files": len(files)}},
    )
    return ArchiveContents(files=files, metadata=metadata, metadata_path=meta_path)


__all__ = [
    "ArchiveContents",
    "ArchiveImportError",
    "ArchiveMetadata",
    "archive_filename",
    "read_archive",
    "write_archive",
]
