# appforge/models.py
"""
Data model for generated projects.

Serialised shapes use the camelCase keys of the archive format
(``project.json``) and the persisted project collection, so both can be
exchanged with older exports unchanged.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

import jsonschema

from .schemas import PLAN, load_schema

logger = logging.getLogger(__name__)

LEGACY_REVIEW_ID = "legacy-review"

REVIEW_CATEGORIES: Tuple[str, ...] = ("crashBugs", "uiUxImprovements", "otherSuggestions")

_PLAN_KEYS = frozenset(
    ("appName", "appDescription", "packageName", "permissions", "dependencies", "fileStructure")
)


class SchemaValidationError(ValueError):
    """A structured result does not match its required shape."""

    def __init__(self, what: str, message: str) -> None:
        super().__init__(f"{what}: {message}")
        self.what = what
        self.message = message


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_project_id() -> str:
    return f"proj_{uuid.uuid4().hex}"


@dataclass(frozen=True)
class FileDescriptor:
    path: str
    description: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "description": self.description}


@dataclass(frozen=True)
class AppPlan:
    app_name: str
    app_description: str
    package_name: str
    permissions: Tuple[str, ...] = ()
    dependencies: Tuple[str, ...] = ()
    file_structure: Tuple[FileDescriptor, ...] = ()
    # Keys from stored records this version does not model; written back unchanged.
    extras: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.extras,
            "appName": self.app_name,
            "appDescription": self.app_description,
            "packageName": self.package_name,
            "permissions": list(self.permissions),
            "dependencies": list(self.dependencies),
            "fileStructure": [f.to_dict() for f in self.file_structure],
        }

    @classmethod
    def from_dict(cls, data: Any, *, strict: bool = True) -> "AppPlan":
        """
        Build a plan from its serialised form, validating it against the plan schema.

        With ``strict=False`` (stored records and archives) unknown top-level
        keys are set aside in ``extras`` instead of failing validation.
        """
        extras: Dict[str, Any] = {}
        if not strict and isinstance(data, Mapping):
            extras = {k: v for k, v in data.items() if k not in _PLAN_KEYS}
            data = {k: v for k, v in data.items() if k in _PLAN_KEYS}
        try:
            jsonschema.validate(data, load_schema(PLAN))
        except jsonschema.ValidationError as e:
            raise SchemaValidationError("plan", e.message) from e

        seen: Dict[str, FileDescriptor] = {}
        for item in data["fileStructure"]:
            if not item["path"].strip():
                raise SchemaValidationError("plan", "fileStructure entries need a non-empty path")
            # Paths identify files; a repeated path keeps its last description.
            seen[item["path"]] = FileDescriptor(path=item["path"], description=item["description"])
        return cls(
            app_name=data["appName"],
            app_description=data["appDescription"],
            package_name=data["packageName"],
            permissions=tuple(data["permissions"]),
            dependencies=tuple(data["dependencies"]),
            file_structure=tuple(seen.values()),
            extras=extras,
        )

    def paths(self) -> List[str]:
        return [f.path for f in self.file_structure]


@dataclass(frozen=True)
class Suggestion:
    id: str
    description: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "description": self.description}


def _decode_suggestions(raw: Any) -> Tuple[Suggestion, ...]:
    out: List[Suggestion] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        sid, desc = item.get("id"), item.get("description")
        if isinstance(sid, str) and isinstance(desc, str):
            out.append(Suggestion(id=sid, description=desc))
    return tuple(out)


@dataclass(frozen=True)
class StructuredReview:
    crash_bugs: Tuple[Suggestion, ...] = ()
    ui_ux_improvements: Tuple[Suggestion, ...] = ()
    other_suggestions: Tuple[Suggestion, ...] = ()

    @classmethod
    def empty(cls) -> "StructuredReview":
        return cls()

    @classmethod
    def decode(cls, raw: Any) -> "StructuredReview":
        """Normalise any stored or received review shape.

        - missing / None / unrecognised -> all categories empty
        - a bare string (legacy free-text review) -> one "other" suggestion
        - a mapping whose categories are lists -> well-formed review; a
          missing category becomes an empty list and malformed entries are dropped
        """
        if raw is None:
            return cls.empty()
        if isinstance(raw, str):
            return cls(other_suggestions=(Suggestion(id=LEGACY_REVIEW_ID, description=raw),))
        if not isinstance(raw, Mapping):
            return cls.empty()

        lists = {k: raw.get(k) for k in REVIEW_CATEGORIES}
        if any(v is not None and not isinstance(v, list) for v in lists.values()):
            logger.debug("discarding review with non-list category", extra={"meta": {"keys": sorted(raw)}})
            return cls.empty()
        return cls(
            crash_bugs=_decode_suggestions(lists["crashBugs"] or []),
            ui_ux_improvements=_decode_suggestions(lists["uiUxImprovements"] or []),
            other_suggestions=_decode_suggestions(lists["otherSuggestions"] or []),
        )

    def to_dict(self) -> Dict[str, List[Dict[str, str]]]:
        return {
            "crashBugs": [s.to_dict() for s in self.crash_bugs],
            "uiUxImprovements": [s.to_dict() for s in self.ui_ux_improvements],
            "otherSuggestions": [s.to_dict() for s in self.other_suggestions],
        }

    def all_suggestions(self) -> List[Suggestion]:
        return [*self.crash_bugs, *self.ui_ux_improvements, *self.other_suggestions]

    def is_empty(self) -> bool:
        return not (self.crash_bugs or self.ui_ux_improvements or self.other_suggestions)


@dataclass(frozen=True)
class Project:
    id: str
    prompt: str
    plan: AppPlan
    files: Mapping[str, str] = field(default_factory=dict)
    review: StructuredReview = field(default_factory=StructuredReview)
    created_at: str = field(default_factory=_utc_now_iso)

    @classmethod
    def new(
        cls,
        prompt: str,
        plan: AppPlan,
        *,
        files: Optional[Mapping[str, str]] = None,
        review: Optional[StructuredReview] = None,
    ) -> "Project":
        return cls(
            id=new_project_id(),
            prompt=prompt,
            plan=plan,
            files=dict(files or {}),
            review=review or StructuredReview.empty(),
        )

    def with_files(self, files: Mapping[str, str]) -> "Project":
        return replace(self, files=dict(files))

    def with_review(self, review: StructuredReview) -> "Project":
        return replace(self, review=review)

    def metadata(self) -> Dict[str, Any]:
        """The ``project.json`` payload written into archives (no file contents)."""
        return {
            "prompt": self.prompt,
            "plan": self.plan.to_dict(),
            "review": self.review.to_dict(),
            "createdAt": self.created_at,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "plan": self.plan.to_dict(),
            "files": dict(self.files),
            "review": self.review.to_dict(),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Project":
        files = data.get("files") or {}
        if not isinstance(files, Mapping):
            raise SchemaValidationError("project", "'files' must be an object")
        return cls(
            id=str(data["id"]),
            prompt=str(data.get("prompt") or ""),
            plan=AppPlan.from_dict(data.get("plan"), strict=False),
            files={str(k): str(v) for k, v in files.items()},
            review=StructuredReview.decode(data.get("review")),
            created_at=str(data.get("createdAt") or _utc_now_iso()),
        )


@dataclass(frozen=True)
class GenerationStatus:
    stage: str
    message: str
    progress: int
    current_file: Optional[str] = None


@dataclass(frozen=True)
class ChangeAnalysis:
    review: StructuredReview
    change_summary: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChangeAnalysis":
        return cls(
            review=StructuredReview.decode(data.get("review")),
            change_summary=str(data.get("changeSummary") or ""),
        )


__all__ = [
    "AppPlan",
    "ChangeAnalysis",
    "FileDescriptor",
    "GenerationStatus",
    "LEGACY_REVIEW_ID",
    "Project",
    "REVIEW_CATEGORIES",
    "SchemaValidationError",
    "StructuredReview",
    "Suggestion",
    "new_project_id",
]
