# appforge/stages/import_flow.py
"""
Archive import (Importing -> Ready).

An archive carrying ``project.json`` is imported as described: its prompt,
plan and (normalised) review are used verbatim. An archive without it is
imported from raw files and the plan and review are inferred by the model.
Nothing is persisted unless the whole import succeeds.
"""
from __future__ import annotations

import logging
from typing import Mapping, Optional, Tuple

from ..archive import ArchiveImportError, read_archive
from ..llm_client import ModelClient
from ..logging_utils import start_action
from ..models import AppPlan, Project, SchemaValidationError, StructuredReview
from ..project_store import ProjectStore, add_project
from ..prompts import import_analysis_prompt
from ..schemas import ANALYSIS, load_schema
from ..state import ProjectState

logger = logging.getLogger(__name__)

IMPORTED_PROMPT = "Project imported from a ZIP archive."


def infer_metadata(files: Mapping[str, str], client: ModelClient) -> Tuple[AppPlan, StructuredReview]:
    raw = client.chat_json(import_analysis_prompt(files), schema=load_schema(ANALYSIS), stage="ANALYZE_IMPORT")
    return AppPlan.from_dict(raw.get("plan")), StructuredReview.decode(raw.get("review"))


def import_archive(data: bytes, client: Optional[ModelClient], store: ProjectStore) -> Project:
    with start_action(logger, "import_archive", bytes=len(data)) as act:
        contents = read_archive(data)

        if contents.metadata is not None:
            meta = contents.metadata
            prompt, plan, review = meta.prompt, meta.plan, meta.review
            act.update(mode="described", metadata_path=contents.metadata_path)
        else:
            if client is None:
                raise ArchiveImportError("Import failed: project.json not found and no model client is configured.")
            try:
                plan, review = infer_metadata(contents.files, client)
            except SchemaValidationError as e:
                raise ArchiveImportError(f"Import failed: inferred plan is invalid: {e.message}") from e
            prompt = IMPORTED_PROMPT
            act.update(mode="inferred")

        state = ProjectState.begin_import(Project.new(prompt, plan, review=review))
        for path, content in contents.files.items():
            state.set_file(path, content)
        project = state.commit()
        add_project(store, project)
        act.update(project_id=project.id, files=len(project.files))
    return project


__all__ = ["IMPORTED_PROMPT", "import_archive", "infer_metadata"]
