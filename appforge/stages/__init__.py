"""appforge.stages package initializer

One module per project transition:

- project_create_flow: plan, then per-file generation, then review (Drafting -> Ready)
- modify_flow: streamed modification with reconciliation (Ready -> Modifying -> Ready)
- import_flow: archive import, described or inferred (Importing -> Ready)
"""

from __future__ import annotations

from .import_flow import import_archive
from .modify_flow import ModificationResult, NoChangesProduced, modify_project
from .project_create_flow import FILE_ERROR_PLACEHOLDER, generate_project

__all__ = [
    "FILE_ERROR_PLACEHOLDER",
    "ModificationResult",
    "NoChangesProduced",
    "generate_project",
    "import_archive",
    "modify_project",
]
