# appforge/__init__.py
from __future__ import annotations

from .archive import ArchiveImportError
from .config import ConfigError
from .llm_client import ModelResponseError, StreamAborted
from .models import AppPlan, FileDescriptor, Project, SchemaValidationError, StructuredReview, Suggestion
from .state import ProjectBusyError, ProjectState, TransitionError, apply_event
from .stream_parser import FileComplete, FileContentDelta, StreamEnd, StreamParser, StreamParserError

__all__ = [
    "AppPlan",
    "ArchiveImportError",
    "ConfigError",
    "FileComplete",
    "FileContentDelta",
    "FileDescriptor",
    "ModelResponseError",
    "NoChangesProduced",
    "Project",
    "ProjectBusyError",
    "ProjectState",
    "SchemaValidationError",
    "StreamAborted",
    "StreamEnd",
    "StreamParser",
    "StreamParserError",
    "StructuredReview",
    "Suggestion",
    "TransitionError",
    "__version__",
    "apply_event",
    "main",
]
__version__ = "0.1.0"


def __getattr__(name: str):
    # stages imports the flows; resolve lazily to keep `import appforge` light.
    if name == "NoChangesProduced":
        from .stages import NoChangesProduced

        return NoChangesProduced
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def main(*args, **kwargs):
    # Lazy import avoids import-time cycles
    from .core import main as _main
    return _main(*args, **kwargs)
