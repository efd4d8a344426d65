"""Shared fixtures: an in-memory model client and sample project data."""

import copy
import threading
from typing import Any, Dict, Iterator, List, Optional

import pytest

from appforge.concurrency import ProjectLocks
from appforge.models import AppPlan, Project, StructuredReview
from appforge.project_store import JsonFileProjectStore


PLAN_DICT: Dict[str, Any] = {
    "appName": "Tip Calculator",
    "appDescription": "Splits a restaurant bill and computes the tip.",
    "packageName": "com.example.tipcalc",
    "permissions": [],
    "dependencies": ["androidx.appcompat:appcompat:1.6.1"],
    "fileStructure": [
        {"path": "app/src/main/java/com/example/tipcalc/MainActivity.java", "description": "Main screen."},
        {"path": "app/src/main/res/layout/activity_main.xml", "description": "Main layout."},
        {"path": "build.gradle", "description": "Project build file."},
    ],
}

REVIEW_DICT: Dict[str, Any] = {
    "crashBugs": [{"id": "fix-npe", "description": "Guard against empty bill input."}],
    "uiUxImprovements": [{"id": "bigger-buttons", "description": "Increase button touch targets."}],
    "otherSuggestions": [],
}

FILES: Dict[str, str] = {
    "app/src/main/java/com/example/tipcalc/MainActivity.java": "class MainActivity {}",
    "app/src/main/res/layout/activity_main.xml": "<LinearLayout/>",
    "build.gradle": "plugins {}",
}


class FakeModelClient:
    """Scripted stand-in for LLMClient.

    ``streams[stage]`` and ``json_results[stage]`` are queues consumed in call
    order. A stream script is a list of fragments; an exception instance in it
    is raised at that point of the iteration. A json script entry that is an
    exception is raised instead of returned.
    """

    def __init__(
        self,
        *,
        streams: Optional[Dict[str, List[Any]]] = None,
        json_results: Optional[Dict[str, List[Any]]] = None,
    ) -> None:
        self.streams = {k: list(v) for k, v in (streams or {}).items()}
        self.json_results = {k: list(v) for k, v in (json_results or {}).items()}
        self.calls: List[Dict[str, Any]] = []

    def stream_text(self, prompt, *, stage, instructions=None, cancel=None) -> Iterator[str]:
        self.calls.append({"kind": "stream", "stage": stage, "prompt": prompt, "instructions": instructions})
        script = self.streams[stage].pop(0)
        if isinstance(script, BaseException):
            raise script
        return self._iterate(script, cancel)

    @staticmethod
    def _iterate(script: List[Any], cancel: Optional[threading.Event]) -> Iterator[str]:
        from appforge.llm_client import StreamAborted

        for item in script:
            if cancel is not None and cancel.is_set():
                raise StreamAborted("cancelled by caller")
            if isinstance(item, BaseException):
                raise item
            yield item

    def chat_json(self, prompt, *, schema, stage, instructions=None) -> Dict[str, Any]:
        self.calls.append({"kind": "json", "stage": stage, "prompt": prompt, "schema": schema})
        result = self.json_results[stage].pop(0)
        if isinstance(result, BaseException):
            raise result
        return copy.deepcopy(result)

    def stages(self) -> List[str]:
        return [c["stage"] for c in self.calls]


@pytest.fixture
def plan_dict() -> Dict[str, Any]:
    return copy.deepcopy(PLAN_DICT)


@pytest.fixture
def review_dict() -> Dict[str, Any]:
    return copy.deepcopy(REVIEW_DICT)


@pytest.fixture
def plan() -> AppPlan:
    return AppPlan.from_dict(copy.deepcopy(PLAN_DICT))


@pytest.fixture
def ready_project(plan) -> Project:
    return Project.new(
        "A tip calculator",
        plan,
        files=dict(FILES),
        review=StructuredReview.decode(copy.deepcopy(REVIEW_DICT)),
    )


@pytest.fixture
def store(tmp_path) -> JsonFileProjectStore:
    return JsonFileProjectStore(tmp_path / "projects.json")


@pytest.fixture
def locks() -> ProjectLocks:
    return ProjectLocks()
