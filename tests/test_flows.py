"""Tests for the generate / modify / import transitions against a scripted model."""

import io
import threading
import zipfile

import pytest

from appforge.archive import ArchiveImportError, write_archive
from appforge.llm_client import ModelResponseError, StreamAborted
from appforge.project_store import ProjectNotFoundError, get_project
from appforge.prompts import NO_CHANGED_FILES
from appforge.stages import (
    FILE_ERROR_PLACEHOLDER,
    NoChangesProduced,
    generate_project,
    import_archive,
    modify_project,
)
from appforge.stages.import_flow import IMPORTED_PROMPT
from appforge.state import ProjectBusyError

from conftest import FILES, PLAN_DICT, REVIEW_DICT, FakeModelClient


PATHS = [f["path"] for f in PLAN_DICT["fileStructure"]]

ANALYSIS = {
    "changeSummary": "Made the buttons bigger.",
    "review": {"crashBugs": [], "uiUxImprovements": [], "otherSuggestions": [{"id": "add-tests", "description": "Add tests."}]},
}


def _block(path, content):
    return f"--FILE_START: {path}--\n{content}\n--FILE_END--\n"


# ---------- generation

class TestGenerateProject:
    def _client(self, file_scripts, review=REVIEW_DICT):
        return FakeModelClient(
            streams={"FILE_CODE": file_scripts},
            json_results={"PLAN": [PLAN_DICT], "REVIEW": [review]},
        )

    def test_happy_path(self, store, locks):
        client = self._client([["class ", "MainActivity {}"], ["<LinearLayout/>"], ["plugins {}"]])
        statuses, updates = [], []
        project = generate_project(
            "A tip calculator", client, store, on_status=statuses.append, on_update=updates.append, locks=locks
        )

        assert project.files == FILES
        assert [s.id for s in project.review.all_suggestions()] == ["fix-npe", "bigger-buttons"]
        assert store.load_all() == [project]
        assert client.stages() == ["PLAN", "FILE_CODE", "FILE_CODE", "FILE_CODE", "REVIEW"]

        assert [s.stage for s in statuses] == ["Planning", "Generating Code", "Generating Code", "Generating Code", "Reviewing Code", "Done"]
        assert [s.progress for s in statuses] == [10, 25, 42, 58, 85, 100]
        assert statuses[1].current_file == PATHS[0]
        assert updates[0].files == {}
        assert any(u.files.get(PATHS[0]) == "class " for u in updates)
        assert not locks.is_busy(project.id)

    def test_failed_file_gets_placeholder_and_walk_continues(self, store, locks):
        client = self._client([["class MainActivity {}"], [RuntimeError("model hiccup")], ["plugins {}"]])
        project = generate_project("A tip calculator", client, store, locks=locks)
        assert project.files[PATHS[1]] == FILE_ERROR_PLACEHOLDER
        assert project.files[PATHS[2]] == "plugins {}"
        assert FILE_ERROR_PLACEHOLDER in client.calls[-1]["prompt"]

    def test_abort_keeps_arrived_files(self, store, locks):
        client = self._client([["class MainActivity {}"], ["<Linear", StreamAborted("connection reset")]])
        with pytest.raises(StreamAborted):
            generate_project("A tip calculator", client, store, locks=locks)

        (saved,) = store.load_all()
        assert saved.files == {PATHS[0]: "class MainActivity {}", PATHS[1]: "<Linear"}
        assert saved.review.is_empty()
        assert "REVIEW" not in client.stages()

    def test_cancel_is_an_abort(self, store, locks):
        cancel = threading.Event()
        cancel.set()
        client = self._client([["never seen"]])
        with pytest.raises(StreamAborted):
            generate_project("A tip calculator", client, store, cancel=cancel, locks=locks)
        assert store.load_all()[0].files == {}

    def test_failed_review_persists_nothing(self, store, locks):
        client = self._client([["a"], ["b"], ["c"]], review=ModelResponseError("REVIEW", "bad json"))
        with pytest.raises(ModelResponseError):
            generate_project("A tip calculator", client, store, locks=locks)
        assert store.load_all() == []

    def test_empty_prompt(self, store):
        with pytest.raises(ValueError):
            generate_project("   ", FakeModelClient(), store)


# ---------- modification

class TestModifyProject:
    @pytest.fixture(autouse=True)
    def stored(self, ready_project, store):
        store.save_all([ready_project])

    def test_changed_and_added_files(self, ready_project, store, locks):
        client = FakeModelClient(
            streams={"MODIFY": [["Sure!\n", _block("build.gradle", "plugins { new }")[:20], _block("build.gradle", "plugins { new }")[20:], _block("README.md", "# Tips")]]},
            json_results={"ANALYZE_CHANGES": [ANALYSIS]},
        )
        updates = []
        result = modify_project(ready_project, "Bigger buttons", client, store, locks=locks, on_update=updates.append)

        assert result.changed == frozenset({"build.gradle"})
        assert result.added == frozenset({"README.md"})
        assert result.change_summary == "Made the buttons bigger."
        assert result.project.files["build.gradle"] == "plugins { new }"
        assert result.project.files["README.md"] == "# Tips"
        assert result.project.id == ready_project.id
        assert [s.id for s in result.project.review.all_suggestions()] == ["add-tests"]
        assert store.load_all() == [result.project]
        assert updates and all(u.id == ready_project.id for u in updates)

        analysis_prompt = client.calls[-1]["prompt"]
        assert "File: build.gradle (BEFORE)" in analysis_prompt
        assert "File: README.md (BEFORE)" not in analysis_prompt
        assert "File: README.md (AFTER)" in analysis_prompt

    def test_only_new_files_uses_placeholder_before_section(self, ready_project, store, locks):
        client = FakeModelClient(
            streams={"MODIFY": [[_block("README.md", "# Tips")]]},
            json_results={"ANALYZE_CHANGES": [ANALYSIS]},
        )
        result = modify_project(ready_project, "Add a readme", client, store, locks=locks)
        assert result.changed == frozenset()
        assert NO_CHANGED_FILES in client.calls[-1]["prompt"]

    def test_no_file_blocks_rolls_back(self, ready_project, store, locks):
        client = FakeModelClient(streams={"MODIFY": [["I cannot help with that."]]})
        with pytest.raises(NoChangesProduced):
            modify_project(ready_project, "Do something", client, store, locks=locks)
        assert store.load_all() == [ready_project]
        assert "ANALYZE_CHANGES" not in client.stages()

    def test_model_error_rolls_back(self, ready_project, store, locks):
        store.save_all([ready_project])
        client = FakeModelClient(
            streams={"MODIFY": [[_block("build.gradle", "half"), ModelResponseError("MODIFY", "failed")]]}
        )
        with pytest.raises(ModelResponseError):
            modify_project(ready_project, "Change it", client, store, locks=locks)
        assert store.load_all() == [ready_project]

    def test_failed_analysis_rolls_back(self, ready_project, store, locks):
        store.save_all([ready_project])
        client = FakeModelClient(
            streams={"MODIFY": [[_block("build.gradle", "new")]]},
            json_results={"ANALYZE_CHANGES": [ModelResponseError("ANALYZE_CHANGES", "bad")]},
        )
        with pytest.raises(ModelResponseError):
            modify_project(ready_project, "Change it", client, store, locks=locks)
        assert store.load_all() == [ready_project]

    def test_abort_keeps_partial_and_prior_review(self, ready_project, store, locks):
        store.save_all([ready_project])
        client = FakeModelClient(
            streams={"MODIFY": [["--FILE_START: build.gradle--\nplugins { ha", StreamAborted("timeout")]]}
        )
        with pytest.raises(StreamAborted):
            modify_project(ready_project, "Change it", client, store, locks=locks)
        (saved,) = store.load_all()
        assert saved.files["build.gradle"] == "plugins { ha"
        assert saved.review == ready_project.review
        assert not locks.is_busy(ready_project.id)

    def test_strict_policy_discards_unterminated_file(self, ready_project, store, locks):
        client = FakeModelClient(
            streams={"MODIFY": [[_block("README.md", "# Tips"), "--FILE_START: build.gradle--\nplugins { cut"]]},
            json_results={"ANALYZE_CHANGES": [ANALYSIS]},
        )
        result = modify_project(ready_project, "Change it", client, store, locks=locks, accept_truncated=False)
        assert result.project.files["build.gradle"] == "plugins {}"
        assert result.added == frozenset({"README.md"})
        assert result.changed == frozenset()

    def test_lenient_policy_keeps_unterminated_file(self, ready_project, store, locks):
        client = FakeModelClient(
            streams={"MODIFY": [["--FILE_START: build.gradle--\nplugins { cut"]]},
            json_results={"ANALYZE_CHANGES": [ANALYSIS]},
        )
        result = modify_project(ready_project, "Change it", client, store, locks=locks)
        assert result.project.files["build.gradle"] == "plugins { cut"
        assert result.changed == frozenset({"build.gradle"})

    def test_busy_project_is_rejected(self, ready_project, store, locks):
        client = FakeModelClient()
        with locks.hold(ready_project.id):
            with pytest.raises(ProjectBusyError):
                modify_project(ready_project, "Change it", client, store, locks=locks)
        assert client.calls == []

    def test_blank_request(self, ready_project, store, locks):
        with pytest.raises(ValueError):
            modify_project(ready_project, "  ", FakeModelClient(), store, locks=locks)

    def test_stale_copy_builds_on_stored_project(self, ready_project, store, locks):
        stale = get_project(store, ready_project.id)
        client = FakeModelClient(
            streams={"MODIFY": [[_block("a.txt", "A")], [_block("b.txt", "B")]]},
            json_results={"ANALYZE_CHANGES": [ANALYSIS, ANALYSIS]},
        )
        modify_project(ready_project, "Add a", client, store, locks=locks)
        result = modify_project(stale, "Add b", client, store, locks=locks)

        assert "a.txt" in result.previous.files
        assert result.added == frozenset({"b.txt"})
        (saved,) = store.load_all()
        assert saved.files["a.txt"] == "A"
        assert saved.files["b.txt"] == "B"

    def test_missing_project(self, ready_project, store, locks):
        store.save_all([])
        client = FakeModelClient()
        with pytest.raises(ProjectNotFoundError):
            modify_project(ready_project, "Change it", client, store, locks=locks)
        assert client.calls == []
        assert store.load_all() == []
        assert not locks.is_busy(ready_project.id)

    def test_header_alone_keeps_existing_content(self, ready_project, store, locks):
        client = FakeModelClient(
            streams={"MODIFY": [["--FILE_START: build.gradle--\n", "plugins { new }\n--FILE_END--"]]},
            json_results={"ANALYZE_CHANGES": [ANALYSIS]},
        )
        updates = []
        modify_project(ready_project, "Change it", client, store, locks=locks, on_update=updates.append)
        assert [u.files["build.gradle"] for u in updates][0] == "plugins { new }"
        assert all(u.files["build.gradle"] for u in updates)

    def test_truncated_final_file_reaches_live_updates(self, ready_project, store, locks):
        client = FakeModelClient(
            streams={"MODIFY": [["--FILE_START: build.gradle--\nplugins { a -"]]},
            json_results={"ANALYZE_CHANGES": [ANALYSIS]},
        )
        updates = []
        result = modify_project(ready_project, "Change it", client, store, locks=locks, on_update=updates.append)
        assert updates[0].files["build.gradle"] == "plugins { a"
        assert updates[-1].files["build.gradle"] == "plugins { a -"
        assert result.project.files["build.gradle"] == "plugins { a -"


# ---------- import

def _raw_zip(entries):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return buf.getvalue()


class TestImportArchive:
    def test_described_archive_needs_no_model(self, ready_project, store):
        project = import_archive(write_archive(ready_project), None, store)
        assert project.id != ready_project.id
        assert project.files == ready_project.files
        assert project.plan == ready_project.plan
        assert project.review == ready_project.review
        assert project.prompt == ready_project.prompt
        assert store.load_all() == [project]

    def test_inferred_archive(self, store):
        client = FakeModelClient(json_results={"ANALYZE_IMPORT": [{"plan": PLAN_DICT, "review": REVIEW_DICT}]})
        project = import_archive(_raw_zip(FILES), client, store)
        assert project.prompt == IMPORTED_PROMPT
        assert project.plan.app_name == "Tip Calculator"
        assert project.files == FILES
        assert "File: build.gradle" in client.calls[0]["prompt"]

    def test_inference_without_client(self, store):
        with pytest.raises(ArchiveImportError):
            import_archive(_raw_zip(FILES), None, store)
        assert store.load_all() == []

    def test_invalid_inferred_plan(self, store):
        client = FakeModelClient(json_results={"ANALYZE_IMPORT": [{"plan": {"appName": "x"}, "review": {}}]})
        with pytest.raises(ArchiveImportError):
            import_archive(_raw_zip(FILES), client, store)
        assert store.load_all() == []
