"""HTTP API tests using FastAPI's TestClient and a scripted model."""

import io
import zipfile

import pytest
from fastapi.testclient import TestClient

from appforge.config import DEFAULT_CONFIG, ConfigError
from appforge.concurrency import ProjectLocks
from appforge.project_store import MemoryProjectStore
from appforge.server import create_app

from conftest import PLAN_DICT, REVIEW_DICT, FakeModelClient


@pytest.fixture
def fake():
    return FakeModelClient()


@pytest.fixture
def mem_store(ready_project):
    return MemoryProjectStore([ready_project.to_dict()])


@pytest.fixture
def api(mem_store, fake, locks):
    app = create_app(DEFAULT_CONFIG, store=mem_store, client_factory=lambda: fake, locks=locks)
    return TestClient(app)


def test_health(api):
    assert api.get("/health").json() == {"ok": True}


class TestReadRoutes:
    def test_list(self, api, ready_project):
        (summary,) = api.get("/projects").json()
        assert summary["id"] == ready_project.id
        assert summary["appName"] == "Tip Calculator"
        assert summary["fileCount"] == 3

    def test_get_and_missing(self, api, ready_project):
        body = api.get(f"/projects/{ready_project.id}").json()
        assert body["plan"] == PLAN_DICT
        assert body["review"] == REVIEW_DICT
        assert api.get("/projects/proj_nope").status_code == 404

    def test_tree(self, api, ready_project):
        rows = api.get(f"/projects/{ready_project.id}/tree").json()["rows"]
        assert rows[0] == {"depth": 0, "name": "app", "path": "app", "isDir": True, "children": 1}
        assert rows[-1] == {
            "depth": 0,
            "name": "build.gradle",
            "path": "build.gradle",
            "isDir": False,
            "description": "Project build file.",
        }


class TestGenerateRoute:
    def test_generate(self, api, fake, mem_store):
        fake.json_results = {"PLAN": [PLAN_DICT], "REVIEW": [REVIEW_DICT]}
        fake.streams = {"FILE_CODE": [["a"], ["b"], ["c"]]}
        resp = api.post("/projects/generate", json={"prompt": "A tip calculator"})
        assert resp.status_code == 200
        assert len(mem_store.load_all()) == 2
        assert set(resp.json()["files"].values()) == {"a", "b", "c"}

    def test_blank_prompt_is_rejected(self, api):
        assert api.post("/projects/generate", json={"prompt": ""}).status_code == 422


class TestModifyRoute:
    def test_modify_with_diff(self, api, fake, ready_project):
        fake.streams = {"MODIFY": [["--FILE_START: build.gradle--\nplugins { new }\n--FILE_END--"]]}
        fake.json_results = {"ANALYZE_CHANGES": [{"changeSummary": "Updated build.", "review": REVIEW_DICT}]}
        resp = api.post(
            f"/projects/{ready_project.id}/modify",
            json={"suggestion_ids": ["fix-npe"], "include_diff": True},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["changed"] == ["build.gradle"]
        assert body["added"] == []
        assert body["changeSummary"] == "Updated build."
        assert "+plugins { new }" in body["diff"]
        assert "- Guard against empty bill input." in fake.calls[0]["prompt"]

    def test_nothing_requested(self, api, ready_project):
        assert api.post(f"/projects/{ready_project.id}/modify", json={}).status_code == 400

    def test_no_changes_is_unprocessable(self, api, fake, ready_project):
        fake.streams = {"MODIFY": [["No file blocks here."]]}
        resp = api.post(f"/projects/{ready_project.id}/modify", json={"custom_request": "Do it"})
        assert resp.status_code == 422
        assert resp.json()["error"] == "NoChangesProduced"

    def test_busy_project(self, api, locks, ready_project):
        with locks.hold(ready_project.id):
            resp = api.post(f"/projects/{ready_project.id}/modify", json={"custom_request": "Do it"})
            assert resp.status_code == 409
            assert api.delete(f"/projects/{ready_project.id}").status_code == 409


class TestArchiveRoutes:
    def test_export_then_import(self, api, ready_project, mem_store):
        resp = api.get(f"/projects/{ready_project.id}/export")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/zip"
        assert 'filename="Tip_Calculator.zip"' in resp.headers["content-disposition"]

        imported = api.post("/projects/import", content=resp.content).json()
        assert imported["id"] != ready_project.id
        assert imported["files"] == dict(ready_project.files)
        assert len(mem_store.load_all()) == 2

    def test_import_without_model_client(self, mem_store, ready_project):
        def no_client():
            raise ConfigError("Missing OPENAI_API_KEY")

        api = TestClient(create_app(DEFAULT_CONFIG, store=mem_store, client_factory=no_client, locks=ProjectLocks()))
        exported = api.get(f"/projects/{ready_project.id}/export").content
        assert api.post("/projects/import", content=exported).status_code == 200

        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as zf:
            zf.writestr("Main.java", "class Main {}")
        resp = api.post("/projects/import", content=buf.getvalue())
        assert resp.status_code == 400
        assert resp.json()["error"] == "ArchiveImportError"

    def test_bad_archive(self, api):
        assert api.post("/projects/import", content=b"not a zip").status_code == 400
        assert api.post("/projects/import", content=b"").status_code == 400


class TestChatAndDelete:
    def test_chat_streams_and_keeps_history(self, api, fake, ready_project):
        fake.streams = {"CHAT": [["Use ", "a Fragment."]]}
        resp = api.post(f"/projects/{ready_project.id}/chat", json={"message": "How?"})
        assert resp.text == "Use a Fragment."
        history = api.get(f"/projects/{ready_project.id}/chat").json()["history"]
        assert history == [{"role": "user", "text": "How?"}, {"role": "model", "text": "Use a Fragment."}]

    def test_chat_error_is_rendered(self, api, fake, ready_project):
        fake.streams = {"CHAT": [[RuntimeError("quota exceeded")]]}
        resp = api.post(f"/projects/{ready_project.id}/chat", json={"message": "How?"})
        assert resp.text.endswith("Sorry, I encountered an error: quota exceeded")

    def test_delete(self, api, ready_project, mem_store):
        assert api.delete(f"/projects/{ready_project.id}").json() == {"ok": True, "id": ready_project.id}
        assert mem_store.load_all() == []
        assert api.delete(f"/projects/{ready_project.id}").status_code == 404
