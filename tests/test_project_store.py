"""Unit tests for project persistence."""

import json

import pytest

from appforge.models import LEGACY_REVIEW_ID, Project
from appforge.project_store import (
    JsonFileProjectStore,
    MemoryProjectStore,
    ProjectStoreError,
    add_project,
    decode_projects,
    delete_project,
    get_project,
    replace_project,
)


class TestJsonFileProjectStore:
    def test_missing_file_reads_as_empty(self, store):
        assert store.load_all() == []

    def test_save_then_load(self, store, ready_project):
        store.save_all([ready_project])
        loaded = store.load_all()
        assert loaded == [ready_project]
        assert json.loads(store.path.read_text(encoding="utf-8"))[0]["id"] == ready_project.id

    def test_save_leaves_no_temp_files(self, store, ready_project):
        store.save_all([ready_project])
        store.save_all([ready_project])
        assert [p.name for p in store.path.parent.iterdir()] == ["projects.json"]

    def test_corrupt_file_reads_as_empty(self, store):
        store.path.write_text("[{not json", encoding="utf-8")
        assert store.load_all() == []

    def test_corrupt_file_is_not_overwritten(self, store, ready_project):
        store.path.write_text("[{not json", encoding="utf-8")
        with pytest.raises(ProjectStoreError):
            add_project(store, ready_project)
        with pytest.raises(ProjectStoreError):
            replace_project(store, ready_project)
        with pytest.raises(ProjectStoreError):
            delete_project(store, ready_project.id)
        assert store.path.read_text(encoding="utf-8") == "[{not json"

    def test_unreadable_records_survive_saves(self, store, ready_project, plan):
        no_id = ready_project.to_dict()
        del no_id["id"]
        store.save_records(["junk", no_id])
        other = Project.new("second", plan)
        add_project(store, ready_project)
        add_project(store, other)
        delete_project(store, other.id)
        assert json.loads(store.path.read_text(encoding="utf-8")) == ["junk", no_id, ready_project.to_dict()]

    def test_creates_parent_directories(self, tmp_path, ready_project):
        nested = JsonFileProjectStore(tmp_path / "a" / "b" / "projects.json")
        nested.save_all([ready_project])
        assert nested.load_all()[0].id == ready_project.id


class TestDecodeProjects:
    def test_legacy_review_is_normalised(self, ready_project):
        record = ready_project.to_dict()
        record["review"] = "Old free-text review."
        (project,) = decode_projects([record])
        assert project.review.other_suggestions[0].id == LEGACY_REVIEW_ID
        assert project.review.other_suggestions[0].description == "Old free-text review."

    def test_missing_review_is_empty(self, ready_project):
        record = ready_project.to_dict()
        del record["review"]
        (project,) = decode_projects([record])
        assert project.review.is_empty()

    def test_unreadable_records_are_skipped(self, ready_project):
        bad_plan = ready_project.to_dict()
        bad_plan["plan"] = {"appName": "x"}
        no_id = ready_project.to_dict()
        del no_id["id"]
        projects = decode_projects([bad_plan, "junk", no_id, ready_project.to_dict()])
        assert [p.id for p in projects] == [ready_project.id]

    def test_non_list_is_empty(self):
        assert decode_projects({"id": "x"}) == []

    def test_unknown_plan_keys_are_kept(self, ready_project):
        record = ready_project.to_dict()
        record["plan"]["theme"] = "dark"
        (project,) = decode_projects([record])
        assert project.plan == ready_project.plan
        assert project.to_dict()["plan"]["theme"] == "dark"


class TestCollectionOperations:
    def test_add_get_replace_delete(self, ready_project, plan):
        store = MemoryProjectStore()
        other = Project.new("second", plan)
        add_project(store, ready_project)
        add_project(store, other)
        assert [p.id for p in store.load_all()] == [ready_project.id, other.id]

        updated = ready_project.with_files({"only.txt": "x"})
        replace_project(store, updated)
        assert get_project(store, ready_project.id).files == {"only.txt": "x"}
        assert [p.id for p in store.load_all()] == [ready_project.id, other.id]

        assert delete_project(store, ready_project.id)
        assert not delete_project(store, ready_project.id)
        assert get_project(store, ready_project.id) is None
        assert [p.id for p in store.load_all()] == [other.id]

    def test_replace_appends_unknown_project(self, ready_project):
        store = MemoryProjectStore()
        replace_project(store, ready_project)
        assert store.load_all() == [ready_project]

    def test_memory_store_accepts_legacy_records(self, ready_project):
        record = ready_project.to_dict()
        record["review"] = "legacy"
        store = MemoryProjectStore([record])
        assert store.load_all()[0].review.other_suggestions[0].id == LEGACY_REVIEW_ID

    def test_older_record_survives_adding_a_project(self, ready_project, plan):
        legacy = ready_project.to_dict()
        legacy["id"] = "proj_legacy"
        legacy["plan"]["theme"] = "dark"
        store = MemoryProjectStore([legacy])
        other = Project.new("second", plan)
        add_project(store, other)
        assert [p.id for p in store.load_all()] == ["proj_legacy", other.id]
        assert store.load_records()[0] == legacy
