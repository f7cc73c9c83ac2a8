import pytest

from docflow.workflow import WorkflowStore, get_template, get_workflow_store, install_templates


@pytest.fixture
def store(tmp_path):
    return WorkflowStore(tmp_path / "store")


class TestWorkflowStore:

    def test_save_and_load(self, store, build_workflow):
        workflow = build_workflow([("a", "source"), ("b", "collect")], [("a", "b")])
        path = store.save(workflow)
        assert path.exists()
        loaded = store.load(workflow.id)
        assert loaded.node_ids() == ["a", "b"]
        assert loaded.edges[0].source == "a"

    def test_missing_and_corrupt_files(self, store):
        assert store.load("nope") is None
        (store.directory / "broken.json").write_text("{not json", encoding="utf-8")
        assert store.load("broken") is None
        assert store.list_all() == []

    def test_delete(self, store, build_workflow):
        workflow = build_workflow([("a", "source")], [])
        store.save(workflow)
        assert store.exists(workflow.id)
        assert store.delete(workflow.id) is True
        assert store.delete(workflow.id) is False

    def test_templates_and_user_workflows_are_listed_apart(self, store, build_workflow):
        assert install_templates(store) == 4
        store.save(build_workflow([("a", "source")], []))
        assert sorted(w.template_name for w in store.list_templates()) == [
            "contract", "invoice", "medical", "receipt",
        ]
        assert len(store.list_user_workflows()) == 1

    def test_ids_are_sanitized(self, store):
        workflow = get_template("invoice")
        workflow.id = "../../etc/passwd"
        path = store.save(workflow)
        assert path.parent == store.directory
        with pytest.raises(ValueError):
            store.load("///")

    def test_default_directory_comes_from_storage_config(self, tmp_path):
        assert WorkflowStore().directory == tmp_path / "workflows"

    def test_list_all_filters_on_template_flag(self, store, build_workflow):
        install_templates(store)
        store.save(build_workflow([("a", "source")], []))
        assert len(store.list_all()) == 5
        assert len(store.list_all(templates=True)) == 4
        assert [w.name for w in store.list_all(templates=False)] == ["test"]

    def test_save_leaves_no_temporary_files(self, store):
        store.save(get_template("receipt"))
        assert [p.name for p in store.directory.iterdir()] == ["template-receipt.json"]

    def test_shared_store_is_created_once(self, tmp_path):
        get_workflow_store.cache_clear()
        try:
            assert get_workflow_store() is get_workflow_store()
            assert get_workflow_store().directory == tmp_path / "workflows"
        finally:
            get_workflow_store.cache_clear()
