"""Tests for the saved .kql query store."""

from __future__ import annotations

from datetime import date

import pytest

from insights_query.queries import SavedQueriesStore


@pytest.fixture
def store(tmp_path):
    folder = tmp_path / "queries"
    (folder / "Performance").mkdir(parents=True)
    (folder / "Performance" / "slow-requests.kql").write_text(
        "// Query: Slow requests\n"
        "// Category: Performance\n"
        "// Purpose: Find requests over 5s\n"
        "// Tags: latency, requests\n"
        "\n"
        "requests\n"
        "| where duration > 5000\n",
        encoding="utf-8",
    )
    (folder / "errors.kql").write_text(
        "// Query: Failed dependencies\n"
        "dependencies | where success == false\n",
        encoding="utf-8",
    )
    (folder / "empty.kql").write_text("// Query: Nothing here\n", encoding="utf-8")
    return SavedQueriesStore(tmp_path, "queries")


class TestSavedQueries:
    def test_list_all_skips_files_without_kql(self, store):
        names = sorted(q.name for q in store.list_all())
        assert names == ["Failed dependencies", "Slow requests"]

    def test_headers_and_category(self, store):
        slow = next(q for q in store.list_all() if q.name == "Slow requests")

        assert slow.category == "Performance"
        assert slow.purpose == "Find requests over 5s"
        assert slow.tags == ["latency", "requests"]
        assert slow.kql == "requests\n| where duration > 5000"

    def test_root_category(self, store):
        failed = next(q for q in store.list_all() if q.name == "Failed dependencies")
        assert failed.category == "Root"

    def test_search_ranks_by_weight(self, store):
        results = store.search(["requests"])
        assert [q.name for q in results] == ["Slow requests"]

        results = store.search(["success", "latency"])
        assert [q.name for q in results] == ["Slow requests", "Failed dependencies"]

    def test_blank_search_returns_everything(self, store):
        assert len(store.search(["  "])) == 2

    def test_categories(self, store):
        assert store.categories() == ["Performance"]

    def test_missing_folder(self, tmp_path):
        store = SavedQueriesStore(tmp_path, "nope")
        assert store.list_all() == []
        assert store.categories() == []

    def test_save_round_trips_through_list(self, store):
        path = store.save(
            "Top exceptions!",
            "exceptions | summarize count() by type",
            purpose="Triage",
            tags=["errors"],
            category="Errors",
        )

        assert path.name == "Top exceptions.kql"
        assert path.parent.name == "Errors"
        saved = next(q for q in store.list_all() if q.name == "Top exceptions!")
        assert saved.category == "Errors"
        assert saved.created == date.today().isoformat()
        assert saved.kql == "exceptions | summarize count() by type"

    def test_save_rejects_unusable_name(self, store):
        with pytest.raises(ValueError):
            store.save("!!!", "requests")

    def test_save_refuses_existing_name(self, store):
        store.save("Top exceptions", "exceptions | take 10", category="Errors")

        with pytest.raises(FileExistsError):
            store.save("Top exceptions", "exceptions | take 20", category="Errors")

        saved = next(q for q in store.list_all() if q.name == "Top exceptions")
        assert saved.kql == "exceptions | take 10"

    def test_save_overwrite(self, store):
        store.save("Top exceptions", "exceptions | take 10")
        store.save("Top exceptions", "exceptions | take 20", overwrite=True)

        saved = next(q for q in store.list_all() if q.name == "Top exceptions")
        assert saved.kql == "exceptions | take 20"
