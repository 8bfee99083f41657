"""Tests for migration orchestration."""

from unittest.mock import AsyncMock

import pytest

from couchmigrate import MigrationConfig, MigrationDriver, migrate, migrate_sync
from couchmigrate.exceptions import CallbackError, MigrationAbortedError, StoreError
from couchmigrate.progress import ProgressReporter
from couchmigrate.rows import Cursor
from couchmigrate.stores import MemoryDocumentStore
from couchmigrate.stores.memory import field_view


class RecordingReporter(ProgressReporter):
    """Reporter keeping every event it receives."""

    def __init__(self):
        self.events = []

    def page_started(self, progress):
        self.events.append(("page", progress.pages, progress.page_rows))

    def attempt_finished(self, progress, succeeded):
        self.events.append(("attempt", succeeded, progress.migrated))

    def row_failed(self, row, reason):
        self.events.append(("failed", row.id))

    def finished(self, progress, error):
        self.events.append(("finished", error))


def written_ids(store):
    return [[doc["_id"] for doc in call] for call in store.bulk_calls]


def make_config(changes, **kwargs):
    return MigrationConfig("app", "all", changes, **kwargs)


class TestMigrationDriver:
    """Test the end-to-end pipeline against a scripted store."""

    @pytest.mark.asyncio
    async def test_batches_of_two(self, abc_store, migrated_change):
        completions = []
        config = make_config(migrated_change, batch_size=2, on_complete=completions.append)

        progress = await MigrationDriver(abc_store, config).run()

        assert written_ids(abc_store) == [["a", "b"], ["c"]]
        assert progress.migrated == 3
        assert progress.bulk_writes == 2
        assert progress.pages == 1
        assert completions == [None]

    @pytest.mark.asyncio
    async def test_conflict_resolved_on_retry(self, make_store, migrated_change):
        store = make_store("a", "b", "c", conflicts={"b": 1})
        config = make_config(migrated_change, batch_size=2)

        progress = await MigrationDriver(store, config).run()

        assert written_ids(store) == [["a", "b"], ["b"], ["c"]]
        assert progress.migrated == 3
        assert progress.failed == 0
        assert progress.retries == 1
        assert progress.bulk_writes == 3

    @pytest.mark.asyncio
    async def test_enrichment_not_repeated_on_retry(self, make_store, migrated_change):
        store = make_store("a", "b", "c", conflicts={"b": 1})
        fetched = []

        def fetch_keys(row):
            fetched.append(row.id)
            return f"parent-{row.id}"

        config = make_config(migrated_change, batch_size=2, fetch_keys=fetch_keys)
        await MigrationDriver(store, config).run()

        assert fetched == ["a", "b", "c"]
        assert store.multi_get_calls == [["parent-a", "parent-b"], ["parent-c"]]

    @pytest.mark.asyncio
    async def test_operation_order_is_sequential(self, make_store, migrated_change):
        store = make_store("a", "b", "c")
        config = make_config(
            migrated_change, batch_size=2, page_size=2, fetch_keys=lambda row: row.id
        )

        await MigrationDriver(store, config).run()

        assert store.log == [
            "query_view", "multi_get", "bulk_write",
            "query_view", "multi_get", "bulk_write",
        ]

    @pytest.mark.asyncio
    async def test_permanent_conflict_counts_as_failed(self, make_store, migrated_change):
        store = make_store("a", "b", conflicts={"b": 100})
        reporter = RecordingReporter()
        config = make_config(migrated_change, retry_conflicts=1)

        progress = await MigrationDriver(store, config, reporter=reporter).run()

        assert progress.migrated == 1
        assert progress.failed == 1
        assert progress.errors[0]["row_id"] == "b"
        assert ("failed", "b") in reporter.events
        assert len(store.bulk_calls) == 2

    @pytest.mark.asyncio
    async def test_reporter_events(self, abc_store, migrated_change):
        reporter = RecordingReporter()
        config = make_config(migrated_change, batch_size=2)

        await MigrationDriver(abc_store, config, reporter=reporter).run()

        assert reporter.events == [
            ("page", 1, 3),
            ("attempt", 2, 2),
            ("attempt", 1, 3),
            ("finished", None),
        ]


class TestLimitAndFilter:
    """Test row limits and source filtering."""

    @pytest.mark.asyncio
    async def test_limit_truncates_and_stops(self, make_store, migrated_change):
        store = make_store("a", "b", "c", "d", "e")
        config = make_config(migrated_change, page_size=2, limit=3)

        progress = await MigrationDriver(store, config).run()

        assert written_ids(store) == [["a", "b"], ["c"]]
        assert len(store.view_calls) == 2
        assert progress.total == 3
        assert progress.migrated == 3

    @pytest.mark.asyncio
    async def test_limit_applies_after_filter(self, make_store, migrated_change):
        store = make_store("a", "b", "c", "d")
        config = make_config(
            migrated_change, page_size=2, limit=2, source_filter=lambda row: row.id != "b"
        )

        progress = await MigrationDriver(store, config).run()

        assert written_ids(store) == [["a"], ["c"]]
        assert progress.filtered == 1
        assert progress.migrated == 2

    @pytest.mark.asyncio
    async def test_limit_zero_issues_no_query(self, abc_store, migrated_change):
        completions = []
        config = make_config(migrated_change, limit=0, on_complete=completions.append)

        progress = await MigrationDriver(abc_store, config).run()

        assert abc_store.view_calls == []
        assert progress.migrated == 0
        assert completions == [None]

    @pytest.mark.asyncio
    async def test_fully_filtered_page_continues(self, make_store, migrated_change):
        store = make_store("a", "b", "c", "d")
        config = make_config(
            migrated_change, page_size=2, source_filter=lambda row: row.id in ("c", "d")
        )

        progress = await MigrationDriver(store, config).run()

        assert written_ids(store) == [["c", "d"]]
        assert progress.pages == 1
        assert progress.filtered == 2

    @pytest.mark.asyncio
    async def test_filter_exception_excludes_row(self, abc_store, migrated_change):
        def source_filter(row):
            if row.id == "b":
                raise ValueError("unreadable")
            return True

        config = make_config(migrated_change, source_filter=source_filter)

        progress = await MigrationDriver(abc_store, config).run()

        assert written_ids(abc_store) == [["a", "c"]]
        assert progress.failed == 1
        assert progress.errors[0]["exception_type"] == "ValueError"

    @pytest.mark.asyncio
    async def test_async_filter(self, abc_store, migrated_change):
        async def source_filter(row):
            return row.id == "a"

        config = make_config(migrated_change, source_filter=source_filter)
        await MigrationDriver(abc_store, config).run()

        assert written_ids(abc_store) == [["a"]]


class TestFatalErrors:
    """Test aborting, completion callback and resuming."""

    @pytest.mark.asyncio
    async def test_changes_error_aborts(self, abc_store):
        completions = []

        def changes(row, docs):
            if row.id == "b":
                raise RuntimeError("cannot migrate")
            return {"_id": row.id}

        config = make_config(changes, batch_size=1, on_complete=completions.append)

        with pytest.raises(MigrationAbortedError) as exc_info:
            await MigrationDriver(abc_store, config).run()

        error = exc_info.value
        assert isinstance(error.cause, CallbackError)
        assert error.__cause__ is error.cause
        assert error.migrated == 1
        assert error.page == 1
        assert completions == [error]
        assert written_ids(abc_store) == [["a"]]

    @pytest.mark.asyncio
    async def test_store_error_aborts(self, abc_store, migrated_change):
        async def failing_view(design_doc, view, params=None):
            raise StoreError("query_view", "HTTP 500", status=500)

        abc_store.query_view = failing_view
        reporter = RecordingReporter()
        completions = []
        config = make_config(migrated_change, on_complete=completions.append)

        with pytest.raises(MigrationAbortedError) as exc_info:
            await MigrationDriver(abc_store, config, reporter=reporter).run()

        assert exc_info.value.cause.status == 500
        assert len(completions) == 1
        assert reporter.events == [("finished", exc_info.value)]

    @pytest.mark.asyncio
    async def test_resume_from_failed_page(self, abc_store):
        def failing(row, docs):
            if row.id == "b":
                raise RuntimeError("transient")
            return {"_id": row.id}

        with pytest.raises(MigrationAbortedError) as exc_info:
            await MigrationDriver(abc_store, make_config(failing, page_size=1)).run()

        assert exc_info.value.cursor == Cursor("b", "b")

        abc_store.bulk_calls.clear()
        progress = await MigrationDriver(
            abc_store,
            make_config(lambda row, docs: {"_id": row.id}, page_size=1),
            cursor=exc_info.value.cursor,
        ).run()

        assert written_ids(abc_store) == [["b"], ["c"]]
        assert progress.migrated == 2

    @pytest.mark.asyncio
    async def test_view_error_on_later_page_resumes_there(self, abc_store, migrated_change):
        """Test a failed view request leaves the cursor at the page it was loading."""
        query_view = abc_store.query_view
        calls = []

        async def flaky_view(design_doc, view, params=None):
            calls.append(params)
            if len(calls) == 2:
                raise StoreError("query_view", "HTTP 503", status=503)
            return await query_view(design_doc, view, params)

        abc_store.query_view = flaky_view

        with pytest.raises(MigrationAbortedError) as exc_info:
            await MigrationDriver(abc_store, make_config(migrated_change, page_size=1)).run()

        error = exc_info.value
        assert written_ids(abc_store) == [["a"]]
        assert error.cursor == Cursor("b", "b")
        assert error.page == 2
        assert error.migrated == 1

        abc_store.bulk_calls.clear()
        abc_store.query_view = query_view
        await MigrationDriver(
            abc_store, make_config(migrated_change, page_size=1), cursor=error.cursor
        ).run()

        assert written_ids(abc_store) == [["b"], ["c"]]

    @pytest.mark.asyncio
    async def test_failing_on_complete_keeps_fatal_cause(self, abc_store):
        """Test a completion hook error does not replace the fatal error."""

        def changes(row, docs):
            raise RuntimeError("cannot migrate")

        def on_complete(error):
            raise ValueError("hook broke")

        config = make_config(changes, on_complete=on_complete)

        with pytest.raises(MigrationAbortedError) as exc_info:
            await MigrationDriver(abc_store, config).run()

        assert isinstance(exc_info.value.cause, CallbackError)
        assert "hook broke" in exc_info.value.context["on_complete_error"]

    @pytest.mark.asyncio
    async def test_failing_on_complete_after_success_propagates(self, abc_store, migrated_change):
        def on_complete(error):
            raise ValueError("hook broke")

        with pytest.raises(ValueError, match="hook broke"):
            await MigrationDriver(abc_store, make_config(migrated_change, on_complete=on_complete)).run()

    @pytest.mark.asyncio
    async def test_async_on_complete(self, abc_store, migrated_change):
        """Test an async completion hook is awaited once."""
        on_complete = AsyncMock()

        await MigrationDriver(abc_store, make_config(migrated_change, on_complete=on_complete)).run()

        on_complete.assert_awaited_once_with(None)


class TestMigrateFunctions:
    """Test the convenience entry points."""

    @pytest.mark.asyncio
    async def test_migrate_with_options(self, abc_store, migrated_change):
        progress = await migrate(
            abc_store, source_design_doc="app", source_view="all", changes=migrated_change
        )
        assert progress.migrated == 3

    @pytest.mark.asyncio
    async def test_migrate_rejects_config_and_options(self, abc_store, migrated_change):
        with pytest.raises(TypeError):
            await migrate(abc_store, make_config(migrated_change), batch_size=5)

    def test_migrate_sync(self, abc_store, migrated_change):
        progress = migrate_sync(abc_store, make_config(migrated_change))
        assert progress.migrated == 3


class TestMemoryStoreMigration:
    """Test a full migration against the in-memory store."""

    @pytest.mark.asyncio
    async def test_updates_documents(self):
        store = MemoryDocumentStore(documents=[
            {"_id": "o1", "type": "order", "items": [2, 3]},
            {"_id": "o2", "type": "order", "items": [5]},
            {"_id": "u1", "type": "user"},
        ])
        store.define_view("orders", "all", lambda doc: [(doc["_id"], None)] if doc.get("type") == "order" else [])

        def add_total(row, docs):
            return {**row.doc, "total": sum(row.doc["items"])}

        progress = await migrate(
            store,
            source_design_doc="orders",
            source_view="all",
            source_params={"include_docs": True},
            changes=add_total,
        )

        assert progress.migrated == 2
        assert store.get("o1")["total"] == 5
        assert store.get("o1")["_rev"].startswith("2-")
        assert "total" not in store.get("u1")

    @pytest.mark.asyncio
    async def test_stale_revision_fails_after_retries(self):
        store = MemoryDocumentStore(documents=[{"_id": "a", "n": 1}])
        store.define_view("app", "by_n", field_view("n"))

        progress = await migrate(
            store,
            source_design_doc="app",
            source_view="by_n",
            changes=lambda row, docs: {"_id": row.id, "n": 2},
            retry_conflicts=1,
        )

        assert progress.failed == 1
        assert progress.migrated == 0
        assert store.get("a")["n"] == 1

    @pytest.mark.asyncio
    async def test_related_documents(self):
        store = MemoryDocumentStore(documents=[
            {"_id": "c1", "name": "Ada"},
            {"_id": "o1", "customer": "c1"},
            {"_id": "o2", "customer": "c9"},
        ])
        store.define_view("app", "by_customer", field_view("customer"))

        def changes(row, docs):
            customer = docs[0]
            return {**row.doc, "customer_name": customer["name"] if customer else None}

        await migrate(
            store,
            source_design_doc="app",
            source_view="by_customer",
            source_params={"include_docs": True},
            fetch_keys=lambda row: row.key,
            changes=changes,
        )

        assert store.get("o1")["customer_name"] == "Ada"
        assert store.get("o2")["customer_name"] is None
