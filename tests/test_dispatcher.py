"""
Dispatcher Tests

Operations run against FakeDatabase; assertions cover both the response
envelope and the SQL that reached storage (or that nothing did).
"""

from datetime import datetime
from decimal import Decimal

import pytest

from catalog.capabilities import CapabilitySet
from catalog.entities import AICapable, EntityDefinition, MethodSpec, RelationshipDef
from query.dispatcher import Dispatcher

from tests.conftest import FakeDatabase, make_registry


class ReportActions(AICapable):
    actions = {"publish": MethodSpec("ai_publish", ["id"])}

    async def search(self, repository, query, fields, limit):
        return [{"id": 1, "title": f"custom:{query}"}]

    async def ai_publish(self, repository, payload):
        return {"published": payload.get("id")}


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def dispatcher(db, resolver):
    report = EntityDefinition(name="Report", table="reports", fillable=["title"], extension=ReportActions())
    return Dispatcher(db, make_registry(report), resolver)


class TestAuthorization:

    @pytest.mark.asyncio
    async def test_unknown_entity(self, dispatcher, db):
        result = await dispatcher.dispatch("Ghost", "list")

        assert result == {"success": False, "error": "ENTITY_NOT_FOUND", "message": "Model not found: Ghost"}
        db.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_excluded_entity_is_not_found(self, dispatcher):
        result = await dispatcher.dispatch("User", "list")
        assert result["error"] == "ENTITY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_disabled_operation_never_touches_storage(self, dispatcher, db):
        result = await dispatcher.dispatch("Task", "create", {"title": "Write tests"})

        assert result["success"] is False
        assert result["error"] == "OPERATION_NOT_PERMITTED"
        db.fetchrow.assert_not_awaited()
        db.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unsupported_operation(self, dispatcher):
        result = await dispatcher.dispatch("Project", "explode")
        assert result["error"] == "INVALID_OPERATION"

    @pytest.mark.asyncio
    async def test_display_name_is_case_insensitive(self, dispatcher):
        result = await dispatcher.dispatch("project", "list")
        assert result["success"] is True


class TestList:

    @pytest.mark.asyncio
    async def test_page_envelope(self, dispatcher, db):
        db.fetch.return_value = [{
            "id": 1,
            "name": "Apollo",
            "budget": Decimal("10.50"),
            "secret_note": "classified",
            "created_at": datetime(2024, 1, 1, 9, 0),
        }]
        db.fetchval.return_value = 3

        result = await dispatcher.dispatch("Project", "list", {"limit": 2})

        assert result == {
            "success": True,
            "data": [{"id": 1, "name": "Apollo", "budget": 10.5, "created_at": "2024-01-01T09:00:00"}],
            "pagination": {"limit": 2, "offset": 0, "total": 3, "has_more": True},
        }
        sql, *params = db.fetch.await_args.args
        assert sql.startswith('SELECT * FROM "projects" WHERE "deleted_at" IS NULL')
        assert params == [2, 0]

    @pytest.mark.asyncio
    async def test_last_page_has_no_more(self, dispatcher, db):
        db.fetchval.return_value = 3
        result = await dispatcher.dispatch("Project", "list", {"limit": 2, "offset": 2})
        assert result["pagination"]["has_more"] is False

    @pytest.mark.asyncio
    async def test_limit_and_offset_are_clamped(self, dispatcher, db):
        result = await dispatcher.dispatch("Project", "list", {"limit": 500, "offset": -5})
        assert result["pagination"]["limit"] == 100
        assert result["pagination"]["offset"] == 0

        result = await dispatcher.dispatch("Project", "list", {"limit": 0})
        assert result["pagination"]["limit"] == 1

    @pytest.mark.asyncio
    async def test_non_integer_limit(self, dispatcher, db):
        result = await dispatcher.dispatch("Project", "list", {"limit": "lots"})
        assert result["error"] == "VALIDATION_ERROR"
        db.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_filters_reach_the_query(self, dispatcher, db):
        await dispatcher.dispatch("Project", "list", {
            "filters": '{"status": "open", "budget": {"operator": "greater_than", "value": 100}}',
            "order_by": "budget",
            "order_direction": "desc",
        })

        sql, *params = db.fetch.await_args.args
        assert '"status" = $1 AND "budget" > $2' in sql
        assert 'ORDER BY "budget" DESC, "id" ASC' in sql
        assert params[:2] == ["open", Decimal("100")]
        count_sql, *count_params = db.fetchval.await_args.args
        assert count_params == ["open", Decimal("100")]

    @pytest.mark.asyncio
    async def test_malformed_filter(self, dispatcher, db):
        result = await dispatcher.dispatch("Project", "list", {"filters": {"budget": {"operator": "between", "value": 5}}})
        assert result["error"] == "VALIDATION_ERROR"
        db.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ordering_arguments_must_be_strings(self, dispatcher, db):
        result = await dispatcher.dispatch("Project", "list", {"order_by": "name", "order_direction": 1})
        assert result["error"] == "VALIDATION_ERROR"

        result = await dispatcher.dispatch("Project", "list", {"order_by": ["name"]})
        assert result["error"] == "VALIDATION_ERROR"

        result = await dispatcher.dispatch("Project", "list", {"order_direction": "sideways"})
        assert result["error"] == "VALIDATION_ERROR"
        db.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_string_filter_field(self, dispatcher, db):
        result = await dispatcher.dispatch("Project", "list", {
            "filters": [{"field": ["name"], "operator": "equals", "value": "x"}],
        })

        assert result["success"] is False
        assert result["error"] == "VALIDATION_ERROR"
        db.fetch.assert_not_awaited()


class TestEagerLoading:

    @pytest.mark.asyncio
    async def test_has_many(self, dispatcher, db):
        db.fetch.side_effect = [
            [{"id": 1, "name": "A"}, {"id": 2, "name": "B"}],
            [{"id": 10, "title": "t1", "project_id": 1}, {"id": 11, "title": "t2", "project_id": 1}],
        ]
        db.fetchval.return_value = 2

        result = await dispatcher.dispatch("Project", "list", {"with": ["tasks"]})

        assert [t["id"] for t in result["data"][0]["tasks"]] == [10, 11]
        assert result["data"][1]["tasks"] == []
        sql, ids = db.fetch.await_args.args
        assert sql == 'SELECT * FROM "tasks" WHERE "project_id" = ANY($1)'
        assert sorted(ids) == [1, 2]

    @pytest.mark.asyncio
    async def test_belongs_to_strips_hidden_fields(self, dispatcher, db):
        db.fetchrow.return_value = {"id": 1, "name": "A", "owner_id": 5}
        db.fetch.return_value = [{"id": 5, "name": "Olive", "email": "olive@example.com", "api_token": "t0k3n"}]

        result = await dispatcher.dispatch("Project", "show", {"id": "1", "with": "owner"})

        assert result["data"]["owner"] == {"id": 5, "name": "Olive", "email": "olive@example.com"}
        assert db.fetch.await_args.args == ('SELECT * FROM "owners" WHERE "id" = ANY($1)', [5])
        # Path ids are coerced to the key type
        assert db.fetchrow.await_args.args[1] == 1

    @pytest.mark.asyncio
    async def test_belongs_to_many(self, dispatcher, db):
        db.fetch.side_effect = [
            [{"id": 1, "name": "A"}],
            [{"id": 7, "label": "urgent", "_pivot_parent": 1}],
        ]
        db.fetchval.return_value = 1

        result = await dispatcher.dispatch("Project", "list", {"with": '["tags"]'})

        assert result["data"][0]["tags"] == [{"id": 7, "label": "urgent"}]

    @pytest.mark.asyncio
    async def test_morph_and_unknown_includes_are_skipped(self, dispatcher, db):
        db.fetch.return_value = [{"id": 1, "name": "A"}]
        db.fetchval.return_value = 1

        result = await dispatcher.dispatch("Project", "list", {"with": "attachable,ghost"})

        assert result["data"] == [{"id": 1, "name": "A"}]
        assert db.fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_unexposed_target_is_not_loaded(self, db, resolver):
        document = EntityDefinition(
            name="Document", table="documents", fillable=["title", "user_id"],
            relationships={"user": RelationshipDef("BelongsTo", "User")},
        )
        dispatcher = Dispatcher(db, make_registry(document), resolver)
        db.fetch.return_value = [{"id": 1, "title": "Plan", "user_id": 4}]
        db.fetchval.return_value = 1

        result = await dispatcher.dispatch("Document", "list", {"with": ["user"]})

        assert result["data"] == [{"id": 1, "title": "Plan", "user_id": 4}]
        assert db.fetch.await_count == 1


class TestSearch:

    @pytest.mark.asyncio
    async def test_requires_query(self, dispatcher, db):
        result = await dispatcher.dispatch("Project", "search", {"query": "   "})

        assert result == {
            "success": False,
            "error": "VALIDATION_ERROR",
            "message": "Search query parameter is required",
        }
        db.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_defaults_to_editable_fields(self, dispatcher, db):
        db.fetch.return_value = [{"id": 1, "name": "Acme rollout"}]

        result = await dispatcher.dispatch("Project", "search", {"query": "acme"})

        assert result["success"] is True
        assert result["query"] == "acme"
        assert result["fields_searched"] == ["name", "budget", "status", "owner_id"]
        assert result["total"] == 1
        sql, *params = db.fetch.await_args.args
        assert params == ["%acme%", 10]

    @pytest.mark.asyncio
    async def test_hidden_fields_cannot_be_searched(self, dispatcher, db):
        result = await dispatcher.dispatch("Project", "search", {"query": "x", "fields": ["name", "secret_note"]})
        assert result["fields_searched"] == ["name"]

        result = await dispatcher.dispatch("Project", "search", {"query": "x", "fields": ["secret_note"]})
        assert result["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_limit_is_clamped(self, dispatcher, db):
        await dispatcher.dispatch("Project", "search", {"query": "x", "limit": 999})
        assert db.fetch.await_args.args[-1] == 50

    @pytest.mark.asyncio
    async def test_extension_search(self, dispatcher, db):
        result = await dispatcher.dispatch("Report", "search", {"query": "q3"})

        assert result["data"] == [{"id": 1, "title": "custom:q3"}]
        db.fetch.assert_not_awaited()


class TestWrites:

    @pytest.mark.asyncio
    async def test_create_projects_onto_fillable_fields(self, dispatcher, db):
        db.fetchrow.return_value = {"id": 9, "name": "Apollo", "budget": Decimal("5.00"), "secret_note": None}

        result = await dispatcher.dispatch("Project", "create", {"name": "Apollo", "budget": "5", "bogus": "x"})

        assert result == {
            "success": True,
            "data": {"id": 9, "name": "Apollo", "budget": 5.0},
            "message": "Record created successfully",
        }
        sql, *params = db.fetchrow.await_args.args
        assert sql.startswith('INSERT INTO "projects" ("name", "budget", "created_at", "updated_at")')
        assert params == ["Apollo", Decimal("5")]

    @pytest.mark.asyncio
    async def test_create_accepts_data_wrapper(self, dispatcher, db):
        db.fetchrow.return_value = {"id": 9, "name": "Apollo"}
        await dispatcher.dispatch("Project", "create", {"data": {"name": "Apollo"}})
        assert db.fetchrow.await_args.args[1:] == ("Apollo",)

    @pytest.mark.asyncio
    async def test_create_rejects_bad_values(self, dispatcher, db):
        result = await dispatcher.dispatch("Project", "create", {"name": "X", "owner_id": "someone"})
        assert result["error"] == "VALIDATION_ERROR"
        db.fetchrow.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_requires_id(self, dispatcher, db):
        result = await dispatcher.dispatch("Project", "update", {"name": "X"})
        assert result["message"] == "Record ID is required for update operation"
        db.fetchrow.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_missing_record(self, dispatcher, db):
        db.fetchrow.return_value = None

        result = await dispatcher.dispatch("Project", "update", {"id": 4, "name": "X"})

        assert result == {"success": False, "error": "RECORD_NOT_FOUND", "message": "Project record 4 not found"}
        assert db.fetchrow.await_count == 1

    @pytest.mark.asyncio
    async def test_update(self, dispatcher, db):
        db.fetchrow.side_effect = [{"id": 4, "name": "Old"}, {"id": 4, "name": "New"}]

        result = await dispatcher.dispatch("Project", "update", {"id": "4", "data": {"name": "New"}})

        assert result["data"] == {"id": 4, "name": "New"}
        assert result["message"] == "Record updated successfully"
        sql, *params = db.fetchrow.await_args.args
        assert sql.startswith('UPDATE "projects" SET "name" = $1')
        assert params == ["New", 4]

    @pytest.mark.asyncio
    async def test_delete(self, dispatcher, db):
        db.fetchrow.side_effect = [{"id": 4}, {"id": 4}]

        result = await dispatcher.dispatch("Project", "delete", {"id": 4})

        assert result == {"success": True, "message": "Record deleted successfully"}
        assert db.fetchrow.await_args.args[0].startswith('UPDATE "projects" SET "deleted_at" = NOW()')

    @pytest.mark.asyncio
    async def test_delete_race_reports_not_found(self, dispatcher, db):
        db.fetchrow.side_effect = [{"id": 4}, None]
        result = await dispatcher.dispatch("Project", "delete", {"id": 4})
        assert result["error"] == "RECORD_NOT_FOUND"


class TestCustomActionsAndFailures:

    @pytest.mark.asyncio
    async def test_custom_action(self, dispatcher):
        result = await dispatcher.dispatch("Report", "publish", {"id": 3})

        assert result == {"success": True, "data": {"published": 3}, "message": "Action 'publish' completed"}

    @pytest.mark.asyncio
    async def test_custom_action_of_other_entity_is_invalid(self, dispatcher):
        result = await dispatcher.dispatch("Project", "publish", {"id": 3})
        assert result["error"] == "INVALID_OPERATION"

    @pytest.mark.asyncio
    async def test_granted_action_without_extension_is_invalid(self, dispatcher, db):
        capabilities = CapabilitySet(
            flags={"can_publish": True},
            custom_actions={"publish": MethodSpec("ai_publish")},
        )

        result = await dispatcher.dispatch("Project", "publish", {"id": 3}, capabilities=capabilities)

        assert result["success"] is False
        assert result["error"] == "INVALID_OPERATION"
        db.fetchrow.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_storage_failure(self, dispatcher, db):
        db.fetch.side_effect = OSError("connection reset by peer")

        result = await dispatcher.dispatch("Project", "list")

        assert result == {"success": False, "error": "STORAGE_ERROR", "message": "connection reset by peer"}
