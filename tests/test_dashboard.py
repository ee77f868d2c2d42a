"""
Tests for the dashboard controller.

Integration tests: controller, stores, edit sessions and the period
filter against the seeded in-memory backend.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from finance_tracker.dashboard import DashboardController, create_dashboard
from finance_tracker.models.audit import AuditEventType
from finance_tracker.models.dashboard import DashboardState, EditState
from finance_tracker.models.records import RecordKind
from finance_tracker.services.backend import InMemoryBackend, NetworkFailure

from conftest import MARCH_15


def totals(controller):
    aggregate = controller.aggregate
    return (aggregate.total_income, aggregate.total_expenses, aggregate.balance)


def event_types(audit_storage):
    return [event.event_type for event in audit_storage.events]


class TestLoading:
    """Tests for selecting a user and loading its data."""

    @pytest.mark.asyncio
    async def test_initial_state(self, controller):
        assert controller.state is DashboardState.NO_USER
        assert controller.current_user is None
        assert totals(controller) == (0, 0, 0)
        assert controller.period.start == date(2024, 3, 1)

    @pytest.mark.asyncio
    async def test_march_totals(self, controller):
        """Test the worked example for 15 March 2024."""
        result = await controller.select_user("u1")

        assert result.success is True
        assert controller.state is DashboardState.READY
        assert controller.current_user.id == "u1"
        assert [e.id for e in controller.filtered_expenses] == ["e1"]
        assert [i.id for i in controller.filtered_incomes] == ["i1"]
        assert totals(controller) == (
            Decimal("1000.00"), Decimal("50.00"), Decimal("950.00"),
        )

    @pytest.mark.asyncio
    async def test_user_and_expenses_fetched_concurrently(self, controller, seeded_backend):
        await controller.select_user("u1")
        names = [name for name, _ in seeded_backend.calls]
        assert names == ["fetch_user", "fetch_expenses_by_user"]

    @pytest.mark.asyncio
    async def test_start_loads_constructor_user(self, seeded_backend):
        controller = DashboardController(seeded_backend, user_id="u1", reference_date=MARCH_15)
        await controller.start()
        assert controller.state is DashboardState.READY

    @pytest.mark.asyncio
    async def test_start_without_user(self, controller):
        result = await controller.start()
        assert result.success is True
        assert controller.state is DashboardState.NO_USER

    @pytest.mark.asyncio
    async def test_user_fetch_failure_drops_everything(self, controller, seeded_backend):
        seeded_backend.fail_next("fetch_user", NetworkFailure("connection refused"))

        result = await controller.select_user("u1")

        assert result.success is False
        assert result.error_kind == "network"
        assert controller.state is DashboardState.ERROR
        assert controller.last_error == "connection refused"
        assert controller.expense_store.list() == []
        assert controller.income_store.list() == []
        assert totals(controller) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_expense_fetch_failure_is_an_error(self, controller, seeded_backend):
        seeded_backend.fail_next("fetch_expenses_by_user", NetworkFailure("timed out"))

        result = await controller.select_user("u1")

        assert result.error_kind == "network"
        assert controller.state is DashboardState.ERROR
        assert controller.current_user is None

    @pytest.mark.asyncio
    async def test_unknown_user(self, controller):
        result = await controller.select_user("nobody")
        assert result.error_kind == "not_found"
        assert controller.state is DashboardState.ERROR

    @pytest.mark.asyncio
    async def test_reload_after_error(self, controller, seeded_backend):
        seeded_backend.fail_next("fetch_user", NetworkFailure("down"))
        await controller.select_user("u1")

        result = await controller.reload()

        assert result.success is True
        assert controller.state is DashboardState.READY
        assert controller.last_error is None

    @pytest.mark.asyncio
    async def test_newer_selection_supersedes_older(self, controller, seeded_backend):
        """Test that a slow load for u1 cannot overwrite u2's data."""
        seeded_backend.seed_user("u2", first_name="Grace", last_name="Hopper", email="grace@example.com")
        seeded_backend.seed_record(
            RecordKind.EXPENSE, "u2", "g1", item_name="Compiler", amount="7.00", date="2024-03-02",
        )
        gate = seeded_backend.hold_next("fetch_user")

        first = asyncio.create_task(controller.select_user("u1"))
        while seeded_backend.call_count("fetch_user") == 0:
            await asyncio.sleep(0)

        second = await controller.select_user("u2")
        gate.set()
        first_result = await first

        assert second.success is True
        assert first_result.success is False
        assert first_result.error_kind == "superseded"
        assert controller.current_user.id == "u2"
        assert controller.state is DashboardState.READY
        assert [e.id for e in controller.expense_store.list()] == ["g1"]
        assert controller.income_store.list() == []

    @pytest.mark.asyncio
    async def test_malformed_user_is_a_load_error(self, controller, seeded_backend):
        """Test that a user record that does not parse ends the load in ERROR."""
        seeded_backend.seed_user("u2", first_name=None)
        seeded_backend.seed_record(
            RecordKind.EXPENSE, "u2", "x1", amount="300.00", date="2024-03-12",
        )

        result = await controller.select_user("u2")

        assert result.success is False
        assert result.error_kind == "network"
        assert controller.state is DashboardState.ERROR
        assert controller.current_user is None
        assert controller.expense_store.list() == []
        assert controller.income_store.list() == []
        assert totals(controller) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_load_is_audited(self, controller, audit_storage):
        await controller.select_user("u1")

        selected, loaded = [
            event for event in audit_storage.events
            if event.event_type in (AuditEventType.USER_SELECTED, AuditEventType.USER_DATA_LOADED)
        ]
        assert selected.correlation_id == loaded.correlation_id
        assert loaded.details == {"expense_count": 2, "income_count": 1}


class TestChangeMonth:
    """Tests for month navigation."""

    @pytest.mark.asyncio
    async def test_previous_month_is_empty(self, controller, seeded_backend):
        await controller.select_user("u1")
        calls_before = seeded_backend.call_count()

        period = await controller.change_month(-1)

        assert period.reference_date == date(2024, 2, 1)
        assert totals(controller) == (0, 0, 0)
        assert controller.filtered_expenses == []
        assert seeded_backend.call_count() == calls_before

    @pytest.mark.asyncio
    async def test_next_month(self, controller):
        await controller.select_user("u1")

        await controller.change_month(1)

        assert [e.id for e in controller.filtered_expenses] == ["e2"]
        assert totals(controller) == (Decimal("0"), Decimal("20.00"), Decimal("-20.00"))

    @pytest.mark.asyncio
    async def test_round_trip_returns_to_march(self, controller):
        await controller.select_user("u1")
        await controller.change_month(-1)
        await controller.change_month(1)

        assert controller.period.start == date(2024, 3, 1)
        assert totals(controller)[2] == Decimal("950.00")


class TestRecordCommands:
    """Tests for adding, editing and deleting records."""

    @pytest.mark.asyncio
    async def test_add_expense_recomputes(self, controller, seeded_backend):
        await controller.select_user("u1")

        result = await controller.add_expense({
            "item_name": "Coffee", "amount": "4.50", "date": "2024-03-20",
        })

        assert result.success is True
        assert totals(controller)[1] == Decimal("54.50")
        assert seeded_backend.calls[-1][0] == "fetch_expenses_by_user"

    @pytest.mark.asyncio
    async def test_add_income_outside_period(self, controller):
        await controller.select_user("u1")

        await controller.add_income({"source": "Bonus", "amount": "300", "date": "2024-04-02"})

        assert len(controller.income_store) == 2
        assert totals(controller)[0] == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_add_rejected_client_side(self, controller, seeded_backend):
        await controller.select_user("u1")

        result = await controller.add_expense({"item_name": "Coffee", "amount": "abc", "date": "2024-03-20"})

        assert result.error_kind == "validation"
        assert seeded_backend.call_count("create_expense") == 0

    @pytest.mark.asyncio
    async def test_add_rejected_by_server(self, controller):
        await controller.select_user("u1")

        result = await controller.add_expense({"item_name": "Refund", "amount": "-5", "date": "2024-03-20"})

        assert result.error_kind == "validation"
        assert "greater than zero" in result.error_message
        assert totals(controller)[1] == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_add_without_user(self, controller):
        result = await controller.add_expense({"item_name": "Coffee", "amount": "1", "date": "2024-03-20"})
        assert result.error_kind == "no_user"

    @pytest.mark.asyncio
    async def test_commit_edit_updates_totals(self, controller):
        await controller.select_user("u1")
        record = controller.filtered_expenses[0]

        await controller.start_edit(RecordKind.EXPENSE, record)
        controller.mutate_draft(RecordKind.EXPENSE, "amount", "75.00")
        assert totals(controller)[1] == Decimal("50.00")

        result = await controller.commit_edit(RecordKind.EXPENSE)

        assert result.success is True
        assert controller.expense_session.state is EditState.IDLE
        assert totals(controller)[1] == Decimal("75.00")

    @pytest.mark.asyncio
    async def test_commit_finishing_after_user_switch(self, controller, seeded_backend):
        """Test that a commit for u1 completing after selecting u2 keeps u2's data."""
        seeded_backend.seed_user("u2", first_name="Grace", last_name="Hopper", email="grace@example.com")
        seeded_backend.seed_record(
            RecordKind.EXPENSE, "u2", "x1", item_name="Compiler", amount="300.00", date="2024-03-12",
        )
        await controller.select_user("u1")
        await controller.start_edit(RecordKind.EXPENSE, controller.filtered_expenses[0])
        controller.mutate_draft(RecordKind.EXPENSE, "amount", "75.00")
        gate = seeded_backend.hold_next("update_expense")

        commit = asyncio.create_task(controller.commit_edit(RecordKind.EXPENSE))
        while seeded_backend.call_count("update_expense") == 0:
            await asyncio.sleep(0)

        selected = await controller.select_user("u2")
        gate.set()
        await commit

        assert selected.success is True
        assert controller.current_user.id == "u2"
        assert [e.id for e in controller.expense_store.list()] == ["x1"]
        assert [e.id for e in controller.filtered_expenses] == ["x1"]
        assert controller.aggregate.total_expenses == Decimal("300.00")

    @pytest.mark.asyncio
    async def test_current_user_incomes_follow_income_commands(self, controller):
        await controller.select_user("u1")

        await controller.add_income({"source": "Bonus", "amount": "300", "date": "2024-03-20"})
        assert [i.id for i in controller.current_user.incomes] == [
            i.id for i in controller.income_store.list()
        ]
        assert len(controller.current_user.incomes) == 2

        await controller.delete_record(
            RecordKind.INCOME, controller.income_store.get("i1"), confirmed=True,
        )
        assert [i.source for i in controller.current_user.incomes] == ["Bonus"]
        assert controller.snapshot().current_user.incomes == controller.income_store.list()

    @pytest.mark.asyncio
    async def test_failed_commit_reports_error(self, controller, audit_storage):
        await controller.select_user("u1")
        await controller.start_edit(RecordKind.INCOME, controller.filtered_incomes[0])
        controller.mutate_draft(RecordKind.INCOME, "amount", "0")

        result = await controller.commit_edit(RecordKind.INCOME)

        assert result.error_kind == "validation"
        assert controller.snapshot().income_edit_state is EditState.EDITING
        assert AuditEventType.EDIT_COMMIT_FAILED in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_edits_are_independent_per_kind(self, controller):
        await controller.select_user("u1")
        await controller.start_edit(RecordKind.EXPENSE, controller.filtered_expenses[0])
        await controller.start_edit(RecordKind.INCOME, controller.filtered_incomes[0])

        await controller.cancel_edit(RecordKind.INCOME)

        assert controller.expense_session.state is EditState.EDITING
        assert controller.income_session.state is EditState.IDLE

    @pytest.mark.asyncio
    async def test_unconfirmed_delete(self, controller, seeded_backend):
        await controller.select_user("u1")
        calls_before = seeded_backend.call_count()

        result = await controller.delete_record(
            RecordKind.EXPENSE, controller.filtered_expenses[0], confirmed=False,
        )

        assert result.success is True
        assert result.performed is False
        assert seeded_backend.call_count() == calls_before

    @pytest.mark.asyncio
    async def test_confirmed_delete(self, controller):
        await controller.select_user("u1")

        result = await controller.delete_record(
            RecordKind.EXPENSE, controller.filtered_expenses[0], confirmed=True,
        )

        assert result.performed is True
        assert totals(controller) == (Decimal("1000.00"), Decimal("0"), Decimal("1000.00"))

    @pytest.mark.asyncio
    async def test_malformed_record_reported_once(self, controller, seeded_backend, audit_storage):
        seeded_backend.seed_record(
            RecordKind.EXPENSE, "u1", "bad", item_name="Mystery", amount="n/a", date="2024-03-12",
        )
        await controller.select_user("u1")
        await controller.change_month(0)

        assert totals(controller)[1] == Decimal("50.00")
        assert [e.id for e in controller.filtered_expenses] == ["e1", "bad"]
        assert event_types(audit_storage).count(AuditEventType.MALFORMED_RECORD_SKIPPED) == 1


class TestUserCommands:
    """Tests for user administration."""

    @pytest.mark.asyncio
    async def test_create_user(self, controller):
        result = await controller.create_user({
            "first_name": "Grace", "last_name": "Hopper",
            "email": "grace@example.com", "password": "cobol59",
        })

        assert result.success is True
        assert {u.email for u in controller.users} == {"ada@example.com", "grace@example.com"}

    @pytest.mark.asyncio
    async def test_create_user_rejected_client_side(self, controller, seeded_backend):
        result = await controller.create_user({
            "first_name": "G", "last_name": "Hopper",
            "email": "grace@example.com", "password": "cobol59",
        })
        assert result.error_kind == "validation"
        assert seeded_backend.call_count("create_user") == 0

    @pytest.mark.asyncio
    async def test_update_active_user(self, controller, seeded_backend):
        await controller.select_user("u1")

        result = await controller.update_user("u1", {"first_name": "Augusta", "password": ""})

        assert result.success is True
        assert controller.current_user.first_name == "Augusta"
        _, (_, partial) = [c for c in seeded_backend.calls if c[0] == "update_user"][0]
        assert partial == {"first_name": "Augusta"}

    @pytest.mark.asyncio
    async def test_unconfirmed_user_delete(self, controller, seeded_backend):
        result = await controller.delete_user("u1", confirmed=False)
        assert result.performed is False
        assert seeded_backend.call_count() == 0

    @pytest.mark.asyncio
    async def test_deleting_active_user_resets_dashboard(self, controller):
        await controller.select_user("u1")

        result = await controller.delete_user("u1", confirmed=True)

        assert result.success is True
        assert controller.state is DashboardState.NO_USER
        assert controller.current_user is None
        assert totals(controller) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_deleting_twice_is_not_found(self, controller, seeded_backend):
        await controller.delete_user("u1", confirmed=True)

        result = await controller.delete_user("u1", confirmed=True)

        assert result.error_kind == "not_found"
        assert seeded_backend.call_count("delete_user") == 1


class TestSubscribers:
    """Tests for snapshot notifications."""

    @pytest.mark.asyncio
    async def test_listener_sees_loading_then_ready(self, controller):
        states = []
        controller.subscribe(lambda snapshot: states.append(snapshot.state))

        await controller.select_user("u1")

        assert states[0] is DashboardState.LOADING
        assert states[-1] is DashboardState.READY

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_controller(self, controller):
        def broken(snapshot):
            raise RuntimeError("render failed")

        controller.subscribe(broken)
        result = await controller.select_user("u1")

        assert result.success is True
        assert controller.state is DashboardState.READY

    @pytest.mark.asyncio
    async def test_unsubscribe(self, controller):
        seen = []
        unsubscribe = controller.subscribe(seen.append)
        unsubscribe()

        await controller.change_month(1)

        assert seen == []


class TestFactory:
    """Tests for create_dashboard."""

    def test_in_memory_dashboard(self):
        controller = create_dashboard(use_rest=False, reference_date=MARCH_15)
        assert isinstance(controller.user_store._backend, InMemoryBackend)
        assert controller.state is DashboardState.NO_USER
        assert controller.audit_logger.storage is not None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
