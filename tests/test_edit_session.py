"""Tests for the edit-in-place workflow."""

import pytest

from finance_tracker.editing import EditSession, EditSessionStateError
from finance_tracker.models.dashboard import EditState
from finance_tracker.models.records import RecordKind
from finance_tracker.services.backend import NetworkFailure, ValidationFailure
from finance_tracker.stores import ExpenseStore, IncomeStore


async def loaded_expense_session(backend) -> EditSession:
    store = ExpenseStore(backend)
    await store.refresh("u1")
    return EditSession(store)


class TestDrafts:
    """Tests for opening and changing drafts."""

    @pytest.mark.asyncio
    async def test_start_edit_copies_editable_fields(self, seeded_backend):
        session = await loaded_expense_session(seeded_backend)
        record = session.store.get("e1")

        draft = session.start_edit(record)

        assert session.state is EditState.EDITING
        assert draft.record_id == "e1"
        assert draft.values == {
            "item_name": "Groceries",
            "amount": "50.00",
            "date": "2024-03-05",
            "description": None,
        }

    @pytest.mark.asyncio
    async def test_second_start_replaces_draft(self, seeded_backend):
        """Test that at most one draft exists per kind."""
        session = await loaded_expense_session(seeded_backend)
        session.start_edit(session.store.get("e1"))
        session.mutate("amount", "99")

        session.start_edit(session.store.get("e2"))

        assert session.draft.record_id == "e2"
        assert session.draft.values["amount"] == "20.00"

    @pytest.mark.asyncio
    async def test_mutate_never_touches_store(self, seeded_backend):
        session = await loaded_expense_session(seeded_backend)
        session.start_edit(session.store.get("e1"))
        session.mutate("amount", "75.00")

        assert session.store.get("e1").amount == "50.00"
        assert session.draft.values["amount"] == "75.00"

    @pytest.mark.asyncio
    async def test_mutate_rejects_unknown_field(self, seeded_backend):
        session = await loaded_expense_session(seeded_backend)
        session.start_edit(session.store.get("e1"))
        with pytest.raises(ValueError):
            session.mutate("source", "Salary")

    def test_mutate_requires_open_draft(self, backend):
        session = EditSession(ExpenseStore(backend))
        with pytest.raises(EditSessionStateError):
            session.mutate("amount", "1")

    @pytest.mark.asyncio
    async def test_kind_mismatch(self, seeded_backend):
        incomes = IncomeStore(seeded_backend)
        await incomes.refresh("u1")
        session = await loaded_expense_session(seeded_backend)
        with pytest.raises(ValueError):
            session.start_edit(incomes.get("i1"))


class TestCancel:
    """Tests for cancel."""

    @pytest.mark.asyncio
    async def test_cancel_makes_no_call_and_keeps_cache(self, seeded_backend):
        session = await loaded_expense_session(seeded_backend)
        before = session.store.list()
        calls_before = seeded_backend.call_count()

        session.start_edit(session.store.get("e1"))
        session.mutate("amount", "1.00")
        session.cancel()

        assert session.state is EditState.IDLE
        assert session.draft is None
        assert seeded_backend.call_count() == calls_before
        assert session.store.list() == before

    def test_cancel_when_idle(self, backend):
        session = EditSession(ExpenseStore(backend))
        with pytest.raises(EditSessionStateError):
            session.cancel()


class TestCommit:
    """Tests for commit."""

    @pytest.mark.asyncio
    async def test_commit_sends_partial_update(self, seeded_backend):
        session = await loaded_expense_session(seeded_backend)
        session.start_edit(session.store.get("e1"))
        session.mutate("amount", "75.00")

        await session.commit()

        assert session.state is EditState.IDLE
        assert session.draft is None
        assert session.store.get("e1").amount == "75.00"

        name, (record_id, partial) = [
            call for call in seeded_backend.calls if call[0] == "update_expense"
        ][0]
        assert record_id == "e1"
        assert partial == {"item_name": "Groceries", "amount": "75.00", "date": "2024-03-05"}

    @pytest.mark.asyncio
    async def test_commit_can_clear_description(self, seeded_backend):
        seeded_backend.seed_record(
            RecordKind.EXPENSE,
            "u1", "e3", amount="3.00", date="2024-03-09", description="note",
        )
        session = await loaded_expense_session(seeded_backend)
        session.start_edit(session.store.get("e3"))
        session.mutate("description", None)

        await session.commit()

        assert session.store.get("e3").description is None

    @pytest.mark.asyncio
    async def test_rejected_commit_keeps_draft(self, seeded_backend):
        session = await loaded_expense_session(seeded_backend)
        session.start_edit(session.store.get("e1"))
        session.mutate("amount", "-1")

        with pytest.raises(ValidationFailure):
            await session.commit()

        assert session.state is EditState.EDITING
        assert session.draft.values["amount"] == "-1"
        assert isinstance(session.last_error, ValidationFailure)
        assert session.store.get("e1").amount == "50.00"

    @pytest.mark.asyncio
    async def test_retry_after_network_failure(self, seeded_backend):
        session = await loaded_expense_session(seeded_backend)
        session.start_edit(session.store.get("e1"))
        session.mutate("item_name", "Market")
        seeded_backend.fail_next("update_expense", NetworkFailure("connection reset"))

        with pytest.raises(NetworkFailure):
            await session.commit()
        await session.commit()

        assert session.state is EditState.IDLE
        assert session.store.get("e1").item_name == "Market"

    @pytest.mark.asyncio
    async def test_commit_when_idle(self, seeded_backend):
        session = await loaded_expense_session(seeded_backend)
        with pytest.raises(EditSessionStateError):
            await session.commit()


class TestDelete:
    """Tests for delete through a session."""

    @pytest.mark.asyncio
    async def test_unconfirmed_delete_makes_no_call(self, seeded_backend):
        session = await loaded_expense_session(seeded_backend)
        calls_before = seeded_backend.call_count()

        deleted = await session.delete(session.store.get("e1"), confirmed=False)

        assert deleted is False
        assert seeded_backend.call_count() == calls_before
        assert "e1" in session.store

    @pytest.mark.asyncio
    async def test_deleting_record_under_edit_discards_draft(self, seeded_backend):
        session = await loaded_expense_session(seeded_backend)
        record = session.store.get("e1")
        session.start_edit(record)

        assert await session.delete(record, confirmed=True) is True

        assert session.state is EditState.IDLE
        assert session.draft is None
        assert "e1" not in session.store

    @pytest.mark.asyncio
    async def test_deleting_other_record_keeps_draft(self, seeded_backend):
        session = await loaded_expense_session(seeded_backend)
        session.start_edit(session.store.get("e1"))

        await session.delete(session.store.get("e2"), confirmed=True)

        assert session.state is EditState.EDITING
        assert session.draft.record_id == "e1"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
