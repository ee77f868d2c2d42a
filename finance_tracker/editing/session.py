"""
Edit Sessions

The edit-in-place workflow: open an editor on a record, change fields
on a draft, then commit the draft as a partial update or discard it.

    IDLE --start_edit--> EDITING --commit--> COMMITTING --ok--> IDLE
                           |  ^                   |
                           |  +------failed-------+
                           +--cancel--> IDLE

DESIGN DECISION: One generic state machine serves both Expense and
Income. The kind decides which fields are editable and which store
receives the update; nothing else differs.

Rules:
- At most one draft per session. Starting an edit while editing
  replaces the draft.
- Mutating a draft never touches the store.
- Cancel discards the draft without any network call.
- A failed commit returns to EDITING with the draft intact.
"""

from typing import Any, Generic, Optional, TypeVar

import structlog

from finance_tracker.models.dashboard import Draft, EditState
from finance_tracker.models.records import MoneyRecord
from finance_tracker.stores import MoneyRecordStore


logger = structlog.get_logger(__name__)

R = TypeVar("R", bound=MoneyRecord)


class EditSessionStateError(Exception):
    """A command was issued in a state that does not allow it."""

    def __init__(self, command: str, state: EditState):
        self.command = command
        self.state = state
        super().__init__(f"Cannot {command} while {state.value}")


class EditSession(Generic[R]):
    """Edit session for one record kind, bound to that kind's store."""

    def __init__(self, store: MoneyRecordStore[R]):
        self._store = store
        self.kind = store.kind
        self._state = EditState.IDLE
        self._draft: Optional[Draft] = None
        self.last_error: Optional[Exception] = None

    @property
    def store(self) -> MoneyRecordStore[R]:
        return self._store

    @property
    def state(self) -> EditState:
        return self._state

    @property
    def draft(self) -> Optional[Draft]:
        """A copy of the live draft, or None when idle."""
        return self._draft.model_copy(deep=True) if self._draft else None

    def _require(self, command: str, *allowed: EditState) -> None:
        if self._state not in allowed:
            raise EditSessionStateError(command, self._state)

    def _check_kind(self, record: MoneyRecord) -> None:
        if record.kind is not self.kind:
            raise ValueError(
                f"{self.kind.value} session cannot handle a {record.kind.value} record"
            )

    def start_edit(self, record: R) -> Draft:
        """Open a draft on `record`, replacing any draft already open."""
        self._require("start edit", EditState.IDLE, EditState.EDITING)
        self._check_kind(record)

        if self._draft is not None:
            logger.info(
                "edit_draft_replaced",
                kind=self.kind.value,
                previous_record_id=self._draft.record_id,
                record_id=record.id,
            )

        self._draft = Draft(
            record_id=record.id,
            kind=self.kind,
            values=record.editable_values(),
        )
        self._state = EditState.EDITING
        self.last_error = None
        return self.draft

    def mutate(self, field: str, value: Any) -> None:
        """Set one field on the draft."""
        self._require("mutate", EditState.EDITING)
        if field not in self.kind.editable_fields:
            raise ValueError(f"Field {field!r} is not editable on a {self.kind.value}")

        self._draft.values[field] = value
        self._draft.touched.add(field)

    async def commit(self) -> Optional[R]:
        """
        Send the draft as a partial update.

        On success the store has refreshed, the draft is cleared and
        the session is idle. On failure the session is back in EDITING
        with the draft intact and `last_error` set; the error is raised.
        """
        self._require("commit", EditState.EDITING)

        draft = self._draft
        payload = draft.update_payload()
        self._state = EditState.COMMITTING

        committed = False
        try:
            updated = await self._store.update(draft.record_id, payload)
            committed = True
        except Exception as e:
            self.last_error = e
            logger.warning(
                "edit_commit_failed",
                kind=self.kind.value,
                record_id=draft.record_id,
                error=str(e),
            )
            raise
        finally:
            if not committed:
                self._state = EditState.EDITING

        self._draft = None
        self._state = EditState.IDLE
        self.last_error = None
        return updated

    def cancel(self) -> None:
        """Discard the draft. Issues no network call."""
        self._require("cancel", EditState.EDITING)
        self._draft = None
        self._state = EditState.IDLE
        self.last_error = None

    async def delete(self, record: R, confirmed: bool) -> bool:
        """
        Delete `record` once the caller has confirmed.

        Returns False, without any network call, when not confirmed.
        Errors propagate and leave the session as it was. Deleting the
        record under edit discards its draft.
        """
        self._check_kind(record)
        if not confirmed:
            return False

        await self._store.remove(record.id)

        if (
            self._state is EditState.EDITING
            and self._draft is not None
            and self._draft.record_id == record.id
        ):
            self._draft = None
            self._state = EditState.IDLE
            self.last_error = None
        return True
