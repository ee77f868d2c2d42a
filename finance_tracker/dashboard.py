"""
Dashboard Controller

Ties the stores, the period filter, the aggregator and the edit
sessions together, and exposes the state and commands the view binds
to.

    NO_USER --select_user--> LOADING --both fetches ok--> READY
                                 |
                                 +--any fetch failed--> ERROR

DESIGN DECISION: There is exactly one recomputation path. Every command
that changes cached data or the period ends in `_refresh_view`, which
filters the cached records into the period, recomputes the totals from
scratch and notifies subscribers. Nothing else touches the displayed
totals.

The active user is explicit context: it is passed to the constructor
or chosen with `select_user`, never read from global state.

Backend failures never escape a command. They come back as an
unsuccessful CommandResult and are recorded in the audit trail.
"""

import asyncio
from datetime import date
from typing import Any, Callable, Optional, Union

import structlog
from pydantic import ValidationError

from finance_tracker.audit import AuditLogger, configure_log_level, create_correlation_id
from finance_tracker.config import get_settings
from finance_tracker.editing import EditSession
from finance_tracker.models.audit import AuditEventBuilder, AuditEventType
from finance_tracker.models.dashboard import (
    Aggregate,
    CommandResult,
    DashboardSnapshot,
    DashboardState,
    Draft,
    EditState,
    Period,
)
from finance_tracker.models.records import (
    Expense,
    Income,
    MalformedRecordError,
    MoneyRecord,
    NEW_RECORD_MODELS,
    NewExpense,
    NewIncome,
    NewUser,
    RecordKind,
    User,
    UserUpdate,
    UserWithIncomes,
)
from finance_tracker.reporting import filter_by_month, period_for, recompute, shift_month
from finance_tracker.services.backend import (
    BackendError,
    FinanceBackend,
    InMemoryAuditStorage,
    InMemoryBackend,
    RestBackend,
)
from finance_tracker.stores import ExpenseStore, IncomeStore, UserStore


logger = structlog.get_logger(__name__)

Listener = Callable[[DashboardSnapshot], None]


class DashboardController:
    """
    Month dashboard for one active user.

    Args:
        backend: Remote store of users and records
        user_id: Active user to load on `start()`, if already known
        reference_date: Any date in the month to report (default: today)
        audit_logger: Audit trail; defaults to a local-only logger
    """

    def __init__(
        self,
        backend: FinanceBackend,
        user_id: Optional[str] = None,
        reference_date: Optional[date] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._backend = backend
        self._audit = audit_logger or AuditLogger()

        self.user_store = UserStore(backend)
        self.expense_store = ExpenseStore(backend)
        self.income_store = IncomeStore(backend)
        self.expense_session: EditSession[Expense] = EditSession(self.expense_store)
        self.income_session: EditSession[Income] = EditSession(self.income_store)

        self._initial_user_id = user_id
        self._active_user_id: Optional[str] = None
        self._user: Optional[UserWithIncomes] = None
        self._state = DashboardState.NO_USER
        self._load_generation = 0

        self._reference_date = reference_date or date.today()
        self._period = period_for(self._reference_date)
        self._filtered_expenses: list[Expense] = []
        self._filtered_incomes: list[Income] = []
        self._aggregate = Aggregate()

        self._listeners: list[Listener] = []
        self._reported_malformed: set[tuple[str, str, str]] = set()
        self.last_error: Optional[str] = None

    # =========================================================================
    # Exposed state
    # =========================================================================

    @property
    def state(self) -> DashboardState:
        return self._state

    @property
    def current_user(self) -> Optional[UserWithIncomes]:
        return self._user

    @property
    def active_user_id(self) -> Optional[str]:
        return self._active_user_id

    @property
    def users(self) -> list[User]:
        return self.user_store.list()

    @property
    def filtered_expenses(self) -> list[Expense]:
        return list(self._filtered_expenses)

    @property
    def filtered_incomes(self) -> list[Income]:
        return list(self._filtered_incomes)

    @property
    def aggregate(self) -> Aggregate:
        return self._aggregate

    @property
    def period(self) -> Period:
        return self._period

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit

    def session(self, kind: RecordKind) -> EditSession:
        if kind is RecordKind.EXPENSE:
            return self.expense_session
        return self.income_session

    def snapshot(self) -> DashboardSnapshot:
        return DashboardSnapshot(
            state=self._state,
            current_user=self._user,
            period=self._period,
            filtered_expenses=self.filtered_expenses,
            filtered_incomes=self.filtered_incomes,
            aggregate=self._aggregate,
            expense_edit_state=self.expense_session.state,
            income_edit_state=self.income_session.state,
            last_error=self.last_error,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Call `listener` with a fresh snapshot after every recompute.

        Returns a function that unsubscribes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("dashboard_listener_failed")

    # =========================================================================
    # Recompute
    # =========================================================================

    async def _refresh_view(self) -> None:
        """Re-filter cached records, recompute totals, notify subscribers."""
        malformed: list[tuple[MoneyRecord, MalformedRecordError]] = []

        def collect(record: MoneyRecord, error: MalformedRecordError) -> None:
            malformed.append((record, error))

        # The embedded incomes follow the income cache, not the initial fetch
        if (
            self._user is not None
            and self.income_store.loaded
            and self.income_store.owner_id == self._user.id
        ):
            self._user = self._user.model_copy(update={"incomes": self.income_store.list()})

        self._period = period_for(self._reference_date)
        self._filtered_expenses = filter_by_month(
            self._reference_date, self.expense_store.list(), collect
        )
        self._filtered_incomes = filter_by_month(
            self._reference_date, self.income_store.list(), collect
        )
        self._aggregate = recompute(self._filtered_expenses, self._filtered_incomes, collect)
        self._notify()

        for record, error in malformed:
            key = (record.kind.value, record.id, error.field)
            if key in self._reported_malformed:
                continue
            self._reported_malformed.add(key)
            await self._audit.log_malformed_record(
                entity_type=record.kind.value,
                entity_id=record.id,
                field=error.field,
                value=error.value,
            )

    def _fail(self, error: Exception) -> CommandResult:
        self.last_error = str(error)
        return CommandResult.failed(getattr(error, "kind", "error"), str(error))

    # =========================================================================
    # Loading
    # =========================================================================

    async def start(self) -> CommandResult:
        """Load the user passed to the constructor, if any."""
        if self._initial_user_id is None:
            await self._refresh_view()
            return CommandResult.ok()
        return await self.select_user(self._initial_user_id)

    async def select_user(self, user_id: str) -> CommandResult:
        """
        Make `user_id` the active user and load its data.

        The user (with embedded incomes) and the expenses are fetched
        concurrently. If the user fetch fails the expenses are dropped
        too and the dashboard goes to ERROR. A newer selection
        supersedes this one; its results are then discarded.
        """
        self._load_generation += 1
        generation = self._load_generation
        correlation_id = create_correlation_id()

        self._discard_drafts()
        self.expense_store.clear()
        self.income_store.clear()
        self._reported_malformed.clear()
        self._user = None
        self._active_user_id = user_id
        self._state = DashboardState.LOADING
        self.last_error = None
        await self._refresh_view()
        await self._audit.log_user_selected(user_id, correlation_id)

        user_task = asyncio.create_task(self.user_store.fetch(user_id))
        expense_task = asyncio.create_task(self.expense_store.refresh(user_id))

        try:
            user = await user_task
        except BackendError as e:
            expense_task.cancel()
            await asyncio.gather(expense_task, return_exceptions=True)
            return await self._load_failed(generation, user_id, e, correlation_id)

        try:
            await expense_task
        except BackendError as e:
            return await self._load_failed(generation, user_id, e, correlation_id)

        if generation != self._load_generation:
            return self._superseded(user_id)

        self._user = user
        self.income_store.load(user_id, user.incomes)
        self._state = DashboardState.READY
        await self._audit.log(AuditEventBuilder.user_data_loaded(
            user_id=user_id,
            expense_count=len(self.expense_store),
            income_count=len(self.income_store),
            correlation_id=correlation_id,
        ))
        await self._refresh_view()
        return CommandResult.ok()

    async def _load_failed(
        self,
        generation: int,
        user_id: str,
        error: BackendError,
        correlation_id,
    ) -> CommandResult:
        if generation != self._load_generation:
            return self._superseded(user_id)

        self.expense_store.clear()
        self.income_store.clear()
        self._user = None
        self._state = DashboardState.ERROR
        result = self._fail(error)
        await self._audit.log(AuditEventBuilder.user_data_load_failed(
            user_id=user_id,
            error_kind=error.kind,
            error_message=str(error),
            correlation_id=correlation_id,
        ))
        await self._refresh_view()
        return result

    def _superseded(self, user_id: str) -> CommandResult:
        logger.info("user_load_superseded", user_id=user_id)
        return CommandResult.failed("superseded", f"Loading {user_id} was replaced by a newer selection")

    async def reload(self) -> CommandResult:
        """Load the active user's data again, e.g. after an ERROR."""
        if self._active_user_id is None:
            return CommandResult.failed("no_user", "No user selected")
        return await self.select_user(self._active_user_id)

    def _discard_drafts(self) -> None:
        for session in (self.expense_session, self.income_session):
            if session.state is EditState.EDITING:
                session.cancel()

    def _reset_to_no_user(self) -> None:
        self._load_generation += 1
        self._discard_drafts()
        self.expense_store.clear()
        self.income_store.clear()
        self._reported_malformed.clear()
        self._user = None
        self._active_user_id = None
        self._state = DashboardState.NO_USER

    # =========================================================================
    # Period
    # =========================================================================

    async def change_month(self, delta: int) -> Period:
        """
        Move the reporting month by `delta` months.

        Recomputes from the cached records only; no network call.
        """
        self._reference_date = shift_month(self._reference_date, delta)
        await self._refresh_view()
        await self._audit.log(AuditEventBuilder.month_changed(
            start=self._period.start.isoformat(),
            delta=delta,
        ))
        return self._period

    # =========================================================================
    # Edit sessions
    # =========================================================================

    async def start_edit(self, kind: RecordKind, record: MoneyRecord) -> Draft:
        """Open a draft on `record`, replacing any open draft of that kind."""
        draft = self.session(kind).start_edit(record)
        await self._audit.log(AuditEventBuilder.edit_event(
            AuditEventType.EDIT_STARTED, kind.value, record.id,
        ))
        self._notify()
        return draft

    def mutate_draft(self, kind: RecordKind, field: str, value: Any) -> None:
        self.session(kind).mutate(field, value)

    async def commit_edit(self, kind: RecordKind) -> CommandResult:
        """
        Commit the open draft of `kind` as a partial update.

        On failure the draft stays open for another try or a cancel.
        """
        session = self.session(kind)
        draft = session.draft
        correlation_id = create_correlation_id()
        fields = sorted(draft.update_payload()) if draft else []

        try:
            await session.commit()
        except BackendError as e:
            result = self._fail(e)
            await self._audit.log(AuditEventBuilder.edit_event(
                AuditEventType.EDIT_COMMIT_FAILED,
                kind.value,
                draft.record_id,
                fields=fields,
                error_kind=e.kind,
                error_message=str(e),
                correlation_id=correlation_id,
            ))
            await self._refresh_view()
            return result

        self.last_error = None
        await self._audit.log(AuditEventBuilder.edit_event(
            AuditEventType.EDIT_COMMITTED,
            kind.value,
            draft.record_id,
            fields=fields,
            correlation_id=correlation_id,
        ))
        await self._refresh_view()
        return CommandResult.ok()

    async def cancel_edit(self, kind: RecordKind) -> None:
        """Discard the open draft of `kind`. No network call."""
        session = self.session(kind)
        draft = session.draft
        session.cancel()
        await self._audit.log(AuditEventBuilder.edit_event(
            AuditEventType.EDIT_CANCELLED, kind.value, draft.record_id,
        ))
        self._notify()

    # =========================================================================
    # Record commands
    # =========================================================================

    async def delete_record(
        self,
        kind: RecordKind,
        record: MoneyRecord,
        confirmed: bool,
    ) -> CommandResult:
        """Delete an expense or income, only once the user has confirmed."""
        if not confirmed:
            await self._audit.log(AuditEventBuilder.delete_declined(kind.value, record.id))
            return CommandResult.declined()

        correlation_id = create_correlation_id()
        try:
            await self.session(kind).delete(record, confirmed=True)
        except BackendError as e:
            await self._audit.log_mutation_failed(
                "delete", kind.value, record.id, e, correlation_id,
            )
            result = self._fail(e)
            await self._refresh_view()
            return result

        self.last_error = None
        await self._audit.log_record_mutated(
            AuditEventType.RECORD_DELETED, kind.value, record.id, correlation_id,
        )
        await self._refresh_view()
        return CommandResult.ok()

    async def add_expense(self, payload: Union[dict, NewExpense]) -> CommandResult:
        return await self._add_record(RecordKind.EXPENSE, payload)

    async def add_income(self, payload: Union[dict, NewIncome]) -> CommandResult:
        return await self._add_record(RecordKind.INCOME, payload)

    async def _add_record(self, kind: RecordKind, payload: Any) -> CommandResult:
        if self._active_user_id is None:
            return CommandResult.failed("no_user", "Select a user before adding records")

        data = payload.model_dump() if hasattr(payload, "model_dump") else dict(payload)
        data["user_id"] = self._active_user_id
        try:
            new_record = NEW_RECORD_MODELS[kind].model_validate(data)
        except ValidationError as e:
            self.last_error = str(e)
            return CommandResult.failed("validation", str(e))

        correlation_id = create_correlation_id()
        store = self.expense_store if kind is RecordKind.EXPENSE else self.income_store
        try:
            created = await store.create(new_record.to_payload())
        except BackendError as e:
            await self._audit.log_mutation_failed("create", kind.value, None, e, correlation_id)
            result = self._fail(e)
            await self._refresh_view()
            return result

        self.last_error = None
        await self._audit.log_record_mutated(
            AuditEventType.RECORD_CREATED,
            kind.value,
            created.id if created else None,
            correlation_id,
            details={"amount": new_record.amount, "date": new_record.date},
        )
        await self._refresh_view()
        return CommandResult.ok()

    # =========================================================================
    # User administration
    # =========================================================================

    async def load_users(self) -> CommandResult:
        try:
            await self.user_store.refresh()
        except BackendError as e:
            return self._fail(e)
        return CommandResult.ok()

    async def create_user(self, payload: Union[dict, NewUser]) -> CommandResult:
        try:
            new_user = NewUser.model_validate(
                payload.model_dump() if isinstance(payload, NewUser) else payload
            )
        except ValidationError as e:
            self.last_error = str(e)
            return CommandResult.failed("validation", str(e))

        try:
            created = await self.user_store.create(new_user.to_payload())
        except BackendError as e:
            await self._audit.log_mutation_failed("create", "user", None, e)
            return self._fail(e)

        await self._audit.log_record_mutated(
            AuditEventType.USER_CREATED, "user", created.id if created else None,
        )
        return CommandResult.ok()

    async def update_user(
        self,
        user_id: str,
        payload: Union[dict, UserUpdate],
    ) -> CommandResult:
        """Partially update a user. Blank passwords are never sent."""
        try:
            update = (
                payload if isinstance(payload, UserUpdate)
                else UserUpdate.model_validate(payload)
            )
        except ValidationError as e:
            self.last_error = str(e)
            return CommandResult.failed("validation", str(e))

        changes = update.to_payload()
        try:
            await self.user_store.update(user_id, changes)
        except BackendError as e:
            await self._audit.log_mutation_failed("update", "user", user_id, e)
            return self._fail(e)

        await self._audit.log_record_mutated(
            AuditEventType.USER_UPDATED, "user", user_id,
            details={"fields": sorted(k for k in changes if k != "password")},
        )

        refreshed = self.user_store.get(user_id)
        if self._user is not None and user_id == self._active_user_id and refreshed:
            self._user = UserWithIncomes(
                **refreshed.model_dump(),
                password=refreshed.password,
                incomes=self.income_store.list(),
            )
            self._notify()
        return CommandResult.ok()

    async def delete_user(self, user_id: str, confirmed: bool) -> CommandResult:
        """
        Delete a user once confirmed.

        Deleting a user that is not (or no longer) known fails with
        not_found. Deleting the active user returns to NO_USER.
        """
        if not confirmed:
            await self._audit.log(AuditEventBuilder.delete_declined("user", user_id))
            return CommandResult.declined()

        if not self.user_store.loaded:
            result = await self.load_users()
            if not result.success:
                return result

        try:
            await self.user_store.remove(user_id)
        except BackendError as e:
            await self._audit.log_mutation_failed("delete", "user", user_id, e)
            return self._fail(e)

        await self._audit.log_record_mutated(AuditEventType.USER_DELETED, "user", user_id)
        if user_id == self._active_user_id:
            self._reset_to_no_user()
            await self._refresh_view()
        return CommandResult.ok()


def create_dashboard(
    use_rest: bool = True,
    user_id: Optional[str] = None,
    reference_date: Optional[date] = None,
) -> DashboardController:
    """
    Factory function to create a dashboard with its collaborators.

    Args:
        use_rest: Talk to the configured REST backend. Set to False to
                  run against an empty in-memory backend.
        user_id: Active user supplied by the routing layer
        reference_date: Initial reporting date

    Returns:
        A controller; call `await controller.start()` to load data.
    """
    settings = get_settings()
    configure_log_level(settings.app.log_level)

    backend: FinanceBackend
    if use_rest:
        try:
            backend = RestBackend(settings.backend)
        except ValidationError as e:
            # Backend not configured - continue without it
            logger.warning("backend_not_configured", error=str(e))
            backend = InMemoryBackend()
    else:
        backend = InMemoryBackend()

    audit_logger = AuditLogger(InMemoryAuditStorage())
    return DashboardController(
        backend=backend,
        user_id=user_id,
        reference_date=reference_date,
        audit_logger=audit_logger,
    )
