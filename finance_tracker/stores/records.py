"""
Record Stores

Client-side caches of Users, Expenses and Incomes for the active user.

DESIGN DECISION: Refresh-then-recompute. After every successful create,
update or delete the store re-fetches its whole collection instead of
patching the cache locally. One extra round trip buys the guarantee
that the cache equals server state after every successful mutation.

On failure the cache is left untouched and the typed backend error is
re-raised. Nothing here retries.

Refreshes are ticketed: each one takes a monotonically increasing
number, and a response is applied only if no newer refresh has been
applied since (and the store has not been cleared or reloaded in the
meantime). A slow, stale response can never overwrite newer data.
"""

from __future__ import annotations

from typing import Any, Generic, Iterable, Optional, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from finance_tracker.models.records import (
    Expense,
    Income,
    MoneyRecord,
    RecordKind,
    RECORD_MODELS,
    User,
    UserWithIncomes,
)
from finance_tracker.services.backend import FinanceBackend, NetworkFailure, NotFoundError


logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=BaseModel)
R = TypeVar("R", bound=MoneyRecord)


class RecordStore(Generic[T]):
    """
    Cache of one entity type, refreshed from the backend.

    Subclasses supply the backend calls (`_fetch`, `_create`, `_update`,
    `_delete`) and the model used to parse records.
    """

    entity_type: str = "record"
    # Collections scoped to one owner cannot be fetched without it
    requires_owner: bool = False

    def __init__(self, backend: FinanceBackend, model: type[T]):
        self._backend = backend
        self._model = model
        self._records: list[T] = []
        self._owner_id: Optional[str] = None
        self._loaded = False
        self._stale = False
        self._issued = 0
        self._applied = 0
        # Bumped on clear() and load(): the cache was reset from outside
        self._generation = 0
        self.skipped: list[dict] = []

    # -------------------------------------------------------------------------
    # Cache access
    # -------------------------------------------------------------------------

    def list(self) -> list[T]:
        """Current cache, in the order last received from the backend."""
        return list(self._records)

    def get(self, record_id: str) -> Optional[T]:
        for record in self._records:
            if getattr(record, "id") == record_id:
                return record
        return None

    def __contains__(self, record_id: object) -> bool:
        return any(getattr(r, "id") == record_id for r in self._records)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def owner_id(self) -> Optional[str]:
        return self._owner_id

    @property
    def loaded(self) -> bool:
        """True once the cache has been filled from an authoritative source."""
        return self._loaded

    @property
    def stale(self) -> bool:
        """True when a mutation succeeded but the refresh after it failed."""
        return self._stale

    def clear(self) -> None:
        """Drop the cache and invalidate every in-flight refresh."""
        self._records = []
        self._owner_id = None
        self._loaded = False
        self._stale = False
        self._applied = self._issued
        self._generation += 1
        self.skipped = []

    def load(self, owner_id: Optional[str], records: Iterable[Any]) -> list[T]:
        """
        Replace the cache with a collection fetched elsewhere.

        In-flight refreshes issued before this call are discarded.
        """
        self._applied = self._issued
        self._generation += 1
        self._replace(owner_id, records)
        return self.list()

    def _replace(self, owner_id: Optional[str], records: Iterable[Any]) -> None:
        self._records = self._parse(records)
        self._owner_id = owner_id
        self._loaded = True
        self._stale = False

    def _parse(self, raw_records: Iterable[Any]) -> list[T]:
        parsed = []
        self.skipped = []
        for raw in raw_records:
            if isinstance(raw, self._model):
                parsed.append(raw)
                continue
            try:
                parsed.append(self._model.model_validate(raw))
            except ValidationError as e:
                record_id = raw.get("id") if isinstance(raw, dict) else None
                logger.warning(
                    "malformed_record_skipped",
                    entity_type=self.entity_type,
                    record_id=record_id,
                    errors=e.error_count(),
                )
                self.skipped.append(raw if isinstance(raw, dict) else {"value": raw})
        return parsed

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def refresh(self, owner_id: Optional[str] = None) -> list[T]:
        """
        Fetch the authoritative collection and replace the cache.

        Raises:
            ValueError: If the store is owner-scoped and no owner is given
            BackendError: On failure; the cache is left untouched
        """
        if self.requires_owner and owner_id is None:
            raise ValueError(f"Cannot refresh {self.entity_type}s without an owner")

        self._issued += 1
        ticket = self._issued

        raw = await self._fetch(owner_id)

        if ticket <= self._applied:
            logger.info(
                "stale_refresh_discarded",
                entity_type=self.entity_type,
                ticket=ticket,
                applied=self._applied,
            )
            return self.list()

        self._applied = ticket
        self._replace(owner_id, raw)
        logger.debug(
            "store_refreshed",
            entity_type=self.entity_type,
            owner_id=owner_id,
            count=len(self._records),
        )
        return self.list()

    async def create(self, payload: dict) -> Optional[T]:
        """Create a record, then refresh the owning collection."""
        owner_id, generation = self._owner_for(payload), self._generation
        raw = await self._create(payload)
        await self._refresh_after_mutation(owner_id, generation)
        return self._parse_one(raw)

    async def update(self, record_id: str, partial: dict) -> Optional[T]:
        """Apply a partial update, then refresh the owning collection."""
        owner_id, generation = self._owner_for(partial), self._generation
        raw = await self._update(record_id, partial)
        await self._refresh_after_mutation(owner_id, generation)
        return self._parse_one(raw)

    async def remove(self, record_id: str) -> None:
        """Delete a record, then refresh the owning collection."""
        owner_id, generation = self._owner_for({}), self._generation
        await self._delete(record_id)
        await self._refresh_after_mutation(owner_id, generation)

    async def _refresh_after_mutation(self, owner_id: Optional[str], generation: int) -> None:
        """
        Refresh the collection the mutation was issued against.

        Skipped when the cache was cleared or reloaded while the mutation
        was in flight: it no longer holds that collection.
        """
        if generation != self._generation:
            logger.info(
                "refresh_after_mutation_skipped",
                entity_type=self.entity_type,
                owner_id=owner_id,
                reason="store_reset",
            )
            return
        if self.requires_owner and owner_id is None:
            logger.info(
                "refresh_after_mutation_skipped",
                entity_type=self.entity_type,
                reason="no_owner",
            )
            return

        try:
            await self.refresh(owner_id)
        except Exception:
            self._stale = True
            logger.warning(
                "refresh_after_mutation_failed",
                entity_type=self.entity_type,
                owner_id=owner_id,
            )
            raise

    def _parse_one(self, raw: Any) -> Optional[T]:
        if raw is None:
            return None
        try:
            return self._model.model_validate(raw)
        except ValidationError as e:
            logger.warning(
                "malformed_record_skipped",
                entity_type=self.entity_type,
                record_id=raw.get("id") if isinstance(raw, dict) else None,
                errors=e.error_count(),
            )
            return None

    def _owner_for(self, payload: dict) -> Optional[str]:
        return self._owner_id

    # -------------------------------------------------------------------------
    # Backend calls
    # -------------------------------------------------------------------------

    async def _fetch(self, owner_id: Optional[str]) -> list[dict]:
        raise NotImplementedError

    async def _create(self, payload: dict) -> dict:
        raise NotImplementedError

    async def _update(self, record_id: str, partial: dict) -> dict:
        raise NotImplementedError

    async def _delete(self, record_id: str) -> None:
        raise NotImplementedError


class UserStore(RecordStore[User]):
    """The global collection of users. Its owner is always None."""

    entity_type = "user"

    def __init__(self, backend: FinanceBackend):
        super().__init__(backend, User)

    async def fetch(self, user_id: str) -> UserWithIncomes:
        """
        Fetch one user with its current incomes embedded.

        Malformed embedded incomes are skipped, not fatal.

        Raises:
            NetworkFailure: If the user itself does not parse
            BackendError: On any other backend failure
        """
        raw = await self._backend.fetch_user(user_id)
        if not isinstance(raw, dict):
            logger.warning("malformed_record_skipped", entity_type="user", record_id=user_id)
            raise NetworkFailure(f"Malformed user payload for {user_id}")

        raw = dict(raw)
        raw_incomes = raw.pop("incomes", None) or []
        try:
            user = User.model_validate(raw)
        except ValidationError as e:
            logger.warning(
                "malformed_record_skipped",
                entity_type="user",
                record_id=user_id,
                errors=e.error_count(),
            )
            raise NetworkFailure(f"Malformed user payload for {user_id}") from e

        incomes = []
        for item in raw_incomes:
            try:
                incomes.append(Income.model_validate(item))
            except ValidationError:
                logger.warning(
                    "malformed_record_skipped",
                    entity_type="income",
                    record_id=item.get("id") if isinstance(item, dict) else None,
                )
        return UserWithIncomes(
            **user.model_dump(),
            password=user.password,
            incomes=incomes,
        )

    async def remove(self, record_id: str) -> None:
        """
        Delete a user.

        Raises:
            NotFoundError: If the id is not cached (already deleted or
                never known), without contacting the backend
        """
        if record_id not in self:
            raise NotFoundError(f"User not found: {record_id}", status_code=404)
        await super().remove(record_id)

    async def _fetch(self, owner_id: Optional[str]) -> list[dict]:
        return await self._backend.fetch_users()

    async def _create(self, payload: dict) -> dict:
        return await self._backend.create_user(payload)

    async def _update(self, record_id: str, partial: dict) -> dict:
        return await self._backend.update_user(record_id, partial)

    async def _delete(self, record_id: str) -> None:
        await self._backend.delete_user(record_id)


class MoneyRecordStore(RecordStore[R]):
    """
    Expenses or incomes of the active user.

    The backend calls are chosen by kind, so both kinds share every
    line of cache logic.
    """

    requires_owner = True

    def __init__(self, backend: FinanceBackend, kind: RecordKind):
        super().__init__(backend, RECORD_MODELS[kind])
        self.kind = kind
        self.entity_type = kind.value

    def _owner_for(self, payload: dict) -> Optional[str]:
        return self._owner_id if self._owner_id is not None else payload.get("user_id")

    async def _fetch(self, owner_id: Optional[str]) -> list[dict]:
        fetch = getattr(self._backend, f"fetch_{self.kind.value}s_by_user")
        return await fetch(owner_id)

    async def _create(self, payload: dict) -> dict:
        return await getattr(self._backend, f"create_{self.kind.value}")(payload)

    async def _update(self, record_id: str, partial: dict) -> dict:
        return await getattr(self._backend, f"update_{self.kind.value}")(record_id, partial)

    async def _delete(self, record_id: str) -> None:
        await getattr(self._backend, f"delete_{self.kind.value}")(record_id)


class ExpenseStore(MoneyRecordStore[Expense]):
    def __init__(self, backend: FinanceBackend):
        super().__init__(backend, RecordKind.EXPENSE)


class IncomeStore(MoneyRecordStore[Income]):
    def __init__(self, backend: FinanceBackend):
        super().__init__(backend, RecordKind.INCOME)
