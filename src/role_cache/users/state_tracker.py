"""Detects role, year and name changes of a user between requests.

The last observed state of each user is persisted as ``user_state_{email}``.
On every request the freshly observed state is compared with it:

- no stored state: first sighting, not a change
- ``role``, ``year`` or ``name`` differ: one FieldChange per field
- ``session_id`` is never compared

A role change is appended to the bounded history ``role_history_{email}``
(newest first). Then the user's cached record and the role sheets of the old
and new role are removed from their own namespace, and the ``user*`` family
is reported to the invalidator. That escalates to the role-sheet caches of
every other user.

The observed state is stored after every comparison.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from uuid import uuid4

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..cache.dependencies import CacheFamily, DependencyGraphInvalidator, InvalidationReport
from ..cache.master_version import MasterVersionStore
from ..cache.scoped_cache import ScopedCacheStore
from ..constants import AVAILABLE_ROLES
from ..database.property_store import PropertyStore
from ..exceptions import PropertyStoreError
from .staff import normalize_email

logger = logging.getLogger(__name__)

USER_STATE_PREFIX = "user_state_"
ROLE_HISTORY_PREFIX = "role_history_"

TRACKED_FIELDS: tuple[str, ...] = ("role", "year", "name")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ObservedState(BaseModel):
    """What the current request says about the user."""

    role: str
    year: int
    name: str = ""
    session_id: str = "unknown"


class UserState(BaseModel):
    """Persisted snapshot of a user's last observed state."""

    email: str
    role: str
    year: int
    name: str = ""
    session_id: str = "unknown"
    recorded_at: datetime
    cache_version: str | None = None


class FieldChange(BaseModel):
    field: str
    old_value: Any
    new_value: Any


class RoleChangeEntry(BaseModel):
    """One entry of the role change history."""

    timestamp: datetime
    old_role: str | None
    new_role: str
    change_id: str = Field(default_factory=lambda: f"role_change_{uuid4().hex[:12]}")
    cache_version: str | None = None


class StateChangeResult(BaseModel):
    """Outcome of UserStateTracker.detect_change."""

    has_changed: bool = False
    is_new_user: bool = False
    changes: list[FieldChange] = Field(default_factory=list)
    stored_state: UserState | None = None
    role_changed: bool = False
    invalidation: dict[str, Any] | None = None
    error: str | None = None

    def change_for(self, field_name: str) -> FieldChange | None:
        for change in self.changes:
            if change.field == field_name:
                return change
        return None


_HISTORY_ADAPTER = TypeAdapter(list[RoleChangeEntry])


class UserStateTracker:
    """Compares, records and reacts to per-user state changes."""

    def __init__(
        self,
        property_store: PropertyStore,
        scoped_cache: ScopedCacheStore,
        invalidator: DependencyGraphInvalidator,
        version_store: MasterVersionStore,
        history_limit: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.property_store = property_store
        self.scoped_cache = scoped_cache
        self.invalidator = invalidator
        self.version_store = version_store
        self.history_limit = history_limit
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

    # =========================================================================
    # Stored state
    # =========================================================================

    def get_stored_state(self, email: str) -> UserState | None:
        """Load the persisted state of ``email``.

        Raises:
            PropertyStoreError: If the store fails or the value is corrupt
        """
        key = f"{USER_STATE_PREFIX}{normalize_email(email)}"
        raw = self.property_store.read(key)
        if raw is None:
            return None

        try:
            return UserState.model_validate_json(raw)
        except PydanticValidationError as e:
            raise PropertyStoreError(
                message="Stored user state is corrupt",
                details={"key": key},
                original_exception=e,
            ) from e

    def store_state(self, email: str, observed: ObservedState) -> UserState | None:
        """Persist ``observed`` as the latest state of ``email``.

        Returns:
            The stored UserState, or None if the write failed
        """
        email = normalize_email(email)
        state = UserState(
            email=email,
            role=observed.role,
            year=observed.year,
            name=observed.name,
            session_id=observed.session_id,
            recorded_at=self.clock(),
            cache_version=self.version_store.current(),
        )
        try:
            self.property_store.write(f"{USER_STATE_PREFIX}{email}", state.model_dump_json())
        except PropertyStoreError as e:
            self.logger.error(f"Failed to store state for {email}: {e}")
            return None
        return state

    # =========================================================================
    # Role history
    # =========================================================================

    def get_role_change_history(self, email: str) -> list[RoleChangeEntry]:
        """Return the role history of ``email``, newest first (empty on error)."""
        key = f"{ROLE_HISTORY_PREFIX}{normalize_email(email)}"
        try:
            raw = self.property_store.read(key)
            if raw is None:
                return []
            return _HISTORY_ADAPTER.validate_json(raw)
        except (PropertyStoreError, PydanticValidationError) as e:
            self.logger.warning(f"Cannot read role history for {email}: {e}")
            return []

    def add_role_change(self, email: str, old_role: str | None, new_role: str) -> bool:
        """Prepend a role change to the bounded history of ``email``."""
        email = normalize_email(email)
        entry = RoleChangeEntry(
            timestamp=self.clock(),
            old_role=old_role,
            new_role=new_role,
            cache_version=self.version_store.current(),
        )
        history = [entry] + self.get_role_change_history(email)
        history = history[: self.history_limit]

        try:
            self.property_store.write(
                f"{ROLE_HISTORY_PREFIX}{email}",
                _HISTORY_ADAPTER.dump_json(history).decode("utf-8"),
            )
        except PropertyStoreError as e:
            self.logger.error(f"Failed to record role change for {email}: {e}")
            return False

        self.logger.info(f"Role change recorded for {email}: {old_role} -> {new_role}")
        return True

    # =========================================================================
    # Change detection
    # =========================================================================

    @staticmethod
    def diff(stored: UserState, observed: ObservedState) -> list[FieldChange]:
        """Field changes between ``stored`` and ``observed`` (session excluded)."""
        changes = []
        for field_name in TRACKED_FIELDS:
            old_value = getattr(stored, field_name)
            new_value = getattr(observed, field_name)
            if old_value != new_value:
                changes.append(FieldChange(field=field_name, old_value=old_value, new_value=new_value))
        return changes

    def _invalidate_for_role_change(
        self, email: str, old_role: str | None, new_role: str
    ) -> InvalidationReport:
        # Targeted removals must run before the bump; afterwards the keys
        # resolve under the new version and no longer match.
        self.scoped_cache.remove(CacheFamily.USER.value, {"email": email}, email)
        for role in {old_role, new_role}:
            if role in AVAILABLE_ROLES:
                self.scoped_cache.remove(CacheFamily.ROLE_SHEET.value, {"role": role}, email)

        return self.invalidator.on_changed(f"{CacheFamily.USER.value}*", email)

    def detect_change(self, email: str, observed: ObservedState) -> StateChangeResult:
        """Compare ``observed`` with the stored state and react to changes.

        Args:
            email: User email (normalized here)
            observed: Role, year, name and session of the current request

        Returns:
            StateChangeResult. If the stored state cannot be read the result
            reports a change with no field records, and the user's cached
            record is removed.
        """
        email = normalize_email(email)

        try:
            stored = self.get_stored_state(email)
        except PropertyStoreError as e:
            self.logger.warning(f"Stored state unavailable for {email}, assuming changed: {e}")
            self.scoped_cache.remove(CacheFamily.USER.value, {"email": email}, email)
            self.store_state(email, observed)
            return StateChangeResult(has_changed=True, error=str(e))

        if stored is None:
            self.logger.info(f"First sighting of {email} (role: {observed.role})")
            self.store_state(email, observed)
            return StateChangeResult(is_new_user=True)

        changes = self.diff(stored, observed)
        result = StateChangeResult(
            has_changed=bool(changes), changes=changes, stored_state=stored
        )

        role_change = result.change_for("role")
        if role_change is not None:
            result.role_changed = True
            self.add_role_change(email, role_change.old_value, role_change.new_value)
            report = self._invalidate_for_role_change(
                email, role_change.old_value, role_change.new_value
            )
            result.invalidation = {
                "bumped": report.bumped,
                "removed_keys": report.removed_keys,
            }
        elif changes:
            self.logger.info(
                f"State change for {email}: {[change.field for change in changes]}"
            )

        self.store_state(email, observed)
        return result

    # =========================================================================
    # Maintenance
    # =========================================================================

    @staticmethod
    def _state_expired(raw: str | None, now: datetime, retention: timedelta) -> bool:
        if not raw:
            return True
        try:
            state = UserState.model_validate_json(raw)
        except PydanticValidationError:
            return True
        return now - state.recorded_at > retention

    @staticmethod
    def _split_history(
        raw: str | None, now: datetime, retention: timedelta
    ) -> tuple[list[RoleChangeEntry], list[RoleChangeEntry]]:
        if not raw:
            return [], []
        try:
            history = _HISTORY_ADAPTER.validate_json(raw)
        except PydanticValidationError:
            return [], []
        recent = [entry for entry in history if now - entry.timestamp <= retention]
        return history, recent

    def cleanup_expired(
        self,
        now: datetime | None = None,
        state_retention: timedelta = timedelta(days=7),
        history_retention: timedelta = timedelta(days=30),
    ) -> int:
        """Drop stale user states and old role-history entries.

        Args:
            now: Reference time (defaults to the tracker clock)
            state_retention: States recorded earlier than this are deleted
            history_retention: History entries older than this are dropped;
                a history left empty is deleted

        Returns:
            Number of properties deleted or rewritten
        """
        now = now or self.clock()
        cleaned = 0

        try:
            state_keys = self.property_store.keys(USER_STATE_PREFIX)
            history_keys = self.property_store.keys(ROLE_HISTORY_PREFIX)
        except PropertyStoreError as e:
            self.logger.error(f"User state cleanup failed: {e}")
            return 0

        for key in state_keys:
            try:
                raw = self.property_store.read(key)
                if self._state_expired(raw, now, state_retention):
                    self.property_store.delete(key)
                    cleaned += 1
            except PropertyStoreError as e:
                self.logger.warning(f"Skipping {key} during cleanup: {e}")

        for key in history_keys:
            try:
                raw = self.property_store.read(key)
                history, recent = self._split_history(raw, now, history_retention)
                if not recent:
                    self.property_store.delete(key)
                    cleaned += 1
                elif len(recent) != len(history):
                    self.property_store.write(key, _HISTORY_ADAPTER.dump_json(recent).decode("utf-8"))
                    cleaned += 1
            except PropertyStoreError as e:
                self.logger.warning(f"Skipping {key} during cleanup: {e}")

        self.logger.info(f"User state cleanup removed or trimmed {cleaned} entries")
        return cleaned
