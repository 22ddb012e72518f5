"""User-facing read paths built on the cache subsystem.

UserService is what the request layer talks to. Every public method catches
and logs failures and returns None, an empty value or a safe default
context; a caching or storage failure never blocks a request.

Cache families used here (all in the requesting user's namespace):

============== ================= =========================================
Family         Params            Content
============== ================= =========================================
user           {email}           StaffRecord of one user
settings_data  {}                Parsed Settings source
domain_mappings {}               role -> year -> subdomain lists
role_mappings  {}                email -> role for every staff member
role_sheet     {role}            Raw rows of one role's rubric sheet
============== ================= =========================================
"""

import logging
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from src.config.settings import Settings, settings

from ..cache.cache_manager import CacheManager
from ..cache.dependencies import CacheFamily
from ..constants import (
    AVAILABLE_ROLES,
    DEFAULT_ROLE,
    DEFAULT_YEAR,
    EVALUATOR_ROLES,
    SETTINGS_SOURCE,
    SPECIAL_ROLES,
    STAFF_SOURCE,
    VIEW_MODE_ASSIGNED,
    VIEW_MODE_FULL,
)
from ..exceptions import DataSourceError, RoleCacheError, convert_to_cache_exception
from .role_settings import SettingsData, assigned_subdomains, build_domain_mappings, parse_settings_rows
from .session_store import SessionStore
from .staff import (
    StaffDirectory,
    StaffRecord,
    build_staff_directory,
    is_valid_email,
    normalize_email,
)
from .state_tracker import FieldChange, ObservedState, UserStateTracker, utcnow

logger = logging.getLogger(__name__)


class RoleSheet(BaseModel):
    """Rows of the rubric sheet serving one role."""

    role: str
    sheet_name: str
    rows: list[list[Any]]
    row_count: int
    used_fallback: bool = False


class UserContext(BaseModel):
    """Everything the request layer needs to know about the current user."""

    email: str | None = None
    name: str = ""
    role: str = DEFAULT_ROLE
    year: int = DEFAULT_YEAR
    building: str = ""
    is_summative_year: bool = False

    is_authenticated: bool = False
    is_default_user: bool = True
    has_staff_record: bool = False

    has_special_access: bool = False
    special_role_type: str | None = None
    can_filter: bool = False
    is_evaluator: bool = False
    view_mode: str = VIEW_MODE_ASSIGNED
    assigned_subdomains: dict[str, list[str]] | None = None

    session_id: str | None = None
    is_new_user: bool = False
    has_state_changes: bool = False
    role_changed: bool = False
    previous_role: str | None = None
    state_changes: list[FieldChange] = Field(default_factory=list)

    cache_version: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    error: str | None = None


class UserService:
    """Read-through access to staff, settings and role data for one request."""

    def __init__(
        self,
        cache_manager: CacheManager,
        config: Settings = settings,
        session_store: SessionStore | None = None,
        state_tracker: UserStateTracker | None = None,
    ):
        self.cache = cache_manager
        self.config = config
        self.session_store = session_store or SessionStore(
            cache_manager.property_store,
            cache_manager.version_store,
            duration=timedelta(hours=config.session_duration_hours),
        )
        self.state_tracker = state_tracker or UserStateTracker(
            cache_manager.property_store,
            cache_manager.scoped_cache,
            cache_manager.invalidator,
            cache_manager.version_store,
            history_limit=config.role_history_limit,
        )
        self.logger = logging.getLogger(self.__class__.__name__)

    def _read_rows(self, source_name: str) -> list[list[Any]] | None:
        try:
            return self.cache.row_source.read_rows(source_name)
        except DataSourceError as e:
            self.logger.error(f"Cannot read {source_name}: {e}")
            return None

    # =========================================================================
    # Staff
    # =========================================================================

    def get_staff_directory(self) -> StaffDirectory | None:
        return self.cache.get_staff_directory()

    def load_staff_data(self, requester: str) -> StaffDirectory | None:
        """Read the Staff source, invalidating dependents if it changed.

        A change invalidates ``staff_data`` (which escalates to every user
        record and role sheet) and replaces the global staff directory with
        the rows just read. If the source cannot be read, the global
        directory is served instead.
        """
        rows = self._read_rows(STAFF_SOURCE)
        if rows is None:
            return self.cache.get_staff_directory()

        if self.cache.hash_store.has_changed(STAFF_SOURCE, rows[1:]):
            self.cache.invalidate(CacheFamily.STAFF_DATA.value, requester)
            return self.cache.refresh_staff_directory(rows)

        return build_staff_directory(rows)

    def get_user_by_email(self, email: str, requester: str | None = None) -> StaffRecord | None:
        """Find a staff record, cached per requester under ``user``.

        A cache miss goes through ``load_staff_data``, so an edited Staff
        source is noticed as soon as the cached record expires.

        Args:
            email: Email to look up
            requester: Namespace owner; defaults to ``email`` itself

        Returns:
            StaffRecord or None if unknown or invalid
        """
        if not is_valid_email(email):
            return None

        email = normalize_email(email)
        requester = normalize_email(requester or email)
        params = {"email": email}

        cached = self.cache.get_cached(CacheFamily.USER.value, params, requester)
        if cached is not None:
            try:
                return StaffRecord.model_validate(cached)
            except PydanticValidationError as e:
                self.logger.warning(f"Discarding cached user record for {email}: {e}")

        directory = self.load_staff_data(requester)
        if directory is None:
            return None

        record = directory.find(email)
        if record is not None:
            self.cache.set_cached(
                CacheFamily.USER.value,
                params,
                record.model_dump(mode="json"),
                self.config.cache_user_data_ttl_seconds,
                requester,
            )
        return record

    def get_role_mappings(self, requester: str) -> dict[str, str]:
        """Return ``{email: role}`` for every staff member."""
        cached = self.cache.get_cached(CacheFamily.ROLE_MAPPINGS.value, {}, requester)
        if isinstance(cached, dict):
            return cached

        directory = self.cache.get_staff_directory()
        if directory is None:
            return {}

        mappings = {record.email: record.role for record in directory.users}
        self.cache.set_cached(
            CacheFamily.ROLE_MAPPINGS.value,
            {},
            mappings,
            self.config.cache_user_data_ttl_seconds,
            requester,
        )
        return mappings

    # =========================================================================
    # Settings and role sheets
    # =========================================================================

    def get_settings_data(self, requester: str) -> SettingsData | None:
        """Return the parsed Settings source (cached under ``settings_data``).

        On a cache miss the source is read and checked for changes; a change
        invalidates ``settings_data`` before the fresh copy is cached.
        """
        cached = self.cache.get_cached(CacheFamily.SETTINGS_DATA.value, {}, requester)
        if cached is not None:
            try:
                return SettingsData.model_validate(cached)
            except PydanticValidationError as e:
                self.logger.warning(f"Discarding cached settings data: {e}")

        rows = self._read_rows(SETTINGS_SOURCE)
        if rows is None:
            self.logger.warning("Settings source missing")
            return None

        if self.cache.hash_store.has_changed(SETTINGS_SOURCE, rows[1:]):
            self.cache.invalidate(CacheFamily.SETTINGS_DATA.value, requester)

        settings_data = parse_settings_rows(rows)
        self.cache.set_cached(
            CacheFamily.SETTINGS_DATA.value,
            {},
            settings_data.model_dump(mode="json"),
            self.config.cache_sheet_data_ttl_seconds,
            requester,
        )
        return settings_data

    def get_domain_mappings(self, requester: str) -> dict[str, dict[str, list[list[str]]]]:
        cached = self.cache.get_cached(CacheFamily.DOMAIN_MAPPINGS.value, {}, requester)
        if isinstance(cached, dict):
            return cached

        settings_data = self.get_settings_data(requester)
        if settings_data is None:
            return {}

        mappings = build_domain_mappings(settings_data)
        self.cache.set_cached(
            CacheFamily.DOMAIN_MAPPINGS.value,
            {},
            mappings,
            self.config.cache_sheet_data_ttl_seconds,
            requester,
        )
        return mappings

    def get_assigned_subdomains(self, role: str, year: int, requester: str) -> dict[str, list[str]]:
        return assigned_subdomains(self.get_domain_mappings(requester), role, year)

    def get_role_sheet(self, role: str, requester: str) -> RoleSheet | None:
        """Return the rubric sheet rows for ``role``.

        Unknown roles and missing sheets fall back to the default role's sheet.
        """
        role = role if role in AVAILABLE_ROLES else DEFAULT_ROLE
        params = {"role": role}

        cached = self.cache.get_cached(CacheFamily.ROLE_SHEET.value, params, requester)
        if cached is not None:
            try:
                return RoleSheet.model_validate(cached)
            except PydanticValidationError as e:
                self.logger.warning(f"Discarding cached role sheet for {role}: {e}")

        sheet_name = role
        rows = self._read_rows(sheet_name)
        if rows is None and role != DEFAULT_ROLE:
            self.logger.warning(f"Role sheet '{role}' not found, falling back to {DEFAULT_ROLE}")
            sheet_name = DEFAULT_ROLE
            rows = self._read_rows(sheet_name)

        if rows is None:
            self.logger.error(f"No role sheet available for {role}")
            return None

        sheet = RoleSheet(
            role=role,
            sheet_name=sheet_name,
            rows=rows,
            row_count=len(rows),
            used_fallback=sheet_name != role,
        )
        self.cache.set_cached(
            CacheFamily.ROLE_SHEET.value,
            params,
            sheet.model_dump(mode="json"),
            self.config.cache_role_config_ttl_seconds,
            requester,
        )
        return sheet

    # =========================================================================
    # User context
    # =========================================================================

    def default_context(self, email: str | None = None, error: str | None = None) -> UserContext:
        """Context for anonymous, unknown or failed lookups."""
        return UserContext(
            email=normalize_email(email) if email else None,
            role=self.config.default_role,
            year=self.config.default_year,
            is_authenticated=bool(email) and is_valid_email(email),
            error=error,
        )

    def build_user_context(self, email: str | None) -> UserContext:
        """Build the request context for ``email``.

        Starts a new request (the master version is reread), resolves the
        session and staff record, runs state-change detection (which performs
        role-transition invalidation as a side effect) and derives access
        flags.

        Returns:
            UserContext; a default context if the email is unusable or anything fails
        """
        if not email or not is_valid_email(email):
            self.logger.debug("No valid email, using default context")
            return self.default_context(email)

        email = normalize_email(email)
        self.cache.begin_request()
        try:
            session = self.session_store.get_session(email)
            user = self.get_user_by_email(email)

            if user is None:
                self.logger.info(f"No staff record for {email}, using defaults")
                context = self.default_context(email)
                context.session_id = session.session_id
                context.assigned_subdomains = self.get_assigned_subdomains(
                    context.role, context.year, email
                )
                return context

            state = self.state_tracker.detect_change(
                email,
                ObservedState(
                    role=user.role,
                    year=user.year,
                    name=user.name,
                    session_id=session.session_id,
                ),
            )
            role_change = state.change_for("role")

            special_role_type = SPECIAL_ROLES.get(user.role)
            has_special_access = special_role_type is not None

            return UserContext(
                email=email,
                name=user.name,
                role=user.role,
                year=user.year,
                building=user.building,
                is_summative_year=user.is_summative_year,
                is_authenticated=True,
                is_default_user=False,
                has_staff_record=True,
                has_special_access=has_special_access,
                special_role_type=special_role_type,
                can_filter=has_special_access,
                is_evaluator=user.role in EVALUATOR_ROLES,
                view_mode=VIEW_MODE_FULL if has_special_access else VIEW_MODE_ASSIGNED,
                assigned_subdomains=(
                    None
                    if has_special_access
                    else self.get_assigned_subdomains(user.role, user.year, email)
                ),
                session_id=session.session_id,
                is_new_user=state.is_new_user,
                has_state_changes=state.has_changed,
                role_changed=state.role_changed,
                previous_role=role_change.old_value if role_change else None,
                state_changes=state.changes,
                cache_version=self.cache.current_version(),
            )

        except (RoleCacheError, PydanticValidationError) as e:
            self.logger.error(
                f"Error building user context for {email}: {e}", extra={"user_email": email}
            )
            return self.default_context(email, error=str(e))
        except Exception as e:
            error = convert_to_cache_exception(
                e, default_message="Unexpected error building user context", context={"email": email}
            )
            self.logger.error(
                f"Error building user context for {email}: {error}", extra={"user_email": email}
            )
            return self.default_context(email, error=str(error))

    # =========================================================================
    # Maintenance
    # =========================================================================

    def cleanup_expired_sessions(self, now: datetime | None = None) -> dict[str, int]:
        """Remove expired sessions, stale user states and old role history."""
        sessions_removed = self.session_store.cleanup_expired(now)
        states_cleaned = self.state_tracker.cleanup_expired(
            now,
            state_retention=timedelta(days=self.config.user_state_retention_days),
            history_retention=timedelta(days=self.config.role_history_retention_days),
        )
        return {"sessions_removed": sessions_removed, "states_cleaned": states_cleaned}
