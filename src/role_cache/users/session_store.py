"""Per-user sessions persisted in the property store as ``session_{email}``."""

import logging
from datetime import datetime, timedelta
from typing import Callable
from uuid import uuid4

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..cache.master_version import MasterVersionStore
from ..database.property_store import PropertyStore
from ..exceptions import PropertyStoreError
from .staff import normalize_email
from .state_tracker import utcnow

logger = logging.getLogger(__name__)

SESSION_PREFIX = "session_"


class UserSession(BaseModel):
    session_id: str = Field(default_factory=lambda: f"session_{uuid4().hex}")
    user_email: str
    created_at: datetime
    last_accessed_at: datetime
    expires_at: datetime
    is_active: bool = True
    access_count: int = 1
    version: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return not self.is_active or now >= self.expires_at


class SessionStore:
    """Creates, resumes and expires user sessions."""

    def __init__(
        self,
        property_store: PropertyStore,
        version_store: MasterVersionStore,
        duration: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.property_store = property_store
        self.version_store = version_store
        self.duration = duration
        self.clock = clock

    def _save(self, session: UserSession) -> bool:
        try:
            self.property_store.write(
                f"{SESSION_PREFIX}{session.user_email}", session.model_dump_json()
            )
        except PropertyStoreError as e:
            logger.error(f"Failed to save session for {session.user_email}: {e}")
            return False
        return True

    def create_session(self, email: str) -> UserSession:
        """Start a new session for ``email``.

        The session is returned even if it could not be persisted.
        """
        now = self.clock()
        session = UserSession(
            user_email=normalize_email(email),
            created_at=now,
            last_accessed_at=now,
            expires_at=now + self.duration,
            version=self.version_store.current(),
        )
        self._save(session)
        logger.info(f"Created session {session.session_id} for {session.user_email}")
        return session

    def load_session(self, email: str) -> UserSession | None:
        """Load the stored session of ``email`` without touching it."""
        key = f"{SESSION_PREFIX}{normalize_email(email)}"
        try:
            raw = self.property_store.read(key)
            return UserSession.model_validate_json(raw) if raw else None
        except (PropertyStoreError, PydanticValidationError) as e:
            logger.warning(f"Cannot load session for {email}: {e}")
            return None

    def get_session(self, email: str) -> UserSession:
        """Resume the session of ``email``, creating one if none is live.

        Resuming updates ``last_accessed_at`` and ``access_count``.
        """
        now = self.clock()
        session = self.load_session(email)
        if session is None or session.is_expired(now):
            return self.create_session(email)

        session = session.model_copy(
            update={"last_accessed_at": now, "access_count": session.access_count + 1}
        )
        self._save(session)
        return session

    def cleanup_expired(self, now: datetime | None = None) -> int:
        """Delete expired sessions.

        Returns:
            Number of sessions deleted
        """
        now = now or self.clock()
        removed = 0
        try:
            keys = self.property_store.keys(SESSION_PREFIX)
        except PropertyStoreError as e:
            logger.error(f"Session cleanup failed: {e}")
            return 0

        for key in keys:
            try:
                raw = self.property_store.read(key)
                try:
                    expired = not raw or UserSession.model_validate_json(raw).is_expired(now)
                except PydanticValidationError:
                    expired = True
                if expired:
                    self.property_store.delete(key)
                    removed += 1
            except PropertyStoreError as e:
                logger.warning(f"Skipping {key} during session cleanup: {e}")

        logger.info(f"Removed {removed} expired sessions")
        return removed
