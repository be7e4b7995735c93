"""File-backed session table shared by the web process and the worker."""

from typing import Optional

import structlog
from pydantic import ValidationError

from yt_batch.models.session import Session
from yt_batch.services.backends import PersistenceBackend

logger = structlog.get_logger()


class SessionStore:
    """Sessions keyed by id, with a secondary index from user id to session ids.

    The web process signs users in and refreshes tokens; the worker reads the
    same table. Call ``reload()`` to observe changes made by the other process.
    """

    def __init__(self, backend: PersistenceBackend):
        self._backend = backend
        self._sessions: dict[str, Session] = {}
        self._by_user: dict[str, list[str]] = {}
        self.reload()

    def _load(self) -> dict[str, Session]:
        sessions: dict[str, Session] = {}
        for session_id, record in self._backend.load().items():
            try:
                sessions[session_id] = Session.model_validate({**record, "sessionId": session_id})
            except ValidationError as e:
                logger.error("session_record_invalid", session_id=session_id[:10], error=str(e))
        return sessions

    def _index(self) -> None:
        self._by_user = {}
        for session_id, session in self._sessions.items():
            if session.user_id:
                self._by_user.setdefault(session.user_id, []).append(session_id)

    def reload(self) -> int:
        """Re-read the table. Returns the number of sessions loaded."""
        self._sessions = self._load()
        self._index()
        return len(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def get_all(self) -> list[Session]:
        return list(self._sessions.values())

    def find_for_user(self, user_id: str) -> Optional[Session]:
        """Any authenticated session with tokens belonging to ``user_id``."""
        for session_id in self._by_user.get(user_id, []):
            session = self._sessions.get(session_id)
            if session and session.is_usable:
                return session
        return None

    def resolve(self, session_id: Optional[str], user_id: Optional[str]) -> Optional[Session]:
        """Session to act as for a job.

        The job's own session wins when it is still usable; otherwise any
        usable session of the same user is taken, which covers sign-ins that
        happened after the job was submitted.
        """
        session = self.get(session_id)
        if session and session.is_usable:
            return session
        if user_id:
            other = self.find_for_user(user_id)
            if other:
                return other
        return session

    def save(self, session: Session) -> None:
        """Write one session back, keeping whatever else is on disk."""
        records = self._backend.load()
        records[session.session_id] = session.model_dump(
            mode="json", by_alias=True, exclude_none=True, exclude={"session_id"}
        )
        try:
            self._backend.save(records)
        except OSError as e:
            logger.error("session_table_write_failed", error=str(e))
            return

        self._sessions[session.session_id] = session
        self._index()

    def delete(self, session_id: str) -> None:
        records = self._backend.load()
        if records.pop(session_id, None) is not None:
            self._backend.save(records)
        self._sessions.pop(session_id, None)
        self._index()
