"""In-memory conversation log with a write-through JSON mirror."""

import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path

from pydantic import ValidationError

from chatbox.models import (
    ApiConfig,
    ExportDocument,
    ExportMessage,
    ExportSession,
    Message,
    Role,
    Session,
    now_ms,
)
from chatbox.store import SessionStore, StoreError

logger = logging.getLogger(__name__)


class SnapshotError(Exception):
    pass


class SessionManager:
    """Owns the session list, the current-session pointer and the active config.

    Sessions are keyed by id and the current session is only ever reached
    through a lookup of ``current_id``. Every mutation re-serializes the full
    collection to the store before returning. All operations hold one
    re-entrant lock, so callbacks running on a network thread cannot
    interleave with the caller's own mutations.
    """

    def __init__(
        self,
        data_dir: str | Path | None = None,
        config: ApiConfig | None = None,
        store: SessionStore | None = None,
    ):
        if store is None:
            if data_dir is None:
                raise ValueError("SessionManager needs a data_dir or a store")
            store = SessionStore(data_dir)
        self.store = store
        self._lock = threading.RLock()
        self._sessions: dict[str, Session] = {}
        self.current_id: str | None = None
        self.load_errors: list[str] = []
        self._config = ApiConfig()
        self._load(config)

    def _load(self, config: ApiConfig | None) -> None:
        try:
            sessions = self.store.load_sessions()
        except StoreError as e:
            logger.warning(f"Ignoring unreadable sessions store: {e}")
            self.load_errors.append(f"sessions: {e}")
            sessions = []
        self._sessions = {s.id: s for s in sessions}
        self.current_id = sessions[0].id if sessions else None

        if config is not None:
            self._config = config
            return
        try:
            stored = self.store.load_config()
        except StoreError as e:
            logger.warning(f"Ignoring unreadable config store: {e}")
            self.load_errors.append(f"config: {e}")
            stored = None
        if stored is not None:
            self._config = stored

    def _save(self) -> None:
        self.store.save_sessions(list(self._sessions.values()))

    @contextmanager
    def _write_through(self, session: Session | None = None):
        """Save after the block, or undo the block's changes if the save fails.

        ``session`` is restored in place so references held by callers stay
        valid.
        """
        sessions = dict(self._sessions)
        current_id = self.current_id
        saved = session.model_copy(deep=True) if session is not None else None
        try:
            yield
            self._save()
        except StoreError:
            self._sessions = sessions
            self.current_id = current_id
            if saved is not None:
                for name in Session.model_fields:
                    setattr(session, name, getattr(saved, name))
            raise

    def _most_recent(self) -> Session | None:
        ordered = self.get_all_sessions()
        return ordered[0] if ordered else None

    # Sessions

    def create_new_session(self) -> Session:
        with self._lock:
            session = Session(updated_at=now_ms())
            recent = self._most_recent()
            if recent is not None:
                session.touch(recent.updated_at)
            # newest first in the persisted document, like the display order
            with self._write_through():
                self._sessions = {session.id: session, **self._sessions}
                self.current_id = session.id
            logger.info(f"Created session {session.id}")
            return session

    def get_session(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def get_current_session(self) -> Session | None:
        with self._lock:
            if self.current_id is None:
                return None
            return self._sessions.get(self.current_id)

    def set_current_session(self, session_id: str) -> None:
        with self._lock:
            if session_id in self._sessions:
                self.current_id = session_id
            else:
                logger.debug(f"Session {session_id} not found; current session unchanged")

    def get_all_sessions(self) -> list[Session]:
        with self._lock:
            return sorted(self._sessions.values(), key=lambda s: s.updated_at, reverse=True)

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            if session_id not in self._sessions:
                return
            with self._write_through():
                del self._sessions[session_id]
                if self.current_id == session_id:
                    recent = self._most_recent()
                    self.current_id = recent.id if recent else None
            logger.info(f"Deleted session {session_id}")

    # Messages

    def add_message(self, role: Role | str, content: str) -> Message:
        role = Role(role)
        with self._lock:
            session = self.get_current_session() or self.create_new_session()
            message = Message(role=role, content=content)
            with self._write_through(session):
                session.append(message)
            return message

    def replace_last_message_content(self, content: str) -> None:
        with self._lock:
            session = self.get_current_session()
            if session is None or not session.messages:
                return
            with self._write_through(session):
                session.replace_last_content(content)

    def clear_current_session(self) -> None:
        with self._lock:
            session = self.get_current_session()
            if session is None:
                return
            with self._write_through(session):
                session.clear()

    # Config

    def get_api_config(self) -> ApiConfig:
        with self._lock:
            return self._config

    def set_api_config(self, config: ApiConfig) -> None:
        with self._lock:
            self.store.save_config(config)
            self._config = config

    # Export / import

    def export_data(self) -> str:
        with self._lock:
            document = ExportDocument(
                sessions=[
                    ExportSession(
                        id=s.id,
                        title=s.title,
                        messages=[
                            ExportMessage(role=m.role, content=m.content, timestamp=m.timestamp)
                            for m in s.messages
                        ],
                    )
                    for s in self._sessions.values()
                ],
                config=self._config.public_view().model_dump(by_alias=True),
            )
            return json.dumps(document.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False)

    def import_data(self, text: str) -> None:
        """Replace every session with those in an export document.

        The config is left alone. Nothing changes unless the whole document
        parses.

        Raises:
            SnapshotError: the document is not valid JSON or has the wrong shape
        """
        try:
            document = ExportDocument.model_validate_json(text)
        except ValidationError as e:
            raise SnapshotError(f"Invalid export document: {e}") from e

        now = now_ms()
        sessions = [
            Session(
                id=item.id,
                title=item.title,
                updated_at=now,
                messages=[
                    Message(
                        role=m.role,
                        content=m.content,
                        timestamp=m.timestamp if m.timestamp is not None else now,
                    )
                    for m in item.messages
                ],
            )
            for item in document.sessions
        ]

        with self._lock:
            with self._write_through():
                self._sessions = {s.id: s for s in sessions}
                self.current_id = sessions[0].id if sessions else None
            logger.info(f"Imported {len(sessions)} session(s)")
