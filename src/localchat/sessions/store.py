import logging
from typing import Callable

from pydantic import ValidationError

from localchat.sessions.schema import (
    DEFAULT_TITLE,
    ChatSession,
    Message,
    Role,
    StoreSnapshot,
    utc_now,
)
from localchat.storage import CHAT_STORE_KEY, KeyValueStore

logger = logging.getLogger(__name__)


class ConversationStore:
    """Ordered chat sessions plus the current-session pointer.

    Every mutation swaps in a new ``ChatSession`` object (and a new message
    list) for the affected session instead of patching it in place, so a
    reader holding a previously returned session never observes a half
    applied update. When bound to a ``KeyValueStore`` each mutation is
    persisted under the ``chat-store`` key.
    """

    def __init__(self, backend: KeyValueStore | None = None):
        self._backend = backend
        self._sessions: list[ChatSession] = []
        self._dirty = False
        self.current_session_id: str | None = None
        if backend is not None:
            self._load()

    def _load(self) -> None:
        data = self._backend.get(CHAT_STORE_KEY)
        if not data:
            return
        try:
            snapshot = StoreSnapshot.model_validate(data)
        except ValidationError as e:
            logger.error(f"Discarding unreadable chat store: {e}")
            return
        self._sessions = list(snapshot.chats)
        self.current_session_id = snapshot.current_chat_id
        logger.info(f"Loaded {len(self._sessions)} chat sessions")

    def _persist(self) -> None:
        self._dirty = False
        if self._backend is None:
            return
        snapshot = StoreSnapshot(chats=self._sessions, current_chat_id=self.current_session_id)
        self._backend.set(CHAT_STORE_KEY, snapshot.model_dump(mode="json"))

    def _index_of(self, session_id: str) -> int | None:
        for idx, session in enumerate(self._sessions):
            if session.id == session_id:
                return idx
        return None

    def _replace(
        self, session_id: str, change: Callable[[ChatSession], dict], persist: bool = True
    ) -> bool:
        idx = self._index_of(session_id)
        if idx is None:
            return False
        session = self._sessions[idx]
        update = change(session)
        update["updated_at"] = max(session.updated_at, utc_now())
        sessions = list(self._sessions)
        sessions[idx] = session.model_copy(update=update)
        self._sessions = sessions
        if persist:
            self._persist()
        else:
            self._dirty = True
        return True

    def flush(self) -> None:
        """Write out changes made with ``persist=False``."""
        if self._dirty:
            self._persist()

    def list_sessions(self) -> list[ChatSession]:
        return list(self._sessions)

    def get_session(self, session_id: str | None) -> ChatSession | None:
        if session_id is None:
            return None
        idx = self._index_of(session_id)
        return self._sessions[idx] if idx is not None else None

    def current_session(self) -> ChatSession | None:
        return self.get_session(self.current_session_id)

    def create_session(self, title: str = DEFAULT_TITLE) -> str:
        session = ChatSession(title=title)
        self._sessions = [session, *self._sessions]
        self.current_session_id = session.id
        self._persist()
        logger.info(f"Created chat session {session.id}")
        return session.id

    def ensure_session(self) -> str:
        current = self.current_session()
        if current is not None:
            return current.id
        if not self._sessions:
            return self.create_session()
        self.current_session_id = self._sessions[0].id
        self._persist()
        return self.current_session_id

    def delete_session(self, session_id: str) -> None:
        self._sessions = [s for s in self._sessions if s.id != session_id]
        if self.current_session_id == session_id:
            self.current_session_id = None
        self._persist()
        logger.info(f"Deleted chat session {session_id}")

    def select_session(self, session_id: str) -> None:
        self.current_session_id = session_id
        self._persist()

    def update_title(self, session_id: str, title: str) -> bool:
        return self._replace(session_id, lambda s: {"title": title})

    def append_message(self, session_id: str, role: Role, content: str = "") -> str | None:
        """Append a message and return its id, or None when the session is unknown."""
        message = Message(role=role, content=content)
        ok = self._replace(session_id, lambda s: {"messages": [*s.messages, message]})
        if not ok:
            logger.debug(f"append_message ignored for unknown session {session_id}")
            return None
        return message.id

    def replace_last_message_content(self, session_id: str, content: str) -> bool:
        session = self.get_session(session_id)
        if session is None or not session.messages:
            return False

        def change(s: ChatSession) -> dict:
            last = s.messages[-1].model_copy(update={"content": content})
            return {"messages": [*s.messages[:-1], last]}

        return self._replace(session_id, change)

    def replace_message_content(
        self, session_id: str, message_id: str, content: str, persist: bool = True
    ) -> bool:
        session = self.get_session(session_id)
        if session is None or not any(m.id == message_id for m in session.messages):
            return False

        def change(s: ChatSession) -> dict:
            return {
                "messages": [
                    m.model_copy(update={"content": content}) if m.id == message_id else m
                    for m in s.messages
                ]
            }

        return self._replace(session_id, change, persist=persist)

    def delete_message(self, session_id: str, message_id: str) -> bool:
        session = self.get_session(session_id)
        if session is None or not any(m.id == message_id for m in session.messages):
            return False
        return self._replace(
            session_id, lambda s: {"messages": [m for m in s.messages if m.id != message_id]}
        )

    def get_message(self, session_id: str, message_id: str) -> Message | None:
        session = self.get_session(session_id)
        if session is None:
            return None
        for message in session.messages:
            if message.id == message_id:
                return message
        return None
