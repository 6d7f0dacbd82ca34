"""In-memory conversation store keyed by session id."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from langchain_core.messages import BaseMessage

logger = logging.getLogger(__name__)


@dataclass
class ConversationSession:
    session_id: str
    messages: list[BaseMessage] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ConversationStore:
    """
    Maps a session id to its ordered message history.

    Messages are only ever appended. Sessions live as long as the store;
    eviction is left to whoever owns the store.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, ConversationSession] = {}

    def create_session(self) -> str:
        session_id = uuid.uuid4().hex
        self._sessions[session_id] = ConversationSession(session_id)
        logger.debug(f"Created session {session_id}")
        return session_id

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get_session(self, session_id: str) -> ConversationSession | None:
        return self._sessions.get(session_id)

    def get_history(self, session_id: str) -> list[BaseMessage]:
        """Messages of a session in order; empty for unknown ids."""
        session = self._sessions.get(session_id)
        return list(session.messages) if session else []

    def add_message(self, session_id: str, message: BaseMessage) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            session = self._sessions[session_id] = ConversationSession(session_id)
        session.messages.append(message)

    def add_messages(self, session_id: str, messages: Iterable[BaseMessage]) -> None:
        for message in messages:
            self.add_message(session_id, message)

    def __len__(self) -> int:
        return len(self._sessions)
