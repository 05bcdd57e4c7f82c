"""
Conversation store — append-only, tenant-keyed turn history.
A conversation id is only visible to the tenant that created it.
"""
import logging
import threading
import uuid
from typing import Optional

from models.chat import Conversation, ConversationTurn, utcnow

logger = logging.getLogger(__name__)


class ConversationStore:
    """In-process store. Readers get copies; turns are never edited once appended."""

    def __init__(self):
        self._conversations: dict[tuple[str, str], Conversation] = {}
        self._lock = threading.Lock()

    def get(self, store_id: str, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            conv = self._conversations.get((store_id, conversation_id))
            return conv.model_copy(update={"turns": list(conv.turns)}) if conv else None

    def resolve(self, store_id: str, conversation_id: Optional[str]) -> str:
        """Return `conversation_id` if this tenant owns it, otherwise open a new conversation."""
        with self._lock:
            if conversation_id and (store_id, conversation_id) in self._conversations:
                return conversation_id
            if conversation_id:
                logger.info("Conversation %s unknown for store %s, starting a new one", conversation_id, store_id)
            new_id = str(uuid.uuid4())
            self._conversations[(store_id, new_id)] = Conversation(id=new_id, store_id=store_id)
            return new_id

    def history(self, store_id: str, conversation_id: str) -> list[ConversationTurn]:
        with self._lock:
            conv = self._conversations.get((store_id, conversation_id))
            return list(conv.turns) if conv else []

    def append(self, store_id: str, conversation_id: str, *turns: ConversationTurn) -> None:
        with self._lock:
            conv = self._conversations.get((store_id, conversation_id))
            if conv is None:
                raise KeyError(f"Conversation {conversation_id} not found for store {store_id}")
            conv.turns.extend(turns)
            conv.updated_at = utcnow()
