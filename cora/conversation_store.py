"""
Conversation Store

Owns per-conversation message history for the assistant.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from .errors import UnknownConversation
from .models import Conversation, Message, MessageRole

logger = logging.getLogger(__name__)


class _Entry:
    """A conversation together with the lock guarding it."""

    __slots__ = ("conversation", "lock")

    def __init__(self, conversation: Conversation):
        self.conversation = conversation
        self.lock = threading.Lock()


class ConversationStore:
    """
    In-memory conversation storage.

    Handles:
    - Lazy creation of conversations seeded with a system message
    - Append-only history updates
    - Reset back to the system message
    - Snapshots for an external persistence layer

    The store-level lock only guards the id -> conversation map. Each
    conversation carries its own lock, so writers on different
    conversations never block each other.
    """

    def __init__(self):
        """Initialize the conversation store."""
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def _entry(self, conversation_id: str) -> _Entry:
        with self._lock:
            entry = self._entries.get(conversation_id)
        if entry is None:
            raise UnknownConversation(conversation_id)
        return entry

    def ensure(
        self,
        conversation_id: str,
        system_prompt: str,
        user_id: Optional[str] = None,
    ) -> Conversation:
        """
        Get a conversation, creating it if absent.

        Calling this again for an existing id never touches its history.
        """
        with self._lock:
            entry = self._entries.get(conversation_id)
            if entry is None:
                conversation = Conversation(conversation_id=conversation_id, user_id=user_id)
                conversation.add_message(Message.system(system_prompt))
                entry = _Entry(conversation)
                self._entries[conversation_id] = entry
                logger.debug("Created conversation %s", conversation_id)

        return entry.conversation

    def append(self, conversation_id: str, role: MessageRole, content: str) -> Message:
        """
        Append one message to a conversation.

        Raises:
            UnknownConversation: If the conversation was never ensured
        """
        entry = self._entry(conversation_id)
        message = Message(role=role, content=content)
        with entry.lock:
            entry.conversation.add_message(message)
        return message

    def reset(self, conversation_id: str) -> bool:
        """Truncate a conversation back to its system message."""
        with self._lock:
            entry = self._entries.get(conversation_id)
        if entry is None:
            return False

        with entry.lock:
            entry.conversation.clear()
        logger.debug("Reset conversation %s", conversation_id)
        return True

    def get(self, conversation_id: str) -> Tuple[Message, ...]:
        """
        Get the current message history as an immutable snapshot.

        Raises:
            UnknownConversation: If the conversation does not exist
        """
        entry = self._entry(conversation_id)
        with entry.lock:
            return tuple(entry.conversation.messages)

    def exists(self, conversation_id: str) -> bool:
        """Check whether a conversation exists."""
        with self._lock:
            return conversation_id in self._entries

    def get_conversation_info(self, conversation_id: str) -> Dict[str, Any]:
        """
        Get conversation metadata without the message bodies.

        Raises:
            UnknownConversation: If the conversation does not exist
        """
        entry = self._entry(conversation_id)
        with entry.lock:
            conversation = entry.conversation
            return {
                "conversation_id": conversation.conversation_id,
                "user_id": conversation.user_id,
                "message_count": len(conversation.messages),
                "created_at": conversation.created_at.isoformat(),
                "last_updated": conversation.last_updated.isoformat(),
            }

    def list_conversations(self) -> List[str]:
        """List all conversation ids."""
        with self._lock:
            return list(self._entries.keys())

    def get_stats(self) -> Dict[str, Any]:
        """Get conversation store statistics."""
        with self._lock:
            entries = list(self._entries.values())

        total_messages = 0
        for entry in entries:
            with entry.lock:
                total_messages += len(entry.conversation.messages)

        return {
            "active_conversations": len(entries),
            "total_messages": total_messages,
        }

    # =========================================================================
    # PERSISTENCE HOOKS
    # =========================================================================

    def dump(self) -> Dict[str, Any]:
        """Snapshot all conversations as JSON-compatible data keyed by id."""
        with self._lock:
            entries = dict(self._entries)

        snapshot = {}
        for conversation_id, entry in entries.items():
            with entry.lock:
                snapshot[conversation_id] = entry.conversation.to_record()
        return {"conversations": snapshot}

    def load(self, data: Dict[str, Any]) -> int:
        """
        Rehydrate conversations from a `dump` snapshot.

        Conversations already present are left untouched. Records without a
        leading system message are skipped. Returns the number loaded.
        """
        loaded = 0
        for conversation_id, record in (data.get("conversations") or {}).items():
            conversation = Conversation.from_record(record)
            if not conversation.messages or conversation.messages[0].role != MessageRole.SYSTEM:
                logger.warning("Skipping conversation %s: missing system message", conversation_id)
                continue

            with self._lock:
                if conversation_id in self._entries:
                    continue
                self._entries[conversation_id] = _Entry(conversation)
            loaded += 1

        logger.info("Loaded %d conversations", loaded)
        return loaded
