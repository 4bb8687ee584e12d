"""
Assistant Session

Runs Cora conversations: validates input, records turns, and calls the
response generator with per-conversation ordering.
"""

import asyncio
import logging
import time
import uuid
from typing import Optional

from .conversation_store import ConversationStore
from .errors import EmptyMessage, GenerationFailed
from .locks import KeyedLock
from .models import FALLBACK_MESSAGE, AssistantConfig, MessageRole
from .response_generator import ResponseGenerator

logger = logging.getLogger(__name__)


class AssistantSession:
    """
    Orchestrates assistant conversations.

    Every successful `send` leaves the conversation with a user turn
    followed by exactly one assistant turn, either the generated reply or
    FALLBACK_MESSAGE. Sends on the same conversation run one at a time;
    sends on different conversations run independently.
    """

    def __init__(
        self,
        store: ConversationStore,
        generator: ResponseGenerator,
        config: Optional[AssistantConfig] = None,
        fallback_message: str = FALLBACK_MESSAGE,
    ):
        """
        Initialize the session manager.

        Args:
            store: Conversation storage
            generator: Reply generator
            config: Assistant configuration (persona, generation timeout)
            fallback_message: Reply recorded when generation fails
        """
        self.store = store
        self.generator = generator
        self.config = config or AssistantConfig()
        self.fallback_message = fallback_message
        self._locks = KeyedLock()

    def start(self, user_id: Optional[str] = None) -> str:
        """
        Start or resume a conversation.

        The same user_id always maps to the same conversation id. Without a
        user_id a fresh id is minted.
        """
        conversation_id = user_id if user_id else f"conv_{uuid.uuid4().hex}"
        self.store.ensure(
            conversation_id,
            self.config.get_system_prompt(),
            user_id=user_id,
        )
        return conversation_id

    async def send(self, conversation_id: str, user_text: str) -> str:
        """
        Send a user message and return Cora's reply.

        Raises:
            EmptyMessage: If user_text is empty or whitespace only
            UnknownConversation: If the conversation was never started
        """
        if user_text is None or not user_text.strip():
            raise EmptyMessage()

        # Fail before taking the lock if the conversation does not exist
        self.store.get(conversation_id)

        async with self._locks.hold(conversation_id):
            self.store.append(conversation_id, MessageRole.USER, user_text)
            history = self.store.get(conversation_id)

            start_time = time.time()
            try:
                reply = await self._generate(history)
            except asyncio.CancelledError:
                self.store.append(conversation_id, MessageRole.ASSISTANT, self.fallback_message)
                logger.warning("Generation cancelled for %s, recorded fallback", conversation_id)
                raise
            except GenerationFailed as e:
                logger.warning("Generation failed for %s: %s", conversation_id, e)
                reply = self.fallback_message
            except Exception:
                logger.exception("Unexpected generator error for %s", conversation_id)
                reply = self.fallback_message

            self.store.append(conversation_id, MessageRole.ASSISTANT, reply)

        logger.debug(
            "Replied in %s after %.1f ms",
            conversation_id,
            (time.time() - start_time) * 1000,
        )
        return reply

    async def _generate(self, history) -> str:
        timeout = self.config.generation_timeout
        try:
            if timeout and timeout > 0:
                reply = await asyncio.wait_for(self.generator.generate(history), timeout)
            else:
                reply = await self.generator.generate(history)
        except asyncio.TimeoutError as e:
            raise GenerationFailed(f"Generation timed out after {timeout}s") from e

        if not isinstance(reply, str) or not reply.strip():
            raise GenerationFailed("Generator returned an empty reply")
        return reply

    async def clear(self, conversation_id: str) -> bool:
        """
        Clear a conversation's history.

        Waits for any in-flight send on the conversation to finish first.
        """
        if not self.store.exists(conversation_id):
            return False

        async with self._locks.hold(conversation_id):
            return self.store.reset(conversation_id)

    def is_busy(self, conversation_id: str) -> bool:
        """Check whether a send is in flight for a conversation."""
        return self._locks.locked(conversation_id)
