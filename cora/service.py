"""
Cora Service

In-app entry points used by the chat widget: start, send, clear and
knowledge search.
"""

import logging
from typing import Any, Dict, List, Optional

from .conversation_store import ConversationStore
from .knowledge_base import Document, KnowledgeBase
from .models import AssistantConfig, Message
from .response_generator import ResponseGenerator, create_generator
from .session import AssistantSession

logger = logging.getLogger(__name__)


class CoraService:
    """
    Main assistant service.

    Composes the knowledge base, conversation store, response generator
    and session. Instances are built explicitly at startup and passed to
    whatever needs them.
    """

    def __init__(
        self,
        config: Optional[AssistantConfig] = None,
        knowledge: Optional[KnowledgeBase] = None,
        store: Optional[ConversationStore] = None,
        generator: Optional[ResponseGenerator] = None,
    ):
        """
        Initialize the service.

        Args:
            config: Assistant configuration
            knowledge: Knowledge base (an empty one is created if omitted)
            store: Conversation store (an empty one is created if omitted)
            generator: Reply generator (chosen from config.backend if omitted)
        """
        self.config = config or AssistantConfig()
        self.knowledge = knowledge or KnowledgeBase()
        self.store = store or ConversationStore()
        self.generator = generator or create_generator(self.config, self.knowledge)
        self.session = AssistantSession(self.store, self.generator, self.config)

    # =========================================================================
    # CHAT
    # =========================================================================

    def start_conversation(self, user_id: Optional[str] = None) -> str:
        """Start or resume the conversation for a user."""
        return self.session.start(user_id)

    async def send_user_message(self, conversation_id: str, text: str) -> str:
        """Send a user message and get the reply."""
        return await self.session.send(conversation_id, text)

    async def clear_conversation(self, conversation_id: str) -> bool:
        """Clear a conversation's history."""
        return await self.session.clear(conversation_id)

    def get_messages(self, conversation_id: str) -> List[Message]:
        """Get a conversation's messages."""
        return list(self.store.get(conversation_id))

    # =========================================================================
    # KNOWLEDGE
    # =========================================================================

    def search_knowledge(self, query: str, category_id: Optional[str] = None) -> List[Document]:
        """Search the knowledge base."""
        return self.knowledge.search_documents(query, category_id)

    def add_document(
        self,
        title: str,
        content: str,
        category_id: Optional[str] = None,
        source: str = "",
    ) -> Document:
        """Add a document to the knowledge base."""
        return self.knowledge.add_document(title, content, category_id=category_id, source=source)

    def process_documents(self) -> List[Document]:
        """Run the processing step over newly added documents."""
        return self.knowledge.process_documents()

    def get_stats(self) -> Dict[str, Any]:
        """Get combined service statistics."""
        return {
            "backend": self.config.backend,
            "knowledge": self.knowledge.get_stats(),
            "conversations": self.store.get_stats(),
        }

    # =========================================================================
    # PERSISTENCE HOOKS
    # =========================================================================

    def dump(self) -> Dict[str, Any]:
        """Snapshot conversations and documents."""
        return {
            "knowledge": self.knowledge.dump(),
            "conversations": self.store.dump(),
        }

    def load(self, data: Dict[str, Any]) -> None:
        """Rehydrate conversations and documents from a snapshot."""
        if data.get("knowledge"):
            self.knowledge.load(data["knowledge"])
        if data.get("conversations"):
            self.store.load(data["conversations"])
