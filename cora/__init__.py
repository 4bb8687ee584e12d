"""
Cora Assistant Core

Conversation sessions, knowledge base and pluggable reply generation for
the MundoemCores.com virtual assistant.
"""

from .errors import (
    CoraError,
    InvalidCategory,
    UnknownConversation,
    EmptyMessage,
    GenerationFailed,
    MalformedPayload,
    DeliveryFailed,
    UnknownChannel,
)
from .models import (
    MessageRole,
    Message,
    Conversation,
    AssistantConfig,
    FALLBACK_MESSAGE,
)
from .knowledge_base import (
    KnowledgeBase,
    Category,
    Document,
    DEFAULT_CATEGORIES,
)
from .conversation_store import ConversationStore
from .response_generator import (
    ResponseGenerator,
    KeywordResponseGenerator,
    OllamaResponseGenerator,
    create_generator,
)
from .locks import KeyedLock
from .session import AssistantSession
from .service import CoraService
from .logger import configure_logging, setup_logger

__all__ = [
    # Errors
    "CoraError",
    "InvalidCategory",
    "UnknownConversation",
    "EmptyMessage",
    "GenerationFailed",
    "MalformedPayload",
    "DeliveryFailed",
    "UnknownChannel",
    # Models
    "MessageRole",
    "Message",
    "Conversation",
    "AssistantConfig",
    "FALLBACK_MESSAGE",
    # Knowledge
    "KnowledgeBase",
    "Category",
    "Document",
    "DEFAULT_CATEGORIES",
    # Conversations
    "ConversationStore",
    "AssistantSession",
    "KeyedLock",
    # Generation
    "ResponseGenerator",
    "KeywordResponseGenerator",
    "OllamaResponseGenerator",
    "create_generator",
    # Service
    "CoraService",
    "setup_logger",
    "configure_logging",
]
