"""
Cora Assistant Models

Data structures for conversations, messages, and assistant configuration.
"""

import uuid
from enum import Enum
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time (timezone aware)."""
    return datetime.now(timezone.utc)


class MessageRole(Enum):
    """Role of a message sender."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """A single message in a conversation."""
    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=utcnow)
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API calls."""
        return {
            "role": self.role.value,
            "content": self.content,
        }

    def to_record(self) -> Dict[str, Any]:
        """Convert to a full record, including timestamp and id."""
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "message_id": self.message_id,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Message":
        """Rebuild a message from `to_record` output."""
        return cls(
            role=MessageRole(record["role"]),
            content=record["content"],
            timestamp=datetime.fromisoformat(record["timestamp"]),
            message_id=record.get("message_id") or str(uuid.uuid4()),
        )

    @classmethod
    def system(cls, content: str) -> "Message":
        """Create a system message."""
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        """Create a user message."""
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        """Create an assistant message."""
        return cls(role=MessageRole.ASSISTANT, content=content)


@dataclass
class Conversation:
    """
    A conversation with message history.

    messages[0] is always the system message. History only grows by
    appending, except for `clear`, which truncates back to messages[0].
    """
    conversation_id: str = field(default_factory=lambda: f"conv_{uuid.uuid4().hex}")
    messages: List[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    last_updated: datetime = field(default_factory=utcnow)

    # Metadata
    user_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add_message(self, message: Message) -> None:
        """Add a message to the conversation."""
        self.messages.append(message)
        self.last_updated = utcnow()

    def clear(self) -> None:
        """Clear conversation history (keep system message)."""
        self.messages = self.messages[:1]
        self.last_updated = utcnow()

    @property
    def system_message(self) -> Optional[Message]:
        """The persona message seeding this conversation."""
        return self.messages[0] if self.messages else None

    def to_record(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible record."""
        return {
            "conversation_id": self.conversation_id,
            "messages": [m.to_record() for m in self.messages],
            "created_at": self.created_at.isoformat(),
            "last_updated": self.last_updated.isoformat(),
            "user_id": self.user_id,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Conversation":
        """Rebuild a conversation from `to_record` output."""
        return cls(
            conversation_id=record["conversation_id"],
            messages=[Message.from_record(m) for m in record.get("messages", [])],
            created_at=datetime.fromisoformat(record["created_at"]),
            last_updated=datetime.fromisoformat(record["last_updated"]),
            user_id=record.get("user_id"),
            metadata=dict(record.get("metadata") or {}),
        )


FALLBACK_MESSAGE = (
    "Sorry, I'm temporarily unable to respond right now. "
    "Please try again in a few moments."
)


@dataclass
class AssistantConfig:
    """Configuration for the Cora assistant."""
    # Model settings
    model_name: str = "llama3.2"
    temperature: float = 0.7
    max_tokens: int = 500
    top_p: float = 0.9

    # Backend settings
    backend: str = "keyword"  # "keyword", "ollama"
    api_base_url: str = "http://localhost:11434"
    generation_timeout: float = 30.0

    # Context settings
    max_context_messages: int = 20
    include_knowledge_base: bool = True

    # Persona
    system_prompt: str = ""
    support_email: str = "contato@mundoemcores.com"

    def get_system_prompt(self) -> str:
        """Get the full system prompt."""
        if self.system_prompt:
            return self.system_prompt

        return f"""You are Cora, the virtual assistant of the MundoemCores.com app, a platform of courses for parents about raising children. You were trained with content from the Harvard Center on the Developing Child and other material about child development.

Your goal is to be a friend who is always by the user's side, ready to:
1. Answer questions about child development and parenting
2. Help with technical questions about the app and the platform
3. Offer emotional support and guidance for parents
4. Point to specific resources inside the platform

When you cannot answer a technical question, ask the user to send an e-mail to {self.support_email}.

Keep a friendly, welcoming and empathetic tone in every interaction."""
