"""
Channel Models

Normalized messages and result records shared by every channel adapter.
"""

from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from cora.models import utcnow


class ChannelKind(str, Enum):
    """External messaging channels Cora can be reached through."""
    WHATSAPP = "whatsapp"


@dataclass(frozen=True)
class InboundMessage:
    """A message received from an external channel, provider details removed."""
    channel_kind: str
    external_sender_id: str
    content: str
    provider_message_id: str
    timestamp: datetime = field(default_factory=utcnow)
    message_type: str = "text"


@dataclass(frozen=True)
class OutboundMessage:
    """A message to deliver through an external channel."""
    external_recipient_id: str
    content: Optional[str] = None
    template_name: Optional[str] = None
    parameters: Tuple[str, ...] = ()

    @property
    def is_template(self) -> bool:
        """Check if this is a template notification."""
        return self.template_name is not None

    @classmethod
    def text(cls, recipient: str, content: str) -> "OutboundMessage":
        """Create a free-text message."""
        return cls(external_recipient_id=recipient, content=content)

    @classmethod
    def template(cls, recipient: str, template_name: str, parameters=()) -> "OutboundMessage":
        """Create a template notification."""
        return cls(
            external_recipient_id=recipient,
            template_name=template_name,
            parameters=tuple(parameters),
        )


@dataclass(frozen=True)
class DeliveryReceipt:
    """Provider acknowledgement of an outbound send."""
    provider_message_id: str
    recipient_id: str = ""


@dataclass(frozen=True)
class HandshakeResult:
    """Outcome of a webhook subscription handshake."""
    accepted: bool
    challenge: Optional[str] = None


@dataclass
class InboundResult:
    """Result of running one webhook delivery through the router."""
    success: bool
    channel_kind: str = ""
    external_sender_id: Optional[str] = None
    message_received: Optional[str] = None
    outbound_provider_message_id: Optional[str] = None
    conversation_id: Optional[str] = None

    # Set when the delivery needed no reply
    duplicate: bool = False
    ignored: bool = False

    error: Optional[str] = None
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        if not self.success:
            return {"success": False, "error": self.error, "detail": self.detail}

        result: Dict[str, Any] = {
            "success": True,
            "external_sender_id": self.external_sender_id,
            "message_received": self.message_received,
            "outbound_provider_message_id": self.outbound_provider_message_id,
        }
        if self.duplicate:
            result["duplicate"] = True
        if self.ignored:
            result["ignored"] = True
        return result


@dataclass
class SendResult:
    """Result of a proactive or template send."""
    success: bool
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        if self.success:
            return {"success": True, "message_id": self.provider_message_id}
        return {"success": False, "error": self.error, "detail": self.detail}
