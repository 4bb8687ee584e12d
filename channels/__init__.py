"""
Cora Channels

Channel adapters and routing that let external messaging providers
(WhatsApp) talk to the Cora assistant.
"""

from .models import (
    ChannelKind,
    InboundMessage,
    OutboundMessage,
    DeliveryReceipt,
    HandshakeResult,
    InboundResult,
    SendResult,
)
from .base import ChannelAdapter
from .whatsapp import WhatsAppAdapter, WhatsAppConfig
from .dedup import DeliveryDeduplicator
from .router import ChannelRouter

__all__ = [
    # Models
    "ChannelKind",
    "InboundMessage",
    "OutboundMessage",
    "DeliveryReceipt",
    "HandshakeResult",
    "InboundResult",
    "SendResult",
    # Adapters
    "ChannelAdapter",
    "WhatsAppAdapter",
    "WhatsAppConfig",
    # Routing
    "DeliveryDeduplicator",
    "ChannelRouter",
]
