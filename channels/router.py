"""
Channel Router

Connects external messaging channels to the Cora assistant: maps channel
identities to conversations, answers inbound messages once per delivery,
and sends system-initiated messages.
"""

import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

from cora.errors import CoraError, DeliveryFailed, MalformedPayload, UnknownChannel
from cora.session import AssistantSession

from .base import ChannelAdapter
from .dedup import DeliveryDeduplicator
from .models import InboundResult, OutboundMessage, SendResult

logger = logging.getLogger(__name__)


WELCOME_TEMPLATE = (
    "Hello{name}! 👋\n\n"
    "I'm Cora, the virtual assistant of MundoemCores.com.\n\n"
    "I'm here to help with your questions about early childhood education, "
    "brain development, and to guide you around the platform.\n\n"
    "How can I help you today?"
)


class ChannelRouter:
    """
    Routes channel traffic through the assistant session.

    Each external identity (channel kind + sender id) is mapped to one
    conversation on first contact and keeps it for the process lifetime.
    Retried deliveries with an already seen provider message id are
    acknowledged without invoking the assistant again.
    """

    def __init__(
        self,
        session: AssistantSession,
        adapters: Sequence[ChannelAdapter] = (),
        deduplicator: Optional[DeliveryDeduplicator] = None,
        reply_delay: float = 0.0,
    ):
        """
        Initialize the router.

        Args:
            session: Assistant session that produces replies
            adapters: Channel adapters to register
            deduplicator: Record of seen provider message ids
            reply_delay: Seconds to wait before replying (typing pause)
        """
        self.session = session
        self.deduplicator = deduplicator or DeliveryDeduplicator()
        self.reply_delay = reply_delay

        self._adapters: Dict[str, ChannelAdapter] = {}
        self._identities: Dict[Tuple[str, str], str] = {}
        self._identity_lock = threading.Lock()

        for adapter in adapters:
            self.register_adapter(adapter)

    # =========================================================================
    # ADAPTERS & IDENTITIES
    # =========================================================================

    def register_adapter(self, adapter: ChannelAdapter) -> None:
        """Register an adapter under its channel kind."""
        self._adapters[adapter.kind] = adapter
        logger.info("Registered %s channel adapter", adapter.kind)

    def get_adapter(self, channel_kind: str) -> ChannelAdapter:
        """
        Get the adapter for a channel kind.

        Raises:
            UnknownChannel: If no adapter is registered for it
        """
        adapter = self._adapters.get(channel_kind)
        if adapter is None:
            raise UnknownChannel(channel_kind)
        return adapter

    def list_channels(self) -> List[str]:
        """List registered channel kinds."""
        return list(self._adapters.keys())

    def conversation_for(self, channel_kind: str, external_id: str) -> Optional[str]:
        """Get the conversation mapped to an identity, if any."""
        with self._identity_lock:
            return self._identities.get((channel_kind, external_id))

    def _map_identity(self, channel_kind: str, external_id: str) -> str:
        key = (channel_kind, external_id)
        with self._identity_lock:
            conversation_id = self._identities.get(key)
            if conversation_id is None:
                conversation_id = self.session.start(f"{channel_kind}_{external_id}")
                self._identities[key] = conversation_id
                logger.info("Mapped new %s identity to conversation %s", channel_kind, conversation_id)
        return conversation_id

    async def clear_identity(self, channel_kind: str, external_id: str) -> bool:
        """Clear the conversation history of an identity. The mapping stays."""
        conversation_id = self.conversation_for(channel_kind, external_id)
        if conversation_id is None:
            return False
        return await self.session.clear(conversation_id)

    # =========================================================================
    # INBOUND
    # =========================================================================

    async def handle_inbound(self, channel_kind: str, payload: Any) -> InboundResult:
        """
        Process one webhook delivery and reply through the same channel.

        Never raises for channel or payload problems; failures are logged
        and returned as an unsuccessful result.
        """
        try:
            adapter = self.get_adapter(channel_kind)
            message = adapter.parse_inbound(payload)
        except (UnknownChannel, MalformedPayload) as e:
            logger.error("Dropping %s webhook delivery: %s", channel_kind, e)
            return self._failure(channel_kind, e)
        except Exception as e:
            logger.exception("Unparsable %s webhook delivery", channel_kind)
            return self._failure(channel_kind, MalformedPayload(f"Unparsable payload: {e}"))

        if message is None:
            logger.debug("Ignoring %s delivery without messages", channel_kind)
            return InboundResult(success=True, channel_kind=channel_kind, ignored=True)

        dedup_key = f"{channel_kind}:{message.provider_message_id}"
        if not self.deduplicator.claim(dedup_key):
            logger.info("Duplicate delivery %s ignored", message.provider_message_id)
            return InboundResult(
                success=True,
                channel_kind=channel_kind,
                external_sender_id=message.external_sender_id,
                message_received=message.content,
                conversation_id=self.conversation_for(channel_kind, message.external_sender_id),
                duplicate=True,
            )

        try:
            await adapter.acknowledge_read(message.provider_message_id)
        except Exception:
            logger.exception("Read receipt for %s failed", message.provider_message_id)

        conversation_id = self._map_identity(channel_kind, message.external_sender_id)

        try:
            reply = await self.session.send(conversation_id, message.content)
        except CoraError as e:
            logger.error("Assistant rejected message %s: %s", message.provider_message_id, e)
            return self._failure(channel_kind, e)

        if self.reply_delay > 0:
            await asyncio.sleep(self.reply_delay)

        try:
            receipt = await adapter.send_text(message.external_sender_id, reply)
        except DeliveryFailed as e:
            logger.error("Reply to %s not delivered: %s", message.provider_message_id, e)
            return self._failure(channel_kind, e)

        return InboundResult(
            success=True,
            channel_kind=channel_kind,
            external_sender_id=message.external_sender_id,
            message_received=message.content,
            outbound_provider_message_id=receipt.provider_message_id,
            conversation_id=conversation_id,
        )

    @staticmethod
    def _failure(channel_kind: str, error: CoraError) -> InboundResult:
        return InboundResult(
            success=False,
            channel_kind=channel_kind,
            error=error.code,
            detail=str(error),
        )

    # =========================================================================
    # OUTBOUND
    # =========================================================================

    async def send_proactive(self, channel_kind: str, recipient_id: str, content: str) -> SendResult:
        """Send a system-initiated message. Not recorded in any conversation."""
        try:
            adapter = self.get_adapter(channel_kind)
            receipt = await adapter.send(OutboundMessage.text(recipient_id, content))
        except (UnknownChannel, DeliveryFailed) as e:
            logger.error("Proactive %s message not sent: %s", channel_kind, e)
            return SendResult(success=False, error=e.code, detail=str(e))

        return SendResult(success=True, provider_message_id=receipt.provider_message_id)

    async def send_template_notification(
        self,
        channel_kind: str,
        recipient_id: str,
        template_name: str,
        parameters: Sequence[str] = (),
    ) -> SendResult:
        """Send a template notification."""
        try:
            adapter = self.get_adapter(channel_kind)
            receipt = await adapter.send(OutboundMessage.template(recipient_id, template_name, parameters))
        except (UnknownChannel, DeliveryFailed) as e:
            logger.error("Template %s not sent over %s: %s", template_name, channel_kind, e)
            return SendResult(success=False, error=e.code, detail=str(e))

        return SendResult(success=True, provider_message_id=receipt.provider_message_id)

    async def send_welcome_message(
        self,
        channel_kind: str,
        recipient_id: str,
        user_name: Optional[str] = None,
    ) -> SendResult:
        """Send the welcome message to a new user."""
        name = f" {user_name}" if user_name else ""
        return await self.send_proactive(channel_kind, recipient_id, WELCOME_TEMPLATE.format(name=name))

    def get_stats(self) -> Dict[str, Any]:
        """Get router statistics."""
        with self._identity_lock:
            identities = len(self._identities)
        return {
            "channels": self.list_channels(),
            "mapped_identities": identities,
            "remembered_deliveries": len(self.deduplicator),
        }

    async def aclose(self) -> None:
        """Close every adapter."""
        for adapter in self._adapters.values():
            await adapter.aclose()
