"""Base adapter for external messaging channels."""

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from .models import DeliveryReceipt, HandshakeResult, InboundMessage, OutboundMessage


class ChannelAdapter(ABC):
    """
    Abstract base class for channel adapters.

    An adapter translates provider webhook payloads into InboundMessage
    values and sends outbound messages through the provider's API. Every
    adapter reports its channel through `kind`, which the router uses as
    its registry key.
    """

    kind: str = ""

    @abstractmethod
    def parse_inbound(self, payload: Any) -> Optional[InboundMessage]:
        """
        Parse a webhook payload.

        Args:
            payload: Decoded JSON body of the webhook delivery (untrusted)

        Returns:
            The inbound message, or None if the delivery carries no message
            (status-only events)

        Raises:
            MalformedPayload: If the payload is structurally invalid
        """
        pass

    @abstractmethod
    async def send_text(self, recipient_id: str, content: str) -> DeliveryReceipt:
        """
        Send a free-text message.

        Raises:
            DeliveryFailed: If the provider did not accept the message
        """
        pass

    @abstractmethod
    async def send_template(
        self,
        recipient_id: str,
        template_name: str,
        parameters: Sequence[str] = (),
    ) -> DeliveryReceipt:
        """
        Send a parameterized template notification.

        Raises:
            DeliveryFailed: If the provider did not accept the message
        """
        pass

    @abstractmethod
    async def acknowledge_read(self, provider_message_id: str) -> bool:
        """
        Mark an inbound message as read.

        Best effort: returns False on failure instead of raising.
        """
        pass

    @abstractmethod
    def verify_webhook_handshake(
        self,
        mode: Optional[str],
        token: Optional[str],
        challenge: Optional[str],
    ) -> HandshakeResult:
        """Check a webhook subscription request against the configured token."""
        pass

    async def send(self, message: OutboundMessage) -> DeliveryReceipt:
        """Send an OutboundMessage, text or template."""
        if message.is_template:
            return await self.send_template(
                message.external_recipient_id,
                message.template_name,
                message.parameters,
            )
        return await self.send_text(message.external_recipient_id, message.content or "")

    async def aclose(self) -> None:
        """Release transport resources."""
        return None

    def get_name(self) -> str:
        """Get the human-readable name of this adapter."""
        return self.__class__.__name__.replace("Adapter", "")
