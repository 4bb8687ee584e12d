"""
WhatsApp Adapter

WhatsApp Business Cloud API integration: webhook parsing, text and
template sends, read receipts and webhook verification.
"""

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import httpx

from cora.errors import DeliveryFailed, MalformedPayload

from .base import ChannelAdapter
from .models import ChannelKind, DeliveryReceipt, HandshakeResult, InboundMessage

logger = logging.getLogger(__name__)

WHATSAPP_API_URL = "https://graph.facebook.com/v17.0"


@dataclass
class WhatsAppConfig:
    """Credentials and options for the WhatsApp Business API."""
    access_token: str = ""
    phone_number_id: str = ""
    verify_token: str = ""
    api_url: str = WHATSAPP_API_URL
    template_language: str = "pt_BR"
    timeout: float = 10.0


def _first(container: Dict[str, Any], key: str, what: str) -> Dict[str, Any]:
    """Get the first object of a non-empty list field, or fail."""
    items = container.get(key)
    if not isinstance(items, list) or not items:
        raise MalformedPayload(f"Missing or empty '{key}' in {what}")
    first = items[0]
    if not isinstance(first, dict):
        raise MalformedPayload(f"Invalid '{key}' item in {what}")
    return first


def _text(value: Any, what: str) -> str:
    if not isinstance(value, str) or not value:
        raise MalformedPayload(f"Missing {what}")
    return value


class WhatsAppAdapter(ChannelAdapter):
    """
    WhatsApp Business channel adapter.

    Outbound calls go to `{api_url}/{phone_number_id}/messages` with a
    bearer token.
    """

    kind = ChannelKind.WHATSAPP.value

    def __init__(
        self,
        config: Optional[WhatsAppConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the adapter.

        Args:
            config: API credentials and options
            client: HTTP client; one is created on first use if omitted
        """
        self.config = config or WhatsAppConfig()
        self.messages_endpoint = (
            f"{self.config.api_url.rstrip('/')}/{self.config.phone_number_id}/messages"
        )
        self._client = client
        self._owns_client = client is None

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.access_token}",
            "Content-Type": "application/json",
        }

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout)
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # INBOUND
    # =========================================================================

    def parse_inbound(self, payload: Any) -> Optional[InboundMessage]:
        """Parse a WhatsApp webhook delivery into an InboundMessage."""
        if not isinstance(payload, dict):
            raise MalformedPayload("Payload is not a JSON object")

        entry = _first(payload, "entry", "payload")
        change = _first(entry, "changes", "entry")

        value = change.get("value")
        if not isinstance(value, dict):
            raise MalformedPayload("Missing 'value' in change")

        messages = value.get("messages")
        if not messages:
            # Delivery and read receipts arrive with statuses and no messages
            if value.get("statuses"):
                return None
            raise MalformedPayload("No messages in webhook")

        message = _first(value, "messages", "value")
        sender = self._sender(value, message)
        message_id = _text(message.get("id"), "message id")
        message_type = message.get("type") or "unknown"
        if not isinstance(message_type, str):
            raise MalformedPayload("Invalid message type")

        return InboundMessage(
            channel_kind=self.kind,
            external_sender_id=sender,
            content=self._content(message, message_type),
            provider_message_id=message_id,
            timestamp=self._timestamp(message.get("timestamp")),
            message_type=message_type,
        )

    @staticmethod
    def _sender(value: Dict[str, Any], message: Dict[str, Any]) -> str:
        contacts = value.get("contacts")
        if isinstance(contacts, list) and contacts and isinstance(contacts[0], dict):
            wa_id = contacts[0].get("wa_id")
            if isinstance(wa_id, str) and wa_id:
                return wa_id
        return _text(message.get("from"), "sender id")

    @staticmethod
    def _content(message: Dict[str, Any], message_type: str) -> str:
        if message_type == "text":
            text = message.get("text")
            if not isinstance(text, dict):
                raise MalformedPayload("Missing text body")
            return _text(text.get("body"), "text body")

        if message_type == "interactive":
            interactive = message.get("interactive")
            if not isinstance(interactive, dict):
                raise MalformedPayload("Missing interactive body")
            reply_type = interactive.get("type")
            if not isinstance(reply_type, str) or reply_type not in ("button_reply", "list_reply"):
                raise MalformedPayload(f"Unsupported interactive type {reply_type!r}")
            reply = interactive.get(reply_type)
            if not isinstance(reply, dict):
                raise MalformedPayload(f"Missing {reply_type} body")
            return _text(reply.get("title"), "interactive reply title")

        return f"[{message_type} message]"

    @staticmethod
    def _timestamp(raw: Any) -> datetime:
        try:
            return datetime.fromtimestamp(int(raw), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            return datetime.now(timezone.utc)

    def verify_webhook_handshake(
        self,
        mode: Optional[str],
        token: Optional[str],
        challenge: Optional[str],
    ) -> HandshakeResult:
        """Verify the webhook subscription token."""
        expected = self.config.verify_token
        if (
            mode == "subscribe"
            and expected
            and token is not None
            and hmac.compare_digest(token.encode(), expected.encode())
        ):
            return HandshakeResult(accepted=True, challenge=challenge)

        logger.warning("Rejected webhook handshake (mode=%r)", mode)
        return HandshakeResult(accepted=False)

    # =========================================================================
    # OUTBOUND
    # =========================================================================

    async def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._get_client().post(
                self.messages_endpoint,
                json=body,
                headers=self.headers,
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise DeliveryFailed(
                f"WhatsApp API returned {e.response.status_code}",
                detail=e.response.text,
            ) from e
        except httpx.HTTPError as e:
            raise DeliveryFailed(f"WhatsApp API unreachable: {e}") from e
        except ValueError as e:
            raise DeliveryFailed("WhatsApp API returned invalid JSON") from e

    @staticmethod
    def _receipt(data: Dict[str, Any], recipient_id: str) -> DeliveryReceipt:
        messages = data.get("messages") if isinstance(data, dict) else None
        if not isinstance(messages, list) or not messages or not isinstance(messages[0], dict):
            raise DeliveryFailed("WhatsApp API response has no message id")
        message_id = messages[0].get("id")
        if not message_id:
            raise DeliveryFailed("WhatsApp API response has no message id")
        return DeliveryReceipt(provider_message_id=message_id, recipient_id=recipient_id)

    async def send_text(self, recipient_id: str, content: str) -> DeliveryReceipt:
        """Send a text message."""
        data = await self._post({
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient_id,
            "type": "text",
            "text": {"body": content},
        })
        receipt = self._receipt(data, recipient_id)
        logger.info("Sent WhatsApp text %s", receipt.provider_message_id)
        return receipt

    @staticmethod
    def build_components(parameters: Sequence[str]) -> List[Dict[str, Any]]:
        """Build template components from positional body parameters."""
        if not parameters:
            return []
        return [{
            "type": "body",
            "parameters": [{"type": "text", "text": str(p)} for p in parameters],
        }]

    async def send_template(
        self,
        recipient_id: str,
        template_name: str,
        parameters: Sequence[str] = (),
    ) -> DeliveryReceipt:
        """Send a template message."""
        data = await self._post({
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient_id,
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": self.config.template_language},
                "components": self.build_components(parameters),
            },
        })
        receipt = self._receipt(data, recipient_id)
        logger.info("Sent WhatsApp template %s (%s)", template_name, receipt.provider_message_id)
        return receipt

    async def acknowledge_read(self, provider_message_id: str) -> bool:
        """Mark a message as read."""
        try:
            await self._post({
                "messaging_product": "whatsapp",
                "status": "read",
                "message_id": provider_message_id,
            })
            return True
        except DeliveryFailed as e:
            logger.warning("Could not mark %s as read: %s", provider_message_id, e)
            return False
