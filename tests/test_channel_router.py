"""
Tests for Channel Router

Tests inbound routing, delivery deduplication, identity mapping and
system-initiated sends using a recording fake adapter.
"""

import asyncio

import pytest

from channels import (
    ChannelAdapter,
    ChannelRouter,
    DeliveryReceipt,
    HandshakeResult,
    InboundMessage,
    WhatsAppAdapter,
    WhatsAppConfig,
)
from cora import (
    FALLBACK_MESSAGE,
    AssistantSession,
    ConversationStore,
    KeywordResponseGenerator,
    MessageRole,
    ResponseGenerator,
)
from cora.errors import DeliveryFailed, MalformedPayload


# =============================================================================
# TEST DOUBLES
# =============================================================================

class FakeAdapter(ChannelAdapter):
    """Adapter that reads plain dict payloads and records sends."""

    kind = "fake"

    def __init__(self, fail_send=False, fail_ack=False):
        self.fail_send = fail_send
        self.fail_ack = fail_ack
        self.sent = []
        self.templates = []
        self.acks = []

    def parse_inbound(self, payload):
        if payload.get("status_only"):
            return None
        if "id" not in payload or "from" not in payload:
            raise MalformedPayload("missing id or sender")
        return InboundMessage(
            channel_kind=self.kind,
            external_sender_id=payload["from"],
            content=payload.get("text", ""),
            provider_message_id=payload["id"],
        )

    async def send_text(self, recipient_id, content):
        if self.fail_send:
            raise DeliveryFailed("provider down")
        self.sent.append((recipient_id, content))
        return DeliveryReceipt(provider_message_id=f"out.{len(self.sent)}", recipient_id=recipient_id)

    async def send_template(self, recipient_id, template_name, parameters=()):
        if self.fail_send:
            raise DeliveryFailed("provider down")
        self.templates.append((recipient_id, template_name, tuple(parameters)))
        return DeliveryReceipt(provider_message_id=f"tpl.{len(self.templates)}", recipient_id=recipient_id)

    async def acknowledge_read(self, provider_message_id):
        if self.fail_ack:
            raise RuntimeError("ack exploded")
        self.acks.append(provider_message_id)
        return True

    def verify_webhook_handshake(self, mode, token, challenge):
        return HandshakeResult(accepted=token == "ok", challenge=challenge)


class CountingGenerator(ResponseGenerator):
    """Generator that counts calls."""

    def __init__(self):
        self.calls = 0

    async def generate(self, history):
        self.calls += 1
        return f"reply {self.calls}"


def inbound(message_id="m1", sender="5511", text="Hello"):
    return {"id": message_id, "from": sender, "text": text}


# =============================================================================
# TEST INBOUND
# =============================================================================

class TestHandleInbound:
    """Test ChannelRouter.handle_inbound."""

    def setup_method(self):
        """Set up router with fake adapter."""
        self.store = ConversationStore()
        self.generator = CountingGenerator()
        self.session = AssistantSession(self.store, self.generator)
        self.adapter = FakeAdapter()
        self.router = ChannelRouter(self.session, [self.adapter])

    def test_inbound_is_answered(self):
        """Test message is answered over the same channel."""
        result = asyncio.run(self.router.handle_inbound("fake", inbound()))

        assert result.success is True
        assert result.external_sender_id == "5511"
        assert result.message_received == "Hello"
        assert result.outbound_provider_message_id == "out.1"
        assert self.adapter.sent == [("5511", "reply 1")]
        assert self.adapter.acks == ["m1"]

        history = self.store.get(result.conversation_id)
        assert [m.role for m in history] == [MessageRole.SYSTEM, MessageRole.USER, MessageRole.ASSISTANT]

    def test_duplicate_delivery_answered_once(self):
        """Test a retried delivery does not reach the assistant again."""
        first = asyncio.run(self.router.handle_inbound("fake", inbound()))
        second = asyncio.run(self.router.handle_inbound("fake", inbound()))

        assert first.success and not first.duplicate
        assert second.success and second.duplicate
        assert second.conversation_id == first.conversation_id
        assert self.generator.calls == 1
        assert len(self.adapter.sent) == 1
        assert len(self.store.get(first.conversation_id)) == 3

    def test_concurrent_duplicates_answered_once(self):
        """Test simultaneous retries are answered once."""
        async def run():
            return await asyncio.gather(*(self.router.handle_inbound("fake", inbound()) for _ in range(5)))

        results = asyncio.run(run())

        assert sum(1 for r in results if r.duplicate) == 4
        assert self.generator.calls == 1
        assert len(self.adapter.sent) == 1

    def test_malformed_payload(self):
        """Test malformed payload fails without sending."""
        result = asyncio.run(self.router.handle_inbound("fake", {"text": "no id"}))

        assert result.success is False
        assert result.error == "MalformedPayload"
        assert self.adapter.sent == []
        assert self.generator.calls == 0

    def test_unknown_channel(self):
        """Test delivery for an unregistered channel fails cleanly."""
        result = asyncio.run(self.router.handle_inbound("telegram", inbound()))

        assert result.success is False
        assert result.error == "UnknownChannel"

    def test_status_only_delivery_ignored(self):
        """Test deliveries without a message are acknowledged and ignored."""
        result = asyncio.run(self.router.handle_inbound("fake", {"status_only": True}))

        assert result.success is True
        assert result.ignored is True
        assert self.generator.calls == 0

    def test_identity_mapping_is_stable(self):
        """Test same sender keeps one conversation."""
        first = asyncio.run(self.router.handle_inbound("fake", inbound("m1")))
        second = asyncio.run(self.router.handle_inbound("fake", inbound("m2", text="Again")))

        assert first.conversation_id == second.conversation_id
        assert first.conversation_id == "fake_5511"
        assert len(self.store.get(first.conversation_id)) == 5

    def test_different_senders_get_different_conversations(self):
        """Test identities do not share history."""
        a = asyncio.run(self.router.handle_inbound("fake", inbound("m1", sender="A")))
        b = asyncio.run(self.router.handle_inbound("fake", inbound("m2", sender="B")))

        assert a.conversation_id != b.conversation_id
        assert len(self.store.get(a.conversation_id)) == 3
        assert len(self.store.get(b.conversation_id)) == 3

    def test_empty_message_fails(self):
        """Test blank inbound text is rejected without a reply."""
        result = asyncio.run(self.router.handle_inbound("fake", inbound(text="   ")))

        assert result.success is False
        assert result.error == "EmptyMessage"
        assert self.adapter.sent == []

    def test_delivery_failure(self):
        """Test failed reply send is reported, history kept."""
        adapter = FakeAdapter(fail_send=True)
        router = ChannelRouter(self.session, [adapter])

        result = asyncio.run(router.handle_inbound("fake", inbound()))

        assert result.success is False
        assert result.error == "DeliveryFailed"
        assert len(self.store.get("fake_5511")) == 3

    def test_read_receipt_failure_is_not_fatal(self):
        """Test a failing read receipt does not stop the reply."""
        adapter = FakeAdapter(fail_ack=True)
        router = ChannelRouter(self.session, [adapter])

        result = asyncio.run(router.handle_inbound("fake", inbound()))

        assert result.success is True
        assert len(adapter.sent) == 1

    def test_generator_failure_sends_fallback(self):
        """Test generator failure still answers with the fallback."""
        class Broken(ResponseGenerator):
            async def generate(self, history):
                raise RuntimeError("boom")

        router = ChannelRouter(AssistantSession(self.store, Broken()), [self.adapter])
        result = asyncio.run(router.handle_inbound("fake", inbound()))

        assert result.success is True
        assert self.adapter.sent == [("5511", FALLBACK_MESSAGE)]

    def test_clear_identity(self):
        """Test clearing a channel user's history."""
        result = asyncio.run(self.router.handle_inbound("fake", inbound()))

        assert asyncio.run(self.router.clear_identity("fake", "5511")) is True
        assert len(self.store.get(result.conversation_id)) == 1
        assert asyncio.run(self.router.clear_identity("fake", "nobody")) is False

    def test_hostile_whatsapp_payload_is_malformed(self):
        """Test a non-string interactive type yields a failure result."""
        router = ChannelRouter(self.session, [WhatsAppAdapter(WhatsAppConfig(phone_number_id="1"))])
        payload = {
            "entry": [{
                "changes": [{
                    "value": {
                        "messages": [{
                            "from": "5511",
                            "id": "wamid.x",
                            "type": "interactive",
                            "interactive": {"type": ["button_reply"]},
                        }],
                    },
                }],
            }],
        }

        result = asyncio.run(router.handle_inbound("whatsapp", payload))

        assert result.success is False
        assert result.error == "MalformedPayload"
        assert self.generator.calls == 0

    def test_unexpected_parse_error_is_malformed(self):
        """Test adapter bugs during parsing become a failure result."""
        class CrashingAdapter(FakeAdapter):
            def parse_inbound(self, payload):
                return payload["entry"][0]

        adapter = CrashingAdapter()
        router = ChannelRouter(self.session, [adapter])

        result = asyncio.run(router.handle_inbound("fake", {"entry": []}))

        assert result.success is False
        assert result.error == "MalformedPayload"
        assert adapter.sent == []

    def test_result_to_dict(self):
        """Test inbound result serialization."""
        ok = asyncio.run(self.router.handle_inbound("fake", inbound())).to_dict()
        bad = asyncio.run(self.router.handle_inbound("fake", {})).to_dict()

        assert ok["success"] is True
        assert ok["outbound_provider_message_id"] == "out.1"
        assert bad == {"success": False, "error": "MalformedPayload", "detail": "missing id or sender"}


# =============================================================================
# TEST OUTBOUND
# =============================================================================

class TestOutbound:
    """Test system-initiated sends."""

    def setup_method(self):
        """Set up router with fake adapter."""
        self.store = ConversationStore()
        self.adapter = FakeAdapter()
        self.router = ChannelRouter(
            AssistantSession(self.store, KeywordResponseGenerator()),
            [self.adapter],
        )

    def test_send_proactive(self):
        """Test proactive send is delivered and not recorded."""
        result = asyncio.run(self.router.send_proactive("fake", "5511", "Your course starts today"))

        assert result.success is True
        assert result.provider_message_id == "out.1"
        assert self.adapter.sent == [("5511", "Your course starts today")]
        assert self.store.get_stats()["active_conversations"] == 0

    def test_send_template(self):
        """Test template notification."""
        result = asyncio.run(
            self.router.send_template_notification("fake", "5511", "new_course", ["Sleep 101"])
        )

        assert result.to_dict() == {"success": True, "message_id": "tpl.1"}
        assert self.adapter.templates == [("5511", "new_course", ("Sleep 101",))]

    def test_send_welcome(self):
        """Test welcome message greets by name."""
        asyncio.run(self.router.send_welcome_message("fake", "5511", "Ana"))

        recipient, content = self.adapter.sent[0]
        assert recipient == "5511"
        assert content.startswith("Hello Ana!")
        assert "Cora" in content

    def test_send_unknown_channel(self):
        """Test sending over an unregistered channel fails."""
        result = asyncio.run(self.router.send_proactive("sms", "5511", "hi"))

        assert result.success is False
        assert result.error == "UnknownChannel"

    def test_send_delivery_failure(self):
        """Test failed send is reported."""
        router = ChannelRouter(
            AssistantSession(self.store, KeywordResponseGenerator()),
            [FakeAdapter(fail_send=True)],
        )
        result = asyncio.run(router.send_template_notification("fake", "5511", "t"))

        assert result.success is False
        assert result.error == "DeliveryFailed"

    def test_stats(self):
        """Test router stats."""
        asyncio.run(self.router.handle_inbound("fake", inbound()))

        assert self.router.get_stats() == {
            "channels": ["fake"],
            "mapped_identities": 1,
            "remembered_deliveries": 1,
        }


# =============================================================================
# RUN TESTS
# =============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v"])
