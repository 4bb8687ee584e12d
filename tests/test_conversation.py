"""
Tests for Conversations

Tests models, conversation store, response generators, assistant session
and the in-app service facade.
"""

import asyncio

import httpx
import pytest

from cora import (
    FALLBACK_MESSAGE,
    AssistantConfig,
    AssistantSession,
    Conversation,
    ConversationStore,
    CoraService,
    EmptyMessage,
    GenerationFailed,
    KeyedLock,
    KeywordResponseGenerator,
    KnowledgeBase,
    Message,
    MessageRole,
    OllamaResponseGenerator,
    ResponseGenerator,
    UnknownConversation,
    create_generator,
)


# =============================================================================
# TEST DOUBLES
# =============================================================================

class FailingGenerator(ResponseGenerator):
    """Generator that always fails."""

    def __init__(self, error: Exception):
        self.error = error
        self.calls = 0

    async def generate(self, history):
        self.calls += 1
        raise self.error


class SlowEchoGenerator(ResponseGenerator):
    """Generator that sleeps, then echoes the last user turn."""

    def __init__(self, delay: float = 0.01):
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate(self, history):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            return f"echo: {history[-1].content}"
        finally:
            self.in_flight -= 1


class ConstantGenerator(ResponseGenerator):
    """Generator returning a fixed reply."""

    def __init__(self, reply):
        self.reply = reply

    async def generate(self, history):
        return self.reply


# =============================================================================
# TEST MODELS
# =============================================================================

class TestMessage:
    """Test Message class."""

    def test_factories(self):
        """Test role factories."""
        assert Message.system("s").role == MessageRole.SYSTEM
        assert Message.user("u").role == MessageRole.USER
        assert Message.assistant("a").role == MessageRole.ASSISTANT

    def test_message_to_dict(self):
        """Test converting message to API dict."""
        assert Message.user("Test message").to_dict() == {"role": "user", "content": "Test message"}

    def test_message_record_round_trip(self):
        """Test full record round trip."""
        msg = Message.assistant("Hi")
        assert Message.from_record(msg.to_record()) == msg


class TestConversation:
    """Test Conversation class."""

    def test_clear_keeps_system(self):
        """Test clearing conversation keeps system message."""
        conv = Conversation()
        conv.add_message(Message.system("System"))
        conv.add_message(Message.user("Hello"))
        conv.add_message(Message.assistant("Hi"))

        conv.clear()

        assert len(conv.messages) == 1
        assert conv.system_message.role == MessageRole.SYSTEM

    def test_config_system_prompt(self):
        """Test default persona prompt."""
        prompt = AssistantConfig().get_system_prompt()
        assert "Cora" in prompt
        assert "contato@mundoemcores.com" in prompt

    def test_custom_system_prompt(self):
        """Test custom system prompt."""
        assert AssistantConfig(system_prompt="Custom").get_system_prompt() == "Custom"


# =============================================================================
# TEST CONVERSATION STORE
# =============================================================================

class TestConversationStore:
    """Test ConversationStore class."""

    def setup_method(self):
        """Set up store."""
        self.store = ConversationStore()

    def test_ensure_seeds_system_message(self):
        """Test new conversation starts with the system message."""
        self.store.ensure("c1", "persona")
        history = self.store.get("c1")

        assert len(history) == 1
        assert history[0].role == MessageRole.SYSTEM
        assert history[0].content == "persona"

    def test_ensure_is_idempotent(self):
        """Test ensure does not reset existing history."""
        self.store.ensure("c1", "persona")
        self.store.append("c1", MessageRole.USER, "hello")

        self.store.ensure("c1", "another persona")

        history = self.store.get("c1")
        assert len(history) == 2
        assert history[0].content == "persona"

    def test_append_unknown_conversation(self):
        """Test append fails for unknown conversation."""
        with pytest.raises(UnknownConversation):
            self.store.append("ghost", MessageRole.USER, "hello")
        assert not self.store.exists("ghost")

    def test_append_updates_last_updated(self):
        """Test append moves last_updated forward."""
        conv = self.store.ensure("c1", "persona")
        before = conv.last_updated
        self.store.append("c1", MessageRole.USER, "hello")
        assert conv.last_updated >= before

    def test_reset(self):
        """Test reset leaves exactly the system message."""
        self.store.ensure("c1", "persona")
        for i in range(3):
            self.store.append("c1", MessageRole.USER, f"q{i}")
            self.store.append("c1", MessageRole.ASSISTANT, f"a{i}")

        assert self.store.reset("c1") is True
        history = self.store.get("c1")
        assert len(history) == 1
        assert history[0].role == MessageRole.SYSTEM

    def test_reset_unknown(self):
        """Test reset of unknown conversation is a no-op."""
        assert self.store.reset("ghost") is False

    def test_get_returns_snapshot(self):
        """Test returned history is not affected by later appends."""
        self.store.ensure("c1", "persona")
        snapshot = self.store.get("c1")
        self.store.append("c1", MessageRole.USER, "hello")

        assert isinstance(snapshot, tuple)
        assert len(snapshot) == 1

    def test_get_unknown(self):
        """Test get fails for unknown conversation."""
        with pytest.raises(UnknownConversation):
            self.store.get("ghost")

    def test_stats(self):
        """Test store stats."""
        self.store.ensure("c1", "p")
        self.store.ensure("c2", "p")
        self.store.append("c2", MessageRole.USER, "x")

        assert self.store.get_stats() == {"active_conversations": 2, "total_messages": 3}

    def test_dump_and_load(self):
        """Test conversations survive a dump/load cycle."""
        self.store.ensure("c1", "persona", user_id="u1")
        self.store.append("c1", MessageRole.USER, "hello")
        self.store.append("c1", MessageRole.ASSISTANT, "hi")

        restored = ConversationStore()
        assert restored.load(self.store.dump()) == 1
        assert restored.get("c1") == self.store.get("c1")
        assert restored.get_conversation_info("c1")["user_id"] == "u1"

    def test_load_skips_records_without_system_message(self):
        """Test malformed records are not loaded."""
        record = {
            "conversations": {
                "bad": {
                    "conversation_id": "bad",
                    "messages": [Message.user("orphan").to_record()],
                    "created_at": "2024-01-01T00:00:00+00:00",
                    "last_updated": "2024-01-01T00:00:00+00:00",
                },
            },
        }
        assert self.store.load(record) == 0
        assert not self.store.exists("bad")


# =============================================================================
# TEST GENERATORS
# =============================================================================

class TestKeywordResponseGenerator:
    """Test KeywordResponseGenerator class."""

    def setup_method(self):
        """Set up keyword generator."""
        self.generator = KeywordResponseGenerator()

    def test_always_returns_text(self):
        """Test generator returns a non-empty string for any input."""
        for text in ("Hello", "", "???", "How do I pay?", "my child cries"):
            history = [Message.system("p"), Message.user(text)]
            reply = asyncio.run(self.generator.generate(history))
            assert isinstance(reply, str) and reply.strip()

    def test_default_reply_without_keywords(self):
        """Test fallback to the default reply."""
        history = [Message.system("p"), Message.user("Hello there")]
        assert self.generator.generate_sync(history) == self.generator.default_reply

    def test_keyword_changes_reply(self):
        """Test a keyword picks a different reply."""
        default = self.generator.generate_sync([Message.user("Hello")])
        matched = self.generator.generate_sync([Message.user("Tell me about the subscription")])
        assert matched != default

    def test_set_custom_response(self):
        """Test setting custom response."""
        self.generator.set_response("custom", "Custom response!")
        assert self.generator.generate_sync([Message.user("Something CUSTOM here")]) == "Custom response!"


class TestOllamaResponseGenerator:
    """Test OllamaResponseGenerator with a fake HTTP transport."""

    def _generator(self, handler, knowledge=None):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        config = AssistantConfig(backend="ollama", model_name="test-model")
        return OllamaResponseGenerator(config=config, knowledge=knowledge, client=client)

    def test_generate(self):
        """Test successful generation."""
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["body"] = request.read()
            return httpx.Response(200, json={"message": {"role": "assistant", "content": " Hi! "}})

        generator = self._generator(handler)
        reply = asyncio.run(generator.generate([Message.system("p"), Message.user("hello")]))

        assert reply == "Hi!"
        assert captured["url"].endswith("/api/chat")
        assert b"test-model" in captured["body"]

    def test_http_error_raises_generation_failed(self):
        """Test HTTP failures surface as GenerationFailed."""
        generator = self._generator(lambda request: httpx.Response(503))

        with pytest.raises(GenerationFailed):
            asyncio.run(generator.generate([Message.user("hello")]))

    def test_empty_reply_raises_generation_failed(self):
        """Test empty content surfaces as GenerationFailed."""
        generator = self._generator(lambda request: httpx.Response(200, json={"message": {"content": ""}}))

        with pytest.raises(GenerationFailed):
            asyncio.run(generator.generate([Message.user("hello")]))

    def test_knowledge_added_to_system_message(self):
        """Test relevant documents are appended to the persona."""
        kb = KnowledgeBase()
        kb.load_sample_documents()
        generator = self._generator(lambda request: httpx.Response(200), knowledge=kb)

        messages = generator.build_messages([
            Message.system("persona"),
            Message.user("What is serve and return?"),
        ])

        assert messages[0]["role"] == "system"
        assert messages[0]["content"].startswith("persona")
        assert "Serve and Return" in messages[0]["content"]
        assert messages[-1] == {"role": "user", "content": "What is serve and return?"}

    def test_context_window_keeps_system(self):
        """Test long histories are trimmed but keep the persona."""
        generator = self._generator(lambda request: httpx.Response(200))
        generator.config.max_context_messages = 5
        generator.config.include_knowledge_base = False

        history = [Message.system("persona")] + [Message.user(f"m{i}") for i in range(20)]
        messages = generator.build_messages(history)

        assert len(messages) == 5
        assert messages[0]["content"] == "persona"
        assert messages[-1]["content"] == "m19"

    def test_create_generator(self):
        """Test backend selection."""
        assert isinstance(create_generator(AssistantConfig(backend="keyword")), KeywordResponseGenerator)
        assert isinstance(create_generator(AssistantConfig(backend="ollama")), OllamaResponseGenerator)
        assert isinstance(create_generator(AssistantConfig(backend="bogus")), KeywordResponseGenerator)


# =============================================================================
# TEST SESSION
# =============================================================================

class TestAssistantSession:
    """Test AssistantSession class."""

    def setup_method(self):
        """Set up session with keyword generator."""
        self.store = ConversationStore()
        self.session = AssistantSession(self.store, KeywordResponseGenerator())

    def test_start_with_user_id_is_stable(self):
        """Test start("user_42") twice returns the same id."""
        first = self.session.start("user_42")
        self.store.append(first, MessageRole.USER, "keep me")
        second = self.session.start("user_42")

        assert first == second
        assert len(self.store.get(first)) == 2

    def test_start_without_user_id_mints_fresh_ids(self):
        """Test anonymous starts get distinct ids."""
        assert self.session.start() != self.session.start()

    def test_send_appends_pair(self):
        """Test send appends user and assistant turns."""
        conversation_id = self.session.start("u1")
        reply = asyncio.run(self.session.send(conversation_id, "Tell me about courses"))

        history = self.store.get(conversation_id)
        assert len(history) == 3
        assert history[1].role == MessageRole.USER
        assert history[2].role == MessageRole.ASSISTANT
        assert history[2].content == reply

    def test_n_sends_give_1_plus_2n_messages(self):
        """Test history grows by two per send, in call order."""
        conversation_id = self.session.start("u1")

        async def run():
            for i in range(5):
                await self.session.send(conversation_id, f"message {i}")

        asyncio.run(run())

        history = self.store.get(conversation_id)
        assert len(history) == 11
        user_turns = [m.content for m in history if m.role == MessageRole.USER]
        assert user_turns == [f"message {i}" for i in range(5)]
        roles = [m.role for m in history[1:]]
        assert roles == [MessageRole.USER, MessageRole.ASSISTANT] * 5

    def test_empty_message_rejected(self):
        """Test empty and whitespace messages leave history unchanged."""
        conversation_id = self.session.start("u1")

        for text in ("", "   ", "\n\t"):
            with pytest.raises(EmptyMessage):
                asyncio.run(self.session.send(conversation_id, text))

        assert len(self.store.get(conversation_id)) == 1

    def test_send_unknown_conversation(self):
        """Test sending to an unknown conversation fails cleanly."""
        with pytest.raises(UnknownConversation):
            asyncio.run(self.session.send("ghost", "hello"))
        assert not self.store.exists("ghost")

    def test_generator_failure_yields_fallback(self):
        """Test generator exception yields fallback and +2 messages."""
        generator = FailingGenerator(RuntimeError("model exploded"))
        session = AssistantSession(self.store, generator)
        conversation_id = session.start("u1")

        reply = asyncio.run(session.send(conversation_id, "hello"))

        assert reply == FALLBACK_MESSAGE
        history = self.store.get(conversation_id)
        assert len(history) == 3
        assert history[2].role == MessageRole.ASSISTANT
        assert history[2].content == FALLBACK_MESSAGE

    def test_generation_failed_yields_fallback(self):
        """Test GenerationFailed is recovered locally."""
        session = AssistantSession(self.store, FailingGenerator(GenerationFailed("offline")))
        conversation_id = session.start("u1")

        assert asyncio.run(session.send(conversation_id, "hello")) == FALLBACK_MESSAGE

    def test_blank_reply_yields_fallback(self):
        """Test blank generator output is replaced by the fallback."""
        session = AssistantSession(self.store, ConstantGenerator("   "))
        conversation_id = session.start("u1")

        assert asyncio.run(session.send(conversation_id, "hello")) == FALLBACK_MESSAGE

    def test_timeout_yields_fallback(self):
        """Test slow generation is bounded by the timeout."""
        config = AssistantConfig(generation_timeout=0.05)
        session = AssistantSession(self.store, SlowEchoGenerator(delay=1.0), config)
        conversation_id = session.start("u1")

        assert asyncio.run(session.send(conversation_id, "hello")) == FALLBACK_MESSAGE
        assert len(self.store.get(conversation_id)) == 3

    def test_cancellation_records_fallback(self):
        """Test a cancelled send still leaves a complete turn pair."""
        session = AssistantSession(self.store, SlowEchoGenerator(delay=5.0))
        conversation_id = session.start("u1")

        async def run():
            task = asyncio.ensure_future(session.send(conversation_id, "hello"))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(run())

        history = self.store.get(conversation_id)
        assert [m.role for m in history] == [MessageRole.SYSTEM, MessageRole.USER, MessageRole.ASSISTANT]
        assert history[2].content == FALLBACK_MESSAGE
        assert not session.is_busy(conversation_id)

    def test_same_conversation_is_serialized(self):
        """Test concurrent sends on one conversation never interleave."""
        generator = SlowEchoGenerator(delay=0.01)
        session = AssistantSession(self.store, generator)
        conversation_id = session.start("u1")

        async def run():
            await asyncio.gather(*(session.send(conversation_id, f"m{i}") for i in range(10)))

        asyncio.run(run())

        history = self.store.get(conversation_id)
        assert len(history) == 21
        assert generator.max_in_flight == 1
        for user, assistant in zip(history[1::2], history[2::2]):
            assert user.role == MessageRole.USER
            assert assistant.content == f"echo: {user.content}"

    def test_different_conversations_run_concurrently(self):
        """Test sends on different conversations overlap."""
        generator = SlowEchoGenerator(delay=0.05)
        session = AssistantSession(self.store, generator)
        ids = [session.start(f"user_{i}") for i in range(5)]

        async def run():
            await asyncio.gather(*(session.send(cid, "hello") for cid in ids))

        asyncio.run(run())

        assert generator.max_in_flight == 5
        for cid in ids:
            assert len(self.store.get(cid)) == 3

    def test_clear(self):
        """Test clear delegates to reset."""
        conversation_id = self.session.start("u1")
        asyncio.run(self.session.send(conversation_id, "hello"))

        assert asyncio.run(self.session.clear(conversation_id)) is True
        assert len(self.store.get(conversation_id)) == 1
        assert asyncio.run(self.session.clear("ghost")) is False

    def test_clear_waits_for_in_flight_send(self):
        """Test clearing during a slow send never leaves an unpaired reply."""
        session = AssistantSession(self.store, SlowEchoGenerator(delay=0.05))
        conversation_id = session.start("u1")

        async def run():
            task = asyncio.ensure_future(session.send(conversation_id, "hello"))
            await asyncio.sleep(0.01)
            assert session.is_busy(conversation_id)
            cleared = await session.clear(conversation_id)
            await task
            return cleared

        assert asyncio.run(run()) is True

        history = self.store.get(conversation_id)
        assert [m.role for m in history] == [MessageRole.SYSTEM]

    def test_send_after_clear_keeps_pairs(self):
        """Test a send queued behind a clear starts from the system turn."""
        session = AssistantSession(self.store, SlowEchoGenerator(delay=0.02))
        conversation_id = session.start("u1")

        async def run():
            first = asyncio.ensure_future(session.send(conversation_id, "one"))
            await asyncio.sleep(0.005)
            clearing = asyncio.ensure_future(session.clear(conversation_id))
            await asyncio.sleep(0)
            second = asyncio.ensure_future(session.send(conversation_id, "two"))
            await asyncio.gather(first, clearing, second)

        asyncio.run(run())

        history = self.store.get(conversation_id)
        assert [m.role for m in history] == [MessageRole.SYSTEM, MessageRole.USER, MessageRole.ASSISTANT]
        assert history[1].content == "two"
        assert history[2].content == "echo: two"


class TestKeyedLock:
    """Test KeyedLock class."""

    def test_idle_locks_are_dropped(self):
        """Test lock table is empty once holders leave."""
        locks = KeyedLock()

        async def run():
            async with locks.hold("a"):
                assert locks.locked("a")
                assert len(locks) == 1

        asyncio.run(run())
        assert len(locks) == 0
        assert not locks.locked("a")


# =============================================================================
# TEST SERVICE
# =============================================================================

class TestCoraService:
    """Test CoraService facade."""

    def setup_method(self):
        """Set up service with sample knowledge."""
        self.service = CoraService()
        self.service.knowledge.load_sample_documents()

    def test_in_app_flow(self):
        """Test start, send, clear through the facade."""
        conversation_id = self.service.start_conversation("user_42")
        reply = asyncio.run(self.service.send_user_message(conversation_id, "How do courses work?"))

        assert reply
        assert len(self.service.get_messages(conversation_id)) == 3
        assert asyncio.run(self.service.clear_conversation(conversation_id)) is True
        assert len(self.service.get_messages(conversation_id)) == 1

    def test_search_knowledge(self):
        """Test knowledge search through the facade."""
        results = self.service.search_knowledge("serve and return", "child_dev")
        assert len(results) == 1

    def test_stats(self):
        """Test combined stats."""
        self.service.start_conversation("u1")
        stats = self.service.get_stats()

        assert stats["backend"] == "keyword"
        assert stats["knowledge"]["total_documents"] == 7
        assert stats["conversations"]["active_conversations"] == 1

    def test_dump_and_load(self):
        """Test service snapshot restores both stores."""
        conversation_id = self.service.start_conversation("u1")
        asyncio.run(self.service.send_user_message(conversation_id, "hello"))

        restored = CoraService()
        restored.load(self.service.dump())

        assert len(restored.get_messages(conversation_id)) == 3
        assert restored.knowledge.document_count == 7


# =============================================================================
# RUN TESTS
# =============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v"])
