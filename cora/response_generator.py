"""
Response Generators

Pluggable capability that turns conversation history into Cora's next reply.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from .errors import GenerationFailed
from .knowledge_base import KnowledgeBase
from .models import AssistantConfig, Message, MessageRole

logger = logging.getLogger(__name__)


class ResponseGenerator(ABC):
    """Abstract base class for response generators."""

    @abstractmethod
    async def generate(self, history: Sequence[Message]) -> str:
        """
        Produce the assistant's next reply.

        Args:
            history: Ordered messages, system message first

        Returns:
            The reply text

        Raises:
            GenerationFailed: If no reply could be produced
        """
        pass


def last_user_message(history: Sequence[Message]) -> str:
    """Get the content of the most recent user turn."""
    for message in reversed(history):
        if message.role == MessageRole.USER:
            return message.content
    return ""


class KeywordResponseGenerator(ResponseGenerator):
    """
    Keyword-rule stand-in for a language model.

    Picks a canned reply from the first rule whose keywords appear in the
    last user message. Deterministic, never calls out.
    """

    DEFAULT_RULES: List[Tuple[Tuple[str, ...], str]] = [
        (
            ("development", "brain", "child", "baby"),
            "Brain development in the first years of life is crucial. Research from the "
            "Harvard Center on the Developing Child shows that more than one million new "
            "neural connections form every second in the early years. Responsive "
            "interactions and enriching experiences are key to healthy development.",
        ),
        (
            ("app", "platform", "application"),
            "The MundoemCores.com app offers courses, playlists and e-books to help parents "
            "raise their children. Free content and the first lesson of every course are "
            "available at no cost. Full access requires a subscription.",
        ),
        (
            ("course", "lesson", "class"),
            "We have courses on child development, nonviolent communication, positive "
            "discipline and more. Each course has video lessons, complementary PDF material "
            "and practical exercises. The first lesson of every course is free.",
        ),
        (
            ("pay", "subscription", "price", "plan"),
            "MundoemCores.com works with subscriptions through the Hotmart platform. For "
            "prices and payment options, check the plans section in the app or e-mail "
            "contato@mundoemcores.com.",
        ),
    ]

    DEFAULT_REPLY = (
        "I'm here to help with your questions about parenting and using the "
        "MundoemCores.com platform. How can I help you today? Ask me about child "
        "development, our courses or how to use the app!"
    )

    def __init__(self, rules: Optional[List[Tuple[Tuple[str, ...], str]]] = None):
        """
        Initialize keyword generator.

        Args:
            rules: (keywords, reply) pairs checked in order
        """
        self._rules: List[Tuple[Tuple[str, ...], str]] = list(rules or self.DEFAULT_RULES)
        self.default_reply = self.DEFAULT_REPLY

    async def generate(self, history: Sequence[Message]) -> str:
        """Generate a keyword-matched reply."""
        return self.generate_sync(history)

    def generate_sync(self, history: Sequence[Message]) -> str:
        """Synchronous version of generate."""
        text = last_user_message(history).lower()

        for keywords, reply in self._rules:
            if any(keyword in text for keyword in keywords):
                return reply

        return self.default_reply

    def set_response(self, keyword: str, response: str) -> None:
        """Add a rule for a single keyword, checked before the built-in rules."""
        self._rules.insert(0, ((keyword.lower(),), response))


class OllamaResponseGenerator(ResponseGenerator):
    """
    Ollama chat backend.

    Connects to an Ollama instance for inference. When a knowledge base is
    given, relevant documents are appended to the system message.
    """

    def __init__(
        self,
        config: Optional[AssistantConfig] = None,
        knowledge: Optional[KnowledgeBase] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Ollama generator.

        Args:
            config: Assistant configuration (model, sampling, base URL)
            knowledge: Knowledge base used for prompt context
            client: Shared HTTP client; one is created per call if omitted
        """
        self.config = config or AssistantConfig(backend="ollama")
        self.knowledge = knowledge
        self.base_url = self.config.api_base_url.rstrip("/")
        self.chat_endpoint = f"{self.base_url}/api/chat"
        self._client = client

    def build_messages(self, history: Sequence[Message]) -> List[Dict[str, Any]]:
        """Build the API message list with context."""
        system = [m for m in history if m.role == MessageRole.SYSTEM][:1]
        others = [m for m in history if m.role != MessageRole.SYSTEM]

        # Always keep the persona, then the most recent turns
        keep = max(self.config.max_context_messages - len(system), 1)
        messages = [m.to_dict() for m in system + others[-keep:]]

        if self.config.include_knowledge_base and self.knowledge is not None and messages:
            context = self.knowledge.get_context_for_query(last_user_message(history))
            if context and messages[0]["role"] == MessageRole.SYSTEM.value:
                messages[0] = {
                    "role": MessageRole.SYSTEM.value,
                    "content": f"{messages[0]['content']}\n\n{context}",
                }

        return messages

    def _payload(self, history: Sequence[Message]) -> Dict[str, Any]:
        return {
            "model": self.config.model_name,
            "messages": self.build_messages(history),
            "stream": False,
            "options": {
                "temperature": self.config.temperature,
                "top_p": self.config.top_p,
                "num_predict": self.config.max_tokens,
            },
        }

    async def generate(self, history: Sequence[Message]) -> str:
        """Generate response using Ollama."""
        payload = self._payload(history)

        try:
            if self._client is not None:
                response = await self._client.post(self.chat_endpoint, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.config.generation_timeout) as client:
                    response = await client.post(self.chat_endpoint, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error("Ollama request failed: %s", e)
            raise GenerationFailed(f"Language model unavailable: {e}") from e
        except ValueError as e:
            raise GenerationFailed("Language model returned invalid JSON") from e

        content = (data.get("message") or {}).get("content", "")
        if not isinstance(content, str) or not content.strip():
            raise GenerationFailed("Language model returned an empty reply")

        return content.strip()

    async def is_available(self) -> bool:
        """Check if Ollama is reachable."""
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                return response.status_code == 200
        except httpx.HTTPError:
            return False


def create_generator(
    config: AssistantConfig,
    knowledge: Optional[KnowledgeBase] = None,
) -> ResponseGenerator:
    """Create the generator selected by `config.backend`."""
    if config.backend == "ollama":
        return OllamaResponseGenerator(config=config, knowledge=knowledge)
    if config.backend != "keyword":
        logger.warning("Unknown generator backend %r, using keyword rules", config.backend)
    return KeywordResponseGenerator()
