"""
Cora Errors

Typed failures raised by the assistant core and the channel layer.
"""

from typing import Optional


class CoraError(Exception):
    """Base class for all Cora failures."""

    code = "CoraError"

    def __init__(self, message: str = "", detail: Optional[str] = None):
        super().__init__(message or self.code)
        self.detail = detail

    def to_dict(self) -> dict:
        """Convert to dictionary for result records."""
        return {"error": self.code, "detail": str(self)}


class InvalidCategory(CoraError):
    """A document or search referenced a category that does not exist."""

    code = "InvalidCategory"

    def __init__(self, category_id: str):
        super().__init__(f"Unknown category '{category_id}'")
        self.category_id = category_id


class UnknownConversation(CoraError):
    """A conversation id was used before the conversation was created."""

    code = "UnknownConversation"

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation '{conversation_id}' not found")
        self.conversation_id = conversation_id


class EmptyMessage(CoraError):
    """User text was empty or whitespace only."""

    code = "EmptyMessage"

    def __init__(self):
        super().__init__("Message text must not be empty")


class GenerationFailed(CoraError):
    """The response generator could not produce a reply."""

    code = "GenerationFailed"


class MalformedPayload(CoraError):
    """An inbound webhook payload is structurally invalid."""

    code = "MalformedPayload"


class DeliveryFailed(CoraError):
    """The channel provider rejected or failed an outbound send."""

    code = "DeliveryFailed"


class UnknownChannel(CoraError):
    """No adapter is registered for a channel kind."""

    code = "UnknownChannel"

    def __init__(self, channel_kind: str):
        super().__init__(f"No adapter registered for channel '{channel_kind}'")
        self.channel_kind = channel_kind
