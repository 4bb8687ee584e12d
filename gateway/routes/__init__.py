"""Gateway routes."""

from . import health, assistant, webhook

__all__ = ["health", "assistant", "webhook"]
