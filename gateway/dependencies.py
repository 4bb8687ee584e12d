"""
Gateway Dependencies

Builds the assistant services at startup and hands them to routes.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from cora import AssistantConfig, CoraService, ResponseGenerator
from channels import ChannelRouter, DeliveryDeduplicator, WhatsAppAdapter, WhatsAppConfig

from .config import Settings

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the routes need, created once per application."""
    settings: Settings
    cora: CoraService
    router: ChannelRouter

    async def aclose(self) -> None:
        """Release outbound HTTP clients."""
        await self.router.aclose()


def build_services(
    settings: Settings,
    generator: Optional[ResponseGenerator] = None,
    whatsapp: Optional[WhatsAppAdapter] = None,
) -> Services:
    """
    Construct the assistant and channel services from settings.

    Args:
        settings: Gateway settings
        generator: Reply generator override (defaults to settings backend)
        whatsapp: WhatsApp adapter override
    """
    config = AssistantConfig(
        backend=settings.generator_backend,
        model_name=settings.ollama_model,
        api_base_url=settings.ollama_host,
        generation_timeout=settings.generation_timeout,
        max_context_messages=settings.max_context_messages,
    )
    cora = CoraService(config=config, generator=generator)

    if settings.load_sample_documents:
        cora.knowledge.load_sample_documents()
        cora.knowledge.process_documents()

    router = ChannelRouter(
        cora.session,
        deduplicator=DeliveryDeduplicator(
            capacity=settings.dedup_capacity,
            ttl_seconds=settings.dedup_ttl_seconds or None,
        ),
        reply_delay=settings.reply_delay,
    )

    if whatsapp is not None:
        router.register_adapter(whatsapp)
    elif settings.whatsapp_enabled:
        router.register_adapter(WhatsAppAdapter(WhatsAppConfig(
            access_token=settings.whatsapp_access_token,
            phone_number_id=settings.whatsapp_phone_number_id,
            verify_token=settings.whatsapp_verify_token,
            api_url=settings.whatsapp_api_url,
            template_language=settings.whatsapp_template_language,
        )))

    logger.info(
        "Built services: backend=%s, documents=%d, channels=%s",
        config.backend,
        cora.knowledge.document_count,
        router.list_channels(),
    )
    return Services(settings=settings, cora=cora, router=router)


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the application's services."""
    return request.app.state.services


def get_cora(request: Request) -> CoraService:
    """FastAPI dependency returning the assistant service."""
    return request.app.state.services.cora


def get_router(request: Request) -> ChannelRouter:
    """FastAPI dependency returning the channel router."""
    return request.app.state.services.router
