"""
Channel Routes

Webhook boundary for external messaging channels and endpoints for
system-initiated messages.
"""

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from channels import ChannelRouter

from ..dependencies import get_router

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# REQUEST MODELS
# =============================================================================

class ProactiveMessageRequest(BaseModel):
    """System-initiated text message."""
    recipient_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, max_length=4096)


class TemplateMessageRequest(BaseModel):
    """Template notification."""
    recipient_id: str = Field(..., min_length=1)
    template_name: str = Field(..., min_length=1)
    parameters: List[str] = Field(default_factory=list)


class WelcomeMessageRequest(BaseModel):
    """Welcome message for a new user."""
    recipient_id: str = Field(..., min_length=1)
    user_name: Optional[str] = None


def _require_channel(channel_router: ChannelRouter, channel: str) -> None:
    if channel not in channel_router.list_channels():
        raise HTTPException(status_code=404, detail=f"Channel '{channel}' not configured")


async def _process_delivery(channel_router: ChannelRouter, channel: str, payload: Any) -> None:
    result = await channel_router.handle_inbound(channel, payload)
    if result.success:
        logger.info("Processed %s delivery: %s", channel, result.to_dict())
    else:
        logger.error("Failed %s delivery: %s", channel, result.to_dict())


# =============================================================================
# WEBHOOK
# =============================================================================

@router.get("/webhook/{channel}", response_class=PlainTextResponse)
async def verify_webhook(
    channel: str,
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    channel_router: ChannelRouter = Depends(get_router),
):
    """Answer the provider's webhook subscription handshake."""
    _require_channel(channel_router, channel)

    result = channel_router.get_adapter(channel).verify_webhook_handshake(mode, token, challenge)
    if not result.accepted:
        raise HTTPException(status_code=403, detail="Verification failed")

    return PlainTextResponse(result.challenge or "")


@router.post("/webhook/{channel}")
async def receive_webhook(
    channel: str,
    background_tasks: BackgroundTasks,
    payload: Any = Body(...),
    channel_router: ChannelRouter = Depends(get_router),
):
    """
    Receive a webhook delivery.

    Acknowledged immediately; the message is answered in the background.
    """
    _require_channel(channel_router, channel)

    background_tasks.add_task(_process_delivery, channel_router, channel, payload)
    return {"status": "received"}


# =============================================================================
# OUTBOUND
# =============================================================================

@router.post("/channels/{channel}/send")
async def send_proactive(
    channel: str,
    request: ProactiveMessageRequest,
    channel_router: ChannelRouter = Depends(get_router),
):
    """Send a system-initiated message."""
    result = await channel_router.send_proactive(channel, request.recipient_id, request.content)
    return result.to_dict()


@router.post("/channels/{channel}/template")
async def send_template(
    channel: str,
    request: TemplateMessageRequest,
    channel_router: ChannelRouter = Depends(get_router),
):
    """Send a template notification."""
    result = await channel_router.send_template_notification(
        channel,
        request.recipient_id,
        request.template_name,
        request.parameters,
    )
    return result.to_dict()


@router.post("/channels/{channel}/welcome")
async def send_welcome(
    channel: str,
    request: WelcomeMessageRequest,
    channel_router: ChannelRouter = Depends(get_router),
):
    """Send the welcome message to a new user."""
    result = await channel_router.send_welcome_message(channel, request.recipient_id, request.user_name)
    return result.to_dict()


@router.delete("/channels/{channel}/conversations/{external_id}")
async def clear_channel_conversation(
    channel: str,
    external_id: str,
    channel_router: ChannelRouter = Depends(get_router),
):
    """Clear the conversation of a channel user."""
    if not await channel_router.clear_identity(channel, external_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"success": True, "external_id": external_id}


@router.get("/channels/stats")
async def channel_stats(channel_router: ChannelRouter = Depends(get_router)):
    """Get channel routing statistics."""
    return channel_router.get_stats()
