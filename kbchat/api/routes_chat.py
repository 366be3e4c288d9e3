"""Chat API routes."""

import logging

from fastapi import APIRouter, Depends, Request
from slowapi.util import get_remote_address

from kbchat.api.deps import get_chat_pipeline, limiter
from kbchat.core.config import settings
from kbchat.core.constants import NETWORK_ERROR_MSG
from kbchat.core.logging import mask_pii
from kbchat.core.schemas import ChatRequest, ChatResponse
from kbchat.generation.pipeline import BotProfile, ChatPipeline

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/chat", response_model=ChatResponse)
@limiter.limit(settings.chat_rate_limit)
async def chat(
    request: Request,
    payload: ChatRequest,
    pipeline: ChatPipeline = Depends(get_chat_pipeline),
):
    """Reply to one chat message; always returns displayable text."""
    client_ip = get_remote_address(request)
    logger.info(f"Chat request from {client_ip} for bot {payload.bot_id}: {mask_pii(payload.message)}")

    bot = BotProfile(
        bot_id=payload.bot_id,
        system_prompt=payload.system_prompt,
        model=payload.model,
        response_delay_ms=payload.response_delay_ms,
        source_url=request.headers.get("referer"),
    )
    authorization = request.headers.get("authorization", "")
    access_token = authorization[7:] if authorization.lower().startswith("bearer ") else None

    try:
        result = await pipeline.respond(
            bot,
            payload.session_id,
            payload.message,
            payload.conversation_history,
            context=payload.context,
            access_token=access_token,
        )
    except Exception as e:
        logger.error(f"Error in chat endpoint: {e}", exc_info=True)
        return ChatResponse(message=NETWORK_ERROR_MSG, session_id=payload.session_id)

    return ChatResponse(
        message=result.text,
        session_id=payload.session_id,
        backend=result.reply.backend,
        usage=result.reply.usage,
    )
