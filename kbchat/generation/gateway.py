"""Completion gateway: managed backend first, direct provider as fallback."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from kbchat.core.config import Settings, get_settings
from kbchat.core.constants import CONFIG_ERROR_MSG, NETWORK_ERROR_MSG
from kbchat.generation.llm import (
    ChatBackend,
    CompletionErrorKind,
    CompletionFailure,
    CompletionJSON,
    CompletionRequest,
    CompletionResult,
    CompletionSuccess,
    ManagedChatBackend,
    OpenAIChatBackend,
)

logger = logging.getLogger(__name__)


class GatewayState(str, Enum):
    """States one completion call passes through."""

    IDLE = "idle"
    MANAGED_ATTEMPT = "managed_attempt"
    FALLBACK_DIRECT = "fallback_direct"
    SUCCESS = "success"
    CONFIG_ERROR = "config_error"
    NETWORK_ERROR = "network_error"


@dataclass
class GatewayReply:
    """Displayable reply text plus how it was obtained."""

    text: str
    state: GatewayState
    backend: Optional[str] = None
    usage: Optional[dict[str, int]] = None
    path: list[GatewayState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state == GatewayState.SUCCESS


class CompletionGateway:
    """Returns reply text for every call; failures become fixed user-safe messages."""

    def __init__(
        self,
        managed: Optional[ChatBackend] = None,
        direct: Optional[ChatBackend] = None,
        config: Optional[Settings] = None,
    ):
        self.settings = config or get_settings()
        self.managed = managed or ManagedChatBackend(self.settings)
        self.direct = direct or OpenAIChatBackend(self.settings)

    async def _attempt(self, backend: ChatBackend, request: CompletionRequest) -> CompletionResult:
        try:
            return await backend.complete(request)
        except Exception as e:
            logger.error(f"{backend.name} backend raised: {e}", exc_info=True)
            return CompletionFailure(CompletionErrorKind.NETWORK, str(e) or type(e).__name__, backend.name)

    @staticmethod
    def _success(result: CompletionResult, path: list[GatewayState]) -> Optional[GatewayReply]:
        if isinstance(result, CompletionSuccess):
            path.append(GatewayState.SUCCESS)
            return GatewayReply(result.text, GatewayState.SUCCESS, result.backend, result.usage, path)
        if isinstance(result, CompletionJSON):
            path.append(GatewayState.SUCCESS)
            text = result.data if isinstance(result.data, str) else str(result.data)
            return GatewayReply(text, GatewayState.SUCCESS, result.backend, result.usage, path)
        return None

    def _managed_ready(self, request: CompletionRequest) -> bool:
        return bool(request.access_token) or self.managed.available

    async def complete(self, request: CompletionRequest) -> GatewayReply:
        """Run the fallback chain; never raises."""
        path = [GatewayState.IDLE]

        if self._managed_ready(request):
            path.append(GatewayState.MANAGED_ATTEMPT)
            result = await self._attempt(self.managed, request)
            reply = self._success(result, path)
            if reply is not None:
                return reply
            logger.warning(f"Managed completion failed ({result.kind.value}: {result.message}); falling back to direct")
        else:
            logger.info("No authenticated session; using direct provider")

        path.append(GatewayState.FALLBACK_DIRECT)
        if not self.direct.available:
            logger.error("No completion credentials configured")
            path.append(GatewayState.CONFIG_ERROR)
            return GatewayReply(CONFIG_ERROR_MSG, GatewayState.CONFIG_ERROR, None, None, path)

        result = await self._attempt(self.direct, request)
        reply = self._success(result, path)
        if reply is not None:
            return reply

        if result.kind == CompletionErrorKind.CONFIG:
            path.append(GatewayState.CONFIG_ERROR)
            return GatewayReply(CONFIG_ERROR_MSG, GatewayState.CONFIG_ERROR, result.backend, None, path)

        logger.error(f"Direct completion failed ({result.kind.value}: {result.message})")
        path.append(GatewayState.NETWORK_ERROR)
        return GatewayReply(NETWORK_ERROR_MSG, GatewayState.NETWORK_ERROR, result.backend, None, path)


async def generate_reply(
    gateway: CompletionGateway,
    system_instructions: str,
    message: str,
    history=None,
    context: Optional[str] = None,
    model: Optional[str] = None,
    **kwargs,
) -> str:
    """Reply text for one turn."""
    request = CompletionRequest(
        system_instructions=system_instructions,
        message=message,
        history=list(history or []),
        context=context,
        model=model,
        **kwargs,
    )
    reply = await gateway.complete(request)
    return reply.text
