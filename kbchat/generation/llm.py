"""Completion backends and their result types."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

import httpx
import openai
import orjson
from openai import AsyncOpenAI

from kbchat.core.config import Settings, get_settings
from kbchat.core.prompts import build_chat_messages
from kbchat.core.schemas import ConversationTurn

logger = logging.getLogger(__name__)


@dataclass
class CompletionRequest:
    """Everything a backend needs to produce one reply."""

    system_instructions: str
    message: str
    history: list[ConversationTurn] = field(default_factory=list)
    context: Optional[str] = None
    model: Optional[str] = None
    bot_id: Optional[str] = None
    session_id: Optional[str] = None
    access_token: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 500
    json_mode: bool = False


class CompletionErrorKind(str, Enum):
    """Why a completion attempt failed."""

    CONFIG = "config"
    NETWORK = "network"
    TIMEOUT = "timeout"
    BACKEND = "backend"


@dataclass
class CompletionSuccess:
    text: str
    backend: str
    usage: Optional[dict[str, int]] = None


@dataclass
class CompletionJSON:
    data: Any
    backend: str
    usage: Optional[dict[str, int]] = None


@dataclass
class CompletionFailure:
    kind: CompletionErrorKind
    message: str
    backend: str


CompletionResult = Union[CompletionSuccess, CompletionJSON, CompletionFailure]


class ChatBackend:
    """Abstract completion backend."""

    name = "backend"

    @property
    def available(self) -> bool:
        """Whether credentials for this backend are present."""
        return True

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        raise NotImplementedError


class ManagedChatBackend(ChatBackend):
    """Server-mediated backend; applies quota and usage tracking on its side."""

    name = "managed"

    def __init__(self, config: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self.settings = config or get_settings()
        self.client = client or httpx.AsyncClient()
        self.endpoint = self.settings.managed_base_url.rstrip("/") + self.settings.managed_complete_path

    def _token(self, request: CompletionRequest) -> str:
        return request.access_token or self.settings.managed_session_token

    @property
    def available(self) -> bool:
        return self.settings.has_managed_session

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        token = self._token(request)
        if not (self.settings.managed_base_url and token):
            return CompletionFailure(CompletionErrorKind.CONFIG, "no authenticated session", self.name)

        payload = {
            "botId": request.bot_id,
            "sessionId": request.session_id,
            "message": request.message,
            "conversationHistory": [{"role": turn.role, "content": turn.text} for turn in request.history],
        }
        try:
            response = await self.client.post(
                self.endpoint,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.settings.completion_timeout_seconds,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            return CompletionFailure(CompletionErrorKind.TIMEOUT, str(e) or "timeout", self.name)
        except httpx.HTTPStatusError as e:
            return CompletionFailure(CompletionErrorKind.BACKEND, f"HTTP {e.response.status_code}", self.name)
        except httpx.HTTPError as e:
            return CompletionFailure(CompletionErrorKind.NETWORK, f"{type(e).__name__}: {e}", self.name)
        except ValueError:
            return CompletionFailure(CompletionErrorKind.BACKEND, "invalid JSON response", self.name)

        message = data.get("message") if isinstance(data, dict) else None
        if not isinstance(message, str) or not message.strip():
            return CompletionFailure(CompletionErrorKind.BACKEND, "response has no message", self.name)
        usage = data.get("usage") if isinstance(data.get("usage"), dict) else None
        return CompletionSuccess(text=message.strip(), backend=self.name, usage=usage)


class OpenAIChatBackend(ChatBackend):
    """Direct provider call with a client-held key."""

    name = "openai"

    def __init__(
        self,
        config: Optional[Settings] = None,
        client: Optional[AsyncOpenAI] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = config or get_settings()
        self.model_name = self.settings.openai_chat_model
        self.client = client
        if self.client is None and self.settings.openai_api_key:
            self.client = AsyncOpenAI(
                api_key=self.settings.openai_api_key,
                base_url=self.settings.openai_base_url,
                timeout=self.settings.completion_timeout_seconds,
                max_retries=0,
                http_client=http_client,
            )

    @property
    def available(self) -> bool:
        return self.client is not None

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        if self.client is None:
            return CompletionFailure(CompletionErrorKind.CONFIG, "OpenAI API key is missing", self.name)

        messages = build_chat_messages(
            request.system_instructions, request.history, request.message, request.context
        )
        kwargs: dict[str, Any] = {}
        if request.json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(
                model=request.model or self.model_name,
                messages=messages,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                **kwargs,
            )
        except openai.APITimeoutError as e:
            return CompletionFailure(CompletionErrorKind.TIMEOUT, str(e), self.name)
        except openai.APIConnectionError as e:
            return CompletionFailure(CompletionErrorKind.NETWORK, str(e), self.name)
        except openai.APIStatusError as e:
            logger.error(f"OpenAI API error {e.status_code}: {e.message}")
            return CompletionFailure(CompletionErrorKind.BACKEND, f"HTTP {e.status_code}", self.name)

        usage = None
        if response.usage is not None:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            return CompletionFailure(CompletionErrorKind.BACKEND, "empty completion", self.name)

        if request.json_mode:
            try:
                data = orjson.loads(content)
            except orjson.JSONDecodeError:
                return CompletionFailure(CompletionErrorKind.BACKEND, "completion was not valid JSON", self.name)
            return CompletionJSON(data=data, backend=self.name, usage=usage)

        return CompletionSuccess(text=content.strip(), backend=self.name, usage=usage)


def get_chat_backend(config: Optional[Settings] = None) -> OpenAIChatBackend:
    """Get the direct provider backend used for extraction and chat fallback."""
    return OpenAIChatBackend(config)
