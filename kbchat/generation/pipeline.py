"""Chat turn orchestration: context, completion, lead capture and typing delay."""

import asyncio
import logging
import random
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Optional, Sequence

from kbchat.core.config import Settings, get_settings
from kbchat.core.schemas import ConversationTurn
from kbchat.generation.gateway import CompletionGateway, GatewayReply
from kbchat.generation.llm import CompletionRequest
from kbchat.leads.signals import LeadSignalExtractor
from kbchat.leads.sink import LeadSink, get_lead_sink
from kbchat.vector.retriever import KnowledgeRetriever

logger = logging.getLogger(__name__)


@dataclass
class BotProfile:
    """Per-bot chat settings."""

    bot_id: str
    system_prompt: str = "You are a helpful assistant."
    model: Optional[str] = None
    knowledge: Optional[str] = None
    response_delay_ms: Optional[int] = None
    source_url: Optional[str] = None
    use_retrieval: bool = True


@dataclass
class ChatTurnResult:
    reply: GatewayReply
    user_turn: ConversationTurn
    assistant_turn: ConversationTurn
    context_used: bool = False
    delay_ms: int = 0
    history: list[ConversationTurn] = field(default_factory=list)

    @property
    def text(self) -> str:
        return self.reply.text


class ChatPipeline:
    """Runs one chat turn end to end."""

    def __init__(
        self,
        gateway: Optional[CompletionGateway] = None,
        retriever: Optional[KnowledgeRetriever] = None,
        lead_sink: Optional[LeadSink] = None,
        config: Optional[Settings] = None,
    ):
        self.settings = config or get_settings()
        self.gateway = gateway or CompletionGateway(config=self.settings)
        self.retriever = retriever
        self.lead_sink = lead_sink or get_lead_sink(self.settings)
        # Least recently active sessions are evicted past lead_session_cap
        self._extractors: OrderedDict[tuple[str, str], LeadSignalExtractor] = OrderedDict()
        self._background: set[asyncio.Task] = set()

    def _extractor(self, bot_id: str, session_id: str) -> LeadSignalExtractor:
        key = (bot_id, session_id)
        extractor = self._extractors.get(key)
        if extractor is None:
            extractor = LeadSignalExtractor(bot_id, session_id, self.settings)
            self._extractors[key] = extractor
            while len(self._extractors) > self.settings.lead_session_cap:
                self._extractors.popitem(last=False)
        else:
            self._extractors.move_to_end(key)
        return extractor

    async def _capture_leads(self, extractor: LeadSignalExtractor, message: str, source_url: Optional[str]) -> None:
        for candidate in extractor.scan(message, source_url):
            try:
                await self.lead_sink.submit(candidate)
            except Exception as e:
                logger.warning(f"Lead submission failed for bot {candidate.bot_id}: {e}")

    def _schedule_lead_capture(self, bot: BotProfile, session_id: str, message: str) -> None:
        extractor = self._extractor(bot.bot_id, session_id)
        task = asyncio.create_task(self._capture_leads(extractor, message, bot.source_url))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _resolve_context(self, bot: BotProfile, message: str, context: Optional[str]) -> Optional[str]:
        if context and context.strip():
            return context
        if bot.knowledge and bot.knowledge.strip():
            return bot.knowledge
        if self.retriever is None or not bot.use_retrieval:
            return None
        try:
            retrieved = await self.retriever.retrieve_context(bot.bot_id, message)
        except Exception as e:
            logger.warning(f"Knowledge retrieval failed for bot {bot.bot_id}; answering without context: {e}")
            return None
        return retrieved or None

    def _delay_ms(self, bot: BotProfile) -> int:
        if bot.response_delay_ms is not None:
            return bot.response_delay_ms
        return random.randint(self.settings.response_delay_min_ms, self.settings.response_delay_max_ms)

    async def respond(
        self,
        bot: BotProfile,
        session_id: str,
        message: str,
        history: Optional[Sequence[ConversationTurn]] = None,
        context: Optional[str] = None,
        apply_delay: bool = True,
        access_token: Optional[str] = None,
    ) -> ChatTurnResult:
        """Produce the assistant reply for one user message."""
        history = list(history or [])
        self._schedule_lead_capture(bot, session_id, message)

        resolved_context = await self._resolve_context(bot, message, context)
        request = CompletionRequest(
            system_instructions=bot.system_prompt,
            message=message,
            history=history,
            context=resolved_context,
            model=bot.model,
            bot_id=bot.bot_id,
            session_id=session_id,
            access_token=access_token,
            temperature=self.settings.completion_temperature,
            max_tokens=self.settings.completion_max_tokens,
        )
        reply = await self.gateway.complete(request)

        delay_ms = self._delay_ms(bot) if apply_delay else 0
        if delay_ms > 0:
            # Simulated typing latency, applied after the reply is ready
            await asyncio.sleep(delay_ms / 1000)

        user_turn = ConversationTurn(role="user", text=message)
        assistant_turn = ConversationTurn(role="assistant", text=reply.text)
        logger.info(
            f"Bot {bot.bot_id} session {session_id}: {reply.state.value} via {reply.backend or 'none'} "
            f"(context={'yes' if resolved_context else 'no'}, delay={delay_ms}ms)"
        )
        return ChatTurnResult(
            reply=reply,
            user_turn=user_turn,
            assistant_turn=assistant_turn,
            context_used=bool(resolved_context),
            delay_ms=delay_ms,
            history=history + [user_turn, assistant_turn],
        )

    def end_session(self, bot_id: str, session_id: str) -> None:
        self._extractors.pop((bot_id, session_id), None)

    async def wait_for_background(self) -> None:
        """Await pending lead capture tasks."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
