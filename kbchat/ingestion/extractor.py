"""Turn raw fetched content into a bounded knowledge summary."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from kbchat.core.config import Settings, get_settings
from kbchat.core.prompts import (
    EXTRACTION_SYSTEM_PROMPT,
    STRUCTURED_EXTRACTION_SYSTEM_PROMPT,
    build_extraction_prompt,
    render_facts,
)
from kbchat.core.utils import truncate_text
from kbchat.generation.llm import (
    ChatBackend,
    CompletionFailure,
    CompletionJSON,
    CompletionRequest,
    CompletionSuccess,
    get_chat_backend,
)

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    text: str
    summarized: bool
    truncated_length: int
    facts: Optional[dict[str, Any]] = None


class ContentExtractor:
    """Summarize scraped content into business facts with one completion call."""

    def __init__(self, backend: Optional[ChatBackend] = None, config: Optional[Settings] = None):
        self.settings = config or get_settings()
        self.backend = backend or get_chat_backend(self.settings)
        self.max_chars = self.settings.extract_max_chars
        self.fallback_chars = self.settings.extract_fallback_chars

    def truncate(self, raw: str) -> str:
        """Deterministic cut at the configured ceiling."""
        return truncate_text(raw.strip(), self.max_chars, suffix="")

    def _degraded(self, truncated: str, url: Optional[str], reason: str) -> ExtractionResult:
        logger.warning(f"Extraction degraded for {url or 'content'} ({reason}); keeping raw text prefix")
        return ExtractionResult(
            text=truncate_text(truncated, self.fallback_chars, suffix=""),
            summarized=False,
            truncated_length=len(truncated),
        )

    async def extract(self, raw: str, url: Optional[str] = None, structured: bool = False) -> ExtractionResult:
        """Summarize raw content; fall back to the truncated raw text on any failure."""
        truncated = self.truncate(raw)
        if len(raw) > len(truncated):
            logger.info(f"Truncated {url or 'content'} from {len(raw)} to {len(truncated)} chars before extraction")

        request = CompletionRequest(
            system_instructions=STRUCTURED_EXTRACTION_SYSTEM_PROMPT if structured else EXTRACTION_SYSTEM_PROMPT,
            message=build_extraction_prompt(truncated, url),
            temperature=0.3,
            max_tokens=self.settings.extract_max_tokens,
            json_mode=structured,
        )

        try:
            result = await self.backend.complete(request)
        except Exception as e:
            logger.exception(f"Extraction backend raised for {url}")
            return self._degraded(truncated, url, f"{type(e).__name__}: {e}")

        if isinstance(result, CompletionFailure):
            return self._degraded(truncated, url, f"{result.kind.value}: {result.message}")

        if isinstance(result, CompletionJSON):
            if not isinstance(result.data, dict):
                return self._degraded(truncated, url, "structured output was not an object")
            return ExtractionResult(
                text=render_facts(result.data),
                summarized=True,
                truncated_length=len(truncated),
                facts=result.data,
            )

        if isinstance(result, CompletionSuccess):
            return ExtractionResult(text=result.text, summarized=True, truncated_length=len(truncated))

        return self._degraded(truncated, url, f"unexpected result {type(result).__name__}")
