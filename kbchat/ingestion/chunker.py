"""Token-bounded text chunking that prefers natural breaks."""

import logging
import re

from kbchat.core.constants import CHARS_PER_TOKEN
from kbchat.core.utils import estimate_tokens

logger = logging.getLogger(__name__)

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")


def split_paragraphs(text: str) -> list[str]:
    """Split on blank lines."""
    return [p.strip() for p in PARAGRAPH_BREAK.split(text) if p.strip()]


def split_sentences(text: str) -> list[str]:
    """Split after sentence-ending punctuation."""
    return [s.strip() for s in SENTENCE_BREAK.split(text) if s.strip()]


def slice_fixed(text: str, max_tokens: int) -> list[str]:
    """Fixed-size slicing for text with no usable break."""
    size = max_tokens * CHARS_PER_TOKEN
    return [text[i : i + size] for i in range(0, len(text), size)]


def split_words(text: str, max_tokens: int) -> list[str]:
    """Pack words into chunks; words longer than the budget are sliced."""
    chunks: list[str] = []
    current = ""
    for word in text.split():
        if estimate_tokens(word) > max_tokens:
            if current:
                chunks.append(current)
                current = ""
            chunks.extend(slice_fixed(word, max_tokens))
            continue
        candidate = f"{current} {word}" if current else word
        if estimate_tokens(candidate) <= max_tokens:
            current = candidate
        else:
            chunks.append(current)
            current = word
    if current:
        chunks.append(current)
    return chunks


def _pack(units: list[str], max_tokens: int, joiner: str) -> list[str]:
    """Greedily merge units that already fit the budget."""
    chunks: list[str] = []
    current = ""
    for unit in units:
        candidate = f"{current}{joiner}{unit}" if current else unit
        if estimate_tokens(candidate) <= max_tokens:
            current = candidate
        else:
            if current:
                chunks.append(current)
            current = unit
    if current:
        chunks.append(current)
    return chunks


def _split_paragraph(paragraph: str, max_tokens: int) -> list[str]:
    if estimate_tokens(paragraph) <= max_tokens:
        return [paragraph]
    units: list[str] = []
    for sentence in split_sentences(paragraph):
        if estimate_tokens(sentence) <= max_tokens:
            units.append(sentence)
        else:
            units.extend(split_words(sentence, max_tokens))
    return _pack(units, max_tokens, " ")


def chunk_text(text: str, max_tokens: int = 500) -> list[str]:
    """Split text into chunks whose estimated token count stays within max_tokens.

    Paragraphs are packed greedily; a paragraph over budget is split into
    sentences, a sentence over budget into words, and a single word over
    budget is sliced at a fixed size. Chunks never overlap.
    """
    if max_tokens < 1:
        raise ValueError("max_tokens must be positive")
    if not text or not text.strip():
        return []

    units: list[str] = []
    for paragraph in split_paragraphs(text):
        units.extend(_split_paragraph(paragraph, max_tokens))

    chunks = _pack(units, max_tokens, "\n\n")
    logger.debug(f"Split {len(text)} chars into {len(chunks)} chunks (max {max_tokens} tokens)")
    return chunks
