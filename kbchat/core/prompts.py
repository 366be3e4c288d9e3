"""Prompt templates for grounded chat and knowledge extraction."""

from typing import Any, Optional, Sequence

import orjson

from kbchat.core.schemas import ConversationTurn

EXTRACTION_SYSTEM_PROMPT = (
    "You are a precise Data Extractor. Extract and organize key business/organization "
    "information clearly and concisely. Format the output in clean sections."
)

STRUCTURED_EXTRACTION_SYSTEM_PROMPT = (
    "You are a precise Data Extractor. Respond ONLY with a JSON object using the keys: "
    '"name" (string), "description" (string), "services" (array of strings), '
    '"contact" (object with "email", "phone", "address"), "hours" (string), '
    '"pricing" (string), "faqs" (array of {"question", "answer"}). '
    "Use null or empty values for anything the content does not state."
)


def build_context_block(context: str) -> str:
    """Knowledge context appended to system instructions."""
    return f"""

[KNOWLEDGE BASE CONTEXT]
--- START OF CONTENT ---
{context.strip()}
--- END OF CONTENT ---

[INSTRUCTIONS]
Answer using the knowledge base context above. If the context does not cover the question, say that you are not sure instead of inventing details."""


def build_system_prompt(instructions: str, context: Optional[str] = None) -> str:
    """Bot instructions, with the knowledge context appended when present."""
    prompt = instructions or ""
    if context and context.strip():
        prompt += build_context_block(context)
    return prompt


def build_chat_messages(
    instructions: str,
    history: Sequence[ConversationTurn],
    message: str,
    context: Optional[str] = None,
) -> list[dict[str, str]]:
    """Assemble the provider message array: system, history in order, new user message."""
    messages = [{"role": "system", "content": build_system_prompt(instructions, context)}]
    for turn in history:
        messages.append({"role": turn.role, "content": turn.text})
    messages.append({"role": "user", "content": message})
    return messages


def build_extraction_prompt(content: str, url: Optional[str] = None) -> str:
    """User prompt asking for business facts from scraped content."""
    source_line = f" from {url}" if url else ""
    return f"""Analyze this website content{source_line} and extract key details:
1. Organization/Business Name & Description
2. Key Services/Products/Features
3. Contact Info (Email, Phone, Address)
4. Hours and Pricing, if present
5. Any important facts, policies, or FAQs

WEBSITE CONTENT:
{content}"""


def render_facts(facts: dict[str, Any]) -> str:
    """Render structured extraction output as readable knowledge text."""
    lines: list[str] = []

    name = facts.get("name")
    if name:
        lines.append(f"# {name}")
    if facts.get("description"):
        lines.append(str(facts["description"]))

    services = [str(s) for s in facts.get("services") or [] if s]
    if services:
        lines.append("\n## Services")
        lines.extend(f"- {service}" for service in services)

    contact = facts.get("contact") or {}
    if isinstance(contact, dict):
        contact_lines = [f"- {key.title()}: {value}" for key, value in contact.items() if value]
        if contact_lines:
            lines.append("\n## Contact")
            lines.extend(contact_lines)

    for key, heading in (("hours", "Hours"), ("pricing", "Pricing")):
        if facts.get(key):
            lines.append(f"\n## {heading}\n{facts[key]}")

    faqs = [faq for faq in facts.get("faqs") or [] if isinstance(faq, dict) and faq.get("question")]
    if faqs:
        lines.append("\n## FAQs")
        for faq in faqs:
            lines.append(f"Q: {faq['question']}\nA: {faq.get('answer') or ''}")

    # Unknown shape: keep the raw object rather than lose it
    if not lines:
        return orjson.dumps(facts, option=orjson.OPT_INDENT_2).decode("utf-8")
    return "\n".join(lines).strip()
