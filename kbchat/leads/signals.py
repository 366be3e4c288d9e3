"""Detect contact details in user turns and turn them into lead candidates."""

import logging
import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from kbchat.core.config import Settings, get_settings
from kbchat.core.logging import mask_pii
from kbchat.ingestion.models import utcnow

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
PHONE_RE = re.compile(r"(?<!\w)(\+?1?[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b")


class LeadCandidate(BaseModel):
    """A contact detail seen in a conversation, ready for the CRM."""

    bot_id: str
    session_id: str
    email: Optional[str] = None
    phone: Optional[str] = None
    name: str
    score: int
    source_url: Optional[str] = None
    detected_at: datetime = Field(default_factory=utcnow)


def _phone_key(phone: str) -> str:
    digits = re.sub(r"\D", "", phone)
    # 11-digit NANP numbers compare equal to their 10-digit form
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits


def find_contact_signals(text: str) -> tuple[list[str], list[str]]:
    """Distinct emails (lower-cased) and phone numbers, in order of appearance."""
    emails: list[str] = []
    for match in EMAIL_RE.findall(text or ""):
        email = match.lower()
        if email not in emails:
            emails.append(email)

    # Digits inside an email address are not phone numbers
    remainder = EMAIL_RE.sub(" ", text or "")
    phones: list[str] = []
    keys: set[str] = set()
    for match in PHONE_RE.finditer(remainder):
        phone = match.group(0).strip()
        key = _phone_key(phone)
        if key not in keys:
            keys.add(key)
            phones.append(phone)
    return emails, phones


class LeadSignalExtractor:
    """Session-scoped detector: each email or phone is emitted at most once per session."""

    def __init__(self, bot_id: str, session_id: str, config: Optional[Settings] = None):
        self.settings = config or get_settings()
        self.bot_id = bot_id
        self.session_id = session_id
        self.seen: set[str] = set()

    def _candidate(self, email: Optional[str], phone: Optional[str], source_url: Optional[str]) -> LeadCandidate:
        return LeadCandidate(
            bot_id=self.bot_id,
            session_id=self.session_id,
            email=email,
            phone=phone,
            name=self.settings.lead_default_name,
            score=self.settings.lead_default_score,
            source_url=source_url,
        )

    def scan(self, text: str, source_url: Optional[str] = None) -> list[LeadCandidate]:
        """Return candidates for values not already emitted in this session."""
        try:
            emails, phones = find_contact_signals(text)
            new_emails = [e for e in emails if f"email:{e}" not in self.seen]
            new_phones = [p for p in phones if f"phone:{_phone_key(p)}" not in self.seen]

            candidates: list[LeadCandidate] = []
            for index, email in enumerate(new_emails):
                # The first new phone travels with the first new email
                phone = new_phones[0] if index == 0 and new_phones else None
                candidates.append(self._candidate(email, phone, source_url))
            if not new_emails:
                candidates.extend(self._candidate(None, phone, source_url) for phone in new_phones)
            elif len(new_phones) > 1:
                candidates.extend(self._candidate(None, phone, source_url) for phone in new_phones[1:])

            self.seen.update(f"email:{e}" for e in new_emails)
            self.seen.update(f"phone:{_phone_key(p)}" for p in new_phones)
        except Exception as e:
            logger.error(f"Lead signal scan failed for session {self.session_id}: {e}", exc_info=True)
            return []

        if candidates:
            logger.info(
                f"Detected {len(candidates)} lead signal(s) in session {self.session_id}: "
                f"{mask_pii(', '.join(filter(None, [c.email or c.phone for c in candidates])))}"
            )
        return candidates
