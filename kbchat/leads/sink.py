"""Destinations for lead candidates."""

import logging
from typing import Optional

import httpx

from kbchat.core.config import Settings, get_settings
from kbchat.core.logging import mask_pii
from kbchat.leads.signals import LeadCandidate

logger = logging.getLogger(__name__)

LEAD_CREATED = "created"
LEAD_DUPLICATE = "duplicate"
LEAD_SKIPPED = "skipped"
LEAD_LOGGED = "logged"


class LeadSink:
    """Abstract lead destination."""

    async def submit(self, candidate: LeadCandidate) -> str:
        raise NotImplementedError


class LoggingLeadSink(LeadSink):
    """Used when no lead endpoint is configured."""

    async def submit(self, candidate: LeadCandidate) -> str:
        logger.info(
            f"Lead candidate for bot {candidate.bot_id}: "
            f"{mask_pii(candidate.email or candidate.phone or '')} (score {candidate.score})"
        )
        return LEAD_LOGGED


class LeadCaptureClient(LeadSink):
    """Posts lead candidates to the managed lead-creation endpoint."""

    def __init__(self, config: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self.settings = config or get_settings()
        self.client = client or httpx.AsyncClient()
        self.endpoint = self.settings.managed_base_url.rstrip("/") + self.settings.managed_lead_path

    async def submit(self, candidate: LeadCandidate) -> str:
        """Create the lead; raises httpx.HTTPError on transport or server failure."""
        if not candidate.email:
            # Lead records are keyed by email
            logger.debug(f"Skipping phone-only lead candidate for bot {candidate.bot_id}")
            return LEAD_SKIPPED

        payload = {
            "botId": candidate.bot_id,
            "name": candidate.name,
            "email": candidate.email,
            "score": candidate.score,
        }
        if candidate.phone:
            payload["phone"] = candidate.phone
        if candidate.source_url:
            payload["sourceUrl"] = candidate.source_url

        response = await self.client.post(
            self.endpoint,
            json=payload,
            headers={"Authorization": f"Bearer {self.settings.managed_session_token}"},
            timeout=self.settings.transport_timeout_seconds,
        )
        if response.status_code == 409:
            return LEAD_DUPLICATE
        response.raise_for_status()

        data = response.json() if response.content else {}
        if isinstance(data, dict) and (data.get("duplicate") or data.get("updated")):
            return LEAD_DUPLICATE
        logger.info(f"Lead created for bot {candidate.bot_id}: {mask_pii(candidate.email)}")
        return LEAD_CREATED


def get_lead_sink(config: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None) -> LeadSink:
    """Managed endpoint when a session is configured, otherwise log only."""
    config = config or get_settings()
    if config.has_managed_session:
        return LeadCaptureClient(config, client)
    return LoggingLeadSink()
