"""Logging configuration."""

import logging
import re
import sys
from typing import Optional

from kbchat.core.config import Settings, settings

_EMAIL_RE = re.compile(r"\b([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")
_PHONE_RE = re.compile(r"(?<!\d)(\+?\d[\d\s().-]{7,}\d)(?!\d)")


def setup_logging(config: Optional[Settings] = None) -> None:
    """Configure application logging."""
    config = config or settings
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Set third-party loggers to WARNING
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("filelock").setLevel(logging.WARNING)


def mask_pii(text: str) -> str:
    """Mask contact details (emails, phone numbers) in logs."""
    text = _EMAIL_RE.sub(r"\1***@\2", text)
    return _PHONE_RE.sub(lambda m: "*" * (len(m.group(1)) - 2) + m.group(1)[-2:], text)
