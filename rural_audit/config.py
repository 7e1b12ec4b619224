"""
Runtime configuration read from the environment.

Entry points call `load_dotenv()` first, so a local .env file works too.
Missing store credentials are not an error: the tracker runs local-only.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-5"
DEFAULT_TIMEOUT = 10.0


@dataclass(frozen=True)
class Settings:
    supabase_url: str | None = None
    supabase_key: str | None = None
    openai_api_key: str | None = None
    openai_model: str = DEFAULT_MODEL
    timeout: float = DEFAULT_TIMEOUT
    log_level: str = "INFO"

    @property
    def has_persistence(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def _read_timeout() -> float:
    raw = os.environ.get("RURAL_AUDIT_TIMEOUT")
    if not raw:
        return DEFAULT_TIMEOUT
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid RURAL_AUDIT_TIMEOUT %r, using %ss", raw, DEFAULT_TIMEOUT)
        return DEFAULT_TIMEOUT


def load_settings() -> Settings:
    """Build Settings from environment variables."""
    settings = Settings(
        supabase_url=os.environ.get("SUPABASE_URL") or None,
        supabase_key=os.environ.get("SUPABASE_KEY") or None,
        openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
        openai_model=os.environ.get("OPENAI_MODEL") or DEFAULT_MODEL,
        timeout=_read_timeout(),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )
    if not settings.has_persistence:
        logger.warning(
            "SUPABASE_URL or SUPABASE_KEY missing — running in local-only mode; "
            "changes will not survive a restart"
        )
    return settings
