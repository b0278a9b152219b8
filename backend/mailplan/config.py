"""
Runtime settings for the email orchestration pipeline.

Settings are read from the environment once and passed explicitly to the
orchestrator, so no stage looks up secrets on its own mid-pipeline.

Environment variables
---------------------
ANTHROPIC_API_KEY             Model credential used by the planner.
PLANNER_MODEL                 Anthropic model id (default: claude-sonnet-4-5-20250929).
PLANNER_MAX_TOKENS            Completion budget for one plan (default: 2048).
PLANNER_TIMEOUT_SECONDS       Model request timeout (default: 30).
EMAIL_BODY_LIMIT              Characters of email body sent to the model (default: 8000).
TOOL_SERVER_URL               Base URL of the tool execution tier.
TOOL_SERVER_API_KEY           Shared internal secret for the tool execution tier.
TOOL_ACTION_TIMEOUT_SECONDS   Per-step tool call timeout (default: 20).
DISPATCH_TIMEOUT_SECONDS      Reply-service dispatch timeout (default: 30).
EMAIL_PROVIDER                Inbound payload format (default: postmark).
"""

import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel


DEFAULT_PLANNER_MODEL = "claude-sonnet-4-5-20250929"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


class Settings(BaseModel):
    anthropic_api_key: Optional[str] = None
    planner_model: str = DEFAULT_PLANNER_MODEL
    planner_max_tokens: int = 2048
    planner_timeout_seconds: float = 30.0
    planner_max_retries: int = 2
    email_body_limit: int = 8000

    tool_server_url: Optional[str] = None
    tool_server_api_key: Optional[str] = None
    tool_action_timeout_seconds: float = 20.0

    dispatch_timeout_seconds: float = 30.0

    email_provider: str = "postmark"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            planner_model=(os.getenv("PLANNER_MODEL") or "").strip() or DEFAULT_PLANNER_MODEL,
            planner_max_tokens=_env_int("PLANNER_MAX_TOKENS", 2048),
            planner_timeout_seconds=_env_float("PLANNER_TIMEOUT_SECONDS", 30.0),
            email_body_limit=_env_int("EMAIL_BODY_LIMIT", 8000),
            tool_server_url=(os.getenv("TOOL_SERVER_URL") or "").strip() or None,
            tool_server_api_key=(os.getenv("TOOL_SERVER_API_KEY") or "").strip() or None,
            tool_action_timeout_seconds=_env_float("TOOL_ACTION_TIMEOUT_SECONDS", 20.0),
            dispatch_timeout_seconds=_env_float("DISPATCH_TIMEOUT_SECONDS", 30.0),
            email_provider=(os.getenv("EMAIL_PROVIDER") or "postmark").strip().lower(),
        )

    def tool_action_url(self, provider: str, action: str) -> str:
        """``{base}/mcp/{provider}/{action}`` with any trailing slash on base removed."""
        base = (self.tool_server_url or "").rstrip("/")
        return f"{base}/mcp/{provider}/{action}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings loaded from the environment on first use."""
    return Settings.from_env()
