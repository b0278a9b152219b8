"""
Pydantic models for email processing outcomes and interaction records.

Models:
  ProcessingOutcome   - aggregate result of one email across all agents
  WebhookResponse     - JSON body returned by the inbound webhook
  EmailInteraction    - email_interactions row (subset used by the backend)
  RerunResponse       - response body for POST /{interaction_id}/rerun
"""

from typing import Any, Optional
from pydantic import BaseModel


class ProcessingOutcome(BaseModel):
    """
    Aggregate result of processing one email.

    success is True when at least one agent pipeline finished, or when no
    agent matched the recipients (a soft no-op).
    """

    success: bool = True
    warnings: list[str] = []
    errors: list[str] = []
    matched_agents: int = 0
    processed_agents: int = 0

    @classmethod
    def failure(cls, error: str, warnings: Optional[list[str]] = None) -> "ProcessingOutcome":
        return cls(success=False, warnings=warnings or [], errors=[error])


class WebhookResponse(BaseModel):
    """Structured JSON returned to the inbound provider."""

    status: str = "success"
    message: str = ""
    interaction_id: Optional[str] = None
    warnings: list[str] = []
    errors: list[str] = []
    processed_at: str


class EmailInteraction(BaseModel):
    """email_interactions row. Unknown columns are ignored."""
    model_config = {"extra": "ignore"}

    id: str
    user_id: str
    message_id: Optional[str] = None
    from_email: Optional[str] = None
    to_email: Optional[str] = None
    subject: Optional[str] = None
    status: str
    raw_request: Optional[dict[str, Any]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class RerunResponse(BaseModel):
    message: str
    result: WebhookResponse
