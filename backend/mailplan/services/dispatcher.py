"""
Downstream dispatch to the workspace's reply-generation service.

One POST per agent pipeline, bearer-authenticated with the workspace's reply
API token. A single attempt is made; a non-2xx answer or a transport error
fails only the calling agent's pipeline.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from mailplan.models.inbound_email import InboundEmail
from mailplan.models.plan import ExecutionOutput, PlanStep
from mailplan.models.agent import WorkspaceConfig
from mailplan.services.errors import ConfigurationError, DispatchError
from mailplan.services.sender_verifier import authentication_summary

logger = logging.getLogger(__name__)


def _mask(token: Optional[str]) -> str:
    if not token:
        return "MISSING"
    return f"{token[:4]}..." if len(token) > 8 else "***"


def build_reply_request(
    agent_id: str,
    email: InboundEmail,
    plan: Optional[list[PlanStep]],
    outputs: list[ExecutionOutput],
    digest: str,
) -> dict:
    """Assemble the JSON bundle sent to the reply service."""
    return {
        "agent_id": agent_id,
        "email": {
            "provider": email.provider,
            "message_id": email.message_id,
            "sender": email.sender_email,
            "sender_name": email.sender_name,
            "recipient": email.primary_recipient,
            "subject": email.subject,
            "body": email.body,
            "headers": email.headers_dict(),
            "authentication": authentication_summary(email.headers),
            "raw": email.raw,
        },
        "tool_plan": [step.model_dump(mode="json") for step in plan] if plan is not None else None,
        "tool_results": [output.model_dump(mode="json") for output in outputs],
        "action_digest": digest,
    }


async def dispatch_reply(
    http: httpx.AsyncClient,
    workspace: WorkspaceConfig,
    request: dict,
    timeout: float,
) -> Any:
    """
    POST request to the workspace reply service and return the parsed body.

    A non-JSON 2xx body is returned as {"raw": text}.

    Raises:
        ConfigurationError: reply URL or token is missing.
        DispatchError: transport failure or non-2xx status.
    """
    if not workspace.reply_webhook_url or not workspace.reply_api_token:
        raise ConfigurationError("Reply service URL or API token is not configured")

    logger.info(
        "Dispatching agent %s bundle to %s (token %s, %d tool result(s))",
        request.get("agent_id"),
        workspace.reply_webhook_url,
        _mask(workspace.reply_api_token),
        len(request.get("tool_results") or []),
    )

    try:
        response = await http.post(
            workspace.reply_webhook_url,
            json=request,
            headers={"Authorization": f"Bearer {workspace.reply_api_token}"},
            timeout=timeout,
        )
    except httpx.HTTPError as e:
        raise DispatchError(f"Reply service request failed: {e!r}") from e

    try:
        body: Any = response.json()
    except (json.JSONDecodeError, ValueError):
        body = {"raw": response.text}

    if not response.is_success:
        raise DispatchError(
            f"Reply service error: {response.status_code} - {json.dumps(body, default=str)[:500]}",
            status_code=response.status_code,
        )

    return body


def save_processed_interaction(
    db: Any,
    interaction_id: str,
    agent_id: str,
    request: dict,
    response: Any,
) -> dict:
    """
    Persist the final state of an interaction handled by agent_id.

    Raises DispatchError when the update fails or matches no row.
    """
    intent = response.get("intent") if isinstance(response, dict) else None
    update = {
        "agent_used": agent_id,
        "reply_request": request,
        "reply_response": response,
        "tool_results": request.get("tool_results"),
        "tool_plan": request.get("tool_plan"),
        "intent": intent,
        "status": "processed",
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    try:
        result = (
            db.table("email_interactions")
            .update(update)
            .eq("id", interaction_id)
            .execute()
        )
    except Exception as e:
        raise DispatchError(f"Failed to update email interaction: {e}") from e

    if not result.data:
        raise DispatchError(f"Email interaction {interaction_id} not found for update")

    return result.data[0]
