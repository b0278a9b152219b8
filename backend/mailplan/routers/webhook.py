"""
Inbound email webhook router.

The webhook endpoint is provider-agnostic: it normalises the raw payload via
the inbound_email_adapter service, so switching providers only requires
changing the EMAIL_PROVIDER env var.

The workspace is selected by the API key embedded in the URL path, which the
provider is configured with when the inbound route is created.

Endpoints:
  POST /inbound/{webhook_api_key}   - provider webhook (auth: key in path)
"""

import logging

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import JSONResponse

from mailplan.config import get_settings
from mailplan.db import supabase_admin
from mailplan.models.agent import WorkspaceConfig
from mailplan.services.inbound_email_adapter import normalize_webhook
from mailplan.services.intake import handle_inbound_email

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Workspace authentication dependency
# ---------------------------------------------------------------------------

def get_workspace(webhook_api_key: str) -> WorkspaceConfig:
    """
    Resolve the workspace that owns webhook_api_key.

    Raises 401 if no workspace carries the key, 500 on database error.
    """
    try:
        result = (
            supabase_admin.table("workspace_configs")
            .select("user_id, webhook_api_key, reply_webhook_url, reply_api_token")
            .eq("webhook_api_key", webhook_api_key)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.error("Workspace lookup failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to look up workspace")

    if not result.data:
        raise HTTPException(status_code=401, detail="Invalid webhook API key")

    return WorkspaceConfig(**result.data[0])


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------

@router.post("/inbound/{webhook_api_key}")
async def inbound_email_webhook(
    payload: dict = Body(...),
    workspace: WorkspaceConfig = Depends(get_workspace),
):
    """
    Receive an inbound email from the provider and process it.

    Returns 200 on success, 422 when processing reported errors, 400 for an
    unparseable payload and 500 for unexpected failures.
    """
    settings = get_settings()

    try:
        email = normalize_webhook(payload, settings.email_provider)
    except ValueError as e:
        logger.warning("Rejected inbound payload for user %s: %s", workspace.user_id, e)
        raise HTTPException(status_code=400, detail=f"Invalid inbound payload: {e}")

    logger.info(
        "Inbound email %s from %s for user %s",
        email.message_id,
        email.sender_email,
        workspace.user_id,
    )

    try:
        response, status_code = await handle_inbound_email(
            supabase_admin, workspace, email, settings
        )
    except Exception:
        logger.exception("Unexpected error processing inbound email %s", email.message_id)
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": "Internal server error"},
        )

    return JSONResponse(status_code=status_code, content=response.model_dump())
