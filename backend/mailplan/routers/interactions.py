"""
Email interactions router.

Endpoints:
  POST /{interaction_id}/rerun   - replay a stored inbound email (auth: JWT)
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from mailplan.auth import get_current_user, verify_interaction_ownership
from mailplan.config import get_settings
from mailplan.db import supabase_admin
from mailplan.models.agent import WorkspaceConfig
from mailplan.models.interaction import EmailInteraction, RerunResponse
from mailplan.services.inbound_email_adapter import normalize_webhook
from mailplan.services.intake import handle_inbound_email

logger = logging.getLogger(__name__)

router = APIRouter()


def _load_workspace(user_id: str) -> WorkspaceConfig:
    try:
        result = (
            supabase_admin.table("workspace_configs")
            .select("user_id, webhook_api_key, reply_webhook_url, reply_api_token")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.error("Workspace lookup failed for user %s: %s", user_id, e)
        raise HTTPException(status_code=500, detail="Failed to load workspace configuration")

    if not result.data:
        raise HTTPException(status_code=404, detail="Workspace configuration not found")
    return WorkspaceConfig(**result.data[0])


@router.post("/{interaction_id}/rerun", response_model=RerunResponse)
async def rerun_interaction(
    interaction_id: str,
    user_id: str = Depends(get_current_user),
):
    """
    Mark the interaction as failed and push its stored raw request through
    the inbound pipeline again.

    The failed status makes intake treat the replay as a retry instead of a
    duplicate.
    """
    row = await verify_interaction_ownership(interaction_id, user_id)
    interaction = EmailInteraction(**row)

    if not interaction.raw_request:
        raise HTTPException(
            status_code=400,
            detail="Interaction has no stored raw request to rerun",
        )

    workspace = _load_workspace(user_id)
    settings = get_settings()

    try:
        email = normalize_webhook(
            interaction.raw_request, row.get("source") or settings.email_provider
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Stored raw request is invalid: {e}")

    try:
        (
            supabase_admin.table("email_interactions")
            .update({"status": "failed", "updated_at": datetime.now(timezone.utc).isoformat()})
            .eq("id", interaction_id)
            .execute()
        )
    except Exception as e:
        logger.error("Failed to mark interaction %s for rerun: %s", interaction_id, e)
        raise HTTPException(status_code=500, detail="Failed to prepare interaction for rerun")

    logger.info("Rerunning interaction %s for user %s", interaction_id, user_id)
    result, _status = await handle_inbound_email(supabase_admin, workspace, email, settings)

    return RerunResponse(message=f"Interaction {interaction_id} rerun completed.", result=result)
