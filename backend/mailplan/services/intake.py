"""
Interaction intake for normalised inbound emails.

Responsibilities before the orchestrator runs:
  - Log the raw payload to inbound_emails (best effort).
  - Find or create the email_interactions row for (user_id, message_id).
  - Suppress duplicate deliveries; retry interactions left in 'failed'.
  - Let emails carrying the test header through even when already seen.

The function returns a (WebhookResponse, http_status) pair so the router only
has to serialise it.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from mailplan.config import Settings
from mailplan.models.agent import WorkspaceConfig
from mailplan.models.inbound_email import InboundEmail
from mailplan.models.interaction import WebhookResponse
from mailplan.services.orchestrator import EmailOrchestrator

logger = logging.getLogger(__name__)

TEST_EMAIL_HEADER = "X-Mailplan-Test"
_TRUTHY = {"1", "true", "yes"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_test_email(email: InboundEmail) -> bool:
    value = email.header_value(TEST_EMAIL_HEADER)
    return bool(value) and value.strip().lower() in _TRUTHY


def log_raw_inbound(db: Any, user_id: str, email: InboundEmail) -> None:
    """Write the raw payload to inbound_emails; failures are only logged."""
    try:
        db.table("inbound_emails").insert({
            "user_id": user_id,
            "message_id": email.message_id,
            "from_email": email.sender_email,
            "to_email": email.primary_recipient,
            "subject": email.subject,
            "provider": email.provider,
            "raw_payload": email.raw,
        }).execute()
    except Exception as e:
        logger.warning("Failed to log raw inbound email %s: %s", email.message_id, e)


def _find_interaction(db: Any, user_id: str, message_id: str) -> Optional[dict]:
    result = (
        db.table("email_interactions")
        .select("id, status")
        .eq("user_id", user_id)
        .eq("message_id", message_id)
        .limit(1)
        .execute()
    )
    return result.data[0] if result.data else None


def _create_interaction(db: Any, user_id: str, email: InboundEmail) -> str:
    result = db.table("email_interactions").insert({
        "user_id": user_id,
        "message_id": email.message_id,
        "from_email": email.sender_email,
        "to_email": email.primary_recipient,
        "subject": email.subject,
        "status": "received",
        "source": email.provider,
        "raw_request": email.raw,
    }).execute()
    if not result.data:
        raise RuntimeError("Insert into email_interactions returned no row")
    return result.data[0]["id"]


def _reset_for_retry(db: Any, interaction_id: str) -> None:
    (
        db.table("email_interactions")
        .update({"status": "received", "updated_at": _now()})
        .eq("id", interaction_id)
        .execute()
    )


def _error_response(message: str, interaction_id: Optional[str] = None) -> WebhookResponse:
    return WebhookResponse(
        status="error",
        message=message,
        interaction_id=interaction_id,
        errors=[message],
        processed_at=_now(),
    )


async def handle_inbound_email(
    db: Any,
    workspace: WorkspaceConfig,
    email: InboundEmail,
    settings: Settings,
    orchestrator: Optional[EmailOrchestrator] = None,
) -> tuple[WebhookResponse, int]:
    """
    Record email for workspace and run the orchestrator on it.

    Returns (response, status_code): 200 when processing finished without
    errors, 422 when it reported errors, 500 when the interaction record
    could not be read or created.
    """
    user_id = workspace.user_id
    log_raw_inbound(db, user_id, email)

    test_email = is_test_email(email)
    if test_email:
        logger.info("Test email %s: duplicate suppression bypassed", email.message_id)

    try:
        existing = _find_interaction(db, user_id, email.message_id)
    except Exception as e:
        logger.error("Interaction lookup failed for %s: %s", email.message_id, e)
        return _error_response("Failed to look up email interaction."), 500

    interaction_id: Optional[str] = None
    if existing and not test_email:
        if existing.get("status") != "failed":
            message = (
                f"Email {email.message_id} was already received "
                f"(interaction {existing['id']}, status {existing.get('status')}); not reprocessing."
            )
            logger.info(message)
            return WebhookResponse(
                status="success",
                message="Duplicate email ignored.",
                interaction_id=existing["id"],
                warnings=[message],
                processed_at=_now(),
            ), 200

        interaction_id = existing["id"]
        logger.info("Retrying failed interaction %s", interaction_id)
        try:
            _reset_for_retry(db, interaction_id)
        except Exception as e:
            logger.error("Failed to reset interaction %s: %s", interaction_id, e)
            return _error_response("Failed to reset email interaction.", interaction_id), 500

    if interaction_id is None:
        try:
            interaction_id = _create_interaction(db, user_id, email)
        except Exception as e:
            logger.error("Failed to create interaction for %s: %s", email.message_id, e)
            return _error_response("Failed to record email interaction."), 500

    orchestrator = orchestrator or EmailOrchestrator(db, settings)
    outcome = await orchestrator.process_email(workspace, email, interaction_id)

    if outcome.errors:
        response = WebhookResponse(
            status="partial_success" if outcome.success else "error",
            message="Email processed with errors." if outcome.success else "Email processing failed.",
            interaction_id=interaction_id,
            warnings=outcome.warnings,
            errors=outcome.errors,
            processed_at=_now(),
        )
        return response, 422

    return WebhookResponse(
        status="success",
        message="Email processed.",
        interaction_id=interaction_id,
        warnings=outcome.warnings,
        processed_at=_now(),
    ), 200
