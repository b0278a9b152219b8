"""
EmailOrchestrator - runs the planning/execution pipeline for one email.

Per email:
  1. Collect recipients and resolve matched agents.
  2. Verify the sender once (spam/DKIM/SPF headers).
  3. Assemble each agent's tool catalog.
  4. Fan out one pipeline per agent and wait for all of them:
       plan -> execute (sequential steps) -> digest -> dispatch -> persist
  5. Join the per-agent results into one ProcessingOutcome.

A failing agent pipeline never affects its siblings.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import anthropic
import httpx

from mailplan.config import Settings
from mailplan.models.agent import AgentConfig, WorkspaceConfig
from mailplan.models.inbound_email import InboundEmail
from mailplan.models.interaction import ProcessingOutcome
from mailplan.models.plan import ExecutionOutput, PlanStep
from mailplan.services import digest as digests
from mailplan.services.agent_resolver import build_agent_configs, get_agent_ids_by_emails
from mailplan.services.audit import ActivityLog
from mailplan.services.dispatcher import (
    build_reply_request,
    dispatch_reply,
    save_processed_interaction,
)
from mailplan.services.executor import execute_plan
from mailplan.services.planner import generate_plan
from mailplan.services.sender_verifier import is_sender_verified

logger = logging.getLogger(__name__)


class EmailOrchestrator:
    """
    Orchestrates agent resolution, planning, execution and dispatch.

    Example:
        orchestrator = EmailOrchestrator(supabase_admin, get_settings())
        outcome = await orchestrator.process_email(workspace, email, interaction_id)
    """

    def __init__(
        self,
        db: Any,
        settings: Settings,
        planner_client: Optional[anthropic.AsyncAnthropic] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self._db = db
        self._settings = settings
        self._planner_client = planner_client
        self._http = http

    def _get_planner_client(self) -> Optional[anthropic.AsyncAnthropic]:
        if self._planner_client is None and self._settings.anthropic_api_key:
            self._planner_client = anthropic.AsyncAnthropic(
                api_key=self._settings.anthropic_api_key,
                timeout=self._settings.planner_timeout_seconds,
                max_retries=self._settings.planner_max_retries,
            )
        return self._planner_client

    # ------------------------------------------------------------------
    # Per-agent pipeline
    # ------------------------------------------------------------------

    def _store_intermediate_results(
        self, audit: ActivityLog, agent_id: str, outputs: list[ExecutionOutput]
    ) -> None:
        if not audit.interaction_id:
            return
        try:
            (
                self._db.table("email_interactions")
                .update({
                    "tool_results": [o.model_dump(mode="json") for o in outputs],
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                })
                .eq("id", audit.interaction_id)
                .execute()
            )
        except Exception as e:
            logger.error("Failed to store tool results for agent %s: %s", agent_id, e)
            audit.record(
                "tool_result_storage_error",
                "error",
                {"agent_id": agent_id, "error": str(e)},
            )

    async def _plan_and_execute(
        self,
        agent: AgentConfig,
        email: InboundEmail,
        sender_verified: bool,
        workspace: WorkspaceConfig,
        audit: ActivityLog,
        http: httpx.AsyncClient,
    ) -> tuple[Optional[list[PlanStep]], list[ExecutionOutput], str]:
        """Return (plan, outputs, digest) for one agent."""
        if not sender_verified:
            logger.warning(
                "Sender %s not verified; skipping planning for agent %s",
                email.sender_email,
                agent.agent_id,
            )
            audit.record(
                "sender_verification_failed",
                "warning",
                {
                    "agent_id": agent.agent_id,
                    "from_email": email.sender_email,
                    "reason": "Spam, DKIM or SPF checks failed or indicated potential spoofing.",
                },
            )
            return None, [], digests.SENDER_NOT_VERIFIED

        if not agent.tools:
            logger.info("Agent %s has no active tools; skipping planning", agent.agent_id)
            return [], [], digests.NO_TOOLS_CONFIGURED

        planner_client = self._get_planner_client()
        if planner_client is None:
            logger.error("ANTHROPIC_API_KEY is not set; skipping planning for agent %s", agent.agent_id)
            audit.record(
                "tool_planning_skipped",
                "warning",
                {"agent_id": agent.agent_id, "reason": "ANTHROPIC_API_KEY not set"},
            )
            return None, [], digests.PLANNING_NOT_CONFIGURED

        plan_result = await generate_plan(
            email.body,
            email.sender_email,
            email.sender_name,
            agent,
            self._settings,
            audit,
            client=planner_client,
        )

        if plan_result.failed:
            audit.record(
                "tool_planning_failed",
                "warning",
                {"agent_id": agent.agent_id, "error": plan_result.error},
            )
            return None, [], digests.PLAN_GENERATION_FAILED

        plan = plan_result.plan or []
        if not plan:
            return plan, [], digests.NO_ACTION_NEEDED

        outputs = await execute_plan(
            plan, agent, self._db, workspace.user_id, self._settings, audit, http
        )
        self._store_intermediate_results(audit, agent.agent_id, outputs)
        return plan, outputs, digests.build_digest(plan, outputs, agent)

    async def run_agent_pipeline(
        self,
        agent: AgentConfig,
        email: InboundEmail,
        sender_verified: bool,
        workspace: WorkspaceConfig,
        audit: ActivityLog,
        http: httpx.AsyncClient,
    ) -> str:
        """
        Run one agent end to end and return its action digest.

        Raises ConfigurationError or DispatchError when the bundle cannot be
        delivered or the final state cannot be saved.
        """
        logger.info("Processing email %s with agent %s", email.message_id, agent.agent_id)

        plan, outputs, digest = await self._plan_and_execute(
            agent, email, sender_verified, workspace, audit, http
        )

        request = build_reply_request(agent.agent_id, email, plan, outputs, digest)
        response = await dispatch_reply(
            http, workspace, request, timeout=self._settings.dispatch_timeout_seconds
        )

        if audit.interaction_id:
            save_processed_interaction(
                self._db, audit.interaction_id, agent.agent_id, request, response
            )

        audit.record(
            "agent_processing_success",
            "success",
            {
                "agent_id": agent.agent_id,
                "intent": response.get("intent") if isinstance(response, dict) else None,
                "tools_available": len(agent.tools),
                "steps_executed": len(outputs),
            },
        )
        logger.info("Agent %s finished for email %s", agent.agent_id, email.message_id)
        return digest

    # ------------------------------------------------------------------
    # Per-email entry point
    # ------------------------------------------------------------------

    def _mark_interaction_failed(self, interaction_id: Optional[str]) -> None:
        if not interaction_id:
            return
        try:
            (
                self._db.table("email_interactions")
                .update({"status": "failed", "updated_at": datetime.now(timezone.utc).isoformat()})
                .eq("id", interaction_id)
                .execute()
            )
        except Exception as e:
            logger.error("Failed to mark interaction %s as failed: %s", interaction_id, e)

    async def _fan_out(
        self,
        agents: list[AgentConfig],
        email: InboundEmail,
        sender_verified: bool,
        workspace: WorkspaceConfig,
        audit: ActivityLog,
    ) -> list[Any]:
        if self._http is not None:
            return await asyncio.gather(
                *(
                    self.run_agent_pipeline(a, email, sender_verified, workspace, audit, self._http)
                    for a in agents
                ),
                return_exceptions=True,
            )
        async with httpx.AsyncClient() as http:
            return await asyncio.gather(
                *(
                    self.run_agent_pipeline(a, email, sender_verified, workspace, audit, http)
                    for a in agents
                ),
                return_exceptions=True,
            )

    async def process_email(
        self,
        workspace: WorkspaceConfig,
        email: InboundEmail,
        interaction_id: Optional[str],
    ) -> ProcessingOutcome:
        """
        Process one email for every matched agent and join the results.

        Business failures are returned in the outcome, never raised.
        """
        user_id = workspace.user_id
        audit = ActivityLog(self._db, user_id, interaction_id)
        outcome = await self._process(workspace, email, interaction_id, audit)
        if not outcome.success:
            self._mark_interaction_failed(interaction_id)
        return outcome

    async def _process(
        self,
        workspace: WorkspaceConfig,
        email: InboundEmail,
        interaction_id: Optional[str],
        audit: ActivityLog,
    ) -> ProcessingOutcome:
        recipients = email.recipient_addresses()
        if not recipients:
            message = (
                f"No recipient emails found in To, Cc, or Bcc for interaction {interaction_id}. "
                "Cannot determine agent mapping."
            )
            logger.warning(message)
            return ProcessingOutcome(success=True, warnings=[message])

        if not workspace.reply_webhook_url or not workspace.reply_api_token:
            error = "No reply service URL or API token configured for this workspace."
            logger.error(error)
            audit.record("reply_config_missing", "error", {"error": error})
            return ProcessingOutcome.failure(error)

        try:
            agent_ids = get_agent_ids_by_emails(self._db, workspace.user_id, recipients)
        except RuntimeError as e:
            error = f"Agent lookup failed for interaction {interaction_id}: {e}"
            logger.error(error)
            audit.record("agent_lookup_failed", "error", {"error": str(e)})
            return ProcessingOutcome.failure(error)

        if not agent_ids:
            message = (
                f"No agents found matching recipient emails for interaction {interaction_id}: "
                f"{', '.join(recipients)}."
            )
            logger.info(message)
            return ProcessingOutcome(success=True, warnings=[message])

        sender_verified = is_sender_verified(email.headers, email.sender_email)

        agents, errors = build_agent_configs(self._db, workspace.user_id, agent_ids)
        logger.info(
            "Fanning out email %s to %d agent(s): %s",
            email.message_id,
            len(agents),
            ", ".join(a.agent_id for a in agents),
        )

        results = await self._fan_out(agents, email, sender_verified, workspace, audit)

        warnings: list[str] = []
        processed = 0
        for agent, result in zip(agents, results):
            if isinstance(result, BaseException):
                error = f"Error processing with agent {agent.agent_id} for interaction {interaction_id}: {result}"
                logger.error(error)
                errors.append(error)
                audit.record(
                    "agent_processing_error",
                    "error",
                    {"agent_id": agent.agent_id, "error": str(result)},
                )
            else:
                processed += 1

        matched = len(agents)
        if processed > 0:
            message = (
                f"Successfully processed {processed} of {matched} matched agents "
                f"for interaction {interaction_id}."
            )
            if processed < matched:
                message += " Some errors occurred with other agents."
            warnings.append(message)
            success = True
        else:
            warnings.append(
                f"No agents processed the email successfully out of {matched} matched "
                f"for interaction {interaction_id}."
            )
            success = False

        return ProcessingOutcome(
            success=success,
            warnings=warnings,
            errors=errors,
            matched_agents=matched,
            processed_agents=processed,
        )
