"""
Sequential execution of one agent's tool plan.

For each step, in order:
  1. Find the tool binding by name in the agent's catalog.
  2. Load the user's credential bundle for the binding's provider (cached per
     provider for the whole run).
  3. Resolve placeholder arguments against earlier steps' parsed responses.
  4. POST {"args", "auth"} to {TOOL_SERVER_URL}/mcp/{provider}/{action}.

Exactly one ExecutionOutput and one activity_logs row are produced per step,
whatever happens. Steps never run concurrently: a step may only read outputs
of steps that already finished.
"""

import json
import logging
from typing import Any, Optional

import httpx

from mailplan.config import Settings
from mailplan.models.agent import AgentConfig
from mailplan.models.plan import ExecutionOutput, PlanStep, StepStatus
from mailplan.services.audit import ActivityLog
from mailplan.services.errors import ChainingError
from mailplan.services.placeholders import (
    NOT_FOUND,
    contains_step_reference,
    parse_placeholder,
    resolve_path,
)

logger = logging.getLogger(__name__)

INTERNAL_API_KEY_HEADER = "x-internal-api-key"

# How much of a response body is quoted in error messages
_ERROR_BODY_CHARS = 200
_UNPARSEABLE_BODY_CHARS = 100


def resolve_arguments(args: Any, step_index: int, outputs: list[ExecutionOutput]) -> Any:
    """
    Replace placeholder strings anywhere in args (including nested objects and
    arrays) with values from earlier steps' responses.

    Raises ChainingError when a placeholder points at the current or a later
    step, at a step that failed, or at a path missing from its response. A
    string that mentions a step reference without being a whole, well-formed
    placeholder is rejected too.
    """
    if isinstance(args, dict):
        return {key: resolve_arguments(value, step_index, outputs) for key, value in args.items()}
    if isinstance(args, list):
        return [resolve_arguments(value, step_index, outputs) for value in args]

    reference = parse_placeholder(args)
    if reference is None:
        if contains_step_reference(args):
            raise ChainingError(
                step_index,
                f"Invalid placeholder {args!r}: a step reference must be the whole value "
                "and name a path, e.g. {{steps[0].outputs.id}}.",
            )
        return args

    ref_index, path = reference
    if ref_index >= step_index or ref_index >= len(outputs):
        raise ChainingError(
            step_index,
            f"Invalid placeholder {args!r}: step {ref_index} does not come before step {step_index}.",
        )

    referenced = outputs[ref_index]
    if not referenced.succeeded:
        raise ChainingError(
            step_index,
            f"Invalid placeholder {args!r}: step {ref_index} failed or produced no output.",
        )

    value = resolve_path(referenced.response, path)
    if value is NOT_FOUND:
        raise ChainingError(
            step_index,
            f"Invalid placeholder {args!r}: path '{path}' not found in output of step {ref_index}.",
        )
    return value


class PlanExecutor:
    """Runs one plan for one agent; create a new instance per run."""

    def __init__(
        self,
        db: Any,
        user_id: str,
        agent: AgentConfig,
        settings: Settings,
        audit: ActivityLog,
        http: httpx.AsyncClient,
    ):
        self._db = db
        self._user_id = user_id
        self._agent = agent
        self._settings = settings
        self._audit = audit
        self._http = http
        self._credentials: dict[str, Optional[dict]] = {}
        self._credential_errors: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def _load_credentials(self, provider: str) -> Optional[dict]:
        """
        Return the user's connection values for provider, or None.

        Looked up once per provider; the result (or the failure) is reused by
        every binding of that provider in this run.
        """
        if provider in self._credentials:
            return self._credentials[provider]

        values: Optional[dict] = None
        try:
            result = (
                self._db.table("mcp_connection_params")
                .select("connection_values")
                .eq("user_id", self._user_id)
                .eq("provider_name", provider)
                .limit(1)
                .execute()
            )
            rows = result.data or []
            if rows and isinstance(rows[0].get("connection_values"), dict) and rows[0]["connection_values"]:
                values = rows[0]["connection_values"]
            else:
                self._credential_errors[provider] = (
                    f"Connection parameters not found or empty for provider: {provider}."
                )
        except Exception as e:
            self._credential_errors[provider] = (
                f"Error fetching connection parameters for {provider}: {e}"
            )
            logger.error("Credential lookup failed for provider %s: %s", provider, e)

        self._credentials[provider] = values
        return values

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _reject(
        self, outputs: list[ExecutionOutput], index: int, step: PlanStep, error: str
    ) -> None:
        logger.error("[Step %d] %s", index, error)
        outputs.append(ExecutionOutput.failure(step.tool, error, request_args=step.args))
        self._audit.record(
            "tool_execution_error",
            "error",
            {
                "agent_id": self._agent.agent_id,
                "step": index,
                "tool_name": step.tool,
                "error": error,
                "request_args": step.args,
            },
        )

    async def _call_tool(
        self, url: str, tool_name: str, args: dict, auth: dict
    ) -> tuple[ExecutionOutput, Optional[int]]:
        try:
            response = await self._http.post(
                url,
                json={"args": args, "auth": auth},
                headers={INTERNAL_API_KEY_HEADER: self._settings.tool_server_api_key or ""},
                timeout=self._settings.tool_action_timeout_seconds,
            )
        except httpx.HTTPError as e:
            message = f"Network error calling {tool_name} at {url}: {e!r}"
            return ExecutionOutput.failure(tool_name, message, args, raw_response=str(e)), None

        raw = response.text
        if not response.is_success:
            message = (
                f"Tool call failed for {tool_name} to {url}: "
                f"{response.status_code} {response.reason_phrase}. Raw: {raw[:_ERROR_BODY_CHARS]}"
            )
            return ExecutionOutput.failure(tool_name, message, args, raw_response=raw), response.status_code

        try:
            data = json.loads(raw)
        except ValueError:
            message = (
                f"Tool call for {tool_name} succeeded (status {response.status_code}) "
                f"but response was not valid JSON. Raw: {raw[:_UNPARSEABLE_BODY_CHARS]}"
            )
            return ExecutionOutput.failure(tool_name, message, args, raw_response=raw), response.status_code

        output = ExecutionOutput(
            tool_name=tool_name,
            status=StepStatus.SUCCESS,
            response=data,
            raw_response=raw,
            request_args=args,
        )
        return output, response.status_code

    async def run(self, plan: list[PlanStep]) -> list[ExecutionOutput]:
        outputs: list[ExecutionOutput] = []
        if not plan:
            return outputs

        if not self._settings.tool_server_url or not self._settings.tool_server_api_key:
            error = "TOOL_SERVER_URL or TOOL_SERVER_API_KEY is not configured. Cannot call the tool server."
            logger.error(error)
            outputs = [ExecutionOutput.failure(step.tool, error, step.args) for step in plan]
            self._audit.record(
                "tool_execution_system_error",
                "error",
                {"agent_id": self._agent.agent_id, "error": error, "steps": len(plan)},
            )
            return outputs

        for index, step in enumerate(plan):
            binding = self._agent.find_tool(step.tool)
            if binding is None:
                self._reject(outputs, index, step, f"Tool binding not found for tool: {step.tool}.")
                continue

            auth = self._load_credentials(binding.provider_name)
            if auth is None:
                self._reject(outputs, index, step, self._credential_errors[binding.provider_name])
                continue

            try:
                args = resolve_arguments(step.args, index, outputs)
            except ChainingError as e:
                self._reject(outputs, index, step, str(e))
                continue

            url = self._settings.tool_action_url(binding.provider_name, binding.action_name)
            logger.info("[Step %d] Calling %s via %s", index, step.tool, url)
            output, status_code = await self._call_tool(url, step.tool, args, auth)
            outputs.append(output)

            if output.succeeded:
                logger.info("[Step %d] %s succeeded", index, step.tool)
            else:
                logger.error("[Step %d] %s", index, output.error_message)

            self._audit.record(
                "tool_execution_attempt",
                output.status.value,
                {
                    "agent_id": self._agent.agent_id,
                    "step": index,
                    "tool_name": step.tool,
                    "target_url": url,
                    "request_args": args,
                    "response_status_code": status_code,
                    "error": output.error_message,
                },
            )

        return outputs


async def execute_plan(
    plan: list[PlanStep],
    agent: AgentConfig,
    db: Any,
    user_id: str,
    settings: Settings,
    audit: ActivityLog,
    http: httpx.AsyncClient,
) -> list[ExecutionOutput]:
    """Execute plan for agent; returns one ExecutionOutput per step, in order."""
    executor = PlanExecutor(db, user_id, agent, settings, audit, http)
    return await executor.run(plan)
