"""
Tool plan generation.

Asks Claude for an ordered list of tool calls that would help answer an
inbound email, given the agent's catalog of tool bindings. The model must
answer with a bare JSON array of {"tool", "args", "reasoning"} objects; later
steps may consume earlier steps' outputs through placeholders such as
``{{steps[0].outputs.id}}``.

Every model call is recorded to llm_logs, whether it succeeds or not.
"""

import json
import logging
from typing import Any, Optional

import anthropic

from mailplan.config import Settings
from mailplan.models.agent import AgentConfig
from mailplan.models.plan import PlanResult, PlanStep
from mailplan.services.audit import ActivityLog
from mailplan.services.errors import ConfigurationError

logger = logging.getLogger(__name__)

PLAN_PROMPT = """\
You are an intent and action planner for a customer email inbox. Based on the
sender information and the email content below, decide which of the available
tools must be called to help answer or fulfil the sender's request.

Sender information:
---
Sender Name: {sender_name}
Sender Email: {sender_email}
---

Email content:
---
{email_body}
---

Available tools:
---
{tool_catalog}
---

Chaining tool calls:
A plan may contain several steps. To pass an output of an earlier step into a
later step, use the placeholder syntax '{{{{steps[INDEX].outputs.PATH}}}}':
- INDEX is the 0-based position of the earlier step in your plan. It must be
  lower than the position of the step that uses it.
- PATH follows the earlier tool's output_schema. Use dots for object fields
  and square brackets for array items, e.g. 'orders[0].id'. If the earlier
  tool returns a plain array, start with the index: 'steps[0].outputs[0].id'.
- A placeholder must be the whole argument value, not part of a longer string.

Arguments:
- Only use argument names listed in the tool's args_schema_keys, spelled
  exactly as listed. Do not rename keys or change their casing.
- When a tool can identify the customer by email or name, pass the sender's
  details from the sender information above, even if the argument is optional.

Output format:
Respond ONLY with a JSON array. Do not add any text before or after it.
Only use tool names from the available tools list.
If no tool is needed, respond with [].
Each element must look like:
{{"tool": "<tool name>", "args": {{"<argName>": "<value>"}}, "reasoning": "<why this call is needed>"}}

Example of a chained plan:
[
  {{"tool": "getCustomerByEmail", "args": {{"email": "customer@example.com"}}, "reasoning": "Identify the customer."}},
  {{"tool": "getOrders", "args": {{"customerId": "{{{{steps[0].outputs.id}}}}"}}, "reasoning": "Fetch the customer's orders."}},
  {{"tool": "getTrackingInfo", "args": {{"orderId": "{{{{steps[1].outputs.orders[0].id}}}}"}}, "reasoning": "Find where the latest order is."}}
]
"""


def build_plan_prompt(
    email_body: str,
    sender_email: str,
    sender_name: Optional[str],
    agent: AgentConfig,
    body_limit: int = 8000,
) -> str:
    catalog = [tool.catalog_entry() for tool in agent.tools]
    return PLAN_PROMPT.format(
        sender_name=sender_name or "Unknown",
        sender_email=sender_email,
        email_body=email_body[:body_limit],
        tool_catalog=json.dumps(catalog, indent=2),
    )


def _strip_code_fences(raw_text: str) -> str:
    text = raw_text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        lines = [ln for ln in lines if not ln.strip().startswith("```")]
        text = "\n".join(lines).strip()
    return text


def parse_plan(raw_text: str, agent: AgentConfig) -> list[PlanStep]:
    """
    Parse and validate the model's answer.

    Accepts a bare array or a {"plan": [...]} envelope. Steps naming a tool
    outside the agent's catalog, or with non-object args, are dropped.

    Raises ValueError when the text is not JSON or has the wrong shape.
    """
    parsed = json.loads(_strip_code_fences(raw_text))

    if isinstance(parsed, dict) and isinstance(parsed.get("plan"), list):
        logger.warning("Planner wrapped its answer in a 'plan' object; unwrapping")
        parsed = parsed["plan"]

    if not isinstance(parsed, list):
        raise ValueError('Model response JSON is not an array or a {"plan": [...]} object')

    known_tools = agent.tool_names()
    steps: list[PlanStep] = []
    for item in parsed:
        tool = item.get("tool") if isinstance(item, dict) else None
        if not isinstance(tool, str) or tool not in known_tools:
            logger.warning("Dropping plan step with unknown tool %r", tool)
            continue
        args = item.get("args")
        if args is None:
            args = {}
        if not isinstance(args, dict):
            logger.warning("Dropping plan step for %r: args is not an object", tool)
            continue
        reasoning = item.get("reasoning")
        steps.append(
            PlanStep(
                tool=tool,
                args=args,
                reasoning=reasoning if isinstance(reasoning, str) else None,
            )
        )
    return steps


def _response_text(response: Any) -> str:
    for block in response.content or []:
        text = getattr(block, "text", None)
        if text:
            return text
    raise ValueError("Model response contained no text content")


async def generate_plan(
    email_body: str,
    sender_email: str,
    sender_name: Optional[str],
    agent: AgentConfig,
    settings: Settings,
    audit: ActivityLog,
    client: Optional[anthropic.AsyncAnthropic] = None,
) -> PlanResult:
    """
    Produce a validated tool plan for one agent.

    Returns an empty plan without calling the model when the body is blank or
    the agent has no tools. Returns PlanResult(plan=None, error=...) when the
    call or the parsing fails.

    Raises:
        ConfigurationError: no client was given and ANTHROPIC_API_KEY is unset.
    """
    if not email_body or not email_body.strip():
        logger.warning("Email body is empty; skipping plan generation for agent %s", agent.agent_id)
        return PlanResult.empty()

    if not agent.tools:
        logger.info("Agent %s has no tools; returning empty plan", agent.agent_id)
        return PlanResult.empty()

    if client is None:
        if not settings.anthropic_api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is not set")
        client = anthropic.AsyncAnthropic(
            api_key=settings.anthropic_api_key,
            timeout=settings.planner_timeout_seconds,
            max_retries=settings.planner_max_retries,
        )

    prompt = build_plan_prompt(
        email_body, sender_email, sender_name, agent, settings.email_body_limit
    )

    raw_response: Any = None
    plan: Optional[list[PlanStep]] = None
    error: Optional[str] = None

    try:
        response = await client.messages.create(
            model=settings.planner_model,
            max_tokens=settings.planner_max_tokens,
            temperature=0.2,
            messages=[{"role": "user", "content": prompt}],
        )
        raw_text = _response_text(response)
        raw_response = {
            "text": raw_text,
            "stop_reason": getattr(response, "stop_reason", None),
            "usage": {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        }
        plan = parse_plan(raw_text, agent)
        logger.info(
            "Generated plan with %d step(s) for agent %s", len(plan), agent.agent_id
        )
    except anthropic.APIError as e:
        error = f"Model API error: {e}"
        logger.error("Plan generation failed for agent %s: %s", agent.agent_id, error)
        raw_response = raw_response or {"error": str(e)}
    except ValueError as e:
        # json.JSONDecodeError is a ValueError
        error = f"Could not parse plan from model response: {e}"
        logger.error("Plan generation failed for agent %s: %s", agent.agent_id, error)
    except Exception as e:
        error = f"Unexpected error during plan generation: {e}"
        logger.exception("Plan generation failed for agent %s", agent.agent_id)
        raw_response = raw_response or {"error": str(e)}

    audit.record_llm_call(
        prompt=prompt,
        raw_response=raw_response,
        plan=[step.model_dump() for step in plan] if plan is not None else None,
        model=settings.planner_model,
        error=error,
    )

    if error is not None:
        return PlanResult(plan=None, error=error)
    return PlanResult(plan=plan)
