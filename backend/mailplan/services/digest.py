"""
Action digest rendering.

The digest is the human-readable summary of what the pipeline did for one
agent, forwarded to the reply service alongside the raw results. Each
outcome that skips execution has its own fixed sentence so the reply service
can tell them apart.
"""

import json
from typing import Optional

from mailplan.models.agent import AgentConfig
from mailplan.models.plan import ExecutionOutput, PlanStep

SENDER_NOT_VERIFIED = (
    "Tool actions skipped: sender email could not be verified by SPF/DKIM checks. "
    "No automated actions were taken."
)
PLANNING_NOT_CONFIGURED = "Tool planning skipped: no model API key is configured."
NO_TOOLS_CONFIGURED = "Tool planning skipped: agent has no active tool bindings configured."
PLAN_GENERATION_FAILED = "Tool plan generation failed. No automated actions were taken."
NO_ACTION_NEEDED = "No tool actions were deemed necessary based on the email content."


def _to_json(value: object) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)


def build_digest(
    plan: list[PlanStep],
    outputs: list[ExecutionOutput],
    agent: Optional[AgentConfig] = None,
) -> str:
    """
    Render one block per step, in plan order.

    An empty plan renders NO_ACTION_NEEDED. Raises ValueError when plan and
    outputs differ in length.
    """
    if len(plan) != len(outputs):
        raise ValueError(
            f"Plan has {len(plan)} step(s) but {len(outputs)} execution output(s)"
        )

    if not plan:
        return NO_ACTION_NEEDED

    blocks: list[str] = []
    for number, (step, output) in enumerate(zip(plan, outputs), start=1):
        binding = agent.find_tool(step.tool) if agent else None
        description = (binding.instructions if binding else None) or "No description found."
        result = _to_json(output.response) if output.succeeded else output.error_message
        blocks.append(
            f"Action {number}: {step.tool}\n"
            f"Description: {description}\n"
            f"Arguments: {_to_json(output.request_args)}\n"
            f"Status: {output.status.value}\n"
            f"Output: {result}\n"
            "---"
        )
    return "\n".join(blocks)
