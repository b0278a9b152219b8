"""
Pydantic models for tool plans and their execution.

A plan is an ordered list of PlanStep objects proposed by the planner model
for one (email, agent) pair. Executing it produces exactly one
ExecutionOutput per step, in the same order.
"""

from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel


class PlanStep(BaseModel):
    """
    One tool invocation.

    args values are either literals or placeholder strings of the form
    ``{{steps[j].outputs.PATH}}`` where j is strictly lower than this step's
    position in the plan.
    """

    tool: str
    args: dict[str, Any] = {}
    reasoning: Optional[str] = None


class StepStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class ExecutionOutput(BaseModel):
    """Outcome of one executed (or rejected) plan step."""

    tool_name: str
    status: StepStatus
    response: Optional[Any] = None
    raw_response: str = ""
    error_message: Optional[str] = None
    # Resolved arguments when resolution succeeded, otherwise the plan's
    # unresolved arguments.
    request_args: dict[str, Any] = {}

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCESS

    @classmethod
    def failure(
        cls,
        tool_name: str,
        error_message: str,
        request_args: Optional[dict[str, Any]] = None,
        raw_response: str = "",
    ) -> "ExecutionOutput":
        return cls(
            tool_name=tool_name,
            status=StepStatus.ERROR,
            response=None,
            raw_response=raw_response,
            error_message=error_message,
            request_args=request_args or {},
        )


class PlanResult(BaseModel):
    """
    Result of one planning call.

    plan is None when generation failed (API, network or parse error) and an
    empty list when the model decided no action is needed. The two cases
    produce different digests downstream.
    """

    plan: Optional[list[PlanStep]] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.plan is None

    @classmethod
    def empty(cls) -> "PlanResult":
        return cls(plan=[])
