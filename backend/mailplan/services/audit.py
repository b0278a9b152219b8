"""
Append-only audit trail for email processing.

Every stage writes one row per notable event to activity_logs, and every
planner invocation writes one row to llm_logs. Writes are awaited inline but
never raise: a failed audit write is logged at WARNING and reported through
the return value, so the pipeline keeps going.
"""

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

ACTIVITY_TABLE = "activity_logs"
LLM_LOG_TABLE = "llm_logs"


class ActivityLog:
    """Audit writer bound to one user and (optionally) one email interaction."""

    def __init__(self, db: Any, user_id: str, interaction_id: Optional[str] = None):
        self._db = db
        self.user_id = user_id
        self.interaction_id = interaction_id

    def _insert(self, table: str, row: dict) -> bool:
        try:
            self._db.table(table).insert(row).execute()
            return True
        except Exception:
            logger.warning(
                "Audit write to %s failed (interaction=%s, action=%s)",
                table,
                self.interaction_id,
                row.get("action", "llm_call"),
                exc_info=True,
            )
            return False

    def record(self, action: str, status: str, details: Optional[dict] = None) -> bool:
        """
        Append an activity_logs row.

        status is one of "success", "warning", "error".
        """
        return self._insert(
            ACTIVITY_TABLE,
            {
                "user_id": self.user_id,
                "email_interaction_id": self.interaction_id,
                "action": action,
                "status": status,
                "details": details or {},
            },
        )

    def record_llm_call(
        self,
        prompt: str,
        raw_response: Any,
        plan: Optional[list[dict]],
        model: str,
        error: Optional[str],
    ) -> bool:
        return self._insert(
            LLM_LOG_TABLE,
            {
                "user_id": self.user_id,
                "email_interaction_id": self.interaction_id,
                "prompt_messages": [{"role": "user", "content": prompt}],
                "llm_response": raw_response,
                "tool_plan_generated": plan,
                "model_used": model,
                "error_message": error,
            },
        )
