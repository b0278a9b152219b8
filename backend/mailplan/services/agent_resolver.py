"""
Agent resolution and tool catalog assembly.

Two lookups against Supabase, both scoped to the workspace owner:

1. agent_email_mappings  - recipient mailbox address -> agent_id
2. agent_tool_mappings + tool_bindings - agent_id -> active tool bindings

Addresses in agent_email_mappings are stored lower-case, so callers must pass
lower-cased addresses (InboundEmail.recipient_addresses() does this).
"""

import logging
from typing import Any

from mailplan.models.agent import AgentConfig, ToolBinding

logger = logging.getLogger(__name__)

_TOOL_COLUMNS = (
    "id, name, provider_name, action_name, instructions, "
    "expected_format, output_schema, active"
)


def get_agent_ids_by_emails(db: Any, user_id: str, email_addresses: list[str]) -> list[str]:
    """
    Return distinct agent ids mapped to any of the addresses, in first-seen order.

    Raises RuntimeError when the query fails so the caller can fail the email.
    """
    if not user_id or not email_addresses:
        return []

    try:
        result = (
            db.table("agent_email_mappings")
            .select("agent_id")
            .eq("user_id", user_id)
            .in_("email_address", email_addresses)
            .execute()
        )
    except Exception as e:
        raise RuntimeError(f"Failed to fetch agent email mappings: {e}") from e

    agent_ids: list[str] = []
    for row in result.data or []:
        agent_id = row.get("agent_id")
        if agent_id and agent_id not in agent_ids:
            agent_ids.append(agent_id)
    return agent_ids


def build_agent_configs(
    db: Any,
    user_id: str,
    agent_ids: list[str],
) -> tuple[list[AgentConfig], list[str]]:
    """
    Assemble one AgentConfig per matched agent with its active tool bindings.

    Every agent in agent_ids gets a config, possibly with an empty catalog.
    Query failures are returned as error strings rather than raised; the
    affected agents proceed with whatever catalog could be built.

    Returns:
        (configs, errors) where configs preserves the order of agent_ids.
    """
    configs = {agent_id: AgentConfig(agent_id=agent_id) for agent_id in agent_ids}
    errors: list[str] = []

    if not agent_ids:
        return [], errors

    try:
        mapping_result = (
            db.table("agent_tool_mappings")
            .select("agent_id, tool_binding_id")
            .eq("user_id", user_id)
            .eq("active", True)
            .in_("agent_id", agent_ids)
            .execute()
        )
        mappings = [
            m for m in (mapping_result.data or [])
            if m.get("agent_id") in configs and m.get("tool_binding_id")
        ]
    except Exception as e:
        errors.append(f"Error fetching agent tool mappings: {e}")
        return list(configs.values()), errors

    binding_ids = list(dict.fromkeys(m["tool_binding_id"] for m in mappings))
    if not binding_ids:
        logger.info("Agents %s have no active tool mappings", ", ".join(agent_ids))
        return list(configs.values()), errors

    try:
        binding_result = (
            db.table("tool_bindings")
            .select(_TOOL_COLUMNS)
            .in_("id", binding_ids)
            .eq("active", True)
            .execute()
        )
    except Exception as e:
        errors.append(f"Error fetching tool bindings: {e}")
        return list(configs.values()), errors

    bindings_by_id: dict[str, ToolBinding] = {}
    for row in binding_result.data or []:
        try:
            binding = ToolBinding(**row)
        except Exception as e:
            logger.warning("Skipping malformed tool binding %r: %s", row.get("id"), e)
            continue
        if binding.provider_name and binding.action_name:
            bindings_by_id[binding.id] = binding
        else:
            logger.warning("Skipping tool binding %r without provider/action", binding.name)

    for mapping in mappings:
        binding = bindings_by_id.get(mapping["tool_binding_id"])
        if binding is None:
            continue
        config = configs[mapping["agent_id"]]
        if config.find_tool(binding.name) is not None:
            logger.warning(
                "Agent %s has duplicate tool name %r; keeping the first binding",
                config.agent_id,
                binding.name,
            )
            continue
        config.tools.append(binding)

    return list(configs.values()), errors
