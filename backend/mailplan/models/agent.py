"""
Pydantic models for agent configuration read from Supabase.

Models:
  WorkspaceConfig  - workspace_configs row (webhook key + reply service)
  ToolBinding      - tool_bindings row, a (provider, action) pair exposed
                     to the planner under a unique name
  AgentConfig      - one matched agent plus its active tool catalog
"""

from typing import Any, Optional
from pydantic import BaseModel


# Placeholder values used when turning a JSON schema into an example payload
_EXAMPLE_BY_TYPE: dict[str, Any] = {
    "string": "string",
    "number": 0,
    "integer": 0,
    "boolean": False,
    "array": [],
    "null": None,
}


def example_from_schema(schema: Any) -> Any:
    """
    Build an example value from a JSON-schema-like definition.

    Tool bindings store their input/output formats either as a JSON schema
    (``{"type": "object", "properties": {...}}``) or as a literal example
    object. Literal examples are returned unchanged.
    """
    if not isinstance(schema, dict):
        return schema

    properties = schema.get("properties")
    if isinstance(properties, dict):
        return {key: example_from_schema(sub) for key, sub in properties.items()}

    schema_type = schema.get("type")
    if isinstance(schema_type, str):
        if schema_type == "object":
            return {}
        if schema_type == "array":
            items = schema.get("items")
            return [example_from_schema(items)] if isinstance(items, dict) else []
        if "example" in schema:
            return schema["example"]
        if "enum" in schema and schema["enum"]:
            return schema["enum"][0]
        return _EXAMPLE_BY_TYPE.get(schema_type)

    return schema


def _top_level_keys(schema: Any) -> list[str]:
    example = example_from_schema(schema)
    if isinstance(example, dict):
        return list(example.keys())
    return []


class WorkspaceConfig(BaseModel):
    """workspace_configs row. Unknown columns are ignored."""
    model_config = {"extra": "ignore"}

    user_id: str
    webhook_api_key: Optional[str] = None
    reply_webhook_url: Optional[str] = None
    reply_api_token: Optional[str] = None


class ToolBinding(BaseModel):
    """A configured tool the planner may call, scoped to one user."""
    model_config = {"extra": "ignore"}

    id: str
    name: str
    provider_name: str
    action_name: str
    instructions: Optional[str] = None
    expected_format: Optional[Any] = None
    output_schema: Optional[Any] = None
    active: bool = True

    def argument_keys(self) -> list[str]:
        return _top_level_keys(self.expected_format)

    def example_arguments(self) -> Any:
        return example_from_schema(self.expected_format)

    def output_fields(self) -> list[str]:
        return _top_level_keys(self.output_schema)

    def catalog_entry(self) -> dict:
        """The shape of this binding as shown to the planner model."""
        return {
            "name": self.name,
            "description": self.instructions or "No specific instructions provided.",
            "args_schema_keys": self.argument_keys(),
            "args_schema_example": self.example_arguments(),
            "output_fields": self.output_fields(),
            "output_schema": self.output_schema,
        }


class AgentConfig(BaseModel):
    """A matched agent and its ordered catalog of active tool bindings."""

    agent_id: str
    tools: list[ToolBinding] = []

    def find_tool(self, name: str) -> Optional[ToolBinding]:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None

    def tool_names(self) -> set[str]:
        return {tool.name for tool in self.tools}
