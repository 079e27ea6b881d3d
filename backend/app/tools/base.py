from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Type

from pydantic import BaseModel


@dataclass(frozen=True)
class Tool:
    """
    A named, schema-described side-effecting operation the answer
    generator may call mid-generation.

    Arguments are validated against `input_model` before `handler` runs.
    """

    name: str
    description: str
    input_model: Type[BaseModel]
    handler: Callable[[Any], Awaitable[Dict[str, Any]]]
    strict: bool = True

    @property
    def parameters(self) -> Dict[str, Any]:
        schema = self.input_model.model_json_schema()
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        schema["required"] = list(schema.get("properties", {}).keys())
        schema["additionalProperties"] = False
        return schema

    def to_openai_spec(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
                "strict": self.strict,
            },
        }

    async def execute(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        validated = self.input_model.model_validate(arguments)
        return await self.handler(validated)


def index_tools(tools: Iterable[Tool]) -> Dict[str, Tool]:
    by_name: Dict[str, Tool] = {}
    for tool in tools:
        if tool.name in by_name:
            raise ValueError(f"Duplicate tool name: {tool.name}")
        by_name[tool.name] = tool
    return by_name
