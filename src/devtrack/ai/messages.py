"""Conversation message types.

A message is one of four role-specific models, discriminated on ``role``.
Consumers dispatch on the concrete class with ``match`` and end with
``assert_never`` so that adding a role fails type checking everywhere it
is not handled.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ToolCall(BaseModel):
    """A model's request to invoke one tool. ``arguments`` is the raw JSON text."""

    id: str
    name: str
    arguments: str = "{}"

    def parse_arguments(self) -> dict[str, Any]:
        """Decode ``arguments``; anything that is not a JSON object yields ``{}``."""
        try:
            parsed = json.loads(self.arguments or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}
        return parsed if isinstance(parsed, dict) else {}


class Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class _MessageBase(BaseModel):
    id: str = Field(default_factory=lambda: new_id("msg"))
    content: str = ""
    timestamp: datetime = Field(default_factory=utc_now)


class SystemMessage(_MessageBase):
    role: Literal["system"] = "system"


class UserMessage(_MessageBase):
    role: Literal["user"] = "user"


class AssistantMessage(_MessageBase):
    role: Literal["assistant"] = "assistant"
    tool_calls: list[ToolCall] = Field(default_factory=list)


class ToolMessage(_MessageBase):
    role: Literal["tool"] = "tool"
    tool_call_id: str
    tool_name: str


Message = Annotated[
    Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage],
    Field(discriminator="role"),
]

_message_adapter: TypeAdapter[Message] = TypeAdapter(Message)


def parse_message(data: dict) -> Message:
    """Validate a stored message dict into its role-specific model."""
    return _message_adapter.validate_python(data)
