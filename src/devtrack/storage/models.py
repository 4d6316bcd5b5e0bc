"""Data models for the storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from devtrack.ai.messages import Message, UserMessage, new_id, utc_now

DEFAULT_TITLE = "New conversation"
TITLE_MAX_CHARS = 80


class Conversation(BaseModel):
    """One interactive thread, persisted as a single JSON document."""

    id: str = Field(default_factory=lambda: new_id("chat"))
    title: str = DEFAULT_TITLE
    messages: list[Message] = Field(default_factory=list)
    model: Optional[str] = None  # pinned model for this conversation
    created: datetime = Field(default_factory=utc_now)
    updated: datetime = Field(default_factory=utc_now)

    def user_message_count(self) -> int:
        return sum(1 for m in self.messages if isinstance(m, UserMessage))

    def apply_auto_title(self, text: str) -> bool:
        """Title the conversation from its first user message. Returns True if set."""
        if self.user_message_count() != 1:
            return False
        self.title = text[:TITLE_MAX_CHARS] + ("..." if len(text) > TITLE_MAX_CHARS else "")
        return True


class ConversationSummary(BaseModel):
    id: str
    title: str
    updated: datetime


@dataclass
class AuditStep:
    index: int
    type: str  # "thinking" | "tool_call" | "tool_result"
    timestamp: datetime = field(default_factory=utc_now)
    content: Optional[str] = None
    tool_name: Optional[str] = None
    tool_args: Optional[dict[str, Any]] = None
    tool_result: Optional[str] = None
    tool_result_preview: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0


@dataclass
class AuditChange:
    entity_type: str
    entity_id: str
    action: str
    description: str
    tool_name: str


@dataclass
class AuditRun:
    id: str
    name: str
    trigger: str
    started_at: datetime = field(default_factory=utc_now)
    ended_at: Optional[datetime] = None
    status: str = "running"  # "running" | "completed" | "failed"
    model: str = ""
    provider: str = ""
    iterations: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    summary: str = ""
    steps: list[AuditStep] = field(default_factory=list)
    changes: list[AuditChange] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.ended_at is None:
            return 0.0
        return (self.ended_at - self.started_at).total_seconds()
