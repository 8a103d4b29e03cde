"""Request and result models exchanged with the caller (UI layer).

Pydantic models that carry agent calls and their outcomes.
NO presentation markup belongs in any field; renderers decide display.
"""

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from bi_agents.core.cancellation import CancellationToken


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentStatus(str, Enum):
    """Lifecycle of one agent result."""

    PENDING = "pending"
    COMPLETE = "complete"
    ERROR = "error"


class Agent(BaseModel):
    """A persona routed to an LLM service with its own system prompt."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    description: str
    service: str = Field(default="deepseek", description="Service id of the provider")
    system_prompt: Optional[str] = Field(
        default=None,
        description="Persona prompt; a generic one is derived when absent",
    )

    def resolved_system_prompt(self) -> str:
        if self.system_prompt:
            return self.system_prompt
        return (
            f"You are {self.display_name}. {self.description}. "
            "Provide clear, actionable analysis."
        )


class FileSummary(BaseModel):
    """An attached file, already extracted and summarised upstream."""

    model_config = ConfigDict(frozen=True)

    name: str
    summary: str = ""
    content: str = ""
    key_points: List[str] = Field(default_factory=list)
    metrics: List[str] = Field(default_factory=list)

    @computed_field  # type: ignore[misc]
    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.content.encode("utf-8")).hexdigest()


class AgentCallRequest(BaseModel):
    """One agent's share of a user request."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    agent: Agent
    prompt_text: str
    attached_files: List[FileSummary] = Field(default_factory=list)
    file_analysis: str = ""
    token: Optional[CancellationToken] = Field(default=None, exclude=True)

    @property
    def agent_id(self) -> str:
        return self.agent.id

    @property
    def file_hashes(self) -> List[str]:
        return [f.content_hash for f in self.attached_files]


class AgentCallResult(BaseModel):
    """Outcome of one agent call, in request order."""

    agent_id: str
    content: str
    status: AgentStatus
    completed_at: datetime = Field(default_factory=_utcnow)
    cached: bool = False
    error_kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == AgentStatus.COMPLETE


class Completion(BaseModel):
    """What a provider returns for one successful call."""

    content: str
    tokens_used: int = 0
    model: str = ""
    latency_ms: float = 0.0
