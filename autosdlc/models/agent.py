from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional
from enum import Enum

# Actions kept in memory; the rendered document shows fewer
MAX_RECENT_ACTIONS = 50

class AgentType(str, Enum):
    CUSTOMER = "customer"
    PM = "pm"
    CODER = "coder"
    REVIEWER = "reviewer"
    TESTER = "tester"

class AgentStatus(str, Enum):
    IDLE = "IDLE"
    BUSY = "BUSY"
    BLOCKED = "BLOCKED"
    ERROR = "ERROR"

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class CurrentActivity(_CamelModel):
    task: Optional[str] = None
    progress: int = Field(default=0, ge=0, le=100)
    dependencies: list[str] = []

    @field_validator("dependencies")
    @classmethod
    def dedupe_dependencies(cls, v: list[str]) -> list[str]:
        # dict.fromkeys keeps first-seen order
        return list(dict.fromkeys(d.strip() for d in v if d and d.strip()))

class RecentAction(_CamelModel):
    timestamp: str
    action: str
    result: Optional[str] = None

class AgentMetrics(_CamelModel):
    tasks_completed: int = Field(default=0, ge=0)
    uptime_seconds: int = Field(default=0, ge=0)
    error_count: int = Field(default=0, ge=0)

class AgentStatusRecord(_CamelModel):
    """Live state of one agent, as published in its status document"""
    agent_type: AgentType
    status: AgentStatus = AgentStatus.IDLE
    last_updated: str = ""
    current_activity: CurrentActivity = Field(default_factory=CurrentActivity)
    recent_actions: list[RecentAction] = []
    metrics: AgentMetrics = Field(default_factory=AgentMetrics)

    @field_validator("recent_actions")
    @classmethod
    def keep_newest_actions(cls, v: list[RecentAction]) -> list[RecentAction]:
        return v[-MAX_RECENT_ACTIONS:]
