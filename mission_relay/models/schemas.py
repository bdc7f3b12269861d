"""Pydantic models for the mission relay wire protocol and HTTP API."""

import json
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Status file schemas
class Milestone(BaseModel):
    """One entry of a mission's milestone history."""
    model_config = ConfigDict(extra="allow")

    event: Optional[str] = None

    @field_validator("event", mode="before")
    @classmethod
    def _event_text(cls, value: Any) -> Optional[str]:
        if value is None or isinstance(value, (dict, list)):
            return None
        return str(value)


class UrgentItem(BaseModel):
    """An item a mission wants surfaced to the user."""
    model_config = ConfigDict(extra="allow")

    subject: Optional[str] = None
    summary: Optional[str] = None
    draft: Optional[str] = None

    @field_validator("subject", "summary", "draft", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Optional[str]:
        if value is None or isinstance(value, (dict, list)):
            return None
        return str(value)


class Artifacts(BaseModel):
    """Results attached to a mission status."""
    model_config = ConfigDict(extra="allow")

    stats: Optional[Dict[str, Any]] = None
    urgent: Optional[List[UrgentItem]] = None

    @field_validator("stats", mode="before")
    @classmethod
    def _stats_mapping(cls, value: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(value, dict):
            return None
        return {str(k): v for k, v in value.items() if not isinstance(v, (dict, list))}

    @field_validator("urgent", mode="before")
    @classmethod
    def _urgent_items(cls, value: Any) -> Optional[List[Any]]:
        if not isinstance(value, list):
            return None
        return [item for item in value if isinstance(item, dict)]


class MissionStatus(BaseModel):
    """
    Full status snapshot written by a mission agent.

    Each snapshot replaces the previous one for its mission. Optional fields
    that are malformed are treated as absent rather than rejected.
    """
    model_config = ConfigDict(extra="allow")

    stage: str = ""
    detail: Optional[str] = None
    milestones: Optional[List[Milestone]] = None
    artifacts: Optional[Artifacts] = None

    @field_validator("stage", mode="before")
    @classmethod
    def _stage_text(cls, value: Any) -> str:
        if value is None or isinstance(value, (dict, list)):
            return ""
        return str(value)

    @field_validator("detail", mode="before")
    @classmethod
    def _detail_text(cls, value: Any) -> Optional[str]:
        if value is None or isinstance(value, (dict, list)):
            return None
        return str(value)

    @field_validator("milestones", mode="before")
    @classmethod
    def _milestone_list(cls, value: Any) -> Optional[List[Any]]:
        if not isinstance(value, list):
            return None
        return [item for item in value if isinstance(item, dict)]

    @field_validator("artifacts", mode="before")
    @classmethod
    def _artifacts_mapping(cls, value: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(value, dict):
            return None
        return value

    @property
    def is_complete(self) -> bool:
        return self.stage == "complete"

    @property
    def latest_milestone(self) -> Optional[Milestone]:
        if not self.milestones:
            return None
        return self.milestones[-1]


class StatusEnvelope(BaseModel):
    """Message broadcast to viewers whenever a status file changes."""

    type: Literal["status"] = "status"
    mission: str = Field(min_length=1)
    data: Dict[str, Any]

    def to_wire(self) -> str:
        """Serialize as the JSON text frame sent over the push channel."""
        return json.dumps({"type": self.type, "mission": self.mission, "data": self.data})

    def status(self) -> MissionStatus:
        return MissionStatus.model_validate(self.data)


# Control API schemas
class LaunchConfig(BaseModel):
    """Configuration handed to the launch script through config.json."""

    linkedin_url: str = Field(min_length=1)
    style_preference: str = "Minimal"
    documents_path: str = "~/Documents"
    documents_prompt: str = ""

    @field_validator("style_preference", "documents_path", "documents_prompt", mode="before")
    @classmethod
    def _blank_means_default(cls, value: Any, info) -> Any:
        if value is None or value == "":
            return cls.model_fields[info.field_name].default
        return value


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "ok"
    version: str
    uptime: float
    timestamp: datetime
