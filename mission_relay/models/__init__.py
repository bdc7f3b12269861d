"""Pydantic models shared by the relay server and viewers."""

from .schemas import (
    Artifacts,
    HealthResponse,
    LaunchConfig,
    Milestone,
    MissionStatus,
    StatusEnvelope,
    UrgentItem,
)

__all__ = [
    'Artifacts',
    'HealthResponse',
    'LaunchConfig',
    'Milestone',
    'MissionStatus',
    'StatusEnvelope',
    'UrgentItem',
]
