"""
Per-viewer mission state reconciliation.

A ViewerSession holds everything one viewer knows about the missions; the
MissionReconciler folds status envelopes into it one at a time. Each status
is a full snapshot, so folding the same snapshot twice changes nothing.

Fold rules per envelope:
1. A new ``detail`` (different from the last one seen) adds a log line and a
   timeline entry.
2. The latest milestone adds a log line unless its event equals that detail.
3. The snapshot replaces the stored status for its mission.
4. ``stage == "complete"`` sets the mission's completion flag (never unset).
5. Once all missions are complete, ``apply`` returns True exactly once so
   the caller can schedule the transition to the complete stage.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..config import MISSION_LABELS, MISSIONS
from ..models.schemas import MissionStatus, StatusEnvelope
from .render import MissionSummary, summarize

logger = logging.getLogger(__name__)

BADGE_RUNNING = "Running"
BADGE_COMPLETE = "Complete"


class Stage(Enum):
    """Lifecycle stage of a viewer."""
    SETUP = "setup"
    RUNNING = "running"
    COMPLETE = "complete"


@dataclass
class LogEntry:
    time: datetime
    text: str


@dataclass
class TimelineEvent:
    time: datetime
    mission: str
    label: str
    text: str


SessionListener = Callable[[str, str, str], None]


@dataclass
class ViewerSession:
    """State owned by a single viewer; never shared or persisted."""

    missions: Tuple[str, ...] = MISSIONS
    stage: Stage = Stage.SETUP
    last_detail: Dict[str, Optional[str]] = field(default_factory=dict)
    completed_missions: Dict[str, bool] = field(default_factory=dict)
    last_status_data: Dict[str, Optional[MissionStatus]] = field(default_factory=dict)
    logs: Dict[str, List[LogEntry]] = field(default_factory=dict)
    timeline: List[TimelineEvent] = field(default_factory=list)
    badges: Dict[str, str] = field(default_factory=dict)
    last_update: Dict[str, Optional[datetime]] = field(default_factory=dict)
    stall_warned: Dict[str, bool] = field(default_factory=dict)
    running_since: Optional[datetime] = None
    preview_url: Optional[str] = None
    completion_scheduled: bool = False
    clock: Callable[[], datetime] = datetime.now
    listeners: List[SessionListener] = field(default_factory=list)

    def __post_init__(self):
        for mission in self.missions:
            self.last_detail.setdefault(mission, None)
            self.completed_missions.setdefault(mission, False)
            self.last_status_data.setdefault(mission, None)
            self.logs.setdefault(mission, [])
            self.badges.setdefault(mission, BADGE_RUNNING)
            self.last_update.setdefault(mission, None)
            self.stall_warned.setdefault(mission, False)

    def add_log(self, mission: str, text: str):
        if mission not in self.logs:
            return
        self.logs[mission].append(LogEntry(self.clock(), text))
        self._notify("log", mission, text)

    def add_timeline(self, mission: str, text: str):
        label = MISSION_LABELS.get(mission, mission)
        self.timeline.append(TimelineEvent(self.clock(), mission, label, text))
        self._notify("timeline", mission, text)

    def set_badge(self, mission: str, badge: str):
        if self.badges.get(mission) == badge:
            return
        self.badges[mission] = badge
        self._notify("badge", mission, badge)

    def all_complete(self) -> bool:
        return all(self.completed_missions.get(m, False) for m in self.missions)

    def log_texts(self, mission: str) -> List[str]:
        return [entry.text for entry in self.logs.get(mission, [])]

    def _notify(self, kind: str, mission: str, text: str):
        for listener in self.listeners:
            try:
                listener(kind, mission, text)
            except Exception as e:
                logger.error(f"Error in session listener: {e}")


class MissionReconciler:
    """Folds status envelopes into a ViewerSession."""

    def __init__(self, session: Optional[ViewerSession] = None):
        self.session = session or ViewerSession()

    def apply(self, envelope: StatusEnvelope) -> bool:
        """
        Fold one envelope into the session.

        Returns:
            True when this envelope made every mission complete and the
            transition has not been scheduled before
        """
        session = self.session
        mission = envelope.mission
        if mission not in session.missions:
            logger.debug(f"Ignoring envelope for unknown mission: {mission}")
            return False

        status = envelope.status()
        session.last_update[mission] = session.clock()
        session.stall_warned[mission] = False

        if status.detail and status.detail != session.last_detail[mission]:
            session.last_detail[mission] = status.detail
            session.add_log(mission, status.detail)
            session.add_timeline(mission, status.detail)

        milestone = status.latest_milestone
        if milestone is not None and milestone.event and milestone.event != session.last_detail[mission]:
            session.add_log(mission, milestone.event)

        session.last_status_data[mission] = status

        if status.is_complete:
            session.completed_missions[mission] = True
            session.set_badge(mission, BADGE_COMPLETE)

        if session.all_complete() and not session.completion_scheduled:
            session.completion_scheduled = True
            logger.info("All missions complete")
            return True
        return False

    def fold(self, envelopes: Iterable[StatusEnvelope]) -> bool:
        """Apply several envelopes; True if any of them triggered completion."""
        triggered = False
        for envelope in envelopes:
            triggered = self.apply(envelope) or triggered
        return triggered

    def start(self):
        """Enter the running stage."""
        if self.session.stage is Stage.SETUP:
            self.session.stage = Stage.RUNNING
            self.session.running_since = self.session.clock()

    def finish(self) -> Optional[List[MissionSummary]]:
        """
        Enter the complete stage.

        Returns:
            Final summaries per mission, or None if the session already left
            the running stage
        """
        if self.session.stage is not Stage.RUNNING:
            return None
        self.session.stage = Stage.COMPLETE
        return self.summaries()

    def summaries(self) -> List[MissionSummary]:
        return [
            summarize(
                mission,
                self.session.last_status_data.get(mission),
                preview_url=self.session.preview_url if mission == "website" else None
            )
            for mission in self.session.missions
        ]

    def check_stalls(self, now: datetime, timeout: float) -> List[str]:
        """
        Warn about missions with no update for ``timeout`` seconds.

        A mission is warned once per silence; the next envelope for it
        re-arms the warning. Warnings never touch completion state.

        Returns:
            Missions warned about by this call
        """
        session = self.session
        if timeout <= 0 or session.stage is not Stage.RUNNING or session.running_since is None:
            return []

        warned = []
        for mission in session.missions:
            if session.completed_missions[mission] or session.stall_warned[mission]:
                continue
            last = session.last_update[mission]
            reference = last or session.running_since
            silent_for = (now - reference).total_seconds()
            if silent_for < timeout:
                continue

            if last is None:
                text = "No status reported yet"
            else:
                text = f"No update for {int(silent_for)} seconds"
            session.stall_warned[mission] = True
            session.add_log(mission, text)
            session.add_timeline(mission, text)
            logger.warning(f"Mission {mission} looks stalled: {text}")
            warned.append(mission)
        return warned
