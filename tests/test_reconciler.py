"""
Tests for the mission reconciler.

Tests cover:
- detail/milestone logging without duplicates
- last-write-wins status storage
- monotonic completion flags
- the all-complete trigger firing exactly once
- stage transitions and final summaries
- stalled mission warnings
"""

from datetime import datetime, timedelta
from itertools import permutations

import pytest

from conftest import envelope
from mission_relay.viewer.reconciler import (
    BADGE_COMPLETE,
    BADGE_RUNNING,
    MissionReconciler,
    Stage,
    ViewerSession,
)


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def reconciler(clock):
    session = ViewerSession(clock=clock)
    rec = MissionReconciler(session)
    rec.start()
    return rec


# ============================================================================
# DETAIL AND MILESTONE LOGGING
# ============================================================================

def test_unchanged_detail_is_logged_once(reconciler):
    session = reconciler.session
    reconciler.apply(envelope("email", stage="working", detail="Scanning inbox"))
    reconciler.apply(envelope("email", stage="working", detail="Scanning inbox"))
    reconciler.apply(envelope("email", stage="working", detail="Drafting replies"))
    reconciler.apply(envelope("email", stage="working", detail="Drafting replies"))

    assert session.log_texts("email") == ["Scanning inbox", "Drafting replies"]
    assert [e.text for e in session.timeline] == ["Scanning inbox", "Drafting replies"]
    assert session.last_detail["email"] == "Drafting replies"


def test_detail_returning_to_earlier_value_is_logged_again(reconciler):
    for detail in ["A", "B", "A"]:
        reconciler.apply(envelope("website", stage="working", detail=detail))
    assert reconciler.session.log_texts("website") == ["A", "B", "A"]


def test_timeline_entries_carry_mission_label(reconciler):
    reconciler.apply(envelope("documents", stage="working", detail="Sorting files"))
    event = reconciler.session.timeline[0]
    assert event.mission == "documents"
    assert event.label == "Docs"
    assert event.time == datetime(2026, 1, 1, 12, 0, 0)


def test_missing_or_empty_detail_adds_nothing(reconciler):
    reconciler.apply(envelope("website", stage="working"))
    reconciler.apply(envelope("website", stage="working", detail=""))
    assert reconciler.session.log_texts("website") == []
    assert reconciler.session.timeline == []
    assert reconciler.session.last_detail["website"] is None


def test_latest_milestone_is_logged_when_it_differs_from_detail(reconciler):
    reconciler.apply(envelope(
        "website",
        stage="working",
        detail="Building pages",
        milestones=[{"event": "Scaffolded project"}, {"event": "Generated hero section"}]
    ))
    assert reconciler.session.log_texts("website") == ["Building pages", "Generated hero section"]
    # Milestones go to the log only
    assert [e.text for e in reconciler.session.timeline] == ["Building pages"]


def test_milestone_matching_detail_is_not_duplicated(reconciler):
    reconciler.apply(envelope(
        "website",
        stage="working",
        detail="Deployed preview",
        milestones=[{"event": "Deployed preview"}]
    ))
    assert reconciler.session.log_texts("website") == ["Deployed preview"]


def test_malformed_optional_fields_are_ignored(reconciler):
    reconciler.apply(envelope(
        "email",
        stage="working",
        detail="Reading",
        milestones="not a list",
        artifacts=["not", "a", "mapping"]
    ))
    reconciler.apply(envelope("email", stage="working", milestones=[{}, {"event": None}]))
    assert reconciler.session.log_texts("email") == ["Reading"]
    assert reconciler.session.last_status_data["email"].artifacts is None


def test_unknown_mission_is_ignored(reconciler):
    assert reconciler.apply(envelope("calendar", stage="complete", detail="x")) is False
    assert "calendar" not in reconciler.session.last_status_data
    assert reconciler.session.timeline == []


# ============================================================================
# STATUS STORAGE AND COMPLETION
# ============================================================================

def test_last_status_is_replaced_not_merged(reconciler):
    reconciler.apply(envelope("documents", stage="working", detail="x", artifacts={"stats": {"filesMoved": "3"}}))
    reconciler.apply(envelope("documents", stage="working", detail="y"))
    stored = reconciler.session.last_status_data["documents"]
    assert stored.detail == "y"
    assert stored.artifacts is None


def test_email_scenario_logs_once_and_completes_once(reconciler):
    session = reconciler.session
    working = envelope("email", stage="working", detail="Scanning inbox")
    complete = envelope("email", stage="complete", detail="Scanning inbox")

    results = [reconciler.apply(working), reconciler.apply(complete), reconciler.apply(complete)]

    assert results == [False, False, False]
    assert session.log_texts("email") == ["Scanning inbox"]
    assert session.completed_missions["email"] is True
    assert session.badges["email"] == BADGE_COMPLETE


def test_completion_flag_is_monotonic(reconciler):
    session = reconciler.session
    reconciler.apply(envelope("website", stage="complete", detail="Done"))
    reconciler.apply(envelope("website", stage="working", detail="Rebuilding"))
    reconciler.apply(envelope("website", stage="failed"))
    assert session.completed_missions["website"] is True
    assert session.badges["website"] == BADGE_COMPLETE


def test_single_mission_complete_does_not_trigger(reconciler):
    session = reconciler.session
    triggered = reconciler.apply(envelope("documents", stage="complete", artifacts={"stats": {"filesMoved": "12"}}))

    assert triggered is False
    assert session.badges["documents"] == BADGE_COMPLETE
    assert session.badges["website"] == BADGE_RUNNING
    assert session.badges["email"] == BADGE_RUNNING
    assert session.completion_scheduled is False


@pytest.mark.parametrize("order", list(permutations(["website", "email", "documents"])))
def test_all_complete_triggers_exactly_once_in_any_order(clock, order):
    rec = MissionReconciler(ViewerSession(clock=clock))
    rec.start()
    stream = []
    for mission in order:
        stream.append(envelope(mission, stage="working", detail=f"{mission} busy"))
    for mission in order:
        stream.append(envelope(mission, stage="complete", detail=f"{mission} done"))
    # replays after completion
    stream.extend(envelope(m, stage="complete", detail=f"{m} done") for m in order)

    results = [rec.apply(e) for e in stream]

    assert results.count(True) == 1
    # fires on the envelope that completed the last mission
    assert results.index(True) == len(order) * 2 - 1


def test_fold_reports_trigger(reconciler):
    assert reconciler.fold([
        envelope("website", stage="complete"),
        envelope("email", stage="complete"),
        envelope("documents", stage="complete"),
        envelope("documents", stage="complete"),
    ]) is True
    assert reconciler.fold([envelope("email", stage="complete")]) is False


# ============================================================================
# STAGES AND SUMMARIES
# ============================================================================

def test_stage_progression_and_finish_once(clock):
    rec = MissionReconciler(ViewerSession(clock=clock))
    assert rec.session.stage is Stage.SETUP
    assert rec.finish() is None

    rec.start()
    assert rec.session.stage is Stage.RUNNING
    assert rec.session.running_since == clock.now

    summaries = rec.finish()
    assert [s.mission for s in summaries] == ["website", "email", "documents"]
    assert rec.session.stage is Stage.COMPLETE
    assert rec.finish() is None


def test_summaries_use_last_status_data(reconciler):
    reconciler.session.preview_url = "http://localhost:3000"
    reconciler.apply(envelope("website", stage="complete", detail="Site built"))
    reconciler.apply(envelope(
        "email",
        stage="complete",
        detail="Inbox triaged",
        artifacts={
            "stats": {"processed": 42, "urgent": 1},
            "urgent": [{"subject": "Contract", "summary": "Sign today", "draft": "Will do."}]
        }
    ))
    summaries = {s.mission: s for s in reconciler.finish()}

    assert summaries["website"].detail == "Site built"
    assert summaries["website"].preview_url == "http://localhost:3000"
    assert summaries["email"].preview_url is None
    assert [(r.label, r.value) for r in summaries["email"].stats] == [("processed", "42"), ("urgent", "1")]
    assert summaries["email"].urgent[0].draft == "Will do."
    assert summaries["documents"].detail is None
    assert summaries["documents"].stats == []


def test_listeners_receive_log_timeline_and_badge_events(reconciler):
    events = []
    reconciler.session.listeners.append(lambda kind, mission, text: events.append((kind, mission, text)))
    reconciler.apply(envelope("email", stage="complete", detail="Done"))
    assert events == [
        ("log", "email", "Done"),
        ("timeline", "email", "Done"),
        ("badge", "email", BADGE_COMPLETE),
    ]


# ============================================================================
# STALLED MISSIONS
# ============================================================================

def test_stall_warning_distinguishes_silent_from_slow(reconciler, clock):
    reconciler.apply(envelope("website", stage="working", detail="Building"))
    clock.advance(301)

    warned = reconciler.check_stalls(clock(), timeout=300)

    assert set(warned) == {"website", "email", "documents"}
    assert reconciler.session.log_texts("email")[-1] == "No status reported yet"
    assert reconciler.session.log_texts("website")[-1] == "No update for 301 seconds"


def test_stall_warning_fires_once_per_silence(reconciler, clock):
    clock.advance(400)
    assert len(reconciler.check_stalls(clock(), timeout=300)) == 3
    clock.advance(400)
    assert reconciler.check_stalls(clock(), timeout=300) == []

    reconciler.apply(envelope("email", stage="working", detail="Back"))
    clock.advance(301)
    assert reconciler.check_stalls(clock(), timeout=300) == ["email"]


def test_stall_check_skips_completed_and_never_completes(reconciler, clock):
    reconciler.apply(envelope("website", stage="complete"))
    clock.advance(1000)
    warned = reconciler.check_stalls(clock(), timeout=300)

    assert "website" not in warned
    assert reconciler.session.completed_missions == {"website": True, "email": False, "documents": False}
    assert reconciler.session.completion_scheduled is False


def test_stall_check_disabled_or_not_running(clock):
    rec = MissionReconciler(ViewerSession(clock=clock))
    clock.advance(1000)
    assert rec.check_stalls(clock(), timeout=300) == []
    rec.start()
    clock.advance(1000)
    assert rec.check_stalls(clock(), timeout=0) == []
