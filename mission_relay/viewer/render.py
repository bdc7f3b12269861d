"""
Final mission summaries.

Everything shown here comes from agent-written status files, so the HTML
renderer escapes every value and never passes agent text through as markup.
"""

import html
from dataclasses import dataclass, field
from typing import Any, List, Optional

from ..config import MISSION_LABELS
from ..models.schemas import MissionStatus

DEFAULT_URGENT_SUBJECT = "Urgent Email"


@dataclass
class StatRow:
    label: str
    value: str


@dataclass
class UrgentEntry:
    subject: str
    summary: str
    draft: Optional[str] = None


@dataclass
class MissionSummary:
    mission: str
    label: str
    detail: Optional[str] = None
    stats: List[StatRow] = field(default_factory=list)
    urgent: List[UrgentEntry] = field(default_factory=list)
    preview_url: Optional[str] = None


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def summarize(
    mission: str,
    status: Optional[MissionStatus],
    preview_url: Optional[str] = None
) -> MissionSummary:
    """Build the summary for one mission from its last status snapshot."""
    summary = MissionSummary(
        mission=mission,
        label=MISSION_LABELS.get(mission, mission),
        preview_url=preview_url
    )
    if status is None:
        return summary

    summary.detail = status.detail or None
    artifacts = status.artifacts
    if artifacts is None:
        return summary

    if artifacts.stats:
        summary.stats = [StatRow(label, _scalar_text(value)) for label, value in artifacts.stats.items()]

    for item in artifacts.urgent or []:
        summary.urgent.append(UrgentEntry(
            subject=item.subject or DEFAULT_URGENT_SUBJECT,
            summary=item.summary or "",
            draft=item.draft or None
        ))
    return summary


def render_summary_html(summary: MissionSummary) -> str:
    """Render a summary as an HTML fragment with all agent text escaped."""
    esc = html.escape
    parts = [f'<section class="result result-{esc(summary.mission)}">']
    parts.append(f"<h3>{esc(summary.label)}</h3>")

    if summary.detail:
        parts.append(f'<p class="result-summary">{esc(summary.detail)}</p>')

    if summary.preview_url:
        parts.append(f'<iframe class="result-iframe" src="{esc(summary.preview_url)}"></iframe>')

    if summary.stats:
        parts.append('<div class="result-stats">')
        for row in summary.stats:
            parts.append(
                '<div class="stat-row">'
                f'<span class="stat-label">{esc(row.label)}</span>'
                f'<span class="stat-value">{esc(row.value)}</span>'
                "</div>"
            )
        parts.append("</div>")

    if summary.urgent:
        parts.append('<div class="result-urgent">')
        for item in summary.urgent:
            parts.append('<details class="urgent-item">')
            parts.append(f'<summary class="urgent-header">{esc(item.subject)}</summary>')
            parts.append('<div class="urgent-body">')
            parts.append(f"<p>{esc(item.summary)}</p>")
            if item.draft:
                parts.append('<p class="draft-label">Draft Reply</p>')
                parts.append(f'<div class="draft-text">{esc(item.draft)}</div>')
            parts.append("</div></details>")
        parts.append("</div>")

    parts.append("</section>")
    return "\n".join(parts)


def render_summary_text(summary: MissionSummary) -> str:
    """Render a summary for a terminal."""
    lines = [f"== {summary.label} =="]
    if summary.detail:
        lines.append(summary.detail)
    if summary.preview_url:
        lines.append(f"Preview: {summary.preview_url}")
    if summary.stats:
        width = max(len(row.label) for row in summary.stats)
        for row in summary.stats:
            lines.append(f"  {row.label.ljust(width)}  {row.value}")
    for item in summary.urgent:
        lines.append(f"  ! {item.subject}")
        if item.summary:
            lines.append(f"    {item.summary}")
        if item.draft:
            lines.append("    Draft Reply:")
            lines.extend(f"      {line}" for line in item.draft.splitlines())
    return "\n".join(lines)
