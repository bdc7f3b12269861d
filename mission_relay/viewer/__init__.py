"""
Viewer side of the mission relay.

- scheduler: Cancellable timers owned by one viewer
- channel: Reconnecting push-channel client
- reconciler: ViewerSession and the envelope fold
- render: Final mission summaries (HTML and text)
- preview: Preview availability detector
- control_client: Client for the relay's control endpoints
- dashboard: Viewer lifecycle controller
"""

from .channel import ChannelState, PushChannelClient, parse_status_message
from .control_client import ControlClient, ControlError
from .dashboard import Viewer
from .preview import PreviewDetector
from .reconciler import LogEntry, MissionReconciler, Stage, TimelineEvent, ViewerSession
from .render import MissionSummary, render_summary_html, render_summary_text, summarize
from .scheduler import PeriodicTask, TaskScope

__all__ = [
    'ChannelState',
    'PushChannelClient',
    'parse_status_message',
    'ControlClient',
    'ControlError',
    'Viewer',
    'PreviewDetector',
    'LogEntry',
    'MissionReconciler',
    'Stage',
    'TimelineEvent',
    'ViewerSession',
    'MissionSummary',
    'render_summary_html',
    'render_summary_text',
    'summarize',
    'PeriodicTask',
    'TaskScope',
]
