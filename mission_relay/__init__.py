"""
Mission Relay

Relays the status files of background mission agents to connected viewers
and reconciles them into a setup -> running -> complete lifecycle.

Modules:
- config: Settings from MISSION_RELAY_* environment variables
- models: Wire protocol and HTTP models
- services.watcher: Status directory watcher (change detector)
- api.websocket: Broadcast hub and push endpoint
- api.routes.control: Config, launch, stop and undo endpoints
- main: FastAPI relay server
- viewer: Push-channel client, mission reconciler, preview detector
"""

__version__ = "1.0.0"
