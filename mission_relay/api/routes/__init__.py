"""HTTP routes for the relay server."""
