"""
Water Controller Relay

Relays telemetry from the water controller's serial link to any number of
WebSocket subscribers as JSON events, with a logging client and a terminal
monitor for the feed.
"""

__version__ = "0.1.0"
__description__ = "Relay water controller serial telemetry to WebSocket clients"
