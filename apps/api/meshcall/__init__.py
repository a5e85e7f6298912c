"""meshcall: signaling relay and full-mesh WebRTC client."""

__version__ = "0.1.0"
