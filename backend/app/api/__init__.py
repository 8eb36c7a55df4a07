"""API endpoints."""

from app.api.routes import router
from app.api.websocket import BroadcastHub, Subscriber, websocket_endpoint

__all__ = [
    "router",
    "BroadcastHub",
    "Subscriber",
    "websocket_endpoint",
]
