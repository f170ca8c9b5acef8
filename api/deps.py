"""Request-scoped accessors for objects created in the app lifespan."""

from __future__ import annotations

from fastapi.requests import HTTPConnection

from api.websocket.manager import TickRelayManager
from screener.pipeline import SnapshotPipeline


def get_pipeline(connection: HTTPConnection) -> SnapshotPipeline:
    return connection.app.state.pipeline


def get_tick_relay(connection: HTTPConnection) -> TickRelayManager:
    return connection.app.state.tick_relay
