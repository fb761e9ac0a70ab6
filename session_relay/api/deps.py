"""FastAPI dependencies for the relay's shared components.

The registry, router and broker are created once in the application
lifespan and kept on ``app.state``.
"""

from starlette.requests import HTTPConnection

from session_relay.api.ws.broker import Broker
from session_relay.api.ws.message_router import MessageRouter
from session_relay.api.ws.registry import SessionRegistry


def get_registry(connection: HTTPConnection) -> SessionRegistry:
    """Get the session registry for the running app."""
    return connection.app.state.registry


def get_message_router(connection: HTTPConnection) -> MessageRouter:
    """Get the message router for the running app."""
    return connection.app.state.message_router


def get_broker(connection: HTTPConnection) -> Broker:
    """Get the pub/sub broker for the running app."""
    return connection.app.state.broker
