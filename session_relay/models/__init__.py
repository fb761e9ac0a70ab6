"""Pydantic models for client wire messages."""

from session_relay.models.handshake import Handshake

__all__ = ["Handshake"]
