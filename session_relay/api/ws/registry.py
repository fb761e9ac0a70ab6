"""Session registry mapping live connections to session identifiers.

Each connection is bound to at most one session; binding again replaces
the previous session. Any number of connections may share a session.
"""

import asyncio

import structlog

from session_relay.api.ws.connection import ClientConnection

logger = structlog.get_logger(__name__)


class SessionRegistry:
    """Concurrency-safe connection -> session mapping.

    The lock is held only while the maps are read or mutated, never
    while writing to a connection.

    Example:
        >>> registry = SessionRegistry()
        >>> await registry.bind(conn, "abc-123")
        >>> await registry.matching_connections("abc-123")
        frozenset({ClientConnection(conn_...)})
        >>> await registry.unbind(conn)
    """

    def __init__(self) -> None:
        # connection -> session_id
        self._sessions_by_connection: dict[ClientConnection, str] = {}
        # session_id -> connections bound to it
        self._connections_by_session: dict[str, set[ClientConnection]] = {}
        self._lock = asyncio.Lock()

    async def bind(self, conn: ClientConnection, session_id: str) -> str | None:
        """Bind a connection to a session, replacing any previous binding.

        Args:
            conn: The connection to bind.
            session_id: Session the connection should receive messages for.

        Returns:
            The session the connection was bound to before, if any.
        """
        async with self._lock:
            previous = self._sessions_by_connection.get(conn)
            if previous == session_id:
                return previous

            if previous is not None:
                self._discard(conn, previous)

            self._sessions_by_connection[conn] = session_id
            self._connections_by_session.setdefault(session_id, set()).add(conn)
            session_connections = len(self._connections_by_session[session_id])

        logger.info(
            "session_bound",
            connection_id=conn.connection_id,
            session_id=session_id,
            previous_session_id=previous,
            session_connections=session_connections,
        )
        return previous

    async def unbind(self, conn: ClientConnection) -> str | None:
        """Remove a connection's binding.

        Args:
            conn: The connection to remove.

        Returns:
            The session the connection was bound to, or None if it was
            not bound.
        """
        async with self._lock:
            session_id = self._sessions_by_connection.pop(conn, None)
            if session_id is None:
                return None
            self._discard(conn, session_id)
            total_connections = len(self._sessions_by_connection)

        logger.info(
            "session_unbound",
            connection_id=conn.connection_id,
            session_id=session_id,
            total_connections=total_connections,
        )
        return session_id

    async def matching_connections(self, session_id: str) -> frozenset[ClientConnection]:
        """Snapshot of the connections bound to a session.

        Args:
            session_id: Session to look up.

        Returns:
            Immutable set of connections; later binds and unbinds do not
            change it.
        """
        async with self._lock:
            return frozenset(self._connections_by_session.get(session_id, ()))

    def _discard(self, conn: ClientConnection, session_id: str) -> None:
        """Drop conn from a session's set. Caller holds the lock."""
        connections = self._connections_by_session.get(session_id)
        if connections is None:
            return
        connections.discard(conn)
        if not connections:
            del self._connections_by_session[session_id]

    def session_of(self, conn: ClientConnection) -> str | None:
        """Get the session a connection is currently bound to."""
        return self._sessions_by_connection.get(conn)

    def connection_count(self, session_id: str | None = None) -> int:
        """Count bound connections, overall or for one session."""
        if session_id is None:
            return len(self._sessions_by_connection)
        return len(self._connections_by_session.get(session_id, ()))

    def active_sessions(self) -> list[str]:
        """Get the sessions with at least one bound connection."""
        return list(self._connections_by_session)

    def has_session(self, session_id: str) -> bool:
        """Check if any connection is bound to a session."""
        return session_id in self._connections_by_session
