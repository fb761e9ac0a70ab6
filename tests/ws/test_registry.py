"""Unit tests for SessionRegistry."""

import asyncio
import random

import pytest

from session_relay.api.ws.registry import SessionRegistry


@pytest.mark.asyncio
async def test_bind_makes_connection_match_session(registry, make_connection) -> None:
    conn = make_connection()

    previous = await registry.bind(conn, "abc-123")

    assert previous is None
    assert await registry.matching_connections("abc-123") == frozenset({conn})
    assert registry.session_of(conn) == "abc-123"


@pytest.mark.asyncio
async def test_bind_is_idempotent(registry, make_connection) -> None:
    conn = make_connection()

    await registry.bind(conn, "abc-123")
    previous = await registry.bind(conn, "abc-123")

    assert previous == "abc-123"
    assert registry.connection_count() == 1
    assert registry.connection_count("abc-123") == 1


@pytest.mark.asyncio
async def test_rebind_replaces_previous_session(registry, make_connection) -> None:
    conn = make_connection()

    await registry.bind(conn, "session-a")
    previous = await registry.bind(conn, "session-b")

    assert previous == "session-a"
    assert await registry.matching_connections("session-a") == frozenset()
    assert await registry.matching_connections("session-b") == frozenset({conn})
    assert not registry.has_session("session-a")
    assert registry.connection_count() == 1


@pytest.mark.asyncio
async def test_multiple_connections_share_a_session(registry, make_connection) -> None:
    first, second, other = make_connection(), make_connection(), make_connection()

    await registry.bind(first, "shared")
    await registry.bind(second, "shared")
    await registry.bind(other, "other")

    assert await registry.matching_connections("shared") == frozenset({first, second})
    assert await registry.matching_connections("other") == frozenset({other})
    assert sorted(registry.active_sessions()) == ["other", "shared"]


@pytest.mark.asyncio
async def test_unbind_removes_only_that_connection(registry, make_connection) -> None:
    first, second = make_connection(), make_connection()
    await registry.bind(first, "shared")
    await registry.bind(second, "shared")

    removed = await registry.unbind(first)

    assert removed == "shared"
    assert await registry.matching_connections("shared") == frozenset({second})
    assert registry.connection_count("shared") == 1
    assert registry.session_of(first) is None


@pytest.mark.asyncio
async def test_unbind_unknown_connection_is_noop(registry, make_connection) -> None:
    conn = make_connection()

    assert await registry.unbind(conn) is None
    assert registry.connection_count() == 0


@pytest.mark.asyncio
async def test_unbind_last_connection_drops_session(registry, make_connection) -> None:
    conn = make_connection()
    await registry.bind(conn, "abc-123")

    await registry.unbind(conn)

    assert not registry.has_session("abc-123")
    assert registry.active_sessions() == []


@pytest.mark.asyncio
async def test_matching_connections_returns_snapshot(registry, make_connection) -> None:
    first, second = make_connection(), make_connection()
    await registry.bind(first, "shared")

    snapshot = await registry.matching_connections("shared")
    await registry.bind(second, "shared")
    await registry.unbind(first)

    assert snapshot == frozenset({first})
    assert isinstance(snapshot, frozenset)


@pytest.mark.asyncio
async def test_concurrent_bind_unbind_lookup_stays_consistent(make_connection) -> None:
    """Randomized concurrent binds, rebinds, unbinds and lookups."""
    registry = SessionRegistry()
    rng = random.Random(1234)
    sessions = [f"session-{i}" for i in range(10)]
    connections = [make_connection() for _ in range(150)]
    final_binding: dict = {}
    lookups: list[frozenset] = []

    async def churn(conn) -> None:
        for _ in range(5):
            await asyncio.sleep(rng.random() / 1000)
            action = rng.choice(["bind", "bind", "unbind", "lookup"])
            if action == "bind":
                session_id = rng.choice(sessions)
                await registry.bind(conn, session_id)
                final_binding[conn] = session_id
            elif action == "unbind":
                await registry.unbind(conn)
                final_binding.pop(conn, None)
            else:
                lookups.append(await registry.matching_connections(rng.choice(sessions)))

    await asyncio.gather(*(churn(conn) for conn in connections))

    # Every lookup only ever saw known connections
    known = set(connections)
    for result in lookups:
        assert result <= known

    # Final state matches the last operation applied to each connection
    assert registry.connection_count() == len(final_binding)
    for session_id in sessions:
        expected = {c for c, s in final_binding.items() if s == session_id}
        assert await registry.matching_connections(session_id) == expected
        assert registry.connection_count(session_id) == len(expected)

    # No connection appears under two sessions
    seen = [c for s in registry.active_sessions() for c in await registry.matching_connections(s)]
    assert len(seen) == len(set(seen))
