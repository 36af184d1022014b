from fakes import FakeWebSocket

from stratix.utils.presence import (
    Connection,
    ConnectionState,
    PresenceRegistry,
    conversation_group,
    personal_group,
)


def make_connection(user_id):
    conn = Connection(FakeWebSocket())
    conn.authenticate(user_id)
    return conn


def test_first_and_last_connection_flip_online():
    registry = PresenceRegistry()
    phone, laptop = make_connection("u1"), make_connection("u1")

    assert registry.register_connection("u1", phone) is True
    assert registry.register_connection("u1", laptop) is False
    assert registry.is_online("u1")
    assert set(registry.connections_for("u1")) == {phone, laptop}

    assert registry.deregister_connection("u1", phone) is False
    assert registry.deregister_connection("u1", laptop) is True
    assert not registry.is_online("u1")
    assert registry.online_user_ids() == []


def test_register_joins_personal_group():
    registry = PresenceRegistry()
    conn = make_connection("u1")

    registry.register_connection("u1", conn)

    assert conn.state == ConnectionState.ACTIVE
    assert registry.members(personal_group("u1")) == [conn]


def test_deregister_leaves_every_group():
    registry = PresenceRegistry()
    conn = make_connection("u1")
    registry.register_connection("u1", conn)
    registry.join_conversation_group(conn, "c1")
    registry.join_conversation_group(conn, "c2")

    registry.deregister_connection("u1", conn)

    assert conn.groups == set()
    assert conn.state == ConnectionState.CLOSED
    for group in (personal_group("u1"), conversation_group("c1"), conversation_group("c2")):
        assert registry.members(group) == []


def test_deregister_unknown_connection_is_harmless():
    registry = PresenceRegistry()
    assert registry.deregister_connection("ghost", make_connection("ghost")) is False


async def test_deliver_sends_once_per_connection_across_groups():
    registry = PresenceRegistry()
    conn = make_connection("u1")
    registry.register_connection("u1", conn)
    registry.join_conversation_group(conn, "c1")

    delivered = await registry.deliver(
        [conversation_group("c1"), personal_group("u1")], "new-message", {"text": "hi"}
    )

    assert delivered == 1
    assert conn.websocket.events("new-message") == [{"event": "new-message", "data": {"text": "hi"}}]


async def test_deliver_to_everyone_honours_exclusions():
    registry = PresenceRegistry()
    a, b, c = make_connection("a"), make_connection("b"), make_connection("c")
    for conn in (a, b, c):
        registry.register_connection(conn.user_id, conn)

    delivered = await registry.deliver(None, "user-online", {"userId": "a"}, exclude_connection=c.id, exclude_user="a")

    assert delivered == 1
    assert b.websocket.events("user-online")
    assert a.websocket.sent == [] and c.websocket.sent == []


async def test_deliver_skips_broken_sockets():
    registry = PresenceRegistry()
    healthy, broken = make_connection("a"), make_connection("b")
    broken.websocket.broken = True
    for conn in (healthy, broken):
        registry.register_connection(conn.user_id, conn)

    delivered = await registry.deliver(None, "user-offline", {"userId": "z"})

    assert delivered == 1
    assert len(healthy.websocket.sent) == 1


async def test_closed_connection_sends_nothing():
    conn = make_connection("u1")
    conn.state = ConnectionState.CLOSED

    assert await conn.send_event("typing", {}) is False
    assert conn.websocket.sent == []
