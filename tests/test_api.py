from bson import ObjectId
from fakes import FakeWebSocket, auth_headers

from stratix.main import app
from stratix.utils.presence import Connection


async def start_conversation(client, users):
    resp = await client.post(
        "/conversations", json={"participantId": users.influencer}, headers=auth_headers(users.brand)
    )
    return resp.json()["id"]


def attach_listener(user_id):
    """Register an in-memory socket for ``user_id`` with the running app."""
    ws = FakeWebSocket()
    conn = Connection(ws)
    conn.authenticate(user_id)
    app.state.broadcaster.registry.register_connection(user_id, conn)
    return ws


async def test_health(api_client):
    resp = await api_client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


async def test_requests_without_valid_token_are_unauthorized(api_client, users):
    assert (await api_client.get("/conversations")).status_code == 401
    resp = await api_client.get("/conversations", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 401
    assert resp.json() == {"detail": "Authentication error: Invalid token"}
    resp = await api_client.get("/messages/unread/count", headers=auth_headers(str(ObjectId())))
    assert resp.status_code == 401


async def test_create_conversation_then_get_existing(api_client, users):
    headers = auth_headers(users.brand)

    created = await api_client.post("/conversations", json={"participantId": users.influencer}, headers=headers)
    again = await api_client.post(
        "/conversations", json={"participantId": users.brand}, headers=auth_headers(users.influencer)
    )

    assert created.status_code == 201
    assert again.status_code == 200
    body = created.json()
    assert body["id"] == again.json()["id"]
    assert sorted(body["participants"]) == sorted([users.brand, users.influencer])
    assert body["lastMessage"] is None
    assert body["unreadCount"] == 0


async def test_create_conversation_validation(api_client, users):
    headers = auth_headers(users.brand)

    unknown = await api_client.post("/conversations", json={"participantId": str(ObjectId())}, headers=headers)
    self_chat = await api_client.post("/conversations", json={"participantId": users.brand}, headers=headers)
    missing = await api_client.post("/conversations", json={}, headers=headers)

    assert unknown.status_code == 404
    assert self_chat.status_code == 400
    assert missing.status_code == 422


async def test_send_and_list_messages(api_client, users):
    cid = await start_conversation(api_client, users)

    for i, text in enumerate(["first", "second", "third"]):
        sender = users.brand if i != 1 else users.influencer
        resp = await api_client.post(
            "/messages", json={"conversationId": cid, "text": text}, headers=auth_headers(sender)
        )
        assert resp.status_code == 201

    resp = await api_client.get(f"/conversations/{cid}/messages", headers=auth_headers(users.influencer))
    assert resp.status_code == 200
    body = resp.json()
    assert [m["text"] for m in body["items"]] == ["first", "second", "third"]
    assert body["pagination"] == {"page": 1, "limit": 50, "total": 3, "pages": 1}

    resp = await api_client.get(f"/conversations/{cid}/messages?page=1&limit=2", headers=auth_headers(users.brand))
    assert [m["text"] for m in resp.json()["items"]] == ["second", "third"]
    assert resp.json()["pagination"]["pages"] == 2


async def test_send_message_errors(api_client, users):
    cid = await start_conversation(api_client, users)

    blank = await api_client.post("/messages", json={"conversationId": cid, "text": "  "}, headers=auth_headers(users.brand))
    outsider = await api_client.post(
        "/messages", json={"conversationId": cid, "text": "hello"}, headers=auth_headers(users.outsider)
    )
    missing = await api_client.post(
        "/messages", json={"conversationId": str(ObjectId()), "text": "hello"}, headers=auth_headers(users.brand)
    )
    malformed = await api_client.post(
        "/messages", json={"conversationId": "xyz", "text": "hello"}, headers=auth_headers(users.brand)
    )

    assert blank.status_code == 400
    assert blank.json() == {"detail": "Message text is required"}
    assert outsider.status_code == 403
    assert missing.status_code == 404
    assert malformed.status_code == 400


async def test_list_conversations_carries_snapshot_and_unread(api_client, users):
    cid = await start_conversation(api_client, users)
    await api_client.post("/messages", json={"conversationId": cid, "text": "rate card?"}, headers=auth_headers(users.brand))

    resp = await api_client.get("/conversations", headers=auth_headers(users.influencer))

    assert resp.status_code == 200
    body = resp.json()
    assert body["pagination"]["total"] == 1
    convo = body["items"][0]
    assert convo["id"] == cid
    assert convo["lastMessage"]["text"] == "rate card?"
    assert convo["lastMessage"]["senderId"] == users.brand
    assert convo["unreadCount"] == 1

    outsider_view = await api_client.get("/conversations", headers=auth_headers(users.outsider))
    assert outsider_view.json()["items"] == []


async def test_get_conversation_for_outsider_is_forbidden(api_client, users):
    cid = await start_conversation(api_client, users)

    assert (await api_client.get(f"/conversations/{cid}", headers=auth_headers(users.outsider))).status_code == 403
    assert (await api_client.get(f"/conversations/{cid}", headers=auth_headers(users.brand))).status_code == 200
    missing = await api_client.get(f"/conversations/{ObjectId()}", headers=auth_headers(users.brand))
    assert missing.status_code == 404


async def test_rest_send_is_broadcast_to_live_connections(api_client, users):
    cid = await start_conversation(api_client, users)
    listener = attach_listener(users.influencer)

    resp = await api_client.post("/messages", json={"conversationId": cid, "text": "via rest"}, headers=auth_headers(users.brand))

    events = listener.events("new-message")
    assert len(events) == 1
    assert events[0]["data"]["id"] == resp.json()["id"]
    assert events[0]["data"]["text"] == "via rest"


async def test_mark_message_read(api_client, users):
    cid = await start_conversation(api_client, users)
    sent = await api_client.post("/messages", json={"conversationId": cid, "text": "seen?"}, headers=auth_headers(users.brand))
    message_id = sent.json()["id"]
    listener = attach_listener(users.brand)

    own = await api_client.put(f"/messages/{message_id}/read", headers=auth_headers(users.brand))
    outsider = await api_client.put(f"/messages/{message_id}/read", headers=auth_headers(users.outsider))
    resp = await api_client.put(f"/messages/{message_id}/read", headers=auth_headers(users.influencer))

    assert own.status_code == 400
    assert outsider.status_code == 403
    assert resp.status_code == 200
    assert resp.json()["isRead"] is True
    assert resp.json()["readAt"] is not None
    receipts = listener.events("message-read")
    assert [r["data"]["messageId"] for r in receipts] == [message_id]

    missing = await api_client.put(f"/messages/{ObjectId()}/read", headers=auth_headers(users.influencer))
    assert missing.status_code == 404


async def test_unread_count_and_mark_conversation_read(api_client, users):
    cid = await start_conversation(api_client, users)
    for text in ("one", "two"):
        await api_client.post("/messages", json={"conversationId": cid, "text": text}, headers=auth_headers(users.brand))

    count = await api_client.get("/messages/unread/count", headers=auth_headers(users.influencer))
    assert count.json() == {"unreadCount": 2}

    resp = await api_client.put(f"/conversations/{cid}/read", headers=auth_headers(users.influencer))
    assert resp.status_code == 200
    assert resp.json()["updated"] == 2
    assert len(resp.json()["messageIds"]) == 2

    count = await api_client.get("/messages/unread/count", headers=auth_headers(users.influencer))
    assert count.json() == {"unreadCount": 0}


async def test_delete_conversation(api_client, users):
    cid = await start_conversation(api_client, users)
    await api_client.post("/messages", json={"conversationId": cid, "text": "bye"}, headers=auth_headers(users.brand))

    forbidden = await api_client.delete(f"/conversations/{cid}", headers=auth_headers(users.outsider))
    resp = await api_client.delete(f"/conversations/{cid}", headers=auth_headers(users.influencer))

    assert forbidden.status_code == 403
    assert resp.json() == {"deleted": True, "messagesDeleted": 1}
    gone = await api_client.get(f"/conversations/{cid}", headers=auth_headers(users.brand))
    assert gone.status_code == 404


async def test_presence_lookup(api_client, users):
    attach_listener(users.influencer)

    online = await api_client.get(f"/presence/{users.influencer}", headers=auth_headers(users.brand))
    offline = await api_client.get(f"/presence/{users.outsider}", headers=auth_headers(users.brand))

    assert online.json() == {"userId": users.influencer, "online": True}
    assert offline.json() == {"userId": users.outsider, "online": False}
