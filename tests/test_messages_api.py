from datetime import timedelta

from bson import ObjectId

from conftest import list_item, place_order, register
from database import now_utc


def _start(client, who, other, **extra):
    r = client.post("/api/messages/conversations", json={"participantId": other["id"], **extra},
                    headers=who["headers"])
    assert r.status_code == 200, r.text
    return r.json()["data"]["conversation"]


def _send(client, who, conversation, content="Is this still available?"):
    r = client.post(f"/api/messages/conversations/{conversation['id']}/messages", json={"content": content},
                    headers=who["headers"])
    assert r.status_code == 201, r.text
    return r.json()["data"]["message"]


def test_one_conversation_per_pair(client, seller, buyer):
    first = _start(client, buyer, seller, message="Hi!")
    again = _start(client, seller, buyer)
    assert again["id"] == first["id"]
    assert sorted(first["participants"]) == sorted([buyer["id"], seller["id"]])
    assert first["lastMessage"] is not None


def test_cannot_message_yourself_or_missing_user(client, buyer):
    r = client.post("/api/messages/conversations", json={"participantId": buyer["id"]}, headers=buyer["headers"])
    assert r.status_code == 400
    r = client.post("/api/messages/conversations", json={"participantId": str(ObjectId())}, headers=buyer["headers"])
    assert r.status_code == 404


def test_related_order_must_belong_to_both(client, seller, buyer):
    order = place_order(client, buyer, list_item(client, seller))
    conv = _start(client, buyer, seller, orderId=order["id"])
    assert conv["relatedOrder"] == order["id"]

    other = register(client, "Otto Other", "other@campus.edu")
    r = client.post("/api/messages/conversations", json={"participantId": other["id"], "orderId": order["id"]},
                    headers=buyer["headers"])
    assert r.status_code == 400


def test_unread_counts_and_read_all(client, seller, buyer):
    conv = _start(client, buyer, seller)
    _send(client, buyer, conv, "Hello")
    _send(client, buyer, conv, "Still there?")

    assert client.get("/api/messages/unread-count", headers=seller["headers"]).json()["data"] == {"totalUnread": 2}
    assert client.get("/api/messages/unread-count", headers=buyer["headers"]).json()["data"] == {"totalUnread": 0}
    listed = client.get("/api/messages/conversations", headers=seller["headers"]).json()["data"]["conversations"]
    assert listed[0]["unreadCount"] == 2

    r = client.put(f"/api/messages/conversations/{conv['id']}/read-all", headers=seller["headers"])
    assert r.json()["message"] == "2 messages marked as read"
    assert client.get("/api/messages/unread-count", headers=seller["headers"]).json()["data"]["totalUnread"] == 0


def test_mark_single_message_read(client, seller, buyer):
    conv = _start(client, buyer, seller)
    msg = _send(client, buyer, conv)
    assert client.put(f"/api/messages/{msg['id']}/read", headers=seller["headers"]).status_code == 200
    assert client.get(f"/api/messages/conversations/{conv['id']}", headers=seller["headers"]).json()[
        "data"]["conversation"]["unreadCount"] == 0


def test_outsider_is_locked_out(client, seller, buyer):
    conv = _start(client, buyer, seller)
    other = register(client, "Otto Other", "other@campus.edu")
    assert client.get(f"/api/messages/conversations/{conv['id']}", headers=other["headers"]).status_code == 403
    r = client.post(f"/api/messages/conversations/{conv['id']}/messages", json={"content": "hi"},
                    headers=other["headers"])
    assert r.status_code == 403


def test_messages_oldest_first(client, seller, buyer):
    conv = _start(client, buyer, seller)
    for text in ("one", "two", "three"):
        _send(client, buyer, conv, text)
    data = client.get(f"/api/messages/conversations/{conv['id']}/messages?limit=2",
                      headers=seller["headers"]).json()["data"]
    assert [m["content"] for m in data["messages"]] == ["two", "three"]
    assert data["pagination"]["total"] == 3


def test_blank_message_rejected(client, seller, buyer):
    conv = _start(client, buyer, seller)
    r = client.post(f"/api/messages/conversations/{conv['id']}/messages", json={"content": "   "},
                    headers=buyer["headers"])
    assert r.status_code == 400


def test_edit_and_delete_own_message(client, db, seller, buyer):
    conv = _start(client, buyer, seller)
    msg = _send(client, buyer, conv)

    assert client.put(f"/api/messages/{msg['id']}", json={"content": "edited"},
                      headers=seller["headers"]).status_code == 403
    r = client.put(f"/api/messages/{msg['id']}", json={"content": "edited"}, headers=buyer["headers"])
    assert r.json()["data"]["message"]["isEdited"] is True

    db["message"].update_one({"_id": ObjectId(msg["id"])}, {"$set": {"created_at": now_utc() - timedelta(hours=1)}})
    r = client.put(f"/api/messages/{msg['id']}", json={"content": "late"}, headers=buyer["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Message is too old to edit"

    assert client.delete(f"/api/messages/{msg['id']}", headers=buyer["headers"]).status_code == 200
    stored = db["message"].find_one({"_id": ObjectId(msg["id"])})
    assert stored["isDeleted"] is True
    assert stored["content"] == "This message was deleted"
    listed = client.get(f"/api/messages/conversations/{conv['id']}/messages", headers=buyer["headers"]).json()
    assert listed["data"]["messages"] == []
