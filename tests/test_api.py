from datetime import datetime, timedelta, timezone

import pytest
from starlette.websockets import WebSocketDisconnect

from portal.utils.auth import create_access_token
from tests.factories import (
    CONSULTANT_ID,
    OTHER_CONSULTANT_ID,
    NOW,
    booking_doc,
    chat_doc,
    message_doc,
)

API = "/api/v1"
FAR_FUTURE = datetime(2099, 1, 1, tzinfo=timezone.utc)


def receive_state(websocket, predicate=lambda data: True, limit=20):
    """Read frames until a state frame matches ``predicate``"""
    for _ in range(limit):
        frame = websocket.receive_json()
        if frame["type"] == "state" and predicate(frame["data"]):
            return frame["data"]
    raise AssertionError("no matching state frame")


def receive_error(websocket, limit=20):
    for _ in range(limit):
        frame = websocket.receive_json()
        if frame["type"] == "error":
            return frame
    raise AssertionError("no error frame")


# ============================================================================
# STATUS AND AUTH
# ============================================================================

def test_root_and_health(client):
    assert client.get("/").json()["health"] == "/health"
    assert client.get("/health").json()["status"] == "healthy"


def test_requires_token(client):
    assert client.get(f"{API}/dashboard").status_code == 401


def test_rejects_token_without_profile(client):
    token = create_access_token(data={"sub": "stranger"})

    response = client.get(f"{API}/dashboard", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_accepts_cookie_token(client, token):
    response = client.get(f"{API}/profile", headers={"Cookie": f"access_token={token}"})

    assert response.status_code == 200


def test_expired_token(client):
    token = create_access_token(data={"sub": CONSULTANT_ID}, expires_delta=timedelta(minutes=-1))

    response = client.get(f"{API}/profile", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


# ============================================================================
# DASHBOARD
# ============================================================================

def test_dashboard(client, seed, auth_headers):
    seed("clients", "k1", {"consultantId": CONSULTANT_ID})
    seed("bookings", "b1", booking_doc(status="pending"))
    seed("bookings", "b2", booking_doc(status="completed", rating=4))

    data = client.get(f"{API}/dashboard", headers=auth_headers).json()

    assert data["patients"] == 1
    assert data["pending_appointments"] == 1
    assert data["average_rating"] == "4.0"
    assert len(data["cards"]) == 4


def test_dashboard_live(client, seed, token):
    with client.websocket_connect(f"{API}/dashboard/live?token={token}") as websocket:
        state = receive_state(websocket)
        assert state["pending_appointments"] == 0

        websocket.send_json({"action": "refresh"})
        assert receive_state(websocket)["cards"][0]["title"] == "Active Patients"

        websocket.send_json({"action": "dance"})
        assert receive_error(websocket)["error"] == "Not Allowed"


def test_dashboard_live_survives_failed_refresh(client, store, token, monkeypatch):
    fetch = store.fetch

    async def broken_fetch(query):
        raise RuntimeError("database is locked")

    with client.websocket_connect(f"{API}/dashboard/live?token={token}") as websocket:
        receive_state(websocket)
        monkeypatch.setattr(store, "fetch", broken_fetch)

        websocket.send_json({"action": "refresh"})
        assert receive_error(websocket)["error"] == "Subscription Failed"

        monkeypatch.setattr(store, "fetch", fetch)
        websocket.send_json({"action": "refresh"})
        state = receive_state(websocket, lambda data: data["errors"])
        assert state["pending_appointments"] == 0


def test_live_rejects_missing_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"{API}/dashboard/live") as websocket:
            websocket.receive_json()


# ============================================================================
# BOOKINGS
# ============================================================================

def test_list_bookings_by_tab(client, seed, auth_headers):
    seed("users", "parent-1", {"fullName": "Ana Reyes"})
    seed("bookings", "b1", booking_doc(status="pending"))
    seed("bookings", "b2", booking_doc(status="accepted"))
    seed("bookings", "b3", booking_doc(status="declined"))
    seed("bookings", "b4", booking_doc(status="pending", consultant_id=OTHER_CONSULTANT_ID))

    requests = client.get(f"{API}/bookings", headers=auth_headers).json()
    upcoming = client.get(f"{API}/bookings?tab=upcoming", headers=auth_headers).json()

    assert [row["id"] for row in requests["rows"]] == ["b1"]
    assert requests["rows"][0]["full_name"] == "Ana Reyes"
    assert requests["title"] == "Pending Appointments"
    assert [row["id"] for row in upcoming["rows"]] == ["b2"]
    assert upcoming["counts"] == {"requests": 1, "upcoming": 1, "completed": 0}


def test_accept_booking(client, store, seed, auth_headers):
    seed("bookings", "b1", booking_doc(status="pending"))

    response = client.post(f"{API}/bookings/b1/accept", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["status"] == "accepted"
    assert response.json()["updated_at"] is not None


def test_decline_requires_confirmation(client, seed, auth_headers):
    seed("bookings", "b1", booking_doc(status="pending"))

    rejected = client.post(f"{API}/bookings/b1/decline", headers=auth_headers)
    declined = client.post(f"{API}/bookings/b1/decline", json={"confirmed": True}, headers=auth_headers)

    assert rejected.status_code == 400
    assert rejected.json()["error"] == "Not Allowed"
    assert declined.json()["status"] == "declined"


def test_complete_future_booking_is_rejected(client, seed, auth_headers):
    seed("bookings", "b1", booking_doc(status="accepted", date=FAR_FUTURE))

    response = client.post(f"{API}/bookings/b1/complete", headers=auth_headers)

    assert response.status_code == 400


def test_cancel_terminal_booking_is_rejected(client, seed, auth_headers):
    seed("bookings", "b1", booking_doc(status="completed"))

    response = client.post(f"{API}/bookings/b1/cancel", json={"confirmed": True}, headers=auth_headers)

    assert response.status_code == 400


def test_other_consultants_bookings_are_hidden(client, seed, auth_headers):
    seed("bookings", "b1", booking_doc(status="pending", consultant_id=OTHER_CONSULTANT_ID))

    response = client.post(f"{API}/bookings/b1/accept", headers=auth_headers)

    assert response.status_code == 404
    assert response.json()["error"] == "Not Found"


def test_bookings_live_accept(client, store, seed, token):
    seed("bookings", "b1", booking_doc(status="pending", date=NOW))

    with client.websocket_connect(f"{API}/bookings/live?token={token}") as websocket:
        state = receive_state(websocket, lambda data: not data["loading"])
        assert [row["id"] for row in state["rows"]] == ["b1"]

        websocket.send_json({"action": "accept", "booking_id": "b1"})
        state = receive_state(
            websocket,
            lambda data: data["busy_id"] is None and data["active_tab"] == "upcoming"
        )
        assert [row["status"] for row in state["rows"]] == ["accepted"]

        websocket.send_json({"action": "cancel", "booking_id": "b1"})
        assert "confirm" in receive_error(websocket)["message"]

        websocket.send_json({"action": "tab", "tab": "completed"})
        state = receive_state(websocket, lambda data: data["active_tab"] == "completed")
        assert state["empty_message"] == "No completed appointments."


# ============================================================================
# CHATS
# ============================================================================

@pytest.fixture
def conversation(seed):
    seed("users", "parent-1", {"firstName": "Ana", "lastName": "Reyes"})
    seed("chats", "A", chat_doc(last_seen=NOW - timedelta(hours=2)))
    seed("chats/A/messages", "m1", message_doc("hello", "parent-1", NOW - timedelta(hours=1)))
    seed("chats", "X", chat_doc(consultant_id=OTHER_CONSULTANT_ID))


def test_list_conversations(client, conversation, auth_headers):
    data = client.get(f"{API}/chats", headers=auth_headers).json()

    assert data["unread_total"] == 1
    assert [row["chat_id"] for row in data["conversations"]] == ["A"]
    assert data["conversations"][0]["parent_name"] == "Ana Reyes"


def test_list_messages(client, conversation, auth_headers):
    rows = client.get(f"{API}/chats/A/messages", headers=auth_headers).json()

    assert [row["text"] for row in rows] == ["hello"]
    assert client.get(f"{API}/chats/X/messages", headers=auth_headers).status_code == 404


def test_mark_seen_and_send(client, store, conversation, auth_headers):
    seen = client.post(f"{API}/chats/A/seen", headers=auth_headers)
    sent = client.post(f"{API}/chats/A/messages", json={"text": "Hi Ana"}, headers=auth_headers)
    blank = client.post(f"{API}/chats/A/messages", json={"text": "  "}, headers=auth_headers)

    assert seen.json()["seen_by_doctor"] is True
    assert sent.status_code == 201
    assert sent.json()["sender_id"] == CONSULTANT_ID
    assert blank.status_code == 400
    assert client.get(f"{API}/chats", headers=auth_headers).json()["unread_total"] == 0


def test_chats_live(client, conversation, token):
    with client.websocket_connect(f"{API}/chats/live?token={token}") as websocket:
        state = receive_state(websocket, lambda data: not data["loading_conversations"])
        assert state["unread_total"] == 1

        websocket.send_json({"action": "select", "chat_id": "A"})
        state = receive_state(websocket, lambda data: data["selected_chat_id"] == "A" and data["unread_total"] == 0)
        assert [m["text"] for m in state["messages"]] == ["hello"]

        websocket.send_json({"action": "send", "text": "On my way"})
        state = receive_state(
            websocket,
            lambda data: len(data["messages"]) == 2 and not data["messages"][-1]["pending"]
        )
        assert state["messages"][-1]["is_mine"]

        websocket.send_json({"action": "send", "text": ""})
        assert receive_error(websocket)["message"] == "Cannot send an empty message."

        websocket.send_json({"action": "deselect"})
        state = receive_state(websocket, lambda data: data["selected_chat_id"] is None)
        assert state["messages"] == []


# ============================================================================
# PROFILE
# ============================================================================

def test_profile_roundtrip(client, seed, auth_headers):
    seed("users", "clinic-1", {"role": "clinic", "birthCenterAddress": "12 Mabini St"})

    response = client.put(f"{API}/profile", json={
        "name": "Dr. Maria Santos",
        "specialty": "Midwife",
        "birth_center_address": "12 Mabini St",
        "available_days": ["Tuesday"],
        "platform": ["Online"],
    }, headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["clinic_id"] == "clinic-1"
    assert client.get(f"{API}/profile", headers=auth_headers).json()["specialty"] == "Midwife"


def test_profile_rejects_unknown_options(client, auth_headers):
    response = client.put(f"{API}/profile", json={"name": "X", "available_days": ["Someday"]}, headers=auth_headers)

    assert response.status_code == 422


def test_profile_photo_upload_and_delete(client, storage, auth_headers):
    uploaded = client.post(
        f"{API}/profile/photo",
        files={"file": ("me.png", b"\x89PNG\r\n\x1a\n", "image/png")},
        headers=auth_headers
    )

    assert uploaded.status_code == 200
    photo = uploaded.json()["profile_photo"]
    assert photo.startswith("/static/profilePhotos/consultant-1_")

    removed = client.delete(f"{API}/profile/photo", headers=auth_headers)

    assert removed.json()["profile_photo"] == ""
    assert not storage.file_exists(photo.rsplit("/", 1)[1])


def test_profile_photo_rejects_documents(client, auth_headers):
    response = client.post(
        f"{API}/profile/photo",
        files={"file": ("cv.pdf", b"%PDF-1.4", "application/pdf")},
        headers=auth_headers
    )

    assert response.status_code == 400
