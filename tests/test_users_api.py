import json
import time

from radio444.billing.signatures import sign_svix_payload
from radio444.storage.models import MediaItem, User

from tests.conftest import TEST_AUTH_WEBHOOK_SECRET


def _post_auth_event(api, event: dict, *, secret: str = TEST_AUTH_WEBHOOK_SECRET, msg_id: str = "msg_1"):
    payload = json.dumps(event).encode("utf-8")
    timestamp = int(time.time())
    return api.client.post(
        "/webhooks/auth",
        content=payload,
        headers={
            "svix-id": msg_id,
            "svix-timestamp": str(timestamp),
            "svix-signature": sign_svix_payload(msg_id=msg_id, timestamp=timestamp, payload=payload, secret=secret),
            "content-type": "application/json",
        },
    )


def _user_created(user_id: str, **extra) -> dict:
    data = {
        "id": user_id,
        "username": "nightshift",
        "first_name": "Ava",
        "last_name": "Reyes",
        "image_url": "https://img.444radio.test/ava.png",
        "primary_email_address_id": "idn_2",
        "email_addresses": [
            {"id": "idn_1", "email_address": "old@444radio.test"},
            {"id": "idn_2", "email_address": "ava@444radio.test"},
        ],
    }
    data.update(extra)
    return {"type": "user.created", "data": data}


def test_auth_webhook_creates_user_with_zero_credits(api) -> None:
    response = _post_auth_event(api, _user_created("user_auth_1"))

    assert response.status_code == 200
    assert response.json() == {"status": "processed", "event_type": "user.created", "user_id": "user_auth_1"}

    user = api.get_user("user_auth_1")
    assert user.credits == 0
    assert user.email == "ava@444radio.test"
    assert user.full_name == "Ava Reyes"
    assert user.username == "nightshift"


def test_auth_webhook_update_keeps_credits(api) -> None:
    api.create_user("user_auth_2", credits=40)

    response = _post_auth_event(
        api,
        {"type": "user.updated", "data": {"id": "user_auth_2", "first_name": "Kai", "username": "no spaces!"}},
    )

    assert response.status_code == 200
    user = api.get_user("user_auth_2")
    assert user.credits == 40
    assert user.full_name == "Kai"
    assert user.username is None


def test_auth_webhook_deletes_user(api) -> None:
    api.create_user("user_auth_3")

    deleted = _post_auth_event(api, {"type": "user.deleted", "data": {"id": "user_auth_3"}}, msg_id="msg_del")
    missing = _post_auth_event(api, {"type": "user.deleted", "data": {"id": "user_auth_3"}}, msg_id="msg_del_2")

    assert deleted.json()["status"] == "processed"
    assert missing.json()["status"] == "ignored"
    with api.session_factory() as session:
        assert session.get(User, "user_auth_3") is None


def test_auth_webhook_rejects_bad_signature(api) -> None:
    other_secret = "whsec_b3RoZXItc2VjcmV0LXZhbHVl"

    response = _post_auth_event(api, _user_created("user_auth_4"), secret=other_secret)
    unsigned = api.client.post("/webhooks/auth", content=json.dumps(_user_created("user_auth_4")).encode("utf-8"))

    assert response.status_code == 400
    assert unsigned.status_code == 400
    with api.session_factory() as session:
        assert session.get(User, "user_auth_4") is None


def test_auth_webhook_ignores_other_events(api) -> None:
    response = _post_auth_event(api, {"type": "session.created", "data": {"id": "sess_1"}})

    assert response.json() == {"status": "ignored", "event_type": "session.created", "user_id": None}


def test_profile_read_and_update(api) -> None:
    user_id = api.create_user(credits=9, username="first_name")

    me = api.client.get("/users/me", headers=api.auth_headers(user_id))
    updated = api.client.patch(
        "/users/me",
        json={"username": "beatsmith", "bio": "  making noise  "},
        headers=api.auth_headers(user_id),
    )

    assert me.status_code == 200
    assert me.json()["credits"] == 9
    assert me.json()["username"] == "first_name"
    assert updated.status_code == 200
    assert updated.json()["username"] == "beatsmith"
    assert updated.json()["bio"] == "making noise"


def test_username_conflict_returns_409(api) -> None:
    api.create_user(username="taken_name")
    user_id = api.create_user()

    response = api.client.patch("/users/me", json={"username": "taken_name"}, headers=api.auth_headers(user_id))
    invalid = api.client.patch("/users/me", json={"username": "no spaces"}, headers=api.auth_headers(user_id))

    assert response.status_code == 409
    assert response.json()["detail"] == "Username is already taken"
    assert invalid.status_code == 422


def test_follow_and_public_profile(api) -> None:
    artist = api.create_user(username="artist_one")
    fan = api.create_user()
    with api.session_factory() as session:
        session.add(MediaItem(user_id=artist, title="Public", status="ready"))
        session.add(MediaItem(user_id=artist, title="Hidden", status="ready", is_public=False))
        session.commit()

    follow = api.client.post(f"/users/{artist}/follow", headers=api.auth_headers(fan))
    again = api.client.post(f"/users/{artist}/follow", headers=api.auth_headers(fan))
    profile = api.client.get(f"/users/{artist}", headers=api.auth_headers(fan)).json()
    anonymous = api.client.get(f"/users/{artist}").json()

    assert follow.json() == {"following": True, "followers": 1}
    assert again.json() == {"following": True, "followers": 1}
    assert profile["followers"] == 1
    assert profile["tracks"] == 1
    assert profile["is_following"] is True
    assert anonymous["is_following"] is False

    unfollow = api.client.delete(f"/users/{artist}/follow", headers=api.auth_headers(fan))
    assert unfollow.json() == {"following": False, "followers": 0}


def test_follow_rejects_self_and_unknown(api) -> None:
    user_id = api.create_user()

    assert api.client.post(f"/users/{user_id}/follow", headers=api.auth_headers(user_id)).status_code == 400
    assert api.client.post("/users/user_nobody/follow", headers=api.auth_headers(user_id)).status_code == 404
    assert api.client.get("/users/user_nobody").status_code == 404
