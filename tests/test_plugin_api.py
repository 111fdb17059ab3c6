from radio444.core.config import get_settings
from radio444.storage.models import MediaItem


LOOP_PAYLOAD = {"type": "loops", "prompt": "lofi drum loop with vinyl crackle", "max_duration": 8}


def _issue_token(api, user_id: str, name: str = "Ableton Live") -> dict:
    response = api.client.post("/plugin/token", json={"name": name}, headers=api.auth_headers(user_id))
    assert response.status_code == 200
    return response.json()


def _plugin_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def test_token_is_issued_once_and_listed_by_prefix(api) -> None:
    user_id = api.create_user(plugin_purchased=True)

    issued = _issue_token(api, user_id)

    assert issued["token"].startswith("444r_")
    assert issued["token_prefix"] == issued["token"][:12]
    assert issued["name"] == "Ableton Live"

    listed = api.client.get("/plugin/token", headers=api.auth_headers(user_id)).json()["tokens"]
    assert [item["id"] for item in listed] == [issued["id"]]
    assert "token" not in listed[0]
    assert listed[0]["is_active"] is True


def test_token_management_requires_session(api) -> None:
    user_id = api.create_user(plugin_purchased=True)
    issued = _issue_token(api, user_id)

    response = api.client.get("/plugin/token", headers=_plugin_headers(issued["token"]))

    assert response.status_code == 401


def test_active_token_limit(api, monkeypatch) -> None:
    monkeypatch.setenv("PLUGIN_TOKEN_MAX_ACTIVE", "1")
    get_settings.cache_clear()
    user_id = api.create_user(plugin_purchased=True)

    first = _issue_token(api, user_id)
    blocked = api.client.post("/plugin/token", json={}, headers=api.auth_headers(user_id))

    assert blocked.status_code == 400
    assert blocked.json()["detail"].startswith("Maximum 1 active tokens")

    revoke = api.client.delete(f"/plugin/token?id={first['id']}", headers=api.auth_headers(user_id))
    assert revoke.status_code == 200
    assert api.client.post("/plugin/token", json={}, headers=api.auth_headers(user_id)).status_code == 200


def test_revoked_token_is_rejected(api) -> None:
    user_id = api.create_user(credits=10, plugin_purchased=True)
    issued = _issue_token(api, user_id)

    api.client.delete(f"/plugin/token?id={issued['id']}", headers=api.auth_headers(user_id))
    response = api.client.post("/plugin/generate", json=LOOP_PAYLOAD, headers=_plugin_headers(issued["token"]))

    assert response.status_code == 401
    assert response.json()["detail"] == "Plugin token has been revoked"


def test_revoke_unknown_token_returns_404(api) -> None:
    user_id = api.create_user()

    response = api.client.delete("/plugin/token?id=missing", headers=api.auth_headers(user_id))

    assert response.status_code == 404


def test_plugin_job_charges_on_completion(api) -> None:
    user_id = api.create_user(credits=10, plugin_purchased=True)
    token = _issue_token(api, user_id)["token"]

    submitted = api.client.post("/plugin/generate", json=LOOP_PAYLOAD, headers=_plugin_headers(token))

    assert submitted.status_code == 200
    job = submitted.json()
    assert job["status"] == "processing"
    assert job["credits_cost"] == 6
    assert api.get_user(user_id).credits == 10

    polled = api.client.get(f"/plugin/jobs/{job['job_id']}", headers=_plugin_headers(token))

    assert polled.status_code == 200
    body = polled.json()
    assert body["status"] == "completed"
    assert body["output"]["url"].endswith(".wav")
    assert body["media_id"]
    assert api.get_user(user_id).credits == 4
    assert [tx.type for tx in api.transactions(user_id)] == ["generation_loops"]

    with api.session_factory() as session:
        media = session.get(MediaItem, body["media_id"])
        assert media is not None
        assert media.is_public is False
        assert media.status == "ready"

    again = api.client.get(f"/plugin/jobs/{job['job_id']}", headers=_plugin_headers(token))
    assert again.json()["status"] == "completed"
    assert api.get_user(user_id).credits == 4


def test_plugin_generate_checks_balance_up_front(api) -> None:
    user_id = api.create_user(credits=2, plugin_purchased=True)
    token = _issue_token(api, user_id)["token"]

    response = api.client.post("/plugin/generate", json=LOOP_PAYLOAD, headers=_plugin_headers(token))

    assert response.status_code == 402
    assert response.json()["detail"] == "Insufficient credits. loops requires 6 credits, you have 2."


def test_plugin_denied_without_purchase(api) -> None:
    user_id = api.create_user(credits=10)
    token = _issue_token(api, user_id)["token"]

    response = api.client.post("/plugin/generate", json=LOOP_PAYLOAD, headers=_plugin_headers(token))

    assert response.status_code == 403
    assert response.headers["x-plugin-access-tier"] == "denied_no_purchase"


def test_plugin_denied_with_inactive_subscription(api) -> None:
    user_id = api.create_user(credits=10, subscription_plan="pro", subscription_status="cancelled")
    token = _issue_token(api, user_id)["token"]

    response = api.client.post("/plugin/generate", json=LOOP_PAYLOAD, headers=_plugin_headers(token))

    assert response.status_code == 403
    assert response.headers["x-plugin-access-tier"] == "denied_inactive"


def test_plugin_requires_token(api) -> None:
    assert api.client.post("/plugin/generate", json=LOOP_PAYLOAD).status_code == 401
    assert api.client.post(
        "/plugin/generate", json=LOOP_PAYLOAD, headers=_plugin_headers("444r_short")
    ).status_code == 401


def test_cancel_job(api) -> None:
    user_id = api.create_user(credits=10, subscription_plan="studio", subscription_status="active")
    token = _issue_token(api, user_id)["token"]
    job_id = api.client.post("/plugin/generate", json=LOOP_PAYLOAD, headers=_plugin_headers(token)).json()["job_id"]

    missing_ids = api.client.post("/plugin/cancel", json={}, headers=_plugin_headers(token))
    unknown = api.client.post("/plugin/cancel", json={"jobId": "nope"}, headers=_plugin_headers(token))
    first = api.client.post("/plugin/cancel", json={"jobId": job_id}, headers=_plugin_headers(token))
    second = api.client.post("/plugin/cancel", json={"jobId": job_id}, headers=_plugin_headers(token))

    assert missing_ids.status_code == 400
    assert unknown.status_code == 404
    assert first.json() == {"success": True, "cancelled": True, "job_id": job_id, "status": "cancelled"}
    assert second.json()["cancelled"] is False
    assert api.get_user(user_id).credits == 10


def test_jobs_are_scoped_to_token_owner(api) -> None:
    owner = api.create_user(credits=10, plugin_purchased=True)
    other = api.create_user(credits=10, plugin_purchased=True)
    owner_token = _issue_token(api, owner)["token"]
    other_token = _issue_token(api, other)["token"]
    job_id = api.client.post(
        "/plugin/generate", json=LOOP_PAYLOAD, headers=_plugin_headers(owner_token)
    ).json()["job_id"]

    response = api.client.get(f"/plugin/jobs/{job_id}", headers=_plugin_headers(other_token))

    assert response.status_code == 404


def test_access_reports_tier_for_session_and_token(api) -> None:
    studio = api.create_user(credits=3, subscription_plan="studio", subscription_status="active")
    denied = api.create_user()
    denied_token = _issue_token(api, denied)["token"]

    studio_access = api.client.get("/plugin/access", headers=api.auth_headers(studio))
    denied_access = api.client.get("/plugin/access", headers=_plugin_headers(denied_token))

    assert studio_access.status_code == 200
    assert studio_access.json()["access_tier"] == "studio"
    assert studio_access.json()["has_access"] is True
    assert studio_access.json()["credits"] == 3
    assert denied_access.status_code == 200
    assert denied_access.json()["access_tier"] == "denied_no_purchase"
    assert denied_access.json()["has_access"] is False


def test_access_without_credentials(api) -> None:
    assert api.client.get("/plugin/access").status_code == 401
