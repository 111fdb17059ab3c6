def _message(content: str, timestamp: str, **extra) -> dict:
    return {"type": "user", "content": content, "timestamp": timestamp, **extra}


def test_messages_are_listed_in_timestamp_order(api) -> None:
    user_id = api.create_user()
    headers = api.auth_headers(user_id)

    api.client.post("/chat/messages", json=_message("second", "2026-04-01T10:05:00Z"), headers=headers)
    api.client.post(
        "/chat/messages",
        json=_message(
            "first",
            "2026-04-01T10:00:00Z",
            type="assistant",
            generation_type="music",
            generation_id="gen_1",
            result={"audioUrl": "https://cdn.444radio.test/a.mp3"},
        ),
        headers=headers,
    )

    messages = api.client.get("/chat/messages", headers=headers).json()["messages"]

    assert [message["content"] for message in messages] == ["first", "second"]
    assert messages[0]["type"] == "assistant"
    assert messages[0]["result"] == {"audioUrl": "https://cdn.444radio.test/a.mp3"}
    assert messages[1]["result"] is None


def test_messages_are_scoped_per_user(api) -> None:
    owner = api.create_user()
    other = api.create_user()
    api.client.post("/chat/messages", json=_message("mine", "2026-04-01T10:00:00Z"), headers=api.auth_headers(owner))

    assert api.client.get("/chat/messages", headers=api.auth_headers(other)).json()["messages"] == []


def test_message_requires_type_and_content(api) -> None:
    user_id = api.create_user()

    response = api.client.post("/chat/messages", json={"type": "user"}, headers=api.auth_headers(user_id))

    assert response.status_code == 400


def test_replace_and_clear_history(api) -> None:
    user_id = api.create_user()
    headers = api.auth_headers(user_id)
    api.client.post("/chat/messages", json=_message("stale", "2026-04-01T09:00:00Z"), headers=headers)

    replaced = api.client.put(
        "/chat/messages",
        json={
            "messages": [
                _message("one", "2026-04-02T09:00:00Z"),
                _message("two", "2026-04-02T09:01:00Z"),
            ]
        },
        headers=headers,
    )

    assert replaced.json() == {"success": True, "count": 2}
    contents = [item["content"] for item in api.client.get("/chat/messages", headers=headers).json()["messages"]]
    assert contents == ["one", "two"]

    cleared = api.client.delete("/chat/messages", headers=headers)
    assert cleared.json() == {"success": True, "count": 2}
    assert api.client.get("/chat/messages", headers=headers).json()["messages"] == []


def test_replace_rejects_invalid_payloads(api) -> None:
    user_id = api.create_user()
    headers = api.auth_headers(user_id)
    api.client.post("/chat/messages", json=_message("keep", "2026-04-01T09:00:00Z"), headers=headers)

    not_a_list = api.client.put("/chat/messages", json={"messages": "nope"}, headers=headers)
    bad_item = api.client.put("/chat/messages", json={"messages": [{"type": "user"}]}, headers=headers)

    assert not_a_list.status_code == 400
    assert bad_item.status_code == 400
    contents = [item["content"] for item in api.client.get("/chat/messages", headers=headers).json()["messages"]]
    assert contents == ["keep"]


def test_chat_requires_session(api) -> None:
    assert api.client.get("/chat/messages").status_code == 401
