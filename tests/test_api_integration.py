REPO = "https://github.com/psf/requests"
QUESTION = "https://stackoverflow.com/questions/11227809/why-is-processing-faster"


def chat(chat_id):
    return {"Tg-Chat-Id": str(chat_id)}


def register(client, chat_id):
    response = client.post(f"/tg-chat/{chat_id}")
    assert response.status_code == 200


def add(client, chat_id, url, **extra):
    return client.post("/links", json={"link": url, **extra}, headers=chat(chat_id))


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_register_chat_is_idempotent(client):
    register(client, 1)
    register(client, 1)


def test_add_and_list_links(client):
    register(client, 1)

    response = add(client, 1, REPO, tags=["work"], filters=["user=bot"])
    assert response.status_code == 200
    data = response.json()
    assert data["url"] == REPO
    assert data["tags"] == ["work"]
    assert data["filters"] == ["user=bot"]

    add(client, 1, QUESTION)
    listing = client.get("/links", headers=chat(1)).json()
    assert listing["size"] == 2
    assert [link["url"] for link in listing["links"]] == [REPO, QUESTION]


def test_chat_id_from_query_parameter(client):
    register(client, 3)
    add(client, 3, REPO)

    response = client.get("/links", params={"tgChatId": 3})
    assert response.status_code == 200
    assert response.json()["size"] == 1


def test_missing_chat_id_is_bad_request(client):
    response = client.get("/links")
    assert response.status_code == 400
    assert response.json()["exceptionName"] == "ValidationError"


def test_duplicate_link_is_rejected(client):
    register(client, 1)
    add(client, 1, REPO)

    response = add(client, 1, REPO)

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "link_already_exists"
    assert body["exceptionName"] == "LinkAlreadyExistsError"


def test_unsupported_link_is_rejected(client):
    register(client, 1)
    response = add(client, 1, "https://gitlab.com/a/b")
    assert response.status_code == 400
    assert response.json()["code"] == "unsupported_link_type"


def test_unknown_chat_is_not_found(client):
    response = add(client, 42, REPO)
    assert response.status_code == 404
    assert response.json()["code"] == "chat_not_found"

    assert client.delete("/tg-chat/42").status_code == 404


def test_malformed_body_is_bad_request(client):
    register(client, 1)
    response = client.post("/links", json={"tags": []}, headers=chat(1))
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_request"


def test_shared_link_lives_until_last_follower(client):
    register(client, 1)
    register(client, 2)
    first = add(client, 1, REPO).json()
    second = add(client, 2, REPO).json()
    assert first["id"] == second["id"]

    removed = client.request("DELETE", "/links", json={"link": REPO}, headers=chat(1))
    assert removed.status_code == 200
    assert removed.json()["url"] == REPO
    assert client.get("/links", headers=chat(1)).json()["size"] == 0
    assert client.get("/links", headers=chat(2)).json()["size"] == 1

    again = client.request("DELETE", "/links", json={"link": REPO}, headers=chat(1))
    assert again.status_code == 404


def test_list_is_fresh_after_changes(client):
    register(client, 1)
    assert client.get("/links", headers=chat(1)).json()["size"] == 0
    assert client.link_cache._entries

    add(client, 1, REPO)
    assert client.get("/links", headers=chat(1)).json()["size"] == 1

    client.request("DELETE", "/links", json={"link": REPO}, headers=chat(1))
    assert client.get("/links", headers=chat(1)).json()["size"] == 0


def test_delete_chat_removes_subscriptions(client):
    register(client, 1)
    register(client, 2)
    add(client, 1, REPO)
    add(client, 2, REPO)

    assert client.delete("/tg-chat/1").status_code == 200
    assert client.get("/links", headers=chat(1)).status_code == 404
    assert client.get("/links", headers=chat(2)).json()["size"] == 1


def test_tags_endpoints(client):
    register(client, 1)
    add(client, 1, REPO, tags=["work"])
    add(client, 1, QUESTION)

    assert client.post(
        "/links/tags", json={"link": QUESTION, "tag": "python"}, headers=chat(1)
    ).status_code == 200
    duplicate = client.post("/links/tags", json={"link": QUESTION, "tag": "python"}, headers=chat(1))
    assert duplicate.status_code == 400

    assert client.get("/tags", headers=chat(1)).json() == {"tags": ["python", "work"]}
    tagged = client.get("/links", params={"tag": "python"}, headers=chat(1)).json()
    assert [link["url"] for link in tagged["links"]] == [QUESTION]

    removed = client.request(
        "DELETE", "/links/tags", json={"link": REPO, "tag": "work"}, headers=chat(1)
    )
    assert removed.status_code == 200
    assert client.get("/links", headers=chat(1)).json()["links"][0]["tags"] == []

    missing = client.request(
        "DELETE", "/links/tags", json={"link": REPO, "tag": "work"}, headers=chat(1)
    )
    assert missing.status_code == 404


def test_notification_settings(client):
    register(client, 1)

    ok = client.post(
        "/notification-settings",
        json={"mode": "digest", "digestHour": 9, "digestMinute": 15},
        headers=chat(1),
    )
    assert ok.status_code == 200

    bad = client.post(
        "/notification-settings", json={"mode": "digest", "digestHour": 25}, headers=chat(1)
    )
    assert bad.status_code == 400
    assert client.post(
        "/notification-settings", json={"mode": "hourly"}, headers=chat(1)
    ).status_code == 400
