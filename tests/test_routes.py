import base64

from fastapi.testclient import TestClient

from main import create_app
from utils.config import BridgeConfig


def _upload(client, data_url, project=None, **extra):
    url = "/api/screenshots" + (f"?project={project}" if project else "")
    return client.post(url, json={"dataUrl": data_url, **extra})


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "sessions": {}}


def test_upload_creates_pending_screenshot(client, png_data_url, data_dir):
    response = _upload(client, png_data_url(), project="alpha", prompt="login bug")

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["createdAt"].endswith("Z")
    assert (data_dir / "alpha" / f"{body['id']}.json").exists()

    items = client.get("/api/screenshots?project=alpha").json()
    assert len(items) == 1
    assert items[0]["prompt"] == "login bug"
    assert items[0]["projectId"] == "alpha"
    assert items[0]["git"]["branch"] == "main"
    assert "imageBase64" not in items[0]


def test_upload_defaults_to_default_project(client, png_data_url):
    _upload(client, png_data_url())

    assert len(client.get("/api/screenshots").json()) == 1
    assert client.get("/api/screenshots?project=alpha").json() == []
    assert client.get("/api/projects").json() == ["default"]


def test_upload_requires_data_url(client):
    response = client.post("/api/screenshots", json={"prompt": "no image"})

    assert response.status_code == 400
    assert response.json()["detail"] == "dataUrl is required"


def test_upload_rejects_bad_data_url(client):
    assert _upload(client, "not a data url").status_code == 400
    assert _upload(client, "data:image/png;base64,aGVsbG8=").status_code == 400


def test_image_endpoint_serves_jpeg(client, png_data_url):
    screenshot_id = _upload(client, png_data_url(40, 20)).json()["id"]

    response = client.get(f"/api/screenshots/{screenshot_id}/image")

    assert response.status_code == 200
    assert response.headers["content-type"] == "image/jpeg"
    assert response.content[:2] == b"\xff\xd8"
    assert client.get("/api/screenshots/missing/image").status_code == 404


def test_list_with_filters_and_pagination(client, png_data_url):
    for prompt in ["login bug", "login fix", "dashboard"]:
        _upload(client, png_data_url(), project="p", prompt=prompt)

    found = client.get("/api/screenshots", params={"project": "p", "q": "LOGIN"}).json()
    assert sorted(i["prompt"] for i in found) == ["login bug", "login fix"]

    page = client.get("/api/screenshots", params={"project": "p", "limit": 2}).json()
    assert page["total"] == 3
    assert [i["prompt"] for i in page["items"]] == ["dashboard", "login fix"]

    by_commit = client.get("/api/screenshots", params={"project": "p", "commit": "abc123d"}).json()
    assert len(by_commit) == 3
    assert client.get("/api/screenshots", params={"project": "p", "branch": "develop"}).json() == []


def test_list_rejects_bad_filters(client):
    assert client.get("/api/screenshots", params={"status": "lost"}).status_code == 400
    assert client.get("/api/screenshots", params={"since": "yesterday"}).status_code == 400
    assert client.get("/api/screenshots", params={"limit": -1}).status_code == 400


def test_update_description(client, png_data_url):
    screenshot_id = _upload(client, png_data_url()).json()["id"]

    response = client.patch(f"/api/screenshots/{screenshot_id}", json={"description": "a login form"})

    assert response.status_code == 200
    assert client.get("/api/screenshots").json()[0]["description"] == "a login form"
    assert client.patch("/api/screenshots/missing", json={"description": "x"}).status_code == 404


def test_delete_and_clear(client, png_data_url):
    first = _upload(client, png_data_url(), project="alpha").json()["id"]
    _upload(client, png_data_url(), project="alpha")
    _upload(client, png_data_url(), project="beta")

    assert client.delete(f"/api/screenshots/{first}").status_code == 200
    assert client.delete(f"/api/screenshots/{first}").status_code == 404

    assert client.delete("/api/screenshots?project=alpha").json() == {"cleared": 1}
    assert client.get("/api/screenshots?project=alpha").json() == []
    assert len(client.get("/api/screenshots?project=beta").json()) == 1


def test_screenshots_survive_restart(data_dir, git_context, png_data_url):
    config = BridgeConfig(data_dir=data_dir)
    with TestClient(create_app(config, source_context=lambda: git_context)) as first:
        screenshot_id = _upload(first, png_data_url(), project="alpha", prompt="kept").json()["id"]

    with TestClient(create_app(config, source_context=lambda: git_context)) as second:
        items = second.get("/api/screenshots?project=alpha").json()
        image = second.get(f"/api/screenshots/{screenshot_id}/image")

    assert [i["id"] for i in items] == [screenshot_id]
    assert image.content[:2] == b"\xff\xd8"


def test_display_socket_receives_lifecycle_events(client, png_data_url):
    with client.websocket_connect("/ws") as ws:
        screenshot_id = _upload(client, png_data_url(), project="alpha", prompt="hi").json()["id"]

        created = ws.receive_json()
        added = ws.receive_json()
        assert created == {"event": "project:created", "data": {"project": "alpha"}}
        assert added["event"] == "screenshot:added"
        assert added["data"]["id"] == screenshot_id
        assert added["data"]["project"] == "alpha"

        _upload(client, png_data_url(), project="alpha")
        assert ws.receive_json()["event"] == "screenshot:added"

        client.delete(f"/api/screenshots/{screenshot_id}")
        deleted = ws.receive_json()
        assert deleted == {"event": "screenshot:deleted", "data": {"id": screenshot_id, "project": "alpha"}}


def test_stored_image_is_base64_jpeg(client, png_data_url):
    screenshot_id = _upload(client, png_data_url(30, 30)).json()["id"]

    record = client.app.state.store.get(screenshot_id)

    assert record.mime_type == "image/jpeg"
    assert base64.b64decode(record.image_base64)[:2] == b"\xff\xd8"
