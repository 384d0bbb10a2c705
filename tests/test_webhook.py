"""Webhook signature checks and event application."""

import json

from gitmemo.services.webhook_service import sign_payload

from conftest import OWNER, REPO

SECRET = "test-webhook-secret"


def _post(client, event_type, payload, secret=SECRET):
    body = json.dumps(payload).encode("utf-8")
    return client.post(
        "/api/v1/webhook/github",
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-GitHub-Event": event_type,
            "X-Hub-Signature-256": sign_payload(secret, body),
        },
    )


def _repository(owner=OWNER, repo=REPO):
    return {"name": repo, "owner": {"login": owner}}


def _issue_event(number=42, action="opened", title="From webhook", labels=None):
    return {
        "action": action,
        "repository": _repository(),
        "issue": {
            "number": number,
            "title": title,
            "body": "payload body",
            "state": "open",
            "created_at": "2024-06-01T10:00:00Z",
            "labels": labels or [{"id": 1, "name": "idea", "color": "a2eeef", "description": None}],
        },
    }


def test_ping(client):
    response = _post(client, "ping", {"zen": "Keep it logically awesome.", "repository": _repository()})

    assert response.status_code == 200
    assert response.json()["event"] == "ping"


def test_bad_signature_rejected(client):
    response = _post(client, "issues", _issue_event(), secret="wrong")

    assert response.status_code == 401
    assert client.get("/api/v1/sync/history").json()["records"] == []


def test_missing_signature_rejected(client):
    response = client.post(
        "/api/v1/webhook/github",
        content=b"{}",
        headers={"X-GitHub-Event": "issues"},
    )

    assert response.status_code == 401


def test_issue_event_upserts_and_records(client, monkeypatch):
    response = _post(client, "issues", _issue_event())

    assert response.status_code == 200
    assert response.json()["synced"] == 1

    # Served from the store without a token
    monkeypatch.delenv("GITHUB_TOKEN")
    issue = client.get("/api/v1/issues/42").json()
    assert issue["title"] == "From webhook"
    assert issue["labels"][0]["color"] == "a2eeef"

    record = client.get("/api/v1/sync/history").json()["records"][0]
    assert (record["status"], record["sync_type"], record["issues_synced"]) == ("success", "webhook", 1)


def test_issue_event_invalidates_cached_pages(client, monkeypatch):
    import main

    monkeypatch.delenv("GITHUB_TOKEN")
    _post(client, "issues", _issue_event(number=1, title="Before"))
    assert client.get("/api/v1/issues").json()["issues"][0]["title"] == "Before"

    _post(client, "issues", _issue_event(number=1, action="edited", title="After"))

    assert main.app.state.cache.get_stats()["size"] == 0
    assert client.get("/api/v1/issues").json()["issues"][0]["title"] == "After"


def test_deleted_issue_removed(client, monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN")
    _post(client, "issues", _issue_event(number=5))

    response = _post(client, "issues", _issue_event(number=5, action="deleted"))

    assert response.status_code == 200
    assert client.get("/api/v1/issues/5").status_code == 404


def test_label_events(client, monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN")
    label = {"id": 9, "name": "journal", "color": "0e8a16", "description": "daily"}

    _post(client, "label", {"action": "created", "label": label, "repository": _repository()})
    assert [l["name"] for l in client.get("/api/v1/labels").json()] == ["journal"]

    _post(client, "label", {"action": "deleted", "label": label, "repository": _repository()})
    assert client.get("/api/v1/labels").json() == []


def test_other_repository_is_404(client):
    event = _issue_event()
    event["repository"] = _repository(repo="someone-elses")

    response = _post(client, "issues", event)

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_invalid_issue_payload_records_failure(client):
    event = _issue_event()
    del event["issue"]["title"]

    response = _post(client, "issues", event)

    assert response.status_code == 400
    record = client.get("/api/v1/sync/history").json()["records"][0]
    assert (record["status"], record["sync_type"]) == ("failed", "webhook")
