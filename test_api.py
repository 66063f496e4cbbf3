from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from auth import issue_token
from conftest import TEST_SECRET
from database import TaskStore
from main import create_app

PREFIX = "/api/v1"


def create_task(client, headers, **payload):
    payload.setdefault("title", "Task")
    r = client.post(f"{PREFIX}/tasks", json=payload, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def test_health_needs_no_auth(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "OK"}


def test_cors_headers_and_options_short_circuit(client):
    r = client.get("/health")
    assert r.headers["Access-Control-Allow-Origin"] == "*"
    assert "Authorization" in r.headers["Access-Control-Allow-Headers"]
    assert "PATCH" in r.headers["Access-Control-Allow-Methods"]

    r = client.options(f"{PREFIX}/tasks")
    assert r.status_code == 204
    assert r.headers["Access-Control-Allow-Origin"] == "*"


@pytest.mark.parametrize(
    "method, path",
    [
        ("GET", "/tasks"),
        ("POST", "/tasks"),
        ("GET", "/tasks/stats"),
        ("GET", "/tasks/1"),
        ("PUT", "/tasks/1"),
        ("DELETE", "/tasks/1"),
        ("PATCH", "/tasks/1/complete"),
        ("PATCH", "/tasks/1/pending"),
    ],
)
def test_task_routes_require_auth(client, method, path):
    r = client.request(method, f"{PREFIX}{path}")
    assert r.status_code == 401
    assert r.json()["error"] == "MalformedCredential"
    assert r.headers["WWW-Authenticate"] == "Bearer"


def test_malformed_header_is_rejected(client):
    r = client.get(f"{PREFIX}/tasks", headers={"Authorization": "InvalidToken"})
    assert r.status_code == 401
    assert r.json()["error"] == "MalformedCredential"


def test_invalid_token_is_rejected(client):
    r = client.get(f"{PREFIX}/tasks", headers={"Authorization": "Bearer invalid.token.here"})
    assert r.status_code == 401
    assert r.json()["error"] == "InvalidCredential"


def test_expired_token_is_rejected(client):
    token = issue_token(1, TEST_SECRET, ttl=-10)
    r = client.get(f"{PREFIX}/tasks", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401
    assert r.json()["error"] == "ExpiredCredential"


def test_pay_rent_scenario(client, auth_headers, clock):
    headers = auth_headers(1)
    create_task(client, headers, title="Something else", priority="low")

    r = client.post(f"{PREFIX}/tasks", json={"title": "Pay rent", "priority": "high"}, headers=headers)
    assert r.status_code == 201
    task = r.json()
    assert task["status"] == "pending"
    assert task["priority"] == "high"
    assert task["ownerId"] == 1

    r = client.get(f"{PREFIX}/tasks", headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["tasks"][0]["id"] == task["id"]
    assert body["pagination"] == {"page": 1, "limit": 10, "total": 2, "pages": 1}

    r = client.patch(f"{PREFIX}/tasks/{task['id']}/complete", headers=headers)
    assert r.status_code == 200
    assert r.json()["status"] == "completed"

    past = (clock() - timedelta(days=3)).isoformat()
    r = client.put(f"{PREFIX}/tasks/{task['id']}", json={"dueDate": past}, headers=headers)
    assert r.status_code == 200
    assert r.json()["isOverdue"] is False

    stats = client.get(f"{PREFIX}/tasks/stats", headers=headers).json()
    assert stats["completed"] >= 1
    assert stats["overdue"] == 0
    assert stats["total"] == 2


def test_create_defaults_priority_to_medium(client, auth_headers):
    task = create_task(client, auth_headers(), title="Plain")
    assert task["priority"] == "medium"
    assert task["description"] is None
    assert task["dueDate"] is None


def test_owner_id_in_body_is_ignored(client, auth_headers):
    task = create_task(client, auth_headers(1), title="Mine", ownerId=99, userId=99)
    assert task["ownerId"] == 1


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"title": ""},
        {"title": "x" * 201},
        {"title": "ok", "priority": "urgent"},
        {"title": "ok", "dueDate": "tomorrow"},
        {"title": "ok", "dueDate": "0001-01-01T00:00:00+05:00"},
    ],
)
def test_create_rejects_invalid_body(client, auth_headers, payload):
    r = client.post(f"{PREFIX}/tasks", json=payload, headers=auth_headers())
    assert r.status_code == 400
    assert r.json()["error"] == "ValidationFailed"
    assert r.json()["detail"]


def test_create_rejects_non_json_body(client, auth_headers):
    headers = {**auth_headers(), "Content-Type": "application/json"}
    r = client.post(f"{PREFIX}/tasks", content=b"{not json", headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "ValidationFailed"


@pytest.mark.parametrize("method, suffix", [("GET", ""), ("PUT", ""), ("DELETE", ""), ("PATCH", "/complete")])
def test_non_numeric_id_is_a_validation_error(client, auth_headers, store, method, suffix):
    r = client.request(method, f"{PREFIX}/tasks/abc{suffix}", headers=auth_headers(), json={})
    assert r.status_code == 400
    assert r.json()["error"] == "ValidationFailed"


def test_zero_id_is_a_validation_error(client, auth_headers):
    r = client.get(f"{PREFIX}/tasks/0", headers=auth_headers())
    assert r.status_code == 400


@pytest.mark.parametrize("task_id", ["99999999999999999999", str(2**63)])
def test_id_beyond_integer_column_is_a_validation_error(client, auth_headers, task_id):
    r = client.get(f"{PREFIX}/tasks/{task_id}", headers=auth_headers())
    assert r.status_code == 400
    assert r.json()["error"] == "ValidationFailed"


def test_largest_id_is_not_found(client, auth_headers):
    r = client.get(f"{PREFIX}/tasks/{2**63 - 1}", headers=auth_headers())
    assert r.status_code == 404


def test_title_is_stored_trimmed(client, auth_headers):
    headers = auth_headers()
    task = create_task(client, headers, title="  Pay rent  ")
    assert task["title"] == "Pay rent"

    r = client.put(f"{PREFIX}/tasks/{task['id']}", json={"title": " Pay rent today\t"}, headers=headers)
    assert r.json()["title"] == "Pay rent today"
    assert client.get(f"{PREFIX}/tasks/{task['id']}", headers=headers).json()["title"] == "Pay rent today"


def test_get_update_delete_roundtrip(client, auth_headers):
    headers = auth_headers()
    task = create_task(client, headers, title="Draft", description="first")

    r = client.get(f"{PREFIX}/tasks/{task['id']}", headers=headers)
    assert r.status_code == 200
    assert r.json()["title"] == "Draft"

    r = client.put(f"{PREFIX}/tasks/{task['id']}", json={"title": "Final"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["title"] == "Final"
    assert r.json()["description"] == "first"

    r = client.delete(f"{PREFIX}/tasks/{task['id']}", headers=headers)
    assert r.status_code == 200
    assert r.json() == {"message": "Task deleted successfully"}

    r = client.get(f"{PREFIX}/tasks/{task['id']}", headers=headers)
    assert r.status_code == 404
    assert r.json()["error"] == "NotFound"


def test_delete_twice_is_not_found(client, auth_headers):
    headers = auth_headers()
    task = create_task(client, headers)
    assert client.delete(f"{PREFIX}/tasks/{task['id']}", headers=headers).status_code == 200
    r = client.delete(f"{PREFIX}/tasks/{task['id']}", headers=headers)
    assert r.status_code == 404
    assert r.json()["error"] == "NotFound"


def test_update_rejects_null_title_and_bad_status(client, auth_headers):
    headers = auth_headers()
    task = create_task(client, headers)
    for payload in ({"title": None}, {"status": "archived"}, {"priority": None}):
        r = client.put(f"{PREFIX}/tasks/{task['id']}", json=payload, headers=headers)
        assert r.status_code == 400, payload


def test_update_missing_task_is_not_found(client, auth_headers):
    r = client.put(f"{PREFIX}/tasks/12345", json={"title": "x"}, headers=auth_headers())
    assert r.status_code == 404


def test_tasks_are_isolated_between_users(client, auth_headers):
    task = create_task(client, auth_headers(1), title="A's task")
    other = auth_headers(2)

    assert client.get(f"{PREFIX}/tasks/{task['id']}", headers=other).status_code == 404
    assert client.put(f"{PREFIX}/tasks/{task['id']}", json={"title": "B"}, headers=other).status_code == 404
    assert client.patch(f"{PREFIX}/tasks/{task['id']}/complete", headers=other).status_code == 404
    assert client.delete(f"{PREFIX}/tasks/{task['id']}", headers=other).status_code == 404
    assert client.get(f"{PREFIX}/tasks", headers=other).json()["tasks"] == []
    assert client.get(f"{PREFIX}/tasks/stats", headers=other).json()["total"] == 0

    r = client.get(f"{PREFIX}/tasks/{task['id']}", headers=auth_headers(1))
    assert r.json()["title"] == "A's task"


def test_list_pagination(client, auth_headers, clock):
    headers = auth_headers()
    for i in range(12):
        clock.advance(minutes=1)
        create_task(client, headers, title=f"task {i}")

    r = client.get(f"{PREFIX}/tasks", params={"page": 2, "limit": 5}, headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert [t["title"] for t in body["tasks"]] == [f"task {i}" for i in (6, 5, 4, 3, 2)]
    assert body["pagination"] == {"page": 2, "limit": 5, "total": 12, "pages": 3}


def test_list_filters(client, auth_headers, clock):
    headers = auth_headers()
    late = create_task(client, headers, title="late", dueDate=(clock() - timedelta(days=1)).isoformat())
    high = create_task(client, headers, title="high", priority="high")
    client.patch(f"{PREFIX}/tasks/{high['id']}/complete", headers=headers)

    r = client.get(f"{PREFIX}/tasks", params={"overdue": "true"}, headers=headers)
    assert [t["id"] for t in r.json()["tasks"]] == [late["id"]]
    assert r.json()["tasks"][0]["isOverdue"] is True

    r = client.get(f"{PREFIX}/tasks", params={"status": "completed"}, headers=headers)
    assert [t["id"] for t in r.json()["tasks"]] == [high["id"]]

    r = client.get(f"{PREFIX}/tasks", params={"priority": "medium"}, headers=headers)
    assert [t["id"] for t in r.json()["tasks"]] == [late["id"]]


@pytest.mark.parametrize(
    "params",
    [
        {"page": 0},
        {"limit": 0},
        {"limit": 101},
        {"page": "x"},
        {"page": 10**20},
        {"page": 1_000_001},
        {"status": "archived"},
        {"priority": "urgent"},
        {"overdue": "sometimes"},
    ],
)
def test_list_rejects_bad_query(client, auth_headers, params):
    r = client.get(f"{PREFIX}/tasks", params=params, headers=auth_headers())
    assert r.status_code == 400
    assert r.json()["error"] == "ValidationFailed"


def test_mark_pending_after_complete(client, auth_headers):
    headers = auth_headers()
    task = create_task(client, headers)
    assert client.patch(f"{PREFIX}/tasks/{task['id']}/complete", headers=headers).json()["status"] == "completed"
    assert client.patch(f"{PREFIX}/tasks/{task['id']}/complete", headers=headers).json()["status"] == "completed"
    assert client.patch(f"{PREFIX}/tasks/{task['id']}/pending", headers=headers).json()["status"] == "pending"


def test_stats_route_is_not_shadowed_by_id_route(client, auth_headers):
    r = client.get(f"{PREFIX}/tasks/stats", headers=auth_headers())
    assert r.status_code == 200
    assert r.json() == {"total": 0, "pending": 0, "completed": 0, "overdue": 0}


def test_persistence_failure_is_500(client, auth_headers, store):
    import sqlite3

    conn = sqlite3.connect(str(store.db_path))
    try:
        conn.execute("DROP TABLE tasks")
        conn.commit()
    finally:
        conn.close()

    r = client.get(f"{PREFIX}/tasks", headers=auth_headers())
    assert r.status_code == 500
    assert r.json()["error"] == "PersistenceError"


def test_persistence_failure_is_logged_with_traceback(client, auth_headers, store, caplog):
    import sqlite3

    conn = sqlite3.connect(str(store.db_path))
    try:
        conn.execute("DROP TABLE tasks")
        conn.commit()
    finally:
        conn.close()

    with caplog.at_level("ERROR", logger="main"):
        client.get(f"{PREFIX}/tasks", headers=auth_headers())
    records = [r for r in caplog.records if r.name == "main"]
    assert records and records[0].exc_info is not None


class BrokenStore(TaskStore):
    def count(self, where, params=()):
        raise RuntimeError("disk on fire")


def test_unexpected_error_is_json_500(settings, clock, auth_headers, tmp_path, caplog):
    app = create_app(settings, store=BrokenStore(tmp_path / "broken.sqlite3"), clock=clock)
    client = TestClient(app, raise_server_exceptions=False)

    with caplog.at_level("ERROR", logger="main"):
        r = client.get(f"{PREFIX}/tasks", headers=auth_headers())

    assert r.status_code == 500
    assert r.json() == {"error": "InternalError"}
    assert r.headers["Access-Control-Allow-Origin"] == "*"
    assert any(rec.name == "main" and rec.exc_info for rec in caplog.records)
