from datetime import datetime
from typing import Any, Optional

import requests

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/api/v1"


class ApiClientError(Exception):
    def __init__(self, status_code: int, error: str, detail: Optional[str] = None):
        super().__init__(f"{status_code} {error}: {detail}" if detail else f"{status_code} {error}")
        self.status_code = status_code
        self.error = error
        self.detail = detail


def _json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):  # enums
        return value.value
    return value


class TaskApiClient:
    """
    Thin wrapper around the task endpoints.

    `session` defaults to a requests.Session; anything with the same
    request methods (e.g. fastapi.testclient.TestClient) works too.
    """

    def __init__(self, token: Optional[str] = None, base_url: str = BASE_URL, prefix: str = API_PREFIX, session=None):
        self.base_url = base_url.rstrip("/")
        self.prefix = prefix.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.token = token

    def _headers(self) -> dict:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        response = self.session.request(method, url, headers=self._headers(), **kwargs)
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            raise ApiClientError(response.status_code, body.get("error", "HTTPError"), body.get("detail"))
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def health(self) -> dict:
        return self._request("GET", "/health")

    def create_task(self, title: str, description=None, priority=None, due_date=None) -> dict:
        payload = {"title": title}
        if description is not None:
            payload["description"] = description
        if priority is not None:
            payload["priority"] = _json_value(priority)
        if due_date is not None:
            payload["dueDate"] = _json_value(due_date)
        return self._request("POST", f"{self.prefix}/tasks", json=payload)

    def list_tasks(self, status=None, priority=None, overdue: bool = False, page: int = 1, limit: int = 10) -> dict:
        params = {"page": page, "limit": limit}
        if status is not None:
            params["status"] = _json_value(status)
        if priority is not None:
            params["priority"] = _json_value(priority)
        if overdue:
            params["overdue"] = "true"
        return self._request("GET", f"{self.prefix}/tasks", params=params)

    def get_task(self, task_id: int) -> dict:
        return self._request("GET", f"{self.prefix}/tasks/{task_id}")

    def update_task(self, task_id: int, **fields) -> dict:
        # Only the keyword arguments given are sent; None means explicit null.
        aliases = {"due_date": "dueDate"}
        payload = {aliases.get(k, k): _json_value(v) for k, v in fields.items()}
        return self._request("PUT", f"{self.prefix}/tasks/{task_id}", json=payload)

    def delete_task(self, task_id: int) -> dict:
        return self._request("DELETE", f"{self.prefix}/tasks/{task_id}")

    def complete_task(self, task_id: int) -> dict:
        return self._request("PATCH", f"{self.prefix}/tasks/{task_id}/complete")

    def reopen_task(self, task_id: int) -> dict:
        return self._request("PATCH", f"{self.prefix}/tasks/{task_id}/pending")

    def stats(self) -> dict:
        return self._request("GET", f"{self.prefix}/tasks/stats")


if __name__ == "__main__":
    import sys

    client = TaskApiClient(token=sys.argv[1] if len(sys.argv) > 1 else None)
    print("HEALTH:", client.health())
    task = client.create_task("Pay rent", priority="high")
    print("CREATE:", task)
    print("LIST:", client.list_tasks())
    print("COMPLETE:", client.complete_task(task["id"]))
    print("STATS:", client.stats())
