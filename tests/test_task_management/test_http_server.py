"""Tests for the HTTP transport."""

import json
import time
from collections.abc import Iterator

import pytest
from conftest import FakeClock
from fastapi.testclient import TestClient

from gtd_buddy.task_management.config import SESSION_ID_HEADER, ServerConfig
from gtd_buddy.task_management.http_server import create_app, is_valid_session_id

CONFIG = ServerConfig(user_id="user-a", database_path=":memory:")
INITIALIZE = {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}}


def tool_call(name: str, arguments: dict | None = None, request_id: int = 1) -> dict:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "tools/call",
        "params": {"name": name, "arguments": arguments or {}},
    }


def tool_payload(response) -> dict:
    return json.loads(response.json()["result"]["content"][0]["text"])


@pytest.fixture
def client() -> Iterator[TestClient]:
    """Client for an app without authentication."""
    with TestClient(create_app(CONFIG, clock=FakeClock())) as client:
        yield client


@pytest.fixture
def secured_client() -> Iterator[TestClient]:
    """Client for an app requiring a bearer token."""
    config = ServerConfig(user_id="user-a", database_path=":memory:", api_token="s3cret")
    with TestClient(create_app(config)) as client:
        yield client


@pytest.mark.unit
class TestSessionIds:
    """Test cases for session id validation."""

    @pytest.mark.parametrize("session_id", ["abc", "a" * 128, "3f2c-XYZ_~!"])
    def test_valid(self, session_id: str) -> None:
        assert is_valid_session_id(session_id)

    @pytest.mark.parametrize("session_id", ["", "a" * 129, "has space", "tab\tid", "ñ"])
    def test_invalid(self, session_id: str) -> None:
        assert not is_valid_session_id(session_id)


@pytest.mark.unit
class TestMcpEndpoint:
    """Test cases for POST/DELETE /mcp."""

    def test_new_session_id_is_assigned(self, client: TestClient) -> None:
        """Test that initialize without a session id gets a fresh one."""
        response = client.post("/mcp", json=INITIALIZE)

        assert response.status_code == 200
        assert response.headers[SESSION_ID_HEADER]
        assert response.json()["result"]["serverInfo"]["name"] == "gtd-buddy"

    def test_tool_calls_share_the_store(self, client: TestClient) -> None:
        """Test creating a task and listing it from the same session."""
        headers = {SESSION_ID_HEADER: "session-1"}

        created = client.post(
            "/mcp", json=tool_call("create_task", {"title": "Buy milk"}), headers=headers
        )
        listed = client.post("/mcp", json=tool_call("list_tasks", request_id=2), headers=headers)

        assert created.headers[SESSION_ID_HEADER] == "session-1"
        task = tool_payload(created)["task"]
        assert task["userId"] == "user-a"
        assert [item["id"] for item in tool_payload(listed)["tasks"]] == [task["id"]]

    def test_delete_session(self, client: TestClient) -> None:
        """Test explicit session close and the unknown-session case."""
        headers = {SESSION_ID_HEADER: "session-2"}
        client.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "ping"}, headers=headers)

        closed = client.delete("/mcp", headers=headers)
        again = client.delete("/mcp", headers=headers)

        assert closed.status_code == 200
        assert closed.json() == {"success": True, "sessionId": "session-2"}
        assert again.status_code == 404

    def test_closed_session_id_starts_fresh(self, client: TestClient) -> None:
        """Test that a closed id can be used again for a new session."""
        headers = {SESSION_ID_HEADER: "session-3"}
        client.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "ping"}, headers=headers)
        client.delete("/mcp", headers=headers)

        response = client.post(
            "/mcp", json={"jsonrpc": "2.0", "id": 2, "method": "ping"}, headers=headers
        )

        assert response.status_code == 200
        assert response.json()["result"] == {}

    def test_delete_without_session_id(self, client: TestClient) -> None:
        """Test that DELETE requires a session id."""
        response = client.delete("/mcp")

        assert response.status_code == 400

    def test_invalid_session_id(self, client: TestClient) -> None:
        """Test that malformed session ids are rejected."""
        response = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 1, "method": "ping"},
            headers={SESSION_ID_HEADER: "x" * 200},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32600

    def test_parse_error(self, client: TestClient) -> None:
        """Test that a body that is not JSON is rejected."""
        response = client.post(
            "/mcp", content=b"{not json", headers={"content-type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32700

    def test_notification_is_accepted(self, client: TestClient) -> None:
        """Test that notifications get 202 with no body."""
        response = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "method": "notifications/initialized"},
            headers={SESSION_ID_HEADER: "session-4"},
        )

        assert response.status_code == 202
        assert response.content == b""

    @pytest.mark.parametrize(
        "message",
        [
            {"jsonrpc": "2.0", "id": 1, "method": "ping"},
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
            {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "get_summary"}},
        ],
    )
    def test_headerless_message_needs_initialize(
        self, client: TestClient, message: dict
    ) -> None:
        """Test that only initialize may open a session without a session id."""
        for _ in range(3):
            response = client.post("/mcp", json=message)

            assert response.status_code == 400
            assert response.json()["error"]["code"] == -32600
            assert SESSION_ID_HEADER not in response.headers

        assert client.get("/health").json()["sessions"] == 0

    def test_each_initialize_opens_one_session(self, client: TestClient) -> None:
        """Test that every headerless initialize gets its own session."""
        first = client.post("/mcp", json=INITIALIZE)
        second = client.post("/mcp", json=INITIALIZE)

        assert first.headers[SESSION_ID_HEADER] != second.headers[SESSION_ID_HEADER]
        assert client.get("/health").json()["sessions"] == 2

    def test_health(self, client: TestClient) -> None:
        """Test the health endpoint."""
        client.post("/mcp", json=INITIALIZE)

        response = client.get("/health")

        assert response.json() == {
            "status": "ok",
            "server": "gtd-buddy",
            "userId": "user-a",
            "sessions": 1,
        }


@pytest.mark.unit
class TestAuthentication:
    """Test cases for bearer token checks."""

    @pytest.mark.parametrize(
        "headers",
        [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "Basic czNjcmV0"}],
    )
    def test_rejected(self, secured_client: TestClient, headers: dict) -> None:
        """Test that missing or wrong credentials are rejected."""
        response = secured_client.post(
            "/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "ping"}, headers=headers
        )

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    def test_accepted(self, secured_client: TestClient) -> None:
        """Test that the configured token is accepted."""
        response = secured_client.post(
            "/mcp",
            json=INITIALIZE,
            headers={"Authorization": "Bearer s3cret"},
        )

        assert response.status_code == 200

    def test_health_needs_no_token(self, secured_client: TestClient) -> None:
        """Test that the health endpoint is open."""
        assert secured_client.get("/health").status_code == 200


@pytest.mark.unit
class TestIdleSessions:
    """Test cases for the idle session sweep."""

    def test_idle_session_is_evicted(self) -> None:
        """Test that a session with no traffic is closed by the sweep."""
        config = ServerConfig(
            user_id="user-a", database_path=":memory:", session_idle_timeout=0.05
        )
        with TestClient(create_app(config, sweep_interval=0.02)) as client:
            session_id = client.post("/mcp", json=INITIALIZE).headers[SESSION_ID_HEADER]

            deadline = time.monotonic() + 5
            while client.get("/health").json()["sessions"] and time.monotonic() < deadline:
                time.sleep(0.02)

            assert client.get("/health").json()["sessions"] == 0
            closed = client.delete("/mcp", headers={SESSION_ID_HEADER: session_id})
            assert closed.status_code == 404
