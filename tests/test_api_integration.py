"""Integration tests for the FastAPI backend.

Uses TestClient with an in-memory snapshot store and mocked log search calls.
"""

from collections.abc import Generator

import httpx
import pytest
import respx
from fastapi.testclient import TestClient

from logeasy.config import Settings

LOGIN_URL = "https://bank.example/mobilews/logonUser?ws=1"
ACCOUNTS_URL = "https://bank.example/mobilews/accounts"

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def client(mock_settings: Settings) -> Generator[TestClient]:  # noqa: ARG001 (mock_settings activates patches)
    """Create a TestClient whose lifespan builds a fresh capture service."""
    from logeasy.api.main import app

    with TestClient(app) as tc:
        yield tc


def _seed_session(client: TestClient) -> None:
    """Login request (no token yet) followed by a tokened accounts request."""
    for event in (
        {"requestId": "r1", "phase": "before_request", "url": LOGIN_URL, "method": "POST", "timeStamp": 1000},
        {"requestId": "r1", "phase": "completed", "url": LOGIN_URL, "statusCode": 200, "timeStamp": 1400},
        {"requestId": "r2", "phase": "before_request", "url": ACCOUNTS_URL, "method": "GET", "timeStamp": 2000},
        {
            "requestId": "r2",
            "phase": "before_send_headers",
            "url": ACCOUNTS_URL,
            "timeStamp": 2005,
            "requestHeaders": [
                {"name": "q2token", "value": "abc"},
                {"name": "Cookie", "value": "workstation-id=WS-9; utcOffset=-0500"},
            ],
        },
        {"requestId": "r2", "phase": "completed", "url": ACCOUNTS_URL, "statusCode": 200, "timeStamp": 2300},
    ):
        assert client.post("/events", json=event).status_code == 200

    resp = client.post(
        "/captures",
        json={
            "url": LOGIN_URL,
            "requestId": "r1",
            "timestamp": 1450,
            "responseBody": {"data": {"loginName": "jdoe"}},
            "correlationToken": "abc",
        },
    )
    assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Ingest
# ---------------------------------------------------------------------------


class TestIngestEndpoints:
    @pytest.mark.integration
    def test_event_returns_merged_record(self, client: TestClient) -> None:
        resp = client.post(
            "/events",
            json={"requestId": "r1", "phase": "before_request", "url": ACCOUNTS_URL, "timeStamp": 1000},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["requestId"] == "r1"
        assert body["startTime"] == 1000
        assert "endTime" not in body

    @pytest.mark.integration
    def test_second_terminal_event_returns_null(self, client: TestClient) -> None:
        base = {"requestId": "r1", "url": ACCOUNTS_URL}
        client.post("/events", json={**base, "phase": "completed", "timeStamp": 1000, "statusCode": 200})
        resp = client.post("/events", json={**base, "phase": "error_occurred", "timeStamp": 1100, "error": "x"})
        assert resp.status_code == 200
        assert resp.json() is None

    @pytest.mark.integration
    def test_invalid_event_rejected(self, client: TestClient) -> None:
        resp = client.post("/events", json={"requestId": "r1", "phase": "teleported", "timeStamp": 1})
        assert resp.status_code == 422

    @pytest.mark.integration
    def test_capture_without_match_is_synthesized(self, client: TestClient) -> None:
        resp = client.post("/captures", json={"url": ACCOUNTS_URL, "timestamp": 5000})
        assert resp.status_code == 200
        body = resp.json()
        assert body["kind"] == "synthesized"
        assert body["requestId"].startswith("capture-")


# ---------------------------------------------------------------------------
# Records and sessions
# ---------------------------------------------------------------------------


class TestRecordsAndSessions:
    @pytest.mark.integration
    def test_records_and_clear(self, client: TestClient) -> None:
        _seed_session(client)
        records = client.get("/records").json()
        assert {r["requestId"] for r in records} == {"r1", "r2"}

        resp = client.delete("/records")
        assert resp.json() == {"success": True}
        assert client.get("/records").json() == []

    @pytest.mark.integration
    def test_session_summary(self, client: TestClient) -> None:
        _seed_session(client)

        resp = client.get("/sessions/bank.example")

        assert resp.status_code == 200
        body = resp.json()
        assert body["sessionId"] == "abc"
        assert body["workstationId"] == "WS-9"
        assert body["utcOffset"] == "-0500"
        assert [r["requestId"] for r in body["requests"]] == ["r1", "r2"]
        assert body["startTime"] == 1000 - 300_000
        assert body["endTime"] == 2300 + 300_000
        assert body["isStaging"] is False
        assert body["dataSignature"]["lastRequestId"] == "r2"

    @pytest.mark.integration
    def test_session_not_found(self, client: TestClient) -> None:
        resp = client.get("/sessions/nowhere.example")
        assert resp.status_code == 404

    @pytest.mark.integration
    def test_user_details(self, client: TestClient) -> None:
        _seed_session(client)
        resp = client.get("/sessions/bank.example/user")
        assert resp.status_code == 200
        assert resp.json()["loginName"] == "jdoe"

    @pytest.mark.integration
    def test_user_details_without_login_body(self, client: TestClient) -> None:
        resp = client.get("/sessions/bank.example/user")
        assert resp.status_code == 404

    @pytest.mark.integration
    def test_log_query_plan(self, client: TestClient) -> None:
        _seed_session(client)
        resp = client.get("/sessions/bank.example/queries")
        assert resp.status_code == 200
        body = resp.json()
        assert set(body["environments"]) == {"hq", "kamino", "lightbridge", "ardent"}
        assert 'sessionId="abc"' in body["environments"]["hq"]["queries"][0]["search"]
        assert 'workstationId="WS-9"' in body["environments"]["ardent"]["queries"][0]["search"]
        assert body["urls"]["kamino"].startswith("https://viewer.test/logs/search%20index%3D")


# ---------------------------------------------------------------------------
# POST /messages
# ---------------------------------------------------------------------------


class TestMessagesEndpoint:
    @pytest.mark.integration
    def test_env_info_round_trip(self, client: TestClient) -> None:
        assert client.post("/messages", json={"type": "env_info", "data": {"environment": "hq"}}).json() == {
            "success": True
        }
        resp = client.post("/messages", json={"type": "get_cached_env_info"})
        assert resp.json() == {"data": {"environment": "hq"}}

    @pytest.mark.integration
    def test_unknown_message_type(self, client: TestClient) -> None:
        resp = client.post("/messages", json={"type": "explode"})
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# GET /sessions/{domain}/logs/{environment}
# ---------------------------------------------------------------------------


class TestSessionLogs:
    @pytest.mark.integration
    @respx.mock
    def test_logs_found(self, client: TestClient) -> None:
        respx.post("http://logs.test/api/v3/logs/query").mock(
            return_value=httpx.Response(200, json={"Data": [{"message": "GET /accounts 200"}]})
        )
        _seed_session(client)

        resp = client.get("/sessions/bank.example/logs/hq")

        assert resp.status_code == 200
        body = resp.json()
        assert body["environment"] == "hq"
        assert body["query_name"] == "session_window"
        assert body["entries"] == [{"message": "GET /accounts 200"}]

    @pytest.mark.integration
    @respx.mock
    def test_all_queries_empty(self, client: TestClient) -> None:
        respx.post("http://logs.test/api/v3/logs/query").mock(return_value=httpx.Response(200, json={"Data": []}))
        _seed_session(client)

        resp = client.get("/sessions/bank.example/logs/kamino")

        assert resp.status_code == 502

    @pytest.mark.integration
    def test_unknown_environment(self, client: TestClient) -> None:
        assert client.get("/sessions/bank.example/logs/mars").status_code == 404

    @pytest.mark.integration
    def test_no_session(self, client: TestClient) -> None:
        assert client.get("/sessions/bank.example/logs/hq").status_code == 404


# ---------------------------------------------------------------------------
# GET /health and /metrics
# ---------------------------------------------------------------------------


class TestHealthEndpoint:
    @pytest.mark.integration
    def test_in_memory_store_is_degraded(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "degraded"
        names = {c["name"]: c["status"] for c in body["components"]}
        assert names == {"snapshot_store": "degraded", "log_search": "healthy"}

    @pytest.mark.integration
    def test_metrics_exposed(self, client: TestClient) -> None:
        client.post("/captures", json={"url": ACCOUNTS_URL, "timestamp": 5000})
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert "logeasy_captures_total" in resp.text
