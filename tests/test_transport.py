"""
Unit Tests for the Jira/Xray HTTP Transport.

Covers:
- ClientConfig: normalization and auth method validation.
- JiraTransport: shared session setup and result mapping (HTTP calls mocked).
"""

from __future__ import annotations

import json
import threading
from unittest.mock import MagicMock

import pytest
import requests
from loguru import logger

from xraysync.jira_client.commands import HttpCommand
from xraysync.jira_client.coordinator import send_commands
from xraysync.jira_client.transport import (
    FAILED_ID,
    ClientConfig,
    JiraTransport,
    XrayClientError,
)


def _response(status_code: int = 200, body: bytes = b"{}", reason: str = "OK") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.reason = reason
    response.content = body
    response.text = body.decode()
    if body:
        response.json.side_effect = lambda: json.loads(body)
    return response


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(
        base_url="https://jira.example.com/",
        project_key="RA",
        username="automation",
        password="secret",
        timeout_sec=5,
    )


@pytest.fixture
def session() -> MagicMock:
    return MagicMock(spec=requests.Session)


@pytest.fixture
def transport(config: ClientConfig, session: MagicMock) -> JiraTransport:
    transport = JiraTransport(config)
    transport._session = session
    return transport


# ---------------------------------------------------------------------------
# ClientConfig Tests
# ---------------------------------------------------------------------------


class TestClientConfig:
    """Tests for the ClientConfig dataclass."""

    def test_trailing_slash_stripped(self, config: ClientConfig) -> None:
        assert config.base_url == "https://jira.example.com"

    def test_is_configured(self, config: ClientConfig) -> None:
        assert config.is_configured
        assert not ClientConfig(base_url="https://jira.example.com").is_configured

    def test_unconfigured_transport_warns(self) -> None:
        messages = []
        handler_id = logger.add(messages.append, level="WARNING")
        try:
            JiraTransport(ClientConfig(base_url="https://jira.example.com"))
        finally:
            logger.remove(handler_id)
        assert any("no project key" in m for m in messages)

    def test_unsupported_auth_method(self) -> None:
        with pytest.raises(XrayClientError, match="oauth"):
            ClientConfig(base_url="https://jira.example.com", auth_method="oauth")


# ---------------------------------------------------------------------------
# Session Tests
# ---------------------------------------------------------------------------


class TestSession:
    """Tests for shared session setup."""

    def test_basic_auth(self, config: ClientConfig) -> None:
        session = JiraTransport(config)._get_session()
        assert session.auth == ("automation", "secret")
        assert "Authorization" not in session.headers
        assert session.headers["Content-Type"] == "application/json"

    def test_token_auth(self) -> None:
        config = ClientConfig(
            base_url="https://jira.example.com", auth_method="token", api_token="abc"
        )
        session = JiraTransport(config)._get_session()
        assert session.headers["Authorization"] == "Bearer abc"

    def test_session_shared_across_threads(self, config: ClientConfig) -> None:
        transport = JiraTransport(config)
        sessions = []
        threads = [
            threading.Thread(target=lambda: sessions.append(transport._get_session()))
            for _ in range(4)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert all(s is sessions[0] for s in sessions)

    def test_batches_reuse_one_session(
        self, config: ClientConfig, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        session = MagicMock()
        session.headers = {}
        session.request.return_value = _response()
        factory = MagicMock(return_value=session)
        monkeypatch.setattr(requests, "Session", factory)
        transport = JiraTransport(config)

        for batch in range(10):
            commands = [HttpCommand("GET", f"/rest/api/2/issue/RA-{batch}{i}") for i in range(3)]
            outcome = send_commands(transport, commands, bucket_size=3)
            assert outcome.success_count == 3

        assert factory.call_count == 1
        assert session.request.call_count == 30

    def test_close_discards_session(self, config: ClientConfig) -> None:
        transport = JiraTransport(config)
        first = transport._get_session()
        transport.close()
        assert transport._get_session() is not first

    def test_close_without_session(self, config: ClientConfig) -> None:
        JiraTransport(config).close()


# ---------------------------------------------------------------------------
# Send Tests
# ---------------------------------------------------------------------------


class TestSend:
    """Tests for JiraTransport.send result mapping."""

    def test_ok_payload(self, transport: JiraTransport, session: MagicMock) -> None:
        session.request.return_value = _response(body=b'{"id": "1", "key": "RA-1"}')

        result = transport.send(HttpCommand("POST", "/rest/api/2/issue", {"fields": {}}))

        assert result.ok
        assert result.payload == {"id": "1", "key": "RA-1"}
        session.request.assert_called_once_with(
            method="POST",
            url="https://jira.example.com/rest/api/2/issue",
            timeout=5,
            json={"fields": {}},
        )

    def test_empty_body_is_empty_object(self, transport: JiraTransport, session: MagicMock) -> None:
        session.request.return_value = _response(status_code=204, body=b"", reason="No Content")

        result = transport.send(HttpCommand("PUT", "/rest/raven/2.0/api/testrun/1", {}))

        assert result.ok
        assert result.payload == {}

    def test_http_error(self, transport: JiraTransport, session: MagicMock) -> None:
        session.request.return_value = _response(400, b'{"errors": {}}', "Bad Request")

        result = transport.send(HttpCommand("GET", "/rest/api/2/issuetype"))

        assert not result.ok
        assert result.status_code == 400
        assert result.payload["id"] == FAILED_ID
        assert result.payload["reason"] == "Bad Request"

    @pytest.mark.parametrize(
        "error",
        [requests.exceptions.ConnectionError("refused"), requests.exceptions.Timeout("slow")],
    )
    def test_request_errors_not_raised(
        self, transport: JiraTransport, session: MagicMock, error: Exception
    ) -> None:
        session.request.side_effect = error

        result = transport.send(HttpCommand("GET", "/rest/api/2/issuetype"))

        assert not result.ok
        assert result.status_code == 0
        assert result.payload["id"] == FAILED_ID

    def test_invalid_json(self, transport: JiraTransport, session: MagicMock) -> None:
        response = _response(body=b"<html>")
        response.json.side_effect = ValueError("Expecting value")
        session.request.return_value = response

        result = transport.send(HttpCommand("GET", "/rest/api/2/issuetype"))

        assert not result.ok
        assert "Invalid JSON" in result.reason

    def test_command_headers_forwarded(self, transport: JiraTransport, session: MagicMock) -> None:
        session.request.return_value = _response()

        transport.send(HttpCommand("GET", "/x", headers={"X-Atlassian-Token": "no-check"}))

        assert session.request.call_args.kwargs["headers"] == {"X-Atlassian-Token": "no-check"}
