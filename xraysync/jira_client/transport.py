"""
Jira/Xray HTTP Transport.

Sends HttpCommand descriptors to the tracker and returns a TransportResult
for every call. Request failures (HTTP errors, connection errors, timeouts,
undecodable bodies) are returned as failed results, never raised.

One ``requests.Session`` is shared by every worker thread of the bucketed
coordinator; it is created on first use and released by ``close``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from loguru import logger

from xraysync.jira_client.commands import HttpCommand


FAILED_ID = "-1"


class XrayClientError(Exception):
    """Raised when the transport cannot be constructed or used."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class ClientConfig:
    """Immutable connection settings for one tracker."""

    base_url: str
    project_key: str = ""
    auth_method: str = "basic"  # "basic" or "token"
    username: str = ""
    password: str = ""
    api_token: str = ""
    timeout_sec: int = 30
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))
        if self.auth_method not in ("basic", "token"):
            raise XrayClientError(
                f"Unsupported auth method '{self.auth_method}' "
                f"(expected 'basic' or 'token')"
            )

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.project_key)


@dataclass(frozen=True)
class TransportResult:
    """
    Outcome of one tracker call.

    Attributes:
        ok: True for a 2xx response with a decodable body.
        status_code: HTTP status; 0 when no response was received.
        reason: HTTP reason phrase or error description.
        payload: Parsed JSON; ``{}`` for empty bodies. Failed calls carry
            ``{"id": "-1", "code", "reason", "body"}``.
        command: The command that produced this result.
    """

    ok: bool
    status_code: int
    reason: str
    payload: Any
    command: Optional[HttpCommand] = None

    @classmethod
    def failure(
        cls,
        command: HttpCommand,
        status_code: int,
        reason: str,
        body: str = "",
    ) -> "TransportResult":
        return cls(
            ok=False,
            status_code=status_code,
            reason=reason,
            payload={"code": status_code, "reason": reason, "body": body, "id": FAILED_ID},
            command=command,
        )


class JiraTransport:
    """
    requests-based transport collaborator.

    Usage::

        transport = JiraTransport(ClientConfig(
            base_url="https://jira.example.com",
            project_key="RA",
            username="automation",
            password="secret",
        ))
        result = transport.send(command)
        if result.ok:
            print(result.payload)
    """

    def __init__(self, config: ClientConfig) -> None:
        self._config = config
        self._session: Optional[requests.Session] = None
        self._session_lock = threading.Lock()
        if not config.is_configured:
            logger.warning(
                f"JiraTransport has no project key or base url - "
                f"project='{config.project_key}', url='{config.base_url}'"
            )
        logger.info(
            f"JiraTransport initialized - project={config.project_key}, "
            f"url={config.base_url}, auth={config.auth_method}"
        )

    @property
    def config(self) -> ClientConfig:
        return self._config

    def _get_session(self) -> requests.Session:
        """Get or create the shared authenticated HTTP session."""
        with self._session_lock:
            if self._session is None:
                session = requests.Session()
                session.verify = self._config.verify_ssl
                session.headers.update({
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                })

                if self._config.auth_method == "token":
                    session.headers["Authorization"] = f"Bearer {self._config.api_token}"
                else:
                    session.auth = (self._config.username, self._config.password)

                self._session = session
            return self._session

    def send(self, command: HttpCommand) -> TransportResult:
        """
        Perform the call described by ``command``.

        Args:
            command: Descriptor with a route relative to the base URL.

        Returns:
            TransportResult; never raises for request failures.
        """
        session = self._get_session()
        url = f"{self._config.base_url}{command.route}"
        logger.debug(f"Jira API {command.method} {url}")

        kwargs: Dict[str, Any] = {"timeout": self._config.timeout_sec}
        if command.body is not None:
            kwargs["json"] = command.body
        if command.headers:
            kwargs["headers"] = dict(command.headers)

        try:
            response = session.request(method=command.method, url=url, **kwargs)
        except requests.exceptions.Timeout as e:
            logger.error(f"Jira API timeout: {command} ({e})")
            return TransportResult.failure(
                command, 0, f"Request timed out after {self._config.timeout_sec}s"
            )
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Jira API connection error: {command} ({e})")
            return TransportResult.failure(command, 0, f"Cannot connect to Jira: {e}")
        except requests.exceptions.RequestException as e:
            logger.error(f"Jira API request error: {command} ({e})")
            return TransportResult.failure(command, 0, str(e))

        if not response.ok:
            logger.error(
                f"Jira API HTTP error: {command} "
                f"(status={response.status_code}, reason={response.reason})"
            )
            return TransportResult.failure(
                command, response.status_code, response.reason or "", response.text
            )

        if not response.content:
            return TransportResult(True, response.status_code, response.reason or "", {}, command)

        try:
            payload = response.json()
        except ValueError as e:
            logger.error(f"Jira API returned an undecodable body: {command} ({e})")
            return TransportResult.failure(
                command, response.status_code, f"Invalid JSON: {e}", response.text
            )

        return TransportResult(True, response.status_code, response.reason or "", payload, command)

    def close(self) -> None:
        """Close the shared session; the next call opens a new one."""
        with self._session_lock:
            if self._session is not None:
                self._session.close()
                self._session = None
        logger.debug("Jira transport session closed")
