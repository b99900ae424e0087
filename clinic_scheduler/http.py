"""Shared HTTP plumbing: bearer auth and status-code to error-kind mapping."""
from __future__ import annotations
from typing import Any

import httpx
import structlog

from . import config
from .errors import AuthError, ClinicAPIError, ConflictError, NotFoundError, ServerError, ValidationError

logger = structlog.get_logger(__name__)


def _server_message(resp: httpx.Response) -> tuple[str | None, Any]:
    try:
        body = resp.json()
    except ValueError:
        return None, resp.text or None
    if isinstance(body, dict):
        return body.get("message") or body.get("error"), body.get("details", body)
    return None, body


def error_from_response(resp: httpx.Response, action: str) -> ClinicAPIError:
    """Translate a non-2xx response into one of the client error kinds."""
    status = resp.status_code
    server_msg, details = _server_message(resp)
    fallback = f"Request failed with status code {status}"

    if status == 400 or status == 422:
        return ValidationError(server_msg or fallback, status_code=status, details=details)
    if status in (401, 403):
        reason = server_msg or ("Authentication required" if status == 401 else "Permission denied")
        return AuthError(f"Not allowed to {action}: {reason}", status_code=status, details=details)
    if status == 404:
        return NotFoundError(server_msg or f"Not found while trying to {action}", status_code=status, details=details)
    if status == 409:
        return ConflictError(
            server_msg or "The requested appointment time conflicts with an existing appointment",
            status_code=status,
            details=details,
        )
    return ServerError(server_msg or fallback, status_code=status, details=details)


class ApiSession:
    """Base URL, bearer token and timeout shared by the resource clients.

    A fresh ``httpx.AsyncClient`` is opened per request unless one is supplied.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or config.API_URL).rstrip("/")
        self.token = token if token is not None else config.API_TOKEN
        self.timeout = timeout or config.API_TIMEOUT
        self._client = client

    def headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        action: str,
        params: Any = None,
        json: Any = None,
    ) -> Any:
        """Issue one request and return the decoded JSON body (None when empty)."""
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                resp = await self._client.request(method, url, headers=self.headers(), params=params, json=json)
            else:
                async with httpx.AsyncClient(http2=True, timeout=self.timeout) as client:
                    resp = await client.request(method, url, headers=self.headers(), params=params, json=json)
        except httpx.HTTPError as exc:
            logger.error("request failed", method=method, path=path, action=action, error=str(exc))
            raise ServerError(str(exc) or f"Failed to {action}") from exc

        if resp.is_error:
            err = error_from_response(resp, action)
            logger.warning("backend rejected request", method=method, path=path, status=resp.status_code, message=err.message)
            raise err

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise ServerError(f"Unexpected response while trying to {action}", status_code=resp.status_code) from exc
