"""
HTTP transport to the remote admissions server.

One ``TransportClient`` talks to a single configured base URL. Every
request carries JSON headers and, when one is held, the bearer
credential. The outcome is either the parsed JSON body or one of the
``TransportError`` subclasses; there are no retries at this layer.

The whole exchange (connect, headers and body) is bounded by a single
deadline. The body is streamed so an overrun can close the connection
instead of waiting for the server to finish.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from admission_desk.config import (
    BODY_EXCERPT_CHARS,
    CONNECT_TIMEOUT_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
    USER_AGENT,
)
from admission_desk.errors import (
    ConnectionFailed,
    ConfigurationError,
    Forbidden,
    HttpError,
    MalformedResponse,
    RequestTimeout,
    Unauthorized,
)

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 16 * 1024


def _server_message(text: str) -> Optional[str]:
    try:
        body = json.loads(text)
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("error") or body.get("message")
    return None


class TransportClient:
    """Issue authenticated JSON requests against one base URL."""

    def __init__(
        self,
        base_url: str,
        token_provider: Optional[Callable[[], str]] = None,
        timeout_seconds: float = REQUEST_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        verify: bool = True,
    ) -> None:
        if not base_url:
            raise ConfigurationError("Server URL is not configured")
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._token_provider = token_provider or (lambda: "")
        self._session = session or requests.Session()
        self._verify = verify

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        token = self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _read_body(self, resp: requests.Response, deadline: float) -> str:
        chunks = []
        for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
            if time.monotonic() > deadline:
                resp.close()
                raise RequestTimeout("Timeout: server took too long to respond")
            chunks.append(chunk)
        raw = b"".join(chunks)
        return raw.decode(resp.encoding or "utf-8", errors="replace")

    def request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        """
        Perform one request and classify its outcome.

        Parameters
        ----------
        method : str
            HTTP method.
        path : str
            Path relative to the base URL, starting with ``/``.
        body : Optional[dict]
            JSON body, if any.

        Returns
        -------
        Any
            The decoded JSON body (``{}`` for an empty 2xx body).

        Raises
        ------
        Unauthorized, Forbidden, HttpError, ConnectionFailed, RequestTimeout, MalformedResponse
        """
        url = self.base_url + path
        deadline = time.monotonic() + self.timeout_seconds
        connect_timeout = min(CONNECT_TIMEOUT_SECONDS, self.timeout_seconds)
        logger.debug("%s %s", method, url)
        try:
            resp = self._session.request(
                method,
                url,
                headers=self._headers(),
                data=json.dumps(body) if body is not None else None,
                timeout=(connect_timeout, self.timeout_seconds),
                stream=True,
                verify=self._verify,
            )
        except requests.Timeout as exc:
            raise RequestTimeout("Timeout: server took too long to respond") from exc
        except requests.RequestException as exc:
            raise ConnectionFailed(f"Connection failed: {exc}") from exc

        try:
            text = self._read_body(resp, deadline)
        except requests.Timeout as exc:
            raise RequestTimeout("Timeout: server took too long to respond") from exc
        except requests.RequestException as exc:
            raise ConnectionFailed(f"Connection failed: {exc}") from exc
        finally:
            resp.close()

        status = resp.status_code
        if 200 <= status < 300:
            if not text.strip():
                return {}
            try:
                return json.loads(text)
            except ValueError as exc:
                raise MalformedResponse(f"Parse error: {exc}") from exc
        if status == 401:
            raise Unauthorized(_server_message(text) or "Authentication failed")
        if status == 403:
            raise Forbidden()
        excerpt = text[:BODY_EXCERPT_CHARS]
        detail = _server_message(text) or excerpt
        raise HttpError(status, excerpt, f"HTTP {status}: {detail}" if detail else None)

    def get(self, path: str) -> Any:
        return self.request("GET", path)

    def post(self, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("POST", path, body)
