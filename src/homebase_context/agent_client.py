"""HTTP client for the OpenClaw-compatible agent gateway."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import requests
from requests import Response
from requests.exceptions import ConnectionError, RequestException, Timeout


class GatewayClientError(Exception):
    """Raised when the gateway rejects or fails a request."""


@dataclass
class GatewayResponse:
    """Container for gateway responses."""

    message: Dict
    raw: Dict


class GatewayClient:
    """Small wrapper around the gateway's chat completions API."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:18789",
        password: Optional[str] = None,
        agent_id: str = "main",
        session_key: str = "agent:main:infinite-context:summarizer",
        source: str = "homebase-summarizer",
        timeout: int = 60,
        max_retries: int = 3,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.password = password
        self.agent_id = agent_id
        self.session_key = session_key
        self.source = source
        self.timeout = timeout
        self.max_retries = max_retries
        self._session = session or requests.Session()

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
    ) -> GatewayResponse:
        """Call `/v1/chat/completions` and return the first choice."""

        payload: Dict[str, object] = {
            "model": model or f"openclaw:{self.agent_id}",
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens

        data = self._request_with_retry(
            "POST", "/v1/chat/completions", json=payload, headers=self._headers()
        )
        try:
            message = data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GatewayClientError(f"Malformed response: {exc}")

        return GatewayResponse(message=message, raw=data)

    def health_check(self) -> bool:
        """Return True if the gateway responds with HTTP 200."""

        try:
            resp = self._session.get(f"{self.base_url}/health", timeout=5)
            return resp.ok
        except RequestException:
            return False

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "x-openclaw-agent-id": self.agent_id,
            "x-openclaw-session-key": self.session_key,
            "x-openclaw-source": self.source,
        }
        if self.password:
            headers["Authorization"] = f"Bearer {self.password}"
        return headers

    def _request_with_retry(self, method: str, endpoint: str, **kwargs) -> Dict:
        url = f"{self.base_url}{endpoint}"

        for attempt in range(self.max_retries):
            try:
                response: Response = self._session.request(
                    method,
                    url,
                    timeout=self.timeout,
                    **kwargs,
                )
                if response.status_code >= 500:
                    if attempt < self.max_retries - 1:
                        time.sleep(2 ** attempt)
                        continue
                    raise GatewayClientError(f"Gateway error ({response.status_code}): {response.text}")
                if response.status_code >= 400:
                    raise GatewayClientError(f"Request error ({response.status_code}): {response.text}")

                response.raise_for_status()
                return response.json()
            except Timeout:
                if attempt < self.max_retries - 1:
                    time.sleep(2 ** attempt)
                    continue
                raise GatewayClientError("Request timed out")
            except ConnectionError:
                raise GatewayClientError(f"Cannot connect to {self.base_url}")
            except ValueError as exc:
                raise GatewayClientError(f"Invalid JSON from gateway: {exc}")
            except RequestException as exc:
                if attempt < self.max_retries - 1:
                    time.sleep(2 ** attempt)
                    continue
                raise GatewayClientError(f"Request failed: {exc}")

        raise GatewayClientError("Exceeded retry budget")
