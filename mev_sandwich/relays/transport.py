"""JSON-RPC over HTTP transport shared by the relay clients"""

import asyncio
import itertools
import json
import time
from typing import Any, Dict, Optional

import aiohttp
import structlog

from mev_sandwich.errors import RelayConnectionError, RelayRejectedError
from mev_sandwich.monitoring import metrics

logger = structlog.get_logger()

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class RelayTransport:
    """
    Thin aiohttp wrapper for relay JSON-RPC endpoints.

    Network failures, timeouts, 429 and 5xx responses raise RelayConnectionError
    (retryable). JSON-RPC error objects and other HTTP errors raise
    RelayRejectedError (terminal).
    """

    def __init__(self, relay: str, timeout_seconds: float = 10.0):
        """
        Args:
            relay: Relay name used in logs and metrics
            timeout_seconds: Total request timeout
        """
        self.relay = relay
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)
        self._logger = logger.bind(component="relay_transport", relay=relay)

    @property
    def is_connected(self) -> bool:
        return self._session is not None and not self._session.closed

    async def connect(self) -> None:
        """Open the HTTP session"""
        if self.is_connected:
            return
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            headers={"Content-Type": "application/json"},
        )
        self._logger.info("relay_transport_connected")

    async def close(self) -> None:
        """Close the HTTP session"""
        if self._session is not None:
            await self._session.close()
            self._session = None
            self._logger.info("relay_transport_closed")

    def build_payload(self, method: str, params: Any) -> Dict[str, Any]:
        return {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}

    async def call(
        self,
        url: str,
        method: str,
        params: Any,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[str] = None,
    ) -> Any:
        """
        Send one JSON-RPC request and return its ``result``.

        Args:
            url: Endpoint URL
            method: JSON-RPC method
            params: JSON-RPC params
            headers: Extra headers (authentication)
            body: Pre-serialized request body (when a signature covers the exact bytes)

        Raises:
            RelayConnectionError: transient failure
            RelayRejectedError: the relay refused the request
        """
        if body is None:
            body = json.dumps(self.build_payload(method, params))
        data = await self._post(url, method, body, headers or {})
        if not isinstance(data, dict):
            raise RelayRejectedError(f"{self.relay} {method}: malformed response")
        if data.get("error"):
            error = data["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            metrics.relay_errors.labels(relay=self.relay, error_type="rejected").inc()
            self._logger.warning("relay_request_rejected", method=method, error=message)
            raise RelayRejectedError(f"{self.relay} {method}: {message}")
        return data.get("result")

    async def get_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Any:
        """Plain GET returning decoded JSON"""
        session = self._require_session()
        try:
            async with session.get(url, headers=headers or {}) as response:
                if response.status in RETRYABLE_STATUS:
                    raise RelayConnectionError(f"{self.relay} GET {url}: HTTP {response.status}")
                if response.status != 200:
                    raise RelayRejectedError(f"{self.relay} GET {url}: HTTP {response.status}")
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            metrics.relay_errors.labels(relay=self.relay, error_type="connection").inc()
            raise RelayConnectionError(f"{self.relay} GET {url}: {e}", cause=e) from e

    def _require_session(self) -> aiohttp.ClientSession:
        if not self.is_connected:
            raise RelayConnectionError(f"{self.relay} transport is not connected")
        return self._session

    async def _post(self, url: str, method: str, body: str, headers: Dict[str, str]) -> Any:
        session = self._require_session()
        start = time.perf_counter()
        try:
            async with session.post(url, data=body, headers=headers) as response:
                text = await response.text()
                if response.status in RETRYABLE_STATUS:
                    metrics.relay_errors.labels(relay=self.relay, error_type=f"http_{response.status}").inc()
                    raise RelayConnectionError(
                        f"{self.relay} {method}: HTTP {response.status} {text[:200]}"
                    )
                if response.status >= 400:
                    metrics.relay_errors.labels(relay=self.relay, error_type=f"http_{response.status}").inc()
                    raise RelayRejectedError(
                        f"{self.relay} {method}: HTTP {response.status} {text[:200]}"
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            metrics.relay_errors.labels(relay=self.relay, error_type="connection").inc()
            self._logger.warning("relay_request_failed", method=method, error=str(e))
            raise RelayConnectionError(f"{self.relay} {method}: {e}", cause=e) from e
        finally:
            metrics.relay_request_latency.labels(relay=self.relay, method=method).observe(
                time.perf_counter() - start
            )

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            metrics.relay_errors.labels(relay=self.relay, error_type="invalid_json").inc()
            raise RelayRejectedError(f"{self.relay} {method}: invalid JSON response {text[:200]}") from e
