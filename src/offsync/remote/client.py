"""
Async HTTP client for the remote records endpoint.

send() never raises for transport or HTTP failures. Every result is reduced
to one of three outcomes, the only thing the sync coordinator looks at:

    Accepted(remote_id)   remote durably stored the record
    Rejected(reason)      remote refused the content; permanent
    Unavailable(reason)   exchange did not complete; transient

Classification:
    2xx with an id          -> Accepted
    408, 429                -> Unavailable (the remote asked us to come back)
    other 4xx               -> Rejected
    5xx                     -> Unavailable
    timeout                 -> Unavailable("Request timeout")
    DNS/TLS/connect errors  -> Unavailable("Network error: ...")
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

import httpx

from offsync.models.record import Record

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
TRANSIENT_CLIENT_STATUS_CODES = {408, 429}


# ── Outcomes ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Accepted:
    remote_id: int


@dataclass(frozen=True)
class Rejected:
    reason: str


@dataclass(frozen=True)
class Unavailable:
    reason: str


Outcome = Union[Accepted, Rejected, Unavailable]


# ── Client ────────────────────────────────────────────────────────────────────

class RemoteClient:
    """Thin async wrapper over httpx for the records endpoint."""

    def __init__(
        self,
        base_url: str,
        records_path: str = "/posts",
        user_id: int = 1,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Remote service root, e.g. https://jsonplaceholder.typicode.com
            records_path: Path records are POSTed to.
            user_id: Fixed userId field the remote schema requires.
            timeout: Per-request timeout in seconds; expiry counts as Unavailable.
            transport: Optional httpx transport (tests pass httpx.MockTransport).
        """
        self.base_url = base_url.rstrip("/")
        self.records_path = records_path
        self.user_id = user_id
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> RemoteClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def send(self, record: Record) -> Outcome:
        """POST one record and classify the result."""
        payload = {"title": record.title, "body": record.body, "userId": self.user_id}
        try:
            response = await self.client.post(
                self.records_path,
                json=payload,
                headers={"Idempotency-Key": record.id},
            )
        except httpx.TimeoutException:
            logger.warning("Send %s timed out after %.1fs", record.id, self.timeout)
            return Unavailable("Request timeout")
        except httpx.HTTPError as exc:
            logger.warning("Send %s failed: %s", record.id, exc)
            return Unavailable(f"Network error: {str(exc) or type(exc).__name__}")

        return self._classify(record, response)

    async def is_reachable(self) -> bool:
        """True if the remote answers at all, whatever the status code."""
        try:
            await self.client.get("/")
        except httpx.HTTPError:
            return False
        return True

    def _classify(self, record: Record, response: httpx.Response) -> Outcome:
        status = response.status_code

        if 200 <= status < 300:
            remote_id = _extract_id(response)
            if remote_id is None:
                logger.warning("Send %s: %d without a usable id", record.id, status)
                return Unavailable("Invalid response from remote")
            logger.info("Record %s accepted as remote id %s", record.id, remote_id)
            return Accepted(remote_id)

        if status in TRANSIENT_CLIENT_STATUS_CODES:
            logger.warning("Send %s throttled (%d)", record.id, status)
            return Unavailable(f"Client error: {status}")

        if 400 <= status < 500:
            reason = _extract_reason(response) or f"Client error: {status}"
            logger.warning("Record %s rejected (%d): %s", record.id, status, reason)
            return Rejected(reason)

        logger.warning("Send %s: server error %d", record.id, status)
        return Unavailable(f"Server error: {status}")


def _extract_id(response: httpx.Response) -> Optional[int]:
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    try:
        return int(body["id"])
    except (KeyError, TypeError, ValueError):
        return None


def _extract_reason(response: httpx.Response) -> Optional[str]:
    """Pull a human-readable refusal message out of an error body, if any."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    for key in ("message", "detail", "error"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return None
