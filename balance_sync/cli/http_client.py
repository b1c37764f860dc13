"""HTTP client for a running balance sync server.

Thin wrapper around httpx used by the CLI commands that act on the live
scheduler. A pass started here takes the server's one-pass lock, and a
config change reschedules the server's timer straight away. Error
envelopes are raised as BalanceSyncError, never typer.Exit, so the
client is usable outside the CLI too.
"""

import logging

import httpx

from balance_sync.errors import BalanceSyncError
from balance_sync.services.history_service import Actor

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:8000"


class ServerUnavailable(Exception):
    """No balance sync server answered at the base URL."""

    def __init__(self, base_url: str, reason: str):
        super().__init__(f"No balance sync server at {base_url}: {reason}")
        self.base_url = base_url
        self.reason = reason


class HttpClient:
    """Talks to the balance sync server over its REST API.

    Args:
        base_url: Server base URL.
        actor: Sent as X-Actor-Email / X-Actor-Name so config changes are
            attributed to the operator.
        timeout: Timeout for quick calls. A sync pass waits without a
            read timeout since its length grows with the connection count.
        transport: Optional httpx transport (tests inject a fake one).
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        actor: Actor | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._actor = actor
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def __aenter__(self):
        headers = {}
        if self._actor is not None:
            headers["X-Actor-Email"] = self._actor.email
            headers["X-Actor-Name"] = self._actor.name
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._client:
            await self._client.aclose()

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.ConnectError as e:
            raise ServerUnavailable(self._base_url, str(e) or type(e).__name__) from e

    def _raise_for_status(self, resp: httpx.Response) -> None:
        """Raise the server's error envelope as a BalanceSyncError.

        Raises:
            BalanceSyncError: On non-2xx status codes.
        """
        if resp.status_code < 400:
            return
        try:
            envelope = resp.json()["error"]
            error = BalanceSyncError(
                code=envelope["code"],
                message=envelope["message"],
                remediation=envelope.get("remediation") or "",
                details=envelope.get("details") or {},
            )
        except (ValueError, KeyError, TypeError):
            error = BalanceSyncError.from_code(
                "E-4002", error=f"server returned {resp.status_code}"
            )
        raise error

    async def run_sync(self) -> dict:
        """Run a pass via POST /api/v1/sync/run and wait for it.

        Returns:
            The pass result. A pass already running on the server comes
            back as a result with ``skipped`` set.
        """
        resp = await self._send(
            "POST", "/api/v1/sync/run", timeout=httpx.Timeout(self._timeout, read=None)
        )
        if resp.status_code == 409:
            return resp.json()
        self._raise_for_status(resp)
        return resp.json()

    async def get_sync_config(self) -> dict:
        """Persisted config via GET /api/v1/sync/config."""
        resp = await self._send("GET", "/api/v1/sync/config")
        self._raise_for_status(resp)
        return resp.json()

    async def update_sync_config(
        self,
        enabled: bool | None = None,
        frequency_seconds: int | None = None,
    ) -> dict:
        """Change config via PUT /api/v1/sync/config; the server reschedules.

        Returns:
            The scheduler's applied ``enabled``, ``frequency_seconds`` and
            ``running`` state.
        """
        body = {}
        if enabled is not None:
            body["enabled"] = enabled
        if frequency_seconds is not None:
            body["frequency_seconds"] = frequency_seconds
        resp = await self._send("PUT", "/api/v1/sync/config", json=body)
        self._raise_for_status(resp)
        return resp.json()
