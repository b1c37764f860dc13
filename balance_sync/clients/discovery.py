"""Exploratory probing of a partner's API surface.

Used when setting up a new connection and the exact balance endpoint is
unknown. Walks a fixed list of common login/balance paths under a base
URL, reusing any token returned by a login endpoint as a bearer token on
later GET probes. Uses the shorter discovery timeout and paces requests
500ms apart. Nothing is persisted.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any

import httpx

from balance_sync.clients.partner_client import DISCOVERY_TIMEOUT_SECONDS, check_api_url
from balance_sync.errors import ConfigurationError, ExtractionError
from balance_sync.services.normalizer import normalize
from balance_sync.utils.redaction import redact_for_logging, sanitize_error_message

logger = logging.getLogger(__name__)

PROBE_PACING_SECONDS = 0.5


@dataclass(frozen=True)
class ProbeEndpoint:
    path: str
    method: str
    name: str


CANDIDATE_ENDPOINTS: tuple[ProbeEndpoint, ...] = (
    ProbeEndpoint("/api/b2b/v1/auth/login", "POST", "B2B login"),
    ProbeEndpoint("/api/b2b/v1/profile", "GET", "B2B profile"),
    ProbeEndpoint("/api/b2b/v1/balance", "GET", "B2B balance"),
    ProbeEndpoint("/api/b2b/v1/wallet", "GET", "B2B wallet"),
    ProbeEndpoint("/api/b2b/v1/account", "GET", "B2B account"),
    ProbeEndpoint("/api/b2b/v1/account/balance", "GET", "B2B account balance"),
    ProbeEndpoint("/api/auth/login", "POST", "API login"),
    ProbeEndpoint("/auth/login", "POST", "Auth login"),
    ProbeEndpoint("/login", "POST", "Plain login"),
    ProbeEndpoint("/api/balance", "GET", "API balance"),
    ProbeEndpoint("/balance", "GET", "Plain balance"),
    ProbeEndpoint("/api/v1/balance", "GET", "API v1 balance"),
)


@dataclass
class ProbeResult:
    """Outcome of probing one candidate endpoint."""

    endpoint: str
    method: str
    name: str
    status: int
    success: bool
    data: Any = None
    error: str | None = None
    detected_amount: str | None = None
    detected_currency: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result = asdict(self)
        if isinstance(self.data, dict):
            result["data"] = redact_for_logging(self.data)
        return result


def _extract_token(data: Any) -> str | None:
    if not isinstance(data, dict):
        return None
    token = data.get("access_token") or data.get("token")
    return token if isinstance(token, str) and token else None


class ApiDiscovery:
    """Probes candidate endpoints under a partner base URL.

    Args:
        timeout: Per-probe timeout in seconds.
        pacing_seconds: Delay between probes.
        transport: Optional httpx transport for tests.
        sleep: Awaitable sleep function (tests pass a no-op).
    """

    def __init__(
        self,
        timeout: float = DISCOVERY_TIMEOUT_SECONDS,
        pacing_seconds: float = PROBE_PACING_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        endpoints: tuple[ProbeEndpoint, ...] = CANDIDATE_ENDPOINTS,
    ) -> None:
        self._timeout = timeout
        self._pacing = pacing_seconds
        self._transport = transport
        self._sleep = sleep
        self._endpoints = endpoints

    async def explore(
        self,
        base_url: str,
        email: str,
        password: str,
        currency: str | None = None,
    ) -> list[ProbeResult]:
        """Probe every candidate endpoint in order.

        Args:
            base_url: Partner root URL (trailing slash ignored).
            email: Login identity for POST probes.
            password: Login secret for POST probes.
            currency: When given, successful bodies are run through the
                normalizer and any detected amount is reported.

        Returns:
            One ProbeResult per candidate endpoint.

        Raises:
            ConfigurationError: Missing or invalid base URL, or missing login.
        """
        base = check_api_url("discovery", base_url).rstrip("/")
        if not email or not password:
            missing = " and ".join(f for f, v in (("email", email), ("password", password)) if not v)
            raise ConfigurationError.from_code("E-1002", name="discovery", missing=missing)

        results: list[ProbeResult] = []
        token: str | None = None

        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport, follow_redirects=True
        ) as client:
            for index, endpoint in enumerate(self._endpoints):
                if index:
                    await self._sleep(self._pacing)
                result = await self._probe(client, base, endpoint, email, password, token)
                if result.success:
                    token = _extract_token(result.data) or token
                    if currency:
                        self._detect_amount(result, currency)
                results.append(result)

        found = sum(1 for r in results if r.success)
        logger.info("Discovery on %s: %d/%d endpoints answered 2xx", base, found, len(results))
        return results

    async def _probe(
        self,
        client: httpx.AsyncClient,
        base: str,
        endpoint: ProbeEndpoint,
        email: str,
        password: str,
        token: str | None,
    ) -> ProbeResult:
        headers = {"Content-Type": "application/json"}
        if token and endpoint.method == "GET":
            headers["Authorization"] = f"Bearer {token}"
        body = {"email": email, "password": password} if endpoint.method == "POST" else None
        try:
            response = await client.request(
                endpoint.method, f"{base}{endpoint.path}", headers=headers, json=body
            )
        except (httpx.RequestError, httpx.InvalidURL) as e:
            return ProbeResult(
                endpoint=endpoint.path,
                method=endpoint.method,
                name=endpoint.name,
                status=0,
                success=False,
                error=sanitize_error_message(str(e)) or type(e).__name__,
            )

        try:
            data = response.json()
        except ValueError:
            data = response.text[:500]
        return ProbeResult(
            endpoint=endpoint.path,
            method=endpoint.method,
            name=endpoint.name,
            status=response.status_code,
            success=response.is_success,
            data=data,
        )

    @staticmethod
    def _detect_amount(result: ProbeResult, currency: str) -> None:
        try:
            normalized = normalize(result.data, currency)
        except ExtractionError:
            return
        result.detected_amount = str(normalized.amount)
        result.detected_currency = normalized.currency
