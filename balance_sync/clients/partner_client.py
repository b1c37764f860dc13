"""HTTP client for partner balance endpoints.

POST connections log in and receive their balance in one call with body
``{"email", "password", "type": "login"}``. GET connections send
``Authorization: Bearer <token>`` when a token is configured.

Failures are raised as the ClientError taxonomy:

    timeout            -> PartnerTimeout
    DNS / refused / IO -> NetworkUnreachable
    unparseable URL    -> ConfigurationError
    401, 403           -> Unauthorized
    404                -> PartnerNotFound
    5xx                -> ServerError
    other non-2xx      -> RequestRejected
    2xx, not JSON      -> MalformedResponse
"""

import logging
from typing import Any

import httpx

from balance_sync.db.models import ApiMethod
from balance_sync.errors import (
    ClientError,
    ConfigurationError,
    MalformedResponse,
    NetworkUnreachable,
    PartnerNotFound,
    PartnerTimeout,
    RequestRejected,
    ServerError,
    Unauthorized,
)
from balance_sync.utils.redaction import redact_url, sanitize_error_message

logger = logging.getLogger(__name__)

SYNC_TIMEOUT_SECONDS = 30.0
DISCOVERY_TIMEOUT_SECONDS = 10.0


def classify_status(status_code: int) -> type[ClientError] | None:
    """Map an HTTP status to its ClientError class, or None for 2xx."""
    if 200 <= status_code < 300:
        return None
    if status_code in (401, 403):
        return Unauthorized
    if status_code == 404:
        return PartnerNotFound
    if status_code >= 500:
        return ServerError
    return RequestRejected


def error_for_status(status_code: int) -> ClientError:
    """Build the ClientError for a non-2xx status."""
    error_cls = classify_status(status_code)
    if error_cls is None:
        raise ValueError(f"Status {status_code} is not an error")
    return error_cls.from_code(status_code=status_code)


def check_api_url(name: str, api_url: str | None) -> str:
    """Strip and validate a partner URL, returning the cleaned value.

    Raises:
        ConfigurationError: E-1001 when blank, E-1011 when it does not parse
            as an http(s) URL with a host.
    """
    url = (api_url or "").strip()
    if not url:
        raise ConfigurationError.from_code("E-1001", name=name)
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise ConfigurationError.from_code(
            "E-1011", name=name, reason=sanitize_error_message(str(e))
        ) from e
    if parsed.scheme not in ("http", "https"):
        raise ConfigurationError.from_code(
            "E-1011", name=name, reason=f"scheme must be http or https, not '{parsed.scheme}'"
        )
    if not parsed.host:
        raise ConfigurationError.from_code("E-1011", name=name, reason="no host")
    return url


def build_request(connection) -> tuple[str, dict[str, str], dict[str, Any] | None]:
    """Method, headers and JSON body for a connection's balance request.

    Raises:
        ConfigurationError: Missing or invalid URL, or missing login for POST.
    """
    check_api_url(connection.name, connection.api_url)

    headers = {"Content-Type": "application/json", "Accept": "application/json"}
    if connection.api_method == ApiMethod.POST.value:
        missing = [
            f for f, v in (("email", connection.email), ("password", connection.password))
            if not v
        ]
        if missing:
            raise ConfigurationError.from_code(
                "E-1002", name=connection.name, missing=" and ".join(missing)
            )
        body = {
            "email": connection.email,
            "password": connection.password,
            "type": "login",
        }
        return ApiMethod.POST.value, headers, body

    if connection.auth_token:
        headers["Authorization"] = f"Bearer {connection.auth_token}"
    return ApiMethod.GET.value, headers, None


class PartnerClient:
    """Fetches raw balance payloads from partner APIs.

    The client holds no shared state; each call opens its own
    ``httpx.AsyncClient``.

    Args:
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests inject a fake one).
    """

    def __init__(
        self,
        timeout: float = SYNC_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    @property
    def timeout(self) -> float:
        return self._timeout

    async def fetch_balance(self, connection) -> Any:
        """Request a connection's balance endpoint and return the parsed JSON.

        Args:
            connection: ApiConnection row or ConnectionRecord.

        Returns:
            Parsed JSON body.

        Raises:
            ConfigurationError: Missing or invalid URL, or missing login.
            ClientError: Transport or HTTP failure.
            MalformedResponse: 2xx body that is not JSON.
        """
        method, headers, body = build_request(connection)
        response = await self.request(
            method, connection.api_url.strip(), headers, body, name=connection.name
        )
        return self.parse_json(response)

    async def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any] | None = None,
        name: str = "partner",
    ) -> httpx.Response:
        """Send one request and raise the taxonomy error on failure."""
        async with httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            try:
                response = await client.request(method, url, headers=headers, json=body)
            except httpx.TimeoutException as e:
                logger.warning("Partner timeout after %ss: %s", self._timeout, redact_url(url))
                raise PartnerTimeout.from_code(timeout=self._timeout) from e
            except httpx.RequestError as e:
                reason = sanitize_error_message(str(e)) or type(e).__name__
                logger.warning("Partner unreachable %s: %s", redact_url(url), reason)
                raise NetworkUnreachable.from_code(reason=reason) from e
            except httpx.InvalidURL as e:
                raise ConfigurationError.from_code(
                    "E-1011", name=name, reason=sanitize_error_message(str(e))
                ) from e

        if not response.is_success:
            logger.warning(
                "Partner %s returned %d", redact_url(url), response.status_code
            )
            raise error_for_status(response.status_code)
        return response

    @staticmethod
    def parse_json(response: httpx.Response) -> Any:
        """Decode a response body as JSON.

        Raises:
            MalformedResponse: Body is empty or not JSON.
        """
        try:
            return response.json()
        except ValueError as e:
            content_type = response.headers.get("content-type", "unknown content type")
            raise MalformedResponse.from_code(
                reason=f"body is not JSON ({content_type})"
            ) from e
