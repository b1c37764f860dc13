"""Typed domain exceptions for API error mapping.

Routes and the sync scheduler catch these by type: configuration errors
block writes (HTTP 400), ownership conflicts reject manual edits (409),
and client/extraction errors are recorded on the connection during a
sync pass.

Usage:
    # In service layer
    raise NotFoundError.from_code(resource="Balance", identifier=balance_id)

    # In route handler
    except NotFoundError as e:
        return JSONResponse(status_code=404, content=...)
"""

from balance_sync.errors.formatter import BalanceSyncError


class ConfigurationError(BalanceSyncError):
    """Invalid configuration rejected before any write or network call."""

    default_code = "E-1001"


class NotFoundError(BalanceSyncError):
    """Record was not found. Maps to HTTP 404."""

    default_code = "E-4003"


class OwnershipConflictError(BalanceSyncError):
    """Manual edit attempted on an auto-owned balance. Maps to HTTP 409."""

    default_code = "E-6001"


# Partner client taxonomy


class ClientError(BalanceSyncError):
    """Partner could not be reached or refused the request."""

    default_code = "E-3002"


class PartnerTimeout(ClientError):
    default_code = "E-3001"


class NetworkUnreachable(ClientError):
    """DNS failure, refused connection or any other transport error."""

    default_code = "E-3002"


class Unauthorized(ClientError):
    """HTTP 401 or 403."""

    default_code = "E-5001"


class PartnerNotFound(ClientError):
    """HTTP 404."""

    default_code = "E-3003"


class ServerError(ClientError):
    """HTTP 5xx."""

    default_code = "E-3004"


class RequestRejected(ClientError):
    """Any other non-2xx status (400, 405, 429, ...)."""

    default_code = "E-3005"


# Normalization taxonomy


class ExtractionError(BalanceSyncError):
    """Partner was reached but the response could not be turned into a balance."""

    default_code = "E-2001"


class NoBalanceFound(ExtractionError):
    default_code = "E-2001"


class MalformedResponse(ExtractionError):
    default_code = "E-2002"
