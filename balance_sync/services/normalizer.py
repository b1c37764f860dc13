"""Partner response normalization.

Partners return balances in a handful of loosely-typed JSON shapes. Each
shape has a small matcher; matchers are tried in a fixed order and the
first one that yields an amount wins:

1. ``wallets``: list of ``{currency, balance}``; pick the expected currency.
2. ``wallet``: single ``{currency, balance}`` in the expected currency.
3. top-level ``balance``, ``amount`` or ``credit`` (that priority), tagged
   with the connection's configured currency.

If the payload has a ``data`` object the matchers look inside it instead.
A wallet in another currency is simply not a match; no conversion happens.

Example:
    >>> normalize({"data": {"wallet": {"currency": "IQD", "balance": 24723299.95}}}, "IQD")
    NormalizedBalance(amount=Decimal('24723299.95'), currency='IQD', strategy='wallet')
"""

import math
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from balance_sync.errors import MalformedResponse, NoBalanceFound

TOP_LEVEL_AMOUNT_KEYS = ("balance", "amount", "credit")


@dataclass(frozen=True)
class NormalizedBalance:
    """Amount extracted from a partner response."""

    amount: Decimal
    currency: str
    strategy: str


Matcher = Callable[[dict[str, Any], str, str], NormalizedBalance | None]


def to_amount(value: Any) -> Decimal | None:
    """Convert a JSON number to Decimal.

    Booleans, strings and non-finite floats are not amounts.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        # repr round-trips the literal the partner sent
        return Decimal(repr(value))
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    return None


def _wallet_amount(wallet: Any, expected_currency: str) -> Decimal | None:
    if not isinstance(wallet, dict):
        return None
    if wallet.get("currency") != expected_currency:
        return None
    return to_amount(wallet.get("balance"))


def match_wallets(
    body: dict[str, Any], expected_currency: str, configured_currency: str
) -> NormalizedBalance | None:
    """First entry of ``wallets`` in the expected currency with a numeric balance."""
    wallets = body.get("wallets")
    if not isinstance(wallets, list):
        return None
    for wallet in wallets:
        amount = _wallet_amount(wallet, expected_currency)
        if amount is not None:
            return NormalizedBalance(amount, expected_currency, "wallets")
    return None


def match_wallet(
    body: dict[str, Any], expected_currency: str, configured_currency: str
) -> NormalizedBalance | None:
    """Singular ``wallet`` object in the expected currency."""
    amount = _wallet_amount(body.get("wallet"), expected_currency)
    if amount is None:
        return None
    return NormalizedBalance(amount, expected_currency, "wallet")


def match_top_level(
    body: dict[str, Any], expected_currency: str, configured_currency: str
) -> NormalizedBalance | None:
    """Bare numeric ``balance``/``amount``/``credit`` field."""
    for key in TOP_LEVEL_AMOUNT_KEYS:
        if key not in body:
            continue
        amount = to_amount(body[key])
        if amount is not None:
            return NormalizedBalance(amount, configured_currency, key)
    return None


MATCHERS: tuple[Matcher, ...] = (match_wallets, match_wallet, match_top_level)


def resolve_body(payload: Any) -> dict[str, Any]:
    """Return the object the matchers should inspect.

    Raises:
        MalformedResponse: If the payload is not a JSON object.
    """
    if not isinstance(payload, dict):
        raise MalformedResponse.from_code(
            reason=f"expected a JSON object, got {type(payload).__name__}"
        )
    data = payload.get("data")
    if isinstance(data, dict):
        return data
    return payload


def normalize(
    payload: Any,
    expected_currency: str,
    configured_currency: str | None = None,
    matchers: tuple[Matcher, ...] = MATCHERS,
) -> NormalizedBalance:
    """Extract a single balance from a partner response.

    Args:
        payload: Parsed JSON body from the partner.
        expected_currency: Currency the wallet matchers look for.
        configured_currency: Currency tag for bare amount fields.
            Defaults to ``expected_currency``.
        matchers: Ordered shape matchers.

    Returns:
        NormalizedBalance from the first matcher that succeeds.

    Raises:
        MalformedResponse: Payload is not a JSON object.
        NoBalanceFound: No matcher produced an amount.
    """
    body = resolve_body(payload)
    configured_currency = configured_currency or expected_currency
    for matcher in matchers:
        result = matcher(body, expected_currency, configured_currency)
        if result is not None:
            return result
    raise NoBalanceFound.from_code(
        currency=expected_currency,
        details={"keys": sorted(str(k) for k in body.keys())[:20]},
    )


def parse_amount(value: Any) -> Decimal:
    """Parse a user-entered amount (number or numeric string) to Decimal.

    Raises:
        ValueError: If the value is not a finite number.
    """
    if isinstance(value, bool):
        raise ValueError(f"Not an amount: {value!r}")
    try:
        amount = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Not an amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Not an amount: {value!r}")
    return amount
