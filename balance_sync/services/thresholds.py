"""Threshold classification for balance risk colors.

Tiers, given limits red < yellow < green:

    amount > green           -> green
    yellow < amount <= green -> yellow
    amount <= red            -> red
    red < amount <= yellow   -> yellow
    no limits                -> gray

Ordering is validated when limits are saved, never at classification time.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from balance_sync.errors import ConfigurationError


class ThresholdTier(str, Enum):
    """Risk color for a balance."""

    red = "red"
    yellow = "yellow"
    green = "green"
    gray = "gray"


@dataclass(frozen=True)
class Limits:
    red: Decimal
    yellow: Decimal
    green: Decimal


def classify(amount: Decimal, limits: Limits | None) -> ThresholdTier:
    """Classify an amount into a risk tier."""
    if limits is None:
        return ThresholdTier.gray
    if amount > limits.green:
        return ThresholdTier.green
    if amount > limits.yellow:
        return ThresholdTier.yellow
    if amount <= limits.red:
        return ThresholdTier.red
    return ThresholdTier.yellow


def validate_limits(
    red: Decimal | None, yellow: Decimal | None, green: Decimal | None
) -> Limits | None:
    """Validate a limits triple before it is persisted.

    Args:
        red: Lower threshold.
        yellow: Middle threshold.
        green: Upper threshold.

    Returns:
        Limits when all three are given, None when all three are absent.

    Raises:
        ConfigurationError: Partial limits, or ordering other than red < yellow < green.
    """
    values = (red, yellow, green)
    if all(v is None for v in values):
        return None
    if any(v is None for v in values):
        raise ConfigurationError.from_code("E-1008")
    if not (red < yellow < green):
        raise ConfigurationError.from_code(
            "E-1004", red=red, yellow=yellow, green=green
        )
    return Limits(red=red, yellow=yellow, green=green)


def limits_for(balance) -> Limits | None:
    """Limits stored on a Balance row, or None when unset."""
    if not balance.has_limits:
        return None
    return Limits(
        red=balance.limit_red,
        yellow=balance.limit_yellow,
        green=balance.limit_green,
    )


def classify_balance(balance) -> ThresholdTier:
    """Classify a Balance row using its own limits."""
    return classify(Decimal(balance.amount), limits_for(balance))
