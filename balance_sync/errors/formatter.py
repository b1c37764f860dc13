"""Error formatting utilities.

This module provides:
- BalanceSyncError exception class for application errors
- Error formatting for CLI and log display
"""

from dataclasses import dataclass, field
from typing import ClassVar

from balance_sync.errors.registry import get_error


@dataclass
class BalanceSyncError(Exception):
    """Application error with code, message, and context.

    Subclasses set ``default_code`` so callers can write
    ``NoBalanceFound.from_code(currency="USD")``.

    Attributes:
        code: Error code in E-XXXX format.
        message: Human-readable error message.
        remediation: Action user should take to resolve.
        is_retryable: Whether the next sync pass may succeed without user action.
        details: Additional context dictionary.
    """

    code: str
    message: str
    remediation: str = ""
    is_retryable: bool = False
    details: dict = field(default_factory=dict)

    default_code: ClassVar[str] = "E-4002"

    def __str__(self) -> str:
        """Return string representation of the error."""
        return f"{self.code}: {self.message}"

    @classmethod
    def from_code(cls, code: str | None = None, **kwargs: object) -> "BalanceSyncError":
        """Create error from registry code with context substitution.

        Args:
            code: Error code in E-XXXX format. Defaults to the class default.
            **kwargs: Context values for message template substitution.
                The special key 'details' is stored rather than substituted.

        Returns:
            Instance of ``cls`` with formatted message.
        """
        code = code or cls.default_code
        details = kwargs.pop("details", {})
        if not isinstance(details, dict):
            details = {}
        details = {**kwargs, **details}

        error_def = get_error(code)
        if not error_def:
            return cls(
                code=code,
                message=f"Unknown error: {code}",
                remediation="Check the server log for details.",
                details=details,
            )

        message = error_def.message_template
        try:
            message = message.format(**kwargs)
        except KeyError:
            # Keep template if some placeholders are missing
            pass

        return cls(
            code=error_def.code,
            message=message,
            remediation=error_def.remediation,
            is_retryable=error_def.is_retryable,
            details=details,
        )


def format_error(error: BalanceSyncError, include_remediation: bool = True) -> str:
    """Format error for display to user.

    Args:
        error: The BalanceSyncError to format.
        include_remediation: Whether to include remediation steps.

    Returns:
        Multi-line formatted string suitable for user display.
    """
    lines = [f"{error.code}: {error.message}"]
    if include_remediation and error.remediation:
        lines.append(f"  Action: {error.remediation}")
    return "\n".join(lines)


def format_error_summary(errors: list[BalanceSyncError]) -> str:
    """Format a list of errors for display, combining identical ones.

    Args:
        errors: List of BalanceSyncError objects.

    Returns:
        Summary with a count next to repeated errors.
    """
    if not errors:
        return "No errors."

    counts: dict[str, int] = {}
    first: dict[str, BalanceSyncError] = {}
    for error in errors:
        key = f"{error.code}|{error.message}"
        counts[key] = counts.get(key, 0) + 1
        first.setdefault(key, error)

    if len(first) == 1:
        return format_error(errors[0])

    lines = [f"{len(first)} error type(s) found:\n"]
    for i, (key, error) in enumerate(first.items(), 1):
        suffix = f" (x{counts[key]})" if counts[key] > 1 else ""
        lines.append(f"{i}. {format_error(error)}{suffix}")
        lines.append("")
    return "\n".join(lines)
