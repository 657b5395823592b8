"""Error taxonomy for gateway transports.

Only AuthenticationFailure is terminal across transports. Every other error is
caught at the stage that raised it, turned into a diagnostic line, and used to
decide whether the next candidate or transport should be tried.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

POLICY_DENIED_RE = re.compile(r"blocked by policy|not allowed", re.IGNORECASE)
TOOL_UNAVAILABLE_RE = re.compile(
    r"tool .* unavailable|tool not available|not_found|unknown method|method not found",
    re.IGNORECASE,
)
ORIGIN_NOT_ALLOWED_RE = re.compile(r"origin not allowed", re.IGNORECASE)


class GatewayError(Exception):
    """Base class for every failure raised by the connectivity layer."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        diagnostics: Sequence[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.diagnostics: list[str] = list(diagnostics or [])


class AuthenticationFailure(GatewayError):
    """Credentials were rejected (HTTP 401 or a refused socket handshake)."""


class TransportUnavailable(GatewayError):
    """Connection refused, timed out, DNS failure or closed before authentication."""


class OriginRejected(TransportUnavailable):
    """The socket endpoint refused this client's origin; HTTP may still work."""


class EndpointNotFound(GatewayError):
    """Tool, method or REST path does not exist on this gateway."""


class PolicyDenied(GatewayError):
    """The gateway is reachable but its configuration blocks the call."""


class MalformedResponse(GatewayError):
    """Response was not JSON or did not have a usable shape."""


class GatewayRequestError(GatewayError):
    """Any other explicit failure reported by the gateway."""


class ExhaustedFallback(GatewayError):
    """Every candidate of a fallback chain failed."""

    def __init__(
        self,
        message: str,
        *,
        errors: Sequence[tuple[str, Exception]] | None = None,
        diagnostics: Sequence[str] | None = None,
    ) -> None:
        super().__init__(message, diagnostics=diagnostics)
        self.errors: list[tuple[str, Exception]] = list(errors or [])

    @property
    def last_error(self) -> Exception | None:
        if not self.errors:
            return None
        return self.errors[-1][1]


def is_policy_denial(error: BaseException | str) -> bool:
    """Best-effort check for policy denials; wording is not standardized."""
    if isinstance(error, PolicyDenied):
        return True
    return bool(POLICY_DENIED_RE.search(str(error)))


def classify_error_message(message: str, status: int | None = None) -> GatewayError:
    """Map a free-text gateway error (and optional status) onto the taxonomy."""
    text = message or "request failed"
    if status == 401:
        return AuthenticationFailure(text, status=status)
    if status == 404 or TOOL_UNAVAILABLE_RE.search(text):
        return EndpointNotFound(text, status=status)
    if POLICY_DENIED_RE.search(text):
        return PolicyDenied(text, status=status)
    return GatewayRequestError(text, status=status)


def describe_error(error: BaseException) -> str:
    message = str(error).strip()
    return message or type(error).__name__
