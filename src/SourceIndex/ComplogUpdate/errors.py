"""Exception taxonomy for the compiler-log update engine.

Failures are contained at the smallest scope that keeps the service alive:
provider and archive errors end one source's ingestion attempt, generation and
publication errors end one regeneration attempt. :class:`PollCancelled` is the
only signal that unwinds a round, and it is never reported as a failure.
"""

from __future__ import annotations

import threading
from typing import Optional

__all__ = [
    "ComplogUpdateError",
    "ProviderError",
    "ArchiveError",
    "GenerationError",
    "PublicationError",
    "PollCancelled",
    "raise_if_cancelled",
    "get_actionable_error_message",
    "describe_failure",
]


class ComplogUpdateError(Exception):
    """Base class for every error raised by the update engine."""


class ProviderError(ComplogUpdateError):
    """Raised when a CI provider call fails after retries.

    Attributes:
        provider: Provider label (``azure-devops`` or ``github``)
        reason: Normalized reason code (``network``, ``auth``, ``not-found``,
            ``rate-limit``, ``http-error``, ``bad-response``)
        status_code: HTTP status of the final response, if any
        url: Request URL that failed
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        reason: str,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.reason = reason
        self.status_code = status_code
        self.url = url


class ArchiveError(ComplogUpdateError):
    """Raised when an artifact archive is corrupt or contains unsafe member paths."""


class GenerationError(ComplogUpdateError):
    """Raised when the external index generator fails."""

    def __init__(
        self,
        message: str,
        *,
        returncode: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class PublicationError(ComplogUpdateError):
    """Raised when a generated index cannot be made current."""


class PollCancelled(ComplogUpdateError):
    """Raised at a suspension point once the cancellation event is set."""


def raise_if_cancelled(cancel: Optional[threading.Event]) -> None:
    """Raise :class:`PollCancelled` when ``cancel`` has been set."""
    if cancel is not None and cancel.is_set():
        raise PollCancelled("cancellation requested")


def get_actionable_error_message(
    http_status: int | None,
    reason_code: str | None,
) -> tuple[str, str | None]:
    """Generate a user-friendly error message with an actionable suggestion.

    Args:
        http_status: HTTP status code from the failed provider call
        reason_code: Normalized reason code from :class:`ProviderError`

    Returns:
        Tuple of (error_message, suggestion) where suggestion may be None

    Examples:
        >>> msg, suggestion = get_actionable_error_message(401, "auth")
        >>> msg
        'Authentication required (HTTP 401)'
    """
    if reason_code == "rate-limit":
        return (
            f"Rate limit exceeded (HTTP {http_status})" if http_status else "Rate limit exceeded",
            "Lower the poll frequency or use a token with a higher quota. Retry-After is honoured.",
        )
    if http_status == 401:
        return (
            "Authentication required (HTTP 401)",
            "Check the provider token in the providers configuration section",
        )
    if http_status == 403:
        return (
            "Access forbidden (HTTP 403)",
            "The token lacks permission to read builds or artifacts for this source",
        )
    if http_status == 404:
        return (
            "Resource not found (HTTP 404)",
            "Verify the organization/project/definition or owner/repo/workflow names",
        )
    if http_status in (500, 502, 503, 504):
        return (
            f"Provider unavailable (HTTP {http_status})",
            "The provider is failing; the next poll will try again",
        )
    if http_status and http_status >= 400:
        return (f"HTTP error {http_status}", None)

    if reason_code == "network":
        return (
            "Network request failed",
            "Check network connectivity, DNS resolution or proxy configuration",
        )
    if reason_code == "bad-response":
        return ("Provider returned a malformed response", None)

    return ("Unexpected failure", None)


def describe_failure(exc: BaseException) -> str:
    """Render a one-line description of a contained failure for logs and summaries."""
    if isinstance(exc, ProviderError):
        message, suggestion = get_actionable_error_message(exc.status_code, exc.reason)
        text = f"{exc.provider}: {message}"
        if exc.url:
            text += f" [{exc.url}]"
        if suggestion:
            text += f" - {suggestion}"
        return text
    if isinstance(exc, GenerationError):
        detail = (exc.stderr or exc.stdout).strip().splitlines()
        tail = detail[-1] if detail else ""
        return f"{exc} (exit={exc.returncode}){': ' + tail if tail else ''}"
    return f"{type(exc).__name__}: {exc}"
