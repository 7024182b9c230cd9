"""Tenacity retry strategies for CI provider requests.

Provides:
- Retryability classification for transport failures and HTTP statuses
- A Retry-After aware wait strategy
- A Tenacity controller whose sleeps wake up on cancellation
- ``request_with_retries`` and ``stream_to_tempfile`` wrappers used by the
  provider clients, plus mapping of final responses to :class:`ProviderError`
"""

from __future__ import annotations

import email.utils
import logging
import tempfile
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, BinaryIO, Callable, Mapping, Optional

import httpx
import tenacity
from tenacity import RetryCallState, retry_if_exception, retry_if_result

from .config.models import RetryPolicy
from .errors import PollCancelled, ProviderError, raise_if_cancelled

LOGGER = logging.getLogger(__name__)

_RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


@dataclass
class StreamedDownload:
    """Final response of a streamed download.

    ``file`` holds the body, rewound to offset 0, when the status was 2xx and
    is ``None`` otherwise. The caller owns and closes it.
    """

    status_code: int
    headers: httpx.Headers
    url: str
    file: Optional[BinaryIO] = None


def is_retryable_exception(exception: BaseException) -> bool:
    """Transport-level failures are retried; everything else propagates."""
    return isinstance(exception, _RETRYABLE_EXCEPTIONS)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(int(value))
    except ValueError:
        pass
    try:
        dt = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, (dt - datetime.now(dt.tzinfo)).total_seconds())


class _WaitRetryAfter(tenacity.wait.wait_base):
    """Wait strategy that prefers the Retry-After header over exponential backoff."""

    def __init__(self, fallback: tenacity.wait.wait_base, cap_s: float) -> None:
        self.fallback = fallback
        self.cap_s = cap_s

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is None or outcome.failed:
            return self.fallback(retry_state)

        headers = getattr(outcome.result(), "headers", None)
        retry_after_s = _parse_retry_after(headers.get("Retry-After") if headers else None)
        if retry_after_s is not None and retry_after_s > 0:
            wait_s = min(retry_after_s, self.cap_s)
            LOGGER.debug("Using Retry-After header: %.1fs (capped at %.1fs)", wait_s, self.cap_s)
            return wait_s

        return self.fallback(retry_state)


def _cancellable_sleep(cancel: Optional[threading.Event]) -> Callable[[float], None]:
    if cancel is None:
        return time.sleep

    def _sleep(seconds: float) -> None:
        if cancel.wait(seconds):
            raise PollCancelled("cancelled during retry backoff")

    return _sleep


def _default_before_sleep_hook(retry_state: RetryCallState) -> None:
    attempt_num = retry_state.attempt_number
    next_action = retry_state.next_action
    wait_s = getattr(next_action, "sleep", 0.0) if next_action is not None else 0.0

    outcome = retry_state.outcome
    if outcome is not None and outcome.failed:
        cause = type(outcome.exception()).__name__
    elif outcome is not None:
        cause = f"HTTP {getattr(outcome.result(), 'status_code', '?')}"
    else:
        cause = "unknown"

    LOGGER.warning(
        "retry attempt=%d cause=%s wait_ms=%d elapsed_s=%.1f",
        attempt_num,
        cause,
        int(wait_s * 1000),
        retry_state.seconds_since_start or 0.0,
    )


def build_retrying(
    policy: RetryPolicy,
    cancel: Optional[threading.Event] = None,
    before_sleep_hook: Optional[Callable[[RetryCallState], None]] = None,
) -> tenacity.Retrying:
    """Build a Tenacity Retrying controller.

    Exhausting the attempts on a retryable status returns the final response
    unchanged; exhausting them on an exception re-raises it.

    Args:
        policy: Retry configuration
        cancel: Event whose setting interrupts backoff sleeps with :class:`PollCancelled`
        before_sleep_hook: Optional hook to run before each sleep

    Returns:
        Configured Tenacity Retrying controller
    """
    retry_statuses = frozenset(policy.retry_statuses)

    def result_predicate(value: Any) -> bool:
        return getattr(value, "status_code", None) in retry_statuses

    stop_policy: Any = tenacity.stop_after_attempt(policy.max_attempts)
    if policy.max_total_s > 0:
        stop_policy = stop_policy | tenacity.stop_after_delay(policy.max_total_s)

    fallback_wait = tenacity.wait_random_exponential(
        multiplier=policy.backoff_multiplier_s,
        max=policy.max_backoff_s,
    )

    return tenacity.Retrying(
        retry=retry_if_exception(is_retryable_exception) | retry_if_result(result_predicate),
        stop=stop_policy,
        wait=_WaitRetryAfter(fallback=fallback_wait, cap_s=policy.retry_after_cap_s),
        sleep=_cancellable_sleep(cancel),
        before_sleep=before_sleep_hook or _default_before_sleep_hook,
        retry_error_callback=lambda state: state.outcome.result(),
    )


def raise_for_provider_status(
    provider: str,
    status_code: int,
    headers: Mapping[str, str],
    url: str,
) -> None:
    """Map a non-2xx final status to :class:`ProviderError` with a reason code."""
    if 200 <= status_code < 300:
        return
    if status_code == 429 or (status_code == 403 and headers.get("x-ratelimit-remaining") == "0"):
        reason = "rate-limit"
    elif status_code in (401, 403):
        reason = "auth"
    elif status_code == 404:
        reason = "not-found"
    else:
        reason = "http-error"
    raise ProviderError(
        f"{provider} request failed with HTTP {status_code}",
        provider=provider,
        reason=reason,
        status_code=status_code,
        url=url,
    )


def request_with_retries(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    provider: str,
    policy: RetryPolicy,
    cancel: Optional[threading.Event] = None,
    **kwargs: Any,
) -> httpx.Response:
    """Issue a request with retries and return the successful response.

    Raises:
        ProviderError: On transport failure after retries or a non-2xx final status
        PollCancelled: When cancellation is observed before or between attempts
    """
    raise_if_cancelled(cancel)
    retrying = build_retrying(policy, cancel)
    try:
        response = retrying(client.request, method, url, **kwargs)
    except httpx.HTTPError as exc:
        raise ProviderError(
            f"{provider} request failed: {exc}",
            provider=provider,
            reason="network",
            url=url,
        ) from exc
    raise_for_provider_status(provider, response.status_code, response.headers, str(response.url))
    return response


def decode_json(response: httpx.Response, provider: str) -> Any:
    """Parse a JSON body, mapping malformed payloads to ``bad-response``."""
    try:
        return response.json()
    except ValueError as exc:
        raise ProviderError(
            f"{provider} returned a non-JSON body",
            provider=provider,
            reason="bad-response",
            status_code=response.status_code,
            url=str(response.url),
        ) from exc


def _stream_once(
    client: httpx.Client,
    url: str,
    headers: Optional[Mapping[str, str]],
    auth: Any,
    chunk_bytes: int,
    cancel: Optional[threading.Event],
) -> StreamedDownload:
    with client.stream("GET", url, headers=headers, auth=auth) as response:
        if not 200 <= response.status_code < 300:
            response.read()
            return StreamedDownload(response.status_code, response.headers, str(response.url))

        sink = tempfile.TemporaryFile()
        try:
            for chunk in response.iter_bytes(chunk_bytes):
                raise_if_cancelled(cancel)
                sink.write(chunk)
            sink.flush()
            sink.seek(0)
        except BaseException:
            sink.close()
            raise
        return StreamedDownload(response.status_code, response.headers, str(response.url), sink)


def stream_to_tempfile(
    client: httpx.Client,
    url: str,
    *,
    provider: str,
    policy: RetryPolicy,
    cancel: Optional[threading.Event] = None,
    headers: Optional[Mapping[str, str]] = None,
    auth: Any = None,
    chunk_bytes: int = 1 << 20,
) -> BinaryIO:
    """Download ``url`` into an anonymous temporary file with retries.

    Returns:
        Binary file positioned at offset 0; the caller closes it.

    Raises:
        ProviderError: On transport failure after retries or a non-2xx final status
        PollCancelled: When cancellation is observed mid-download
    """
    raise_if_cancelled(cancel)
    retrying = build_retrying(policy, cancel)
    try:
        result: StreamedDownload = retrying(
            _stream_once, client, url, headers, auth, chunk_bytes, cancel
        )
    except httpx.HTTPError as exc:
        raise ProviderError(
            f"{provider} download failed: {exc}",
            provider=provider,
            reason="network",
            url=url,
        ) from exc
    raise_for_provider_status(provider, result.status_code, result.headers, result.url)
    if result.file is None:
        raise ProviderError(
            f"{provider} download returned no body",
            provider=provider,
            reason="bad-response",
            url=url,
        )
    return result.file


__all__ = [
    "StreamedDownload",
    "is_retryable_exception",
    "build_retrying",
    "raise_for_provider_status",
    "request_with_retries",
    "decode_json",
    "stream_to_tempfile",
]
