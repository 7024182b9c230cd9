"""Tests for retry classification, Retry-After handling and streamed downloads."""

from __future__ import annotations

import threading

import httpx
import pytest
import tenacity
from tenacity import RetryCallState

from SourceIndex.ComplogUpdate.config.models import RetryPolicy
from SourceIndex.ComplogUpdate.errors import (
    GenerationError,
    PollCancelled,
    ProviderError,
    describe_failure,
    get_actionable_error_message,
)
from SourceIndex.ComplogUpdate import retries
from SourceIndex.ComplogUpdate.http_session import build_http_client
from SourceIndex.ComplogUpdate.retries import (
    StreamedDownload,
    _WaitRetryAfter,
    _parse_retry_after,
    build_retrying,
    is_retryable_exception,
    raise_for_provider_status,
    stream_to_tempfile,
)


def _state_with(response: httpx.Response) -> RetryCallState:
    state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
    state.set_result(response)
    return state


class TestClassification:
    def test_transport_errors_retryable(self):
        request = httpx.Request("GET", "https://example.test")
        assert is_retryable_exception(httpx.ConnectTimeout("t", request=request))
        assert is_retryable_exception(httpx.ConnectError("c", request=request))
        assert not is_retryable_exception(ValueError("nope"))

    @pytest.mark.parametrize(
        "status,headers,reason",
        [
            (429, {}, "rate-limit"),
            (403, {"x-ratelimit-remaining": "0"}, "rate-limit"),
            (403, {"x-ratelimit-remaining": "12"}, "auth"),
            (401, {}, "auth"),
            (404, {}, "not-found"),
            (500, {}, "http-error"),
        ],
    )
    def test_status_reason(self, status, headers, reason):
        with pytest.raises(ProviderError) as excinfo:
            raise_for_provider_status("github", status, headers, "https://x")
        assert excinfo.value.reason == reason

    def test_success_does_not_raise(self):
        raise_for_provider_status("github", 204, {}, "https://x")


class TestRetryAfter:
    def test_parse_seconds_and_dates(self):
        assert _parse_retry_after("7") == 7.0
        assert _parse_retry_after(None) is None
        assert _parse_retry_after("soon") is None
        assert _parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0

    def test_header_preferred_and_capped(self):
        wait = _WaitRetryAfter(tenacity.wait_fixed(3), cap_s=10)
        assert wait(_state_with(httpx.Response(429, headers={"Retry-After": "4"}))) == 4
        assert wait(_state_with(httpx.Response(429, headers={"Retry-After": "600"}))) == 10

    def test_fallback_without_header(self):
        wait = _WaitRetryAfter(tenacity.wait_fixed(3), cap_s=10)
        assert wait(_state_with(httpx.Response(503))) == 3


class TestBuildRetrying:
    def test_exhaustion_returns_last_response(self, fast_retry):
        calls = []

        def attempt():
            calls.append(1)
            return httpx.Response(503)

        response = build_retrying(fast_retry)(attempt)
        assert response.status_code == 503
        assert len(calls) == fast_retry.max_attempts

    def test_non_retryable_exception_propagates_immediately(self, fast_retry):
        calls = []

        def attempt():
            calls.append(1)
            raise KeyError("x")

        with pytest.raises(KeyError):
            build_retrying(fast_retry)(attempt)
        assert len(calls) == 1

    def test_cancel_interrupts_backoff(self, fast_retry):
        cancel = threading.Event()

        def attempt():
            cancel.set()
            return httpx.Response(503)

        with pytest.raises(PollCancelled):
            build_retrying(fast_retry, cancel)(attempt)


class TestStreamToTempfile:
    def test_body_written_and_rewound(self, fast_retry):
        body = b"x" * 5000
        client = build_http_client(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, content=body))
        )
        with stream_to_tempfile(
            client, "https://dl.test/a.zip", provider="github", policy=fast_retry, chunk_bytes=1024
        ) as fh:
            assert fh.tell() == 0
            assert fh.read() == body

    def test_final_error_status_raises(self, fast_retry):
        client = build_http_client(transport=httpx.MockTransport(lambda r: httpx.Response(410)))
        with pytest.raises(ProviderError) as excinfo:
            stream_to_tempfile(client, "https://dl.test/a.zip", provider="github", policy=fast_retry)
        assert excinfo.value.status_code == 410

    def test_cancelled_before_request(self, fast_retry):
        cancel = threading.Event()
        cancel.set()
        client = build_http_client(
            transport=httpx.MockTransport(lambda r: pytest.fail("no request expected"))
        )
        with pytest.raises(PollCancelled):
            stream_to_tempfile(
                client, "https://dl.test/a.zip", provider="github", policy=fast_retry, cancel=cancel
            )

    def test_success_without_body_rejected(self, fast_retry, monkeypatch):
        def bodiless(client, url, *args):
            return StreamedDownload(200, httpx.Headers(), url, None)

        monkeypatch.setattr(retries, "_stream_once", bodiless)
        client = build_http_client(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with pytest.raises(ProviderError) as excinfo:
            stream_to_tempfile(client, "https://dl.test/a.zip", provider="github", policy=fast_retry)
        assert excinfo.value.reason == "bad-response"

    def test_total_budget_policy_accepted(self):
        policy = RetryPolicy(max_attempts=2, max_total_s=5.0, backoff_multiplier_s=0.0)
        assert build_retrying(policy) is not None


class TestFailureDescriptions:
    def test_provider_failure_has_suggestion(self):
        exc = ProviderError(
            "boom", provider="azure-devops", reason="auth", status_code=401, url="https://dev"
        )
        text = describe_failure(exc)
        assert text.startswith("azure-devops: Authentication required (HTTP 401)")
        assert "[https://dev]" in text

    def test_network_message(self):
        message, suggestion = get_actionable_error_message(None, "network")
        assert message == "Network request failed"
        assert suggestion

    def test_generation_failure_includes_stderr_tail(self, generation_failure):
        assert describe_failure(generation_failure).endswith("(exit=3): boom")

    def test_generic_failure(self):
        assert describe_failure(RuntimeError("bad")) == "RuntimeError: bad"
