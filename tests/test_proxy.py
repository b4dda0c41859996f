"""Tests for the LLM proxy service."""

import asyncio
import logging

import pytest

from conftest import FakeAdapter, make_record
from daygent.cache import ResponseCache
from daygent.config import ProxySettings
from daygent.crypto import encrypt_api_key
from daygent.errors import (
    ErrorKind,
    InternalError,
    InvalidCredentialsError,
    NoCredentialsError,
    ProviderError,
    QuotaExceededError,
    RateLimitedError,
    ValidationError,
    WorkspaceNotFoundError,
)
from daygent.models import Workspace
from daygent.proxy import LLMProxyService
from daygent.rate_limiter import RateLimitConfig, RateLimiter
from daygent.schemas import Provider, ProxyRequest

SECRET = "s" * 32
# mid-minute, so a test never straddles a window boundary
FROZEN = 1_700_006_430


def _call(provider="openai", workspace_id="ws_1", model="gpt-3.5-turbo", **request_fields):
    request = {"model": model, "messages": [{"role": "user", "content": "Say hi"}]}
    request.update(request_fields)
    return ProxyRequest(
        provider=provider,
        workspace_id=workspace_id,
        request=request,
        endpoint="/api/generate-prompt",
    )


def _run(proxy, proxy_request, user_id="user_1", **kwargs):
    return asyncio.run(proxy.process_request(proxy_request, user_id, **kwargs))


class TestSuccessfulCall:
    """Test the happy path."""

    def test_end_to_end(self, proxy, storage, adapters):
        """9 input and 12 output tokens on gpt-3.5-turbo cost $0.0000225."""
        response = _run(proxy, _call())

        assert response.data.text == "Hello there"
        assert response.cached is False
        assert response.usage.input_tokens == 9
        assert response.usage.output_tokens == 12
        assert response.usage.total_tokens == 21
        assert response.usage.estimated_cost == pytest.approx(2.25e-5)

        records = storage.list_usage_records(workspace_id="ws_1")
        assert len(records) == 1
        record = records[0]
        assert record.request_id == response.request_id
        assert record.user_id == "user_1"
        assert record.provider == "openai"
        assert record.model == "gpt-3.5-turbo"
        assert record.endpoint == "/api/generate-prompt"
        assert record.estimated_cost == pytest.approx(2.25e-5)
        assert record.response_time_ms >= 0

        assert adapters[Provider.OPENAI].calls[0]["api_key"] == "sk-platform-openai"

    def test_request_is_sanitized_before_dispatch(self, proxy, adapters):
        _run(proxy, _call(messages=[{"role": "user", "content": "hi {{secret}} <script>x</script>"}]))

        sent = adapters[Provider.OPENAI].calls[0]["request"]
        assert sent.messages[0].content == "hi"

    def test_missing_usage_records_zero(self, storage, settings):
        adapters = {Provider.OPENAI: FakeAdapter(usage=None)}
        proxy = LLMProxyService(storage, adapters=adapters, settings=settings)

        response = _run(proxy, _call())

        assert response.usage.total_tokens == 0
        assert response.usage.estimated_cost == 0
        assert len(storage.list_usage_records()) == 1

    def test_to_dict(self, proxy):
        payload = _run(proxy, _call()).to_dict()

        assert payload["data"]["choices"][0]["message"]["content"] == "Hello there"
        assert payload["usage"]["estimatedCost"] == pytest.approx(2.25e-5)
        assert payload["cached"] is False
        assert payload["requestId"]

    def test_cancel_event_passed_to_adapter(self, proxy, adapters):
        async def run():
            cancel_event = asyncio.Event()
            await proxy.process_request(_call(), "user_1", cancel_event=cancel_event)
            return cancel_event

        cancel_event = asyncio.run(run())

        assert adapters[Provider.OPENAI].calls[0]["cancel_event"] is cancel_event


class TestRejections:
    """Rejected calls never reach the provider and write no usage record."""

    def test_validation(self, proxy, storage, adapters):
        with pytest.raises(ValidationError) as exc:
            _run(proxy, _call(messages=[]))

        assert exc.value.kind == ErrorKind.VALIDATION
        assert adapters[Provider.OPENAI].calls == []
        assert storage.list_usage_records() == []

    def test_invalid_provider(self, proxy):
        with pytest.raises(ValidationError) as exc:
            _run(proxy, _call(provider="mistral"))
        assert exc.value.field == "provider"

    def test_empty_workspace(self, proxy):
        with pytest.raises(ValidationError) as exc:
            _run(proxy, _call(workspace_id=""))
        assert exc.value.field == "workspace_id"

    def test_rate_limited(self, storage, adapters, settings):
        proxy = LLMProxyService(
            storage,
            rate_limiter=RateLimiter(RateLimitConfig(minute_limit=2), clock=lambda: FROZEN),
            adapters=adapters,
            settings=settings,
        )
        _run(proxy, _call())
        _run(proxy, _call())

        with pytest.raises(RateLimitedError) as exc:
            _run(proxy, _call())

        assert exc.value.retry_after_seconds > 0
        assert exc.value.window == "minute"
        assert len(adapters[Provider.OPENAI].calls) == 2
        assert len(storage.list_usage_records()) == 2

    def test_quota_exceeded(self, proxy, storage, adapters):
        storage.save_workspace(
            Workspace(id="ws_1", name="Acme", usage_limit_monthly=10.0, usage_limit_enabled=True)
        )
        storage.add_usage_record(make_record("ws_1", 10.0))

        with pytest.raises(QuotaExceededError) as exc:
            _run(proxy, _call())

        assert "10.00" in exc.value.message
        assert exc.value.usage.is_over_limit
        assert adapters[Provider.OPENAI].calls == []
        assert len(storage.list_usage_records()) == 1

    def test_quota_rejection_still_counts_rate(self, storage, adapters, settings):
        """The rate windows are counted before the quota check runs."""
        storage.save_workspace(
            Workspace(id="ws_1", name="Acme", usage_limit_monthly=0.0, usage_limit_enabled=True)
        )
        proxy = LLMProxyService(
            storage,
            rate_limiter=RateLimiter(clock=lambda: FROZEN),
            adapters=adapters,
            settings=settings,
        )

        with pytest.raises(QuotaExceededError):
            _run(proxy, _call())

        status = proxy.rate_limiter.get_status("ws_1")
        assert status.remaining["minute"] == 19

    def test_missing_workspace(self, proxy):
        with pytest.raises(WorkspaceNotFoundError) as exc:
            _run(proxy, _call(workspace_id="ws_missing"))
        assert exc.value.kind == ErrorKind.INTERNAL


class TestCredentials:
    """Test API key resolution."""

    def test_no_credentials(self, storage, adapters):
        proxy = LLMProxyService(storage, adapters=adapters, settings=ProxySettings())

        with pytest.raises(NoCredentialsError) as exc:
            _run(proxy, _call())

        assert exc.value.kind == ErrorKind.NO_CREDENTIALS
        assert adapters[Provider.OPENAI].calls == []
        assert storage.list_usage_records() == []

    def test_workspace_key_for_matching_provider(self, proxy, storage, adapters):
        storage.save_workspace(
            Workspace(id="ws_1", name="Acme", api_provider="openai", api_key="sk-workspace")
        )

        _run(proxy, _call())

        assert adapters[Provider.OPENAI].calls[0]["api_key"] == "sk-workspace"

    def test_workspace_key_ignored_for_other_provider(self, proxy, storage, adapters):
        storage.save_workspace(
            Workspace(id="ws_1", name="Acme", api_provider="openai", api_key="sk-workspace")
        )

        _run(proxy, _call(provider="anthropic", model="claude-3-5-haiku-20241022"))

        assert adapters[Provider.ANTHROPIC].calls[0]["api_key"] == "sk-platform-anthropic"

    def test_app_setting_fallback(self, storage, adapters):
        proxy = LLMProxyService(storage, adapters=adapters, settings=ProxySettings())
        storage.set_app_setting("anthropic_api_key", "sk-from-settings")

        _run(proxy, _call(provider="anthropic", model="claude-3-5-haiku-20241022"))

        assert adapters[Provider.ANTHROPIC].calls[0]["api_key"] == "sk-from-settings"

    def test_encrypted_workspace_key(self, storage, adapters):
        storage.save_workspace(
            Workspace(
                id="ws_1",
                name="Acme",
                api_provider="openai",
                api_key=encrypt_api_key("sk-decrypted", SECRET),
            )
        )
        proxy = LLMProxyService(
            storage, adapters=adapters, settings=ProxySettings(encryption_secret=SECRET)
        )

        _run(proxy, _call())

        assert adapters[Provider.OPENAI].calls[0]["api_key"] == "sk-decrypted"

    def test_undecryptable_key(self, storage, adapters):
        storage.save_workspace(
            Workspace(
                id="ws_1",
                name="Acme",
                api_provider="openai",
                api_key=encrypt_api_key("sk-decrypted", SECRET),
            )
        )
        proxy = LLMProxyService(
            storage, adapters=adapters, settings=ProxySettings(encryption_secret="t" * 32)
        )

        with pytest.raises(NoCredentialsError):
            _run(proxy, _call())
        assert adapters[Provider.OPENAI].calls == []

    def test_plaintext_key_used_with_warning(self, proxy, storage, adapters, caplog):
        storage.save_workspace(
            Workspace(id="ws_1", name="Acme", api_provider="openai", api_key="sk-plain")
        )

        with caplog.at_level(logging.WARNING, logger="daygent.proxy"):
            _run(proxy, _call())

        assert adapters[Provider.OPENAI].calls[0]["api_key"] == "sk-plain"
        assert "does not appear to be encrypted" in caplog.text


class FailingLedger:
    """Wraps a storage and fails every ledger write."""

    def __init__(self, inner):
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def add_usage_record(self, record):
        raise ConnectionError("ledger offline")


class TestFailures:
    """Test provider and internal failures."""

    def test_provider_error_writes_no_record(self, storage, settings):
        error = InvalidCredentialsError("openai", "Invalid openai API key", 401)
        adapters = {Provider.OPENAI: FakeAdapter(error=error)}
        proxy = LLMProxyService(storage, adapters=adapters, settings=settings)

        with pytest.raises(ProviderError) as exc:
            _run(proxy, _call())

        assert exc.value is error
        assert storage.list_usage_records() == []
        assert proxy.get_stats()["counters"]["errors_invalid_credentials"] == 1

    def test_ledger_failure_still_returns(self, storage, adapters, settings, caplog):
        proxy = LLMProxyService(FailingLedger(storage), adapters=adapters, settings=settings)

        with caplog.at_level(logging.ERROR, logger="daygent.proxy"):
            response = _run(proxy, _call())

        assert response.data.text == "Hello there"
        assert "ledger offline" in caplog.text

    def test_unexpected_error_becomes_internal(self, storage, settings):
        adapters = {Provider.OPENAI: FakeAdapter(error=RuntimeError("boom"))}
        proxy = LLMProxyService(storage, adapters=adapters, settings=settings)

        with pytest.raises(InternalError) as exc:
            _run(proxy, _call())

        assert exc.value.kind == ErrorKind.INTERNAL
        assert isinstance(exc.value.__cause__, RuntimeError)
        assert "boom" not in exc.value.message


class TestCacheAndMetrics:
    """Test the optional response cache and metrics counters."""

    def test_cache_hit_skips_provider_and_ledger(self, storage, adapters, settings):
        proxy = LLMProxyService(
            storage, adapters=adapters, settings=settings, cache=ResponseCache()
        )

        first = _run(proxy, _call())
        second = _run(proxy, _call())

        assert first.cached is False
        assert second.cached is True
        assert second.usage.estimated_cost == 0
        assert second.data.text == first.data.text
        assert len(adapters[Provider.OPENAI].calls) == 1
        assert len(storage.list_usage_records()) == 1
        assert proxy.get_stats()["cache"]["hits"] == 1

    def test_cache_is_per_workspace(self, storage, adapters, settings):
        storage.save_workspace(Workspace(id="ws_2", name="Beta"))
        proxy = LLMProxyService(
            storage, adapters=adapters, settings=settings, cache=ResponseCache()
        )

        _run(proxy, _call())
        response = _run(proxy, _call(workspace_id="ws_2"))

        assert response.cached is False
        assert len(adapters[Provider.OPENAI].calls) == 2

    def test_metrics_counters(self, proxy):
        _run(proxy, _call())
        with pytest.raises(ValidationError):
            _run(proxy, _call(messages=[]))

        counters = proxy.get_stats()["counters"]

        assert counters["requests_total"] == 1
        assert counters["requests_by_provider_openai"] == 1
        assert counters["outcomes_total"] == 1
        assert counters["rejections_validation"] == 1
        assert "cache" not in proxy.get_stats()
