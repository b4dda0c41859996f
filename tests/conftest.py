"""Shared fixtures: in-memory storage, fake adapters and a wired proxy."""

from datetime import datetime, timezone

import pytest

from daygent.config import ProxySettings, reset_pricing
from daygent.models import UsageRecord, Workspace
from daygent.proxy import LLMProxyService
from daygent.rate_limiter import RateLimitConfig, RateLimiter
from daygent.schemas import (
    ChatMessage,
    Choice,
    LLMResponse,
    Provider,
    Role,
    TokenUsage,
)
from daygent.storage import InMemoryStorage


class FakeAdapter:
    """Stands in for a provider adapter; records every call."""

    def __init__(self, text="Hello there", usage=(9, 12), error=None):
        self.text = text
        self.usage = usage
        self.error = error
        self.calls = []

    async def send(self, request, api_key, *, cancel_event=None):
        self.calls.append({"request": request, "api_key": api_key, "cancel_event": cancel_event})
        if self.error is not None:
            raise self.error
        usage = None
        if self.usage is not None:
            usage = TokenUsage(
                prompt_tokens=self.usage[0],
                completion_tokens=self.usage[1],
                total_tokens=self.usage[0] + self.usage[1],
            )
        return LLMResponse(
            id="chatcmpl-test",
            choices=[Choice(message=ChatMessage(Role.ASSISTANT, self.text))],
            model=request.model,
            usage=usage,
        )


def make_record(workspace_id, cost, created_at=None, **kwargs):
    """Usage record with sensible defaults."""
    fields = {
        "workspace_id": workspace_id,
        "user_id": "user_1",
        "provider": "openai",
        "model": "gpt-4o-mini",
        "input_tokens": 100,
        "output_tokens": 50,
        "estimated_cost": cost,
        "endpoint": "/api/generate-prompt",
        "total_tokens": 150,
    }
    fields.update(kwargs)
    if created_at is not None:
        fields["created_at"] = created_at
    return UsageRecord(**fields)


@pytest.fixture(autouse=True)
def _clean_pricing(monkeypatch):
    monkeypatch.delenv("DAYGENT_PRICING_JSON", raising=False)
    reset_pricing()
    yield
    reset_pricing()


@pytest.fixture
def storage():
    storage = InMemoryStorage()
    storage.save_workspace(Workspace(id="ws_1", name="Acme"))
    return storage


@pytest.fixture
def settings():
    return ProxySettings(openai_api_key="sk-platform-openai", anthropic_api_key="sk-platform-anthropic")


@pytest.fixture
def adapters():
    return {Provider.OPENAI: FakeAdapter(), Provider.ANTHROPIC: FakeAdapter()}


@pytest.fixture
def fixed_now():
    return datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def proxy(storage, adapters, settings):
    return LLMProxyService(
        storage,
        rate_limiter=RateLimiter(RateLimitConfig()),
        adapters=adapters,
        settings=settings,
    )
