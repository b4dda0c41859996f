"""
Daygent - LLM proxy and usage metering for workspaces.

Every provider call goes through one gateway that validates and sanitizes
the request, enforces per-workspace rate limits and monthly quotas, and
records the cost of each completed call.

Proxying a call:
    import asyncio
    from daygent import LLMProxyService, ProxyRequest, Provider, SQLiteStorage

    proxy = LLMProxyService(SQLiteStorage("daygent.db"))
    response = asyncio.run(proxy.process_request(
        ProxyRequest(
            provider=Provider.OPENAI,
            workspace_id="ws_123",
            request={"model": "gpt-4o-mini", "messages": [{"role": "user", "content": "Hi"}]},
            endpoint="/api/generate-prompt",
        ),
        user_id="user_1",
    ))
    print(response.data.text)
    print(response.usage.estimated_cost)

Usage and quotas:
    from daygent import UsageMonitor

    monitor = UsageMonitor(storage)
    monitor.update_workspace_limit("ws_123", 25.0)
    print(monitor.check_usage_alerts("ws_123").message)
"""

from daygent.cache import ResponseCache
from daygent.config import get_pricing, set_pricing, reset_pricing, get_settings, ProxySettings
from daygent.errors import (
    ErrorKind,
    ProxyError,
    ValidationError,
    RateLimitedError,
    QuotaExceededError,
    NoCredentialsError,
    ProviderError,
    InvalidCredentialsError,
    ProviderRateLimitedError,
    MalformedResponseError,
    ProviderTimeoutError,
    ProviderCancelledError,
    InternalError,
    WorkspaceNotFoundError,
)
from daygent.models import Workspace, UsageRecord
from daygent.pricing import calculate_cost
from daygent.providers import ADAPTERS, ProviderAdapter, OpenAIAdapter, AnthropicAdapter
from daygent.proxy import LLMProxyService
from daygent.rate_limiter import RateLimiter, RateLimitConfig
from daygent.schemas import (
    Provider,
    Role,
    ChatMessage,
    LLMRequest,
    LLMResponse,
    ProxyRequest,
    ProxyResponse,
)
from daygent.storage import InMemoryStorage, SQLiteStorage
from daygent.usage_monitor import UsageMonitor
from daygent.validation import validate_request, sanitize_prompt_content


__version__ = "0.1.0"

__all__ = [
    "ResponseCache",
    "get_pricing",
    "set_pricing",
    "reset_pricing",
    "get_settings",
    "ProxySettings",
    "ErrorKind",
    "ProxyError",
    "ValidationError",
    "RateLimitedError",
    "QuotaExceededError",
    "NoCredentialsError",
    "ProviderError",
    "InvalidCredentialsError",
    "ProviderRateLimitedError",
    "MalformedResponseError",
    "ProviderTimeoutError",
    "ProviderCancelledError",
    "InternalError",
    "WorkspaceNotFoundError",
    "Workspace",
    "UsageRecord",
    "calculate_cost",
    "ADAPTERS",
    "ProviderAdapter",
    "OpenAIAdapter",
    "AnthropicAdapter",
    "LLMProxyService",
    "RateLimiter",
    "RateLimitConfig",
    "Provider",
    "Role",
    "ChatMessage",
    "LLMRequest",
    "LLMResponse",
    "ProxyRequest",
    "ProxyResponse",
    "InMemoryStorage",
    "SQLiteStorage",
    "UsageMonitor",
    "validate_request",
    "sanitize_prompt_content",
    "__version__",
]
