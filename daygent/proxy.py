"""
LLM Proxy Service.

Every provider call made on behalf of a workspace goes through
``LLMProxyService.process_request``:

1. validate and sanitize the request
2. check and count the workspace's rate-limit windows
3. check the workspace's monthly quota
4. resolve credentials (workspace key, else platform key)
5. dispatch to the provider adapter
6. price the call and append a usage record

A rejection at any step raises a ProxyError and writes no usage record.
"""

import asyncio
import logging
import time
import uuid
from typing import Optional

from daygent.cache import ResponseCache
from daygent.config import ProxySettings, get_settings
from daygent.crypto import (
    EncryptionError,
    decrypt_api_key,
    get_encryption_secret,
    is_encrypted_api_key,
)
from daygent.errors import (
    InternalError,
    NoCredentialsError,
    ProviderError,
    ProxyError,
    QuotaExceededError,
    RateLimitedError,
    ValidationError,
)
from daygent.metrics import MetricsCollector
from daygent.models import UsageRecord, Workspace
from daygent.pricing import calculate_cost
from daygent.providers import ADAPTERS, ProviderAdapter
from daygent.rate_limiter import RateLimitConfig, RateLimiter
from daygent.schemas import (
    LLMRequest,
    LLMResponse,
    Provider,
    ProxyRequest,
    ProxyResponse,
    UsageMetadata,
)
from daygent.storage import ProxyStorage
from daygent.usage_monitor import UsageMonitor
from daygent.validation import validate_and_sanitize_request

logger = logging.getLogger(__name__)


def _parse_provider(value) -> Provider:
    try:
        return Provider(value)
    except ValueError:
        raise ValidationError(
            "provider", f"must be one of {[p.value for p in Provider]}, got {value!r}"
        )


def _usage_from(response: LLMResponse) -> tuple[int, int, int]:
    if response.usage is None:
        return 0, 0, 0
    input_tokens = response.usage.prompt_tokens or 0
    output_tokens = response.usage.completion_tokens or 0
    total_tokens = response.usage.total_tokens or input_tokens + output_tokens
    return input_tokens, output_tokens, total_tokens


class LLMProxyService:
    """
    Gateway for all LLM provider calls.

    Example:
        ```python
        proxy = LLMProxyService(SQLiteStorage("daygent.db"))
        response = await proxy.process_request(
            ProxyRequest(
                provider=Provider.OPENAI,
                workspace_id="ws_123",
                request={"model": "gpt-4o-mini", "messages": [{"role": "user", "content": "Hi"}]},
                endpoint="/api/generate-prompt",
            ),
            user_id="user_1",
        )
        print(response.data.text, response.usage.estimated_cost)
        ```
    """

    def __init__(
        self,
        storage: ProxyStorage,
        rate_limiter: Optional[RateLimiter] = None,
        usage_monitor: Optional[UsageMonitor] = None,
        adapters: Optional[dict[Provider, ProviderAdapter]] = None,
        settings: Optional[ProxySettings] = None,
        cache: Optional[ResponseCache] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.storage = storage
        self.settings = settings or get_settings()
        self.rate_limiter = rate_limiter or RateLimiter(
            RateLimitConfig(
                minute_limit=self.settings.rate_limit_per_minute,
                hour_limit=self.settings.rate_limit_per_hour,
                day_limit=self.settings.rate_limit_per_day,
            )
        )
        self.usage_monitor = usage_monitor or UsageMonitor(storage)
        self.adapters = adapters or {
            provider: adapter_cls(timeout=self.settings.provider_timeout_seconds)
            for provider, adapter_cls in ADAPTERS.items()
        }
        self.cache = cache
        self.metrics = metrics or MetricsCollector(enable_logging=False)

    async def process_request(
        self,
        proxy_request: ProxyRequest,
        user_id: str,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ProxyResponse:
        """
        Run one call through the proxy.

        Args:
            proxy_request: Provider, workspace, request payload and endpoint tag
            user_id: Caller identity, recorded on the usage record
            cancel_event: Setting it aborts the in-flight provider call

        Returns:
            ProxyResponse with the normalized response and usage metadata

        Raises:
            ValidationError, RateLimitedError, QuotaExceededError,
            NoCredentialsError, ProviderError or InternalError
        """
        request_id = str(uuid.uuid4())
        workspace_id = proxy_request.workspace_id
        try:
            return await self._process(proxy_request, user_id, request_id, cancel_event)
        except ProviderError as e:
            self.metrics.record_error(request_id, str(workspace_id), e.reason.value, e.message)
            raise
        except InternalError as e:
            self.metrics.record_error(request_id, str(workspace_id), e.kind.value, e.message)
            raise
        except ProxyError as e:
            self.metrics.record_rejection(request_id, str(workspace_id), e.kind.value, e.message)
            raise
        except Exception as e:
            logger.exception(f"Unexpected error in request {request_id}")
            self.metrics.record_error(request_id, str(workspace_id), "internal", type(e).__name__)
            raise InternalError("Failed to process LLM request") from e

    async def _process(
        self,
        proxy_request: ProxyRequest,
        user_id: str,
        request_id: str,
        cancel_event: Optional[asyncio.Event],
    ) -> ProxyResponse:
        provider = _parse_provider(proxy_request.provider)
        workspace_id = proxy_request.workspace_id
        if not isinstance(workspace_id, str) or not workspace_id:
            raise ValidationError("workspace_id", "cannot be empty")
        request = validate_and_sanitize_request(proxy_request.request)

        logger.info(
            f"Processing request {request_id}: provider={provider.value}, "
            f"workspace={workspace_id}, endpoint={proxy_request.endpoint}, model={request.model}"
        )
        self.metrics.record_request(
            request_id, workspace_id, provider.value, request.model, proxy_request.endpoint
        )

        decision = self.rate_limiter.check_and_increment(workspace_id)
        if not decision.allowed:
            raise RateLimitedError(decision.retry_after_seconds, decision.exceeded_window)

        quota = self.usage_monitor.check_workspace_quota(workspace_id)
        if not quota.allowed:
            raise QuotaExceededError(quota.message, quota.usage)

        if self.cache is not None:
            cached = self.cache.get(provider.value, request, workspace_id)
            if cached is not None:
                logger.info(f"Cache hit for request {request_id}")
                input_tokens, output_tokens, total_tokens = _usage_from(cached)
                self.metrics.record_outcome(
                    request_id, workspace_id, 0.0, 0, input_tokens, output_tokens, cached=True
                )
                return ProxyResponse(
                    data=cached,
                    usage=UsageMetadata(input_tokens, output_tokens, total_tokens, 0.0),
                    cached=True,
                    request_id=request_id,
                )

        workspace = self.storage.get_workspace(workspace_id)
        api_key = self.resolve_api_key(provider, workspace)

        start = time.time()
        response = await self.adapters[provider].send(request, api_key, cancel_event=cancel_event)
        response_time_ms = int((time.time() - start) * 1000)

        input_tokens, output_tokens, total_tokens = _usage_from(response)
        usage = UsageMetadata(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total_tokens,
            estimated_cost=calculate_cost(request.model, input_tokens, output_tokens),
        )

        self._record_usage(
            UsageRecord(
                workspace_id=workspace_id,
                user_id=user_id,
                provider=provider.value,
                model=request.model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                estimated_cost=usage.estimated_cost,
                endpoint=proxy_request.endpoint,
                total_tokens=total_tokens,
                request_id=request_id,
                response_time_ms=response_time_ms,
            )
        )

        if self.cache is not None:
            self.cache.set(provider.value, request, workspace_id, response)

        self.metrics.record_outcome(
            request_id,
            workspace_id,
            usage.estimated_cost,
            response_time_ms,
            input_tokens,
            output_tokens,
        )
        return ProxyResponse(data=response, usage=usage, cached=False, request_id=request_id)

    def _record_usage(self, record: UsageRecord) -> None:
        """Append to the ledger; a failed write never discards the completion."""
        try:
            self.storage.add_usage_record(record)
        except Exception as e:
            logger.error(
                f"Failed to record usage for request {record.request_id} "
                f"(workspace {record.workspace_id}, cost ${record.estimated_cost:.6f}): {e}"
            )

    def resolve_api_key(self, provider: Provider, workspace: Optional[Workspace]) -> str:
        """
        Pick the API key for a call.

        A workspace key applies only when the workspace's provider preference
        matches the requested provider; otherwise the platform key is used,
        from the environment first and then from app settings.

        Raises:
            NoCredentialsError: If no key exists or a stored key cannot be decrypted
        """
        if workspace is not None and workspace.api_key and workspace.api_provider == provider.value:
            logger.debug(f"Using workspace API key for {workspace.id}")
            return self._reveal(workspace.api_key, provider)

        platform_key = self.settings.platform_key(provider.value)
        if platform_key:
            logger.debug(f"Using {provider.value} API key from environment")
            return platform_key

        stored = self.storage.get_app_setting(f"{provider.value}_api_key")
        if stored:
            return self._reveal(stored, provider)

        raise NoCredentialsError(
            f"No API key configured for {provider.value}. Please contact your administrator."
        )

    def _reveal(self, stored: str, provider: Provider) -> str:
        if not is_encrypted_api_key(stored):
            logger.warning(
                f"Stored {provider.value} API key does not appear to be encrypted. "
                "Consider re-saving it."
            )
            return stored

        try:
            secret = get_encryption_secret(self.settings.encryption_secret)
            return decrypt_api_key(stored, secret)
        except EncryptionError as e:
            logger.error(f"Failed to decrypt {provider.value} API key: {e}")
            raise NoCredentialsError(
                f"Failed to decrypt API key for {provider.value}. Please contact your administrator."
            ) from None

    def get_stats(self) -> dict:
        stats = self.metrics.get_stats()
        if self.cache is not None:
            cache_stats = self.cache.get_stats()
            stats["cache"] = {
                "size": cache_stats.size,
                "hits": cache_stats.hits,
                "misses": cache_stats.misses,
                "hit_rate": cache_stats.hit_rate,
            }
        return stats
