"""
Provider adapters for the Daygent LLM proxy.

Translate the normalized request into each provider's wire format through
the official async SDKs, and parse the reply back into an LLMResponse.
Adapters are the only components that perform network I/O. Every call is
bounded by a hard timeout and can be aborted through a cancel event.
"""

import asyncio
import inspect
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import anthropic
import openai

from daygent.errors import (
    InvalidCredentialsError,
    MalformedResponseError,
    ProviderCancelledError,
    ProviderError,
    ProviderRateLimitedError,
    ProviderTimeoutError,
)
from daygent.schemas import (
    ChatMessage,
    Choice,
    LLMRequest,
    LLMResponse,
    Provider,
    Role,
    TokenUsage,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
ANTHROPIC_DEFAULT_MAX_TOKENS = 1024
ANTHROPIC_MAX_TEMPERATURE = 1.0

ClientFactory = Callable[[str, float], Any]


def scrub_secret(text: str, secret: Optional[str]) -> str:
    """Remove every occurrence of ``secret`` from ``text``."""
    if not secret:
        return text
    return text.replace(secret, "[REDACTED]")


class ProviderAdapter(ABC):
    """
    Base class for provider adapters.

    Subclasses build the SDK call and normalize its result; the base class
    owns the timeout, cancellation and error translation.
    """

    provider: Provider
    sdk: Any  # openai or anthropic module, for its exception classes

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client_factory: Optional[ClientFactory] = None,
    ):
        """
        Args:
            timeout: Hard timeout in seconds for one upstream call
            client_factory: Builds an SDK client from (api_key, timeout).
                Defaults to the provider's async SDK client.
        """
        self.timeout = timeout
        self._client_factory = client_factory or self.default_client

    @staticmethod
    @abstractmethod
    def default_client(api_key: str, timeout: float) -> Any:
        """Build the SDK client."""

    @abstractmethod
    async def _call(self, client: Any, request: LLMRequest) -> Any:
        """Issue the provider call and return the raw SDK response."""

    @abstractmethod
    def _normalize(self, raw: Any, request: LLMRequest) -> LLMResponse:
        """Convert the raw SDK response to an LLMResponse."""

    async def send(
        self,
        request: LLMRequest,
        api_key: str,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> LLMResponse:
        """
        Send a normalized request upstream.

        Raises:
            ProviderError: Any upstream failure, with the API key scrubbed
                from its message
        """
        name = self.provider.value
        if cancel_event is not None and cancel_event.is_set():
            raise ProviderCancelledError(name, "Request cancelled before dispatch")

        client = self._client_factory(api_key, self.timeout)
        start = time.time()
        try:
            raw = await asyncio.wait_for(
                self._race(self._call(client, request), cancel_event),
                timeout=self.timeout,
            )
        except ProviderError:
            raise
        except asyncio.TimeoutError:
            raise ProviderTimeoutError(
                name, f"{name} request timed out after {self.timeout:g} seconds"
            )
        except Exception as e:
            raise self._translate_error(e, api_key) from None
        finally:
            await self._close(client)

        logger.debug(f"{name} call for {request.model} took {int((time.time() - start) * 1000)}ms")
        return self._normalize(raw, request)

    async def _race(self, call, cancel_event: Optional[asyncio.Event]) -> Any:
        """Await ``call`` unless ``cancel_event`` fires first."""
        if cancel_event is None:
            return await call

        call_task = asyncio.ensure_future(call)
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {call_task, cancel_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (call_task, cancel_task):
                if not task.done():
                    task.cancel()

        if call_task in done:
            return call_task.result()
        raise ProviderCancelledError(self.provider.value, "Request cancelled")

    @staticmethod
    async def _close(client: Any) -> None:
        close = getattr(client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result

    def _translate_error(self, error: Exception, api_key: str) -> ProviderError:
        """Map an SDK exception to the proxy's provider error kinds."""
        name = self.provider.value
        sdk = self.sdk
        detail = scrub_secret(str(error), api_key)
        status = getattr(error, "status_code", None)

        if isinstance(error, sdk.AuthenticationError):
            return InvalidCredentialsError(name, f"Invalid {name} API key", status or 401)

        if isinstance(error, sdk.RateLimitError):
            response = getattr(error, "response", None)
            retry_after = response.headers.get("retry-after") if response is not None else None
            return ProviderRateLimitedError(
                name,
                f"{name} rate limit exceeded: {detail}",
                status or 429,
                retry_after=retry_after,
            )

        if isinstance(error, sdk.APITimeoutError):
            return ProviderTimeoutError(name, f"{name} request timed out")

        if isinstance(error, sdk.APIStatusError):
            return ProviderError(name, f"{name} API error: {detail}", status)

        if isinstance(error, sdk.APIConnectionError):
            return ProviderError(name, f"Could not reach {name}: {detail}")

        return ProviderError(name, f"{name} call failed: {detail}")

    def _malformed(self, message: str) -> MalformedResponseError:
        return MalformedResponseError(self.provider.value, message)


class OpenAIAdapter(ProviderAdapter):
    """Chat Completions adapter."""

    provider = Provider.OPENAI
    sdk = openai

    @staticmethod
    def default_client(api_key: str, timeout: float) -> Any:
        return openai.AsyncOpenAI(api_key=api_key, max_retries=0, timeout=timeout)

    @staticmethod
    def build_params(request: LLMRequest) -> dict:
        params: dict = {
            "model": request.model,
            "messages": [m.to_dict() for m in request.messages],
        }
        if request.temperature is not None:
            params["temperature"] = request.temperature
        if request.max_tokens is not None:
            params["max_tokens"] = request.max_tokens
        return params

    async def _call(self, client: Any, request: LLMRequest) -> Any:
        return await client.chat.completions.create(**self.build_params(request))

    def _normalize(self, raw: Any, request: LLMRequest) -> LLMResponse:
        choices = getattr(raw, "choices", None)
        if not choices:
            raise self._malformed("openai response contained no choices")

        try:
            normalized = [
                Choice(
                    message=ChatMessage(
                        role=Role.ASSISTANT,
                        content=choice.message.content or "",
                    ),
                    finish_reason=choice.finish_reason or "stop",
                )
                for choice in choices
            ]
            usage = None
            if getattr(raw, "usage", None) is not None:
                usage = TokenUsage(
                    prompt_tokens=int(raw.usage.prompt_tokens or 0),
                    completion_tokens=int(raw.usage.completion_tokens or 0),
                    total_tokens=int(raw.usage.total_tokens or 0),
                )
            return LLMResponse(
                id=raw.id,
                choices=normalized,
                model=getattr(raw, "model", None) or request.model,
                created=int(getattr(raw, "created", None) or time.time()),
                usage=usage,
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise self._malformed(f"Could not parse openai response: {e}")


class AnthropicAdapter(ProviderAdapter):
    """Messages API adapter."""

    provider = Provider.ANTHROPIC
    sdk = anthropic

    STOP_REASONS = {
        "end_turn": "stop",
        "stop_sequence": "stop",
        "max_tokens": "length",
        "tool_use": "tool_calls",
    }

    @staticmethod
    def default_client(api_key: str, timeout: float) -> Any:
        return anthropic.AsyncAnthropic(api_key=api_key, max_retries=0, timeout=timeout)

    @staticmethod
    def build_params(request: LLMRequest) -> dict:
        """
        Map to the Messages API shape.

        System messages move to the top-level ``system`` field, ``max_tokens``
        defaults to 1024 and temperature is capped at 1.0.
        """
        system = [m.content for m in request.messages if m.role == Role.SYSTEM]
        params: dict = {
            "model": request.model,
            "messages": [m.to_dict() for m in request.messages if m.role != Role.SYSTEM],
            "max_tokens": request.max_tokens or ANTHROPIC_DEFAULT_MAX_TOKENS,
        }
        if system:
            params["system"] = "\n\n".join(system)
        if request.temperature is not None:
            params["temperature"] = min(request.temperature, ANTHROPIC_MAX_TEMPERATURE)
        return params

    async def _call(self, client: Any, request: LLMRequest) -> Any:
        return await client.messages.create(**self.build_params(request))

    def _normalize(self, raw: Any, request: LLMRequest) -> LLMResponse:
        content = getattr(raw, "content", None)
        if content is None:
            raise self._malformed("anthropic response contained no content")

        try:
            text = "".join(
                block.text for block in content if getattr(block, "type", None) == "text"
            )
            usage = None
            if getattr(raw, "usage", None) is not None:
                input_tokens = int(raw.usage.input_tokens or 0)
                output_tokens = int(raw.usage.output_tokens or 0)
                usage = TokenUsage(
                    prompt_tokens=input_tokens,
                    completion_tokens=output_tokens,
                    total_tokens=input_tokens + output_tokens,
                )
            return LLMResponse(
                id=raw.id,
                choices=[
                    Choice(
                        message=ChatMessage(role=Role.ASSISTANT, content=text),
                        finish_reason=self.STOP_REASONS.get(raw.stop_reason, "stop"),
                    )
                ],
                model=getattr(raw, "model", None) or request.model,
                usage=usage,
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise self._malformed(f"Could not parse anthropic response: {e}")


ADAPTERS: dict[Provider, type[ProviderAdapter]] = {
    Provider.OPENAI: OpenAIAdapter,
    Provider.ANTHROPIC: AnthropicAdapter,
}


def get_adapter(
    provider: Provider,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    client_factory: Optional[ClientFactory] = None,
) -> ProviderAdapter:
    """Instantiate the adapter registered for ``provider``."""
    try:
        adapter_cls = ADAPTERS[Provider(provider)]
    except (KeyError, ValueError):
        raise ValueError(f"Unsupported provider: {provider}")
    return adapter_cls(timeout=timeout, client_factory=client_factory)
