"""
Data schemas for the Daygent LLM proxy.

Provider-agnostic request/response envelopes exchanged between callers,
the proxy and the provider adapters.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
import time
import uuid


class Provider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class Role(str, Enum):
    """Message roles accepted by the proxy."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class ChatMessage:
    """A single role-tagged message."""
    role: Role
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role.value, "content": self.content}


@dataclass
class LLMRequest:
    """
    Normalized request sent to any provider.

    Built by callers, validated and sanitized by the proxy.
    """
    model: str
    messages: list[ChatMessage]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    def to_dict(self) -> dict:
        payload: dict = {
            "model": self.model,
            "messages": [m.to_dict() for m in self.messages],
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        return payload


@dataclass
class Choice:
    """One completion choice."""
    message: ChatMessage
    finish_reason: str = "stop"

    def to_dict(self) -> dict:
        return {
            "message": {
                "role": self.message.role.value,
                "content": self.message.content,
            },
            "finish_reason": self.finish_reason,
        }


@dataclass
class TokenUsage:
    """Token usage breakdown reported by the provider."""
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int

    def to_dict(self) -> dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class LLMResponse:
    """Normalized response returned by a provider adapter."""
    id: str
    choices: list[Choice]
    model: str
    created: int = field(default_factory=lambda: int(time.time()))
    usage: Optional[TokenUsage] = None

    @property
    def text(self) -> str:
        """Content of the first choice, or an empty string."""
        if not self.choices:
            return ""
        return self.choices[0].message.content

    def to_dict(self) -> dict:
        payload = {
            "id": self.id,
            "choices": [c.to_dict() for c in self.choices],
            "model": self.model,
            "created": self.created,
        }
        if self.usage is not None:
            payload["usage"] = self.usage.to_dict()
        return payload


@dataclass
class ProxyRequest:
    """
    Incoming call to the proxy.

    ``request`` may be an LLMRequest or a raw mapping; the proxy validates
    either form before anything else happens.
    """
    provider: Provider
    workspace_id: str
    request: object
    endpoint: str


@dataclass
class UsageMetadata:
    """Token and cost accounting for one proxied call."""
    input_tokens: int
    output_tokens: int
    total_tokens: int
    estimated_cost: float

    def to_dict(self) -> dict:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
            "estimatedCost": self.estimated_cost,
        }


@dataclass
class ProxyResponse:
    """Result of a successful proxied call."""
    data: LLMResponse
    usage: UsageMetadata
    cached: bool = False
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict:
        return {
            "data": self.data.to_dict(),
            "usage": self.usage.to_dict(),
            "cached": self.cached,
            "requestId": self.request_id,
        }
