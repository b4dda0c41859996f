"""
Input validation for the Daygent LLM proxy.

Validates inbound request payloads before they reach any provider, and
sanitizes prompt content against injection patterns.
"""

import math
import re
from collections.abc import Mapping
from typing import Any

from daygent.errors import ValidationError
from daygent.schemas import ChatMessage, LLMRequest, Role


MAX_MODEL_LENGTH = 100
MIN_MESSAGES = 1
MAX_MESSAGES = 100
MAX_CONTENT_LENGTH = 100_000  # characters per message
MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0
MAX_TOKENS_LIMIT = 100_000

_DANGEROUS_PATTERNS = [
    re.compile(r"\{\{.*?\}\}"),  # template injection
    re.compile(r"<script.*?>.*?</script>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),  # inline event handlers
]
_EXCESS_WHITESPACE = re.compile(r"\s{3,}")


def _get(payload: Any, name: str) -> Any:
    if isinstance(payload, Mapping):
        return payload.get(name)
    return getattr(payload, name, None)


def validate_model(model: Any) -> str:
    """
    Validate the model identifier.

    Raises:
        ValidationError: If model is not a non-empty string of at most 100 chars
    """
    if not isinstance(model, str):
        raise ValidationError("model", f"must be a string, got {type(model).__name__}")

    if not model:
        raise ValidationError("model", "cannot be empty")

    if len(model) > MAX_MODEL_LENGTH:
        raise ValidationError(
            "model", f"too long: {len(model)} characters (max: {MAX_MODEL_LENGTH})"
        )

    return model


def validate_message(message: Any, index: int) -> ChatMessage:
    """
    Validate a single message.

    Args:
        message: ChatMessage or mapping with ``role`` and ``content``
        index: Position in the message list, used in error fields

    Raises:
        ValidationError: If role or content is invalid
    """
    role = _get(message, "role")
    content = _get(message, "content")

    try:
        role = Role(role)
    except ValueError:
        raise ValidationError(
            f"messages[{index}].role",
            f"must be one of {[r.value for r in Role]}, got {role!r}",
        )

    if not isinstance(content, str):
        raise ValidationError(
            f"messages[{index}].content",
            f"must be a string, got {type(content).__name__}",
        )

    if len(content) < 1:
        raise ValidationError(f"messages[{index}].content", "cannot be empty")

    if len(content) > MAX_CONTENT_LENGTH:
        raise ValidationError(
            f"messages[{index}].content",
            f"too long: {len(content):,} characters (max: {MAX_CONTENT_LENGTH:,})",
        )

    return ChatMessage(role=role, content=content)


def validate_messages(messages: Any) -> list[ChatMessage]:
    """
    Validate the ordered message list.

    Raises:
        ValidationError: If the list is missing, empty or longer than 100
    """
    if isinstance(messages, (str, bytes, Mapping)) or not isinstance(messages, (list, tuple)):
        raise ValidationError("messages", "must be a list of messages")

    if len(messages) < MIN_MESSAGES:
        raise ValidationError("messages", f"must contain at least {MIN_MESSAGES} message")

    if len(messages) > MAX_MESSAGES:
        raise ValidationError(
            "messages", f"too many: {len(messages)} (max: {MAX_MESSAGES})"
        )

    return [validate_message(m, i) for i, m in enumerate(messages)]


def validate_temperature(temperature: Any) -> None:
    """
    Validate sampling temperature (optional).

    Raises:
        ValidationError: If temperature is outside [0, 2]
    """
    if temperature is None:
        return

    if isinstance(temperature, bool) or not isinstance(temperature, (int, float)):
        raise ValidationError(
            "temperature", f"must be a number, got {type(temperature).__name__}"
        )

    if not math.isfinite(temperature) or not MIN_TEMPERATURE <= temperature <= MAX_TEMPERATURE:
        raise ValidationError(
            "temperature",
            f"must be between {MIN_TEMPERATURE} and {MAX_TEMPERATURE}, got {temperature}",
        )


def validate_max_tokens(max_tokens: Any) -> None:
    """
    Validate max_tokens (optional).

    Raises:
        ValidationError: If not a positive integer of at most 100,000
    """
    if max_tokens is None:
        return

    if isinstance(max_tokens, bool) or not isinstance(max_tokens, int):
        raise ValidationError(
            "max_tokens", f"must be an integer, got {type(max_tokens).__name__}"
        )

    if max_tokens <= 0:
        raise ValidationError("max_tokens", f"must be positive, got {max_tokens}")

    if max_tokens > MAX_TOKENS_LIMIT:
        raise ValidationError(
            "max_tokens", f"too large: {max_tokens:,} (max: {MAX_TOKENS_LIMIT:,})"
        )


def validate_request(payload: Any) -> LLMRequest:
    """
    Validate a request payload.

    Args:
        payload: LLMRequest or mapping in the chat-completions shape

    Returns:
        A fresh LLMRequest built from the validated fields

    Raises:
        ValidationError: If any field is invalid
    """
    if payload is None:
        raise ValidationError("request", "is required")

    model = validate_model(_get(payload, "model"))
    messages = validate_messages(_get(payload, "messages"))
    temperature = _get(payload, "temperature")
    max_tokens = _get(payload, "max_tokens")
    validate_temperature(temperature)
    validate_max_tokens(max_tokens)

    return LLMRequest(
        model=model,
        messages=messages,
        temperature=float(temperature) if temperature is not None else None,
        max_tokens=max_tokens,
    )


def _sanitize_once(content: str) -> str:
    sanitized = content.replace("\x00", "")
    for pattern in _DANGEROUS_PATTERNS:
        sanitized = pattern.sub("", sanitized)
    sanitized = _EXCESS_WHITESPACE.sub("  ", sanitized)
    return sanitized.strip()


def sanitize_prompt_content(content: str) -> str:
    """
    Strip injection patterns from prompt content.

    Removes null bytes, ``{{...}}`` markers, complete ``<script>...</script>``
    pairs, ``javascript:`` and inline ``on*=`` handlers, collapses runs of
    three or more whitespace characters to two spaces and trims the result.
    An unclosed ``<script>`` tag is left as-is.

    Each pass only shortens the text, so the loop stops once a pass changes
    nothing; stripping never leaves behind a pattern a later pass would remove.
    """
    current = content
    while True:
        sanitized = _sanitize_once(current)
        if sanitized == current:
            return sanitized
        current = sanitized


def validate_and_sanitize_request(payload: Any) -> LLMRequest:
    """Validate a payload and sanitize every message's content."""
    request = validate_request(payload)
    request.messages = [
        ChatMessage(role=m.role, content=sanitize_prompt_content(m.content))
        for m in request.messages
    ]
    return request
