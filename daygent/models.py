"""Shared data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class Workspace:
    """Tenant boundary owning its quota, credentials and agent context."""
    id: str
    name: str = ""
    usage_limit_monthly: float = 0.0
    usage_limit_enabled: bool = False  # limit is ignored unless enabled
    api_provider: Optional[str] = None
    api_key: Optional[str] = None  # encrypted at rest
    agents_content: Optional[str] = None


@dataclass(frozen=True)
class UsageRecord:
    """Append-only ledger row for one completed LLM call."""
    workspace_id: str
    user_id: str
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    estimated_cost: float
    endpoint: str
    total_tokens: int = 0
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    response_time_ms: Optional[int] = None
    cache_hit: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class RateLimitWindow:
    """Counter for one workspace/window-granularity key."""
    key: str
    window_start: float
    count: int = 0
