"""
Usage Monitor for the Daygent LLM proxy.

Computes a workspace's month-to-date spend from the usage ledger and gates
further calls against its monthly quota.

Features:
- Quota check per workspace (disabled limits short-circuit, no aggregate read)
- Threshold alerts at 80%, 90% and 100% of the monthly limit
- Admin views: all workspaces for a month, limit updates
- Usage reports grouped by endpoint, model, provider or user
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional
import logging

from daygent.errors import WorkspaceNotFoundError
from daygent.models import Workspace
from daygent.storage import ProxyStorage, month_key

logger = logging.getLogger(__name__)

ALERT_THRESHOLDS = (
    (100, "Your workspace has reached its monthly usage limit."),
    (90, "Your workspace has used 90% of its monthly limit."),
    (80, "Your workspace has used 80% of its monthly limit."),
)

REPORT_GROUPS = ("endpoint", "model", "provider", "user")


@dataclass
class WorkspaceUsage:
    """Month-to-date spend of a workspace against its limit."""
    workspace_id: str
    month_year: str
    total_cost: float
    limit: float
    limit_enabled: bool
    percentage_used: float
    is_over_limit: bool

    def to_dict(self) -> dict:
        return {
            "workspaceId": self.workspace_id,
            "monthYear": self.month_year,
            "totalCost": self.total_cost,
            "limit": self.limit,
            "limitEnabled": self.limit_enabled,
            "percentageUsed": self.percentage_used,
            "isOverLimit": self.is_over_limit,
        }


@dataclass
class QuotaCheck:
    """Result of a quota check."""
    allowed: bool
    usage: WorkspaceUsage
    message: Optional[str] = None

    def to_dict(self) -> dict:
        payload = {"allowed": self.allowed, "usage": self.usage.to_dict()}
        if self.message is not None:
            payload["message"] = self.message
        return payload


@dataclass
class UsageAlert:
    """Threshold crossing for notification."""
    should_alert: bool
    percentage: float
    message: Optional[str] = None

    def to_dict(self) -> dict:
        payload = {"shouldAlert": self.should_alert, "percentage": self.percentage}
        if self.message is not None:
            payload["message"] = self.message
        return payload


@dataclass
class UsageReport:
    """Cost attribution for one workspace-month."""
    workspace_id: str
    month_year: str
    group_by: str
    total_cost: float
    total_requests: int
    total_tokens: int
    breakdown: dict[str, float] = field(default_factory=dict)
    requests: dict[str, int] = field(default_factory=dict)
    average_cost_per_request: float = 0.0

    def to_dict(self) -> dict:
        return {
            "workspaceId": self.workspace_id,
            "monthYear": self.month_year,
            "groupBy": self.group_by,
            "totalCost": self.total_cost,
            "totalRequests": self.total_requests,
            "totalTokens": self.total_tokens,
            "breakdown": dict(self.breakdown),
            "requests": dict(self.requests),
            "averageCostPerRequest": self.average_cost_per_request,
        }


def _percentage(total_cost: float, limit: float) -> float:
    if limit <= 0:
        return 100.0
    return total_cost / limit * 100


class UsageMonitor:
    """
    Month-to-date quota enforcement for workspaces.

    Example:
        ```python
        monitor = UsageMonitor(storage)
        check = monitor.check_workspace_quota("ws_123")
        if not check.allowed:
            print(check.message)
        ```
    """

    def __init__(
        self,
        storage: ProxyStorage,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.storage = storage
        self._clock = clock

    def current_month(self) -> str:
        return month_key(self._clock())

    def _load_workspace(self, workspace_id: str) -> Workspace:
        workspace = self.storage.get_workspace(workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(workspace_id)
        return workspace

    def get_workspace_usage_for_month(
        self,
        workspace_id: str,
        month_year: Optional[str] = None,
    ) -> float:
        """
        Total cost of a workspace for a month (current month by default).

        A failing aggregate read is logged and reported as zero usage, so a
        metering outage never blocks legitimate calls.
        """
        target = month_year or self.current_month()
        try:
            return float(self.storage.get_monthly_usage(workspace_id, target) or 0)
        except Exception as e:
            logger.warning(f"Usage aggregate failed for workspace {workspace_id} ({target}): {e}")
            return 0.0

    def _usage_for(self, workspace: Workspace, total_cost: float, month_year: str) -> WorkspaceUsage:
        limit = workspace.usage_limit_monthly
        return WorkspaceUsage(
            workspace_id=workspace.id,
            month_year=month_year,
            total_cost=total_cost,
            limit=limit,
            limit_enabled=workspace.usage_limit_enabled,
            percentage_used=_percentage(total_cost, limit),
            is_over_limit=limit <= 0 or total_cost >= limit,
        )

    def get_workspace_usage(
        self,
        workspace_id: str,
        month_year: Optional[str] = None,
    ) -> WorkspaceUsage:
        """Actual spend for a month, whether or not the limit is enforced."""
        workspace = self._load_workspace(workspace_id)
        target = month_year or self.current_month()
        total_cost = self.get_workspace_usage_for_month(workspace_id, target)
        return self._usage_for(workspace, total_cost, target)

    def check_workspace_quota(self, workspace_id: str) -> QuotaCheck:
        """
        Check whether a workspace is under its monthly usage limit.

        Raises:
            WorkspaceNotFoundError: If the workspace does not exist
        """
        workspace = self._load_workspace(workspace_id)
        month_year = self.current_month()

        if not workspace.usage_limit_enabled:
            return QuotaCheck(
                allowed=True,
                usage=WorkspaceUsage(
                    workspace_id=workspace_id,
                    month_year=month_year,
                    total_cost=0.0,
                    limit=workspace.usage_limit_monthly,
                    limit_enabled=False,
                    percentage_used=0.0,
                    is_over_limit=False,
                ),
            )

        total_cost = self.get_workspace_usage_for_month(workspace_id, month_year)
        usage = self._usage_for(workspace, total_cost, month_year)

        if usage.is_over_limit:
            return QuotaCheck(
                allowed=False,
                usage=usage,
                message=(
                    f"Monthly usage limit of ${workspace.usage_limit_monthly:g} exceeded. "
                    f"Current usage: ${total_cost:.2f}"
                ),
            )

        return QuotaCheck(allowed=True, usage=usage)

    def check_usage_alerts(self, workspace_id: str) -> UsageAlert:
        """Report the highest alert threshold the workspace has crossed."""
        usage = self.check_workspace_quota(workspace_id).usage

        if not usage.limit_enabled:
            return UsageAlert(should_alert=False, percentage=0.0)

        # 100% follows the quota gate; lower thresholds round off float noise.
        percentage = round(usage.percentage_used, 6)
        for threshold, message in ALERT_THRESHOLDS:
            crossed = usage.is_over_limit if threshold == 100 else percentage >= threshold
            if crossed:
                return UsageAlert(should_alert=True, percentage=float(threshold), message=message)

        return UsageAlert(should_alert=False, percentage=usage.percentage_used)

    def get_all_workspaces_usage(self, month_year: Optional[str] = None) -> dict:
        """Usage of every workspace for a month, plus the grand total."""
        target = month_year or self.current_month()
        workspaces = []
        for workspace in self.storage.list_workspaces():
            total_cost = self.get_workspace_usage_for_month(workspace.id, target)
            workspaces.append({
                "id": workspace.id,
                "name": workspace.name,
                "usage": self._usage_for(workspace, total_cost, target),
            })

        return {
            "workspaces": workspaces,
            "total_usage": sum(w["usage"].total_cost for w in workspaces),
        }

    def update_workspace_limit(
        self,
        workspace_id: str,
        limit: float,
        enabled: bool = True,
    ) -> Workspace:
        """Set a workspace's monthly limit (admin only)."""
        if limit < 0:
            raise ValueError(f"limit must be non-negative, got {limit}")
        workspace = self.storage.update_workspace_limit(workspace_id, limit, enabled)
        logger.info(
            f"Workspace {workspace_id} limit set to ${limit:g} "
            f"({'enabled' if enabled else 'disabled'})"
        )
        return workspace

    def get_usage_report(
        self,
        workspace_id: str,
        group_by: str = "endpoint",
        month_year: Optional[str] = None,
    ) -> UsageReport:
        """
        Generate a cost attribution report for a workspace-month.

        Args:
            workspace_id: Workspace identifier
            group_by: "endpoint", "model", "provider" or "user"
            month_year: ``YYYY-MM`` month, current month by default

        Returns:
            UsageReport with per-group cost and request counts
        """
        if group_by not in REPORT_GROUPS:
            raise ValueError(f"group_by must be one of {REPORT_GROUPS}, got {group_by!r}")

        target = month_year or self.current_month()
        records = self.storage.list_usage_records(workspace_id=workspace_id, month=target)

        breakdown: dict[str, float] = defaultdict(float)
        requests: dict[str, int] = defaultdict(int)
        for record in records:
            if group_by == "endpoint":
                key = record.endpoint
            elif group_by == "model":
                key = record.model
            elif group_by == "provider":
                key = record.provider
            else:
                key = record.user_id
            breakdown[key] += record.estimated_cost
            requests[key] += 1

        total_cost = sum(breakdown.values())
        total_requests = len(records)

        return UsageReport(
            workspace_id=workspace_id,
            month_year=target,
            group_by=group_by,
            total_cost=total_cost,
            total_requests=total_requests,
            total_tokens=sum(r.total_tokens for r in records),
            breakdown=dict(sorted(breakdown.items(), key=lambda x: x[1], reverse=True)),
            requests=dict(requests),
            average_cost_per_request=total_cost / total_requests if total_requests else 0.0,
        )
