"""FastAPI server for the Daygent LLM proxy."""

from __future__ import annotations

import os
from typing import Optional, Dict, Any

from fastapi import FastAPI, HTTPException, Header, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from daygent import (
    ErrorKind,
    LLMProxyService,
    ProxyError,
    ProxyRequest,
    RateLimitedError,
    ResponseCache,
    SQLiteStorage,
    UsageMonitor,
    WorkspaceNotFoundError,
    __version__,
    get_settings,
)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.QUOTA_EXCEEDED: 402,
    ErrorKind.NO_CREDENTIALS: 400,
    ErrorKind.PROVIDER_ERROR: 502,
    ErrorKind.INTERNAL: 500,
}

_proxy: Optional[LLMProxyService] = None


def _get_api_key() -> Optional[str]:
    return os.getenv("DAYGENT_API_KEY")


def _require_api_key(x_api_key: Optional[str] = Header(default=None)) -> None:
    api_key = _get_api_key()
    if api_key and x_api_key != api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_proxy() -> LLMProxyService:
    """Process-wide proxy, so rate-limit windows are shared across requests."""
    global _proxy
    if _proxy is None:
        settings = get_settings()
        _proxy = LLMProxyService(
            SQLiteStorage(db_path=settings.db_path),
            settings=settings,
            cache=ResponseCache() if settings.cache_enabled else None,
        )
    return _proxy


def get_monitor(proxy: LLMProxyService = Depends(get_proxy)) -> UsageMonitor:
    return proxy.usage_monitor


app = FastAPI(title="Daygent LLM Proxy", version=__version__)


@app.exception_handler(ProxyError)
async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    status = STATUS_BY_KIND.get(exc.kind, 500)
    if isinstance(exc, WorkspaceNotFoundError):
        status = 404
    headers = {}
    if isinstance(exc, RateLimitedError):
        headers["Retry-After"] = str(exc.retry_after_seconds)
    return JSONResponse(status_code=status, content={"error": exc.to_dict()}, headers=headers)


class ProxyCallRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider: str
    workspace_id: str = Field(..., alias="workspaceId", min_length=1)
    request: Dict[str, Any]
    endpoint: str = Field(..., min_length=1)


class WorkspaceLimitRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    workspace_id: str = Field(..., alias="workspaceId", min_length=1)
    limit: float = Field(..., ge=0)
    enabled: bool = True


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/llm-proxy", dependencies=[Depends(_require_api_key)])
async def llm_proxy(
    req: ProxyCallRequest,
    x_user_id: Optional[str] = Header(default=None),
    proxy: LLMProxyService = Depends(get_proxy),
) -> JSONResponse:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing x-user-id header")

    response = await proxy.process_request(
        ProxyRequest(
            provider=req.provider,
            workspace_id=req.workspace_id,
            request=req.request,
            endpoint=req.endpoint,
        ),
        x_user_id,
    )
    return JSONResponse(
        content=response.to_dict(),
        headers={
            "X-Request-ID": response.request_id,
            "X-Cache": "HIT" if response.cached else "MISS",
        },
    )


@app.get("/workspaces/{workspace_id}/usage", dependencies=[Depends(_require_api_key)])
def workspace_usage(workspace_id: str, monitor: UsageMonitor = Depends(get_monitor)) -> Dict[str, Any]:
    check = monitor.check_workspace_quota(workspace_id)
    return {"usage": check.usage.to_dict()}


@app.get("/workspaces/{workspace_id}/usage/alerts", dependencies=[Depends(_require_api_key)])
def workspace_alerts(workspace_id: str, monitor: UsageMonitor = Depends(get_monitor)) -> Dict[str, Any]:
    return monitor.check_usage_alerts(workspace_id).to_dict()


@app.get("/workspaces/{workspace_id}/usage/report", dependencies=[Depends(_require_api_key)])
def workspace_report(
    workspace_id: str,
    group_by: str = "endpoint",
    month: Optional[str] = None,
    monitor: UsageMonitor = Depends(get_monitor),
) -> Dict[str, Any]:
    try:
        report = monitor.get_usage_report(workspace_id, group_by=group_by, month_year=month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return report.to_dict()


@app.post("/admin/workspace-limits", dependencies=[Depends(_require_api_key)])
def set_workspace_limit(
    req: WorkspaceLimitRequest,
    monitor: UsageMonitor = Depends(get_monitor),
) -> Dict[str, Any]:
    workspace = monitor.update_workspace_limit(req.workspace_id, req.limit, req.enabled)
    return {
        "success": True,
        "workspace": {
            "id": workspace.id,
            "usageLimitMonthly": workspace.usage_limit_monthly,
            "usageLimitEnabled": workspace.usage_limit_enabled,
        },
    }


@app.get("/admin/usage", dependencies=[Depends(_require_api_key)])
def all_usage(month: Optional[str] = None, monitor: UsageMonitor = Depends(get_monitor)) -> Dict[str, Any]:
    summary = monitor.get_all_workspaces_usage(month)
    return {
        "workspaces": [
            {"id": w["id"], "name": w["name"], "usage": w["usage"].to_dict()}
            for w in summary["workspaces"]
        ],
        "totalUsage": summary["total_usage"],
    }


@app.get("/admin/stats", dependencies=[Depends(_require_api_key)])
def stats(proxy: LLMProxyService = Depends(get_proxy)) -> Dict[str, Any]:
    return proxy.get_stats()
