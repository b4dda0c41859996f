"""Storage backends for workspaces, the usage ledger and app settings."""

from __future__ import annotations

from dataclasses import asdict, replace
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional, Protocol
import sqlite3

from daygent.errors import WorkspaceNotFoundError
from daygent.models import UsageRecord, Workspace


def month_key(moment: datetime) -> str:
    """``YYYY-MM`` key of a timestamp, in UTC."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m")


class ProxyStorage(Protocol):
    """Persistence contract the proxy depends on."""

    def save_workspace(self, workspace: Workspace) -> Workspace:
        ...

    def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        ...

    def list_workspaces(self) -> List[Workspace]:
        ...

    def update_workspace_limit(self, workspace_id: str, limit: float, enabled: bool) -> Workspace:
        ...

    def get_monthly_usage(self, workspace_id: str, month: str) -> float:
        """Total estimated cost for a workspace in a ``YYYY-MM`` month."""
        ...

    def add_usage_record(self, record: UsageRecord) -> UsageRecord:
        ...

    def list_usage_records(
        self,
        workspace_id: Optional[str] = None,
        month: Optional[str] = None,
    ) -> List[UsageRecord]:
        ...

    def get_app_setting(self, key: str) -> Optional[str]:
        ...

    def set_app_setting(self, key: str, value: str) -> None:
        ...


class InMemoryStorage:
    """In-memory storage backend (default)."""

    def __init__(self):
        self._workspaces: Dict[str, Workspace] = {}
        self._records: List[UsageRecord] = []
        self._settings: Dict[str, str] = {}
        self._lock = Lock()

    def save_workspace(self, workspace: Workspace) -> Workspace:
        with self._lock:
            self._workspaces[workspace.id] = workspace
        return workspace

    def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        return self._workspaces.get(workspace_id)

    def list_workspaces(self) -> List[Workspace]:
        return sorted(self._workspaces.values(), key=lambda w: w.name)

    def update_workspace_limit(self, workspace_id: str, limit: float, enabled: bool) -> Workspace:
        with self._lock:
            workspace = self._workspaces.get(workspace_id)
            if workspace is None:
                raise WorkspaceNotFoundError(workspace_id)
            updated = replace(workspace, usage_limit_monthly=limit, usage_limit_enabled=enabled)
            self._workspaces[workspace_id] = updated
        return updated

    def get_monthly_usage(self, workspace_id: str, month: str) -> float:
        return sum(
            r.estimated_cost
            for r in self._records
            if r.workspace_id == workspace_id and month_key(r.created_at) == month
        )

    def add_usage_record(self, record: UsageRecord) -> UsageRecord:
        with self._lock:
            self._records.append(record)
        return record

    def list_usage_records(
        self,
        workspace_id: Optional[str] = None,
        month: Optional[str] = None,
    ) -> List[UsageRecord]:
        return [
            r for r in self._records
            if (workspace_id is None or r.workspace_id == workspace_id)
            and (month is None or month_key(r.created_at) == month)
        ]

    def get_app_setting(self, key: str) -> Optional[str]:
        return self._settings.get(key)

    def set_app_setting(self, key: str, value: str) -> None:
        self._settings[key] = value


class SQLiteStorage:
    """SQLite-backed storage backend."""

    def __init__(self, db_path: str = "daygent.db"):
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._lock = Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workspaces (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL DEFAULT '',
                usage_limit_monthly REAL NOT NULL DEFAULT 0,
                usage_limit_enabled INTEGER NOT NULL DEFAULT 0,
                api_provider TEXT,
                api_key TEXT,
                agents_content TEXT
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS api_usage (
                request_id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                model TEXT NOT NULL,
                input_tokens INTEGER NOT NULL DEFAULT 0,
                output_tokens INTEGER NOT NULL DEFAULT 0,
                total_tokens INTEGER NOT NULL DEFAULT 0,
                estimated_cost REAL NOT NULL DEFAULT 0,
                endpoint TEXT NOT NULL,
                response_time_ms INTEGER,
                cache_hit INTEGER NOT NULL DEFAULT 0,
                month TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS app_settings (
                setting_key TEXT PRIMARY KEY,
                setting_value TEXT
            )
            """
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_api_usage_workspace_month ON api_usage(workspace_id, month)"
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_api_usage_created ON api_usage(created_at)")
        self._conn.commit()

    def _row_to_workspace(self, row: sqlite3.Row) -> Workspace:
        return Workspace(
            id=row["id"],
            name=row["name"],
            usage_limit_monthly=row["usage_limit_monthly"],
            usage_limit_enabled=bool(row["usage_limit_enabled"]),
            api_provider=row["api_provider"],
            api_key=row["api_key"],
            agents_content=row["agents_content"],
        )

    def save_workspace(self, workspace: Workspace) -> Workspace:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO workspaces (id, name, usage_limit_monthly, usage_limit_enabled,
                                        api_provider, api_key, agents_content)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name=excluded.name,
                    usage_limit_monthly=excluded.usage_limit_monthly,
                    usage_limit_enabled=excluded.usage_limit_enabled,
                    api_provider=excluded.api_provider,
                    api_key=excluded.api_key,
                    agents_content=excluded.agents_content
                """,
                (
                    workspace.id,
                    workspace.name,
                    workspace.usage_limit_monthly,
                    1 if workspace.usage_limit_enabled else 0,
                    workspace.api_provider,
                    workspace.api_key,
                    workspace.agents_content,
                ),
            )
            self._conn.commit()
        return workspace

    def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM workspaces WHERE id = ?",
                (workspace_id,),
            ).fetchone()
        if not row:
            return None
        return self._row_to_workspace(row)

    def list_workspaces(self) -> List[Workspace]:
        with self._lock:
            rows = self._conn.execute("SELECT * FROM workspaces ORDER BY name").fetchall()
        return [self._row_to_workspace(row) for row in rows]

    def update_workspace_limit(self, workspace_id: str, limit: float, enabled: bool) -> Workspace:
        with self._lock:
            cur = self._conn.execute(
                "UPDATE workspaces SET usage_limit_monthly = ?, usage_limit_enabled = ? WHERE id = ?",
                (limit, 1 if enabled else 0, workspace_id),
            )
            self._conn.commit()
        if cur.rowcount == 0:
            raise WorkspaceNotFoundError(workspace_id)
        return self.get_workspace(workspace_id)

    def get_monthly_usage(self, workspace_id: str, month: str) -> float:
        with self._lock:
            row = self._conn.execute(
                "SELECT COALESCE(SUM(estimated_cost), 0) AS total FROM api_usage "
                "WHERE workspace_id = ? AND month = ?",
                (workspace_id, month),
            ).fetchone()
        return float(row["total"])

    def add_usage_record(self, record: UsageRecord) -> UsageRecord:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO api_usage (request_id, workspace_id, user_id, provider, model,
                                       input_tokens, output_tokens, total_tokens, estimated_cost,
                                       endpoint, response_time_ms, cache_hit, month, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.request_id,
                    record.workspace_id,
                    record.user_id,
                    record.provider,
                    record.model,
                    record.input_tokens,
                    record.output_tokens,
                    record.total_tokens,
                    record.estimated_cost,
                    record.endpoint,
                    record.response_time_ms,
                    1 if record.cache_hit else 0,
                    month_key(record.created_at),
                    record.created_at.isoformat(),
                ),
            )
            self._conn.commit()
        return record

    def _row_to_record(self, row: sqlite3.Row) -> UsageRecord:
        created_at = datetime.fromisoformat(row["created_at"])
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return UsageRecord(
            workspace_id=row["workspace_id"],
            user_id=row["user_id"],
            provider=row["provider"],
            model=row["model"],
            input_tokens=row["input_tokens"],
            output_tokens=row["output_tokens"],
            estimated_cost=row["estimated_cost"],
            endpoint=row["endpoint"],
            total_tokens=row["total_tokens"],
            request_id=row["request_id"],
            response_time_ms=row["response_time_ms"],
            cache_hit=bool(row["cache_hit"]),
            created_at=created_at,
        )

    def list_usage_records(
        self,
        workspace_id: Optional[str] = None,
        month: Optional[str] = None,
    ) -> List[UsageRecord]:
        query = "SELECT * FROM api_usage WHERE 1 = 1"
        params: list = []
        if workspace_id is not None:
            query += " AND workspace_id = ?"
            params.append(workspace_id)
        if month is not None:
            query += " AND month = ?"
            params.append(month)
        query += " ORDER BY created_at ASC"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_app_setting(self, key: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute(
                "SELECT setting_value FROM app_settings WHERE setting_key = ?",
                (key,),
            ).fetchone()
        return row["setting_value"] if row else None

    def set_app_setting(self, key: str, value: str) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO app_settings (setting_key, setting_value) VALUES (?, ?)
                ON CONFLICT(setting_key) DO UPDATE SET setting_value=excluded.setting_value
                """,
                (key, value),
            )
            self._conn.commit()

    def export_records(self) -> List[Dict[str, object]]:
        return [asdict(r) for r in self.list_usage_records()]

    def close(self) -> None:
        self._conn.close()
