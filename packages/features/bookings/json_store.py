from __future__ import annotations

import json
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from starlette.concurrency import run_in_threadpool


# ---------- Storage ----------
TABLES = (
    "bookings",
    "packages",
    "agents",
    "payments",
    "user_activity",
    "user_roles",
    "notifications",
    "profiles",
    "auth_sessions",
)


def now_iso() -> str:
    return datetime.utcnow().isoformat() + "Z"


def _new_id() -> str:
    return uuid.uuid4().hex


def _matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]], exclude: Optional[Dict[str, Any]]) -> bool:
    for k, v in (filters or {}).items():
        if str(row.get(k)) != str(v):
            return False
    for k, v in (exclude or {}).items():
        if str(row.get(k)) == str(v):
            return False
    return True


class JsonStore:
    """Table store kept in one JSON file (local development and tests).

    Every write is a read-modify-write under a process lock, so conditional
    updates behave as compare-and-swap within one server process. File IO
    runs in the threadpool; use the Supabase store for anything shared.
    """

    backend = "json"

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _ensure_file(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.write_text(json.dumps({t: [] for t in TABLES}, indent=2), encoding="utf-8")

    def _load(self) -> Dict[str, List[Dict[str, Any]]]:
        self._ensure_file()
        raw = self.path.read_text(encoding="utf-8")
        data = json.loads(raw) if raw.strip() else {}
        if not isinstance(data, dict):
            data = {}
        for t in TABLES:
            if not isinstance(data.get(t), list):
                data[t] = []
        return data

    def _save(self, data: Dict[str, List[Dict[str, Any]]]) -> None:
        self._ensure_file()
        self.path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")

    # ---------- Queries ----------
    def _select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        exclude: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._load().get(table) or []
        return [dict(r) for r in rows if _matches(r, filters, exclude)]

    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        exclude: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        return await run_in_threadpool(self._select, table, filters, exclude)

    async def first(self, table: str, filters: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        rows = await self.select(table, filters)
        return rows[0] if rows else None

    def _update(
        self,
        table: str,
        values: Dict[str, Any],
        filters: Dict[str, Any],
        exclude: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            data = self._load()
            changed = []
            for row in data[table]:
                if not _matches(row, filters, exclude):
                    continue
                row.update(values)
                changed.append(dict(row))
            if changed:
                self._save(data)
        return changed

    async def update(
        self,
        table: str,
        values: Dict[str, Any],
        filters: Dict[str, Any],
        exclude: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Apply ``values`` to rows matching ``filters`` and not ``exclude``; return changed rows."""
        return await run_in_threadpool(self._update, table, values, filters, exclude)

    def _insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            data = self._load()
            item = dict(row or {})
            if not item.get("id"):
                item["id"] = _new_id()
            if not item.get("created_at"):
                item["created_at"] = now_iso()
            data.setdefault(table, []).append(item)
            self._save(data)
        return dict(item)

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        return await run_in_threadpool(self._insert, table, row)

    # ---------- Auth ----------
    async def user_id_for_token(self, token: str) -> Optional[str]:
        token = (token or "").strip()
        if not token:
            return None
        row = await self.first("auth_sessions", {"access_token": token})
        return str(row.get("user_id")) if row else None

    async def aclose(self) -> None:
        return None
