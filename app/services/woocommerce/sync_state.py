from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy.orm import Session

from app.models.woo_sync_state import WooSyncState


def sync_key_for(resource: str) -> str:
    return f"initial_{resource}"


class SyncCursorStore:
    """Read and write importer cursors. Writes are flushed, not committed."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, site_id: int, sync_key: str) -> WooSyncState | None:
        return (
            self.db.query(WooSyncState)
            .filter(WooSyncState.site_id == site_id)
            .filter(WooSyncState.sync_key == sync_key)
            .first()
        )

    def load_cursor(self, site_id: int, sync_key: str) -> dict[str, Any]:
        state = self.get(site_id, sync_key)
        return dict(state.cursor or {}) if state else {}

    def save(
        self,
        site_id: int,
        sync_key: str,
        cursor: dict[str, Any],
        *,
        success: bool,
        error: str | None = None,
        report: dict[str, Any] | None = None,
    ) -> WooSyncState:
        now = datetime.now(UTC)
        state = self.get(site_id, sync_key)
        if state is None:
            state = WooSyncState(site_id=site_id, sync_key=sync_key)
            self.db.add(state)
        state.cursor = dict(cursor)
        state.last_run_at = now
        if success:
            state.last_success_at = now
            state.last_error = None
        else:
            state.last_error = (error or "")[:4000]
        if report is not None:
            state.last_report = report
        self.db.flush()
        return state
