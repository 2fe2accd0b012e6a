from __future__ import annotations

import json
from typing import Any, Optional

from vcare_access.db import connect
from vcare_access.util.time import utcnow_iso


def _debug(msg: str) -> None:
    print(f"[audit] {msg}")


def _as_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


class AuditSink:
    """Best-effort audit trail writer. A failed write is logged and never raised."""

    def __init__(self, db_dsn: str):
        self.db_dsn = db_dsn

    def record(
        self,
        user_id: Optional[int],
        action: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        old_value: Any = None,
        new_value: Any = None,
        client_address: Optional[str] = None,
        client_agent: Optional[str] = None,
    ) -> bool:
        try:
            with connect(self.db_dsn) as conn:
                conn.execute(
                    """
                    INSERT INTO audit_logs (
                        user_id, action, entity_type, entity_id, old_value, new_value,
                        ip_address, user_agent, created_at
                    ) VALUES (?,?,?,?,?,?,?,?,?)
                    """,
                    (
                        user_id,
                        action,
                        entity_type or "unknown",
                        None if entity_id is None else str(entity_id),
                        _as_text(old_value),
                        _as_text(new_value),
                        client_address,
                        client_agent,
                        utcnow_iso(),
                    ),
                )
            return True
        except Exception as e:
            _debug(f"Failed to log user action={action} user_id={user_id}: {e}")
            return False
