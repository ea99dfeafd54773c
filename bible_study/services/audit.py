"""Append-only audit trail for study mutations.

Audit rows are written in their own session after the primary operation has
committed. A failed write is logged and reported as ``False``; it never
raises into, or rolls back, the operation it describes.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from bible_study.database import Database
from bible_study.models import AuditLog

logger = logging.getLogger(__name__)


async def record_audit(
    db: Database,
    actor_id: Optional[str],
    action: str,
    entity_type: str,
    entity_id: Any,
    details: Optional[dict[str, Any]] = None,
    *,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> bool:
    try:
        async with db.session() as session:
            session.add(
                AuditLog(
                    user_id=str(actor_id) if actor_id is not None else None,
                    action=action,
                    entity_type=entity_type,
                    entity_id=str(entity_id) if entity_id is not None else None,
                    details=details,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
            )
            await session.commit()
        return True
    except Exception:  # noqa: BLE001
        logger.exception("Audit write failed: %s %s %s", action, entity_type, entity_id)
        return False


__all__ = ["record_audit"]
