"""
Best-effort audit logging.

Every write happens inside its own SAVEPOINT so a failing audit insert
rolls back only itself. Failures are logged and never raised: an audit
row must not decide the outcome of the operation it describes.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.infrastructure import AuditLog
from app.schemas.backup import ConflictResolutionStrategy, ImportStatistics

logger = logging.getLogger(__name__)

BACKUP_IMPORT = "BACKUP_IMPORT"
BACKUP_IMPORT_FAILED = "BACKUP_IMPORT_FAILED"


class AuditLogger:
    """Writes audit rows attributed to one acting user."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id

    async def log(
        self,
        db: AsyncSession,
        action: str,
        entity_type: str,
        entity_id: str | None = None,
        previous_data: dict[str, Any] | None = None,
        new_data: dict[str, Any] | None = None,
    ) -> bool:
        """Write one audit row. Returns False (after logging) if the write failed."""
        try:
            async with db.begin_nested():
                db.add(AuditLog(
                    user_id=self.user_id,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    previous_data=previous_data,
                    new_data=new_data,
                ))
                await db.flush()
        except Exception:
            logger.exception(
                "Failed to write audit log %s %s:%s", action, entity_type, entity_id
            )
            return False
        return True

    async def log_import_success(
        self,
        db: AsyncSession,
        strategy: ConflictResolutionStrategy,
        statistics: ImportStatistics,
        backup_created: str | None = None,
    ) -> bool:
        """Summary row for a completed import, written inside the import's transaction."""
        return await self.log(
            db,
            action="CREATE",
            entity_type=BACKUP_IMPORT,
            new_data={
                "timestamp": _timestamp(),
                "strategy": strategy.value,
                "statistics": statistics.model_dump(),
                "backup_created": backup_created,
            },
        )

    async def log_import_failure(self, db: AsyncSession, error: str) -> bool:
        """
        Summary row for a failed import.

        Called after the import transaction was rolled back, so this row
        is committed on its own.
        """
        if not await self.log(
            db,
            action="CREATE",
            entity_type=BACKUP_IMPORT_FAILED,
            new_data={"timestamp": _timestamp(), "error": error},
        ):
            return False
        try:
            await db.commit()
        except Exception:
            logger.exception("Failed to commit import failure audit log")
            await db.rollback()
            return False
        return True


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()
