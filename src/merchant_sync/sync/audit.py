"""Audit trail of sync runs, stored in ``sync_logs``."""

import logging
from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database.models import SyncLog, SyncStatus, SyncType
from ..database.repository import SyncLogRepository
from ..errors import PersistenceError, SyncRunStateError

logger = logging.getLogger(__name__)

COUNT_FIELDS = frozenset({"records_processed", "records_failed", "api_calls_made", "last_processed_id"})


class SyncAuditRecorder:
    """
    Creates and advances sync run records.

    Each call commits on its own, so progress stays visible to other
    sessions (and to cancel requests) while a run is still going.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def start(self, run_type: Union[SyncType, str], merchant_id: Optional[str] = None) -> str:
        """
        Open a run record in the started state.

        Returns:
            The new run id.
        """
        run_type = SyncType(run_type)
        try:
            async with self.session_factory() as session, session.begin():
                log = await SyncLogRepository(session).create(run_type.value, merchant_id)
                return log.id
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to start {run_type.value} sync run: {e}") from e

    async def update(self, run_id: str, **counts) -> None:
        """
        Overwrite progress counters on a running record.

        Args:
            run_id: Run to update.
            **counts: Any of records_processed, records_failed,
                api_calls_made, last_processed_id.

        Raises:
            SyncRunStateError: If the run is unknown or already finished.
        """
        unknown = set(counts) - COUNT_FIELDS
        if unknown:
            raise ValueError(f"Unknown sync log fields: {sorted(unknown)}")

        try:
            async with self.session_factory() as session, session.begin():
                log = await self._get_running(session, run_id, "update")
                for field, value in counts.items():
                    if field == "last_processed_id" and value is not None:
                        value = str(value)
                    setattr(log, field, value)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update sync run {run_id}: {e}") from e

    async def finish(
        self,
        run_id: str,
        status: Union[SyncStatus, str],
        error_text: Optional[str] = None,
        **counts,
    ) -> None:
        """
        Move a run to a terminal state.

        Raises:
            ValueError: If ``status`` is not terminal.
            SyncRunStateError: If the run is unknown or already finished.
        """
        status = SyncStatus(status)
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal sync status")
        unknown = set(counts) - COUNT_FIELDS
        if unknown:
            raise ValueError(f"Unknown sync log fields: {sorted(unknown)}")

        try:
            async with self.session_factory() as session, session.begin():
                log = await self._get_running(session, run_id, "finish")
                for field, value in counts.items():
                    if field == "last_processed_id" and value is not None:
                        value = str(value)
                    setattr(log, field, value)
                log.status = status.value
                log.error_message = error_text
                log.completed_at = datetime.utcnow()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to finish sync run {run_id}: {e}") from e

        logger.info(f"Sync run {run_id} finished with status {status.value}")

    async def request_cancel(self, run_id: str) -> bool:
        """Flag a running sync for cancellation. Returns False if it is not running."""
        async with self.session_factory() as session, session.begin():
            flagged = await SyncLogRepository(session).flag_cancel(run_id)
        if flagged:
            logger.info(f"Cancellation requested for sync run {run_id}")
        return flagged

    async def is_cancel_requested(self, run_id: str) -> bool:
        log = await self.get(run_id)
        return bool(log and log.cancel_requested)

    async def get(self, run_id: str) -> Optional[SyncLog]:
        async with self.session_factory() as session:
            return await SyncLogRepository(session).get_by_id(run_id)

    async def recent(self, limit: int = 20, merchant_id: Optional[str] = None) -> List[SyncLog]:
        async with self.session_factory() as session:
            return await SyncLogRepository(session).list_recent(limit=limit, merchant_id=merchant_id)

    @staticmethod
    async def _get_running(session: AsyncSession, run_id: str, action: str) -> SyncLog:
        log = await SyncLogRepository(session).get_by_id(run_id)
        if log is None:
            raise SyncRunStateError(f"Cannot {action} unknown sync run {run_id}")
        if SyncStatus(log.status).is_terminal:
            raise SyncRunStateError(f"Cannot {action} sync run {run_id}: already {log.status}")
        return log
