"""
Background maintenance for the stores.

Runs relation TTL cleanup, tag cleanup and packet index rebuilds on a
periodic ``asyncio`` task. Each sweep takes the store locks per removal,
so request handling is never blocked for a whole sweep.
"""

import asyncio

from pydantic import BaseModel

from hinata.config import MaintenanceConfig
from hinata.core.packet_store import PacketStore
from hinata.core.relation_store import RelationStore
from hinata.core.tag_store import TagStore
from hinata.utils.logger import get_logger

logger = get_logger(__name__)


class MaintenanceReport(BaseModel):
    """Outcome of one maintenance run."""

    relations_removed: int = 0
    tags_removed: int = 0
    packets_reindexed: int = 0


class MaintenanceWorker:
    """Periodic cleanup and index rebuild."""

    def __init__(
        self,
        packet_store: PacketStore,
        relation_store: RelationStore,
        tag_store: TagStore,
        config: MaintenanceConfig | None = None,
    ):
        self.packet_store = packet_store
        self.relation_store = relation_store
        self.tag_store = tag_store
        self.config = config or MaintenanceConfig()
        self._worker_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    async def run_once(self) -> MaintenanceReport:
        """Run every maintenance step once."""
        report = MaintenanceReport(
            relations_removed=await self.relation_store.cleanup(),
            tags_removed=await self.tag_store.cleanup(),
        )
        if self.config.rebuild_indexes:
            index_report = await self.packet_store.rebuild_index()
            report.packets_reindexed = index_report.items_indexed
        return report

    def start(self, interval_hours: float | None = None) -> None:
        """
        Start the background worker.

        Args:
            interval_hours: Hours between runs (default from config)
        """
        if not self.running:
            interval = interval_hours if interval_hours is not None else self.config.interval_hours
            self._worker_task = asyncio.create_task(self._maintenance_worker(interval))
            logger.info(f"Maintenance worker started (every {interval}h)")

    async def stop(self) -> None:
        """Stop the background worker and wait for it to finish."""
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
        self._worker_task = None

    async def _maintenance_worker(self, interval_hours: float):
        """
        Background loop: run maintenance, then sleep.

        Args:
            interval_hours: Hours between runs
        """
        while True:
            try:
                logger.info("Starting periodic maintenance")
                report = await self.run_once()
                logger.info(
                    f"Maintenance completed: {report.relations_removed} relations, "
                    f"{report.tags_removed} tags removed, "
                    f"{report.packets_reindexed} packets reindexed"
                )
            except asyncio.CancelledError:
                logger.info("Maintenance worker stopped")
                break
            except Exception as e:
                logger.error(f"Error in maintenance worker: {e}")

            try:
                await asyncio.sleep(interval_hours * 3600)
            except asyncio.CancelledError:
                logger.info("Maintenance worker stopped")
                break
