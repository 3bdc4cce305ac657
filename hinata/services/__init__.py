"""Service layer: the engine facade and background maintenance."""

from hinata.services.engine import BlockContext, EngineStatistics, HiNATAEngine
from hinata.services.maintenance import MaintenanceReport, MaintenanceWorker

__all__ = [
    "HiNATAEngine",
    "EngineStatistics",
    "BlockContext",
    "MaintenanceWorker",
    "MaintenanceReport",
]
