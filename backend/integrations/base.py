"""
ERP Stock Source — Abstract Base Class

The Stock Synchronizer only needs one thing from the outside world:
"for this store, what does the ERP think is on hand, per barcode?".
Every ERP connector implements that single call so the counting core
stays source-agnostic.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger()


class SyncStatus(str, Enum):
    """Result status of a sync operation."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Some lines matched, some had no ERP barcode
    FAILED = "failed"
    NO_DATA = "no_data"


# ── Sync result container ─────────────────────────────────────────────────


@dataclass
class SyncResult:
    """Standardized return from every stock sync run."""

    status: SyncStatus
    records_processed: int = 0
    records_failed: int = 0
    errors: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    def complete(self) -> "SyncResult":
        self.completed_at = datetime.utcnow()
        return self

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "records_processed": self.records_processed,
            "records_failed": self.records_failed,
            "errors": list(self.errors),
            "metadata": dict(self.metadata),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


# ── Abstract source ───────────────────────────────────────────────────────


class ErpStockSource(ABC):
    """
    Base class for ERP stock lookups.

    fetch_stock() returns barcode -> on-hand quantity for one store.
    Partial maps are acceptable; a source that cannot be reached at all
    raises counting.errors.UpstreamUnavailable.
    """

    name: str = "erp"

    def __init__(self):
        self.logger = logger.bind(source=self.name)

    @abstractmethod
    async def fetch_stock(self, store_code: str) -> dict[str, int]:
        """Return barcode -> expected quantity for the given store."""
        ...


class StaticStockSource(ErpStockSource):
    """In-memory source keyed by store code. Used for demos and local runs."""

    name = "static"

    def __init__(self, stock_by_store: dict[str, dict[str, int]]):
        super().__init__()
        self.stock_by_store = stock_by_store

    async def fetch_stock(self, store_code: str) -> dict[str, int]:
        return dict(self.stock_by_store.get(store_code, {}))
