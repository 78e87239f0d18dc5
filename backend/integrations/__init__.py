"""
ERP integration package.

Stock sources the Stock Synchronizer can pull expected quantities from:
  - KiotViet public API   (production, REST with client-credentials auth)
  - Static in-memory map  (demos and local runs)

Usage:
    from integrations import KiotVietClient

    stock = await KiotVietClient().fetch_stock("BEE")  # {barcode: on_hand}
"""

from integrations.base import ErpStockSource, StaticStockSource, SyncResult, SyncStatus
from integrations.kiotviet import KiotVietClient

__all__ = [
    "ErpStockSource",
    "StaticStockSource",
    "SyncResult",
    "SyncStatus",
    "KiotVietClient",
]
