"""
Persistence: blocked asset registry and order/run audit log (SQLite).

Depends on nothing above it; execution/ and cli/ read and write through here.
"""

from data.blocked_assets import ASSET_NOT_ACTIVE, BlockedAsset, BlockedAssetRegistry
from data.order_log import OrderLog, OrderRecord, RunRecord

__all__ = [
    "ASSET_NOT_ACTIVE",
    "BlockedAsset",
    "BlockedAssetRegistry",
    "OrderLog",
    "OrderRecord",
    "RunRecord",
]
