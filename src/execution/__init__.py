"""
Execution: broker adapters, rebalancing, fill reconciliation.

Accepted orders are irrevocable; the order log is the reconciliation record.
"""

from execution.broker import (
    AssetNotTradableError,
    Broker,
    BrokerError,
    BrokerOrder,
    InsufficientBuyingPowerError,
    TransientBrokerError,
)
from execution.models import OrderOutcome, OutcomeStatus, RebalanceResult
from execution.rebalancer import RebalanceError, Rebalancer
from execution.reconcile import ReconcileResult, sync_fills
from execution.sim_broker import SimulatedBroker

__all__ = [
    "AssetNotTradableError",
    "Broker",
    "BrokerError",
    "BrokerOrder",
    "InsufficientBuyingPowerError",
    "OrderOutcome",
    "OutcomeStatus",
    "RebalanceError",
    "RebalanceResult",
    "Rebalancer",
    "ReconcileResult",
    "SimulatedBroker",
    "TransientBrokerError",
    "get_alpaca_broker",
    "sync_fills",
]


def get_alpaca_broker(api_key: str, api_secret: str, **kwargs):
    """Lazy import to avoid loading alpaca-py when the simulated broker is used."""
    from execution.alpaca_broker import AlpacaBroker

    return AlpacaBroker(api_key, api_secret, **kwargs)
