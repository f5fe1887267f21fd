"""
portfolio-core: pure allocation, risk filtering and rebalance planning.

No I/O. Broker access, persistence and configuration live in execution/,
data/ and config/; nothing here imports from them.
"""

from portfolio_core.allocator import (
    StrategyAllocation,
    StrategyProducer,
    allocate,
    run_strategies,
)
from portfolio_core.contracts import (
    AllStrategiesFailedError,
    AssetClass,
    ConfigurationError,
    MergePolicy,
    MissingEquityError,
    OrderAction,
    OrderIntent,
    OrderSide,
    PositionSnapshot,
    StrategyDataError,
    StrategyOutput,
    StrategyResult,
    TargetPosition,
    TradingSignal,
    UnknownMergePolicyError,
)
from portfolio_core.pipeline import AllocationResult, build_target_portfolio
from portfolio_core.position_filter import FilterLimits, FilterResult, filter_positions
from portfolio_core.rebalance_plan import DE_MINIMIS, RebalancePlan, plan_rebalance

__all__ = [
    "AllStrategiesFailedError",
    "AllocationResult",
    "AssetClass",
    "ConfigurationError",
    "DE_MINIMIS",
    "FilterLimits",
    "FilterResult",
    "MergePolicy",
    "MissingEquityError",
    "OrderAction",
    "OrderIntent",
    "OrderSide",
    "PositionSnapshot",
    "RebalancePlan",
    "StrategyAllocation",
    "StrategyDataError",
    "StrategyOutput",
    "StrategyProducer",
    "StrategyResult",
    "TargetPosition",
    "TradingSignal",
    "UnknownMergePolicyError",
    "allocate",
    "build_target_portfolio",
    "filter_positions",
    "plan_rebalance",
    "run_strategies",
]
