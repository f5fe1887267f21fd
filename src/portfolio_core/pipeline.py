"""
Allocation pipeline: producers -> allocate -> risk filter -> target portfolio.

Pure orchestration over portfolio_core; the caller supplies equity and the
active blocked-symbol set, so the pipeline never touches the broker or disk.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import AbstractSet, Any, Sequence

from portfolio_core.allocator import StrategyAllocation, allocate, require_equity, run_strategies
from portfolio_core.contracts import ZERO, MergePolicy, StrategyResult, TargetPosition
from portfolio_core.position_filter import FilterLimits, FilterResult, filter_positions

logger = logging.getLogger("portfolio.pipeline")


@dataclass
class AllocationResult:
    total_equity: Decimal
    strategy_results: list[StrategyResult]
    candidates: list[TargetPosition]
    filter_result: FilterResult
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def positions(self) -> list[TargetPosition]:
        return self.filter_result.positions

    @property
    def failed_strategies(self) -> list[str]:
        return [r.strategy_name for r in self.strategy_results if not r.succeeded]

    @property
    def all_strategies_failed(self) -> bool:
        """At least one strategy ran and none of them succeeded."""
        return bool(self.strategy_results) and not any(r.succeeded for r in self.strategy_results)


def portfolio_metadata(
    positions: Sequence[TargetPosition],
    strategy_results: Sequence[StrategyResult],
    total_equity: Decimal,
    filter_result: FilterResult | None = None,
) -> dict[str, Any]:
    """Exposure and contribution summary for a target portfolio."""
    long_exposure = sum((p.target_value for p in positions if p.target_value > ZERO), ZERO)
    short_exposure = sum((-p.target_value for p in positions if p.target_value < ZERO), ZERO)
    gross = long_exposure + short_exposure
    net = long_exposure - short_exposure

    def pct(value: Decimal) -> str:
        return str((value / total_equity * 100).quantize(Decimal("0.01")))

    contributions: dict[str, int] = {}
    for p in positions:
        for src in p.contributing_sources:
            contributions[src] = contributions.get(src, 0) + 1

    return {
        "total_positions": len(positions),
        "long_positions": sum(1 for p in positions if p.target_value > ZERO),
        "short_positions": sum(1 for p in positions if p.target_value < ZERO),
        "long_exposure": str(long_exposure),
        "short_exposure": str(short_exposure),
        "gross_exposure": str(gross),
        "net_exposure": str(net),
        "gross_exposure_pct": pct(gross),
        "net_exposure_pct": pct(net),
        "strategy_contributions": contributions,
        "strategies_succeeded": sum(1 for r in strategy_results if r.succeeded),
        "strategies_failed": sum(1 for r in strategy_results if not r.succeeded),
        "positions_capped": len(filter_result.capped_symbols) if filter_result else 0,
    }


def build_target_portfolio(
    allocations: Sequence[StrategyAllocation],
    *,
    total_equity: Any,
    merge_policy: MergePolicy | str,
    limits: FilterLimits,
    blocked_symbols: AbstractSet[str] = frozenset(),
) -> AllocationResult:
    """Run strategies, merge their output, and apply risk filters."""
    equity = require_equity(total_equity)
    results = run_strategies(allocations, equity)
    candidates = allocate(results, merge_policy)
    filtered = filter_positions(
        candidates,
        blocked_symbols=blocked_symbols,
        total_equity=equity,
        limits=limits,
    )
    metadata = portfolio_metadata(filtered.positions, results, equity, filtered)
    logger.info(
        "Target portfolio: %d position(s), gross %s%% of equity",
        metadata["total_positions"], metadata["gross_exposure_pct"],
    )
    return AllocationResult(
        total_equity=equity,
        strategy_results=results,
        candidates=candidates,
        filter_result=filtered,
        metadata=metadata,
    )
