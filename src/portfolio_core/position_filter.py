"""
Position filter: monetary risk controls between allocation and rebalancing.

Stages run in strict order:
  1. blocked   - drop symbols in the active blocked-asset set
  2. minimum   - drop positions with |value| < min_position_value
  3. cap       - clamp |value| to max_position_pct * total_equity (sign kept)
  4. top_n     - keep the max_positions largest by |value|

Each stage logs how many positions it removed. Losing more than half of the
candidates escalates a warning; it never fails the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import AbstractSet, Sequence

from portfolio_core.contracts import ZERO, ConfigurationError, TargetPosition, to_decimal

logger = logging.getLogger("portfolio.filter")

ESCALATION_RATIO = Decimal("0.5")


@dataclass(frozen=True)
class FilterLimits:
    min_position_value: Decimal
    max_position_pct: Decimal  # fraction of total equity, e.g. 0.15
    max_positions: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "min_position_value", to_decimal(self.min_position_value, name="min_position_value"))
        object.__setattr__(self, "max_position_pct", to_decimal(self.max_position_pct, name="max_position_pct"))
        if self.min_position_value < ZERO:
            raise ConfigurationError("min_position_value must be >= 0")
        if not ZERO < self.max_position_pct <= 1:
            raise ConfigurationError("max_position_pct must be in (0, 1]")
        if self.max_positions < 1:
            raise ConfigurationError("max_positions must be >= 1")


@dataclass(frozen=True)
class FilterStage:
    name: str
    removed: int
    adjusted: int = 0
    symbols: tuple[str, ...] = ()


@dataclass
class FilterResult:
    positions: list[TargetPosition]
    input_count: int
    stages: list[FilterStage] = field(default_factory=list)

    @property
    def removed_count(self) -> int:
        return sum(s.removed for s in self.stages)

    @property
    def removed_ratio(self) -> Decimal:
        if self.input_count == 0:
            return ZERO
        return Decimal(self.removed_count) / Decimal(self.input_count)

    @property
    def escalated(self) -> bool:
        return self.removed_ratio > ESCALATION_RATIO

    @property
    def capped_symbols(self) -> tuple[str, ...]:
        for stage in self.stages:
            if stage.name == "cap":
                return stage.symbols
        return ()

    def stage(self, name: str) -> FilterStage:
        for s in self.stages:
            if s.name == name:
                return s
        raise KeyError(name)


def _log_stage(stage: FilterStage) -> None:
    if stage.adjusted:
        logger.info("Filter %-8s removed %d, adjusted %d", stage.name, stage.removed, stage.adjusted)
    else:
        logger.info("Filter %-8s removed %d", stage.name, stage.removed)


def filter_positions(
    candidates: Sequence[TargetPosition],
    *,
    blocked_symbols: AbstractSet[str],
    total_equity: Decimal,
    limits: FilterLimits,
) -> FilterResult:
    """Apply the four risk stages to *candidates* and return the survivors.

    The returned positions are ordered by |target_value| descending.
    """
    equity = to_decimal(total_equity, name="total_equity")
    result = FilterResult(positions=[], input_count=len(candidates))

    # 1. blocked assets
    kept = [p for p in candidates if p.symbol not in blocked_symbols]
    dropped = tuple(p.symbol for p in candidates if p.symbol in blocked_symbols)
    result.stages.append(FilterStage("blocked", removed=len(dropped), symbols=dropped))

    # 2. minimum size
    below = tuple(p.symbol for p in kept if p.abs_value < limits.min_position_value)
    kept = [p for p in kept if p.abs_value >= limits.min_position_value]
    result.stages.append(FilterStage("minimum", removed=len(below), symbols=below))

    # 3. concentration cap
    cap = limits.max_position_pct * equity
    capped: list[str] = []
    clamped: list[TargetPosition] = []
    for p in kept:
        if p.abs_value > cap:
            value = cap if p.target_value > ZERO else -cap
            clamped.append(p.with_value(value, capped_from=str(p.target_value)))
            capped.append(p.symbol)
        else:
            clamped.append(p)
    result.stages.append(FilterStage("cap", removed=0, adjusted=len(capped), symbols=tuple(capped)))

    # 4. count limit
    ranked = sorted(clamped, key=lambda p: (-p.abs_value, p.symbol))
    truncated = tuple(p.symbol for p in ranked[limits.max_positions:])
    ranked = ranked[: limits.max_positions]
    result.stages.append(FilterStage("top_n", removed=len(truncated), symbols=truncated))

    for stage in result.stages:
        _log_stage(stage)

    result.positions = ranked
    if result.escalated:
        logger.warning(
            "Risk filter removed %d of %d candidate(s) (%.0f%%)",
            result.removed_count, result.input_count, float(result.removed_ratio * 100),
        )
    return result
