"""
Allocator: run strategy producers on their budget share, then merge their
candidate positions into one portfolio.

Each strategy gets ``budget = total_equity * weight`` and sizes its own
candidates inside that budget. Overlapping symbols are combined with one
global merge policy:

- additive: signed values are summed
- max: the larger-magnitude contribution wins (first seen on ties)

Equity is never fetched here; the caller passes the account snapshot in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol, Sequence, runtime_checkable

from portfolio_core.contracts import (
    ZERO,
    ConfigurationError,
    MergePolicy,
    MissingEquityError,
    StrategyDataError,
    StrategyOutput,
    StrategyResult,
    TargetPosition,
    UnknownMergePolicyError,
    to_decimal,
)

logger = logging.getLogger("portfolio.allocator")

# Weights summing outside this band get a warning, not an error.
_WEIGHT_SUM_TOLERANCE = Decimal("0.01")


@runtime_checkable
class StrategyProducer(Protocol):
    """A strategy that sizes target positions within the equity it is given.

    Implementations must raise MissingEquityError when total_equity is
    missing or not positive.
    """

    def generate(self, total_equity: Decimal) -> StrategyOutput:
        ...


@dataclass(frozen=True)
class StrategyAllocation:
    """A configured strategy: name, weight, and the producer that sizes it."""

    name: str
    weight: Decimal
    producer: StrategyProducer
    enabled: bool = True


def require_equity(total_equity: Any) -> Decimal:
    """Return total_equity as Decimal or raise MissingEquityError."""
    if total_equity is None:
        raise MissingEquityError("total_equity is required")
    try:
        value = to_decimal(total_equity, name="total_equity")
    except (TypeError, ValueError) as exc:
        raise MissingEquityError(str(exc)) from exc
    if value <= ZERO:
        raise MissingEquityError(f"total_equity must be positive, got {value}")
    return value


def parse_merge_policy(value: MergePolicy | str) -> MergePolicy:
    try:
        return MergePolicy(value)
    except ValueError as exc:
        valid = ", ".join(p.value for p in MergePolicy)
        raise UnknownMergePolicyError(
            f"Unknown merge policy {value!r} (expected one of: {valid})"
        ) from exc


def _validate_output(name: str, output: Any) -> StrategyOutput:
    """Check producer output shape; raise StrategyDataError on anything malformed."""
    if isinstance(output, dict):
        output = StrategyOutput(positions=output.get("positions"), stats=output.get("stats") or {})
    if not isinstance(output, StrategyOutput):
        raise StrategyDataError(f"{name}: expected StrategyOutput, got {type(output).__name__}")
    if not isinstance(output.positions, (list, tuple)):
        raise StrategyDataError(f"{name}: positions must be a list")
    seen: set[str] = set()
    for pos in output.positions:
        if not isinstance(pos, TargetPosition):
            raise StrategyDataError(f"{name}: position is not a TargetPosition: {pos!r}")
        if pos.symbol in seen:
            raise StrategyDataError(f"{name}: duplicate symbol {pos.symbol}")
        seen.add(pos.symbol)
    return output


def _tag(position: TargetPosition, strategy_name: str) -> TargetPosition:
    sources = position.contributing_sources
    if strategy_name not in sources:
        sources = (*sources, strategy_name)
    return TargetPosition(
        symbol=position.symbol,
        target_value=position.target_value,
        asset_class=position.asset_class,
        contributing_sources=sources,
        details=dict(position.details),
    )


def run_strategies(
    allocations: Sequence[StrategyAllocation],
    total_equity: Any,
) -> list[StrategyResult]:
    """Run every enabled, positively weighted producer on its budget.

    A producer that raises or returns malformed output contributes zero
    positions; its StrategyResult carries the error. A missing or
    non-positive total_equity is fatal and raised before any producer runs.
    """
    equity = require_equity(total_equity)

    active = [a for a in allocations if a.enabled and to_decimal(a.weight, name="weight") > ZERO]
    skipped = len(allocations) - len(active)
    if skipped:
        logger.info("Skipping %d disabled or zero-weight strateg(ies)", skipped)

    weight_sum = sum((to_decimal(a.weight, name="weight") for a in active), ZERO)
    if active and abs(weight_sum - 1) > _WEIGHT_SUM_TOLERANCE:
        logger.warning("Strategy weights sum to %s, not 1.0", weight_sum)

    results: list[StrategyResult] = []
    for alloc in active:
        weight = to_decimal(alloc.weight, name="weight")
        budget = equity * weight
        try:
            output = _validate_output(alloc.name, alloc.producer.generate(budget))
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.error("Strategy %s failed: %s", alloc.name, exc)
            results.append(
                StrategyResult(
                    strategy_name=alloc.name,
                    weight=weight,
                    total_equity=equity,
                    budget=budget,
                    error=str(exc) or type(exc).__name__,
                )
            )
            continue

        positions = [_tag(p, alloc.name) for p in output.positions]
        result = StrategyResult(
            strategy_name=alloc.name,
            weight=weight,
            total_equity=equity,
            budget=budget,
            positions=positions,
            stats=dict(output.stats),
        )
        logger.info(
            "Strategy %s: %d position(s), $%s of $%s budget",
            alloc.name, len(positions), result.allocated_value.quantize(Decimal("0.01")),
            budget.quantize(Decimal("0.01")),
        )
        results.append(result)
    return results


def allocate(
    strategy_results: Sequence[StrategyResult],
    merge_policy: MergePolicy | str,
) -> list[TargetPosition]:
    """Merge per-strategy candidates into one candidate portfolio.

    Raises UnknownMergePolicyError for an unrecognised policy, and
    MissingEquityError when a result has no positive total_equity basis.
    Results derived from different equity snapshots are rejected with
    ConfigurationError. Failed results contribute nothing.
    """
    policy = parse_merge_policy(merge_policy)

    basis: Decimal | None = None
    for result in strategy_results:
        equity = require_equity(result.total_equity)
        if basis is None:
            basis = equity
        elif equity != basis:
            raise ConfigurationError(
                f"Strategy {result.strategy_name} used total_equity {equity}, "
                f"expected {basis} from the same account snapshot"
            )

    contributions: dict[str, list[tuple[str, TargetPosition]]] = {}
    for result in strategy_results:
        if not result.succeeded:
            continue
        for pos in result.positions:
            contributions.setdefault(pos.symbol, []).append((result.strategy_name, pos))

    merged: list[TargetPosition] = []
    for symbol, items in contributions.items():
        merged.append(_merge_symbol(symbol, items, policy))

    overlapping = sum(1 for items in contributions.values() if len(items) > 1)
    logger.info(
        "Allocated %d symbol(s) from %d strateg(ies), %d overlapping, policy=%s",
        len(merged), sum(1 for r in strategy_results if r.succeeded), overlapping, policy.value,
    )
    return merged


def _merge_symbol(
    symbol: str,
    items: list[tuple[str, TargetPosition]],
    policy: MergePolicy,
) -> TargetPosition:
    sources: list[str] = []
    for name, pos in items:
        for src in (*pos.contributing_sources, name):
            if src not in sources:
                sources.append(src)

    if policy is MergePolicy.ADDITIVE:
        value = sum((pos.target_value for _, pos in items), ZERO)
    else:
        value = items[0][1].target_value
        for _, pos in items[1:]:
            if abs(pos.target_value) > abs(value):
                value = pos.target_value

    return TargetPosition(
        symbol=symbol,
        target_value=value,
        asset_class=items[0][1].asset_class,
        contributing_sources=tuple(sources),
        details={
            "merge_policy": policy.value,
            "consensus_count": len(items),
            "original_values": {name: str(pos.target_value) for name, pos in items},
        },
    )
