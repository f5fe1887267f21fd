"""
Human-readable output for the terminal.

The engine explains itself at every step: which strategies produced what,
what the risk filter removed, and what each order did. The journal receives
the same data as JSON.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from cli.daily_run import DailyRunResult
    from data.blocked_assets import BlockedAsset
    from data.order_log import OrderRecord
    from execution.models import RebalanceResult
    from portfolio_core.contracts import PositionSnapshot
    from portfolio_core.pipeline import AllocationResult


def _money(value: Decimal | None) -> str:
    if value is None:
        return "-"
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def format_allocation(allocation: AllocationResult, top: int = 10) -> str:
    """Strategies, filter stages, and the largest target positions."""
    lines = [f"=== Target Portfolio (equity {_money(allocation.total_equity)}) ===", ""]

    lines.append("--- Strategies ---")
    for sr in allocation.strategy_results:
        if sr.succeeded:
            lines.append(
                f"  {sr.strategy_name:20s} weight {sr.weight:>5}  budget {_money(sr.budget):>14}  "
                f"{len(sr.positions):>4d} position(s)  {_money(sr.allocated_value)}"
            )
        else:
            lines.append(f"  {sr.strategy_name:20s} FAILED: {sr.error}")
    lines.append("")

    fr = allocation.filter_result
    lines.append(f"--- Risk Filter ({fr.input_count} candidate(s)) ---")
    for stage in fr.stages:
        note = f", adjusted {stage.adjusted}" if stage.adjusted else ""
        lines.append(f"  {stage.name:8s} removed {stage.removed}{note}")
    if fr.escalated:
        lines.append(f"  WARNING: filter removed {fr.removed_count} of {fr.input_count} candidates")
    lines.append("")

    meta = allocation.metadata
    lines.append("--- Exposure ---")
    lines.append(
        f"  positions {meta.get('total_positions', 0)} "
        f"(long {meta.get('long_positions', 0)}, short {meta.get('short_positions', 0)})"
    )
    lines.append(
        f"  gross {_money(Decimal(meta.get('gross_exposure', '0')))} ({meta.get('gross_exposure_pct', '0')}%)  "
        f"net {_money(Decimal(meta.get('net_exposure', '0')))} ({meta.get('net_exposure_pct', '0')}%)"
    )
    lines.append("")

    positions = allocation.positions
    lines.append(f"--- Top {min(top, len(positions))} Position(s) ---")
    if not positions:
        lines.append("  (none: target is 100% cash)")
    for p in positions[:top]:
        sources = ", ".join(p.contributing_sources)
        lines.append(f"  {p.symbol:8s} {_money(p.target_value):>14}  [{sources}]")
    return "\n".join(lines)


def format_rebalance_result(result: RebalanceResult) -> str:
    title = "Rebalance Plan (dry run)" if result.dry_run else "Rebalance"
    lines = [f"=== {title} ===", f"Holdings before: {len(result.positions_before)} ({_money(result.current_value)})"]
    if result.cancelled_open_orders:
        lines.append(f"Cancelled open orders: {result.cancelled_open_orders}")
    if not result.orders_placed:
        lines.append("No orders needed.")
    for o in result.orders_placed:
        amount = _money(o.intent.notional) if o.intent.notional is not None else "all"
        status = o.status.value if not o.reason else f"{o.status.value} ({o.reason})"
        lines.append(f"  {o.intent.action.value:6s} {o.side:4s} {o.symbol:8s} {amount:>14}  {status}")
    if result.below_threshold:
        lines.append(f"Below de-minimis (not traded): {result.below_threshold}")
    lines.append(f"Submitted {len(result.submitted)}, skipped {len(result.skipped)}")
    return "\n".join(lines)


def format_run_result(result: DailyRunResult) -> str:
    lines = []
    if result.allocation is not None:
        lines.append(format_allocation(result.allocation))
        lines.append("")
    if result.rebalance is not None:
        lines.append(format_rebalance_result(result.rebalance))
        lines.append("")
    lines.append(f"Run {result.run_id}: {result.status.upper()}")
    if result.error:
        lines.append(f"  Error: {result.error}")
    return "\n".join(lines)


def format_positions(positions: Sequence[PositionSnapshot], equity: Decimal | None = None) -> str:
    lines = ["=== Positions ==="]
    if equity is not None:
        lines.append(f"Equity: {_money(equity)}")
    if not positions:
        lines.append("No open positions.")
        return "\n".join(lines)
    total = Decimal("0")
    for p in sorted(positions, key=lambda p: -abs(p.market_value)):
        lines.append(f"  {p.symbol:8s} {p.side:5s} qty {p.qty:>12}  {_money(p.market_value):>14}")
        total += p.market_value
    lines.append(f"Total market value: {_money(total)}")
    return "\n".join(lines)


def format_blocked_assets(assets: Sequence[BlockedAsset]) -> str:
    if not assets:
        return "No blocked assets."
    lines = [f"Blocked assets ({len(assets)}):"]
    for a in assets:
        lines.append(
            f"  {a.symbol:8s} {a.reason:28s} expires {a.expires_at.isoformat()} "
            f"({a.days_until_expiration()}d)"
        )
    return "\n".join(lines)


def format_orders(records: Sequence[OrderRecord]) -> str:
    if not records:
        return "No orders recorded."
    lines = [f"Orders ({len(records)}):"]
    for r in records:
        size = _money(r.notional) if r.notional is not None else (f"qty {r.qty}" if r.qty is not None else "all")
        fill = f" filled @ {r.filled_price}" if r.filled_price is not None else ""
        lines.append(
            f"  {r.submitted_at.isoformat()}  {r.action:6s} {r.side:4s} {r.symbol:8s} {size:>14}  "
            f"{r.status}{fill}  [{r.broker_order_id}]"
        )
    return "\n".join(lines)
