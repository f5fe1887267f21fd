"""
Signal-weighted producer: turn a list of TradingSignals into sized positions.

Signals are ranked by |score|, truncated to max_positions, then sized inside
the budget handed to generate():

- equal: every kept symbol gets budget / n
- score: every kept symbol gets budget * |score| / sum(|score|)

The sign of the score sets the direction. When min_position_value is set the
kept count shrinks until an equal share clears it, so a wide signal set
concentrates into fewer, tradeable positions instead of dust.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal
from pathlib import Path
from typing import Any, Callable, Sequence

from portfolio_core.allocator import require_equity
from portfolio_core.contracts import (
    CENT,
    ZERO,
    StrategyDataError,
    StrategyOutput,
    TargetPosition,
    TradingSignal,
    to_decimal,
)

logger = logging.getLogger("portfolio.strategies")

WEIGHTINGS = ("equal", "score")


def load_signals(path: str | Path, strategy_name: str) -> list[TradingSignal]:
    """Read signals from a JSON file: a list, or an object with a "signals" list.

    Each entry needs ``symbol`` and ``score``; ``metadata`` and ``timestamp``
    (ISO 8601) are optional. Any problem raises StrategyDataError.
    """
    p = Path(path)
    if not p.exists():
        raise StrategyDataError(f"Signal file not found: {p}")
    try:
        with open(p) as f:
            raw = json.load(f)
    except json.JSONDecodeError as exc:
        raise StrategyDataError(f"Signal file {p.name} is not valid JSON: {exc}") from exc

    entries = raw.get("signals") if isinstance(raw, dict) else raw
    if not isinstance(entries, list):
        raise StrategyDataError(f"Signal file {p.name} must hold a list of signals")

    signals: list[TradingSignal] = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise StrategyDataError(f"{p.name}[{i}]: expected an object")
        try:
            ts = entry.get("timestamp")
            signals.append(
                TradingSignal(
                    symbol=entry["symbol"],
                    strategy_name=strategy_name,
                    score=float(entry["score"]),
                    metadata=dict(entry.get("metadata") or {}),
                    timestamp=datetime.fromisoformat(ts) if ts else datetime.now(timezone.utc),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise StrategyDataError(f"{p.name}[{i}]: invalid signal: {exc}") from exc
    return signals


class SignalWeightedProducer:
    """Size positions from a signal source within the budget it is given.

    Parameters
    ----------
    name:
        Strategy name; tagged onto every produced position.
    source:
        Callable returning the current signals (e.g. a file loader).
    weighting:
        "equal" or "score".
    max_positions:
        Keep at most this many symbols (strongest |score| first).
    min_position_value:
        Smallest dollar size worth producing.
    """

    def __init__(
        self,
        name: str,
        source: Callable[[], Sequence[TradingSignal]],
        *,
        weighting: str = "equal",
        max_positions: int | None = None,
        min_position_value: Decimal | int | str = 0,
    ) -> None:
        if weighting not in WEIGHTINGS:
            raise ValueError(f"weighting must be one of {WEIGHTINGS}, got {weighting!r}")
        if max_positions is not None and max_positions < 1:
            raise ValueError("max_positions must be >= 1")
        self.name = name
        self._source = source
        self._weighting = weighting
        self._max_positions = max_positions
        self._min_value = to_decimal(min_position_value, name="min_position_value")

    def _strongest_per_symbol(self, signals: Sequence[TradingSignal]) -> dict[str, tuple[TradingSignal, int]]:
        best: dict[str, tuple[TradingSignal, int]] = {}
        for sig in signals:
            if sig.score == 0:
                continue
            prev = best.get(sig.symbol)
            if prev is None:
                best[sig.symbol] = (sig, 1)
            elif abs(sig.score) > abs(prev[0].score):
                best[sig.symbol] = (sig, prev[1] + 1)
            else:
                best[sig.symbol] = (prev[0], prev[1] + 1)
        return best

    def generate(self, total_equity: Any) -> StrategyOutput:
        budget = require_equity(total_equity)
        signals = list(self._source())

        best = self._strongest_per_symbol(signals)
        ranked = sorted(best.values(), key=lambda item: (-abs(item[0].score), item[0].symbol))

        limit = len(ranked)
        if self._max_positions is not None:
            limit = min(limit, self._max_positions)
        if self._min_value > ZERO:
            limit = min(limit, int(budget // self._min_value))
        kept = ranked[:limit]

        positions: list[TargetPosition] = []
        if kept:
            if self._weighting == "equal":
                shares = [Decimal(1)] * len(kept)
            else:
                shares = [to_decimal(abs(sig.score), name="score") for sig, _ in kept]
            total_share = sum(shares, ZERO)
            for (sig, count), share in zip(kept, shares):
                value = (budget * share / total_share).quantize(CENT, rounding=ROUND_DOWN)
                if value < self._min_value or value == ZERO:
                    continue
                positions.append(
                    TargetPosition(
                        symbol=sig.symbol,
                        target_value=value if sig.score > 0 else -value,
                        contributing_sources=(self.name,),
                        details={"score": sig.score, "signal_count": count, **sig.metadata},
                    )
                )

        allocated = sum((p.abs_value for p in positions), ZERO)
        stats = {
            "signals_received": len(signals),
            "symbols_signalled": len(best),
            "positions": len(positions),
            "weighting": self._weighting,
            "budget": str(budget),
            "allocated": str(allocated),
        }
        if len(best) > len(positions):
            logger.info(
                "%s: sized %d of %d signalled symbol(s)", self.name, len(positions), len(best),
            )
        return StrategyOutput(positions=positions, stats=stats)
