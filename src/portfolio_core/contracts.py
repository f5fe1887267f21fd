"""
Data contracts for portfolio-core: TradingSignal, TargetPosition, StrategyResult,
PositionSnapshot, OrderIntent.

portfolio-core consumes strategy output and broker snapshots and produces target
portfolios and order plans. No I/O; these are plain dataclasses.

Money is always Decimal. Floats handed in are converted through their shortest
repr so 0.1 stays 0.1 rather than its binary expansion.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any

ZERO = Decimal("0")
CENT = Decimal("0.01")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ConfigurationError(Exception):
    """Fatal setup problem detected before any broker order is placed."""


class MissingEquityError(ConfigurationError):
    """total_equity is missing or not positive."""


class UnknownMergePolicyError(ConfigurationError):
    """merge_policy is not one of the supported policies."""


class StrategyDataError(Exception):
    """A producer failed or returned malformed output. Non-fatal for the run."""


class AllStrategiesFailedError(StrategyDataError):
    """Every enabled strategy failed. Fatal: an empty target here is not a cash instruction."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MergePolicy(str, Enum):
    """How overlapping symbols from different strategies are combined."""

    ADDITIVE = "additive"
    MAX = "max"


class AssetClass(str, Enum):
    EQUITY = "us_equity"


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderAction(str, Enum):
    """Kind of planned order: full close, adjustment of a held symbol, or a new open."""

    CLOSE = "close"
    ADJUST = "adjust"
    OPEN = "open"


# ---------------------------------------------------------------------------
# Money helpers
# ---------------------------------------------------------------------------


def to_decimal(value: Any, *, name: str = "value") -> Decimal:
    """Coerce int/str/float/Decimal to Decimal. Rejects bools, NaN and infinities."""
    if isinstance(value, bool):
        raise TypeError(f"{name} must be numeric, got bool")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value)
        except InvalidOperation as exc:
            raise ValueError(f"{name} is not a number: {value!r}") from exc
    else:
        raise TypeError(f"{name} must be numeric, got {type(value).__name__}")
    if not result.is_finite():
        raise ValueError(f"{name} must be finite, got {value!r}")
    return result


def to_cents(value: Decimal) -> Decimal:
    """Round a dollar amount to whole cents, half away from zero."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Signals and positions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TradingSignal:
    """One strategy's conviction in a symbol. Ephemeral, never persisted."""

    symbol: str
    strategy_name: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        if not self.symbol or not str(self.symbol).strip():
            raise ValueError("TradingSignal.symbol must be non-empty")
        object.__setattr__(self, "symbol", str(self.symbol).strip().upper())
        if not -1.0 <= float(self.score) <= 1.0:
            raise ValueError(f"TradingSignal.score must be within [-1, 1], got {self.score}")


@dataclass(frozen=True)
class TargetPosition:
    """Desired signed dollar exposure in one symbol. Negative means short."""

    symbol: str
    target_value: Decimal
    asset_class: AssetClass = AssetClass.EQUITY
    contributing_sources: tuple[str, ...] = ()
    details: dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if not self.symbol or not str(self.symbol).strip():
            raise ValueError("TargetPosition.symbol must be non-empty")
        object.__setattr__(self, "symbol", str(self.symbol).strip().upper())
        object.__setattr__(self, "target_value", to_decimal(self.target_value, name="target_value"))
        object.__setattr__(self, "asset_class", AssetClass(self.asset_class))
        object.__setattr__(self, "contributing_sources", tuple(self.contributing_sources))

    @property
    def abs_value(self) -> Decimal:
        return abs(self.target_value)

    def with_value(self, value: Decimal, **details: Any) -> "TargetPosition":
        """Copy with a new target value; extra keyword args are merged into details."""
        return TargetPosition(
            symbol=self.symbol,
            target_value=value,
            asset_class=self.asset_class,
            contributing_sources=self.contributing_sources,
            details={**self.details, **details},
        )


@dataclass(frozen=True)
class StrategyOutput:
    """What a producer returns from generate()."""

    positions: list[TargetPosition]
    stats: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StrategyResult:
    """One strategy's contribution to a run.

    total_equity is the account equity the budget was derived from; every
    result in one run must share the same value. error is set when the
    producer failed, in which case positions is empty.
    """

    strategy_name: str
    weight: Decimal
    total_equity: Decimal | None
    budget: Decimal
    positions: list[TargetPosition] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def allocated_value(self) -> Decimal:
        return sum((p.abs_value for p in self.positions), ZERO)


# ---------------------------------------------------------------------------
# Broker-facing snapshots and plans
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PositionSnapshot:
    """A held position as reported by the broker at the start of a rebalance."""

    symbol: str
    qty: Decimal
    market_value: Decimal
    side: str = "long"  # "long" | "short"

    def __post_init__(self) -> None:
        object.__setattr__(self, "symbol", str(self.symbol).strip().upper())
        object.__setattr__(self, "qty", to_decimal(self.qty, name="qty"))
        object.__setattr__(self, "market_value", to_decimal(self.market_value, name="market_value"))


@dataclass(frozen=True)
class OrderIntent:
    """One planned broker order.

    CLOSE orders carry no notional: the broker liquidates the whole position.
    ADJUST and OPEN orders carry a positive notional in the given side.
    """

    symbol: str
    side: OrderSide
    action: OrderAction
    current_value: Decimal
    target_value: Decimal
    notional: Decimal | None = None

    @property
    def delta(self) -> Decimal:
        return self.target_value - self.current_value

    @property
    def is_sell(self) -> bool:
        return self.side == OrderSide.SELL
