"""
Producer registry: map a strategy's ``params.source`` to a producer factory.

Config names strategies and their weights; this module turns each entry into
a StrategyAllocation the allocator can run. New producer kinds register a
factory under a source name.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Mapping

from portfolio_core.allocator import StrategyAllocation, StrategyProducer
from portfolio_core.contracts import ConfigurationError

from strategies.signal_weighted import SignalWeightedProducer, load_signals

if TYPE_CHECKING:
    from config.portfolio_config import StrategyConfig

logger = logging.getLogger("portfolio.strategies")

DEFAULT_SOURCE = "signal_file"


@dataclass(frozen=True)
class ProducerDefaults:
    """Global settings a producer falls back to when its params are silent."""

    max_positions: int | None = None
    min_position_value: Decimal = Decimal("0")
    base_dir: Path = Path(".")


ProducerFactory = Callable[[str, Mapping[str, Any], ProducerDefaults], StrategyProducer]

_SOURCES: dict[str, ProducerFactory] = {}


def register_source(source: str, factory: ProducerFactory) -> None:
    _SOURCES[source] = factory


def available_sources() -> list[str]:
    return sorted(_SOURCES)


def _signal_file_producer(name: str, params: Mapping[str, Any], defaults: ProducerDefaults) -> StrategyProducer:
    if "path" not in params:
        raise ConfigurationError(f"Strategy {name}: signal_file source needs params.path")
    path = Path(params["path"])
    if not path.is_absolute():
        path = defaults.base_dir / path
    try:
        return SignalWeightedProducer(
            name,
            lambda: load_signals(path, name),
            weighting=params.get("weighting", "equal"),
            max_positions=params.get("max_positions", defaults.max_positions),
            min_position_value=params.get("min_position_value", defaults.min_position_value),
        )
    except ValueError as exc:
        raise ConfigurationError(f"Strategy {name}: {exc}") from exc


register_source(DEFAULT_SOURCE, _signal_file_producer)


def build_producer(name: str, params: Mapping[str, Any], defaults: ProducerDefaults) -> StrategyProducer:
    source = params.get("source", DEFAULT_SOURCE)
    factory = _SOURCES.get(source)
    if factory is None:
        raise ConfigurationError(
            f"Strategy {name}: unknown source {source!r} (available: {', '.join(available_sources())})"
        )
    return factory(name, params, defaults)


def build_allocations(
    strategies: Mapping[str, "StrategyConfig"],
    defaults: ProducerDefaults,
) -> list[StrategyAllocation]:
    """Build one StrategyAllocation per configured strategy, in config order."""
    allocations: list[StrategyAllocation] = []
    for name, cfg in strategies.items():
        producer = build_producer(name, cfg.params, defaults)
        allocations.append(
            StrategyAllocation(name=name, weight=cfg.weight, producer=producer, enabled=cfg.enabled)
        )
    logger.debug("Built %d strategy allocation(s)", len(allocations))
    return allocations
