"""
Strategy signal producers. Each sizes target positions inside the budget the
allocator hands it; the registry builds producers from portfolio config.
"""

from strategies.registry import (
    ProducerDefaults,
    build_allocations,
    build_producer,
    register_source,
)
from strategies.signal_weighted import SignalWeightedProducer, load_signals

__all__ = [
    "ProducerDefaults",
    "SignalWeightedProducer",
    "build_allocations",
    "build_producer",
    "load_signals",
    "register_source",
]
