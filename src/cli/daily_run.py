"""
Daily run: one end-to-end allocation and rebalance against the broker.

  lock -> record run start -> sweep expired blocks -> read equity once
       -> strategies -> allocate -> filter -> rebalance -> record run finish

Setup steps that mutate shared state register an undo callback on an
ExitStack. If setup fails the callbacks unwind in reverse order; once the
target portfolio is built the stack is disarmed, because submitted orders
cannot be undone. The order log is the reconciliation record from then on.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Iterator, Sequence

from config.portfolio_config import PortfolioConfig
from data.blocked_assets import BlockedAssetRegistry
from data.order_log import OrderLog
from execution.broker import Broker, BrokerError
from execution.models import RebalanceResult
from execution.rebalancer import RebalanceError, Rebalancer
from journal import JournalWriter
from portfolio_core.allocator import StrategyAllocation, require_equity
from portfolio_core.contracts import AllStrategiesFailedError, ConfigurationError, StrategyDataError
from portfolio_core.pipeline import AllocationResult, build_target_portfolio
from strategies.registry import ProducerDefaults, build_allocations

from cli.safety import SafetyGuard
from cli.structured_log import StructuredEventLogger

logger = logging.getLogger("portfolio.run")


class RunLockError(Exception):
    """Another run holds the workspace lock."""


@dataclass
class DailyRunResult:
    run_id: str
    mode: str
    dry_run: bool
    status: str = "failed"  # "completed" | "failed"
    total_equity: Decimal | None = None
    allocation: AllocationResult | None = None
    rebalance: RebalanceResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "completed"

    def summary(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "run_id": self.run_id,
            "status": self.status,
            "mode": self.mode,
            "dry_run": self.dry_run,
            "total_equity": str(self.total_equity) if self.total_equity is not None else None,
        }
        if self.allocation is not None:
            out["target_positions"] = len(self.allocation.positions)
            out["failed_strategies"] = self.allocation.failed_strategies
        if self.rebalance is not None:
            out.update(self.rebalance.summary())
        if self.error:
            out["error"] = self.error
        return out


def new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ") + "-" + uuid.uuid4().hex[:8]


STALE_LOCK_SECONDS = 6 * 60 * 60


def _lock_is_stale(lock: Path, max_age: float) -> bool:
    """True when the lock's owner is gone or the lock outlived *max_age* seconds."""
    try:
        age = time.time() - lock.stat().st_mtime
        raw = lock.read_text().strip()
    except FileNotFoundError:
        return True
    if age > max_age:
        return True
    if not raw.isdigit():
        return False
    try:
        os.kill(int(raw), 0)
    except ProcessLookupError:
        return True
    except PermissionError:
        return False
    return False


@contextmanager
def run_lock(path: str | Path, stale_after: float = STALE_LOCK_SECONDS) -> Iterator[Path]:
    """Exclusive lock file for the duration of a run.

    A lock left by a process that no longer exists, or older than
    *stale_after* seconds, is replaced with a warning.
    """
    lock = Path(path)
    lock.parent.mkdir(parents=True, exist_ok=True)
    try:
        fd = os.open(lock, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError as exc:
        if not _lock_is_stale(lock, stale_after):
            raise RunLockError(f"Another run holds the lock: {lock}") from exc
        logger.warning("Replacing stale run lock %s", lock)
        lock.unlink(missing_ok=True)
        try:
            fd = os.open(lock, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError as retry_exc:
            raise RunLockError(f"Another run holds the lock: {lock}") from retry_exc
    try:
        os.write(fd, str(os.getpid()).encode())
        os.close(fd)
        yield lock
    finally:
        lock.unlink(missing_ok=True)


def _rollback(description: str, fn: Callable[[BaseException | None], Any]) -> Callable[..., bool]:
    """ExitStack exit callback that runs *fn* with the in-flight exception."""

    def exit_callback(exc_type: Any, exc: BaseException | None, tb: Any) -> bool:
        try:
            fn(exc)
        except Exception as undo_exc:
            logger.error("Rollback step '%s' failed: %s", description, undo_exc)
        else:
            logger.info("Rolled back: %s", description)
        return False

    return exit_callback


def execute_daily_run(
    *,
    broker: Broker,
    portfolio_cfg: PortfolioConfig,
    registry: BlockedAssetRegistry,
    order_log: OrderLog,
    journal: JournalWriter | None = None,
    events: StructuredEventLogger | None = None,
    guard: SafetyGuard | None = None,
    mode: str = "paper",
    dry_run: bool = False,
    lock_path: str | Path | None = None,
    allocations: Sequence[StrategyAllocation] | None = None,
    base_dir: Path = Path("."),
    run_id: str | None = None,
) -> DailyRunResult:
    """Run allocation and rebalancing once. Never raises for expected failures.

    Configuration, safety, lock and broker failures produce a result with
    status "failed"; a run that needed no orders is still "completed".
    """
    run_id = run_id or new_run_id()
    result = DailyRunResult(run_id=run_id, mode=mode, dry_run=dry_run)

    if guard is not None and not dry_run:
        check = guard.check()
        if not check.allowed:
            result.error = check.reason
            logger.error("Run blocked by safety guard: %s", check.reason)
            if events:
                events.error("Run blocked by safety guard", check.reason)
            return result

    run_started = False
    setup_done = False
    try:
        with ExitStack() as lock_stack:
            if lock_path:
                lock_stack.enter_context(run_lock(lock_path))

            with ExitStack() as undo:
                order_log.start_run(run_id, mode=mode, dry_run=dry_run)
                run_started = True
                undo.push(
                    _rollback(
                        "mark run aborted",
                        lambda exc: order_log.finish_run(run_id, "aborted", error=str(exc) if exc else None),
                    )
                )

                registry.sweep_expired()
                equity = require_equity(broker.account_equity())
                result.total_equity = equity
                logger.info("Run %s: mode=%s dry_run=%s equity=$%s", run_id, mode, dry_run, equity)
                if journal:
                    journal.run_started(run_id, mode, dry_run, equity)
                if events:
                    events.run_start(str(equity), dry_run)

                if allocations is None:
                    allocations = build_allocations(
                        portfolio_cfg.strategies,
                        ProducerDefaults(
                            max_positions=portfolio_cfg.risk.max_positions,
                            min_position_value=portfolio_cfg.risk.min_position_value,
                            base_dir=base_dir,
                        ),
                    )
                allocation = build_target_portfolio(
                    allocations,
                    total_equity=equity,
                    merge_policy=portfolio_cfg.merge_policy,
                    limits=portfolio_cfg.risk.to_limits(),
                    blocked_symbols=registry.active_symbols(),
                )
                result.allocation = allocation
                _report_allocation(run_id, allocation, journal, events)
                if allocation.all_strategies_failed:
                    raise AllStrategiesFailedError(
                        "All strategies failed: " + ", ".join(allocation.failed_strategies)
                    )
                undo.pop_all()
                setup_done = True

            rebalancer = Rebalancer(
                broker,
                registry,
                order_log,
                de_minimis=portfolio_cfg.rebalance.de_minimis,
                cancel_open_orders=portfolio_cfg.rebalance.cancel_open_orders,
                run_id=run_id,
                on_event=events.handle if events else None,
            )
            result.rebalance = rebalancer.rebalance(allocation.positions, dry_run=dry_run)
            if journal:
                for outcome in result.rebalance.orders_placed:
                    journal.order(run_id, outcome)
            result.status = "completed"
    except (ConfigurationError, StrategyDataError, RebalanceError, BrokerError, RunLockError) as exc:
        result.error = str(exc)
        logger.error("Run %s failed: %s", run_id, exc)
        if events:
            events.error("Run failed", str(exc))

    if run_started and setup_done:
        order_log.finish_run(run_id, result.status, summary=result.summary(), error=result.error)
    if journal:
        journal.run_completed(run_id, result.status, result.summary(), result.error)
    if events:
        rb = result.rebalance
        events.run_complete(result.status, len(rb.submitted) if rb else 0, len(rb.skipped) if rb else 0)
    return result


def _report_allocation(
    run_id: str,
    allocation: AllocationResult,
    journal: JournalWriter | None,
    events: StructuredEventLogger | None,
) -> None:
    filtered = allocation.filter_result
    if journal:
        for sr in allocation.strategy_results:
            journal.strategy_result(run_id, sr)
        journal.target_portfolio(run_id, allocation.positions, allocation.metadata)
    if events:
        events.allocation_complete(
            candidates=filtered.input_count,
            positions=len(allocation.positions),
            removed=filtered.removed_count,
            failed_strategies=allocation.failed_strategies,
        )
        if filtered.escalated:
            events.filter_escalation(filtered.removed_count, filtered.input_count)
