"""
CLI entry point: portfolio run | allocate | status | orders | reconcile | blocked | health.

Every command loads config from --config (default config.yaml), prints
human-readable reasoning, and logs to the journal where it trades.
"""

import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

import click
from dotenv import load_dotenv

from config import load_config
from portfolio_core.contracts import ConfigurationError

load_dotenv()

logger = logging.getLogger("portfolio")


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s  %(message)s",
        stream=sys.stderr,
    )


def _make_broker(cfg):
    """Build the configured broker adapter. Missing Alpaca keys raise ConfigurationError."""
    if cfg.broker.kind == "alpaca":
        if not (cfg.broker.api_key and cfg.broker.api_secret):
            raise ConfigurationError("APCA_API_KEY_ID and APCA_API_SECRET_KEY must be set for the alpaca broker")
        from execution import get_alpaca_broker
        from execution.throttle import RETRY_DELAYS

        return get_alpaca_broker(
            cfg.broker.api_key,
            cfg.broker.api_secret,
            paper=not cfg.is_live,
            min_call_interval=cfg.broker.min_call_interval_s,
            timeout=cfg.broker.timeout_s,
            max_retries=cfg.broker.max_retries,
            retry_delays=[cfg.broker.retry_backoff_s * d for d in RETRY_DELAYS],
        )
    from execution import SimulatedBroker

    return SimulatedBroker(cfg.broker.sim_state_path, initial_cash=cfg.broker.sim_initial_cash)


def _load_portfolio(cfg, override: str | None):
    from config.portfolio_config import load_portfolio_config

    path = override or cfg.portfolio_config or None
    return load_portfolio_config(path, mode=cfg.mode)


def _registry(cfg):
    from datetime import timedelta

    from data import BlockedAssetRegistry

    return BlockedAssetRegistry(cfg.storage.blocked_assets_path, ttl=timedelta(days=cfg.storage.block_ttl_days))


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    ts = datetime.fromisoformat(value)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


@click.group()
@click.option("--config", "config_path", default="config.yaml", help="Path to config file.")
@click.pass_context
def cli(ctx: click.Context, config_path: str) -> None:
    """portfolio-engine: blend strategy budgets into one portfolio and rebalance the account to it."""
    _setup_logging()
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# ---------- portfolio run ----------


@cli.command()
@click.option("--dry-run", is_flag=True, default=False, help="Plan orders from live positions without sending any.")
@click.option("--portfolio-config", "portfolio_path", default=None, help="Override portfolio JSON config path.")
@click.pass_context
def run(ctx: click.Context, dry_run: bool, portfolio_path: str | None) -> None:
    """Allocate across strategies and rebalance the account (one daily run)."""
    cfg = load_config(ctx.obj["config_path"])
    from cli.daily_run import execute_daily_run, new_run_id
    from cli.output import format_run_result
    from cli.safety import SafetyGuard
    from cli.structured_log import StructuredEventLogger
    from data import OrderLog
    from journal import JournalWriter

    try:
        portfolio_cfg = _load_portfolio(cfg, portfolio_path)
        broker = _make_broker(cfg)
    except ConfigurationError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        ctx.exit(1)
        return

    run_id = new_run_id()
    events = StructuredEventLogger(
        run_id,
        mode=cfg.mode,
        enabled=cfg.alerting.structured_logs,
        webhook_url=cfg.alerting.webhook_url,
    )
    guard = SafetyGuard(kill_switch=cfg.safety.kill_switch, mode=cfg.mode)
    if cfg.is_live:
        click.echo("*** LIVE TRADING MODE: real money ***", err=True)

    result = execute_daily_run(
        broker=broker,
        portfolio_cfg=portfolio_cfg,
        registry=_registry(cfg),
        order_log=OrderLog(cfg.storage.order_log_path),
        journal=JournalWriter(cfg.journal.path, echo_stdout=cfg.journal.echo_stdout),
        events=events,
        guard=guard,
        mode=cfg.mode,
        dry_run=dry_run,
        lock_path=cfg.storage.lock_path,
        run_id=run_id,
    )
    click.echo(format_run_result(result))
    if not result.ok:
        ctx.exit(1)


# ---------- portfolio allocate ----------


@cli.command()
@click.option("--equity", "equity_str", required=True, help="Total account equity to allocate (e.g. 100000).")
@click.option("--portfolio-config", "portfolio_path", default=None, help="Override portfolio JSON config path.")
@click.option("--top", default=20, help="Number of target positions to show.")
@click.pass_context
def allocate(ctx: click.Context, equity_str: str, portfolio_path: str | None, top: int) -> None:
    """Preview the target portfolio for a given equity. No broker calls."""
    cfg = load_config(ctx.obj["config_path"])
    from cli.output import format_allocation
    from portfolio_core import build_target_portfolio
    from strategies import ProducerDefaults, build_allocations

    try:
        equity = Decimal(equity_str)
    except InvalidOperation:
        raise click.BadParameter(f"not a number: {equity_str}", param_hint="--equity")

    try:
        portfolio_cfg = _load_portfolio(cfg, portfolio_path)
        allocations = build_allocations(
            portfolio_cfg.strategies,
            ProducerDefaults(
                max_positions=portfolio_cfg.risk.max_positions,
                min_position_value=portfolio_cfg.risk.min_position_value,
            ),
        )
        result = build_target_portfolio(
            allocations,
            total_equity=equity,
            merge_policy=portfolio_cfg.merge_policy,
            limits=portfolio_cfg.risk.to_limits(),
            blocked_symbols=_registry(cfg).active_symbols(),
        )
    except ConfigurationError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        ctx.exit(1)
        return
    click.echo(format_allocation(result, top=top))


# ---------- portfolio status ----------


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show account equity and current broker positions."""
    cfg = load_config(ctx.obj["config_path"])
    from cli.output import format_positions

    try:
        broker = _make_broker(cfg)
    except ConfigurationError as exc:
        raise click.ClickException(f"Configuration error: {exc}") from exc
    click.echo(f"Mode: {cfg.mode}  Broker: {cfg.broker.kind}")
    click.echo(format_positions(broker.current_positions(), broker.account_equity()))


# ---------- portfolio orders ----------


@cli.command()
@click.option("--symbol", default=None, help="Only orders for this symbol.")
@click.option("--since", default=None, help="Submitted at or after (ISO date/time).")
@click.option("--until", default=None, help="Submitted before (ISO date/time).")
@click.option("--limit", default=50, help="Maximum rows to show.")
@click.pass_context
def orders(ctx: click.Context, symbol: str | None, since: str | None, until: str | None, limit: int) -> None:
    """Query the order audit log."""
    cfg = load_config(ctx.obj["config_path"])
    from cli.output import format_orders
    from data import OrderLog

    log = OrderLog(cfg.storage.order_log_path)
    records = log.list_orders(symbol=symbol, since=_parse_date(since), until=_parse_date(until), limit=limit)
    click.echo(format_orders(records))


# ---------- portfolio reconcile ----------


@cli.command()
@click.pass_context
def reconcile(ctx: click.Context) -> None:
    """Refresh status and fill fields of open orders from the broker."""
    cfg = load_config(ctx.obj["config_path"])
    from data import OrderLog
    from execution import sync_fills

    try:
        broker = _make_broker(cfg)
    except ConfigurationError as exc:
        raise click.ClickException(f"Configuration error: {exc}") from exc
    result = sync_fills(broker, OrderLog(cfg.storage.order_log_path))
    click.echo(f"Checked {result.checked} open order(s), updated {result.updated}.")
    for order_id, err in result.errors.items():
        click.echo(f"  {order_id}: {err}")


# ---------- portfolio blocked ----------


@cli.group()
def blocked() -> None:
    """Inspect and manage the blocked asset registry."""


@blocked.command("list")
@click.pass_context
def blocked_list(ctx: click.Context) -> None:
    """List currently blocked symbols."""
    cfg = load_config(ctx.obj["config_path"])
    from cli.output import format_blocked_assets

    click.echo(format_blocked_assets(_registry(cfg).list_active()))


@blocked.command("add")
@click.argument("symbol")
@click.option("--reason", default="manual", help="Why the symbol is blocked.")
@click.option("--days", default=None, type=int, help="Block duration in days (default from config).")
@click.pass_context
def blocked_add(ctx: click.Context, symbol: str, reason: str, days: int | None) -> None:
    """Block SYMBOL from target portfolios."""
    cfg = load_config(ctx.obj["config_path"])
    from datetime import timedelta

    ttl = timedelta(days=days) if days is not None else None
    asset = _registry(cfg).block(symbol, reason, ttl=ttl)
    click.echo(f"Blocked {asset.symbol} until {asset.expires_at.isoformat()} ({asset.reason})")


@blocked.command("remove")
@click.argument("symbol")
@click.pass_context
def blocked_remove(ctx: click.Context, symbol: str) -> None:
    """Unblock SYMBOL immediately."""
    cfg = load_config(ctx.obj["config_path"])
    if _registry(cfg).unblock(symbol):
        click.echo(f"Unblocked {symbol.upper()}")
    else:
        click.echo(f"{symbol.upper()} was not blocked")


@blocked.command("sweep")
@click.pass_context
def blocked_sweep(ctx: click.Context) -> None:
    """Delete expired blocks."""
    cfg = load_config(ctx.obj["config_path"])
    purged = _registry(cfg).sweep_expired()
    click.echo(f"Swept {purged} expired block(s)")


# ---------- portfolio health ----------


@cli.command()
@click.option("--skip-broker", is_flag=True, default=False, help="Do not contact the broker.")
@click.pass_context
def health(ctx: click.Context, skip_broker: bool) -> None:
    """Check config, storage and broker connectivity. Exit 1 on any failure."""
    cfg = load_config(ctx.obj["config_path"])
    from data import OrderLog

    checks: list[tuple[str, bool, str]] = []

    try:
        pcfg = _load_portfolio(cfg, None)
        enabled = len(pcfg.enabled_strategies)
        checks.append(("portfolio config", True, f"{enabled} enabled strateg(ies), policy {pcfg.merge_policy.value}"))
    except Exception as exc:
        checks.append(("portfolio config", False, str(exc)))

    try:
        active = len(_registry(cfg).active_symbols())
        OrderLog(cfg.storage.order_log_path).list_runs(limit=1)
        checks.append(("storage", True, f"{active} active block(s)"))
    except Exception as exc:
        checks.append(("storage", False, str(exc)))

    if not skip_broker:
        try:
            equity = _make_broker(cfg).account_equity()
            checks.append(("broker", True, f"{cfg.broker.kind} equity ${equity:,.2f}"))
        except Exception as exc:
            checks.append(("broker", False, str(exc)))

    for name, ok, detail in checks:
        click.echo(f"  [{'OK' if ok else 'FAIL':4s}] {name:18s} {detail}")
    if not all(ok for _, ok, _ in checks):
        ctx.exit(1)


if __name__ == "__main__":
    cli()
