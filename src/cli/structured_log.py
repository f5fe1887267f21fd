"""
Structured JSON event logger for container observability.

Emits one JSON object per line to stderr. Events are designed to be
parsed by log aggregators (Grafana Loki, CloudWatch, ELK).

Optional webhook: when configured, alert-level events (order_skipped,
asset_blocked, filter_escalation, error) are POSTed to the URL.
"""

from __future__ import annotations

import json
import logging
import sys
import urllib.request
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("portfolio.events")


class StructuredEventLogger:
    """Emit structured JSON events to stderr and optional webhook."""

    def __init__(
        self,
        run_id: str,
        *,
        mode: str = "paper",
        enabled: bool = True,
        webhook_url: str = "",
        stream: Any = None,
    ) -> None:
        self._run_id = run_id
        self._mode = mode
        self._enabled = enabled
        self._webhook_url = webhook_url.strip()
        self._stream = stream or sys.stderr
        self._ALERT_EVENTS = {
            "order_skipped",
            "asset_blocked",
            "filter_escalation",
            "error",
        }

    def _emit(self, event_type: str, **fields: Any) -> dict:
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event_type,
            "run_id": self._run_id,
            "mode": self._mode,
            **fields,
        }
        if self._enabled:
            self._stream.write(json.dumps(record, default=str) + "\n")
            self._stream.flush()

        if self._webhook_url and event_type in self._ALERT_EVENTS:
            self._post_webhook(record)

        return record

    def _post_webhook(self, record: dict) -> None:
        try:
            data = json.dumps(record, default=str).encode("utf-8")
            req = urllib.request.Request(
                self._webhook_url,
                data=data,
                headers={"Content-Type": "application/json"},
                method="POST",
            )
            urllib.request.urlopen(req, timeout=5)
        except Exception as exc:
            logger.warning("Webhook POST failed: %s", exc)

    def handle(self, event_type: str, payload: dict) -> dict:
        """Callback form used by the rebalancer.

        Order events go through their typed helper; anything else is emitted as is.
        """
        typed = {
            "order_submitted": self.order_submitted,
            "order_skipped": self.order_skipped,
            "asset_blocked": self.asset_blocked,
        }.get(event_type)
        if typed is None:
            return self._emit(event_type, **payload)
        return typed(**payload)

    def run_start(self, total_equity: str, dry_run: bool) -> dict:
        return self._emit("run_start", total_equity=total_equity, dry_run=dry_run)

    def allocation_complete(self, candidates: int, positions: int, removed: int, failed_strategies: list[str]) -> dict:
        return self._emit(
            "allocation_complete",
            candidates=candidates,
            positions=positions,
            removed=removed,
            failed_strategies=failed_strategies,
        )

    def filter_escalation(self, removed: int, candidates: int) -> dict:
        return self._emit(
            "filter_escalation",
            removed=removed,
            candidates=candidates,
            removed_pct=round(100.0 * removed / candidates, 1) if candidates else 0.0,
        )

    def order_submitted(
        self, symbol: str, side: str, order_id: str, notional: str | None = None, action: str | None = None
    ) -> dict:
        return self._emit(
            "order_submitted", symbol=symbol, side=side, action=action, notional=notional, order_id=order_id
        )

    def order_skipped(self, symbol: str, side: str, reason: str) -> dict:
        return self._emit("order_skipped", symbol=symbol, side=side, reason=reason)

    def asset_blocked(self, symbol: str, reason: str) -> dict:
        return self._emit("asset_blocked", symbol=symbol, reason=reason)

    def run_complete(self, status: str, submitted: int, skipped: int) -> dict:
        return self._emit("run_complete", status=status, submitted=submitted, skipped=skipped)

    def error(self, message: str, detail: str = "") -> dict:
        return self._emit("error", message=message, detail=detail)
