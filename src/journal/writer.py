"""
Run journal: append-only JSON lines. One line per strategy result, target portfolio,
order outcome and run summary, each tagged with the run_id that produced it.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Iterable


def _serialize(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if hasattr(obj, "__dict__") and not isinstance(obj, type):
        return {k: _serialize(v) for k, v in vars(obj).items() if not k.startswith("_")}
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, frozenset, set)):
        return [_serialize(x) for x in obj]
    return obj


class JournalWriter:
    """Append-only journal. Each line is a JSON object with event type and payload."""

    def __init__(self, path: str | Path, *, echo_stdout: bool = False) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._echo = echo_stdout

    @property
    def path(self) -> Path:
        return self._path

    def _write(self, event_type: str, payload: dict) -> None:
        record = {"ts_utc": datetime.now(timezone.utc).isoformat(), "event": event_type, **payload}
        line = json.dumps(_serialize(record)) + "\n"
        with open(self._path, "a") as f:
            f.write(line)
        if self._echo:
            print(line.rstrip())

    def run_started(self, run_id: str, mode: str, dry_run: bool, total_equity: Decimal, **extra: Any) -> None:
        self._write("run_started", {"run_id": run_id, "mode": mode, "dry_run": dry_run, "total_equity": total_equity, **extra})

    def strategy_result(self, run_id: str, result: Any) -> None:
        self._write(
            "strategy_result",
            {
                "run_id": run_id,
                "strategy": result.strategy_name,
                "weight": result.weight,
                "budget": result.budget,
                "positions": len(result.positions),
                "allocated": result.allocated_value,
                "stats": result.stats,
                "error": result.error,
            },
        )

    def target_portfolio(self, run_id: str, positions: Iterable[Any], metadata: dict, **extra: Any) -> None:
        self._write(
            "target_portfolio",
            {
                "run_id": run_id,
                "positions": [
                    {"symbol": p.symbol, "target_value": p.target_value, "sources": p.contributing_sources}
                    for p in positions
                ],
                "metadata": metadata,
                **extra,
            },
        )

    def order(self, run_id: str, outcome: Any) -> None:
        self._write("order", {"run_id": run_id, **outcome.to_dict()})

    def run_completed(self, run_id: str, status: str, summary: dict, error: str | None = None) -> None:
        self._write("run_completed", {"run_id": run_id, "status": status, "summary": summary, "error": error})

    def read_events(self, run_id: str | None = None) -> list[dict]:
        """Parse the journal back; optionally only one run's lines."""
        if not self._path.exists():
            return []
        events = []
        with open(self._path) as f:
            for line in f:
                if not line.strip():
                    continue
                rec = json.loads(line)
                if run_id is None or rec.get("run_id") == run_id:
                    events.append(rec)
        return events
