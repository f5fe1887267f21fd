"""
Safety guard: kill switch and live-trading confirmation.

Checked once before a run touches the broker. Designed to be the last line
of defense before real or paper money is committed.

- kill_switch: immediately disables all order submission.
- live mode: requires CONFIRM_LIVE_TRADING=yes in the environment, so a
  config edit alone cannot start trading real money.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

LIVE_CONFIRM_ENV = "CONFIRM_LIVE_TRADING"


@dataclass
class SafetyResult:
    allowed: bool
    reason: str = ""


class SafetyGuard:
    """Pre-run safety checks.

    Parameters
    ----------
    kill_switch:
        If True, all orders are blocked unconditionally.
    mode:
        "paper" or "live".
    live_confirmation:
        Value of CONFIRM_LIVE_TRADING; read from the environment when None.
    """

    def __init__(
        self,
        *,
        kill_switch: bool = False,
        mode: str = "paper",
        live_confirmation: str | None = None,
    ) -> None:
        self._kill_switch = kill_switch
        self._mode = mode
        if live_confirmation is None:
            live_confirmation = os.environ.get(LIVE_CONFIRM_ENV, "")
        self._live_confirmation = live_confirmation.strip().lower()

    @property
    def kill_switch(self) -> bool:
        return self._kill_switch

    def check(self) -> SafetyResult:
        """Check all safety conditions before order submission.

        Returns SafetyResult with allowed=True if trading is permitted,
        or allowed=False with a reason string.
        """
        if self._kill_switch:
            return SafetyResult(allowed=False, reason="Kill switch is ON: all trading disabled")

        if self._mode == "live" and self._live_confirmation != "yes":
            return SafetyResult(
                allowed=False,
                reason=f"Live trading requires {LIVE_CONFIRM_ENV}=yes",
            )

        return SafetyResult(allowed=True)
