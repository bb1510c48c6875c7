"""Take-profit / stop-loss arithmetic on net-of-gas proceeds."""

from __future__ import annotations

from dataclasses import dataclass

import config
from trading.models import BPS_DENOM

EXIT_HOLD = "hold"
EXIT_TAKE_PROFIT = "take_profit"
EXIT_STOP_LOSS = "stop_loss"
# A trigger matched but the sell would realize a loss with the stop loss off.
EXIT_BLOCKED_LOSS = "blocked_negative_pnl"


def div_trunc(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero."""
    q = abs(int(numerator)) // abs(int(denominator))
    return q if (numerator >= 0) == (denominator > 0) else -q


def net_proceeds(gross_out: int, gas_estimate: int, max_fee: int) -> int:
    return int(gross_out) - int(gas_estimate) * int(max_fee)


def pnl_bps(net_out: int, cost_basis: int) -> int:
    return div_trunc((int(net_out) - int(cost_basis)) * BPS_DENOM, max(int(cost_basis), 1))


def take_profit_threshold(cost_basis: int, take_profit_bps: int, min_profit: int = 0) -> int:
    return div_trunc(int(cost_basis) * (BPS_DENOM + int(take_profit_bps)), BPS_DENOM) + int(min_profit)


@dataclass(frozen=True)
class ExitDecision:
    action: str
    pnl_bps: int
    net_out: int
    need_out: int

    @property
    def should_sell(self) -> bool:
        return self.action in (EXIT_TAKE_PROFIT, EXIT_STOP_LOSS)


def evaluate_exit(
    cost_basis: int,
    net_out: int,
    *,
    take_profit_bps: int | None = None,
    hard_stop_bps: int | None = None,
    min_profit: int | None = None,
) -> ExitDecision:
    tp_bps = int(config.SELL_TAKE_PROFIT_BPS if take_profit_bps is None else take_profit_bps)
    stop_bps = int(config.SELL_HARD_STOP_BPS if hard_stop_bps is None else hard_stop_bps)
    floor = int(config.MIN_PROFIT_WEI if min_profit is None else min_profit)

    pnl = pnl_bps(net_out, cost_basis)
    need = take_profit_threshold(cost_basis, tp_bps, floor)
    stop_enabled = stop_bps > 0

    if stop_enabled and pnl <= -stop_bps:
        return ExitDecision(EXIT_STOP_LOSS, pnl, int(net_out), need)
    if int(net_out) >= need:
        # Never sell at a loss while the stop loss is off, whatever matched.
        if not stop_enabled and pnl < 0:
            return ExitDecision(EXIT_BLOCKED_LOSS, pnl, int(net_out), need)
        return ExitDecision(EXIT_TAKE_PROFIT, pnl, int(net_out), need)
    return ExitDecision(EXIT_HOLD, pnl, int(net_out), need)
