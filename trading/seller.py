"""Per-block exit pass over open positions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import config
from trading.allowance import AllowanceManager
from trading.errors import (
    AllowanceConfirmationFailed,
    BalanceChanged,
    ChainActionError,
    InsufficientAllowance,
    SimulationRejected,
    TransientQuoteUnavailable,
)
from trading.execution import ExecutionProtocol
from trading.exit_policy import EXIT_BLOCKED_LOSS, ExitDecision, evaluate_exit, net_proceeds
from trading.inflight import InFlightGuard
from trading.models import ACTION_SELL, BPS_DENOM, STATUS_EXHAUSTED, ExecutionIntent
from trading.positions import Position, PositionLedger
from utils.addressing import short_address

logger = logging.getLogger(__name__)


class PositionSeller:
    def __init__(
        self,
        chain: Any,
        ledger: PositionLedger,
        guard: InFlightGuard,
        protocol: ExecutionProtocol,
        allowances: AllowanceManager,
    ) -> None:
        self.chain = chain
        self.ledger = ledger
        self.guard = guard
        self.protocol = protocol
        self.allowances = allowances

    async def run_pass(self, height: int) -> None:
        """Evaluate every open position once, one at a time."""
        for position in self.ledger.all():
            if self.guard.is_held(position.asset_id):
                continue
            try:
                await self.evaluate_position(position, height)
            except Exception as exc:
                logger.error(
                    "SELL_ERROR token=%s block=%s err=%s",
                    short_address(position.asset_id),
                    height,
                    exc,
                    exc_info=not isinstance(exc, ChainActionError),
                )

    async def evaluate_position(self, position: Position, height: int) -> bool:
        """Decide on one position and sell when a trigger fires. Returns True when sold."""
        if int(height) - int(position.first_seen_height) < int(config.SELL_MIN_HOLD_BLOCKS):
            return False

        owner = self.chain.wallet
        balance = int(await asyncio.to_thread(self.chain.get_balance, owner, position.asset_id))
        if balance <= 0:
            self._drop(position, "zero_balance")
            return False

        evaluated = await self._decide(position, balance)
        decision = evaluated[0] if evaluated is not None else None
        if decision is None or not decision.should_sell:
            if decision is not None and decision.action == EXIT_BLOCKED_LOSS:
                logger.warning(
                    "SELL_BLOCKED token=%s pnl_bps=%s reason=stop_loss_off_negative_pnl",
                    short_address(position.asset_id),
                    decision.pnl_bps,
                )
            return False

        with self.guard.acquired(position.asset_id) as got:
            if not got:
                return False
            return await self._sell(position, decision)

    async def _decide(self, position: Position, balance: int) -> tuple[ExitDecision, int] | None:
        try:
            gross = int(await asyncio.to_thread(self.chain.quote_sell_proceeds, position.venue_id, balance))
        except TransientQuoteUnavailable as exc:
            logger.debug("SELL_SKIP token=%s reason=quote_unavailable err=%s", short_address(position.asset_id), exc)
            return None
        if gross <= 0:
            return None

        gas = await self._sell_gas_estimate(position.venue_id, balance)
        fee = await asyncio.to_thread(self.chain.current_fee_quote)
        net = net_proceeds(gross, gas, fee.max_fee)
        decision = evaluate_exit(position.total_cost_basis, net)
        logger.debug(
            "SELL_EVAL token=%s gross=%s net=%s cost=%s need=%s pnl_bps=%s action=%s",
            short_address(position.asset_id),
            gross,
            net,
            position.total_cost_basis,
            decision.need_out,
            decision.pnl_bps,
            decision.action,
        )
        return decision, gross

    async def _sell_gas_estimate(self, venue_id: str, amount: int) -> int:
        intent = ExecutionIntent(venue_id=venue_id, action=ACTION_SELL, amount=amount, limit=1)
        try:
            return int(await asyncio.to_thread(self.chain.estimate_gas, intent))
        except Exception:
            return int(config.SELL_GAS_FALLBACK)

    async def _sell(self, position: Position, decision: ExitDecision) -> bool:
        token = short_address(position.asset_id)
        owner = self.chain.wallet

        balance = int(await asyncio.to_thread(self.chain.get_balance, owner, position.asset_id))
        if balance <= 0:
            self._drop(position, "zero_balance_before_sell")
            return False

        try:
            await self.allowances.ensure_allowance(owner, position.venue_id, position.asset_id, balance)
        except AllowanceConfirmationFailed as exc:
            logger.warning("SELL_ABORT token=%s reason=allowance_unconfirmed err=%s", token, exc)
            return False

        # Balance may have moved since the decision snapshot.
        evaluated = await self._decide(position, balance)
        if evaluated is None or not evaluated[0].should_sell:
            logger.info(
                "SELL_ABORT token=%s reason=stale_decision was=%s now=%s",
                token,
                decision.action,
                evaluated[0].action if evaluated is not None else "no_quote",
            )
            return False
        fresh, gross = evaluated
        min_out = (gross * (BPS_DENOM - int(config.SLIPPAGE_BPS))) // BPS_DENOM

        intent = ExecutionIntent(venue_id=position.venue_id, action=ACTION_SELL, amount=balance, limit=min_out)
        logger.info(
            "EXIT_SENT token=%s curve=%s reason=%s amount=%s min_out=%s pnl_bps=%s",
            token,
            short_address(position.venue_id),
            fresh.action,
            balance,
            min_out,
            fresh.pnl_bps,
        )
        try:
            result = await self.protocol.execute(intent)
        except SimulationRejected as exc:
            logger.info("SELL_ABORT token=%s reason=simulation_rejected err=%s", token, exc)
            return False
        except InsufficientAllowance as exc:
            logger.warning("SELL_ABORT token=%s reason=allowance_race err=%s", token, exc)
            return False
        except BalanceChanged as exc:
            logger.warning("SELL_ABORT token=%s reason=balance_changed err=%s", token, exc)
            await self._reconcile_after_race(position)
            return False

        if result.confirmed:
            self.ledger.remove(position.asset_id)
            logger.info(
                "EXIT_CONFIRMED token=%s reason=%s pnl_bps=%s tx=%s block=%s",
                token,
                fresh.action,
                fresh.pnl_bps,
                result.receipt.tx_hash if result.receipt else "",
                result.receipt.block_number if result.receipt else 0,
            )
            return True
        if result.status == STATUS_EXHAUSTED:
            logger.warning(
                "EXIT_UNRESOLVED token=%s attempts=%s detail=%s",
                token,
                len(result.attempts),
                result.detail,
            )
        else:
            logger.warning("EXIT_FAILED token=%s status=%s", token, result.status)
        return False

    async def _reconcile_after_race(self, position: Position) -> None:
        balance = int(await asyncio.to_thread(self.chain.get_balance, self.chain.wallet, position.asset_id))
        if balance <= 0:
            self._drop(position, "already_sold")

    def _drop(self, position: Position, reason: str) -> None:
        if self.ledger.remove(position.asset_id) is not None:
            logger.info("POSITION_CLEARED token=%s reason=%s", short_address(position.asset_id), reason)
