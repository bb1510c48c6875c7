"""Entry path: size, quote, simulate-until-allowed and buy a newly created curve."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

import config
from trading.errors import SimulationRejected, TransientQuoteUnavailable
from trading.execution import ExecutionProtocol
from trading.models import ACTION_BUY, BPS_DENOM, ExecutionIntent, FeeBid, SimulatedRequest
from trading.positions import Position, PositionLedger
from utils.addressing import short_address

logger = logging.getLogger(__name__)


def randomize_amount(amount: int, spread_bps: int, rng: random.Random | None = None) -> int:
    """Spread ``amount`` uniformly within +/- spread_bps so entries are not identical."""
    amount = int(amount)
    spread_bps = max(0, int(spread_bps))
    if amount <= 0 or spread_bps <= 0:
        return amount
    rng = rng or random
    delta = rng.randint(-spread_bps, spread_bps)
    return max(1, amount + (amount * delta) // BPS_DENOM)


def roundtrip_gas_share_bps(buy_gas: int, max_fee: int, exit_cost: int, purchase: int) -> int:
    """Buy gas plus expected approve/sell cost, as a share of the purchase, in bps."""
    total = int(buy_gas) * int(max_fee) + int(exit_cost)
    return (total * BPS_DENOM) // max(int(purchase), 1)


class CurveBuyer:
    def __init__(self, chain: Any, ledger: PositionLedger, protocol: ExecutionProtocol) -> None:
        self.chain = chain
        self.ledger = ledger
        self.protocol = protocol

    async def buy(self, asset_id: str, venue_id: str, symbol: str = "") -> Position | None:
        """Open (or add to) a position on ``asset_id``. Returns the ledger entry on a confirmed fill."""
        token = symbol or short_address(asset_id)
        purchase = randomize_amount(int(config.BUY_PURCHASE_AMOUNT_WEI), int(config.BUY_RANDOMIZE_BPS))
        if purchase <= 0:
            logger.info("BUY_SKIP token=%s reason=zero_purchase_amount", token)
            return None

        try:
            expected = int(await asyncio.to_thread(self.chain.quote_buy_output, venue_id, purchase))
        except TransientQuoteUnavailable as exc:
            logger.info("BUY_SKIP token=%s reason=quote_unavailable err=%s", token, exc)
            return None
        if expected <= 0:
            logger.info("BUY_SKIP token=%s reason=quote_zero", token)
            return None
        min_out = (expected * (BPS_DENOM - int(config.SLIPPAGE_BPS))) // BPS_DENOM

        intent = ExecutionIntent(venue_id=venue_id, action=ACTION_BUY, amount=purchase, limit=min_out)
        logger.info(
            "BUY_PLAN token=%s curve=%s spend=%s expected=%s min_out=%s",
            token,
            short_address(venue_id),
            purchase,
            expected,
            min_out,
        )
        try:
            result = await self.protocol.execute(
                intent,
                simulate_attempts=int(config.BUY_SIMULATE_ATTEMPTS),
                simulate_retry_delay=float(config.BUY_SIMULATE_RETRY_DELAY_SECONDS),
                preflight=lambda request, bid: self._roundtrip_guard(token, purchase, request, bid),
            )
        except SimulationRejected as exc:
            logger.info("BUY_SKIP token=%s reason=not_tradeable_yet err=%s", token, exc)
            return None

        if not result.confirmed or result.receipt is None:
            logger.warning(
                "BUY_FAILED token=%s status=%s attempts=%s detail=%s",
                token,
                result.status,
                len(result.attempts),
                result.detail,
            )
            return None

        receipt = result.receipt
        spent = purchase + receipt.fee_paid
        position = self.ledger.record_entry(asset_id, venue_id, spent, receipt.block_number)
        logger.info(
            "ENTRY_FILLED token=%s curve=%s spent=%s gas=%s block=%s tx=%s cost_basis=%s",
            token,
            short_address(venue_id),
            spent,
            receipt.fee_paid,
            receipt.block_number,
            receipt.tx_hash,
            position.total_cost_basis,
        )
        return position

    @staticmethod
    def _roundtrip_guard(token: str, purchase: int, request: SimulatedRequest, bid: FeeBid) -> bool:
        buy_gas = int(request.gas or config.BUY_GAS_FALLBACK)
        share = roundtrip_gas_share_bps(buy_gas, bid.max_fee, int(config.APPROVE_SELL_COST_WEI), purchase)
        cap = int(config.MAX_RT_GAS_SHARE_BPS)
        if cap > 0 and share > cap:
            logger.warning(
                "BUY_SKIP token=%s reason=roundtrip_gas share_bps=%s cap_bps=%s",
                token,
                share,
                cap,
            )
            return False
        return True
