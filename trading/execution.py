"""Simulate-then-send transaction runner with same-nonce fee-bump replacement."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import config
from trading.errors import ConfirmationTimeout, NonceAlreadyUsed, SimulationRejected
from trading.models import (
    STATUS_CONFIRMED,
    STATUS_EXHAUSTED,
    STATUS_REVERTED,
    STATUS_SKIPPED,
    ExecutionIntent,
    ExecutionResult,
    FeeBid,
    SimulatedRequest,
    TxAttempt,
    TxReceipt,
)
from utils.addressing import short_address

logger = logging.getLogger(__name__)

Preflight = Callable[[SimulatedRequest, FeeBid], bool]


class ExecutionProtocol:
    """Runs one intent to a receipt, keeping it alive under congestion.

    Flow: fee quote -> bump once -> simulate -> send -> wait. A confirmation
    timeout bumps both fee components and re-sends with the same nonce, up to
    ``MAX_REPLACEMENTS`` times. Any other rejection propagates to the caller
    untouched. Running out of replacements returns an ``exhausted`` result
    unless one of the sent attempts is found mined.

    One instance is shared by every caller of a wallet: the step from the
    nonce read in ``simulate`` to the first ``send`` runs under one lock, so
    two intents never sign the same nonce.
    """

    def __init__(self, chain: Any) -> None:
        self.chain = chain
        self._nonce_lock = asyncio.Lock()

    async def execute(
        self,
        intent: ExecutionIntent,
        *,
        simulate_attempts: int = 1,
        simulate_retry_delay: float = 0.0,
        preflight: Preflight | None = None,
    ) -> ExecutionResult:
        bump_bps = int(config.GAS_BUMP_BPS)
        timeout = float(config.TX_CONFIRM_TIMEOUT_SECONDS)
        max_replacements = max(0, int(config.MAX_REPLACEMENTS))
        label = f"{intent.action}@{short_address(intent.venue_id)}"

        base_fee: FeeBid = await asyncio.to_thread(self.chain.current_fee_quote)
        bid = base_fee.bumped(bump_bps)

        sent = await self._simulate_and_send(intent, bid, simulate_attempts, simulate_retry_delay, preflight)
        if sent is None:
            return ExecutionResult(intent=intent, status=STATUS_SKIPPED, detail="preflight_veto")
        request, tx_hash = sent

        attempts: list[TxAttempt] = [TxAttempt(tx_hash=tx_hash, fee_bid=bid, nonce=request.nonce)]
        logger.info(
            "TX_SENT %s tx=%s nonce=%s maxFee=%s tip=%s",
            label,
            tx_hash,
            request.nonce,
            bid.max_fee,
            bid.priority_fee,
        )

        replacements = 0
        while True:
            try:
                receipt: TxReceipt = await asyncio.to_thread(self.chain.await_confirmation, tx_hash, timeout)
            except ConfirmationTimeout:
                if replacements >= max_replacements:
                    landed = await self._find_landed(attempts)
                    if landed is None:
                        logger.warning(
                            "TX_GIVE_UP %s attempts=%s nonce=%s last_tx=%s outcome=unknown",
                            label,
                            len(attempts),
                            request.nonce,
                            tx_hash,
                        )
                        return ExecutionResult(
                            intent=intent,
                            status=STATUS_EXHAUSTED,
                            attempts=attempts,
                            detail="replacement_budget_exhausted",
                        )
                    receipt = landed
                else:
                    replacements += 1
                    bid = bid.bumped(bump_bps)
                    try:
                        tx_hash = await asyncio.to_thread(self.chain.send, request, bid)
                    except NonceAlreadyUsed:
                        landed = await self._find_landed(attempts)
                        if landed is None:
                            logger.warning("TX_GIVE_UP %s nonce=%s consumed_elsewhere", label, request.nonce)
                            return ExecutionResult(
                                intent=intent,
                                status=STATUS_EXHAUSTED,
                                attempts=attempts,
                                detail="nonce_consumed",
                            )
                        receipt = landed
                    else:
                        attempts.append(TxAttempt(tx_hash=tx_hash, fee_bid=bid, nonce=request.nonce))
                        logger.info(
                            "TX_REPLACED %s try=%s/%s tx=%s nonce=%s maxFee=%s tip=%s",
                            label,
                            replacements,
                            max_replacements,
                            tx_hash,
                            request.nonce,
                            bid.max_fee,
                            bid.priority_fee,
                        )
                        continue

            status = STATUS_CONFIRMED if receipt.succeeded else STATUS_REVERTED
            logger.info(
                "TX_%s %s tx=%s block=%s attempts=%s",
                status.upper(),
                label,
                receipt.tx_hash,
                receipt.block_number,
                len(attempts),
            )
            return ExecutionResult(intent=intent, status=status, receipt=receipt, attempts=attempts)

    async def _simulate_and_send(
        self,
        intent: ExecutionIntent,
        bid: FeeBid,
        attempts: int,
        delay: float,
        preflight: Preflight | None,
    ) -> tuple[SimulatedRequest, str] | None:
        """Simulate (retrying on rejection) and send the first attempt. None on a preflight veto.

        The lock is dropped between retries so a buy waiting for trading to
        open does not hold up other intents.
        """
        attempts = max(1, int(attempts))
        for attempt in range(1, attempts + 1):
            async with self._nonce_lock:
                try:
                    request = await asyncio.to_thread(self.chain.simulate, intent)
                except SimulationRejected as exc:
                    if attempt >= attempts:
                        raise
                    logger.debug(
                        "SIM_REJECTED %s@%s attempt=%s/%s err=%s",
                        intent.action,
                        short_address(intent.venue_id),
                        attempt,
                        attempts,
                        exc,
                    )
                else:
                    if preflight is not None and not preflight(request, bid):
                        return None
                    tx_hash = await asyncio.to_thread(self.chain.send, request, bid)
                    return request, tx_hash
            if delay > 0:
                await asyncio.sleep(delay)
        raise SimulationRejected("simulation attempts exhausted")  # pragma: no cover

    async def _find_landed(self, attempts: list[TxAttempt]) -> TxReceipt | None:
        for attempt in reversed(attempts):
            receipt = await asyncio.to_thread(self.chain.get_receipt, attempt.tx_hash)
            if receipt is not None:
                return receipt
        return None
