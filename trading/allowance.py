"""Spender authorization before sells."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from trading.errors import AllowanceConfirmationFailed, ChainActionError
from trading.execution import ExecutionProtocol
from trading.models import ACTION_APPROVE, MAX_UINT256, ExecutionIntent
from utils.addressing import short_address

logger = logging.getLogger(__name__)


class AllowanceManager:
    def __init__(self, chain: Any, protocol: ExecutionProtocol) -> None:
        self.chain = chain
        self.protocol = protocol

    async def ensure_allowance(self, owner: str, spender: str, asset: str, required_amount: int) -> None:
        """Make sure ``spender`` may move ``required_amount`` of ``asset`` for ``owner``.

        Tokens that refuse a non-zero -> non-zero change are reset to zero first,
        and the reset must confirm before the max approval is sent. Raises
        AllowanceConfirmationFailed when any step does not confirm.
        """
        current = int(await asyncio.to_thread(self.chain.get_allowance, owner, spender, asset))
        if current >= int(required_amount):
            return

        if current > 0:
            logger.info(
                "ALLOWANCE reset_to_zero token=%s spender=%s current=%s required=%s",
                short_address(asset),
                short_address(spender),
                current,
                required_amount,
            )
            await self._approve(asset, spender, 0)

        logger.info("ALLOWANCE approve_max token=%s spender=%s", short_address(asset), short_address(spender))
        await self._approve(asset, spender, MAX_UINT256)

    async def _approve(self, asset: str, spender: str, amount: int) -> None:
        intent = ExecutionIntent(venue_id=asset, action=ACTION_APPROVE, amount=amount, spender=spender)
        try:
            result = await self.protocol.execute(intent)
        except ChainActionError as exc:
            raise AllowanceConfirmationFailed(f"approve({amount}) failed: {exc}") from exc
        if not result.confirmed:
            raise AllowanceConfirmationFailed(
                f"approve({amount}) not confirmed status={result.status} attempts={len(result.attempts)}"
            )
