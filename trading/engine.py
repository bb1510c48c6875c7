"""Event-driven orchestrator: discovery and block ticks in, buys/sells/graduations out."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import config
from trading.allowance import AllowanceManager
from trading.buyer import CurveBuyer
from trading.errors import ChainActionError
from trading.execution import ExecutionProtocol
from trading.graduation import GraduationWatcher
from trading.inflight import InFlightGuard
from trading.models import AssetDiscovered, BlockTick
from trading.positions import Position, PositionLedger
from trading.seller import PositionSeller
from utils.addressing import normalize_address, short_address

logger = logging.getLogger(__name__)


class TradingEngine:
    """Owns the ledger and the in-flight guard for the lifetime of the process.

    Messages are consumed from one queue; each handler runs as its own task so a
    handler parked on a confirmation wait does not hold back the next block.
    The guard keeps those overlapping handlers off the same asset.
    """

    def __init__(
        self,
        chain: Any,
        *,
        ledger: PositionLedger | None = None,
        guard: InFlightGuard | None = None,
    ) -> None:
        self.chain = chain
        self.ledger = ledger or PositionLedger()
        self.guard = guard or InFlightGuard()
        self.protocol = ExecutionProtocol(chain)
        self.allowances = AllowanceManager(chain, self.protocol)
        self.seller = PositionSeller(chain, self.ledger, self.guard, self.protocol, self.allowances)
        self.buyer = CurveBuyer(chain, self.ledger, self.protocol)
        self.graduation = GraduationWatcher(chain, self.guard, self.protocol)
        self.untracked_holdings: dict[str, int] = {}
        self.last_height = 0
        self._seen_assets: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

    def open_positions(self) -> list[Position]:
        return self.ledger.all()

    async def on_asset_discovered(
        self,
        asset_id: str,
        venue_id: str,
        *,
        height: int = 0,
        symbol: str = "",
        backfill: bool = False,
    ) -> Position | None:
        key = normalize_address(asset_id)
        if not key or key in self._seen_assets:
            return None
        self._seen_assets.add(key)
        self.graduation.track(venue_id, asset_id)
        logger.info(
            "CURVE_DISCOVERED token=%s curve=%s symbol=%s block=%s backfill=%s",
            key,
            normalize_address(venue_id),
            symbol or "?",
            height,
            backfill,
        )

        try:
            if backfill:
                await self._note_existing_holding(asset_id)
                return None
            if not bool(config.BUY_ENABLED):
                return None
            with self.guard.acquired(asset_id) as got:
                if not got:
                    return None
                return await self.buyer.buy(asset_id, venue_id, symbol)
        except Exception as exc:
            logger.error(
                "BUY_ERROR token=%s err=%s",
                short_address(asset_id),
                exc,
                exc_info=not isinstance(exc, ChainActionError),
            )
            return None

    async def on_block(self, height: int) -> None:
        height = int(height)
        if height <= self.last_height:
            return
        self.last_height = height
        jobs = []
        if bool(config.SELL_ENABLED):
            jobs.append(self.seller.run_pass(height))
        if bool(config.GRADUATION_ENABLED):
            jobs.append(self.graduation.run_pass())
        if jobs:
            await asyncio.gather(*jobs)

    async def _note_existing_holding(self, asset_id: str) -> None:
        if asset_id in self.ledger:
            return
        balance = int(await asyncio.to_thread(self.chain.get_balance, self.chain.wallet, asset_id))
        if balance > 0:
            # Cost basis is unknown, so the position is not managed by the exit policy.
            self.untracked_holdings[normalize_address(asset_id)] = balance
            logger.warning("RECOVERY untracked_detected token=%s amount_raw=%s", normalize_address(asset_id), balance)

    async def handle(self, message: AssetDiscovered | BlockTick) -> None:
        if isinstance(message, BlockTick):
            await self.on_block(message.height)
        elif isinstance(message, AssetDiscovered):
            await self.on_asset_discovered(
                message.asset_id,
                message.venue_id,
                height=message.height,
                symbol=message.symbol,
                backfill=message.backfill,
            )
        else:
            logger.warning("ENGINE unknown_message type=%s", type(message).__name__)

    def dispatch(self, message: AssetDiscovered | BlockTick) -> asyncio.Task:
        task = asyncio.create_task(self.handle(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run(self, queue: asyncio.Queue, stop_event: asyncio.Event) -> None:
        logger.info("ENGINE started")
        while not stop_event.is_set():
            try:
                message = await asyncio.wait_for(queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            self.dispatch(message)
            queue.task_done()
        await self.drain()
        self.shutdown()

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def shutdown(self) -> None:
        logger.info(
            "ENGINE_SHUTDOWN open=%s tracked_curves=%s untracked=%s",
            len(self.ledger),
            len(self.graduation.curves),
            len(self.untracked_holdings),
        )
        self.ledger.clear()
        self.guard.clear()
