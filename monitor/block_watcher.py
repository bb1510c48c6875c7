"""Head-height poller feeding block ticks into the engine queue."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import config
from trading.models import BlockTick

logger = logging.getLogger(__name__)


class BlockWatcher:
    """Emits a tick for each newly observed head. Heights may jump under load."""

    def __init__(self, chain: Any) -> None:
        self.chain = chain
        self.last_height = 0
        self.error_streak = 0

    async def poll_once(self) -> BlockTick | None:
        height = int(await asyncio.to_thread(self.chain.current_height))
        if height <= self.last_height:
            return None
        if self.last_height and height > self.last_height + 1:
            logger.debug("BLOCK_SKIP from=%s to=%s", self.last_height, height)
        self.last_height = height
        return BlockTick(height=height)

    async def run(self, queue: asyncio.Queue, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                tick = await self.poll_once()
                self.error_streak = 0
                if tick is not None:
                    await queue.put(tick)
            except Exception as exc:
                self.error_streak += 1
                # Transient BlockNotFound-style errors are common on fresh heads.
                log = logger.warning if self.error_streak >= 3 else logger.debug
                log("BLOCK_WATCH error streak=%s err=%s", self.error_streak, exc)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=float(config.ONCHAIN_POLL_INTERVAL_SECONDS))
            except asyncio.TimeoutError:
                pass
