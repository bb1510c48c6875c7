"""Watch tracked curves and claim graduation once they are eligible."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any

import config
from trading.errors import ChainActionError, SimulationRejected
from trading.execution import ExecutionProtocol
from trading.inflight import InFlightGuard
from trading.models import ACTION_GRADUATE, BPS_DENOM, ExecutionIntent
from utils.addressing import normalize_address, short_address

logger = logging.getLogger(__name__)


@dataclass
class TrackedCurve:
    venue_id: str
    asset_id: str
    graduated: bool = False


class GraduationWatcher:
    def __init__(
        self,
        chain: Any,
        guard: InFlightGuard,
        protocol: ExecutionProtocol,
        rng: random.Random | None = None,
    ) -> None:
        self.chain = chain
        self.guard = guard
        self.protocol = protocol
        self.curves: dict[str, TrackedCurve] = {}
        self._rng = rng or random.Random()

    def track(self, venue_id: str, asset_id: str) -> bool:
        key = normalize_address(venue_id)
        if not key or key in self.curves:
            return False
        self.curves[key] = TrackedCurve(venue_id=venue_id, asset_id=asset_id)
        return True

    def pending(self) -> list[TrackedCurve]:
        return [c for c in self.curves.values() if not c.graduated]

    async def eligibility(self, venue_id: str) -> tuple[bool, int]:
        """(eligible, progress_bps). The boolean flag wins over the progress value."""
        flag = await asyncio.to_thread(self.chain.is_eligible_for_graduation, venue_id)
        if flag:
            return True, BPS_DENOM
        progress = await asyncio.to_thread(self.chain.graduation_progress, venue_id)
        if progress is None:
            return False, 0
        return int(progress) >= BPS_DENOM, int(progress)

    async def run_pass(self) -> None:
        for curve in self.pending():
            if self.guard.is_held(curve.asset_id):
                continue
            try:
                await self.check_curve(curve)
            except Exception as exc:
                logger.error(
                    "GRAD_ERROR curve=%s err=%s",
                    short_address(curve.venue_id),
                    exc,
                    exc_info=not isinstance(exc, ChainActionError),
                )

    async def check_curve(self, curve: TrackedCurve) -> bool:
        if await asyncio.to_thread(self.chain.is_graduated, curve.venue_id):
            curve.graduated = True
            logger.info("GRAD_DONE curve=%s source=onchain_flag", short_address(curve.venue_id))
            return False

        eligible, progress = await self.eligibility(curve.venue_id)
        if not eligible:
            return False

        with self.guard.acquired(curve.asset_id) as got:
            if not got:
                return False
            logger.info(
                "GRAD_ATTEMPT curve=%s token=%s progress_bps=%s",
                short_address(curve.venue_id),
                short_address(curve.asset_id),
                progress,
            )
            # Desync from other bots racing the same claim on a block edge.
            jitter_max = int(config.GRADUATION_JITTER_MAX_MS)
            if jitter_max > 0:
                await asyncio.sleep(self._rng.randint(1, jitter_max) / 1000.0)
            try:
                result = await self.protocol.execute(ExecutionIntent(venue_id=curve.venue_id, action=ACTION_GRADUATE))
            except SimulationRejected as exc:
                logger.info("GRAD_SKIP curve=%s reason=simulation_rejected err=%s", short_address(curve.venue_id), exc)
                return False
            if result.confirmed:
                curve.graduated = True
                logger.info(
                    "GRAD_CONFIRMED curve=%s tx=%s",
                    short_address(curve.venue_id),
                    result.receipt.tx_hash if result.receipt else "",
                )
                return True
            logger.warning(
                "GRAD_FAILED curve=%s status=%s attempts=%s",
                short_address(curve.venue_id),
                result.status,
                len(result.attempts),
            )
            return False
