"""In-memory ledger of open curve positions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from utils.addressing import normalize_address

logger = logging.getLogger(__name__)


@dataclass
class Position:
    asset_id: str
    venue_id: str
    # Total native spent on the asset, buy gas included.
    total_cost_basis: int
    # Earliest height the position was opened at (min-hold gate).
    first_seen_height: int


class PositionLedger:
    """Advisory record of held assets, keyed by lowercased asset address.

    The wallet balance is the source of truth; callers re-read it before
    acting and drop the entry when it reads zero. Mutations come from the
    engine's event loop only, so there is no internal locking. ``all()``
    hands out copies that stay valid while the ledger changes.
    """

    def __init__(self) -> None:
        self._positions: dict[str, Position] = {}

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, asset_id: object) -> bool:
        return normalize_address(str(asset_id)) in self._positions

    def upsert(self, position: Position) -> None:
        self._positions[normalize_address(position.asset_id)] = position

    def get(self, asset_id: str) -> Position | None:
        return self._positions.get(normalize_address(asset_id))

    def all(self) -> list[Position]:
        return [replace(p) for p in self._positions.values()]

    def remove(self, asset_id: str) -> Position | None:
        return self._positions.pop(normalize_address(asset_id), None)

    def clear(self) -> None:
        self._positions.clear()

    def record_entry(self, asset_id: str, venue_id: str, cost_delta: int, height: int) -> Position:
        """Record a buy fill. Repeated fills accumulate cost and keep the earliest height."""
        cost_delta = int(cost_delta)
        if cost_delta < 0:
            raise ValueError("cost_delta must be non-negative")
        key = normalize_address(asset_id)
        existing = self._positions.get(key)
        if existing is not None:
            existing.total_cost_basis += cost_delta
            existing.first_seen_height = min(existing.first_seen_height, int(height))
            # Curve may have migrated.
            existing.venue_id = venue_id
            return existing
        position = Position(
            asset_id=asset_id,
            venue_id=venue_id,
            total_cost_basis=cost_delta,
            first_seen_height=int(height),
        )
        self._positions[key] = position
        logger.debug("LEDGER open asset=%s venue=%s cost=%s height=%s", key, venue_id, cost_delta, height)
        return position
