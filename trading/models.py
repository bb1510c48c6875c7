"""Value types shared by the execution path and the event loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

MAX_UINT256 = (1 << 256) - 1
BPS_DENOM = 10_000

ACTION_BUY = "buy"
ACTION_SELL = "sell"
ACTION_GRADUATE = "graduate"
ACTION_APPROVE = "approve"
ACTIONS = {ACTION_BUY, ACTION_SELL, ACTION_GRADUATE, ACTION_APPROVE}

STATUS_CONFIRMED = "confirmed"
STATUS_REVERTED = "reverted"
STATUS_EXHAUSTED = "exhausted"
STATUS_SKIPPED = "skipped"


def bump_fee(value: int, bump_bps: int) -> int:
    """Raise a fee component by bump_bps; always at least one wei higher."""
    value = int(value)
    return max(value + 1, value + (value * int(bump_bps)) // BPS_DENOM)


@dataclass(frozen=True)
class FeeBid:
    priority_fee: int
    max_fee: int

    def bumped(self, bump_bps: int) -> "FeeBid":
        priority = bump_fee(self.priority_fee, bump_bps)
        max_fee = bump_fee(self.max_fee, bump_bps)
        # A max fee below the tip is rejected by EIP-1559 nodes.
        return FeeBid(priority_fee=priority, max_fee=max(max_fee, priority))


@dataclass(frozen=True)
class ExecutionIntent:
    venue_id: str
    action: str
    amount: int = 0
    limit: int = 0
    spender: str = ""

    def __post_init__(self) -> None:
        if self.action not in ACTIONS:
            raise ValueError(f"unknown action: {self.action}")
        if int(self.amount) < 0 or int(self.limit) < 0:
            raise ValueError("amount and limit must be non-negative")


@dataclass
class SimulatedRequest:
    intent: ExecutionIntent
    nonce: int
    gas: int
    tx: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TxAttempt:
    tx_hash: str
    fee_bid: FeeBid
    nonce: int


@dataclass(frozen=True)
class TxReceipt:
    tx_hash: str
    status: int
    block_number: int
    gas_used: int = 0
    effective_gas_price: int = 0

    @property
    def succeeded(self) -> bool:
        return int(self.status) == 1

    @property
    def fee_paid(self) -> int:
        return int(self.gas_used) * int(self.effective_gas_price)


@dataclass
class ExecutionResult:
    intent: ExecutionIntent
    status: str
    receipt: TxReceipt | None = None
    attempts: list[TxAttempt] = field(default_factory=list)
    detail: str = ""

    @property
    def confirmed(self) -> bool:
        return self.status == STATUS_CONFIRMED and self.receipt is not None and self.receipt.succeeded

    @property
    def sent(self) -> bool:
        return bool(self.attempts)


@dataclass(frozen=True)
class AssetDiscovered:
    asset_id: str
    venue_id: str
    height: int = 0
    symbol: str = ""
    backfill: bool = False


@dataclass(frozen=True)
class BlockTick:
    height: int
