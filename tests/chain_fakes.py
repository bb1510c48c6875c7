"""In-memory chain double shared by the engine tests."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import config
from trading.errors import ConfirmationTimeout, SimulationRejected, TransientQuoteUnavailable
from trading.models import (
    ACTION_APPROVE,
    ACTION_GRADUATE,
    ACTION_SELL,
    ExecutionIntent,
    FeeBid,
    SimulatedRequest,
    TxReceipt,
)

WALLET = "0x00000000000000000000000000000000000000aa"
TOKEN = "0x1111111111111111111111111111111111111111"
CURVE = "0x2222222222222222222222222222222222222222"
TOKEN_B = "0x3333333333333333333333333333333333333333"
CURVE_B = "0x4444444444444444444444444444444444444444"


@dataclass
class SentTx:
    intent: ExecutionIntent
    nonce: int
    fee_bid: FeeBid
    tx_hash: str


def _next(value: Any) -> Any:
    """Scripted reads: a list yields its items in order and then repeats the last one."""
    if isinstance(value, list):
        return value.pop(0) if len(value) > 1 else value[0]
    if callable(value):
        return value()
    return value


def tx_hash_for(index: int) -> str:
    return f"0x{index:064x}"


class FakeChain:
    def __init__(self) -> None:
        self.wallet = WALLET
        self.height = 100
        self.balances: dict[str, Any] = {}
        self.allowances: dict[tuple[str, str], int] = {}
        self.sell_quotes: dict[str, Any] = {}
        self.buy_quotes: dict[str, Any] = {}
        self.fee = FeeBid(priority_fee=100, max_fee=1_000)
        self.gas_estimate: int | Exception = 100_000
        self.sim_gas = 100_000
        # Upcoming simulate() calls to reject before accepting.
        self.sim_rejections = 0
        self.reject_actions: set[str] = set()
        self.revert_actions: set[str] = set()
        # Upcoming await_confirmation() calls that time out.
        self.timeouts = 0
        # Per-send outcome script; None means the send goes through.
        self.send_errors: list[Exception | None] = []
        self.landed: dict[str, TxReceipt] = {}
        self.graduated: dict[str, bool] = {}
        self.graduatable: dict[str, bool | None] = {}
        self.progress: dict[str, int | None] = {}
        self.gas_used = 100_000
        self.effective_gas_price = 2_000
        self.next_nonce = 7
        # Seconds each simulate() and send() call blocks its worker thread.
        self.latency = 0.0
        self.curve_tokens = {CURVE: TOKEN, CURVE_B: TOKEN_B}

        self.sends: list[SentTx] = []
        self.simulations: list[ExecutionIntent] = []
        self.calls: list[tuple[str, str, int]] = []
        self.balance_reads = 0

    # Reads

    def current_height(self) -> int:
        return int(_next(self.height))

    def provider_heights(self) -> dict[str, int]:
        return {"primary": int(self.height)}

    def get_balance(self, owner: str, asset: str) -> int:
        self.balance_reads += 1
        return int(_next(self.balances.get(asset.lower(), 0)))

    def get_allowance(self, owner: str, spender: str, asset: str) -> int:
        return int(self.allowances.get((asset.lower(), spender.lower()), 0))

    def quote_sell_proceeds(self, venue: str, amount: int) -> int:
        quote = self.sell_quotes.get(venue.lower())
        if quote is None:
            raise TransientQuoteUnavailable("no quote")
        return int(_next(quote))

    def quote_buy_output(self, venue: str, amount: int) -> int:
        quote = self.buy_quotes.get(venue.lower())
        if quote is None:
            raise TransientQuoteUnavailable("no quote")
        return int(_next(quote))

    def is_graduated(self, venue: str) -> bool:
        return bool(self.graduated.get(venue.lower(), False))

    def is_eligible_for_graduation(self, venue: str) -> bool | None:
        return self.graduatable.get(venue.lower())

    def graduation_progress(self, venue: str) -> int | None:
        return self.progress.get(venue.lower())

    def current_fee_quote(self) -> FeeBid:
        return self.fee

    def get_receipt(self, tx_hash: str) -> TxReceipt | None:
        return self.landed.get(tx_hash)

    # Writes

    def estimate_gas(self, intent: ExecutionIntent) -> int:
        if isinstance(self.gas_estimate, Exception):
            raise self.gas_estimate
        return int(self.gas_estimate)

    def simulate(self, intent: ExecutionIntent) -> SimulatedRequest:
        time.sleep(self.latency)
        self.simulations.append(intent)
        if self.sim_rejections > 0:
            self.sim_rejections -= 1
            raise SimulationRejected("not tradeable yet")
        if intent.action in self.reject_actions:
            raise SimulationRejected(f"{intent.action} reverted in simulation")
        return SimulatedRequest(intent=intent, nonce=self.pending_nonce(), gas=self.sim_gas)

    def send(self, request: SimulatedRequest, fee_bid: FeeBid) -> str:
        self.calls.append(("send", request.intent.action, int(request.intent.amount)))
        time.sleep(self.latency)
        if self.send_errors:
            err = self.send_errors.pop(0)
            if err is not None:
                raise err
        tx_hash = tx_hash_for(len(self.sends) + 1)
        self.sends.append(SentTx(request.intent, request.nonce, fee_bid, tx_hash))
        return tx_hash

    def pending_nonce(self) -> int:
        """Mined count plus transactions sitting in the mempool, like the node's "pending" count."""
        sent = [s.nonce + 1 for s in self.sends]
        return max([self.next_nonce, *sent])

    def await_confirmation(self, tx_hash: str, timeout: float) -> TxReceipt:
        sent = next(s for s in self.sends if s.tx_hash == tx_hash)
        self.calls.append(("wait", sent.intent.action, int(sent.intent.amount)))
        if self.timeouts > 0:
            self.timeouts -= 1
            raise ConfirmationTimeout(f"no receipt for {tx_hash}")
        ok = sent.intent.action not in self.revert_actions
        if ok:
            self._apply(sent.intent)
        self.next_nonce = max(self.next_nonce, sent.nonce + 1)
        return TxReceipt(
            tx_hash=tx_hash,
            status=1 if ok else 0,
            block_number=int(self.height),
            gas_used=self.gas_used,
            effective_gas_price=self.effective_gas_price,
        )

    def _apply(self, intent: ExecutionIntent) -> None:
        if intent.action == ACTION_APPROVE:
            self.allowances[(intent.venue_id.lower(), intent.spender.lower())] = int(intent.amount)
        elif intent.action == ACTION_SELL:
            asset = self.curve_tokens.get(intent.venue_id.lower(), "")
            balance = self.balances.get(asset)
            if isinstance(balance, int):
                self.balances[asset] = max(0, balance - int(intent.amount))
        elif intent.action == ACTION_GRADUATE:
            self.graduated[intent.venue_id.lower()] = True

    def sent_actions(self) -> list[str]:
        return [s.intent.action for s in self.sends]

    def nonces_by_intent(self) -> dict[ExecutionIntent, set[int]]:
        out: dict[ExecutionIntent, set[int]] = {}
        for s in self.sends:
            out.setdefault(s.intent, set()).add(s.nonce)
        return out


class ConfigPatchMixin:
    def setUp(self) -> None:
        super().setUp()
        self._cfg_old: dict[str, object] = {}

    def patch_cfg(self, **kwargs: object) -> None:
        for key, value in kwargs.items():
            if key not in self._cfg_old:
                self._cfg_old[key] = getattr(config, key, None)
            setattr(config, key, value)

    def patch_execution_defaults(self) -> None:
        self.patch_cfg(
            GAS_BUMP_BPS=2000,
            TX_CONFIRM_TIMEOUT_SECONDS=1.0,
            MAX_REPLACEMENTS=3,
            SLIPPAGE_BPS=300,
            SELL_TAKE_PROFIT_BPS=400,
            SELL_HARD_STOP_BPS=500,
            SELL_MIN_HOLD_BLOCKS=2,
            MIN_PROFIT_WEI=0,
            SELL_GAS_FALLBACK=120_000,
            BUY_RANDOMIZE_BPS=0,
            BUY_PURCHASE_AMOUNT_WEI=10**18,
            BUY_SIMULATE_ATTEMPTS=1,
            BUY_SIMULATE_RETRY_DELAY_SECONDS=0.0,
            BUY_GAS_FALLBACK=110_000,
            APPROVE_SELL_COST_WEI=22 * 10**16,
            MAX_RT_GAS_SHARE_BPS=3500,
            GRADUATION_JITTER_MAX_MS=0,
        )

    def tearDown(self) -> None:
        for key, value in self._cfg_old.items():
            setattr(config, key, value)
        super().tearDown()
