"""web3-backed chain client for bonding-curve venues (reads, simulate, send, confirm)."""

from __future__ import annotations

import re
from typing import Any

from eth_account import Account
from web3 import HTTPProvider, Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

import config
from trading.errors import (
    BalanceChanged,
    ChainWriteError,
    ConfirmationTimeout,
    InsufficientAllowance,
    NonceAlreadyUsed,
    SimulationRejected,
    TransientQuoteUnavailable,
)
from trading.models import (
    ACTION_APPROVE,
    ACTION_BUY,
    ACTION_GRADUATE,
    ACTION_SELL,
    BPS_DENOM,
    ExecutionIntent,
    FeeBid,
    SimulatedRequest,
    TxReceipt,
)

PRIVATE_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

ERC20_ABI: list[dict[str, Any]] = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "spender", "type": "address"}, {"name": "value", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
]


BONDING_CURVE_ABI: list[dict[str, Any]] = [
    {
        "name": "previewBuyTokens",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "ethAmount", "type": "uint256"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "previewSellTokens",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "tokenAmount", "type": "uint256"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "buyTokens",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [{"name": "minTokensOut", "type": "uint256"}],
        "outputs": [],
    },
    {
        "name": "sellTokens",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "tokenAmount", "type": "uint256"}, {"name": "minEthOut", "type": "uint256"}],
        "outputs": [],
    },
    # Not every curve exposes all three graduation views.
    {"name": "isGraduatable", "type": "function", "stateMutability": "view", "inputs": [], "outputs": [{"name": "", "type": "bool"}]},
    {"name": "graduated", "type": "function", "stateMutability": "view", "inputs": [], "outputs": [{"name": "", "type": "bool"}]},
    {"name": "progressBps", "type": "function", "stateMutability": "view", "inputs": [], "outputs": [{"name": "", "type": "uint256"}]},
    {"name": "graduate", "type": "function", "stateMutability": "nonpayable", "inputs": [], "outputs": []},
]


def classify_send_error(exc: Exception) -> Exception:
    """Map a node rejection onto the typed failure kinds the engine reacts to."""
    text = str(exc).lower()
    if "insufficient allowance" in text or "exceeds allowance" in text:
        return InsufficientAllowance(str(exc))
    if "exceeds balance" in text:
        return BalanceChanged(str(exc))
    if "nonce too low" in text:
        return NonceAlreadyUsed(str(exc))
    if isinstance(exc, ContractLogicError) or "execution reverted" in text:
        return SimulationRejected(str(exc))
    return ChainWriteError(str(exc))


class CurveChainClient:
    def __init__(self) -> None:
        if not config.LIVE_PRIVATE_KEY:
            raise ValueError("LIVE_PRIVATE_KEY is empty")
        if not PRIVATE_KEY_RE.match(config.LIVE_PRIVATE_KEY):
            raise ValueError("LIVE_PRIVATE_KEY must be 0x + 64 hex chars")

        self.providers = [p for p in [config.RPC_PRIMARY, config.RPC_SECONDARY] if p]
        if not self.providers:
            raise ValueError("RPC_PRIMARY/RPC_SECONDARY is empty")

        self.w3 = self._build_web3(self.providers[0])
        if not self.w3.is_connected():
            raise ValueError("Web3 not connected")

        self.account = Account.from_key(config.LIVE_PRIVATE_KEY)
        self.wallet = self.account.address
        if config.LIVE_WALLET_ADDRESS and self.account.address.lower() != config.LIVE_WALLET_ADDRESS.lower():
            raise ValueError("LIVE_WALLET_ADDRESS does not match LIVE_PRIVATE_KEY")
        # Next nonce this process will sign; the node's pending count can lag a just-sent tx.
        self._next_nonce = 0

    @staticmethod
    def _build_web3(url: str) -> Web3:
        return Web3(HTTPProvider(url, request_kwargs={"timeout": config.RPC_TIMEOUT_SECONDS}))

    def provider_heights(self) -> dict[str, int]:
        """Head height per configured RPC; unreachable providers are left out."""
        out: dict[str, int] = {}
        for url in self.providers:
            try:
                out[url] = int(self._build_web3(url).eth.block_number)
            except Exception:
                continue
        return out

    def _token(self, address: str) -> Contract:
        return self.w3.eth.contract(address=self.w3.to_checksum_address(address), abi=ERC20_ABI)

    def _curve(self, address: str) -> Contract:
        return self.w3.eth.contract(address=self.w3.to_checksum_address(address), abi=BONDING_CURVE_ABI)

    # Reads

    def current_height(self) -> int:
        return int(self.w3.eth.block_number)

    def get_balance(self, owner: str, asset: str) -> int:
        return int(self._token(asset).functions.balanceOf(self.w3.to_checksum_address(owner)).call())

    def get_allowance(self, owner: str, spender: str, asset: str) -> int:
        return int(
            self._token(asset)
            .functions.allowance(self.w3.to_checksum_address(owner), self.w3.to_checksum_address(spender))
            .call()
        )

    def quote_sell_proceeds(self, venue: str, amount: int) -> int:
        try:
            return int(self._curve(venue).functions.previewSellTokens(int(amount)).call())
        except Exception as exc:
            raise TransientQuoteUnavailable(f"previewSellTokens unavailable: {exc}") from exc

    def quote_buy_output(self, venue: str, amount: int) -> int:
        try:
            return int(self._curve(venue).functions.previewBuyTokens(int(amount)).call())
        except Exception as exc:
            raise TransientQuoteUnavailable(f"previewBuyTokens unavailable: {exc}") from exc

    def is_graduated(self, venue: str) -> bool:
        try:
            return bool(self._curve(venue).functions.graduated().call())
        except Exception:
            return False

    def is_eligible_for_graduation(self, venue: str) -> bool | None:
        try:
            return bool(self._curve(venue).functions.isGraduatable().call())
        except Exception:
            return None

    def graduation_progress(self, venue: str) -> int | None:
        try:
            return int(self._curve(venue).functions.progressBps().call())
        except Exception:
            return None

    def current_fee_quote(self) -> FeeBid:
        latest = self.w3.eth.get_block("latest")
        base_fee = int(latest.get("baseFeePerGas") or 0)
        gas_price = int(self.w3.eth.gas_price or 0)
        try:
            priority = int(self.w3.eth.max_priority_fee)
        except Exception:
            priority = max(0, gas_price - base_fee)
        # Keep max fee >= observed gas price so the tx isn't immediately underpriced.
        max_fee = max(gas_price, (base_fee * 2) + priority)
        return FeeBid(priority_fee=priority, max_fee=max(max_fee, priority))

    def get_receipt(self, tx_hash: str) -> TxReceipt | None:
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        if receipt is None:
            return None
        return self._to_receipt(tx_hash, receipt)

    # Writes

    def _call_for(self, intent: ExecutionIntent) -> tuple[Any, int]:
        if intent.action == ACTION_BUY:
            return self._curve(intent.venue_id).functions.buyTokens(int(intent.limit)), int(intent.amount)
        if intent.action == ACTION_SELL:
            return self._curve(intent.venue_id).functions.sellTokens(int(intent.amount), int(intent.limit)), 0
        if intent.action == ACTION_GRADUATE:
            return self._curve(intent.venue_id).functions.graduate(), 0
        if intent.action == ACTION_APPROVE:
            spender = self.w3.to_checksum_address(intent.spender)
            return self._token(intent.venue_id).functions.approve(spender, int(intent.amount)), 0
        raise ValueError(f"unsupported action: {intent.action}")

    def _call_params(self, value: int) -> dict[str, Any]:
        params: dict[str, Any] = {"from": self.wallet}
        if value > 0:
            params["value"] = int(value)
        return params

    def estimate_gas(self, intent: ExecutionIntent) -> int:
        fn, value = self._call_for(intent)
        return int(fn.estimate_gas(self._call_params(value)))

    def simulate(self, intent: ExecutionIntent) -> SimulatedRequest:
        fn, value = self._call_for(intent)
        params = self._call_params(value)
        try:
            fn.call(params)
            gas = int(fn.estimate_gas(params))
        except Exception as exc:
            err = classify_send_error(exc)
            if isinstance(err, ChainWriteError):
                raise SimulationRejected(str(exc)) from exc
            raise err from exc

        gas_limit = (gas * (BPS_DENOM + int(config.GAS_LIMIT_BUFFER_BPS))) // BPS_DENOM
        pending = int(self.w3.eth.get_transaction_count(self.wallet, "pending"))
        nonce = max(pending, self._next_nonce)
        tx = fn.build_transaction(
            {
                **params,
                "nonce": nonce,
                "gas": gas_limit,
                "chainId": int(config.LIVE_CHAIN_ID),
                # Placeholders so build_transaction does not query fees; send() sets the real bid.
                "maxFeePerGas": 1,
                "maxPriorityFeePerGas": 1,
            }
        )
        return SimulatedRequest(intent=intent, nonce=nonce, gas=gas_limit, tx=dict(tx))

    def send(self, request: SimulatedRequest, fee_bid: FeeBid) -> str:
        tx = dict(request.tx)
        tx.pop("gasPrice", None)
        tx.update(
            {
                "nonce": int(request.nonce),
                "maxFeePerGas": int(fee_bid.max_fee),
                "maxPriorityFeePerGas": min(int(fee_bid.priority_fee), int(fee_bid.max_fee)),
                "type": 2,
            }
        )

        # Preflight: ensure we can afford worst-case maxFeePerGas * gas_limit + value.
        bal = int(self.w3.eth.get_balance(self.wallet))
        worst_cost = int(tx.get("gas") or request.gas) * int(fee_bid.max_fee) + int(tx.get("value") or 0)
        if worst_cost > bal:
            raise ChainWriteError(f"insufficient_balance_for_tx have_wei={bal} want_wei={worst_cost}")

        signed = self.account.sign_transaction(tx)
        raw_tx = getattr(signed, "raw_transaction", None)
        if raw_tx is None:
            raw_tx = getattr(signed, "rawTransaction", None)
        if raw_tx is None:
            raise ChainWriteError("signed_tx_missing_raw_bytes")
        try:
            tx_hash = self.w3.eth.send_raw_transaction(raw_tx)
        except Exception as exc:
            raise classify_send_error(exc) from exc
        self._next_nonce = max(self._next_nonce, int(request.nonce) + 1)
        return Web3.to_hex(tx_hash)

    def await_confirmation(self, tx_hash: str, timeout: float) -> TxReceipt:
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=float(timeout), poll_latency=0.5)
        except TimeExhausted as exc:
            raise ConfirmationTimeout(f"no receipt for {tx_hash} within {timeout}s") from exc
        return self._to_receipt(tx_hash, receipt)

    @staticmethod
    def _to_receipt(tx_hash: str, receipt: Any) -> TxReceipt:
        return TxReceipt(
            tx_hash=tx_hash,
            status=int(receipt.get("status", 0)),
            block_number=int(receipt.get("blockNumber") or 0),
            gas_used=int(receipt.get("gasUsed") or 0),
            effective_gas_price=int(receipt.get("effectiveGasPrice") or 0),
        )
