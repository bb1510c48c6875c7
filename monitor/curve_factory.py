"""On-chain bonding-curve factory monitor (creation events -> discovery messages)."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import replace
from typing import Any, Callable

from web3 import HTTPProvider, Web3

import config
from trading.models import AssetDiscovered
from utils.addressing import is_address, normalize_address

logger = logging.getLogger(__name__)


class OnChainRPCError(RuntimeError):
    """Raised when RPC operations fail after retries."""


FACTORY_EVENTS_ABI: list[dict[str, Any]] = [
    {
        "type": "event",
        "name": "BondingSystemCreated",
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "token", "type": "address"},
            {"indexed": True, "name": "bondingCurve", "type": "address"},
            {"indexed": False, "name": "tokenDetails", "type": "string"},
            {"indexed": False, "name": "totalSupply", "type": "uint256"},
            {"indexed": False, "name": "devPurchaseETH", "type": "uint256"},
            {"indexed": False, "name": "isHypedLaunch", "type": "bool"},
        ],
    },
    {
        "type": "event",
        "name": "CurveCreated",
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "curve", "type": "address"},
            {"indexed": True, "name": "token", "type": "address"},
            {"indexed": True, "name": "creator", "type": "address"},
        ],
    },
]


def event_topic(name: str) -> str:
    for item in FACTORY_EVENTS_ABI:
        if item["name"] == name:
            types = ",".join(i["type"] for i in item["inputs"])
            return Web3.to_hex(Web3.keccak(text=f"{name}({types})")).lower()
    raise ValueError(f"unknown factory event: {name}")


def parse_token_symbol(token_details: Any) -> str:
    """tokenDetails is a JSON blob like {"symbol": "...", "name": "..."}; tolerate junk."""
    try:
        payload = json.loads(str(token_details or ""))
    except (TypeError, ValueError):
        return ""
    if not isinstance(payload, dict):
        return ""
    return str(payload.get("symbol") or "").strip()


def discovery_from_args(event_name: str, args: dict[str, Any], height: int, backfill: bool) -> AssetDiscovered | None:
    if event_name == "BondingSystemCreated":
        token = normalize_address(args.get("token"))
        curve = normalize_address(args.get("bondingCurve"))
        symbol = parse_token_symbol(args.get("tokenDetails"))
    elif event_name == "CurveCreated":
        token = normalize_address(args.get("token"))
        curve = normalize_address(args.get("curve"))
        symbol = ""
    else:
        return None
    if not is_address(token) or not is_address(curve):
        return None
    return AssetDiscovered(asset_id=token, venue_id=curve, height=int(height), symbol=symbol, backfill=backfill)


class CurveFactoryMonitor:
    def __init__(self) -> None:
        self.factory_address = normalize_address(config.CURVE_FACTORY_ADDRESS)
        self.event_name = str(config.CURVE_FACTORY_EVENT or "BondingSystemCreated").strip()
        self.topic = event_topic(self.event_name)
        self.providers = [p for p in [config.RPC_PRIMARY, config.RPC_SECONDARY] if p]
        self.provider_index = 0
        self.web3 = self._build_web3()
        self.last_processed_block: int | None = None
        self._backfill_to: int | None = None
        self._next_block = 0
        self.seen_curves: set[str] = set()

    def _build_web3(self) -> Web3:
        if not self.providers:
            raise OnChainRPCError("RPC_PRIMARY/RPC_SECONDARY are not configured for on-chain source.")
        provider = self.providers[self.provider_index]
        return Web3(
            HTTPProvider(
                provider,
                request_kwargs={"timeout": config.RPC_TIMEOUT_SECONDS},
            )
        )

    def _rotate_provider(self) -> None:
        if len(self.providers) <= 1:
            return
        self.provider_index = (self.provider_index + 1) % len(self.providers)
        self.web3 = self._build_web3()

    async def _rpc_with_backoff(self, call: Callable[[], Any], op_name: str) -> Any:
        delays = [1, 2, 4]
        last_error: Exception | None = None
        for attempt, delay in enumerate(delays, start=1):
            try:
                return await asyncio.to_thread(call)
            except Exception as exc:  # pragma: no cover - network/runtime dependent
                last_error = exc
                if attempt < len(delays):
                    self._rotate_provider()
                    await asyncio.sleep(delay)
        raise OnChainRPCError(f"{op_name} failed after retries: {last_error}")

    def _decode(self, row: Any) -> AssetDiscovered | None:
        contract = self.web3.eth.contract(abi=FACTORY_EVENTS_ABI)
        try:
            decoded = contract.events[self.event_name]().process_log(row)
        except Exception as exc:
            logger.warning("FACTORY_DECODE_FAILED event=%s err=%s", self.event_name, exc)
            return None
        return discovery_from_args(
            self.event_name,
            dict(decoded["args"]),
            int(decoded.get("blockNumber") or 0),
            False,
        )

    async def poll_once(self) -> list[AssetDiscovered]:
        """New creation events since the last poll. The first call backfills recent history.

        Events at or below the head seen on the first poll are flagged ``backfill``
        whichever poll returns them. A failed chunk ends the pass: completed chunks
        are returned and the cursor stays on the failed one. Only a failure on the
        first chunk raises.
        """
        if not self.factory_address:
            raise OnChainRPCError("CURVE_FACTORY_ADDRESS must be set for discovery.")

        latest = int(await self._rpc_with_backoff(lambda: self.web3.eth.block_number, "eth_blockNumber"))
        if self._backfill_to is None:
            self._backfill_to = latest
            self._next_block = max(0, latest - int(config.DISCOVERY_BACKFILL_BLOCKS))
        from_block = self._next_block
        if from_block > latest:
            return []

        out: list[AssetDiscovered] = []
        chunk = max(1, int(config.ONCHAIN_BLOCK_CHUNK))
        for start in range(from_block, latest + 1, chunk):
            end = min(latest, start + chunk - 1)
            params = {
                "address": Web3.to_checksum_address(self.factory_address),
                "fromBlock": start,
                "toBlock": end,
                "topics": [self.topic],
            }
            try:
                rows = await self._rpc_with_backoff(
                    lambda p=params: self.web3.eth.get_logs(p),
                    f"eth_getLogs[{self.event_name}:{start}-{end}]",
                )
            except OnChainRPCError:
                if start == from_block:
                    raise
                logger.warning("FACTORY_PARTIAL returned=%s resume_from=%s", len(out), start)
                break
            for row in rows:
                found = self._decode(row)
                if found is None:
                    continue
                key = normalize_address(found.venue_id)
                if key in self.seen_curves:
                    continue
                self.seen_curves.add(key)
                if (found.height or end) <= self._backfill_to:
                    found = replace(found, backfill=True)
                out.append(found)
            self._next_block = end + 1
            self.last_processed_block = end

        backfilled = sum(1 for found in out if found.backfill)
        if backfilled:
            logger.info("FACTORY_BACKFILL curves=%s horizon=%s", backfilled, self._backfill_to)
        return out

    async def run(self, queue: asyncio.Queue, stop_event: asyncio.Event) -> None:
        logger.info("FACTORY_WATCH started factory=%s event=%s", self.factory_address, self.event_name)
        while not stop_event.is_set():
            try:
                for found in await self.poll_once():
                    await queue.put(found)
            except OnChainRPCError as exc:
                logger.warning("FACTORY_WATCH error=%s", exc)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=float(config.ONCHAIN_POLL_INTERVAL_SECONDS))
            except asyncio.TimeoutError:
                pass


async def _run_once() -> int:
    try:
        monitor = CurveFactoryMonitor()
        rows = await monitor.poll_once()
        print(f"Curves discovered: {len(rows)}")
        for row in rows[-5:]:
            print(f"token={row.asset_id} curve={row.venue_id} symbol={row.symbol or '?'} block={row.height}")
    except Exception as exc:
        print(f"Curves discovered: 0 (error: {exc})")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Bonding-curve factory monitor")
    parser.add_argument("--once", action="store_true", help="Run one backfill pass and exit")
    args = parser.parse_args()
    if args.once:
        return asyncio.run(_run_once())

    async def _loop() -> int:
        queue: asyncio.Queue = asyncio.Queue()
        stop_event = asyncio.Event()
        monitor = CurveFactoryMonitor()
        watcher = asyncio.create_task(monitor.run(queue, stop_event))
        while True:
            found = await queue.get()
            print(f"token={found.asset_id} curve={found.venue_id} symbol={found.symbol or '?'} block={found.height}")
            if watcher.done():
                return 1

    return asyncio.run(_loop())


if __name__ == "__main__":
    raise SystemExit(main())
