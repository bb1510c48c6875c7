"""Entry point for the bonding-curve exit engine."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from typing import Any

import config
from config import APP_LOG_FILE, LOG_DIR, LOG_LEVEL, RUN_TAG
from monitor.block_watcher import BlockWatcher
from monitor.curve_factory import CurveFactoryMonitor, OnChainRPCError
from trading.chain_client import CurveChainClient
from trading.engine import TradingEngine

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    os.makedirs(LOG_DIR, exist_ok=True)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] [%(run_tag)s] %(name)s: %(message)s")
    prev_factory = logging.getLogRecordFactory()

    def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
        record = prev_factory(*args, **kwargs)
        if not hasattr(record, "run_tag"):
            setattr(record, "run_tag", RUN_TAG)
        return record

    logging.setLogRecordFactory(_record_factory)

    file_handler = RotatingFileHandler(APP_LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    # web3/urllib3 request logging is noisy at DEBUG.
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def provider_height_skew(heights: dict[str, int]) -> int:
    if len(heights) < 2:
        return 0
    return max(heights.values()) - min(heights.values())


def check_provider_skew(chain: CurveChainClient) -> int:
    heights = chain.provider_heights()
    skew = provider_height_skew(heights)
    if skew > int(config.RPC_HEIGHT_SKEW_WARN_BLOCKS):
        logger.warning(
            "RPC_SKEW blocks=%s heights=%s; reads may trail writes",
            skew,
            ", ".join(f"{url}={h}" for url, h in heights.items()),
        )
    elif heights:
        logger.info("RPC_HEIGHTS %s", ", ".join(f"{url}={h}" for url, h in heights.items()))
    else:
        logger.warning("RPC_HEIGHTS unavailable")
    return skew


def settings_summary() -> list[tuple[str, Any]]:
    return [
        ("chain", f"{config.CHAIN_NAME} ({config.LIVE_CHAIN_ID})"),
        ("native", config.NATIVE_SYMBOL),
        ("factory", config.CURVE_FACTORY_ADDRESS or "-"),
        ("factory_event", config.CURVE_FACTORY_EVENT),
        ("buy_enabled", config.BUY_ENABLED),
        ("purchase_wei", config.BUY_PURCHASE_AMOUNT_WEI),
        ("purchase_spread_bps", config.BUY_RANDOMIZE_BPS),
        ("sell_enabled", config.SELL_ENABLED),
        ("take_profit_bps", config.SELL_TAKE_PROFIT_BPS),
        ("hard_stop_bps", config.SELL_HARD_STOP_BPS),
        ("min_hold_blocks", config.SELL_MIN_HOLD_BLOCKS),
        ("min_profit_wei", config.MIN_PROFIT_WEI),
        ("slippage_bps", config.SLIPPAGE_BPS),
        ("gas_bump_bps", config.GAS_BUMP_BPS),
        ("confirm_timeout_s", config.TX_CONFIRM_TIMEOUT_SECONDS),
        ("max_replacements", config.MAX_REPLACEMENTS),
        ("graduation_enabled", config.GRADUATION_ENABLED),
    ]


def log_settings(wallet: str) -> None:
    logger.info("SETTINGS wallet=%s run_tag=%s", wallet, RUN_TAG)
    for key, value in settings_summary():
        logger.info("SETTINGS %-20s %s", key, value)


async def run_engine() -> int:
    try:
        chain = CurveChainClient()
        factory = CurveFactoryMonitor()
    except (ValueError, OnChainRPCError) as exc:
        logger.error("STARTUP_FAILED err=%s", exc)
        return 1

    await asyncio.to_thread(check_provider_skew, chain)
    log_settings(chain.wallet)

    queue: asyncio.Queue = asyncio.Queue()
    stop_event = asyncio.Event()
    engine = TradingEngine(chain)
    blocks = BlockWatcher(chain)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support signal handlers; Ctrl+C still raises.
            pass

    tasks = [
        asyncio.create_task(factory.run(queue, stop_event), name="factory"),
        asyncio.create_task(blocks.run(queue, stop_event), name="blocks"),
        asyncio.create_task(engine.run(queue, stop_event), name="engine"),
    ]
    try:
        await stop_event.wait()
        logger.info("SHUTDOWN requested")
    finally:
        stop_event.set()
        await asyncio.gather(*tasks, return_exceptions=True)
    return 0


def main() -> int:
    configure_logging()
    try:
        return asyncio.run(run_engine())
    except KeyboardInterrupt:
        logger.info("SHUTDOWN keyboard_interrupt")
        return 0


if __name__ == "__main__":
    sys.exit(main())
