"""Application configuration."""

import os
from pathlib import Path

from dotenv import load_dotenv


def _load_dotenv_safe(dotenv_path: str | None = None, *, override: bool = False) -> None:
    """Load dotenv using UTF-8-SIG so BOM-prefixed files don't break first key parsing."""
    try:
        load_dotenv(dotenv_path=dotenv_path, override=override, encoding="utf-8-sig")
    except TypeError:
        # Older python-dotenv versions may not expose the `encoding` argument.
        load_dotenv(dotenv_path=dotenv_path, override=override)


# Load base environment first, then optional per-instance override env file.
_load_dotenv_safe()
_BOT_ENV_FILE = os.getenv("BOT_ENV_FILE", "").strip()
if _BOT_ENV_FILE:
    _bot_env_path = Path(_BOT_ENV_FILE).expanduser()
    if not _bot_env_path.is_absolute():
        _bot_env_path = (Path.cwd() / _bot_env_path).resolve()
    if not _bot_env_path.exists():
        raise FileNotFoundError(f"BOT_ENV_FILE does not exist: {_bot_env_path}")
    if not _bot_env_path.is_file():
        raise IsADirectoryError(f"BOT_ENV_FILE is not a file: {_bot_env_path}")
    try:
        _load_dotenv_safe(str(_bot_env_path), override=True)
    except (OSError, UnicodeError, ValueError) as exc:
        raise RuntimeError(f"Failed to load BOT_ENV_FILE '{_bot_env_path}': {exc}") from exc


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_wei(name: str, default: str) -> int:
    """Integer wei amount; accepts plain ints and scientific notation like 1e18."""
    raw = os.getenv(name, default).strip()
    try:
        return max(0, int(raw))
    except ValueError:
        return max(0, int(float(raw)))


RUN_TAG = os.getenv("RUN_TAG", os.getenv("BOT_INSTANCE_ID", "")).strip() or "main"

# Network
CHAIN_NAME = os.getenv("CHAIN_NAME", "Kasplex Mainnet")
NATIVE_SYMBOL = os.getenv("NATIVE_SYMBOL", "WKAS")
LIVE_CHAIN_ID = int(os.getenv("LIVE_CHAIN_ID", "202555"))
RPC_PRIMARY = os.getenv("RPC_PRIMARY", "https://evmrpc.kasplex.org").strip()
RPC_SECONDARY = os.getenv("RPC_SECONDARY", "").strip()
RPC_TIMEOUT_SECONDS = max(3, int(os.getenv("RPC_TIMEOUT_SECONDS", "10")))
# Warn on startup when primary/secondary heights disagree by more than this.
RPC_HEIGHT_SKEW_WARN_BLOCKS = max(0, int(os.getenv("RPC_HEIGHT_SKEW_WARN_BLOCKS", "2")))

# Wallet
LIVE_PRIVATE_KEY = os.getenv("LIVE_PRIVATE_KEY", os.getenv("PRIVATE_KEY", "")).strip()
LIVE_WALLET_ADDRESS = os.getenv("LIVE_WALLET_ADDRESS", "").strip()

# Discovery
CURVE_FACTORY_ADDRESS = os.getenv("CURVE_FACTORY_ADDRESS", "0xb19219AF8a65522f13B51f6401093c8342E27e9D").strip()
CURVE_FACTORY_EVENT = os.getenv("CURVE_FACTORY_EVENT", "BondingSystemCreated").strip()
DISCOVERY_BACKFILL_BLOCKS = max(0, int(os.getenv("DISCOVERY_BACKFILL_BLOCKS", "10000")))
ONCHAIN_BLOCK_CHUNK = max(1, int(os.getenv("ONCHAIN_BLOCK_CHUNK", "2000")))
ONCHAIN_POLL_INTERVAL_SECONDS = max(0.2, float(os.getenv("ONCHAIN_POLL_INTERVAL_SECONDS", "1.0")))

# Entry
BUY_ENABLED = _env_bool("BUY_ENABLED", "true")
BUY_PURCHASE_AMOUNT_WEI = _env_wei("BUY_PURCHASE_AMOUNT_WEI", "1000000000000000000")
BUY_RANDOMIZE_BPS = max(0, min(5000, int(os.getenv("BUY_RANDOMIZE_BPS", "500"))))
BUY_SIMULATE_ATTEMPTS = max(1, int(os.getenv("BUY_SIMULATE_ATTEMPTS", "40")))
BUY_SIMULATE_RETRY_DELAY_SECONDS = max(0.0, float(os.getenv("BUY_SIMULATE_RETRY_DELAY_SECONDS", "0.25")))
BUY_GAS_FALLBACK = max(21_000, int(os.getenv("BUY_GAS_FALLBACK", "110000")))
# Expected approve + sell cost, used by the round-trip gas guard on entry.
APPROVE_SELL_COST_WEI = _env_wei("APPROVE_SELL_COST_WEI", "220000000000000000")
MAX_RT_GAS_SHARE_BPS = max(0, int(os.getenv("MAX_RT_GAS_SHARE_BPS", "3500")))

# Exit
SELL_ENABLED = _env_bool("SELL_ENABLED", "true")
SLIPPAGE_BPS = max(0, min(9_999, int(os.getenv("SLIPPAGE_BPS", "300"))))
SELL_TAKE_PROFIT_BPS = int(os.getenv("SELL_TAKE_PROFIT_BPS", "400"))
# 0 disables the stop loss; with it disabled a sell at a loss is never sent.
SELL_HARD_STOP_BPS = max(0, int(os.getenv("SELL_HARD_STOP_BPS", "500")))
SELL_MIN_HOLD_BLOCKS = max(0, int(os.getenv("SELL_MIN_HOLD_BLOCKS", "2")))
MIN_PROFIT_WEI = _env_wei("MIN_PROFIT_WEI", os.getenv("MIN_PROFIT_KAS_WEI", "0"))
SELL_GAS_FALLBACK = max(21_000, int(os.getenv("SELL_GAS_FALLBACK", "120000")))

# Execution
GAS_BUMP_BPS = max(1, int(os.getenv("GAS_BUMP_BPS", os.getenv("GAS_TIP_BPS", "2000"))))
TX_CONFIRM_TIMEOUT_SECONDS = max(0.5, float(os.getenv("TX_CONFIRM_TIMEOUT_SECONDS", "8")))
MAX_REPLACEMENTS = max(0, int(os.getenv("MAX_REPLACEMENTS", "3")))
GAS_LIMIT_BUFFER_BPS = max(0, int(os.getenv("GAS_LIMIT_BUFFER_BPS", "1500")))

# Graduation
GRADUATION_ENABLED = _env_bool("GRADUATION_ENABLED", "true")
GRADUATION_JITTER_MAX_MS = max(1, int(os.getenv("GRADUATION_JITTER_MAX_MS", "50")))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")
APP_LOG_FILE = os.getenv("APP_LOG_FILE", os.path.join(LOG_DIR, "app.log"))
