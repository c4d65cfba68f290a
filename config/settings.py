"""
Configuration Manager
=====================
The single source of truth for process-wide settings.

It loads secrets (API keys, wallet key) from a .env file and defines a
default for every tunable parameter.

Two layers of configuration exist:
- Settings (this file): read once at process start. Service URLs, database
  path, logging, API host/port, and the defaults for a swarm run.
- SwarmConfig (config/swarm_config.py): the frozen per-run config handed to
  Swarm.start(). The dashboard's POST /api/start sends one; the headless CLI
  builds one from these Settings via default_swarm_config().

How it works:
- On startup, it reads your .env file
- Each setting has a sensible default so the swarm can scan out of the box
- Override anything by changing .env or setting environment variables
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from dotenv import load_dotenv

from config.swarm_config import SwarmConfig


# Load environment variables from .env file in the project root
load_dotenv(Path(__file__).parent.parent / ".env")


def _get_env(key: str, default: str = "") -> str:
    """Get an environment variable, returning default if not set."""
    return os.getenv(key, default)


def _get_env_float(key: str, default: float) -> float:
    """Get an environment variable as a float number."""
    val = os.getenv(key)
    return float(val) if val else default


def _get_env_int(key: str, default: int) -> int:
    """Get an environment variable as a whole number."""
    val = os.getenv(key)
    return int(val) if val else default


def _get_env_bool(key: str, default: bool) -> bool:
    """Get an environment variable as true/false ("1", "true", "yes" are true)."""
    val = os.getenv(key)
    if not val:
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """
    All process configuration in one place.

    Sections:
    - API Keys & Endpoints: credentials and the services we talk to
    - Swarm Defaults: the starting values for a run's SwarmConfig
    - Agent Cadence: fixed loop intervals that are not per-run
    - System: database path, logging, API server
    """

    # =========================================================================
    # API Keys & Endpoints
    # =========================================================================

    # OpenRouter key for the reasoning service (token scoring + narratives)
    openrouter_api_key: str = field(default_factory=lambda: _get_env("OPENROUTER_API_KEY"))
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    llm_model: str = field(default_factory=lambda: _get_env("LLM_MODEL", "deepseek/deepseek-chat"))

    # Solana RPC endpoint used for balance checks, sending and confirming swaps
    solana_rpc_url: str = field(default_factory=lambda: _get_env(
        "SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com"
    ))

    # Trading wallet private key (base58). NEVER log or expose this.
    # Empty = scan-only mode, the swarm scores tokens but never trades.
    wallet_private_key: str = field(default_factory=lambda: _get_env("WALLET_PRIVATE_KEY"))

    # DexScreener: market data (free, no key needed)
    dexscreener_base_url: str = "https://api.dexscreener.com"

    # Jupiter: DEX aggregator for swap execution
    jupiter_base_url: str = "https://quote-api.jup.ag/v6"

    # =========================================================================
    # Swarm Defaults (copied into SwarmConfig)
    # =========================================================================

    # Max SOL per position. The executor also never spends more than 30%
    # of the live wallet balance on one buy.
    max_position_sol: float = field(
        default_factory=lambda: _get_env_float("MAX_POSITION_SOL", 0.05)
    )

    # Close a position at -30% (STOPPED)
    stop_loss_pct: float = field(
        default_factory=lambda: _get_env_float("STOP_LOSS_PCT", 30.0)
    )

    # Close a position at +100% (TP_HIT)
    take_profit_pct: float = field(
        default_factory=lambda: _get_env_float("TAKE_PROFIT_PCT", 100.0)
    )

    # Never hold more than this many OPEN positions
    max_concurrent_trades: int = field(
        default_factory=lambda: _get_env_int("MAX_CONCURRENT_TRADES", 3)
    )

    # A BUY signal must score at least this (0-100) to trigger a trade
    min_score_to_trade: float = field(
        default_factory=lambda: _get_env_float("MIN_SCORE_TO_TRADE", 80.0)
    )

    # Hunter cadence; the narrative scanner runs at twice this
    scan_interval_ms: int = field(
        default_factory=lambda: _get_env_int("SCAN_INTERVAL_MS", 60_000)
    )

    # 500 = 5%. Memecoins need high slippage tolerance.
    slippage_bps: int = field(
        default_factory=lambda: _get_env_int("SLIPPAGE_BPS", 500)
    )

    # =========================================================================
    # Agent Cadence (fixed, not per-run)
    # =========================================================================

    risk_interval_seconds: float = 30.0
    price_interval_seconds: float = 20.0

    # =========================================================================
    # System
    # =========================================================================

    db_path: str = field(
        default_factory=lambda: _get_env(
            "DB_PATH", str(Path(__file__).parent.parent / "data" / "swarm.db")
        )
    )

    log_level: str = field(default_factory=lambda: _get_env("LOG_LEVEL", "INFO"))
    log_json: bool = field(default_factory=lambda: _get_env_bool("LOG_JSON", False))

    api_host: str = field(default_factory=lambda: _get_env("API_HOST", "0.0.0.0"))
    api_port: int = field(default_factory=lambda: _get_env_int("API_PORT", 3000))

    def default_swarm_config(self, scan_only: bool = False) -> SwarmConfig:
        """Build the per-run config from these settings (used by the headless CLI)."""
        return SwarmConfig(
            openrouter_key=self.openrouter_api_key,
            model=self.llm_model,
            rpc_url=self.solana_rpc_url,
            wallet_key="" if scan_only else self.wallet_private_key,
            max_position_sol=self.max_position_sol,
            stop_loss_pct=self.stop_loss_pct,
            take_profit_pct=self.take_profit_pct,
            max_concurrent_trades=self.max_concurrent_trades,
            min_score_to_trade=self.min_score_to_trade,
            scan_interval_ms=self.scan_interval_ms,
            slippage_bps=self.slippage_bps,
        )

    def validate(self) -> list[str]:
        """
        Check that the settings make sense.
        Returns a list of problems found (empty list = all good).
        """
        problems = []

        if not self.openrouter_api_key:
            problems.append("OPENROUTER_API_KEY is not set, needed to score tokens")
        if not self.solana_rpc_url:
            problems.append("SOLANA_RPC_URL is not set, needed for balances and swaps")
        if not self.wallet_private_key:
            problems.append("WALLET_PRIVATE_KEY is not set, the swarm will run scan-only")

        if self.stop_loss_pct <= 0:
            problems.append("STOP_LOSS_PCT should be positive (30 = close at -30%)")
        if self.take_profit_pct <= 0:
            problems.append("TAKE_PROFIT_PCT should be positive (100 = close at +100%)")
        if self.max_concurrent_trades < 1:
            problems.append("MAX_CONCURRENT_TRADES must be at least 1")
        if self.scan_interval_ms < 1000:
            problems.append("SCAN_INTERVAL_MS below 1000 will hammer the APIs")

        return problems


# Process-wide settings instance, read by main.py
settings = Settings()
