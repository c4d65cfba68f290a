"""
Swarm Run Config
================
The frozen configuration for ONE swarm run.

Built either from Settings (headless CLI) or from the JSON body of
POST /api/start, whose keys are camelCase:

    {"openrouterKey": "...", "rpcUrl": "...", "walletKey": "...",
     "maxPositionSol": 0.05, "stopLossPct": 30, "takeProfitPct": 100,
     "maxConcurrentTrades": 3, "minScoreToTrade": 80,
     "scanIntervalMs": 60000, "slippageBps": 500, "model": "..."}

It can't be changed while the swarm runs. Stop and start again instead.
"""

from dataclasses import dataclass, fields, replace
from typing import Any

from utils.errors import ConfigError

# camelCase (dashboard) -> snake_case (field name)
_CAMEL_KEYS = {
    "openrouterKey": "openrouter_key",
    "model": "model",
    "rpcUrl": "rpc_url",
    "walletKey": "wallet_key",
    "maxPositionSol": "max_position_sol",
    "stopLossPct": "stop_loss_pct",
    "takeProfitPct": "take_profit_pct",
    "maxConcurrentTrades": "max_concurrent_trades",
    "minScoreToTrade": "min_score_to_trade",
    "scanIntervalMs": "scan_interval_ms",
    "slippageBps": "slippage_bps",
}


@dataclass(frozen=True)
class SwarmConfig:
    openrouter_key: str = ""
    model: str = "deepseek/deepseek-chat"
    rpc_url: str = ""
    wallet_key: str = ""
    max_position_sol: float = 0.05
    stop_loss_pct: float = 30.0
    take_profit_pct: float = 100.0
    max_concurrent_trades: int = 3
    min_score_to_trade: float = 80.0
    scan_interval_ms: int = 60_000
    slippage_bps: int = 500

    @property
    def has_wallet(self) -> bool:
        return bool(self.wallet_key)

    @property
    def scan_interval_seconds(self) -> float:
        return self.scan_interval_ms / 1000

    @classmethod
    def from_dict(cls, payload: dict[str, Any], base: "SwarmConfig | None" = None) -> "SwarmConfig":
        """
        Build a config from a dict with camelCase or snake_case keys.
        Keys that are missing keep the value from `base` (or the dataclass default).
        Unknown keys are ignored.
        """
        known = {f.name: f.type for f in fields(cls)}
        overrides: dict[str, Any] = {}
        for key, value in (payload or {}).items():
            name = _CAMEL_KEYS.get(key, key)
            if name not in known or value is None:
                continue
            overrides[name] = value

        try:
            for name in ("max_position_sol", "stop_loss_pct", "take_profit_pct", "min_score_to_trade"):
                if name in overrides:
                    overrides[name] = float(overrides[name])
            for name in ("max_concurrent_trades", "scan_interval_ms", "slippage_bps"):
                if name in overrides:
                    overrides[name] = int(overrides[name])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid numeric config value: {e}") from e

        for name in ("openrouter_key", "model", "rpc_url", "wallet_key"):
            if name in overrides:
                overrides[name] = str(overrides[name]).strip()

        return replace(base or cls(), **overrides)

    def validate(self) -> None:
        """Raise ConfigError if the run can't start. A missing wallet is allowed (scan-only)."""
        if not self.openrouter_key:
            raise ConfigError("Missing OpenRouter API key")
        if not self.rpc_url:
            raise ConfigError("Missing Solana RPC URL")
        if self.max_concurrent_trades < 1:
            raise ConfigError("maxConcurrentTrades must be at least 1")
        if self.scan_interval_ms <= 0:
            raise ConfigError("scanIntervalMs must be positive")

    def public_dict(self) -> dict[str, Any]:
        """Config as camelCase, with secrets reduced to set/unset flags."""
        out = {camel: getattr(self, name) for camel, name in _CAMEL_KEYS.items()}
        out["openrouterKey"] = bool(self.openrouter_key)
        out["walletKey"] = bool(self.wallet_key)
        return out
