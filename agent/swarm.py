"""
Swarm Orchestrator
==================
Starts, runs and stops the agents that make up one trading run.

The agents, and how often they tick:
- Narrative Scanner: every 2 x scanInterval, tags the market's themes
- Coin Hunter: every scanInterval, scores tokens and triggers buys
- Risk Manager: every 30s, closes positions on stop loss / take profit / dead liquidity
- Price Updater: every 20s, refreshes current price and PnL of open positions
- Executor: no loop, called by the hunter, the risk manager and the dashboard
- Whale Tracker, Backtester: shown on the board, not implemented

Start sequence:
1. Validate the config (ConfigError if the API key or RPC URL is missing)
2. Open the gateway sessions, log the wallet balance (or warn: scan-only)
3. Mark every agent running
4. Run one narrative scan, then one hunter pass, and wait for both
5. Schedule the four loops

stop() cancels the loops and puts every agent back to idle. It doesn't
cancel anything already in flight: those calls finish, but every agent
checks `running` before its next network call and before saving scanner or
price data. A swap that was already sent always gets its ledger row and
position update, so the database never disagrees with the chain.

There is no global swarm. SwarmController (used by the API and the CLI)
builds a fresh Swarm, with fresh gateways, on every start.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable

from agent.activity import ActivityFeed, AgentBoard
from agent.coin_hunter import CoinHunter
from agent.llm_client import ReasoningClient
from agent.narrative_scanner import NarrativeScanner
from agent.scheduler import AgentLoop
from config.settings import Settings
from config.swarm_config import SwarmConfig
from database.db import Database
from discovery.dexscreener_client import DexScreenerClient
from trader.jupiter_client import JupiterClient
from trader.price_updater import PriceUpdater
from trader.risk_manager import RiskManager
from trader.trade_executor import TradeExecutor
from utils.errors import ConfigError, GatewayError, SwarmError
from utils.solana_client import SolanaClient


# =========================================================================
# Gateways
# =========================================================================

@dataclass
class Gateways:
    """The four external services one run talks to."""

    market: Any
    reasoning: Any
    swap: Any
    wallet: Any

    def _all(self) -> list:
        # wallet first: the swap client sends through it
        return [self.wallet, self.market, self.reasoning, self.swap]

    async def initialize(self) -> None:
        for gateway in self._all():
            await gateway.initialize()

    async def close(self) -> None:
        for gateway in self._all():
            await gateway.close()


def build_gateways(config: SwarmConfig, settings: Settings) -> Gateways:
    """
    Real HTTP gateways for a run.
    Raises ConfigError if the wallet key can't be decoded.
    """
    wallet = SolanaClient(config.rpc_url, config.wallet_key)
    return Gateways(
        market=DexScreenerClient(base_url=settings.dexscreener_base_url),
        reasoning=ReasoningClient(
            config.openrouter_key,
            model=config.model or settings.llm_model,
            base_url=settings.openrouter_base_url,
        ),
        swap=JupiterClient(wallet, base_url=settings.jupiter_base_url),
        wallet=wallet,
    )


GatewayFactory = Callable[[SwarmConfig, Settings], Gateways]


# =========================================================================
# Swarm (one run)
# =========================================================================

class Swarm:
    """
    One trading run.

    Usage:
        swarm = Swarm(config, db, feed, board, gateways, settings)
        await swarm.start()
        ...
        swarm.stop()
        await swarm.drain()
    """

    def __init__(
        self,
        config: SwarmConfig,
        db: Database,
        feed: ActivityFeed,
        board: AgentBoard,
        gateways: Gateways,
        settings: Settings | None = None,
        score_delay: float = 1.0,
        price_pause: float = 0.5,
    ):
        self.config = config
        self.db = db
        self.feed = feed
        self.board = board
        self.gateways = gateways
        self.settings = settings or Settings()
        self.running = False
        self._stopped = False
        self.token_cache: dict[str, dict] = {}
        self.loops: dict[str, AgentLoop] = {}

        self.executor = TradeExecutor(
            config, db, gateways.swap, gateways.wallet, feed,
            market=gateways.market, board=board, is_live=self.is_live,
        )
        self.narrative_scanner = NarrativeScanner(
            db, gateways.market, gateways.reasoning, feed, is_live=self.is_live,
        )
        self.hunter = CoinHunter(
            config, db, gateways.market, gateways.reasoning, self.executor, gateways.wallet, feed,
            token_cache=self.token_cache, is_live=self.is_live, score_delay=score_delay,
        )
        self.risk = RiskManager(
            config, db, gateways.market, self.executor, gateways.wallet, feed, is_live=self.is_live,
        )
        self.price_updater = PriceUpdater(
            db, gateways.market, is_live=self.is_live, pause_seconds=price_pause,
        )

    def is_live(self) -> bool:
        return self.running

    def _log(self, severity: str, event: str, message: str, **fields: Any) -> None:
        self.feed.emit("orchestrator", severity, event, message, **fields)

    def _publish_status(self) -> None:
        self.feed.publish("status", {"running": self.running, "agents": self.board.snapshot()})

    def _build_loops(self) -> dict[str, AgentLoop]:
        scan = self.config.scan_interval_seconds
        schedule = [
            ("narrative", self.narrative_scanner.run, scan * 2),
            ("hunter", self.hunter.run, scan),
            ("risk", self.risk.run, self.settings.risk_interval_seconds),
            ("price", self.price_updater.run, self.settings.price_interval_seconds),
        ]
        return {
            agent_id: AgentLoop(agent_id, tick, interval, self.board, self.feed, is_live=self.is_live)
            for agent_id, tick, interval in schedule
        }

    async def start(self) -> None:
        """Bring the swarm up. A second call while running does nothing."""
        if self.running:
            return

        self._log("cmd", "swarm_starting", "$ swarm.start(), initializing...")
        try:
            self.config.validate()
        except ConfigError as e:
            self._log("error", "swarm_config_invalid", str(e))
            raise

        await self.gateways.initialize()
        await self._announce_wallet()
        if self._stopped:
            return

        self.running = True
        for agent in self.board.snapshot():
            self.board.set_status(agent["id"], "running")
            self.feed.emit(agent["id"], "success", "agent_deployed", f"{agent['name']} deployed")
        self._log("success", "swarm_online", "All agents online, swarm is hunting",
                  scan_interval_ms=self.config.scan_interval_ms)
        self._publish_status()

        self.loops = self._build_loops()
        await self.loops["narrative"].run_once()
        await self.loops["hunter"].run_once()

        if self.running:
            for loop in self.loops.values():
                loop.start()

    async def _announce_wallet(self) -> None:
        wallet = self.gateways.wallet
        if not wallet.has_wallet:
            self._log("warn", "scan_only_mode", "No wallet key, running in SCAN-ONLY mode (no trades)")
            return
        address = wallet.wallet_address or ""
        try:
            balance = await wallet.get_sol_balance()
        except GatewayError as e:
            self._log("warn", "wallet_balance_unavailable", f"Wallet loaded: {address[:8]}... (balance unavailable: {e})")
            return
        self._log("success", "wallet_loaded", f"Wallet loaded: {address[:8]}... ({balance:.4f} SOL)",
                  balance_sol=balance)

    def stop(self) -> None:
        """Cancel every loop and idle every agent. In-flight calls finish on their own."""
        self.running = False
        self._stopped = True
        for loop in self.loops.values():
            loop.stop()
        self.board.reset()
        self._log("warn", "swarm_stopped", "$ swarm.stop(), all agents recalled")
        self._publish_status()

    async def drain(self) -> None:
        """Wait for ticks that were in flight at stop() to finish."""
        for loop in self.loops.values():
            await loop.drain()

    # =========================================================================
    # Reads that need the live gateways
    # =========================================================================

    async def balance(self) -> dict | None:
        return await self.gateways.wallet.get_wallet_balance()

    async def search(self, query: str) -> list[dict]:
        """Market search results, with this run's score attached where the hunter has one."""
        results = []
        for token in await self.gateways.market.search(query):
            row = token.to_dict()
            cached = self.token_cache.get(token.address)
            row["score"] = cached["score"] if cached else None
            row["signal"] = cached["signal"] if cached else None
            row["narrative"] = cached["narrative"] if cached else None
            results.append(row)
        return results


# =========================================================================
# Controller (long-lived)
# =========================================================================

class SwarmNotRunning(SwarmError):
    """The operation needs a running swarm."""


class SwarmController:
    """
    Owns the long-lived pieces (database, feed, agent board) and at most one
    running Swarm.

    Usage:
        controller = SwarmController(db, settings)
        await controller.start(SwarmConfig.from_dict(body, base=settings.default_swarm_config()))
        positions = await controller.positions()
        await controller.stop()
    """

    def __init__(
        self,
        db: Database,
        settings: Settings,
        feed: ActivityFeed | None = None,
        board: AgentBoard | None = None,
        gateway_factory: GatewayFactory | None = None,
        swarm_options: dict | None = None,
    ):
        self.db = db
        self.settings = settings
        self.feed = feed or ActivityFeed()
        self.board = board or AgentBoard()
        self.gateway_factory = gateway_factory or build_gateways
        self.swarm_options = swarm_options or {}
        self.swarm: Swarm | None = None
        self._lifecycle_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self.swarm is not None and self.swarm.running

    def _require_swarm(self) -> Swarm:
        if not self.running:
            raise SwarmNotRunning("swarm is not running")
        return self.swarm

    async def start(self, config: SwarmConfig) -> None:
        """Start a new run. No-op if one is already running. Raises ConfigError."""
        async with self._lifecycle_lock:
            if self.swarm is not None:
                return
            try:
                config.validate()
                gateways = self.gateway_factory(config, self.settings)
            except ConfigError as e:
                self.feed.emit("orchestrator", "error", "swarm_config_invalid", str(e))
                raise
            swarm = Swarm(config, self.db, self.feed, self.board, gateways, self.settings, **self.swarm_options)
            self.swarm = swarm

        # Not under the lock: stop() may interrupt the initial passes.
        try:
            await swarm.start()
        except Exception:
            async with self._lifecycle_lock:
                if self.swarm is swarm:
                    swarm.stop()
                    self.swarm = None
                    await gateways.close()
            raise

    async def stop(self) -> None:
        """Stop the current run, wait for in-flight ticks, close its gateways."""
        async with self._lifecycle_lock:
            swarm = self.swarm
            if swarm is None:
                return
            swarm.stop()
            self.swarm = None
            await swarm.drain()
            await swarm.gateways.close()

    # =========================================================================
    # Trading
    # =========================================================================

    async def manual_buy(self, token_address: str, sol_amount: float) -> dict:
        return await self._require_swarm().executor.manual_buy(token_address, sol_amount)

    async def manual_sell(self, position_id: int) -> dict:
        return await self._require_swarm().executor.manual_sell(position_id)

    # =========================================================================
    # Reads
    # =========================================================================

    def status(self) -> dict:
        return {"running": self.running, "agents": self.board.snapshot()}

    async def positions(self) -> list[dict]:
        return await self.db.get_positions()

    async def scanned_tokens(self) -> list[dict]:
        return await self.db.get_scanned_tokens(50)

    async def narratives(self) -> list[dict]:
        return await self.db.get_narratives(10)

    async def trade_history(self) -> list[dict]:
        return await self.db.get_trade_history(100)

    def logs(self) -> list[dict]:
        return self.feed.recent()

    async def balance(self) -> dict | None:
        if not self.running:
            return None
        return await self.swarm.balance()

    async def search(self, query: str) -> list[dict]:
        return await self._require_swarm().search(query)
