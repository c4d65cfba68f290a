"""
Risk Manager
============
Watches every OPEN position and closes it when a rule fires.

A position only moves one way:
    OPEN -> STOPPED | TP_HIT | CLOSED   (all terminal)

Rules, checked in this order. The first match wins and nothing after it
is looked at:
1. pnl_pct <= -stop_loss_pct      -> STOPPED (stop loss)
2. pnl_pct >= take_profit_pct     -> TP_HIT (take profit)
3. live liquidity < $3,000        -> STOPPED (emergency exit, we may not get out later)

Rule 3 needs a DexScreener call, so it's only fetched when rules 1 and 2
didn't fire. pnl_pct comes from the price updater (trader/price_updater.py).

Each tick also logs portfolio heat:
    heat = open exposure / (wallet balance + open exposure)
where exposure is the SOL spent on every OPEN position. Heat is just
reported, it never triggers anything.
"""

from dataclasses import dataclass, asdict
from typing import Callable

from agent.activity import ActivityFeed
from config.swarm_config import SwarmConfig
from database.db import Database
from utils.errors import GatewayError
from utils.formatting import format_mcap
from utils.logger import get_logger

logger = get_logger(__name__)

LIQUIDITY_FLOOR_USD = 3_000


@dataclass(frozen=True)
class RiskTransition:
    """A rule fired for a position. Not an error: the record of a planned close."""

    position_id: int
    symbol: str
    to_status: str
    rule: str
    pnl_pct: float
    liquidity: float | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def evaluate_exit(
    position: dict,
    stop_loss_pct: float,
    take_profit_pct: float,
    liquidity: float | None = None,
) -> RiskTransition | None:
    """
    Decide whether an OPEN position should close.

    `liquidity` is the live pool liquidity in USD, or None if it wasn't
    fetched (or the token has no pairs), in which case rule 3 is skipped.
    Returns None for anything that isn't OPEN.
    """
    if position.get("status") != "OPEN":
        return None

    pnl = position.get("pnl_pct") or 0.0
    common = {"position_id": position["id"], "symbol": position.get("symbol", "?"), "pnl_pct": pnl}

    if pnl <= -stop_loss_pct:
        return RiskTransition(to_status="STOPPED", rule="stop_loss", **common)
    if pnl >= take_profit_pct:
        return RiskTransition(to_status="TP_HIT", rule="take_profit", **common)
    if liquidity is not None and liquidity < LIQUIDITY_FLOOR_USD:
        return RiskTransition(to_status="STOPPED", rule="liquidity", liquidity=liquidity, **common)
    return None


def portfolio_heat(open_positions: list[dict], balance_sol: float) -> tuple[float, float]:
    """(heat %, exposure SOL) for the given OPEN positions and wallet balance."""
    exposure = sum(p.get("entry_sol") or 0 for p in open_positions)
    total = balance_sol + exposure
    heat = exposure / total * 100 if total > 0 else 0.0
    return heat, exposure


class RiskManager:
    """
    One tick = check every OPEN position once, then report heat.

    Usage:
        risk = RiskManager(config, db, market, executor, wallet, feed)
        last_result = await risk.run()
    """

    def __init__(
        self,
        config: SwarmConfig,
        db: Database,
        market,
        executor,
        wallet,
        feed: ActivityFeed,
        is_live: Callable[[], bool] | None = None,
    ):
        self.config = config
        self.db = db
        self.market = market
        self.executor = executor
        self.wallet = wallet
        self.feed = feed
        self._is_live = is_live or (lambda: True)

    async def check_position(self, position: dict) -> RiskTransition | None:
        """Evaluate one position, fetching liquidity only if PnL rules didn't fire."""
        transition = evaluate_exit(position, self.config.stop_loss_pct, self.config.take_profit_pct)
        if transition or not self._is_live():
            return transition

        token = await self.market.by_address(position["token_address"])
        if token is None:
            return None
        return evaluate_exit(
            position, self.config.stop_loss_pct, self.config.take_profit_pct, liquidity=token.liquidity
        )

    def _announce(self, t: RiskTransition) -> None:
        if t.rule == "stop_loss":
            self.feed.emit("risk", "error", "stop_loss_hit",
                           f"{t.symbol} hit stop loss at {t.pnl_pct:.1f}%, closing position",
                           position_id=t.position_id, pnl_pct=t.pnl_pct)
        elif t.rule == "take_profit":
            self.feed.emit("risk", "success", "take_profit_hit",
                           f"{t.symbol} hit take profit at {t.pnl_pct:.1f}%, taking profits",
                           position_id=t.position_id, pnl_pct=t.pnl_pct)
        else:
            self.feed.emit("risk", "warn", "liquidity_exit",
                           f"{t.symbol} liquidity dropped to {format_mcap(t.liquidity or 0)}, emergency exit",
                           position_id=t.position_id, liquidity=t.liquidity)

    async def run(self) -> str:
        """One risk tick. Returns the agent's one-line result."""
        positions = await self.db.get_open_positions()
        if not positions:
            return "No open positions"

        for position in positions:
            if not self._is_live():
                break
            try:
                transition = await self.check_position(position)
            except GatewayError as e:
                self.feed.emit("risk", "warn", "liquidity_check_failed",
                               f"Could not check liquidity for {position['symbol']}: {e}",
                               position_id=position["id"])
                continue
            if transition is None:
                continue
            self._announce(transition)
            await self.executor.sell(transition.position_id, transition.to_status)

        await self._report_heat(positions)
        return f"Monitoring {len(positions)} positions"

    async def _report_heat(self, positions: list[dict]) -> None:
        if not self.wallet.has_wallet or not self._is_live():
            return
        try:
            balance = await self.wallet.get_sol_balance()
        except GatewayError as e:
            logger.warning("heat_balance_unavailable", error=str(e))
            return
        heat, exposure = portfolio_heat(positions, balance)
        self.feed.emit("risk", "info", "portfolio_heat",
                       f"Portfolio heat: {heat:.0f}% | {len(positions)} open positions | {exposure:.4f} SOL exposed",
                       heat_pct=heat, exposure_sol=exposure, open_positions=len(positions))
