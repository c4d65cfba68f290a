"""
Trade Executor
==============
The only module that moves money. Every buy and sell goes through here,
whether the hunter, the risk manager or a human on the dashboard asked.

It's designed to be:
- SAFE: the safety rails run before any swap, under a lock
- TRANSPARENT: every swap attempt lands in trade_history, success or not
- RECOVERABLE: a failed sell leaves the position OPEN for the next risk tick

The flow for a buy:
1. Safety rails: wallet? room for another position? not already holding?
2. Size it: min(cap, 30% of live balance), refuse dust
3. Swap SOL -> token through Jupiter
4. Append the ledger row (always)
5. On success, open an OPEN position at the token's market price

The flow for a sell:
1. Position must still be OPEN, and no other sell for it in flight
2. Swap token -> SOL through Jupiter
3. Append the ledger row (always)
4. On success, move the position to its terminal status (CLOSED, STOPPED, TP_HIT)

Concurrency:
- One buy at a time (`_buy_lock`), so two overlapping buys can't both pass
  the max-concurrent check and both open a position.
- One sell per position at a time. A second sell for the same position is
  refused with "sell_in_flight" instead of queueing behind the first.

No automatic retries. A failed buy is just logged; a failed sell is retried
naturally by the next risk manager tick.

Every call returns a dict:
    {"status": "skipped", "reason": "max_concurrent"}
    {"status": "failed", "error": "...", "trade_id": 12}
    {"status": "executed", "trade_id": 13, "position_id": 4, ...}
"""

import asyncio
from typing import Any, Callable

from agent.activity import ActivityFeed, AgentBoard
from config.swarm_config import SwarmConfig
from database.db import Database
from discovery.dexscreener_client import Token
from trader.jupiter_client import TradeResult
from trader.safety_rails import SafetyRails
from utils.errors import GatewayError
from utils.timeutil import now_ms

MANUAL_NARRATIVE = "Manual"

_SKIP_MESSAGES = {
    "no_wallet": "Would buy {symbol} but no wallet configured",
    "max_concurrent": "Max concurrent trades ({limit}) reached, skipping {symbol}",
    "already_holding": "Already holding {symbol}, skipping",
}


def _skipped(reason: str) -> dict:
    return {"status": "skipped", "reason": reason}


class TradeExecutor:
    """
    Executes buys and sells and keeps the ledger.

    Usage:
        executor = TradeExecutor(config, db, swap=jupiter, wallet=solana, feed=feed)
        result = await executor.buy(token, score=88, narrative="AI Agents")
        result = await executor.sell(position_id=4, reason="STOPPED")
    """

    def __init__(
        self,
        config: SwarmConfig,
        db: Database,
        swap,
        wallet,
        feed: ActivityFeed,
        market=None,
        board: AgentBoard | None = None,
        is_live: Callable[[], bool] | None = None,
    ):
        self.config = config
        self.db = db
        self.swap = swap
        self.wallet = wallet
        self.market = market
        self.feed = feed
        self.board = board
        self.rails = SafetyRails(config, db)
        self._is_live = is_live or (lambda: True)
        self._buy_lock = asyncio.Lock()
        self._sell_locks: dict[int, asyncio.Lock] = {}

    def _log(self, severity: str, event: str, message: str, **fields: Any) -> None:
        self.feed.emit("executor", severity, event, message, **fields)

    def _set_status(self, last_result: str | None = None) -> None:
        # stop resets the board; a swap finishing later leaves it idle
        if self.board is not None and self._is_live():
            self.board.set_status("executor", "running", last_result)

    async def _record_trade(
        self,
        side: str,
        token_address: str,
        symbol: str,
        sol_amount: float,
        token_amount: float,
        result: TradeResult,
    ) -> int:
        """Append the ledger row for one swap attempt and push it to dashboards."""
        record = {
            "token_address": token_address,
            "symbol": symbol,
            "side": side,
            "sol_amount": sol_amount,
            "token_amount": token_amount,
            "price": result.price or 0,
            "tx_hash": result.tx_hash or "",
            "success": result.success,
            "error": result.error or "",
            "timestamp": result.timestamp,
        }
        trade_id = await self.db.insert_trade(record)
        self.feed.publish("trade", {**record, "id": trade_id, "success": 1 if result.success else 0})
        return trade_id

    # =========================================================================
    # Buy
    # =========================================================================

    async def buy(
        self,
        token: Token,
        score: float,
        narrative: str,
        cap_sol: float | None = None,
    ) -> dict:
        """
        Open a position in `token` if every rail passes.

        Args:
            token: market snapshot; its price becomes the entry price
            score: hunter score (0 for manual buys)
            narrative: matched narrative name ("Manual" for manual buys)
            cap_sol: size cap, defaults to config.max_position_sol
        """
        cap = self.config.max_position_sol if cap_sol is None else cap_sol

        async with self._buy_lock:
            ok, reason = await self.rails.pre_trade_check(token.address, self.wallet.has_wallet)
            if not ok:
                severity = "info" if reason == "already_holding" else "warn"
                self._log(
                    severity,
                    f"buy_skipped_{reason}",
                    _SKIP_MESSAGES[reason].format(symbol=token.symbol, limit=self.config.max_concurrent_trades),
                    token=token.symbol,
                )
                return _skipped(reason)

            if not self._is_live():
                return _skipped("stopped")

            try:
                balance = await self.wallet.get_sol_balance()
            except GatewayError as e:
                self._log("error", "balance_check_failed", f"Could not read wallet balance: {e}", token=token.symbol)
                return _skipped("balance_unavailable")

            trade_size = self.rails.calculate_trade_size(balance, cap)
            ok, reason = self.rails.size_check(trade_size)
            if not ok:
                self._log("error", "buy_skipped_insufficient_balance",
                          f"Insufficient balance ({balance:.4f} SOL), cannot trade", balance=balance)
                return _skipped(reason)

            if not self._is_live():
                return _skipped("stopped")

            self._set_status()
            self._log("cmd", "executing_buy",
                      f"Executing BUY: {token.symbol} | {trade_size:.4f} SOL | Score: {score:g}",
                      token=token.symbol, amount_sol=trade_size, score=score)

            # From here on the swap is submitted: record its outcome no matter what.
            result = await self.swap.buy(token.address, trade_size, self.config.slippage_bps)
            trade_id = await self._record_trade(
                "BUY", token.address, token.symbol, trade_size, result.output_amount or 0, result
            )

            if not result.success:
                self._log("error", "buy_failed", f"BUY FAILED {token.symbol}: {result.error}",
                          token=token.symbol, error=result.error, trade_id=trade_id)
                self._set_status(f"Buy failed: {token.symbol}")
                return {"status": "failed", "error": result.error, "trade_id": trade_id}

            position_id = await self.db.open_position({
                "token_address": token.address,
                "symbol": token.symbol,
                "entry_price": token.price,
                "entry_sol": trade_size,
                "token_amount": result.output_amount or 0,
                "token_decimals": 6,
                "current_price": token.price,
                "entry_tx": result.tx_hash or "",
                "entry_time": now_ms(),
                "score": score,
                "narrative": narrative,
            })

        tx_short = (result.tx_hash or "")[:16]
        self._log("success", "buy_executed",
                  f"BOUGHT {token.symbol} | {trade_size:.4f} SOL | TX: {tx_short}...",
                  token=token.symbol, amount_sol=trade_size, tokens=result.output_amount,
                  position_id=position_id, tx=result.tx_hash)
        self._set_status(f"Bought {token.symbol}")
        return {
            "status": "executed",
            "trade_id": trade_id,
            "position_id": position_id,
            "tx_hash": result.tx_hash,
            "sol_amount": trade_size,
            "token_amount": result.output_amount,
        }

    async def manual_buy(self, token_address: str, sol_amount: float) -> dict:
        """Dashboard buy: same pipeline, requested SOL as the cap, no score."""
        if not self.wallet.has_wallet:
            self._log("error", "manual_buy_no_wallet", "No wallet configured")
            return _skipped("no_wallet")
        if self.market is None:
            return _skipped("token_not_found")

        try:
            token = await self.market.by_address(token_address)
        except GatewayError as e:
            self._log("error", "manual_buy_lookup_failed", f"Token lookup failed: {e}", address=token_address)
            return _skipped("token_not_found")
        if token is None:
            self._log("error", "manual_buy_token_not_found", f"Token not found: {token_address}", address=token_address)
            return _skipped("token_not_found")

        self._log("cmd", "manual_buy", f"Manual BUY: {token.symbol} | {sol_amount} SOL",
                  token=token.symbol, amount_sol=sol_amount)
        return await self.buy(token, score=0, narrative=MANUAL_NARRATIVE, cap_sol=sol_amount)

    # =========================================================================
    # Sell
    # =========================================================================

    async def sell(self, position_id: int, reason: str) -> dict:
        """
        Close an OPEN position with terminal status `reason`.
        On swap failure the position stays OPEN.
        """
        if not self.wallet.has_wallet:
            return _skipped("no_wallet")

        lock = self._sell_locks.setdefault(position_id, asyncio.Lock())
        if lock.locked():
            self._log("info", "sell_skipped_in_flight", f"Sell already in flight for position {position_id}",
                      position_id=position_id)
            return _skipped("sell_in_flight")

        try:
            async with lock:
                return await self._sell_locked(position_id, reason)
        finally:
            if not lock.locked():
                self._sell_locks.pop(position_id, None)

    async def _sell_locked(self, position_id: int, reason: str) -> dict:
        position = await self.db.get_position(position_id)
        if not position or position["status"] != "OPEN":
            return _skipped("not_open")

        symbol = position["symbol"]
        self._set_status()
        self._log("cmd", "executing_sell", f"Closing {symbol} ({reason})...", token=symbol, reason=reason)

        result = await self.swap.sell(
            position["token_address"],
            position["token_amount"],
            position.get("token_decimals") or 6,
            self.config.slippage_bps,
        )
        trade_id = await self._record_trade(
            "SELL", position["token_address"], symbol,
            result.output_amount or 0, position["token_amount"], result,
        )

        if not result.success:
            self._log("error", "sell_failed", f"SELL FAILED {symbol}: {result.error}",
                      token=symbol, error=result.error, trade_id=trade_id)
            self._set_status(f"Sell failed: {symbol}")
            return {"status": "failed", "error": result.error, "trade_id": trade_id}

        closed = await self.db.close_position(
            position_id, reason, exit_tx=result.tx_hash or "", exit_price=result.price, exit_time=now_ms()
        )
        pnl = position.get("pnl_pct") or 0
        tx_short = (result.tx_hash or "")[:16]
        self._log("success", "sell_executed",
                  f"SOLD {symbol} | {reason} | PnL: {pnl:.1f}% | TX: {tx_short}...",
                  token=symbol, reason=reason, pnl_pct=pnl, sol_received=result.output_amount,
                  closed=closed, tx=result.tx_hash)
        self._set_status(f"Sold {symbol} ({reason})")
        return {
            "status": "executed",
            "trade_id": trade_id,
            "position_id": position_id,
            "tx_hash": result.tx_hash,
            "sol_amount": result.output_amount,
        }

    async def manual_sell(self, position_id: int) -> dict:
        """Dashboard sell: close with reason CLOSED."""
        position = await self.db.get_position(position_id)
        if not position or position["status"] != "OPEN":
            self._log("error", "manual_sell_not_open", f"Position {position_id} not found or not open",
                      position_id=position_id)
            return _skipped("not_open")
        self._log("cmd", "manual_sell", f"Manual SELL: {position['symbol']}", position_id=position_id)
        return await self.sell(position_id, "CLOSED")
