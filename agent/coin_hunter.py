"""
Coin Hunter
===========
Finds individual tokens worth buying.

Each tick:
1. Pull trending + new tokens (new ones need $5K+ liquidity)
2. Drop duplicates and anything untradeable (discovery/token_filter.py)
3. For the first 15 candidates:
   - Skip it if we scored it less than 5 minutes ago
   - Ask the reasoning service for a score, reasoning and signal
   - Tag it with the best matching narrative (or "Unknown")
   - Save the verdict to scanned_tokens
   - If the signal is BUY, the score clears minScoreToTrade and there is a
     wallet, hand it to the executor and wait for the buy to finish
   - Pause 1 second before the next scoring call

Buys happen one at a time, in the order the tokens were scored. So if two
tokens qualify but there's room for one more position, the first one wins.
"""

import asyncio
from typing import Callable

from agent.activity import ActivityFeed
from config.swarm_config import SwarmConfig
from database.db import Database
from discovery.dexscreener_client import Token
from discovery.token_filter import TokenFilter
from utils.errors import GatewayError
from utils.formatting import format_age, format_mcap
from utils.timeutil import now_ms

MAX_SCORED_PER_CYCLE = 15
RESCORE_COOLDOWN_MS = 5 * 60 * 1000
NEW_PAIR_MIN_LIQUIDITY = 5_000
UNKNOWN_NARRATIVE = "Unknown"
TOKEN_CACHE_LIMIT = 500


def build_score_prompt(token: Token) -> str:
    buy_ratio = token.buys_24h / max(token.sells_24h, 1)
    return (
        "Analyze this Solana memecoin for trading potential:\n"
        f"Token: {token.symbol} ({token.name})\n"
        f"Market Cap: {format_mcap(token.mcap)}\n"
        f"Liquidity: {format_mcap(token.liquidity)}\n"
        f"24h Volume: {format_mcap(token.volume_24h)}\n"
        f"Price Change: 5m: {token.price_change_5m:.1f}% | 1h: {token.price_change_1h:.1f}% | "
        f"24h: {token.price_change_24h:.1f}%\n"
        f"Buy/Sell Ratio (24h): {buy_ratio:.2f} ({token.buys_24h} buys / {token.sells_24h} sells)\n"
        f"Age: {format_age(token.created_at)}\n"
        f"DEX: {token.dex_id}\n"
        f"FDV: {format_mcap(token.fdv)}"
    )


def match_narrative(token: Token, narrative_names: list[str]) -> str:
    """
    First narrative (in score order) whose first word appears in the token's
    symbol or name, case-insensitive.
    """
    symbol = token.symbol.lower()
    name = token.name.lower()
    for narrative in narrative_names:
        words = narrative.lower().split()
        if not words:
            continue
        keyword = words[0]
        if keyword in symbol or keyword in name:
            return narrative
    return UNKNOWN_NARRATIVE


def score_severity(score: float) -> str:
    if score >= 85:
        return "success"
    if score >= 70:
        return "warn"
    return "info"


class CoinHunter:
    """
    Usage:
        hunter = CoinHunter(config, db, market, reasoning, executor, wallet, feed, token_cache={})
        last_result = await hunter.run()
    """

    def __init__(
        self,
        config: SwarmConfig,
        db: Database,
        market,
        reasoning,
        executor,
        wallet,
        feed: ActivityFeed,
        token_cache: dict | None = None,
        is_live: Callable[[], bool] | None = None,
        token_filter: TokenFilter | None = None,
        score_delay: float = 1.0,
        sleep=asyncio.sleep,
    ):
        self.config = config
        self.db = db
        self.market = market
        self.reasoning = reasoning
        self.executor = executor
        self.wallet = wallet
        self.feed = feed
        self.token_cache = token_cache if token_cache is not None else {}
        self.token_filter = token_filter or TokenFilter()
        self.score_delay = score_delay
        self._sleep = sleep
        self._is_live = is_live or (lambda: True)

    def _cache_score(self, token: Token, result, narrative: str) -> None:
        # newest last; the oldest entries go once the cache is full
        self.token_cache.pop(token.address, None)
        self.token_cache[token.address] = {
            "token": token,
            "score": result.score,
            "signal": result.signal,
            "narrative": narrative,
        }
        while len(self.token_cache) > TOKEN_CACHE_LIMIT:
            del self.token_cache[next(iter(self.token_cache))]

    async def _recently_scored(self, address: str) -> bool:
        existing = await self.db.get_scanned_token(address)
        return bool(existing) and now_ms() - (existing.get("last_seen") or 0) < RESCORE_COOLDOWN_MS

    async def run(self) -> str | None:
        self.feed.emit("hunter", "info", "hunt_started", "Hunting for alpha...")

        trending = await self.market.trending()
        if not self._is_live():
            return None
        fresh = await self.market.new_pairs(NEW_PAIR_MIN_LIQUIDITY)

        candidates = self.token_filter.apply_filters(trending + fresh)
        self.feed.emit("hunter", "info", "candidates_filtered",
                       f"Found {len(candidates)} candidates after filtering", candidates=len(candidates))

        scored = 0
        for token in candidates[:MAX_SCORED_PER_CYCLE]:
            if not self._is_live():
                break
            if await self._recently_scored(token.address):
                continue

            if await self._score_token(token):
                scored += 1
            await self._sleep(self.score_delay)

        return f"Scored {scored} tokens"

    async def _score_token(self, token: Token) -> bool:
        """Score, save and maybe buy one token. False if it couldn't be scored."""
        try:
            decoded = await self.reasoning.score(build_score_prompt(token))
        except GatewayError as e:
            self.feed.emit("hunter", "error", "score_failed", f"Failed to score {token.symbol}: {e}",
                           token=token.symbol)
            return False

        if not self._is_live():
            return False

        result = decoded.value
        narrative = match_narrative(token, await self.db.get_narrative_names())

        await self.db.upsert_scanned_token({
            "address": token.address,
            "symbol": token.symbol,
            "score": result.score,
            "signal": result.signal,
            "reasoning": result.reasoning,
            "narrative": narrative,
            "mcap": token.mcap,
            "liquidity": token.liquidity,
        })
        self._cache_score(token, result, narrative)

        self.feed.emit(
            "hunter",
            score_severity(result.score),
            "token_scored",
            f"{token.symbol} -> Score: {result.score:g} | Signal: {result.signal} | {result.reasoning}",
            token=token.symbol,
            score=result.score,
            signal=result.signal,
            fallback=decoded.fallback,
        )

        if (
            result.signal == "BUY"
            and result.score >= self.config.min_score_to_trade
            and self.wallet.has_wallet
        ):
            await self.executor.buy(token, result.score, narrative)

        return True
