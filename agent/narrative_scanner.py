"""
Narrative Scanner
=================
Figures out what the memecoin market is trading on right now ("AI agents",
"cat coins", "election memes"...).

Each tick:
1. Pull trending + newly listed tokens from DexScreener (new ones need $3K+ liquidity)
2. Squash the first 30 into one line each:
       PEPE | MC: 1.2M | Vol: 340.5K | Liq: 88.0K | 24h: 12.3% | Age: 5h | Buys/Sells: 420/180
3. Ask the reasoning service for up to 8 narratives
4. Replace the narratives table with the new set in one go

The hunter uses these names to tag the tokens it scores.
"""

from typing import Callable

from agent.activity import ActivityFeed
from database.db import Database
from discovery.dexscreener_client import Token
from utils.formatting import format_age, format_mcap

SUMMARY_TOKEN_LIMIT = 30
NEW_PAIR_MIN_LIQUIDITY = 3_000


def summarize_token(token: Token) -> str:
    return (
        f"{token.symbol} | MC: {format_mcap(token.mcap)} | Vol: {format_mcap(token.volume_24h)} | "
        f"Liq: {format_mcap(token.liquidity)} | 24h: {token.price_change_24h:.1f}% | "
        f"Age: {format_age(token.created_at)} | Buys/Sells: {token.buys_24h}/{token.sells_24h}"
    )


def build_market_summary(tokens: list[Token], limit: int = SUMMARY_TOKEN_LIMIT) -> str:
    return "\n".join(summarize_token(t) for t in tokens[:limit])


class NarrativeScanner:
    """
    Usage:
        scanner = NarrativeScanner(db, market, reasoning, feed)
        last_result = await scanner.run()
    """

    def __init__(
        self,
        db: Database,
        market,
        reasoning,
        feed: ActivityFeed,
        is_live: Callable[[], bool] | None = None,
    ):
        self.db = db
        self.market = market
        self.reasoning = reasoning
        self.feed = feed
        self._is_live = is_live or (lambda: True)

    async def run(self) -> str | None:
        self.feed.emit("narrative", "info", "narrative_scan_started", "Scanning trending tokens for narratives...")

        trending = await self.market.trending()
        if not self._is_live():
            return None
        fresh = await self.market.new_pairs(NEW_PAIR_MIN_LIQUIDITY)
        tokens = trending + fresh

        if not tokens:
            self.feed.emit("narrative", "warn", "narrative_scan_no_tokens", "No tokens found from DexScreener")
            return None

        if not self._is_live():
            return None
        decoded = await self.reasoning.narrative_analysis(build_market_summary(tokens))
        if not self._is_live():
            return None

        if decoded.fallback:
            self.feed.emit("narrative", "warn", "narrative_response_unreadable",
                           "Could not read the narrative analysis, clearing narratives", error=decoded.error)

        narratives = decoded.value
        await self.db.replace_narratives(narratives)

        for n in narratives:
            tickers = ", ".join(n["tokens"])
            self.feed.emit(
                "narrative",
                "success" if n["score"] > 80 else "info",
                "narrative_found",
                f"{n['name']}: score {n['score']:g} ({n['trend']}) | {tickers}",
                narrative=n["name"],
                score=n["score"],
                trend=n["trend"],
            )

        return f"Found {len(narratives)} narratives"
