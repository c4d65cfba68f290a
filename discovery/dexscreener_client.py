"""
DexScreener Client
==================
Client for the DexScreener API: the swarm's only source of market data.
Free, no auth.

What we use it for:
- Trending tokens: the top boosted tokens right now (/token-boosts/top/v1)
- New listings: the latest token profiles (/token-profiles/latest/v1)
- Live pair data for one token: price, liquidity, volume, txns (/tokens/v1/solana/{address})
- Search by symbol/name (/latest/dex/search?q=)

The boost and profile endpoints only return token addresses, so each
entry needs a second lookup for its pair data. We take the first pair
DexScreener returns (its most liquid pool).

Failure policy:
- List endpoints (trending, new_pairs, search) log and return [] on failure.
  A failed lookup for one token just drops that token.
- by_address raises GatewayError on transport failure and returns None
  when the token simply has no pairs. The risk manager and price updater
  need to tell "no data" apart from "API down".

API docs: https://docs.dexscreener.com/api/reference
"""

import asyncio
from dataclasses import dataclass, asdict
from typing import Any
from urllib.parse import quote

import aiohttp

from utils.errors import GatewayError
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class Token:
    """Market snapshot for one Solana token (from its primary DEX pair)."""

    address: str
    symbol: str = "???"
    name: str = "Unknown"
    mcap: float = 0.0
    price: float = 0.0
    price_change_5m: float = 0.0
    price_change_1h: float = 0.0
    price_change_24h: float = 0.0
    volume_24h: float = 0.0
    liquidity: float = 0.0
    buys_24h: int = 0
    sells_24h: int = 0
    fdv: float = 0.0
    created_at: int = 0
    dex_id: str = ""
    pair_address: str = ""
    url: str = ""

    @classmethod
    def from_pair(cls, pair: dict[str, Any]) -> "Token":
        """Map one DexScreener pair object onto a Token."""
        base = pair.get("baseToken") or {}
        price_change = pair.get("priceChange") or {}
        txns_24h = (pair.get("txns") or {}).get("h24") or {}
        address = base.get("address") or ""
        return cls(
            address=address,
            symbol=base.get("symbol") or "???",
            name=base.get("name") or "Unknown",
            mcap=float(pair.get("marketCap") or pair.get("mcap") or 0),
            price=float(pair.get("priceUsd") or 0),
            price_change_5m=float(price_change.get("m5") or 0),
            price_change_1h=float(price_change.get("h1") or 0),
            price_change_24h=float(price_change.get("h24") or 0),
            volume_24h=float((pair.get("volume") or {}).get("h24") or 0),
            liquidity=float((pair.get("liquidity") or {}).get("usd") or 0),
            buys_24h=int(txns_24h.get("buys") or 0),
            sells_24h=int(txns_24h.get("sells") or 0),
            fdv=float(pair.get("fdv") or 0),
            created_at=int(pair.get("pairCreatedAt") or 0),
            dex_id=pair.get("dexId") or "",
            pair_address=pair.get("pairAddress") or "",
            url=pair.get("url") or f"https://dexscreener.com/solana/{address}",
        )

    def to_dict(self) -> dict:
        return asdict(self)


class DexScreenerClient:
    """
    Client for the DexScreener API.

    Usage:
        client = DexScreenerClient()
        await client.initialize()
        trending = await client.trending()
        fresh = await client.new_pairs(min_liquidity=5000)
        token = await client.by_address("So1...")
        await client.close()
    """

    BASE_URL = "https://api.dexscreener.com"

    TRENDING_LIMIT = 20
    NEW_PAIRS_LIMIT = 30

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        base_url: str | None = None,
        pair_delay: float = 0.2,
        sleep=asyncio.sleep,
    ):
        self.session = session
        self._owns_session = session is None
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.pair_delay = pair_delay
        self._sleep = sleep

    async def initialize(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=20))

    async def close(self) -> None:
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    async def _get(self, endpoint: str) -> Any:
        """GET a DexScreener endpoint. Raises GatewayError on any failure."""
        url = f"{self.base_url}{endpoint}"
        try:
            async with self.session.get(url) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise GatewayError("dexscreener", f"{endpoint} HTTP {response.status}: {error_text[:200]}", response.status)
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise GatewayError("dexscreener", f"{endpoint}: {e}") from e

    # =========================================================================
    # Single token
    # =========================================================================

    async def by_address(self, address: str) -> Token | None:
        """Live market data for one token, or None if it has no pairs."""
        pairs = await self._get(f"/tokens/v1/solana/{address}")
        if not pairs or not isinstance(pairs, list):
            return None
        return self._parse_pair(pairs[0], address)

    @staticmethod
    def _parse_pair(pair: Any, address: str) -> Token:
        """Token.from_pair, with malformed pair data raised as a GatewayError."""
        try:
            return Token.from_pair(pair)
        except (ValueError, TypeError, AttributeError) as e:
            raise GatewayError("dexscreener", f"malformed pair for {address}: {e}") from e

    # =========================================================================
    # Lists
    # =========================================================================

    async def _solana_addresses(self, endpoint: str, limit: int) -> list[str]:
        data = await self._get(endpoint)
        entries = [e for e in (data or []) if e.get("chainId") == "solana"]
        return [e["tokenAddress"] for e in entries[:limit] if e.get("tokenAddress")]

    async def trending(self) -> list[Token]:
        """The top boosted Solana tokens, with live pair data."""
        try:
            addresses = await self._solana_addresses("/token-boosts/top/v1", self.TRENDING_LIMIT)
        except GatewayError as e:
            logger.warning("dexscreener_trending_failed", error=str(e))
            return []

        results = []
        for address in addresses:
            try:
                token = await self.by_address(address)
            except GatewayError as e:
                logger.debug("dexscreener_pair_lookup_failed", address=address, error=str(e))
                continue
            if token:
                results.append(token)

        logger.info("dexscreener_trending_fetched", count=len(results))
        return results

    async def new_pairs(self, min_liquidity: float = 5000) -> list[Token]:
        """
        The latest Solana token profiles with at least `min_liquidity` USD.
        Pauses between lookups to stay under DexScreener's rate limit.
        """
        try:
            addresses = await self._solana_addresses("/token-profiles/latest/v1", self.NEW_PAIRS_LIMIT)
        except GatewayError as e:
            logger.warning("dexscreener_new_pairs_failed", error=str(e))
            return []

        results = []
        for address in addresses:
            try:
                token = await self.by_address(address)
                if token and token.liquidity >= min_liquidity:
                    results.append(token)
            except GatewayError as e:
                logger.debug("dexscreener_pair_lookup_failed", address=address, error=str(e))
            await self._sleep(self.pair_delay)

        logger.info("dexscreener_new_pairs_fetched", count=len(results), min_liquidity=min_liquidity)
        return results

    async def search(self, query: str) -> list[Token]:
        """Search pairs by symbol, name or address (Solana only)."""
        if not query or not query.strip():
            return []
        try:
            data = await self._get(f"/latest/dex/search?q={quote(query.strip())}")
        except GatewayError as e:
            logger.warning("dexscreener_search_failed", query=query, error=str(e))
            return []
        results = []
        for pair in (data or {}).get("pairs") or []:
            if pair.get("chainId") != "solana":
                continue
            try:
                results.append(self._parse_pair(pair, pair.get("pairAddress") or "?"))
            except GatewayError as e:
                logger.debug("dexscreener_search_pair_skipped", error=str(e))
        return results
