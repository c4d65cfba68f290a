"""
Token Filter
=============
Decides which discovered tokens are worth a scoring call.

The reasoning service is the slow, rate-limited step of a hunter cycle,
so everything obviously untradeable is dropped before it gets there:
- Liquidity under $5K: we couldn't exit without moving the price
- Market cap at or under $10K: too early, often a rug in progress
- Market cap at or over $50M: not a memecoin play anymore
- 24h volume at or under $1K: dead
- 5 or fewer buys in 24h: nobody is actually buying

Duplicates (the same token showing up in both trending and new listings)
are merged first, keeping the first sighting.
"""

from discovery.dexscreener_client import Token
from utils.logger import get_logger

logger = get_logger(__name__)


class TokenFilter:
    """
    Applies the hunter's candidate criteria to discovered tokens.

    Usage:
        tf = TokenFilter()
        candidates = tf.apply_filters(trending + fresh)
    """

    def __init__(
        self,
        min_liquidity: float = 5_000,
        min_mcap: float = 10_000,
        max_mcap: float = 50_000_000,
        min_volume_24h: float = 1_000,
        min_buys_24h: int = 5,
    ):
        self.min_liquidity = min_liquidity
        self.min_mcap = min_mcap
        self.max_mcap = max_mcap
        self.min_volume_24h = min_volume_24h
        self.min_buys_24h = min_buys_24h

    @staticmethod
    def dedupe(tokens: list[Token]) -> list[Token]:
        """Drop repeated addresses, keeping the first occurrence and its order."""
        seen: set[str] = set()
        unique = []
        for token in tokens:
            if token.address in seen:
                continue
            seen.add(token.address)
            unique.append(token)
        return unique

    def apply_filters(self, tokens: list[Token]) -> list[Token]:
        """
        Dedupe, then keep only tokens that pass every check.
        Order is preserved.
        """
        unique = self.dedupe(tokens)
        results = []
        for token in unique:
            issues = self.check_token_quality(token)
            if not issues:
                results.append(token)
            else:
                logger.debug("token_filtered_out", symbol=token.symbol, issues=issues)
        logger.info("candidate_filter_applied", input=len(tokens), unique=len(unique), output=len(results))
        return results

    def check_token_quality(self, token: Token) -> list[str]:
        """
        Check a single token against the criteria.
        Returns a list of problems found (empty = passed all checks).
        """
        issues = []

        if token.liquidity < self.min_liquidity:
            issues.append(f"Low liquidity: ${token.liquidity:,.0f}")
        if token.mcap <= self.min_mcap:
            issues.append(f"Market cap too small: ${token.mcap:,.0f}")
        if token.mcap >= self.max_mcap:
            issues.append(f"Market cap too large: ${token.mcap:,.0f}")
        if token.volume_24h <= self.min_volume_24h:
            issues.append(f"Low 24h volume: ${token.volume_24h:,.0f}")
        if token.buys_24h <= self.min_buys_24h:
            issues.append(f"Too few buys: {token.buys_24h}")

        return issues
