"""
Safety Rails
=============
Hard limits checked before every buy.

They can't be switched off from the dashboard. Change the run's config
(stop, edit, start) to adjust them.

The rails, in the order they're checked:
1. Wallet: no wallet configured means scan-only, never trade
2. Position limit: at most maxConcurrentTrades OPEN positions
3. One per token: never open a second position in a token we hold
4. Size: min(cap, 30% of the live balance), and refuse dust under 0.005 SOL

The executor runs all of this under its buy lock, so the answer can't
change between the check and the swap.
"""

from config.swarm_config import SwarmConfig
from database.db import Database
from utils.logger import get_logger

logger = get_logger(__name__)

# Never put more than this share of the wallet into one buy
MAX_BALANCE_FRACTION = 0.3

# Below this a swap isn't worth the fees
MIN_TRADE_SOL = 0.005


class SafetyRails:
    """
    Pre-trade checks and position sizing.

    Usage:
        rails = SafetyRails(config, db)
        can_trade, reason = await rails.pre_trade_check(token_address, has_wallet=True)
        size = rails.calculate_trade_size(balance_sol, cap_sol=config.max_position_sol)
    """

    def __init__(self, config: SwarmConfig, db: Database):
        self.config = config
        self.db = db

    async def pre_trade_check(self, token_address: str, has_wallet: bool) -> tuple[bool, str]:
        """
        Run the checks that don't need the wallet balance.

        Returns:
            (can_trade, reason): True with "" if safe, else False with a reason code
        """
        if not has_wallet:
            return False, "no_wallet"

        open_count = await self.db.count_open_positions()
        if open_count >= self.config.max_concurrent_trades:
            return False, "max_concurrent"

        if await self.db.get_open_position_by_token(token_address):
            return False, "already_holding"

        return True, ""

    @staticmethod
    def calculate_trade_size(wallet_balance_sol: float, cap_sol: float) -> float:
        """How much SOL to spend: the cap, but never more than 30% of the wallet."""
        return max(0.0, min(cap_sol, wallet_balance_sol * MAX_BALANCE_FRACTION))

    @staticmethod
    def size_check(trade_size_sol: float) -> tuple[bool, str]:
        if trade_size_sol < MIN_TRADE_SOL:
            return False, "insufficient_balance"
        return True, ""
