"""
Price Updater
=============
Keeps current_price and pnl_pct fresh on every OPEN position, so the
risk manager has something to act on.

    pnl_pct = (current_price - entry_price) / entry_price * 100

One DexScreener lookup per position with a short pause in between. A
failed lookup is logged at debug and skipped; the next tick tries again.
Rows that closed in the meantime are left alone (the UPDATE only matches
OPEN rows).
"""

import asyncio
from typing import Callable

from database.db import Database
from utils.errors import GatewayError
from utils.logger import get_logger

logger = get_logger(__name__)


def compute_pnl_pct(entry_price: float, current_price: float) -> float:
    return (current_price - entry_price) / entry_price * 100


class PriceUpdater:
    """
    Usage:
        updater = PriceUpdater(db, market)
        last_result = await updater.run()
    """

    def __init__(
        self,
        db: Database,
        market,
        is_live: Callable[[], bool] | None = None,
        pause_seconds: float = 0.5,
        sleep=asyncio.sleep,
    ):
        self.db = db
        self.market = market
        self._is_live = is_live or (lambda: True)
        self.pause_seconds = pause_seconds
        self._sleep = sleep

    async def run(self) -> str:
        positions = await self.db.get_open_positions()
        updated = 0

        for position in positions:
            if not self._is_live():
                break
            if await self._update_one(position):
                updated += 1
            await self._sleep(self.pause_seconds)

        return f"Updated {updated}/{len(positions)} prices"

    async def _update_one(self, position: dict) -> bool:
        entry_price = position.get("entry_price") or 0
        if entry_price <= 0:
            return False

        try:
            token = await self.market.by_address(position["token_address"])
        except GatewayError as e:
            logger.debug("price_fetch_failed", symbol=position.get("symbol"), error=str(e))
            return False

        if token is None or token.price <= 0 or not self._is_live():
            return False

        pnl_pct = compute_pnl_pct(entry_price, token.price)
        return await self.db.update_position_price(position["id"], token.price, pnl_pct)
