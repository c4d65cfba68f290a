"""
Jupiter Client
===============
Handles all swap execution through the Jupiter Aggregator.

Jupiter finds the best route across every Solana DEX (Raydium, Orca,
Meteora, pump.fun AMMs...) and builds the transaction for us. We never
talk to a DEX directly.

The swap process:
1. Get a QUOTE: "I want to swap 0.05 SOL for token X. What's the best route?"
2. Get the TRANSACTION: Jupiter builds the Solana transaction for that quote
3. SIGN it with the wallet keypair
4. SEND it through our RPC node (utils/solana_client.py)
5. CONFIRM it landed on-chain

buy() and sell() never raise. Every failure, at whichever step, comes back
as TradeResult(success=False, error=...), so the executor can always write
its ledger row.
"""

import base64
from dataclasses import dataclass, asdict

import aiohttp
from solders.transaction import VersionedTransaction

from utils.errors import GatewayError, TradeError
from utils.logger import get_logger
from utils.solana_client import SolanaClient, LAMPORTS_PER_SOL
from utils.timeutil import now_ms

logger = get_logger(__name__)

# SOL's special mint address on Solana
SOL_MINT = "So11111111111111111111111111111111111111112"

DEFAULT_TOKEN_DECIMALS = 6


@dataclass
class TradeResult:
    """Outcome of one swap attempt."""

    success: bool
    input_amount: float
    timestamp: int
    tx_hash: str | None = None
    error: str | None = None
    output_amount: float | None = None
    price: float | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class JupiterClient:
    """
    Client for the Jupiter V6 Swap API.

    Usage:
        jupiter = JupiterClient(solana_client)
        await jupiter.initialize()
        result = await jupiter.buy(token_mint, sol_amount=0.05, slippage_bps=500)
        if result.success:
            print(result.tx_hash, result.output_amount)
    """

    BASE_URL = "https://quote-api.jup.ag/v6"

    def __init__(
        self,
        solana: SolanaClient,
        session: aiohttp.ClientSession | None = None,
        base_url: str | None = None,
        confirm_timeout: int = 60,
    ):
        self.solana = solana
        self.session = session
        self._owns_session = session is None
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.confirm_timeout = confirm_timeout

    async def initialize(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=30))

    async def close(self) -> None:
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    # =========================================================================
    # Public API
    # =========================================================================

    async def buy(self, token_address: str, sol_amount: float, slippage_bps: int = 500) -> TradeResult:
        """Swap `sol_amount` SOL into a token. Price is SOL per token."""
        timestamp = now_ms()
        tx_hash = None
        try:
            lamports = int(sol_amount * LAMPORTS_PER_SOL)
            quote = await self.get_quote(SOL_MINT, token_address, lamports, slippage_bps)

            decimals = quote.get("outputDecimals") or DEFAULT_TOKEN_DECIMALS
            out_amount = float(quote.get("outAmount") or 0) / (10 ** decimals)
            # refused before anything is sent
            if out_amount <= 0:
                raise TradeError("quote returned zero output")

            tx_hash = await self.execute_swap(quote)

            logger.info("jupiter_buy_confirmed", token=token_address, sol=sol_amount, tokens=out_amount, tx=tx_hash)
            return TradeResult(
                success=True,
                tx_hash=tx_hash,
                input_amount=sol_amount,
                output_amount=out_amount,
                price=sol_amount / out_amount,
                timestamp=timestamp,
            )
        except Exception as e:
            tx_hash = tx_hash or getattr(e, "tx_hash", None)
            logger.error("jupiter_buy_failed", token=token_address, sol=sol_amount, error=str(e), type=type(e).__name__)
            return TradeResult(
                success=False,
                error=str(e) or type(e).__name__,
                tx_hash=tx_hash,
                input_amount=sol_amount,
                timestamp=timestamp,
            )

    async def sell(
        self,
        token_address: str,
        token_amount: float,
        decimals: int = DEFAULT_TOKEN_DECIMALS,
        slippage_bps: int = 500,
    ) -> TradeResult:
        """Swap `token_amount` tokens back into SOL. Price is SOL per token."""
        timestamp = now_ms()
        tx_hash = None
        try:
            raw_amount = int(token_amount * (10 ** decimals))
            if raw_amount <= 0:
                raise TradeError("nothing to sell")
            quote = await self.get_quote(token_address, SOL_MINT, raw_amount, slippage_bps)
            tx_hash = await self.execute_swap(quote)

            out_sol = float(quote.get("outAmount") or 0) / LAMPORTS_PER_SOL

            logger.info("jupiter_sell_confirmed", token=token_address, tokens=token_amount, sol=out_sol, tx=tx_hash)
            return TradeResult(
                success=True,
                tx_hash=tx_hash,
                input_amount=token_amount,
                output_amount=out_sol,
                price=out_sol / token_amount,
                timestamp=timestamp,
            )
        except Exception as e:
            tx_hash = tx_hash or getattr(e, "tx_hash", None)
            logger.error("jupiter_sell_failed", token=token_address, tokens=token_amount, error=str(e), type=type(e).__name__)
            return TradeResult(
                success=False,
                error=str(e) or type(e).__name__,
                tx_hash=tx_hash,
                input_amount=token_amount,
                timestamp=timestamp,
            )

    # =========================================================================
    # Swap steps
    # =========================================================================

    async def get_quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> dict:
        """
        Get a swap quote from Jupiter.

        Args:
            input_mint: Token you're selling (SOL_MINT for buys)
            output_mint: Token you're buying (SOL_MINT for sells)
            amount: Amount to sell in smallest units (lamports for SOL)
            slippage_bps: Max slippage tolerance (500 = 5%)

        Raises TradeError if Jupiter has no route or answers with an error.
        """
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
            "onlyDirectRoutes": "false",
        }
        async with self.session.get(f"{self.base_url}/quote", params=params) as response:
            if response.status != 200:
                error = await response.text()
                raise TradeError(f"Jupiter quote error {response.status}: {error[:200]}")
            quote = await response.json(content_type=None)

        logger.debug(
            "quote_received",
            input_amount=quote.get("inAmount"),
            output_amount=quote.get("outAmount"),
            price_impact=quote.get("priceImpactPct"),
        )
        return quote

    async def execute_swap(self, quote: dict) -> str:
        """
        Build, sign, send and confirm the swap for a quote.
        Returns the transaction signature. Raises on any failure.
        """
        keypair = self.solana.keypair
        if keypair is None:
            raise TradeError("no wallet keypair loaded")

        swap_body = {
            "quoteResponse": quote,
            "userPublicKey": str(keypair.pubkey()),
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": "auto",
        }
        async with self.session.post(f"{self.base_url}/swap", json=swap_body) as response:
            if response.status != 200:
                error = await response.text()
                raise TradeError(f"Jupiter swap error {response.status}: {error[:200]}")
            swap_data = await response.json(content_type=None)

        swap_tx_b64 = swap_data.get("swapTransaction")
        if not swap_tx_b64:
            raise TradeError("Jupiter returned no swap transaction")

        transaction = VersionedTransaction.from_bytes(base64.b64decode(swap_tx_b64))
        signed_tx = VersionedTransaction(transaction.message, [keypair])

        signature = await self.solana.send_transaction(bytes(signed_tx))
        logger.info("swap_sent", tx_signature=signature)

        try:
            confirmed = await self.solana.confirm_transaction(signature, timeout=self.confirm_timeout)
        except GatewayError as e:
            raise TradeError(str(e), tx_hash=signature) from e
        if not confirmed:
            raise TradeError(f"transaction {signature} not confirmed in {self.confirm_timeout}s", tx_hash=signature)
        return signature
