"""
Solana Client Helper
====================
A thin wrapper around the Solana JSON-RPC endpoint and the trading wallet.

This module handles:
- Loading the trading wallet from the base58 private key
- Reading the wallet's SOL balance
- Sending signed transactions and polling until they confirm

The swarm can run without a wallet (scan-only). In that case `keypair` is
None and every balance call returns 0 / None.
"""

import asyncio
import base64

import aiohttp
import base58
from solders.keypair import Keypair

from utils.errors import ConfigError, GatewayError
from utils.logger import get_logger

logger = get_logger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000


def load_keypair(private_key: str) -> Keypair:
    """Decode a base58 secret key. Raises ConfigError if it isn't a valid keypair."""
    try:
        secret_bytes = base58.b58decode(private_key.strip())
        return Keypair.from_bytes(secret_bytes)
    except Exception as e:
        raise ConfigError(f"Invalid wallet private key: {e}") from e


class SolanaClient:
    """
    Async Solana RPC client plus the trading wallet.

    Usage:
        client = SolanaClient(rpc_url, wallet_private_key)
        await client.initialize()
        balance = await client.get_sol_balance()
        await client.close()
    """

    def __init__(
        self,
        rpc_url: str,
        wallet_private_key: str = "",
        session: aiohttp.ClientSession | None = None,
    ):
        self.rpc_url = rpc_url
        self.session = session
        self._owns_session = session is None
        self.keypair: Keypair | None = None

        if wallet_private_key:
            self.keypair = load_keypair(wallet_private_key)
            logger.info("wallet_loaded", address=self.wallet_address)

    @property
    def wallet_address(self) -> str | None:
        """Get the trading wallet address."""
        return str(self.keypair.pubkey()) if self.keypair else None

    @property
    def has_wallet(self) -> bool:
        return self.keypair is not None

    async def initialize(self) -> None:
        """Create the HTTP session for making RPC calls."""
        if self.session is None:
            self.session = aiohttp.ClientSession()
        logger.info("solana_client_initialized", rpc=self.rpc_url)

    async def close(self) -> None:
        """Clean up the HTTP session."""
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    # =========================================================================
    # Core RPC Calls
    # =========================================================================

    async def _rpc_call(self, method: str, params: list | None = None) -> dict:
        """
        Make a JSON-RPC call to the Solana node.
        Raises GatewayError on transport failure or an RPC error reply.
        """
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params or [],
        }
        try:
            async with self.session.post(self.rpc_url, json=payload) as response:
                if response.status != 200:
                    text = await response.text()
                    raise GatewayError("solana_rpc", f"{method} HTTP {response.status}: {text[:200]}", response.status)
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise GatewayError("solana_rpc", f"{method}: {e}") from e

        if "error" in data:
            logger.error("rpc_error", method=method, error=data["error"])
            raise GatewayError("solana_rpc", f"{method}: {data['error']}")
        return data

    async def get_sol_balance(self, address: str | None = None) -> float:
        """
        Get the SOL balance of a wallet (ours by default).
        Returns balance in SOL (not lamports).
        """
        address = address or self.wallet_address
        if not address:
            return 0.0
        result = await self._rpc_call("getBalance", [address])
        lamports = result.get("result", {}).get("value", 0)
        return lamports / LAMPORTS_PER_SOL

    async def get_wallet_balance(self) -> dict | None:
        """{sol, address} for the trading wallet, or None in scan-only mode."""
        if not self.keypair:
            return None
        sol = await self.get_sol_balance()
        return {"sol": sol, "address": self.wallet_address}

    # =========================================================================
    # Transactions
    # =========================================================================

    async def send_transaction(self, signed_bytes: bytes) -> str:
        """
        Send a signed transaction and return its signature.

        skipPreflight + maxRetries=3: send without simulation and let the
        node re-broadcast if it doesn't land immediately.
        """
        encoded = base64.b64encode(signed_bytes).decode("utf-8")
        data = await self._rpc_call("sendTransaction", [
            encoded,
            {
                "encoding": "base64",
                "skipPreflight": True,
                "maxRetries": 3,
                "preflightCommitment": "confirmed",
            },
        ])
        signature = data.get("result")
        if not signature:
            raise GatewayError("solana_rpc", "sendTransaction returned no signature")
        return signature

    async def confirm_transaction(self, signature: str, timeout: int = 60, poll_seconds: float = 1.0) -> bool:
        """
        Poll until a transaction is confirmed on-chain.

        Returns True if confirmed, False if it timed out. Raises GatewayError
        if the transaction landed with an error.
        """
        for _ in range(timeout):
            try:
                data = await self._rpc_call(
                    "getSignatureStatuses",
                    [[signature], {"searchTransactionHistory": True}],
                )
            except GatewayError as e:
                logger.debug("confirm_check_error", error=str(e))
                await asyncio.sleep(poll_seconds)
                continue

            statuses = (data.get("result") or {}).get("value") or []
            status = statuses[0] if statuses else None
            if status and status.get("confirmationStatus") in ("confirmed", "finalized"):
                if status.get("err"):
                    raise GatewayError("solana_rpc", f"transaction {signature} failed: {status['err']}")
                logger.info("tx_confirmed", signature=signature)
                return True

            await asyncio.sleep(poll_seconds)

        logger.warning("tx_confirmation_timeout", signature=signature)
        return False
