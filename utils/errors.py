"""
Error Types
===========
Every failure the swarm knows how to handle has a name here.

How each one is treated:
- ConfigError: missing or unusable credentials/endpoint. Fatal to start(),
  nothing else is.
- GatewayError: a network/API call to DexScreener, OpenRouter, Jupiter or
  the Solana RPC failed. Logged and isolated to the token or position being
  worked on; the loop moves on to the next item.
- ParseError: the reasoning service answered with something we can't read.
  Never escapes the decoder, which hands back a neutral fallback instead.
- TradeError: a swap didn't go through. Recorded in the trade ledger and
  carried on TradeResult.error; the position is left as it was.

A rule-triggered close (stop-loss, take-profit, liquidity exit) is NOT an
error. See trader/risk_manager.py: RiskTransition.
"""


class SwarmError(Exception):
    """Base class for all handled swarm failures."""


class ConfigError(SwarmError):
    """Credentials or endpoints missing/invalid. Aborts start()."""


class GatewayError(SwarmError):
    """An external service call failed (transport error or bad status)."""

    def __init__(self, service: str, message: str, status: int | None = None):
        self.service = service
        self.status = status
        super().__init__(f"{service}: {message}")


class ParseError(SwarmError):
    """A reasoning payload could not be decoded into the expected shape."""


class TradeError(SwarmError):
    """A swap failed at quote, build, send or confirmation."""

    def __init__(self, message: str, tx_hash: str | None = None):
        self.tx_hash = tx_hash
        super().__init__(message)
