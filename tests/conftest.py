import asyncio
import re

import pytest
import pytest_asyncio

from agent.activity import ActivityFeed, AgentBoard
from agent.llm_client import decode_narratives, decode_score
from agent.swarm import Gateways
from config.swarm_config import SwarmConfig
from database.db import Database
from discovery.dexscreener_client import Token
from trader.jupiter_client import TradeResult
from utils.errors import GatewayError
from utils.timeutil import now_ms


def make_token(address: str, symbol: str, **overrides) -> Token:
    """A token that passes every candidate filter unless overridden."""
    values = {
        "name": f"{symbol} Token",
        "mcap": 500_000,
        "price": 0.001,
        "volume_24h": 50_000,
        "liquidity": 20_000,
        "buys_24h": 100,
        "sells_24h": 50,
        "fdv": 500_000,
        "created_at": now_ms() - 3 * 3600 * 1000,
        "dex_id": "raydium",
    }
    values.update(overrides)
    return Token(address=address, symbol=symbol, **values)


def make_config(**overrides) -> SwarmConfig:
    values = {
        "openrouter_key": "test-key",
        "rpc_url": "http://rpc.test",
        "wallet_key": "test-wallet",
        "max_position_sol": 0.05,
        "stop_loss_pct": 30.0,
        "take_profit_pct": 100.0,
        "max_concurrent_trades": 3,
        "min_score_to_trade": 80.0,
        "scan_interval_ms": 60_000,
        "slippage_bps": 500,
    }
    values.update(overrides)
    return SwarmConfig(**values)


class FakeMarket:
    def __init__(self, trending=None, fresh=None, tokens=None, failing=None, search_results=None):
        self.trending_tokens = list(trending or [])
        self.fresh_tokens = list(fresh or [])
        self.tokens = dict(tokens or {})
        for token in self.trending_tokens + self.fresh_tokens:
            self.tokens.setdefault(token.address, token)
        self.failing = set(failing or [])
        self.search_results = list(search_results or [])
        self.lookups = []
        self.new_pairs_min_liquidity = []
        self.initialized = False
        self.closed = False

    async def initialize(self):
        self.initialized = True

    async def close(self):
        self.closed = True

    async def trending(self):
        return list(self.trending_tokens)

    async def new_pairs(self, min_liquidity=5000):
        self.new_pairs_min_liquidity.append(min_liquidity)
        return [t for t in self.fresh_tokens if t.liquidity >= min_liquidity]

    async def by_address(self, address):
        self.lookups.append(address)
        if address in self.failing:
            raise GatewayError("dexscreener", f"lookup failed for {address}")
        return self.tokens.get(address)

    async def search(self, query):
        return list(self.search_results)


class FakeReasoning:
    DEFAULT_SCORE = '{"score": 50, "reasoning": "meh", "signal": "WATCH"}'

    def __init__(self, scores=None, narratives_raw='{"narratives": []}'):
        # symbol -> raw model answer, or an exception to raise
        self.scores = dict(scores or {})
        self.narratives_raw = narratives_raw
        self.scored_symbols = []
        self.summaries = []
        self.initialized = False
        self.closed = False

    async def initialize(self):
        self.initialized = True

    async def close(self):
        self.closed = True

    async def score(self, prompt):
        symbol = re.search(r"Token: (\S+) \(", prompt).group(1)
        self.scored_symbols.append(symbol)
        raw = self.scores.get(symbol, self.DEFAULT_SCORE)
        if isinstance(raw, Exception):
            raise raw
        return decode_score(raw)

    async def narrative_analysis(self, summary):
        self.summaries.append(summary)
        return decode_narratives(self.narratives_raw)


class FakeSwap:
    def __init__(self, succeed=True, tokens_per_sol=1000.0, sol_per_token=0.002):
        self.succeed = succeed
        self.tokens_per_sol = tokens_per_sol
        self.sol_per_token = sol_per_token
        self.buys = []
        self.sells = []
        # Optional gate: sell() waits on it after setting sell_started
        self.sell_gate: asyncio.Event | None = None
        self.sell_started = asyncio.Event()
        self.initialized = False
        self.closed = False

    async def initialize(self):
        self.initialized = True

    async def close(self):
        self.closed = True

    async def buy(self, token_address, sol_amount, slippage_bps=500):
        self.buys.append((token_address, sol_amount, slippage_bps))
        if not self.succeed:
            return TradeResult(success=False, input_amount=sol_amount, timestamp=now_ms(), error="no route")
        return TradeResult(
            success=True,
            input_amount=sol_amount,
            timestamp=now_ms(),
            tx_hash=f"buy-tx-{len(self.buys)}",
            output_amount=sol_amount * self.tokens_per_sol,
            price=1 / self.tokens_per_sol,
        )

    async def sell(self, token_address, token_amount, decimals=6, slippage_bps=500):
        self.sells.append((token_address, token_amount, decimals, slippage_bps))
        self.sell_started.set()
        if self.sell_gate is not None:
            await self.sell_gate.wait()
        if not self.succeed:
            return TradeResult(success=False, input_amount=token_amount, timestamp=now_ms(), error="slippage exceeded")
        return TradeResult(
            success=True,
            input_amount=token_amount,
            timestamp=now_ms(),
            tx_hash=f"sell-tx-{len(self.sells)}",
            output_amount=token_amount * self.sol_per_token,
            price=self.sol_per_token,
        )


class FakeWallet:
    def __init__(self, balance=10.0, has_wallet=True, fail_balance=False):
        self.balance = balance
        self.has_wallet = has_wallet
        self.fail_balance = fail_balance
        self.wallet_address = "WaLLet1111111111111111111111111111111111111" if has_wallet else None
        self.initialized = False
        self.closed = False

    async def initialize(self):
        self.initialized = True

    async def close(self):
        self.closed = True

    async def get_sol_balance(self, address=None):
        if self.fail_balance:
            raise GatewayError("solana_rpc", "getBalance: connection refused")
        return self.balance if self.has_wallet else 0.0

    async def get_wallet_balance(self):
        if not self.has_wallet:
            return None
        return {"sol": await self.get_sol_balance(), "address": self.wallet_address}


NARRATIVES_RAW = '{"narratives": [{"name": "AI Agents", "score": 90, "tokens": ["$AIX"], "trend": "rising"}]}'


class FakeGatewayFactory:
    """Builds fake gateways: one trending token AIX that scores 92 BUY."""

    def __init__(self, has_wallet=True):
        self.has_wallet = has_wallet
        self.built = []

    def __call__(self, config, settings):
        gateways = Gateways(
            market=FakeMarket(trending=[make_token("TokA", "AIX", name="AI Index")]),
            reasoning=FakeReasoning(
                scores={"AIX": '{"score": 92, "reasoning": "fits the AI meta", "signal": "BUY"}'},
                narratives_raw=NARRATIVES_RAW,
            ),
            swap=FakeSwap(),
            wallet=FakeWallet(has_wallet=self.has_wallet),
        )
        self.built.append(gateways)
        return gateways


def log_messages(feed: ActivityFeed) -> list[str]:
    return [entry["message"] for entry in feed.recent()]


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "swarm.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def feed():
    return ActivityFeed()


@pytest.fixture
def board():
    return AgentBoard()


async def open_test_position(db: Database, address="TokA", symbol="A", entry_price=0.001,
                             entry_sol=0.05, pnl_pct=None) -> int:
    position_id = await db.open_position({
        "token_address": address,
        "symbol": symbol,
        "entry_price": entry_price,
        "entry_sol": entry_sol,
        "token_amount": entry_sol / entry_price if entry_price else 0,
        "entry_tx": f"entry-{address}",
        "score": 88,
        "narrative": "AI Agents",
    })
    if pnl_pct is not None:
        await db.update_position_price(position_id, entry_price * (1 + pnl_pct / 100), pnl_pct)
    return position_id
