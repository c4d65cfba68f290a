import pytest

from conftest import make_token
from discovery.dexscreener_client import DexScreenerClient, Token
from discovery.token_filter import TokenFilter
from utils.errors import GatewayError

PAIR = {
    "chainId": "solana",
    "dexId": "raydium",
    "url": "https://dexscreener.com/solana/pairabc",
    "pairAddress": "pairabc",
    "baseToken": {"address": "TokA", "name": "Dog Wif Hat", "symbol": "WIF"},
    "priceUsd": "0.0123",
    "priceChange": {"m5": 1.5, "h1": -2.25, "h24": 30},
    "txns": {"h24": {"buys": 420, "sells": 180}},
    "volume": {"h24": 340500},
    "liquidity": {"usd": 88000},
    "fdv": 1300000,
    "marketCap": 1200000,
    "pairCreatedAt": 1700000000000,
}


def test_token_from_pair():
    token = Token.from_pair(PAIR)
    assert token.address == "TokA"
    assert token.symbol == "WIF"
    assert token.price == 0.0123
    assert token.price_change_1h == -2.25
    assert token.buys_24h == 420
    assert token.liquidity == 88000
    assert token.mcap == 1200000
    assert token.created_at == 1700000000000


def test_token_from_sparse_pair():
    token = Token.from_pair({"baseToken": {"address": "TokZ"}})
    assert token.symbol == "???"
    assert token.name == "Unknown"
    assert token.price == 0
    assert token.url == "https://dexscreener.com/solana/TokZ"


def fake_api(responses):
    async def _get(endpoint):
        value = responses.get(endpoint)
        if isinstance(value, Exception):
            raise value
        return value
    return _get


async def no_sleep(seconds):
    return None


@pytest.mark.asyncio
async def test_trending_keeps_solana_and_drops_failed_lookups(monkeypatch):
    client = DexScreenerClient(sleep=no_sleep)
    monkeypatch.setattr(client, "_get", fake_api({
        "/token-boosts/top/v1": [
            {"chainId": "solana", "tokenAddress": "TokA"},
            {"chainId": "ethereum", "tokenAddress": "0xabc"},
            {"chainId": "solana", "tokenAddress": "TokB"},
            {"chainId": "solana", "tokenAddress": "TokC"},
        ],
        "/tokens/v1/solana/TokA": [PAIR],
        "/tokens/v1/solana/TokB": GatewayError("dexscreener", "HTTP 500"),
        "/tokens/v1/solana/TokC": [],
    }))

    tokens = await client.trending()

    assert [t.symbol for t in tokens] == ["WIF"]


@pytest.mark.asyncio
async def test_list_failure_returns_empty(monkeypatch):
    client = DexScreenerClient(sleep=no_sleep)
    monkeypatch.setattr(client, "_get", fake_api({
        "/token-boosts/top/v1": GatewayError("dexscreener", "HTTP 429", 429),
        "/token-profiles/latest/v1": GatewayError("dexscreener", "timeout"),
    }))

    assert await client.trending() == []
    assert await client.new_pairs() == []


@pytest.mark.asyncio
async def test_new_pairs_applies_liquidity_floor(monkeypatch):
    thin = {**PAIR, "baseToken": {"address": "TokB", "symbol": "THIN"}, "liquidity": {"usd": 2000}}
    sleeps = []

    async def record_sleep(seconds):
        sleeps.append(seconds)

    client = DexScreenerClient(pair_delay=0.2, sleep=record_sleep)
    monkeypatch.setattr(client, "_get", fake_api({
        "/token-profiles/latest/v1": [
            {"chainId": "solana", "tokenAddress": "TokA"},
            {"chainId": "solana", "tokenAddress": "TokB"},
        ],
        "/tokens/v1/solana/TokA": [PAIR],
        "/tokens/v1/solana/TokB": [thin],
    }))

    tokens = await client.new_pairs(min_liquidity=3000)

    assert [t.symbol for t in tokens] == ["WIF"]
    assert sleeps == [0.2, 0.2]


@pytest.mark.asyncio
async def test_by_address_separates_no_data_from_failure(monkeypatch):
    client = DexScreenerClient()
    monkeypatch.setattr(client, "_get", fake_api({
        "/tokens/v1/solana/TokA": [],
        "/tokens/v1/solana/TokB": GatewayError("dexscreener", "HTTP 503", 503),
    }))

    assert await client.by_address("TokA") is None
    with pytest.raises(GatewayError):
        await client.by_address("TokB")


@pytest.mark.asyncio
async def test_search_keeps_solana_pairs(monkeypatch):
    client = DexScreenerClient()
    monkeypatch.setattr(client, "_get", fake_api({
        "/latest/dex/search?q=wif": {"pairs": [PAIR, {**PAIR, "chainId": "base"}]},
    }))

    assert [t.symbol for t in await client.search("wif")] == ["WIF"]
    assert await client.search("   ") == []


def test_filter_thresholds():
    tf = TokenFilter()
    assert tf.check_token_quality(make_token("a", "OK")) == []
    assert tf.check_token_quality(make_token("b", "X", liquidity=4_999))
    assert tf.check_token_quality(make_token("c", "X", mcap=10_000))
    assert tf.check_token_quality(make_token("d", "X", mcap=50_000_000))
    assert tf.check_token_quality(make_token("e", "X", volume_24h=1_000))
    assert tf.check_token_quality(make_token("f", "X", buys_24h=5))
    assert tf.check_token_quality(make_token("g", "X", buys_24h=6)) == []


def test_filter_dedupes_keeping_first_sighting():
    first = make_token("a", "FIRST")
    again = make_token("a", "AGAIN")
    other = make_token("b", "OTHER")
    assert [t.symbol for t in TokenFilter().apply_filters([first, other, again])] == ["FIRST", "OTHER"]


@pytest.mark.asyncio
async def test_malformed_pair_is_a_gateway_error(monkeypatch):
    broken = {**PAIR, "baseToken": {"address": "TokB", "symbol": "BAD"}, "priceUsd": "n/a"}
    client = DexScreenerClient(sleep=no_sleep)
    monkeypatch.setattr(client, "_get", fake_api({
        "/token-boosts/top/v1": [
            {"chainId": "solana", "tokenAddress": "TokB"},
            {"chainId": "solana", "tokenAddress": "TokA"},
        ],
        "/tokens/v1/solana/TokA": [PAIR],
        "/tokens/v1/solana/TokB": [broken],
        "/latest/dex/search?q=wif": {"pairs": [broken, PAIR]},
    }))

    with pytest.raises(GatewayError, match="malformed pair"):
        await client.by_address("TokB")
    assert [t.symbol for t in await client.trending()] == ["WIF"]
    assert [t.symbol for t in await client.search("wif")] == ["WIF"]
