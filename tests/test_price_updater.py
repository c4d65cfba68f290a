import pytest

from conftest import FakeMarket, make_token, open_test_position
from discovery.dexscreener_client import DexScreenerClient
from trader.price_updater import PriceUpdater, compute_pnl_pct


def test_compute_pnl_pct():
    assert compute_pnl_pct(0.001, 0.0015) == pytest.approx(50.0)
    assert compute_pnl_pct(2.0, 1.0) == pytest.approx(-50.0)


@pytest.mark.asyncio
async def test_updates_price_and_pnl(db):
    position_id = await open_test_position(db, address="TokA", symbol="A", entry_price=0.001)
    market = FakeMarket(tokens={"TokA": make_token("TokA", "A", price=0.0015)})
    updater = PriceUpdater(db, market, pause_seconds=0)

    assert await updater.run() == "Updated 1/1 prices"

    position = await db.get_position(position_id)
    assert position["current_price"] == 0.0015
    assert position["pnl_pct"] == pytest.approx(50.0)


@pytest.mark.asyncio
async def test_skips_unusable_data(db):
    failing = await open_test_position(db, address="TokA", symbol="A")
    missing = await open_test_position(db, address="TokB", symbol="B")
    zero = await open_test_position(db, address="TokC", symbol="C")
    market = FakeMarket(
        tokens={"TokC": make_token("TokC", "C", price=0)},
        failing={"TokA"},
    )
    updater = PriceUpdater(db, market, pause_seconds=0)

    assert await updater.run() == "Updated 0/3 prices"

    for position_id in (failing, missing, zero):
        assert (await db.get_position(position_id))["pnl_pct"] == 0


@pytest.mark.asyncio
async def test_zero_entry_price_is_never_looked_up(db):
    await open_test_position(db, address="TokA", symbol="A", entry_price=0, entry_sol=0)
    market = FakeMarket(tokens={"TokA": make_token("TokA", "A")})
    updater = PriceUpdater(db, market, pause_seconds=0)

    assert await updater.run() == "Updated 0/1 prices"
    assert market.lookups == []


@pytest.mark.asyncio
async def test_no_writes_after_stop(db):
    position_id = await open_test_position(db, address="TokA", symbol="A", entry_price=0.001)
    market = FakeMarket(tokens={"TokA": make_token("TokA", "A", price=0.005)})
    updater = PriceUpdater(db, market, is_live=lambda: False, pause_seconds=0)

    await updater.run()

    assert (await db.get_position(position_id))["current_price"] == 0.001


@pytest.mark.asyncio
async def test_malformed_market_data_skips_only_that_position(db, monkeypatch):
    broken = await open_test_position(db, address="TokA", symbol="A", entry_price=0.001)
    healthy = await open_test_position(db, address="TokB", symbol="B", entry_price=0.001)
    pairs = {
        "/tokens/v1/solana/TokA": [{"baseToken": {"address": "TokA"}, "priceUsd": "n/a"}],
        "/tokens/v1/solana/TokB": [{"baseToken": {"address": "TokB"}, "priceUsd": "0.002"}],
    }
    market = DexScreenerClient()

    async def fake_get(endpoint):
        return pairs[endpoint]

    monkeypatch.setattr(market, "_get", fake_get)
    updater = PriceUpdater(db, market, pause_seconds=0)

    assert await updater.run() == "Updated 1/2 prices"

    assert (await db.get_position(broken))["current_price"] == 0.001
    assert (await db.get_position(healthy))["current_price"] == 0.002
    assert (await db.get_position(healthy))["pnl_pct"] == pytest.approx(100.0)
