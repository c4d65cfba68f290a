import asyncio

import pytest

from conftest import FakeMarket, FakeSwap, FakeWallet, log_messages, make_config, make_token, open_test_position
from trader.safety_rails import SafetyRails
from trader.trade_executor import TradeExecutor


def build_executor(db, feed, config=None, swap=None, wallet=None, market=None, is_live=None, board=None):
    return TradeExecutor(
        config or make_config(),
        db,
        swap or FakeSwap(),
        wallet or FakeWallet(),
        feed,
        market=market,
        board=board,
        is_live=is_live,
    )


def test_trade_size_is_capped_by_balance_fraction():
    assert SafetyRails.calculate_trade_size(10.0, 0.05) == 0.05
    assert SafetyRails.calculate_trade_size(0.1, 0.05) == pytest.approx(0.03)
    assert SafetyRails.size_check(0.004) == (False, "insufficient_balance")
    assert SafetyRails.size_check(0.005) == (True, "")


@pytest.mark.asyncio
async def test_buy_opens_position_and_records_trade(db, feed):
    swap = FakeSwap(tokens_per_sol=1000)
    executor = build_executor(db, feed, swap=swap)
    token = make_token("TokA", "A", price=0.0042)

    result = await executor.buy(token, score=88, narrative="AI Agents")

    assert result["status"] == "executed"
    assert swap.buys == [("TokA", 0.05, 500)]
    position = await db.get_position(result["position_id"])
    assert position["status"] == "OPEN"
    assert position["entry_price"] == 0.0042
    assert position["entry_sol"] == 0.05
    assert position["token_amount"] == pytest.approx(50)
    assert position["score"] == 88
    assert position["narrative"] == "AI Agents"

    history = await db.get_trade_history()
    assert len(history) == 1
    assert history[0]["side"] == "BUY"
    assert history[0]["success"] == 1
    assert history[0]["tx_hash"] == "buy-tx-1"


@pytest.mark.asyncio
async def test_buy_without_wallet_never_swaps(db, feed):
    swap = FakeSwap()
    executor = build_executor(db, feed, swap=swap, wallet=FakeWallet(has_wallet=False))

    result = await executor.buy(make_token("TokA", "A"), score=95, narrative="Unknown")

    assert result == {"status": "skipped", "reason": "no_wallet"}
    assert swap.buys == []
    assert await db.get_trade_history() == []


@pytest.mark.asyncio
async def test_buy_skips_token_already_held(db, feed):
    await open_test_position(db, address="TokA", symbol="A")
    swap = FakeSwap()
    executor = build_executor(db, feed, swap=swap)

    result = await executor.buy(make_token("TokA", "A"), score=95, narrative="Unknown")

    assert result["reason"] == "already_holding"
    assert swap.buys == []


@pytest.mark.asyncio
async def test_concurrent_buys_respect_max_concurrent(db, feed):
    swap = FakeSwap()
    executor = build_executor(db, feed, config=make_config(max_concurrent_trades=1), swap=swap)

    results = await asyncio.gather(
        executor.buy(make_token("TokA", "A"), score=85, narrative="Unknown"),
        executor.buy(make_token("TokB", "B"), score=90, narrative="Unknown"),
    )

    assert [r["status"] for r in results] == ["executed", "skipped"]
    assert results[1]["reason"] == "max_concurrent"
    assert len(swap.buys) == 1
    assert await db.count_open_positions() == 1
    assert "Max concurrent trades (1) reached, skipping B" in log_messages(feed)


@pytest.mark.asyncio
async def test_failed_buy_is_recorded_without_position(db, feed):
    executor = build_executor(db, feed, swap=FakeSwap(succeed=False))

    result = await executor.buy(make_token("TokA", "A"), score=85, narrative="Unknown")

    assert result["status"] == "failed"
    assert result["error"] == "no route"
    assert await db.get_positions() == []
    history = await db.get_trade_history()
    assert history[0]["success"] == 0
    assert history[0]["error"] == "no route"


@pytest.mark.asyncio
async def test_buy_refuses_dust_trades(db, feed):
    swap = FakeSwap()
    executor = build_executor(db, feed, swap=swap, wallet=FakeWallet(balance=0.01))

    result = await executor.buy(make_token("TokA", "A"), score=85, narrative="Unknown")

    assert result["reason"] == "insufficient_balance"
    assert swap.buys == []


@pytest.mark.asyncio
async def test_buy_skips_when_balance_unreadable(db, feed):
    swap = FakeSwap()
    executor = build_executor(db, feed, swap=swap, wallet=FakeWallet(fail_balance=True))

    result = await executor.buy(make_token("TokA", "A"), score=85, narrative="Unknown")

    assert result["reason"] == "balance_unavailable"
    assert swap.buys == []


@pytest.mark.asyncio
async def test_buy_after_stop_does_not_swap(db, feed):
    swap = FakeSwap()
    executor = build_executor(db, feed, swap=swap, is_live=lambda: False)

    result = await executor.buy(make_token("TokA", "A"), score=85, narrative="Unknown")

    assert result["reason"] == "stopped"
    assert swap.buys == []


@pytest.mark.asyncio
async def test_sell_closes_position_with_reason(db, feed):
    position_id = await open_test_position(db, entry_price=0.001, entry_sol=0.05)
    swap = FakeSwap(sol_per_token=0.0006)
    executor = build_executor(db, feed, swap=swap)

    result = await executor.sell(position_id, "STOPPED")

    assert result["status"] == "executed"
    position = await db.get_position(position_id)
    assert position["status"] == "STOPPED"
    assert position["exit_tx"] == "sell-tx-1"
    assert position["exit_price"] == 0.0006
    assert position["exit_time"] is not None

    sell_row = (await db.get_trade_history())[0]
    assert sell_row["side"] == "SELL"
    assert sell_row["success"] == 1
    assert sell_row["sol_amount"] == pytest.approx(0.03)


@pytest.mark.asyncio
async def test_failed_sell_leaves_position_open(db, feed):
    position_id = await open_test_position(db)
    executor = build_executor(db, feed, swap=FakeSwap(succeed=False))

    result = await executor.sell(position_id, "STOPPED")

    assert result["status"] == "failed"
    assert (await db.get_position(position_id))["status"] == "OPEN"
    history = await db.get_trade_history()
    assert len(history) == 1
    assert history[0]["success"] == 0


@pytest.mark.asyncio
async def test_second_sell_for_same_position_is_refused(db, feed):
    position_id = await open_test_position(db)
    swap = FakeSwap()
    swap.sell_gate = asyncio.Event()
    executor = build_executor(db, feed, swap=swap)

    first = asyncio.create_task(executor.sell(position_id, "STOPPED"))
    await swap.sell_started.wait()

    second = await executor.sell(position_id, "CLOSED")
    assert second == {"status": "skipped", "reason": "sell_in_flight"}

    swap.sell_gate.set()
    result = await first
    assert result["status"] == "executed"
    assert len(swap.sells) == 1
    assert (await db.get_position(position_id))["status"] == "STOPPED"


@pytest.mark.asyncio
async def test_sell_finishing_after_stop_leaves_agent_idle(db, feed, board):
    position_id = await open_test_position(db)
    swap = FakeSwap()
    swap.sell_gate = asyncio.Event()
    live = {"running": True}
    executor = build_executor(db, feed, swap=swap, board=board, is_live=lambda: live["running"])

    pending = asyncio.create_task(executor.sell(position_id, "STOPPED"))
    await swap.sell_started.wait()

    live["running"] = False
    board.reset()
    swap.sell_gate.set()
    result = await pending

    # the swap already went out, so its effect is still recorded
    assert result["status"] == "executed"
    assert (await db.get_position(position_id))["status"] == "STOPPED"
    assert board.get("executor").status == "idle"


@pytest.mark.asyncio
async def test_sell_of_closed_position_is_skipped(db, feed):
    position_id = await open_test_position(db)
    await db.close_position(position_id, "CLOSED")
    swap = FakeSwap()
    executor = build_executor(db, feed, swap=swap)

    result = await executor.sell(position_id, "STOPPED")

    assert result["reason"] == "not_open"
    assert swap.sells == []


@pytest.mark.asyncio
async def test_manual_buy_uses_requested_size(db, feed):
    market = FakeMarket(tokens={"TokM": make_token("TokM", "MAN", price=0.01)})
    swap = FakeSwap()
    executor = build_executor(db, feed, swap=swap, market=market)

    result = await executor.manual_buy("TokM", 0.02)

    assert result["status"] == "executed"
    assert swap.buys[0][1] == 0.02
    position = await db.get_position(result["position_id"])
    assert position["narrative"] == "Manual"
    assert position["score"] == 0
    assert position["entry_price"] == 0.01


@pytest.mark.asyncio
async def test_manual_buy_unknown_token(db, feed):
    swap = FakeSwap()
    executor = build_executor(db, feed, swap=swap, market=FakeMarket())

    result = await executor.manual_buy("Nope", 0.02)

    assert result == {"status": "skipped", "reason": "token_not_found"}
    assert swap.buys == []


@pytest.mark.asyncio
async def test_manual_sell_closes_as_closed(db, feed):
    position_id = await open_test_position(db)
    executor = build_executor(db, feed)

    result = await executor.manual_sell(position_id)

    assert result["status"] == "executed"
    assert (await db.get_position(position_id))["status"] == "CLOSED"
