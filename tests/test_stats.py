import pytest

from models.events import (
    ACCOUNT_REMOVED,
    ACCOUNT_STATUS,
    MASTER_EVENT,
    TRADE_MIRRORED,
    TRADE_SETTLED,
    AccountRemoved,
    AccountStatusChanged,
    MasterEventProcessed,
    TradeMirrored,
    TradeSettled,
)
from models.trade import MirroredTrade
from modules.stats import StatsAggregator, summarize, trades_frame


def make_trade(contract_id, symbol="R_100", status="active", profit_loss=0.0, copies=2):
    return MirroredTrade(
        contract_id=contract_id,
        symbol=symbol,
        trade_type="CALL",
        buy_price=10.0,
        current_price=10.0,
        profit_loss=profit_loss,
        status=status,
        mirrored_to_count=copies,
        trader_id="trader1",
    )


@pytest.mark.asyncio
async def test_counters_follow_bus_events(bus):
    stats = StatsAggregator(bus)
    win = make_trade("C1", status="won", profit_loss=8.0)
    loss = make_trade("C2", status="lost", profit_loss=-10.0)

    bus.publish(ACCOUNT_STATUS, AccountStatusChanged("CR100", "connected"))
    bus.publish(ACCOUNT_STATUS, AccountStatusChanged("CR200", "connected"))
    bus.publish(MASTER_EVENT, MasterEventProcessed("trader1", "transaction"))
    bus.publish(MASTER_EVENT, MasterEventProcessed("trader1", "portfolio"))
    bus.publish(TRADE_MIRRORED, TradeMirrored(win))
    bus.publish(TRADE_MIRRORED, TradeMirrored(loss))
    bus.publish(TRADE_SETTLED, TradeSettled(win))
    bus.publish(TRADE_SETTLED, TradeSettled(loss))
    await bus.join()

    snap = stats.snapshot()
    assert snap["total_profit"] == 8.0
    assert snap["total_loss"] == -10.0
    assert snap["net_profit"] == -2.0
    assert snap["ticks_synced"] == 2
    assert snap["trades_copied"] == 2
    assert snap["active_clients_count"] == 2
    assert snap["last_mirrored_time"] == loss.timestamp


@pytest.mark.asyncio
async def test_active_clients_drop_on_disconnect_and_removal(bus):
    stats = StatsAggregator(bus)
    bus.publish(ACCOUNT_STATUS, AccountStatusChanged("CR100", "connected"))
    bus.publish(ACCOUNT_STATUS, AccountStatusChanged("CR200", "connected"))
    bus.publish(ACCOUNT_STATUS, AccountStatusChanged("CR100", "disconnected", "socket closed"))
    bus.publish(ACCOUNT_REMOVED, AccountRemoved("CR200"))
    await bus.join()

    assert stats.active_clients_count == 0


def test_trades_frame_columns():
    df = trades_frame([make_trade("C1"), make_trade("C2", symbol="R_50")])
    assert list(df["contract_id"]) == ["C1", "C2"]
    assert str(df["timestamp"].dt.tz) == "UTC"


def test_summarize_counts_only_realised_pnl():
    trades = [
        make_trade("C1", status="won", profit_loss=5.0),
        make_trade("C2", status="lost", profit_loss=-10.0, copies=1),
        make_trade("C3", status="active", profit_loss=3.0),
        make_trade("C4", symbol="R_50", status="won", profit_loss=2.5),
    ]

    out = summarize(trades)

    r100 = out.loc["R_100"]
    assert r100["trades"] == 3
    assert r100["won"] == 1
    assert r100["lost"] == 1
    assert r100["copies"] == 5
    assert r100["profit_loss"] == pytest.approx(-5.0)
    assert out.loc["R_50", "profit_loss"] == pytest.approx(2.5)


def test_summarize_empty():
    out = summarize([])
    assert out.empty
    assert list(out.columns) == ["trades", "won", "lost", "copies", "profit_loss"]
