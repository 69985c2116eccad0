import asyncio

import pytest

from core.errors import ApiError, NoLinkedAccounts, SessionAlreadyActive, SessionCancelled, SessionNotFound
from models.events import SESSION_STARTED, SESSION_STOPPED
from modules.event_subscriber import EventSubscriber
from modules.mirror_executor import MirrorExecutor
from modules.session_manager import SessionManager
from tests.fakes import TEST_LOGGER, api_error, buy_ok, stream_msg

# ------------------------- Fixtures ------------------------- #


@pytest.fixture
def subscriber(master, bus):
    return EventSubscriber(master, bus=bus, logger=TEST_LOGGER)


@pytest.fixture
def sessions(registry, subscriber, bus):
    return SessionManager(registry, subscriber, bus=bus, logger=TEST_LOGGER)


# ------------------------- Tests ------------------------- #


@pytest.mark.asyncio
async def test_start_requires_linked_accounts(master, sessions):
    await master.connect()

    with pytest.raises(NoLinkedAccounts):
        await sessions.start_copying("trader1")

    assert sessions.sessions() == []
    assert master.requests("transaction") == []


@pytest.mark.asyncio
async def test_start_opens_both_streams(master, registry, sessions, subscriber, bus):
    started = []
    bus.subscribe(SESSION_STARTED, started.append)
    await master.connect()
    await registry.add_account("tok-a")

    session = await sessions.start_copying("trader1")
    await bus.join()

    assert session.trader_id == "trader1"
    assert {s.kind for s in session.subscriptions} == {"transaction", "portfolio"}
    assert subscriber.get("transaction", "trader1") is not None
    assert [e.trader_id for e in started] == ["trader1"]


@pytest.mark.asyncio
async def test_second_start_fails_already_active(master, registry, sessions):
    await master.connect()
    await registry.add_account("tok-a")
    await sessions.start_copying("trader1")

    with pytest.raises(SessionAlreadyActive):
        await sessions.start_copying("trader1")

    assert len([s for s in sessions.sessions() if s.trader_id == "trader1"]) == 1
    assert len(master.requests("transaction")) == 1


@pytest.mark.asyncio
async def test_concurrent_starts_yield_one_session(master, registry, sessions):
    async def slow(request):
        await asyncio.sleep(0.01)
        return {"msg_type": "transaction", "subscription": {"id": "tx-1"}}

    master.responders["transaction"] = slow
    await master.connect()
    await registry.add_account("tok-a")

    results = await asyncio.gather(
        sessions.start_copying("trader1"), sessions.start_copying("trader1"), return_exceptions=True
    )

    assert sum(isinstance(r, SessionAlreadyActive) for r in results) == 1
    assert len(sessions.sessions()) == 1


@pytest.mark.asyncio
async def test_failed_subscription_rolls_back(master, registry, sessions, subscriber):
    master.responders["portfolio"] = api_error("RateLimit", "too many requests")
    await master.connect()
    await registry.add_account("tok-a")

    with pytest.raises(ApiError):
        await sessions.start_copying("trader1")

    assert not sessions.is_active("trader1")
    assert subscriber.subscriptions() == []
    assert len(master.requests("forget")) == 1  # the transaction stream was released


@pytest.mark.asyncio
async def test_stop_closes_subscriptions(master, registry, sessions, subscriber, bus):
    stopped = []
    bus.subscribe(SESSION_STOPPED, stopped.append)
    await master.connect()
    await registry.add_account("tok-a")
    await sessions.start_copying("trader1")

    await sessions.stop_copying("trader1")
    await bus.join()

    assert not sessions.is_active("trader1")
    assert subscriber.subscriptions() == []
    assert len(master.requests("forget")) == 2
    assert stopped[0].reason == "stopped"

    with pytest.raises(SessionNotFound):
        await sessions.stop_copying("trader1")


@pytest.mark.asyncio
async def test_stop_succeeds_when_unsubscribe_fails(master, registry, sessions):
    await master.connect()
    await registry.add_account("tok-a")
    await sessions.start_copying("trader1")
    master.responders["forget"] = ConnectionResetError("peer reset")

    await sessions.stop_copying("trader1")

    assert not sessions.is_active("trader1")


@pytest.mark.asyncio
async def test_stream_loss_ends_session(master, registry, sessions, bus):
    stopped = []
    bus.subscribe(SESSION_STOPPED, stopped.append)
    await master.connect()
    await registry.add_account("tok-a")
    await sessions.start_copying("trader1")

    await master.drop()
    await bus.join()

    assert sessions.sessions() == []
    assert stopped[0].reason == "stream_lost"


@pytest.mark.asyncio
async def test_stop_does_not_cancel_in_flight_buys(master, registry, sessions, subscriber, backend, bus):
    executor = MirrorExecutor(master, registry, bus=bus, logger=TEST_LOGGER)
    subscriber.add_handler("transaction", executor.on_buy_detected)
    gate = asyncio.Event()

    async def slow_buy(request):
        await gate.wait()
        return buy_ok()

    backend.buy["CR100"] = slow_buy
    await master.connect()
    await registry.add_account("tok-a")
    session = await sessions.start_copying("trader1")
    tx = next(s for s in session.subscriptions if s.kind == "transaction")

    await master.push(stream_msg("transaction", tx.subscription_id, {"action": "buy", "contract_id": "C1"}))
    await asyncio.sleep(0.01)
    await sessions.stop_copying("trader1")

    gate.set()
    await subscriber.wait_idle()
    trade = executor.get("C1")
    assert trade is not None
    assert trade.mirrored_to_count == 1


@pytest.mark.asyncio
async def test_session_counters_follow_trade_events(master, registry, sessions, subscriber, bus):
    executor = MirrorExecutor(master, registry, bus=bus, logger=TEST_LOGGER)
    subscriber.add_handler("transaction", executor.on_buy_detected)
    subscriber.add_handler("portfolio", executor.apply_portfolio)
    await master.connect()
    await registry.add_account("tok-a")
    session = await sessions.start_copying("trader1")
    subs = {s.kind: s.subscription_id for s in session.subscriptions}

    await master.push(stream_msg("transaction", subs["transaction"], {"action": "buy", "contract_id": "C1"}))
    await subscriber.wait_idle()
    await master.push(
        stream_msg("portfolio", subs["portfolio"], {"contracts": [{"contract_id": "C1", "profit": -4.0, "is_sold": 1}]})
    )
    await bus.join()

    assert session.copied_trades == 1
    assert session.profit_loss == -4.0


@pytest.mark.asyncio
async def test_stop_during_start_releases_subscriptions(master, registry, sessions, subscriber):
    gate = asyncio.Event()

    async def slow(request):
        await gate.wait()
        return {"msg_type": "transaction", "subscription": {"id": "tx-1"}}

    master.responders["transaction"] = slow
    await master.connect()
    await registry.add_account("tok-a")

    task = asyncio.create_task(sessions.start_copying("trader1"))
    await asyncio.sleep(0.01)
    await sessions.stop_copying("trader1")
    gate.set()

    with pytest.raises(SessionCancelled):
        await task

    assert not sessions.is_active("trader1")
    assert subscriber.subscriptions() == []
    assert master.requests("portfolio") == []
    assert master.requests("forget") == [{"forget": "tx-1"}]

    # a fresh start afterwards opens its own streams
    await sessions.start_copying("trader1")
    assert {s.kind for s in subscriber.subscriptions()} == {"transaction", "portfolio"}
