import pytest
from pydantic import ValidationError

from core.message_handler import parse_stream_message
from models.account import LinkedAccount
from models.trade import MirroredTrade, TradeIntent
from tests.fakes import authorize_ok, contract_payload, stream_msg

# ------------------------- TradeIntent ------------------------- #


def test_intent_from_contract_maps_underlying_and_price():
    intent = TradeIntent.from_contract(contract_payload()["proposal_open_contract"])

    assert intent.symbol == "R_100"
    assert intent.amount == 10.0
    assert intent.basis == "stake"
    assert intent.duration == 5
    assert intent.duration_unit == "t"


def test_buy_parameters_prefer_duration_over_expiry():
    intent = TradeIntent.from_contract(contract_payload()["proposal_open_contract"])

    params = intent.buy_parameters("EUR")

    assert params == {
        "contract_type": "CALL",
        "symbol": "R_100",
        "basis": "stake",
        "amount": 10.0,
        "currency": "EUR",
        "duration": 5,
        "duration_unit": "t",
    }


def test_buy_parameters_fall_back_to_expiry():
    intent = TradeIntent.from_contract(
        contract_payload(duration=0, duration_unit="")["proposal_open_contract"]
    )

    params = intent.buy_parameters("USD")

    assert "duration" not in params
    assert params["date_expiry"] == 1700000000


def test_digit_zero_barrier_is_kept():
    intent = TradeIntent(contract_type="DIGITMATCH", symbol="R_10", amount=1, duration=1, duration_unit="t", barrier=0)

    assert intent.is_digit
    assert intent.buy_parameters("USD")["barrier"] == 0


def test_blank_barrier_is_dropped():
    intent = TradeIntent(contract_type="CALL", symbol="R_10", amount=1, barrier="  ")
    assert "barrier" not in intent.buy_parameters("USD")


def test_intent_rejects_non_positive_stake():
    with pytest.raises(ValidationError):
        TradeIntent(contract_type="CALL", symbol="R_10", amount=0)


# ------------------------- MirroredTrade ------------------------- #


def test_settled_trade_is_frozen():
    trade = MirroredTrade(contract_id="C1", symbol="R_100", trade_type="CALL", buy_price=10, current_price=10)

    assert trade.apply_update(current_price=11.0, profit=1.0)
    assert trade.apply_update(profit=-10.0, settled=True)
    assert trade.status == "lost"
    assert not trade.apply_update(current_price=50.0, profit=40.0, settled=True)
    assert trade.profit_loss == -10.0
    assert trade.current_price == 11.0


# ------------------------- LinkedAccount ------------------------- #


def test_linked_account_from_authorize():
    auth = authorize_ok("VRTC1", currency="USD", balance=10000, is_virtual=1)["authorize"]

    account = LinkedAccount.from_authorize("tok-v", auth)

    assert account.account_id == "VRTC1"
    assert account.account_type == "demo"
    assert account.is_mirror_target
    assert "tok-v" not in repr(account)


def test_record_round_trip_resets_status():
    account = LinkedAccount.from_authorize("tok-a", authorize_ok("CR100")["authorize"])
    account.is_active = False

    restored = LinkedAccount.from_record(account.to_record("ENC"), "tok-a")

    assert restored.account_id == "CR100"
    assert restored.connection_status == "pending"
    assert restored.is_active is False
    assert restored.added_at == account.added_at


# ------------------------- Stream parsing ------------------------- #


def test_parse_transaction_message():
    msg = parse_stream_message(stream_msg("transaction", "s1", {"action": "buy", "contract_id": 42, "symbol": "R_100"}))

    assert msg.kind == "transaction"
    assert msg.subscription_id == "s1"
    assert msg.transaction.is_buy
    assert msg.transaction.contract_id == "42"


def test_parse_single_portfolio_contract():
    msg = parse_stream_message(stream_msg("portfolio", "s2", {"contract_id": 7, "bid_price": 3.5, "status": "won"}))

    assert len(msg.contracts) == 1
    assert msg.contracts[0].settled
    assert msg.contracts[0].price == 3.5


@pytest.mark.parametrize(
    "raw",
    [
        {"msg_type": "tick", "tick": {"quote": 1}},
        {"msg_type": "transaction", "error": {"code": "X"}, "subscription": {"id": "s"}},
        {"msg_type": "transaction", "transaction": {"action": "buy", "contract_id": 1}},
        stream_msg("transaction", "s", {}),
    ],
)
def test_parse_ignores_unusable_messages(raw):
    assert parse_stream_message(raw) is None
