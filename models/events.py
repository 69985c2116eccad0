# --------------------------------------------------------------------
# models/events.py
# Domain events published on the engine's EventBus.  Presentation layers
# subscribe to these instead of watching component state.
# --------------------------------------------------------------------
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from models.account import ConnectionStatus
from models.trade import MirroredTrade

ACCOUNT_ADDED = "account_added"
ACCOUNT_REMOVED = "account_removed"
ACCOUNT_STATUS = "account_status"
SESSION_STARTED = "session_started"
SESSION_STOPPED = "session_stopped"
MASTER_EVENT = "master_event"
TRADE_MIRRORED = "trade_mirrored"
TRADE_UPDATED = "trade_updated"
TRADE_SETTLED = "trade_settled"


@dataclass
class AccountAdded:
    account_id: str
    currency: str


@dataclass
class AccountRemoved:
    account_id: str


@dataclass
class AccountStatusChanged:
    account_id: str
    status: ConnectionStatus
    reason: Optional[str] = None


@dataclass
class SessionStarted:
    trader_id: str


@dataclass
class SessionStopped:
    trader_id: str
    reason: str = "stopped"  # "stopped" | "stream_lost"


@dataclass
class MasterEventProcessed:
    trader_id: str
    kind: str


@dataclass
class TradeMirrored:
    trade: MirroredTrade


@dataclass
class TradeUpdated:
    trade: MirroredTrade


@dataclass
class TradeSettled:
    trade: MirroredTrade
