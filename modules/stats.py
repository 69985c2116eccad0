"""
stats.py
--------
Rolling copy-trading counters, derived only from bus events.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Set

import pandas as pd

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
from utils.event_bus import EventBus

logger = logging.getLogger(__name__)

_TRADE_COLUMNS = [
    "timestamp", "trader_id", "contract_id", "symbol", "trade_type",
    "buy_price", "current_price", "profit_loss", "status", "mirrored_to_count",
]


class StatsAggregator:
    def __init__(self, bus: EventBus):
        self.total_profit: float = 0.0
        self.total_loss: float = 0.0  # negative magnitude
        self.ticks_synced: int = 0
        self.trades_copied: int = 0
        self.last_mirrored_time: Optional[str] = None
        self._connected: Set[str] = set()

        bus.subscribe(MASTER_EVENT, self._on_master_event)
        bus.subscribe(TRADE_MIRRORED, self._on_trade_mirrored)
        bus.subscribe(TRADE_SETTLED, self._on_trade_settled)
        bus.subscribe(ACCOUNT_STATUS, self._on_account_status)
        bus.subscribe(ACCOUNT_REMOVED, self._on_account_removed)

    @property
    def active_clients_count(self) -> int:
        return len(self._connected)

    @property
    def net_profit(self) -> float:
        return self.total_profit + self.total_loss

    def snapshot(self) -> Dict[str, object]:
        return {
            "total_profit": round(self.total_profit, 2),
            "total_loss": round(self.total_loss, 2),
            "net_profit": round(self.net_profit, 2),
            "active_clients_count": self.active_clients_count,
            "ticks_synced": self.ticks_synced,
            "trades_copied": self.trades_copied,
            "last_mirrored_time": self.last_mirrored_time,
        }

    # ------------------------------------------------------------------ #
    # Event hooks
    # ------------------------------------------------------------------ #
    def _on_master_event(self, _event: MasterEventProcessed) -> None:
        self.ticks_synced += 1

    def _on_trade_mirrored(self, event: TradeMirrored) -> None:
        self.trades_copied += 1
        self.last_mirrored_time = event.trade.timestamp

    def _on_trade_settled(self, event: TradeSettled) -> None:
        pnl = event.trade.profit_loss
        if pnl >= 0:
            self.total_profit += pnl
        else:
            self.total_loss += pnl
        logger.debug("[Stats] settled %s pnl=%.2f", event.trade.contract_id, pnl)

    def _on_account_status(self, event: AccountStatusChanged) -> None:
        if event.status == "connected":
            self._connected.add(event.account_id)
        else:
            self._connected.discard(event.account_id)

    def _on_account_removed(self, event: AccountRemoved) -> None:
        self._connected.discard(event.account_id)


# ---------------------------------------------------------------------- #
# Reporting helpers
# ---------------------------------------------------------------------- #
def trades_frame(trades: Iterable[MirroredTrade]) -> pd.DataFrame:
    """Tabulate mirrored trades (one row per master contract)."""
    rows = [{col: getattr(t, col) for col in _TRADE_COLUMNS} for t in trades]
    df = pd.DataFrame(rows, columns=_TRADE_COLUMNS)
    if not df.empty:
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    return df


def summarize(trades: Iterable[MirroredTrade]) -> pd.DataFrame:
    """Per-symbol trade count, win count, copies placed and realised P/L."""
    df = trades_frame(trades)
    columns = ["trades", "won", "lost", "copies", "profit_loss"]
    if df.empty:
        return pd.DataFrame(columns=columns)
    settled = df["status"] != "active"
    df["won"] = (df["status"] == "won").astype(int)
    df["lost"] = (df["status"] == "lost").astype(int)
    df["realised"] = df["profit_loss"].where(settled, 0.0)
    out = df.groupby("symbol").agg(
        trades=("contract_id", "count"),
        won=("won", "sum"),
        lost=("lost", "sum"),
        copies=("mirrored_to_count", "sum"),
        profit_loss=("realised", "sum"),
    )
    return out[columns]
