"""
session_manager.py
------------------
Start/stop lifecycle of copy sessions: at most one live session per trader,
and every live session owns its stream subscriptions.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from core.errors import NoLinkedAccounts, SessionAlreadyActive, SessionCancelled, SessionNotFound
from models.events import (
    SESSION_STARTED,
    SESSION_STOPPED,
    TRADE_MIRRORED,
    TRADE_SETTLED,
    SessionStarted,
    SessionStopped,
    TradeMirrored,
    TradeSettled,
)
from models.session import CopySession
from modules.account_registry import AccountRegistry
from modules.event_subscriber import EventSubscriber
from utils.event_bus import EventBus
from utils.logger import setup_logger

DEFAULT_STREAMS = ("transaction", "portfolio")


class SessionManager:
    def __init__(
        self,
        registry: AccountRegistry,
        subscriber: EventSubscriber,
        *,
        bus: Optional[EventBus] = None,
        streams: Sequence[str] = DEFAULT_STREAMS,
        logger: Optional[logging.Logger] = None,
    ):
        self.registry = registry
        self.subscriber = subscriber
        self.bus = bus
        self.streams = tuple(streams)
        self.logger = logger or setup_logger("SessionManager")
        self._sessions: Dict[str, CopySession] = {}

        subscriber.on_stream_lost(self._on_stream_lost)
        if bus is not None:
            bus.subscribe(TRADE_MIRRORED, self._on_trade_mirrored)
            bus.subscribe(TRADE_SETTLED, self._on_trade_settled)

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    def get(self, trader_id: str) -> Optional[CopySession]:
        return self._sessions.get(trader_id)

    def is_active(self, trader_id: str) -> bool:
        return trader_id in self._sessions

    def sessions(self) -> List[CopySession]:
        return list(self._sessions.values())

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    async def start_copying(self, trader_id: str) -> CopySession:
        if trader_id in self._sessions:
            raise SessionAlreadyActive(trader_id)
        if not self.registry.list_active():
            raise NoLinkedAccounts(trader_id)

        # reserve first so a concurrent start sees AlreadyActive
        session = CopySession(trader_id=trader_id)
        self._sessions[trader_id] = session
        try:
            for kind in self.streams:
                session.subscriptions.append(await self.subscriber.subscribe(kind, trader_id))
                # stop_copying or a stream loss may have dropped the reservation
                if self._sessions.get(trader_id) is not session:
                    raise SessionCancelled(trader_id)
        except Exception as exc:
            self.logger.error("❌ Could not start copying %s: %s", trader_id, exc)
            for sub in session.subscriptions:
                await sub.unsubscribe()
            if self._sessions.get(trader_id) is session:
                del self._sessions[trader_id]
            raise

        self.logger.info("▶️ Copying %s to %d account(s)", trader_id, len(self.registry.list_active()))
        self._publish(SESSION_STARTED, SessionStarted(trader_id))
        return session

    async def stop_copying(self, trader_id: str) -> None:
        """In-flight mirror requests are not cancelled."""
        session = self._sessions.pop(trader_id, None)
        if session is None:
            raise SessionNotFound(trader_id)
        for sub in session.subscriptions:
            await sub.unsubscribe()
        self.logger.info(
            "⏹️ Stopped copying %s (trades %d, P/L %.2f)",
            trader_id, session.copied_trades, session.profit_loss,
        )
        self._publish(SESSION_STOPPED, SessionStopped(trader_id, "stopped"))

    async def stop_all(self) -> None:
        for trader_id in list(self._sessions):
            await self.stop_copying(trader_id)

    # ------------------------------------------------------------------ #
    # Event hooks
    # ------------------------------------------------------------------ #
    def _on_stream_lost(self, scope: str) -> None:
        session = self._sessions.pop(scope, None)
        if session is None:
            return
        for sub in session.subscriptions:
            sub.closed = True
        self.logger.error("❌ Session %s ended: master stream lost", scope)
        self._publish(SESSION_STOPPED, SessionStopped(scope, "stream_lost"))

    def _on_trade_mirrored(self, event: TradeMirrored) -> None:
        session = self._sessions.get(event.trade.trader_id or "")
        if session is not None:
            session.copied_trades += 1

    def _on_trade_settled(self, event: TradeSettled) -> None:
        session = self._sessions.get(event.trade.trader_id or "")
        if session is not None:
            session.profit_loss += event.trade.profit_loss

    def _publish(self, topic: str, payload: object) -> None:
        if self.bus is not None:
            self.bus.publish(topic, payload)
