"""
core/engine.py
--------------
One engine instance = one master channel, one account registry, one session
manager and the pieces that connect them.  Built by
``core.initialization.initialize_components``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from models.session import CopySession
from modules.account_registry import AccountRegistry
from modules.connection import ConnectionAdapter
from modules.copy_service import CopyServiceClient
from modules.event_subscriber import EventSubscriber
from modules.mirror_executor import MirrorExecutor
from modules.session_manager import SessionManager
from modules.stats import StatsAggregator
from utils.event_bus import EventBus


@dataclass
class CopyEngine:
    logger: logging.Logger
    bus: EventBus
    master: ConnectionAdapter
    registry: AccountRegistry
    subscriber: EventSubscriber
    executor: MirrorExecutor
    sessions: SessionManager
    stats: StatsAggregator
    copy_service: CopyServiceClient
    master_account: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        self.subscriber.add_handler("transaction", self.executor.on_buy_detected)
        self.subscriber.add_handler("portfolio", self.executor.apply_portfolio)

    # ------------------------------------------------------------------ #
    async def connect_master(self, token: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Open the master channel; authorize it when a token is given."""
        await self.master.connect()
        if token:
            auth = await self.master.authorize(token)
            self.master_account = {
                "account_id": auth.get("loginid"),
                "account_type": "demo" if auth.get("is_virtual") else "real",
                "currency": auth.get("currency"),
                "balance": auth.get("balance"),
            }
            self.logger.info(
                "👤 Master %s (%s %s)",
                self.master_account["account_id"],
                self.master_account["account_type"],
                self.master_account["currency"],
            )
        return self.master_account

    async def restore_accounts(self) -> List:
        self.registry.load()
        return await self.registry.validate_all()

    def resolve_trader_ids(self, trader_ids: Optional[List[str]] = None) -> List[str]:
        """The master channel streams only the authorized account's own trades,
        so it carries exactly one trader scope: the master loginid once
        authorized, otherwise the single configured id."""
        master_id = (self.master_account or {}).get("account_id")
        ids = list(dict.fromkeys(trader_ids or ([master_id] if master_id else [])))
        if not ids:
            raise ValueError("No trader to copy: authorize the master or set COPY_TRADER_IDS.")
        if len(ids) > 1:
            raise ValueError(f"One master channel streams a single trader, got {ids}.")
        if master_id and ids[0] != master_id:
            raise ValueError(
                f"Trader {ids[0]} is not the authorized master {master_id}; its trades are not on this channel."
            )
        return ids

    async def start(self, trader_ids: Optional[List[str]] = None) -> List[CopySession]:
        started = []
        for trader_id in self.resolve_trader_ids(trader_ids):
            started.append(await self.sessions.start_copying(trader_id))
        return started

    async def shutdown(self) -> None:
        await self.sessions.stop_all()
        # in-flight fan-outs run to completion so their outcomes are counted
        await self.subscriber.wait_idle()
        await self.executor.wait_idle()
        await self.bus.join()
        await self.registry.close()
        await self.master.close()
        await self.bus.close()
        self.logger.info("📊 Final stats: %s", self.stats.snapshot())
