# modules/copy_service.py
import logging
from typing import List, Optional

from models.trader import TraderProfile, TraderStatistics
from modules.connection import ConnectionAdapter
from utils.logger import setup_logger


class CopyServiceClient:
    """Trader-discovery surface of the backend's own copy service.

    This is the "many traders → one follower" variant: the backend performs
    the copying after ``copy_start``, so no local fan-out is involved.
    """

    def __init__(self, connection: ConnectionAdapter, logger: Optional[logging.Logger] = None):
        self.connection = connection
        self.logger = logger or setup_logger("CopyService")

    async def list_traders(self) -> List[TraderProfile]:
        response = await self.connection.call({"copytrading_list": 1})
        payload = response.get("copytrading_list") or {}
        raw = payload.get("traders", []) if isinstance(payload, dict) else payload
        traders = [TraderProfile(**t) for t in raw or []]
        self.logger.info("📋 %d trader(s) available to copy", len(traders))
        return traders

    async def trader_statistics(self, trader_id: str) -> TraderStatistics:
        response = await self.connection.call({"copytrading_statistics": 1, "trader_id": trader_id})
        data = dict(response.get("copytrading_statistics") or {})
        data.setdefault("trader_id", trader_id)
        return TraderStatistics(**data)

    async def copy_start(self, trader_id: str) -> None:
        await self.connection.call({"copy_start": trader_id})
        self.logger.info("▶️ copy_start %s", trader_id)

    async def copy_stop(self, trader_id: str) -> None:
        await self.connection.call({"copy_stop": trader_id})
        self.logger.info("⏹️ copy_stop %s", trader_id)
