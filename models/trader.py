from __future__ import annotations
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

RiskLevel = Literal["low", "medium", "high"]


class TraderProfile(BaseModel):
    """One entry of ``copytrading_list`` (a trader that can be copied)."""
    model_config = ConfigDict(extra="allow")

    trader_id: str
    name: str = ""
    followers_count: int = 0
    total_profit: float = 0.0
    win_rate: float = 0.0
    risk_level: RiskLevel = "medium"

    @model_validator(mode="before")
    @classmethod
    def _aliases(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            data.setdefault("trader_id", data.get("loginid") or data.get("account_id"))
            if not data.get("name"):
                data["name"] = data.get("loginid") or ""
            if "followers_count" not in data and "copiers" in data:
                data["followers_count"] = data["copiers"]
        return data


class TraderStatistics(BaseModel):
    """Payload of ``copytrading_statistics``."""
    model_config = ConfigDict(extra="allow")

    trader_id: str
    active_since: Optional[int] = None
    copiers: int = 0
    total_trades: int = 0
    trades_profitable: float = 0.0
    avg_duration: Optional[int] = None
    avg_profit: Optional[float] = None
    avg_loss: Optional[float] = None
    performance_probability: Optional[float] = None
    monthly_profitable_trades: dict = Field(default_factory=dict)
    yearly_profitable_trades: dict = Field(default_factory=dict)

    @property
    def win_rate(self) -> float:
        return self.trades_profitable
