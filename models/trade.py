from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

TradeStatus = Literal["active", "won", "lost"]


class TradeIntent(BaseModel):
    """Normalized parameters of a master trade, ready to be replayed as ``buy``.

    The stake is copied nominally; target accounts receive the same ``amount``
    in their own currency units (no conversion).
    """

    contract_type: str = Field(..., min_length=1)
    symbol: str = Field(..., min_length=1)
    basis: Literal["stake"] = "stake"
    amount: float = Field(..., gt=0)
    currency: Optional[str] = None
    duration: Optional[int] = None
    duration_unit: Optional[str] = None
    date_expiry: Optional[int] = None
    barrier: Optional[Union[str, int, float]] = None
    barrier2: Optional[Union[str, int, float]] = None

    @field_validator("duration", "date_expiry", "duration_unit", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        # upstream sends 0 / "" for fields that do not apply to a contract
        if v in ("", 0, None):
            return None
        return v

    @field_validator("barrier", "barrier2", mode="before")
    @classmethod
    def blank_barrier(cls, v):
        # a digit prediction of 0 is a real barrier, only blanks are dropped
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return v

    @property
    def is_digit(self) -> bool:
        return "DIGIT" in self.contract_type.upper()

    @classmethod
    def from_contract(cls, contract: Dict[str, Any]) -> "TradeIntent":
        """Build from a ``proposal_open_contract`` payload."""
        return cls(
            contract_type=contract["contract_type"],
            symbol=contract.get("underlying") or contract.get("symbol"),
            amount=float(contract["buy_price"]),
            currency=contract.get("currency"),
            duration=contract.get("duration"),
            duration_unit=contract.get("duration_unit"),
            date_expiry=contract.get("date_expiry"),
            barrier=contract.get("barrier"),
            barrier2=contract.get("barrier2"),
        )

    def buy_parameters(self, currency: str) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "contract_type": self.contract_type,
            "symbol": self.symbol,
            "basis": self.basis,
            "amount": self.amount,
            "currency": currency,
        }
        if self.duration is not None:
            params["duration"] = self.duration
            if self.duration_unit:
                params["duration_unit"] = self.duration_unit
        elif self.date_expiry is not None:
            params["date_expiry"] = self.date_expiry
        if self.barrier is not None:
            # digit contracts: barrier is the predicted digit, forwarded as-is
            params["barrier"] = self.barrier
        if self.barrier2 is not None:
            params["barrier2"] = self.barrier2
        return params


@dataclass
class MirrorOutcome:
    """Result of one buy on one linked account."""
    account_id: str
    success: bool
    contract_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class MirroredTrade:
    contract_id: str
    symbol: str
    trade_type: str
    buy_price: float
    current_price: float
    profit_loss: float = 0.0
    status: TradeStatus = "active"
    mirrored_to_count: int = 0
    trader_id: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    outcomes: List[MirrorOutcome] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def failed_accounts(self) -> List[str]:
        return [o.account_id for o in self.outcomes if not o.success]

    def apply_update(
        self,
        *,
        current_price: Optional[float] = None,
        profit: Optional[float] = None,
        settled: bool = False,
    ) -> bool:
        """Apply a stream update.  Returns False once the trade is frozen."""
        if not self.is_active:
            return False
        if current_price is not None:
            self.current_price = current_price
        if profit is not None:
            self.profit_loss = profit
        if settled:
            self.status = "won" if self.profit_loss > 0 else "lost"
        return True
