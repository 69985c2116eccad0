"""
message_handler.py
==================
Strict schema validation for inbound *stream* messages (``transaction`` and
``portfolio``) coming off the master channel.  Anything that does not look
like a live stream update is rejected with a log line and ``None``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from utils.logger import setup_logger

logger = setup_logger(__name__)

STREAM_KINDS = ("transaction", "portfolio")
_SETTLED_STATUSES = {"won", "lost", "sold"}


class TransactionEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    action: str
    contract_id: Optional[str] = None
    symbol: Optional[str] = None
    amount: Optional[float] = None
    transaction_id: Optional[str] = None

    @field_validator("contract_id", "transaction_id", mode="before")
    @classmethod
    def _as_str(cls, v):
        return None if v in (None, "") else str(v)

    @property
    def is_buy(self) -> bool:
        return self.action.lower() == "buy" and bool(self.contract_id)


class PortfolioContract(BaseModel):
    model_config = ConfigDict(extra="ignore")

    contract_id: str
    buy_price: Optional[float] = None
    bid_price: Optional[float] = None
    current_spot: Optional[float] = None
    profit: Optional[float] = None
    is_sold: bool = False
    status: Optional[str] = None

    @field_validator("contract_id", mode="before")
    @classmethod
    def _as_str(cls, v):
        return str(v)

    @property
    def settled(self) -> bool:
        return self.is_sold or (self.status or "").lower() in _SETTLED_STATUSES

    @property
    def price(self) -> Optional[float]:
        return self.bid_price if self.bid_price is not None else self.current_spot


@dataclass
class StreamMessage:
    kind: str
    subscription_id: str
    transaction: Optional[TransactionEvent] = None
    contracts: List[PortfolioContract] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------
def _subscription_id(data: Dict[str, Any]) -> Optional[str]:
    sub = data.get("subscription")
    if isinstance(sub, dict) and sub.get("id"):
        return str(sub["id"])
    return None


def _portfolio_contracts(payload: Any) -> List[Dict[str, Any]]:
    if not isinstance(payload, dict):
        return []
    if "contracts" in payload:
        contracts = payload["contracts"]
        return contracts if isinstance(contracts, list) else []
    # single-contract update
    return [payload] if "contract_id" in payload else []


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def parse_stream_message(data: Dict[str, Any]) -> Optional[StreamMessage]:
    """Validate one decoded message; ``None`` when it is not a stream update."""
    if not isinstance(data, dict):
        logger.warning("❌ Non-dict payload skipped: %r", data)
        return None

    kind = data.get("msg_type")
    if kind not in STREAM_KINDS:
        return None

    if data.get("error"):
        logger.warning("❌ %s stream error: %s", kind, data["error"])
        return None

    sub_id = _subscription_id(data)
    if sub_id is None:
        logger.debug("⏭️ %s message without subscription id skipped", kind)
        return None

    payload = data.get(kind)
    try:
        if kind == "transaction":
            if not isinstance(payload, dict) or "action" not in payload:
                logger.debug("⏭️ Empty transaction payload skipped: %s", data)
                return None
            return StreamMessage(kind, sub_id, transaction=TransactionEvent(**payload))

        contracts = [PortfolioContract(**c) for c in _portfolio_contracts(payload)]
        return StreamMessage(kind, sub_id, contracts=contracts)
    except ValidationError as ve:
        logger.warning("❌ Invalid %s payload: %s", kind, ve)
        return None
