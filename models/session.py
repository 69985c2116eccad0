from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List


@dataclass
class CopySession:
    """Live mirroring relationship with one master / trader."""
    trader_id: str
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    copied_trades: int = 0
    profit_loss: float = 0.0
    subscriptions: List[Any] = field(default_factory=list, repr=False)
