# --------------------------------------------------------------------
# models/account.py
# One linked (target) account that receives mirrored trades.
# --------------------------------------------------------------------
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal

ConnectionStatus = Literal["pending", "connected", "error", "disconnected"]
AccountType = Literal["real", "demo"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class LinkedAccount:
    token: str = field(repr=False)
    account_id: str
    loginid: str = ""
    account_type: AccountType = "real"
    currency: str = ""
    balance: float = 0.0
    connection_status: ConnectionStatus = "pending"
    is_active: bool = True
    added_at: str = field(default_factory=utc_now_iso)

    @property
    def is_mirror_target(self) -> bool:
        return self.connection_status == "connected" and self.is_active

    @classmethod
    def from_authorize(cls, token: str, auth: Dict[str, Any]) -> "LinkedAccount":
        """Build a connected account from an ``authorize`` payload."""
        account_list = auth.get("account_list") or []
        account_id = (account_list[0].get("loginid") if account_list else None) or auth["loginid"]
        return cls(
            token=token,
            account_id=str(account_id),
            loginid=str(auth.get("loginid", account_id)),
            account_type="demo" if auth.get("is_virtual") else "real",
            currency=auth.get("currency") or "",
            balance=float(auth.get("balance") or 0.0),
            connection_status="connected",
        )

    def apply_authorize(self, auth: Dict[str, Any]) -> None:
        self.loginid = str(auth.get("loginid", self.loginid))
        self.account_type = "demo" if auth.get("is_virtual") else "real"
        self.currency = auth.get("currency") or self.currency
        self.balance = float(auth.get("balance") or self.balance)
        self.connection_status = "connected"

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #
    def to_record(self, stored_token: str) -> Dict[str, Any]:
        """Persisted shape; ``stored_token`` is the encrypted token."""
        return {
            "token": stored_token,
            "account_id": self.account_id,
            "loginid": self.loginid,
            "account_type": self.account_type,
            "currency": self.currency,
            "balance": self.balance,
            "is_active": self.is_active,
            "added_at": self.added_at,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any], token: str) -> "LinkedAccount":
        # status is runtime-only; a restored account must be re-validated
        return cls(
            token=token,
            account_id=str(record["account_id"]),
            loginid=str(record.get("loginid") or record["account_id"]),
            account_type=record.get("account_type", "real"),
            currency=record.get("currency", ""),
            balance=float(record.get("balance") or 0.0),
            connection_status="pending",
            is_active=bool(record.get("is_active", True)),
            added_at=record.get("added_at") or utc_now_iso(),
        )
