"""
core/errors.py
--------------
Exception taxonomy shared by the registry, the session manager and the
connection layer.  Per-account mirror failures are *not* exceptions; they are
recorded as ``MirrorOutcome`` entries on the resulting trade.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class CopyTradingError(Exception):
    """Base class for every error raised by the engine."""


class NetworkError(CopyTradingError):
    """Transport failure or timeout on an upstream request (never retried)."""


class ApiError(CopyTradingError):
    """The upstream answered with an ``error`` object."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.details = details or {}

    @classmethod
    def from_response(cls, response: Dict[str, Any]) -> "ApiError":
        err = response.get("error") or {}
        return cls(
            code=str(err.get("code", "UnknownError")),
            message=str(err.get("message", "unknown upstream error")),
            details=err.get("details"),
        )


class AuthError(ApiError):
    """Token invalid or expired."""


class DuplicateAccountError(CopyTradingError):
    def __init__(self, account_id: str):
        super().__init__(f"account {account_id} is already connected")
        self.account_id = account_id


class SessionError(CopyTradingError):
    """Session lifecycle misuse.  Never leaves a half-created session behind."""

    def __init__(self, trader_id: str, message: str):
        super().__init__(message)
        self.trader_id = trader_id


class SessionAlreadyActive(SessionError):
    def __init__(self, trader_id: str):
        super().__init__(trader_id, f"already copying trader {trader_id}")


class SessionNotFound(SessionError):
    def __init__(self, trader_id: str):
        super().__init__(trader_id, f"no copy session for trader {trader_id}")


class SessionCancelled(SessionError):
    def __init__(self, trader_id: str):
        super().__init__(trader_id, f"copy session for trader {trader_id} was stopped while starting")


class NoLinkedAccounts(SessionError):
    def __init__(self, trader_id: str):
        super().__init__(trader_id, "add at least one connected account to start copy trading")
