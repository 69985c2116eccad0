"""
account_registry.py
-------------------
Holds the linked (target) accounts, each on its own authenticated channel.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set

from core.errors import AuthError, DuplicateAccountError, NetworkError
from models.account import ConnectionStatus, LinkedAccount
from models.events import (
    ACCOUNT_ADDED,
    ACCOUNT_REMOVED,
    ACCOUNT_STATUS,
    AccountAdded,
    AccountRemoved,
    AccountStatusChanged,
)
from modules.connection import ConnectionAdapter
from utils.crypto import TokenCipher, TokenDecryptError
from utils.event_bus import EventBus
from utils.logger import mask_token, setup_logger

ConnectionFactory = Callable[[str], ConnectionAdapter]


class AccountRegistry:
    """
    In-memory registry of linked accounts, optionally persisted through a
    key-value store with tokens encrypted by ``TokenCipher``.

    ``list_active()`` returns a fresh list every call, so a fan-out that took
    a snapshot is unaffected by later adds/removes.
    """

    def __init__(
        self,
        connection_factory: ConnectionFactory,
        *,
        bus: Optional[EventBus] = None,
        store=None,
        cipher: Optional[TokenCipher] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if store is not None and cipher is None:
            raise ValueError("an account store requires a TokenCipher")
        self.connection_factory = connection_factory
        self.bus = bus
        self.store = store
        self.cipher = cipher
        self.logger = logger or setup_logger("AccountRegistry")

        self._accounts: Dict[str, LinkedAccount] = {}
        self._connections: Dict[str, ConnectionAdapter] = {}
        self._pending_tokens: Set[str] = set()
        self._closing: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    def __len__(self) -> int:
        return len(self._accounts)

    def __contains__(self, account_id: str) -> bool:
        return account_id in self._accounts

    def get(self, account_id: str) -> Optional[LinkedAccount]:
        return self._accounts.get(account_id)

    def accounts(self) -> List[LinkedAccount]:
        return list(self._accounts.values())

    def list_active(self) -> List[LinkedAccount]:
        return [acc for acc in self._accounts.values() if acc.is_mirror_target]

    def connection_for(self, account_id: str) -> Optional[ConnectionAdapter]:
        return self._connections.get(account_id)

    @property
    def pending_count(self) -> int:
        return len(self._pending_tokens)

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #
    async def add_account(self, token: str) -> LinkedAccount:
        """Authorize ``token`` on a new channel and register the account.

        Raises ``DuplicateAccountError`` (no state change) or ``AuthError`` /
        ``NetworkError`` (nothing inserted).
        """
        token = token.strip()
        existing = self._find_by_token(token)
        if existing is not None:
            raise DuplicateAccountError(existing.account_id)
        if token in self._pending_tokens:
            raise DuplicateAccountError(mask_token(token))

        self._pending_tokens.add(token)
        try:
            conn, auth = await self._open(token)
        finally:
            self._pending_tokens.discard(token)

        account = LinkedAccount.from_authorize(token, auth)
        if account.account_id in self._accounts:
            await conn.close()
            self.logger.warning("⏭️ Account %s is already connected", account.account_id)
            raise DuplicateAccountError(account.account_id)

        self._accounts[account.account_id] = account
        self._attach(account.account_id, conn)
        self.logger.info(
            "✅ Linked account %s (%s %s, balance %.2f)",
            account.account_id, account.account_type, account.currency, account.balance,
        )
        self._publish(ACCOUNT_ADDED, AccountAdded(account.account_id, account.currency))
        self._publish(ACCOUNT_STATUS, AccountStatusChanged(account.account_id, "connected"))
        self.save()
        return account

    async def validate(self, account_id: str) -> LinkedAccount:
        """(Re-)authorize a known account; leaves it ``connected`` or ``error``.

        The previous channel is drained in the background once replaced, so
        buys already in flight on it still complete.
        """
        account = self._accounts[account_id]
        old = self._connections.get(account_id)
        try:
            conn, auth = await self._open(account.token)
        except (AuthError, NetworkError) as exc:
            if old is not None and self._connections.get(account_id) is old:
                del self._connections[account_id]
                self._close_in_background(old)
            self._set_status(account, "error", str(exc))
            raise

        if account_id not in self._accounts:
            # removed while we were authorizing
            await conn.close()
            return account
        account.apply_authorize(auth)
        self._attach(account_id, conn)
        if old is not None and old is not conn:
            self._close_in_background(old)
        self._set_status(account, "connected")
        return account

    async def validate_all(self) -> List[LinkedAccount]:
        ids = [acc.account_id for acc in self._accounts.values() if acc.connection_status != "connected"]
        results = await asyncio.gather(*(self.validate(i) for i in ids), return_exceptions=True)
        for account_id, res in zip(ids, results):
            if isinstance(res, Exception):
                self.logger.error("❌ Validation failed for %s: %s", account_id, res)
        self.save()
        return self.list_active()

    async def remove_account(self, account_id: str) -> bool:
        """Idempotent.  In-flight requests on the account's channel still complete."""
        account = self._accounts.pop(account_id, None)
        if account is None:
            return False
        conn = self._connections.pop(account_id, None)
        if conn is not None:
            self._close_in_background(conn)
        self.logger.info("🗑️ Removed account %s", account_id)
        self._publish(ACCOUNT_REMOVED, AccountRemoved(account_id))
        self.save()
        return True

    def set_active(self, account_id: str, active: bool) -> None:
        account = self._accounts[account_id]
        account.is_active = active
        self.logger.info("Account %s %s", account_id, "resumed" if active else "paused")
        self.save()

    async def refresh_balance(self, account_id: str) -> Optional[float]:
        account = self._accounts.get(account_id)
        conn = self._connections.get(account_id)
        if account is None or conn is None:
            return None
        try:
            response = await conn.call({"balance": 1})
        except Exception as exc:
            self.logger.warning("Balance refresh failed for %s: %s", account_id, exc)
            return None
        balance = (response.get("balance") or {}).get("balance")
        if balance is not None:
            account.balance = float(balance)
        return account.balance

    async def close(self) -> None:
        for account_id in list(self._connections):
            conn = self._connections.pop(account_id)
            await conn.close(drain=True)
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)
        if self.store is not None:
            self.store.close()

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #
    def save(self) -> None:
        if self.store is None:
            return
        records = [acc.to_record(self.cipher.encrypt(acc.token)) for acc in self._accounts.values()]
        self.store.save_accounts(records)
        self.logger.debug("💾 Saved %d account(s)", len(records))

    def load(self) -> List[LinkedAccount]:
        """Restore persisted accounts as ``pending``; call ``validate_all()`` next."""
        if self.store is None:
            return []
        loaded: List[LinkedAccount] = []
        for record in self.store.load_accounts():
            try:
                token = self.cipher.decrypt(record["token"])
            except (KeyError, TokenDecryptError) as exc:
                self.logger.error("❌ Skipping stored account %s: %s", record.get("account_id"), exc)
                continue
            account = LinkedAccount.from_record(record, token)
            if account.account_id in self._accounts:
                continue
            self._accounts[account.account_id] = account
            self._publish(ACCOUNT_ADDED, AccountAdded(account.account_id, account.currency))
            loaded.append(account)
        self.logger.info("📂 Loaded %d stored account(s)", len(loaded))
        return loaded

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _find_by_token(self, token: str) -> Optional[LinkedAccount]:
        for acc in self._accounts.values():
            if acc.token == token:
                return acc
        return None

    async def _open(self, token: str):
        conn = self.connection_factory(mask_token(token))
        await conn.connect()
        try:
            auth = await conn.authorize(token)
        except Exception:
            await conn.close()
            raise
        return conn, auth

    def _close_in_background(self, conn: ConnectionAdapter) -> None:
        task = asyncio.create_task(conn.close(drain=True))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    def _attach(self, account_id: str, conn: ConnectionAdapter) -> None:
        self._connections[account_id] = conn

        def on_drop() -> None:
            account = self._accounts.get(account_id)
            if account is not None and self._connections.get(account_id) is conn:
                self._set_status(account, "disconnected", "channel dropped")

        conn.add_disconnect_handler(on_drop)

    def _set_status(self, account: LinkedAccount, status: ConnectionStatus, reason: Optional[str] = None) -> None:
        account.connection_status = status
        if status == "connected":
            self.logger.info("✅ %s connected", account.account_id)
        else:
            self.logger.warning("⚠️ %s → %s (%s)", account.account_id, status, reason)
        self._publish(ACCOUNT_STATUS, AccountStatusChanged(account.account_id, status, reason))

    def _publish(self, topic: str, payload: object) -> None:
        if self.bus is not None:
            self.bus.publish(topic, payload)
