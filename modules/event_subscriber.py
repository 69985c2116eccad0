"""
event_subscriber.py
-------------------
Owns the master-stream subscriptions (one per (kind, scope)) and routes the
validated stream updates to the handlers registered per kind.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from core.errors import ApiError
from core.message_handler import STREAM_KINDS, StreamMessage, parse_stream_message
from models.events import MASTER_EVENT, MasterEventProcessed
from modules.connection import ConnectionAdapter
from utils.event_bus import EventBus
from utils.logger import setup_logger

Handler = Callable[..., Optional[Awaitable[None]]]
StreamLostCallback = Callable[[str], Optional[Awaitable[None]]]


@dataclass(eq=False)
class Subscription:
    kind: str
    scope: str
    subscription_id: str
    closed: bool = False
    _owner: Any = field(default=None, repr=False)

    async def unsubscribe(self) -> None:
        if self._owner is not None:
            await self._owner.unsubscribe(self)


class EventSubscriber:
    def __init__(
        self,
        connection: ConnectionAdapter,
        *,
        bus: Optional[EventBus] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.connection = connection
        self.bus = bus
        self.logger = logger or setup_logger("EventSubscriber")

        self._subs: Dict[Tuple[str, str], Subscription] = {}
        self._by_id: Dict[str, Subscription] = {}
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._stream_lost: List[StreamLostCallback] = []
        self._tasks: Set[asyncio.Task] = set()

        self.connection.add_listener(self._on_message)
        self.connection.add_disconnect_handler(self._on_disconnect)

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #
    def add_handler(self, kind: str, fn: Handler) -> None:
        """``transaction`` handlers get ``(scope, contract_id)``; ``portfolio``
        handlers get ``(scope, contracts)``."""
        if kind not in STREAM_KINDS:
            raise ValueError(f"unknown stream kind: {kind}")
        self._handlers[kind].append(fn)

    def on_stream_lost(self, fn: StreamLostCallback) -> None:
        self._stream_lost.append(fn)

    def get(self, kind: str, scope: str) -> Optional[Subscription]:
        return self._subs.get((kind, scope))

    def subscriptions(self) -> List[Subscription]:
        return list(self._subs.values())

    # ------------------------------------------------------------------ #
    # Subscribe / unsubscribe
    # ------------------------------------------------------------------ #
    async def subscribe(self, kind: str, scope: str) -> Subscription:
        """Open (kind, scope) or return the handle that is already open."""
        if kind not in STREAM_KINDS:
            raise ValueError(f"unknown stream kind: {kind}")
        key = (kind, scope)
        async with self._locks[key]:
            existing = self._subs.get(key)
            if existing is not None and not existing.closed:
                self.logger.debug("⏭️ %s/%s already subscribed", kind, scope)
                return existing

            response = await self.connection.call({kind: 1, "subscribe": 1})
            raw_id = (response.get("subscription") or {}).get("id")
            if not raw_id:
                # stream updates are matched by this id; without it nothing would be delivered
                self.logger.error("❌ %s subscribe for %s returned no subscription id", kind, scope)
                raise ApiError("NoSubscriptionId", f"{kind} subscribe response carried no subscription id")
            sub_id = str(raw_id)
            sub = Subscription(kind=kind, scope=scope, subscription_id=sub_id, _owner=self)
            self._subs[key] = sub
            self._by_id[sub_id] = sub
            self.logger.info("📡 Subscribed %s stream for %s (id=%s)", kind, scope, sub_id)
            return sub

    async def unsubscribe(self, sub: Subscription) -> None:
        """Never raises; safe to call any number of times."""
        if sub.closed:
            return
        sub.closed = True
        self._forget(sub)
        if not self.connection.is_open:
            return
        try:
            await self.connection.send({"forget": sub.subscription_id})
            self.logger.info("🔕 Unsubscribed %s stream for %s", sub.kind, sub.scope)
        except Exception as exc:
            self.logger.warning("Unsubscribe %s/%s failed (ignored): %s", sub.kind, sub.scope, exc)

    async def unsubscribe_scope(self, scope: str) -> None:
        for sub in [s for s in self._subs.values() if s.scope == scope]:
            await self.unsubscribe(sub)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Routing
    # ------------------------------------------------------------------ #
    def _on_message(self, data: Dict[str, Any]) -> None:
        if data.get("msg_type") not in STREAM_KINDS:
            return
        msg = parse_stream_message(data)
        if msg is None:
            return
        sub = self._by_id.get(msg.subscription_id)
        if sub is None or sub.closed or sub.kind != msg.kind:
            self.logger.debug("⏭️ Update for unknown subscription %s skipped", msg.subscription_id)
            return

        self._route(sub.scope, msg)
        if self.bus is not None:
            self.bus.publish(MASTER_EVENT, MasterEventProcessed(sub.scope, msg.kind))

    def _route(self, scope: str, msg: StreamMessage) -> None:
        if msg.kind == "transaction":
            tx = msg.transaction
            if tx is None or not tx.is_buy:
                return
            self.logger.info("🛒 Master buy detected on %s: contract %s", scope, tx.contract_id)
            args: tuple = (scope, tx.contract_id)
        else:
            if not msg.contracts:
                return
            args = (scope, msg.contracts)

        for fn in list(self._handlers[msg.kind]):
            try:
                res = fn(*args)
            except Exception:
                self.logger.exception("%s handler failed", msg.kind)
                continue
            if asyncio.iscoroutine(res):
                task = asyncio.create_task(res)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error("Stream handler task failed: %r", task.exception())

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _forget(self, sub: Subscription) -> None:
        key = (sub.kind, sub.scope)
        if self._subs.get(key) is sub:
            del self._subs[key]
        self._by_id.pop(sub.subscription_id, None)

    async def _on_disconnect(self) -> None:
        lost = list(self._subs.values())
        scopes: List[str] = []
        for sub in lost:
            sub.closed = True
            self._forget(sub)
            if sub.scope not in scopes:
                scopes.append(sub.scope)
        if lost:
            self.logger.error("❌ Master stream lost; %d subscription(s) dropped", len(lost))
        for scope in scopes:
            for fn in list(self._stream_lost):
                try:
                    res = fn(scope)
                    if asyncio.iscoroutine(res):
                        await res
                except Exception:
                    self.logger.exception("stream-lost callback failed for %s", scope)
