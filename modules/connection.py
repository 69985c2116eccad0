import asyncio
import itertools
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import websockets

from core.errors import ApiError, AuthError, NetworkError
from utils.logger import setup_logger

Listener = Callable[[Dict[str, Any]], Optional[Awaitable[None]]]
DisconnectHandler = Callable[[], Optional[Awaitable[None]]]


class ConnectionAdapter:
    """One authenticated websocket channel to the trading backend.

    Requests are correlated to responses through ``req_id``.  Every inbound
    message (responses and stream updates alike) is also fed, in delivery
    order, to the registered listeners.
    """

    def __init__(
        self,
        url: str,
        *,
        label: str = "master",
        request_timeout: float = 15.0,
        heartbeat_interval: float = 25.0,
        logger: Optional[logging.Logger] = None,
        connector: Optional[Callable[..., Awaitable[Any]]] = None,
    ):
        self.url = url
        self.label = label
        self.request_timeout = request_timeout
        self.heartbeat_interval = heartbeat_interval
        self.logger = logger if logger else setup_logger("ConnectionAdapter")
        self._connector = connector or websockets.connect

        self.ws: Any = None
        self.queue: asyncio.Queue = asyncio.Queue()
        self._req_ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future] = {}
        self._listeners: List[Listener] = []
        self._disconnect_handlers: List[DisconnectHandler] = []

        self.is_running = False
        self._closing = False

        self._hb_task: Optional[asyncio.Task] = None
        self._listener_task: Optional[asyncio.Task] = None
        self._consumer_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    @property
    def is_open(self) -> bool:
        return self.is_running and self.ws is not None

    async def connect(self) -> None:
        if self.is_open:
            return
        try:
            self.ws = await self._connector(self.url, ping_interval=None)
        except Exception as exc:
            raise NetworkError(f"[{self.label}] connect to {self.url} failed: {exc}") from exc
        self.is_running = True
        self._closing = False
        self.logger.info("✅ WS connect [%s] → %s", self.label, self.url)

        self._listener_task = asyncio.create_task(self.listen_messages())
        self._consumer_task = asyncio.create_task(self.process_message_queue())
        if self.heartbeat_interval:
            self._hb_task = asyncio.create_task(self._heartbeat())

    async def close(self, *, drain: bool = False) -> None:
        """Close the channel.  ``drain`` lets pending requests finish first."""
        if drain and self._pending:
            # asyncio.wait never cancels the futures it waits on
            _, still_pending = await asyncio.wait(
                list(self._pending.values()), timeout=self.request_timeout
            )
            if still_pending:
                self.logger.warning("[%s] %d request(s) still pending at close", self.label, len(still_pending))

        self._closing = True
        self.is_running = False
        if self.ws is not None:
            try:
                await self.ws.close()
            except Exception as exc:
                self.logger.debug("[%s] ws.close() failed: %s", self.label, exc)

        current = asyncio.current_task()
        for task in (self._hb_task, self._listener_task, self._consumer_task):
            if task and task is not current and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._fail_pending(NetworkError(f"[{self.label}] connection closed"))
        self.ws = None
        self.logger.info("🔌 WS closed [%s]", self.label)

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #
    async def send(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Send one request and return its response (which may carry ``error``)."""
        if not self.is_open:
            raise NetworkError(f"[{self.label}] not connected")

        req_id = next(self._req_ids)
        payload = dict(request, req_id=req_id)
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[req_id] = fut
        try:
            await self.ws.send(json.dumps(payload))
            return await asyncio.wait_for(fut, timeout=self.request_timeout)
        except asyncio.TimeoutError as exc:
            raise NetworkError(f"[{self.label}] request {_request_name(request)} timed out") from exc
        except NetworkError:
            raise
        except Exception as exc:
            raise NetworkError(f"[{self.label}] request {_request_name(request)} failed: {exc}") from exc
        finally:
            self._pending.pop(req_id, None)

    async def call(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Like :meth:`send` but raises :class:`ApiError` on an error response."""
        response = await self.send(request)
        if response.get("error"):
            raise ApiError.from_response(response)
        return response

    async def authorize(self, token: str) -> Dict[str, Any]:
        response = await self.send({"authorize": token})
        if response.get("error"):
            err = ApiError.from_response(response)
            raise AuthError(err.code, err.message, err.details)
        return response.get("authorize") or {}

    # ------------------------------------------------------------------ #
    # Message feed
    # ------------------------------------------------------------------ #
    def add_listener(self, fn: Listener) -> Callable[[], None]:
        self._listeners.append(fn)

        def remove() -> None:
            if fn in self._listeners:
                self._listeners.remove(fn)

        return remove

    def add_disconnect_handler(self, fn: DisconnectHandler) -> None:
        self._disconnect_handlers.append(fn)

    async def listen_messages(self) -> None:
        try:
            async for raw in self.ws:
                try:
                    msg = json.loads(raw)
                except (TypeError, ValueError):
                    self.logger.warning("[%s] Malformed WS payload: %s", self.label, raw)
                    continue
                self._resolve(msg)
                await self.queue.put(msg)
        except websockets.exceptions.ConnectionClosed as e:
            self.logger.warning("[%s] WS closed (code=%s reason=%s)", self.label, e.code, e.reason)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.logger.exception("[%s] Listen loop crashed", self.label)
        finally:
            self.is_running = False
            self._fail_pending(NetworkError(f"[{self.label}] connection lost"))
            await self.queue.put(None)

    async def process_message_queue(self) -> None:
        while True:
            try:
                msg = await self.queue.get()
                if msg is None:
                    break
                for fn in list(self._listeners):
                    try:
                        res = fn(msg)
                        if asyncio.iscoroutine(res):
                            await res
                    except Exception as exc:
                        self.logger.exception("[%s] listener failed: %s", self.label, exc)
            except asyncio.CancelledError:
                return
        if not self._closing:
            await self._notify_disconnect()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _resolve(self, msg: Dict[str, Any]) -> None:
        req_id = msg.get("req_id")
        fut = self._pending.get(req_id) if req_id is not None else None
        if fut is not None and not fut.done():
            fut.set_result(msg)

    def _fail_pending(self, exc: Exception) -> None:
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(exc)

    async def _notify_disconnect(self) -> None:
        self.logger.warning("❌ [%s] channel dropped", self.label)
        for fn in list(self._disconnect_handlers):
            try:
                res = fn()
                if asyncio.iscoroutine(res):
                    await res
            except Exception:
                self.logger.exception("[%s] disconnect handler failed", self.label)

    async def _heartbeat(self) -> None:
        while self.is_running and self.ws:
            await asyncio.sleep(self.heartbeat_interval)
            if not self.is_running or not self.ws:
                break
            try:
                pong = await self.ws.ping()
                await asyncio.wait_for(pong, timeout=10)
            except Exception as e:
                self.logger.warning("[%s] Heartbeat ping failed: %s", self.label, e)
                self.is_running = False
                try:
                    await self.ws.close()
                except Exception:
                    pass
                break


def _request_name(request: Dict[str, Any]) -> str:
    return next(iter(request), "?")
