# modules/mirror_executor.py
import asyncio
import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Set

from core.message_handler import PortfolioContract
from models.account import LinkedAccount
from models.events import (
    TRADE_MIRRORED,
    TRADE_SETTLED,
    TRADE_UPDATED,
    TradeMirrored,
    TradeSettled,
    TradeUpdated,
)
from models.trade import MirroredTrade, MirrorOutcome, TradeIntent
from modules.account_registry import AccountRegistry
from modules.connection import ConnectionAdapter
from utils.event_bus import EventBus
from utils.logger import setup_logger


class MirrorExecutor:
    """Replays master buys onto every active linked account.

    Stakes are copied nominally: the master's ``buy_price`` is sent as the
    ``amount`` in each target account's own currency, without conversion.
    """

    def __init__(
        self,
        master: ConnectionAdapter,
        registry: AccountRegistry,
        *,
        bus: Optional[EventBus] = None,
        max_trades: int = 200,
        logger: Optional[logging.Logger] = None,
    ):
        self.master = master
        self.registry = registry
        self.bus = bus
        self.max_trades = max_trades
        self.logger = logger or setup_logger("MirrorExecutor")

        self._trades: "OrderedDict[str, MirroredTrade]" = OrderedDict()
        self._in_flight: Set[str] = set()
        self._held_updates: Dict[str, PortfolioContract] = {}
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #
    # Detection → intent
    # ------------------------------------------------------------------ #
    async def on_buy_detected(self, scope: str, contract_id: str) -> Optional[MirroredTrade]:
        contract_id = str(contract_id)
        if contract_id in self._trades or contract_id in self._in_flight:
            self.logger.debug("⏭️ Contract %s already mirrored", contract_id)
            return None

        self._in_flight.add(contract_id)
        task = asyncio.current_task()
        if task is not None:
            self._tasks.add(task)
        try:
            try:
                response = await self.master.call(
                    {"proposal_open_contract": 1, "contract_id": contract_id}
                )
                contract = response.get("proposal_open_contract") or {}
                intent = TradeIntent.from_contract(contract)
            except Exception as exc:
                # single authoritative read; the event is dropped, never retried
                self.logger.error("❌ Contract %s fetch failed, not mirrored: %s", contract_id, exc)
                return None
            return await self.execute(intent, contract_id=contract_id, trader_id=scope)
        finally:
            self._in_flight.discard(contract_id)
            self._held_updates.pop(contract_id, None)
            if task is not None:
                self._tasks.discard(task)

    # ------------------------------------------------------------------ #
    # Fan-out
    # ------------------------------------------------------------------ #
    async def execute(
        self,
        intent: TradeIntent,
        *,
        contract_id: str,
        trader_id: Optional[str] = None,
    ) -> MirroredTrade:
        contract_id = str(contract_id)
        targets = self.registry.list_active()  # snapshot
        self.logger.info(
            "🔁 Mirroring %s %s stake %.2f to %d account(s)",
            intent.contract_type, intent.symbol, intent.amount, len(targets),
        )
        # portfolio updates arriving during the fan-out are held until the trade is journaled
        self._in_flight.add(contract_id)
        try:
            outcomes: List[MirrorOutcome] = list(
                await asyncio.gather(*(self._buy_for(acc, intent) for acc in targets))
            )

            trade = MirroredTrade(
                contract_id=contract_id,
                symbol=intent.symbol,
                trade_type=intent.contract_type,
                buy_price=intent.amount,
                current_price=intent.amount,
                mirrored_to_count=sum(1 for o in outcomes if o.success),
                trader_id=trader_id,
                outcomes=outcomes,
            )
            self._record(trade)
            if trade.failed_accounts:
                self.logger.warning(
                    "⚠️ Contract %s mirrored to %d/%d (failed: %s)",
                    trade.contract_id, trade.mirrored_to_count, len(targets), ", ".join(trade.failed_accounts),
                )
            else:
                self.logger.info("✅ Contract %s mirrored to %d account(s)", trade.contract_id, trade.mirrored_to_count)
            self._publish(TRADE_MIRRORED, TradeMirrored(trade))

            held = self._held_updates.pop(contract_id, None)
            if held is not None:
                self._apply_update(trade, held)
            return trade
        finally:
            self._in_flight.discard(contract_id)
            self._held_updates.pop(contract_id, None)

    @staticmethod
    def build_buy_request(intent: TradeIntent, account: LinkedAccount) -> Dict[str, Any]:
        return {
            "buy": 1,
            "price": intent.amount,
            "parameters": intent.buy_parameters(account.currency),
            "authorize": account.token,
        }

    async def _buy_for(self, account: LinkedAccount, intent: TradeIntent) -> MirrorOutcome:
        conn = self.registry.connection_for(account.account_id)
        if conn is None:
            return MirrorOutcome(account.account_id, False, error="no open channel")
        try:
            response = await conn.send(self.build_buy_request(intent, account))
        except Exception as exc:
            self.logger.error("❌ Mirror to %s failed: %s", account.account_id, exc)
            return MirrorOutcome(account.account_id, False, error=str(exc))

        if response.get("error"):
            err = response["error"]
            message = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            self.logger.error("❌ Mirror to %s rejected: %s", account.account_id, message)
            return MirrorOutcome(account.account_id, False, error=message)

        bought = response.get("buy") or {}
        target_id = bought.get("contract_id")
        return MirrorOutcome(
            account.account_id,
            True,
            contract_id=str(target_id) if target_id is not None else None,
        )

    # ------------------------------------------------------------------ #
    # Portfolio updates
    # ------------------------------------------------------------------ #
    def apply_portfolio(self, scope: str, contracts: Iterable[PortfolioContract]) -> None:
        for update in contracts:
            trade = self._trades.get(update.contract_id)
            if trade is not None:
                self._apply_update(trade, update)
            elif update.contract_id in self._in_flight:
                held = self._held_updates.get(update.contract_id)
                # a held settlement is final; later non-final updates do not replace it
                if held is None or not held.settled:
                    self._held_updates[update.contract_id] = update

    def _apply_update(self, trade: MirroredTrade, update: PortfolioContract) -> None:
        changed = trade.apply_update(
            current_price=update.price,
            profit=update.profit,
            settled=update.settled,
        )
        if not changed:
            return
        if trade.is_active:
            self._publish(TRADE_UPDATED, TradeUpdated(trade))
        else:
            self.logger.info(
                "🏁 Contract %s settled %s (%.2f)", trade.contract_id, trade.status.upper(), trade.profit_loss
            )
            self._publish(TRADE_SETTLED, TradeSettled(trade))

    # ------------------------------------------------------------------ #
    # Journal
    # ------------------------------------------------------------------ #
    def get(self, contract_id: str) -> Optional[MirroredTrade]:
        return self._trades.get(str(contract_id))

    def recent_trades(self) -> List[MirroredTrade]:
        """Newest first."""
        return list(reversed(self._trades.values()))

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _record(self, trade: MirroredTrade) -> None:
        self._trades[trade.contract_id] = trade
        # only settled trades are evicted, active ones still receive updates
        while len(self._trades) > self.max_trades:
            oldest = next((cid for cid, t in self._trades.items() if not t.is_active), None)
            if oldest is None:
                break
            del self._trades[oldest]

    def _publish(self, topic: str, payload: object) -> None:
        if self.bus is not None:
            self.bus.publish(topic, payload)
