"""
Automation Scheduler
====================
Runs auto-sell rules and DCA campaigns for every signed-in user.

Runs as a background loop alongside the chat bot. Each tick, per user:
- Auto-sell: reconcile positions against live balances, take ONE market
  snapshot per position, walk the user's triggers in order and fire the
  first one that matches. A fired trigger is consumed (removed), and a
  position is sold at most once per tick; other rules get a fresh look
  next tick against the new balance.
- DCA: every active campaign that is due buys its fixed amount. The
  count and next run time only move on a confirmed buy, so a failed
  attempt is simply retried on the next tick.

Trigger rules (all inclusive):
- marketcap: price * supply >= value (MON)
- profit:    (price - buy_price) / buy_price * 100 >= value
- loss:      (price - buy_price) / buy_price * 100 <= -value
- time:      now - buy_time >= value (ms)

One user's failure never stops the tick for anyone else, and one failed
campaign never stops that user's other campaigns.
"""

import asyncio
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterable

from config.settings import Settings
from database.wallet_store import WalletStore
from trader.errors import TradingError
from trader.locks import UserLocks
from trader.market_gateway import MarketGateway
from trader.models import (
    AutoSellTrigger,
    DCACampaign,
    MarketSnapshot,
    Position,
    TriggerType,
    now_ms,
)
from trader.position_ledger import PositionLedger
from trader.trade_executor import TradeExecutor
from trader.validation import parse_amount, to_wei
from utils.logger import get_logger

logger = get_logger(__name__)


def price_change_pct(position: Position, current_price: Decimal) -> Decimal | None:
    """Percent move from the position's buy price. None without a usable cost basis."""
    try:
        buy_price = Decimal(position.buy_price)
    except InvalidOperation:
        return None
    if not buy_price.is_finite() or buy_price <= 0:
        return None
    return (current_price - buy_price) / buy_price * 100


def trigger_fires(trigger: AutoSellTrigger, position: Position, snapshot: MarketSnapshot, now: int) -> bool:
    if trigger.type == TriggerType.MARKETCAP:
        return snapshot.market_cap >= trigger.value

    if trigger.type == TriggerType.TIME:
        return now - position.buy_time >= trigger.value

    change = price_change_pct(position, snapshot.price)
    if change is None:
        return False
    if trigger.type == TriggerType.PROFIT:
        return change >= trigger.value
    return change <= -trigger.value


def first_matching_trigger(
    triggers: tuple[AutoSellTrigger, ...],
    position: Position,
    snapshot: MarketSnapshot,
    now: int,
) -> int | None:
    """Index of the first trigger that fires, in list order."""
    for index, trigger in enumerate(triggers):
        if trigger_fires(trigger, position, snapshot, now):
            return index
    return None


class AutomationScheduler:
    """
    Usage:
        scheduler = AutomationScheduler(settings, store, gateway, executor, ledger, locks,
                                        notifier, users=sessions.active_user_ids)
        await scheduler.start()  # Runs forever as background task
    """

    def __init__(
        self,
        settings: Settings,
        store: WalletStore,
        gateway: MarketGateway,
        executor: TradeExecutor,
        ledger: PositionLedger,
        locks: UserLocks,
        notifier,
        users: Callable[[], Iterable[str]],
        clock: Callable[[], int] = now_ms,
    ):
        self.settings = settings
        self.store = store
        self.gateway = gateway
        self.executor = executor
        self.ledger = ledger
        self.locks = locks
        self.notifier = notifier
        self.users = users
        self.clock = clock

    async def start(self) -> None:
        """Evaluate every AUTOMATION_INTERVAL_SECONDS until cancelled."""
        interval = self.settings.automation_interval_seconds
        logger.info("automation_started", interval=f"{interval}s")

        while True:
            try:
                await self.tick()
                await asyncio.sleep(interval)

            except asyncio.CancelledError:
                logger.info("automation_stopping")
                break
            except Exception as e:
                logger.error("automation_error", error=str(e))
                await asyncio.sleep(interval)

    async def tick(self, now: int | None = None) -> None:
        """
        One pass over every active user. Users run side by side, so one
        user's confirmation wait never holds up another's automation.
        """
        now = self.clock() if now is None else now
        await asyncio.gather(*(self._run_user(user_id, now) for user_id in list(self.users())))

    async def _run_user(self, user_id: str, now: int) -> None:
        try:
            await self._run_auto_sell(user_id, now)
        except Exception as e:
            logger.error("auto_sell_user_error", user=str(user_id), error=str(e))
            await self.notifier.notify(user_id, f"Auto-sell check failed: {e}")

        try:
            await self._run_dca(user_id, now)
        except Exception as e:
            logger.error("dca_user_error", user=str(user_id), error=str(e))
            await self.notifier.notify(user_id, f"DCA check failed: {e}")

    # =========================================================================
    # Auto-sell
    # =========================================================================

    async def _run_auto_sell(self, user_id: str, now: int) -> None:
        async with self.locks.hold(user_id):
            record = await self.store.get(user_id)
            if record is None or not record.auto_sell.enabled or not record.auto_sell.triggers:
                return
            holdings = await self.ledger.reconcile(user_id, record)

        # Market reads and pacing happen outside the lock so chat commands stay responsive
        for i, holding in enumerate(holdings):
            if i:
                await asyncio.sleep(self.settings.automation_position_delay)

            token = holding.position.token_address
            try:
                snapshot = await self.gateway.snapshot(token)
            except TradingError as e:
                logger.warning("auto_sell_snapshot_failed", user=str(user_id), token=token, error=e.message)
                continue

            await self._auto_sell_position(user_id, token, snapshot, now)

    async def _auto_sell_position(self, user_id: str, token: str, snapshot: MarketSnapshot, now: int) -> None:
        """Fire at most one trigger for one position, against a fresh record."""
        async with self.locks.hold(user_id):
            record = await self.store.get(user_id)
            if record is None or not record.auto_sell.enabled:
                return
            position = record.find_position(token)
            triggers = record.auto_sell.triggers
            if position is None or not triggers:
                return

            index = first_matching_trigger(triggers, position, snapshot, now)
            if index is None:
                return

            trigger = triggers[index]
            logger.info(
                "AUTO_SELL_TRIGGERED",
                user=str(user_id),
                token=token,
                trigger=trigger.describe(),
                price=str(snapshot.price),
                market_cap=str(snapshot.market_cap),
            )

            try:
                result = await self.executor.execute_sell(
                    user_id, record, position, trigger.percentage, reason=f"auto_sell_{trigger.type.value}"
                )
            except TradingError as e:
                logger.error("auto_sell_failed", user=str(user_id), token=token, error=e.describe())
                await self.notifier.notify(
                    user_id, f"Auto-sell ({trigger.describe()}) failed\n{e.describe()}"
                )
                return

            if result.status == "closed":
                # Nothing was sold, the rule stays for the user's other positions
                logger.info("auto_sell_position_empty", user=str(user_id), token=token)
                return

            # Consume the trigger. The tuple is replaced, never edited in place.
            current = record.auto_sell.triggers
            record.with_triggers(current[:index] + current[index + 1:])
            await self.store.save(user_id, record)

        tx = f"\nTx: {result.tx_hash}" if result.tx_hash else ""
        await self.notifier.notify(
            user_id,
            f"Auto-sell executed: {trigger.describe()}\nToken: {token}{tx}",
        )

    # =========================================================================
    # DCA
    # =========================================================================

    async def _run_dca(self, user_id: str, now: int) -> None:
        record = await self.store.get(user_id)
        if record is None:
            return

        for campaign_id in [c.id for c in record.dca_campaigns if c.is_due(now)]:
            try:
                await self._execute_campaign(user_id, campaign_id, now)
            except Exception as e:
                logger.error("dca_campaign_error", user=str(user_id), campaign=campaign_id, error=str(e))
                await self.notifier.notify(user_id, f"DCA {campaign_id} failed: {e}")

    async def _execute_campaign(self, user_id: str, campaign_id: str, now: int) -> None:
        async with self.locks.hold(user_id):
            # Re-read under the lock: the campaign may have been paused or deleted
            record = await self.store.require(user_id)
            campaign = record.find_campaign(campaign_id)
            if campaign is None or not campaign.is_due(now):
                return

            try:
                amount_wei = to_wei(parse_amount(campaign.amount_per_buy))
                result = await self.executor.execute_buy(
                    user_id, record, campaign.token_address, amount_wei, reason="dca"
                )
            except TradingError as e:
                logger.error("dca_buy_failed", user=str(user_id), campaign=campaign.id, error=e.describe())
                await self.notifier.notify(user_id, f"DCA {campaign.id} buy failed\n{e.describe()}")
                return

            campaign.record_execution(now)
            await self.store.save(user_id, record)

        logger.info(
            "DCA_EXECUTED",
            user=str(user_id),
            campaign=campaign.id,
            executed=campaign.executed_count,
            max=campaign.max_executions,
        )
        await self.notifier.notify(user_id, self._dca_message(campaign, result.tx_hash))

    @staticmethod
    def _dca_message(campaign: DCACampaign, tx_hash: str | None) -> str:
        status = "completed" if campaign.completed else "next buy scheduled"
        return (
            f"DCA {campaign.id}: bought {campaign.amount_per_buy} MON of {campaign.token_address}\n"
            f"Buy {campaign.executed_count}/{campaign.max_executions}, {status}\n"
            f"Tx: {tx_hash}"
        )
