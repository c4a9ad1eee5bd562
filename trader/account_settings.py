"""
Account Settings
================
Per-user trading configuration: auto-buy, slippage, default buy amount,
auto-sell rules and DCA campaigns.

Every change is a read-modify-write of the user's WalletRecord, so each
one runs under the user's lock. Input is parsed first: a bad value is
rejected before the record is even read.
"""

from typing import Callable

from database.wallet_store import WalletStore
from trader.errors import CampaignNotFound, InvalidInput
from trader.locks import UserLocks
from trader.models import AutoSellTrigger, DCACampaign, WalletRecord, now_ms
from trader.validation import (
    parse_address,
    parse_amount,
    parse_positive_int,
    parse_slippage,
    parse_trigger,
)
from utils.logger import get_logger

logger = get_logger(__name__)


class AccountSettings:
    """
    Usage:
        account = AccountSettings(store, locks)
        record = await account.set_slippage(user_id, "15")
        campaign = await account.create_campaign(user_id, token, "0.5", "60", "10")
    """

    def __init__(self, store: WalletStore, locks: UserLocks, clock: Callable[[], int] = now_ms):
        self.store = store
        self.locks = locks
        self.clock = clock

    async def _update(self, user_id: str, change: Callable[[WalletRecord], None]) -> WalletRecord:
        async with self.locks.hold(user_id):
            record = await self.store.require(user_id)
            change(record)
            await self.store.save(user_id, record)
            return record

    # =========================================================================
    # Trading defaults
    # =========================================================================

    async def toggle_auto_buy(self, user_id: str) -> bool:
        def change(record: WalletRecord) -> None:
            record.auto_buy = not record.auto_buy

        record = await self._update(user_id, change)
        logger.info("auto_buy_toggled", user=str(user_id), enabled=record.auto_buy)
        return record.auto_buy

    async def set_slippage(self, user_id: str, value: str | int) -> int:
        slippage = parse_slippage(value)

        def change(record: WalletRecord) -> None:
            record.slippage = slippage

        await self._update(user_id, change)
        logger.info("slippage_set", user=str(user_id), slippage=slippage)
        return slippage

    async def set_default_buy_amount(self, user_id: str, value: str) -> str:
        amount = str(parse_amount(value, "default buy amount"))

        def change(record: WalletRecord) -> None:
            record.default_buy_amount = amount

        await self._update(user_id, change)
        logger.info("default_buy_amount_set", user=str(user_id), amount=amount)
        return amount

    # =========================================================================
    # Auto-sell
    # =========================================================================

    async def set_auto_sell_enabled(self, user_id: str, enabled: bool) -> WalletRecord:
        def change(record: WalletRecord) -> None:
            record.auto_sell = type(record.auto_sell)(enabled=enabled, triggers=record.auto_sell.triggers)

        record = await self._update(user_id, change)
        logger.info("auto_sell_toggled", user=str(user_id), enabled=enabled)
        return record

    async def add_trigger(self, user_id: str, type_text: str, value_text: str, percentage_text: str) -> AutoSellTrigger:
        trigger_type, value, percentage = parse_trigger(type_text, value_text, percentage_text)
        trigger = AutoSellTrigger(type=trigger_type, value=value, percentage=percentage)

        def change(record: WalletRecord) -> None:
            record.with_triggers(record.auto_sell.triggers + (trigger,))

        await self._update(user_id, change)
        logger.info("trigger_added", user=str(user_id), trigger=trigger.describe())
        return trigger

    async def remove_trigger(self, user_id: str, number: str | int) -> AutoSellTrigger:
        """Remove a trigger by its 1-based number as shown in /autosell."""
        index = parse_positive_int(number, "Trigger number") - 1
        removed: list[AutoSellTrigger] = []

        def change(record: WalletRecord) -> None:
            triggers = record.auto_sell.triggers
            if index >= len(triggers):
                raise InvalidInput(f"No trigger #{index + 1}")
            removed.append(triggers[index])
            record.with_triggers(triggers[:index] + triggers[index + 1:])

        await self._update(user_id, change)
        logger.info("trigger_removed", user=str(user_id), trigger=removed[0].describe())
        return removed[0]

    async def clear_triggers(self, user_id: str) -> None:
        await self._update(user_id, lambda record: record.with_triggers(()))
        logger.info("triggers_cleared", user=str(user_id))

    # =========================================================================
    # DCA campaigns
    # =========================================================================

    async def create_campaign(
        self,
        user_id: str,
        token: str,
        amount: str,
        interval_minutes: str | int,
        max_executions: str | int,
    ) -> DCACampaign:
        token = parse_address(token)
        amount_per_buy = str(parse_amount(amount, "amount per buy"))
        interval = parse_positive_int(interval_minutes, "Interval")
        limit = parse_positive_int(max_executions, "Number of buys")

        campaign = DCACampaign.create(token, amount_per_buy, interval, limit, now=self.clock())
        await self._update(user_id, lambda record: record.dca_campaigns.append(campaign))
        logger.info(
            "dca_created",
            user=str(user_id),
            campaign=campaign.id,
            token=token,
            amount=amount_per_buy,
            interval_minutes=interval,
            max_executions=limit,
        )
        return campaign

    def _campaign(self, record: WalletRecord, campaign_id: str) -> DCACampaign:
        campaign = record.find_campaign(campaign_id)
        if campaign is None:
            raise CampaignNotFound(f"No DCA campaign with id {campaign_id}")
        return campaign

    async def pause_campaign(self, user_id: str, campaign_id: str) -> None:
        def change(record: WalletRecord) -> None:
            self._campaign(record, campaign_id).active = False

        await self._update(user_id, change)
        logger.info("dca_paused", user=str(user_id), campaign=campaign_id)

    async def resume_campaign(self, user_id: str, campaign_id: str) -> DCACampaign:
        """Reactivate a paused campaign; the next buy is one interval from now."""
        resumed: list[DCACampaign] = []

        def change(record: WalletRecord) -> None:
            campaign = self._campaign(record, campaign_id)
            if campaign.completed:
                raise InvalidInput(f"Campaign {campaign_id} already completed all its buys")
            campaign.active = True
            campaign.next_execution_at = self.clock() + campaign.interval_minutes * 60_000
            resumed.append(campaign)

        await self._update(user_id, change)
        logger.info("dca_resumed", user=str(user_id), campaign=campaign_id)
        return resumed[0]

    async def delete_campaign(self, user_id: str, campaign_id: str) -> None:
        def change(record: WalletRecord) -> None:
            campaign = self._campaign(record, campaign_id)
            record.dca_campaigns = [c for c in record.dca_campaigns if c is not campaign]

        await self._update(user_id, change)
        logger.info("dca_deleted", user=str(user_id), campaign=campaign_id)
