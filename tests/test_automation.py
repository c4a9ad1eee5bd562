"""
Tests for trader/automation.py

Tests cover:
- Trigger rules (marketcap, profit, loss, time) at their boundaries
- Trigger order and one-shot consumption
- At most one sell per position per tick
- DCA scheduling, limits and failure handling
- Isolation between users and between campaigns
- Users run side by side; market reads happen outside the user lock
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import NOW, OTHER_TOKEN, TOKEN, USER, make_snapshot
from trader.automation import AutomationScheduler, first_matching_trigger, trigger_fires
from trader.errors import QuoteUnavailable, TransactionReverted
from trader.models import (
    AutoSellConfig,
    AutoSellTrigger,
    DCACampaign,
    Position,
    TradeResult,
    TriggerType,
)
from trader.trade_executor import TradeExecutor


def _trigger(kind: TriggerType, value, percentage=100) -> AutoSellTrigger:
    return AutoSellTrigger(type=kind, value=Decimal(str(value)), percentage=percentage)


POSITION = Position(token_address=TOKEN, buy_price="1.0", buy_time=0)


class TestTriggerRules:
    """Pure trigger evaluation against one market snapshot."""

    def test_profit_boundary(self):
        trigger = _trigger(TriggerType.PROFIT, 50)
        assert trigger_fires(trigger, POSITION, make_snapshot(price="1.5"), NOW)
        assert not trigger_fires(trigger, POSITION, make_snapshot(price="1.4999"), NOW)

    def test_loss_boundary(self):
        trigger = _trigger(TriggerType.LOSS, 20)
        assert trigger_fires(trigger, POSITION, make_snapshot(price="0.8"), NOW)
        assert trigger_fires(trigger, POSITION, make_snapshot(price="0.5"), NOW)
        assert not trigger_fires(trigger, POSITION, make_snapshot(price="0.81"), NOW)

    def test_marketcap_boundary(self):
        trigger = _trigger(TriggerType.MARKETCAP, 1000)
        # price * supply = 0.001 * 1,000,000
        assert trigger_fires(trigger, POSITION, make_snapshot(price="0.001", supply="1000000"), NOW)
        assert not trigger_fires(trigger, POSITION, make_snapshot(price="0.000999", supply="1000000"), NOW)

    def test_time_boundary(self):
        trigger = _trigger(TriggerType.TIME, 3_600_000)
        snapshot = make_snapshot()
        assert trigger_fires(trigger, POSITION, snapshot, 3_700_000)
        assert trigger_fires(trigger, POSITION, snapshot, 3_600_000)
        assert not trigger_fires(trigger, POSITION, snapshot, 3_500_000)

    def test_no_cost_basis_skips_price_rules(self):
        position = Position(token_address=TOKEN, buy_price="0", buy_time=0)
        snapshot = make_snapshot(price="100")
        assert not trigger_fires(_trigger(TriggerType.PROFIT, 1), position, snapshot, NOW)
        assert not trigger_fires(_trigger(TriggerType.LOSS, 1), position, snapshot, NOW)

    def test_first_match_wins_in_list_order(self):
        triggers = (
            _trigger(TriggerType.LOSS, 10),
            _trigger(TriggerType.PROFIT, 10, 25),
            _trigger(TriggerType.PROFIT, 5, 50),
        )
        assert first_matching_trigger(triggers, POSITION, make_snapshot(price="1.2"), NOW) == 1
        assert first_matching_trigger(triggers, POSITION, make_snapshot(price="1.0"), NOW) is None


@pytest.fixture
def mock_executor():
    mock = MagicMock(spec=TradeExecutor)
    mock.execute_sell.return_value = TradeResult(side="sell", status="confirmed", token_address=TOKEN, tx_hash="0xsell")
    mock.execute_buy.return_value = TradeResult(side="buy", status="confirmed", token_address=TOKEN, tx_hash="0xbuy")
    return mock


@pytest.fixture
def scheduler(settings, store, gateway, mock_executor, ledger, locks, notifier):
    return AutomationScheduler(
        settings, store, gateway, mock_executor, ledger, locks, notifier, users=lambda: [USER]
    )


async def _setup_auto_sell(store, wallet, triggers, positions=(POSITION,), enabled=True):
    wallet.positions = list(positions)
    wallet.auto_sell = AutoSellConfig(enabled=enabled, triggers=tuple(triggers))
    await store.save(USER, wallet)


class TestAutoSell:
    """Auto-sell evaluation inside a tick."""

    @pytest.mark.asyncio
    async def test_fired_trigger_is_consumed(self, scheduler, store, gateway, mock_executor, wallet):
        await _setup_auto_sell(store, wallet, [_trigger(TriggerType.PROFIT, 50, 40)])
        gateway.snapshot.return_value = make_snapshot(price="2.0")

        await scheduler.tick(NOW)
        await scheduler.tick(NOW + 60_000)

        mock_executor.execute_sell.assert_awaited_once()
        _, _, position, percentage = mock_executor.execute_sell.call_args.args
        assert position.token_address == TOKEN
        assert percentage == 40
        assert (await store.get(USER)).auto_sell.triggers == ()

    @pytest.mark.asyncio
    async def test_one_sell_per_position_per_tick(self, scheduler, store, gateway, mock_executor, wallet):
        await _setup_auto_sell(
            store,
            wallet,
            [_trigger(TriggerType.PROFIT, 10, 50), _trigger(TriggerType.PROFIT, 20, 100)],
        )
        gateway.snapshot.return_value = make_snapshot(price="2.0")

        await scheduler.tick(NOW)
        assert mock_executor.execute_sell.await_count == 1
        assert mock_executor.execute_sell.call_args.args[3] == 50

        await scheduler.tick(NOW + 60_000)
        assert mock_executor.execute_sell.await_count == 2
        assert mock_executor.execute_sell.call_args.args[3] == 100

    @pytest.mark.asyncio
    async def test_one_snapshot_per_position(self, scheduler, store, gateway, wallet):
        second = Position(token_address=OTHER_TOKEN, buy_price="1.0", buy_time=0)
        await _setup_auto_sell(
            store, wallet, [_trigger(TriggerType.PROFIT, 500), _trigger(TriggerType.LOSS, 90)],
            positions=(POSITION, second),
        )
        gateway.snapshot.return_value = make_snapshot(price="1.0")

        await scheduler.tick(NOW)

        assert gateway.snapshot.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_sell_keeps_trigger(self, scheduler, store, gateway, mock_executor, notifier, wallet):
        await _setup_auto_sell(store, wallet, [_trigger(TriggerType.LOSS, 10)])
        gateway.snapshot.return_value = make_snapshot(price="0.5")
        mock_executor.execute_sell.side_effect = TransactionReverted("Transaction reverted", tx_hash="0xsell")

        await scheduler.tick(NOW)

        assert len((await store.get(USER)).auto_sell.triggers) == 1
        notifier.notify.assert_awaited()
        assert "failed" in notifier.notify.call_args.args[1]

    @pytest.mark.asyncio
    async def test_disabled_auto_sell_does_nothing(self, scheduler, store, gateway, mock_executor, wallet):
        await _setup_auto_sell(store, wallet, [_trigger(TriggerType.TIME, 1)], enabled=False)

        await scheduler.tick(NOW)

        gateway.snapshot.assert_not_called()
        mock_executor.execute_sell.assert_not_called()

    @pytest.mark.asyncio
    async def test_zero_balance_position_is_pruned_not_sold(self, scheduler, store, oracle, mock_executor, wallet):
        await _setup_auto_sell(store, wallet, [_trigger(TriggerType.TIME, 1)])
        oracle.token_balance.return_value = 0

        await scheduler.tick(NOW)

        mock_executor.execute_sell.assert_not_called()
        assert (await store.get(USER)).positions == []

    @pytest.mark.asyncio
    async def test_snapshot_failure_skips_position(self, scheduler, store, gateway, mock_executor, wallet):
        await _setup_auto_sell(store, wallet, [_trigger(TriggerType.TIME, 1)])
        gateway.snapshot.side_effect = QuoteUnavailable("down")

        await scheduler.tick(NOW)

        mock_executor.execute_sell.assert_not_called()
        assert len((await store.get(USER)).auto_sell.triggers) == 1

    @pytest.mark.asyncio
    async def test_empty_position_close_keeps_trigger(self, scheduler, store, mock_executor, wallet):
        """A position closed without a sale does not use up the rule."""
        await _setup_auto_sell(store, wallet, [_trigger(TriggerType.TIME, 1)])
        mock_executor.execute_sell.return_value = TradeResult(
            side="sell", status="closed", token_address=TOKEN, remaining_balance=0, position_closed=True
        )

        await scheduler.tick(NOW)

        mock_executor.execute_sell.assert_awaited_once()
        assert len((await store.get(USER)).auto_sell.triggers) == 1

    @pytest.mark.asyncio
    async def test_market_reads_and_pacing_outside_lock(self, scheduler, settings, store, gateway, locks, wallet):
        second = Position(token_address=OTHER_TOKEN, buy_price="1.0", buy_time=0)
        await _setup_auto_sell(store, wallet, [_trigger(TriggerType.PROFIT, 500)], positions=(POSITION, second))
        settings.automation_position_delay = 0.3
        lock_states = []

        async def snapshot(token):
            lock_states.append(locks.is_locked(USER))
            return make_snapshot(price="1.0")

        async def pause(delay):
            lock_states.append(locks.is_locked(USER))

        gateway.snapshot.side_effect = snapshot
        with patch("trader.automation.asyncio.sleep", new=AsyncMock(side_effect=pause)) as sleep:
            await scheduler.tick(NOW)

        sleep.assert_awaited_once_with(0.3)
        assert lock_states == [False, False, False]


async def _add_campaign(store, wallet, max_executions=3, interval=1, token=TOKEN) -> DCACampaign:
    campaign = DCACampaign.create(token, "0.1", interval, max_executions, now=NOW)
    wallet.dca_campaigns.append(campaign)
    await store.save(USER, wallet)
    return campaign


class TestDCA:
    """DCA campaigns inside a tick."""

    @pytest.mark.asyncio
    async def test_runs_exactly_max_executions(self, scheduler, store, mock_executor, wallet):
        campaign = await _add_campaign(store, wallet, max_executions=3, interval=1)

        for minute in range(1, 6):
            await scheduler.tick(NOW + minute * 60_000)

        assert mock_executor.execute_buy.await_count == 3
        stored = (await store.get(USER)).find_campaign(campaign.id)
        assert stored.executed_count == 3
        assert not stored.active

    @pytest.mark.asyncio
    async def test_not_due_yet(self, scheduler, store, mock_executor, wallet):
        await _add_campaign(store, wallet, interval=10)

        await scheduler.tick(NOW + 9 * 60_000)

        mock_executor.execute_buy.assert_not_called()

    @pytest.mark.asyncio
    async def test_success_reschedules(self, scheduler, store, mock_executor, notifier, wallet):
        campaign = await _add_campaign(store, wallet, interval=5)
        now = NOW + 5 * 60_000

        await scheduler.tick(now)

        stored = (await store.get(USER)).find_campaign(campaign.id)
        assert stored.executed_count == 1
        assert stored.next_execution_at == now + 5 * 60_000
        assert stored.active
        _, _, token, amount_wei = mock_executor.execute_buy.call_args.args
        assert token == TOKEN
        assert amount_wei == 10**17
        notifier.notify.assert_awaited()

    @pytest.mark.asyncio
    async def test_failure_leaves_campaign_untouched(self, scheduler, store, mock_executor, notifier, wallet):
        campaign = await _add_campaign(store, wallet, interval=1)
        mock_executor.execute_buy.side_effect = QuoteUnavailable("DEX quote failed")

        await scheduler.tick(NOW + 60_000)

        stored = (await store.get(USER)).find_campaign(campaign.id)
        assert stored.executed_count == 0
        assert stored.next_execution_at == campaign.next_execution_at
        assert stored.active
        notifier.notify.assert_awaited()

    @pytest.mark.asyncio
    async def test_paused_campaign_skipped(self, scheduler, store, mock_executor, wallet):
        campaign = await _add_campaign(store, wallet)
        record = await store.get(USER)
        record.find_campaign(campaign.id).active = False
        await store.save(USER, record)

        await scheduler.tick(NOW + 60_000)

        mock_executor.execute_buy.assert_not_called()

    @pytest.mark.asyncio
    async def test_one_failed_campaign_does_not_block_others(self, scheduler, store, mock_executor, wallet):
        failing = await _add_campaign(store, wallet, token=TOKEN)
        healthy = await _add_campaign(store, await store.get(USER), token=OTHER_TOKEN)

        async def buy(user_id, record, token, amount_wei, **kwargs):
            if token == TOKEN:
                raise RuntimeError("boom")
            return TradeResult(side="buy", status="confirmed", token_address=token, tx_hash="0xbuy")

        mock_executor.execute_buy.side_effect = buy

        await scheduler.tick(NOW + 60_000)

        record = await store.get(USER)
        assert record.find_campaign(failing.id).executed_count == 0
        assert record.find_campaign(healthy.id).executed_count == 1


class TestIsolation:
    """One user's failure never stops the tick for another."""

    @pytest.mark.asyncio
    async def test_failing_user_does_not_block_next(self, settings, store, gateway, mock_executor, ledger, locks, notifier, wallet):
        other = await store.create("2002")
        campaign = DCACampaign.create(TOKEN, "0.1", 1, 3, now=NOW)
        other.dca_campaigns.append(campaign)
        await store.save("2002", other)

        original_get = store.get

        async def flaky_get(user_id):
            if user_id == USER:
                raise RuntimeError("database hiccup")
            return await original_get(user_id)

        store.get = flaky_get
        scheduler = AutomationScheduler(
            settings, store, gateway, mock_executor, ledger, locks, notifier, users=lambda: [USER, "2002"]
        )

        await scheduler.tick(NOW + 60_000)

        assert mock_executor.execute_buy.await_count == 1
        assert mock_executor.execute_buy.call_args.args[0] == "2002"

    @pytest.mark.asyncio
    async def test_pending_sell_does_not_hold_up_other_users(
        self, settings, store, gateway, mock_executor, ledger, locks, notifier, wallet
    ):
        await _setup_auto_sell(store, wallet, [_trigger(TriggerType.TIME, 1)])
        other = await store.create("2002")
        other.dca_campaigns.append(DCACampaign.create(TOKEN, "0.1", 1, 3, now=NOW))
        await store.save("2002", other)

        release = asyncio.Event()
        bought = asyncio.Event()

        async def slow_sell(*args, **kwargs):
            await release.wait()
            return TradeResult(side="sell", status="confirmed", token_address=TOKEN, tx_hash="0xsell")

        async def buy(*args, **kwargs):
            bought.set()
            return TradeResult(side="buy", status="confirmed", token_address=TOKEN, tx_hash="0xbuy")

        mock_executor.execute_sell.side_effect = slow_sell
        mock_executor.execute_buy.side_effect = buy
        scheduler = AutomationScheduler(
            settings, store, gateway, mock_executor, ledger, locks, notifier, users=lambda: [USER, "2002"]
        )

        tick = asyncio.create_task(scheduler.tick(NOW + 60_000))
        await asyncio.wait_for(bought.wait(), timeout=5)

        assert mock_executor.execute_buy.call_args.args[0] == "2002"
        assert not tick.done()

        release.set()
        await tick
        mock_executor.execute_sell.assert_awaited_once()
