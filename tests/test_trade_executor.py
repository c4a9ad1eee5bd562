"""
Tests for trader/trade_executor.py

Tests cover:
- Slippage floor on buys and DEX sells
- Position lifecycle (first buy opens, sticky cost basis, full/partial sells)
- Failure handling (timeouts, reverts, insufficient funds)
- Per-user lock held for the whole trade
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from web3 import Web3

from conftest import NOW, OTHER_TOKEN, TOKEN, USER, make_market
from trader.errors import (
    ConfirmationTimeout,
    InsufficientFunds,
    InvalidInput,
    PositionNotFound,
    QuoteUnavailable,
    TransactionReverted,
    WalletNotFound,
)
from trader.automation import AutomationScheduler
from trader.models import AutoSellConfig, AutoSellTrigger, Direction, Position, TriggerType, VenueType


async def _open_position(store, token=TOKEN, price="0.001", buy_time=NOW):
    record = await store.get(USER)
    record.positions.append(Position(token_address=token, buy_price=price, buy_time=buy_time))
    await store.save(USER, record)
    return record


class TestBuy:
    """Buying a token."""

    @pytest.mark.asyncio
    async def test_min_out_uses_slippage(self, executor, chain, gateway, wallet):
        """Quote 1000 with 10% slippage submits amountOutMin 900."""
        gateway.quote.return_value = 1000

        await executor.buy(USER, TOKEN, "0.5")

        args = chain.send_buy.call_args.args
        assert args[3] == Web3.to_wei("0.5", "ether")
        assert args[4] == 900
        gateway.quote.assert_awaited_once_with(TOKEN, VenueType.DEX, Web3.to_wei("0.5", "ether"), Direction.TO_TOKEN)

    @pytest.mark.asyncio
    async def test_deadline_is_thirty_minutes_out(self, executor, chain, wallet):
        await executor.buy(USER, TOKEN, "0.1")

        assert chain.send_buy.call_args.args[5] == NOW // 1000 + 1800

    @pytest.mark.asyncio
    async def test_confirmed_buy_opens_position(self, executor, store, wallet):
        result = await executor.buy(USER, TOKEN.lower(), "0.1")

        assert result.status == "confirmed"
        assert result.tx_hash == "0xbuy"

        record = await store.get(USER)
        assert len(record.positions) == 1
        position = record.positions[0]
        assert position.token_address == TOKEN
        assert position.buy_price == "0.001"
        assert position.buy_time == NOW

    @pytest.mark.asyncio
    async def test_cost_basis_is_first_buy_only(self, executor, store, gateway, wallet):
        """A second buy of a held token does not touch its buy price or time."""
        await executor.buy(USER, TOKEN, "0.1")

        gateway.resolve_market.return_value = make_market(price="0.005")
        executor.clock = lambda: NOW + 60_000
        await executor.buy(USER, TOKEN, "0.1")

        record = await store.get(USER)
        assert len(record.positions) == 1
        assert record.positions[0].buy_price == "0.001"
        assert record.positions[0].buy_time == NOW

    @pytest.mark.asyncio
    async def test_confirmation_timeout_adds_no_position(self, executor, store, chain, db, wallet):
        chain.wait_for_receipt.side_effect = ConfirmationTimeout("Not confirmed after 5s", tx_hash="0xbuy")

        with pytest.raises(ConfirmationTimeout):
            await executor.buy(USER, TOKEN, "0.1")

        record = await store.get(USER)
        assert record.positions == []

        trades = await db.get_recent_trades(USER)
        assert trades[0]["status"] == "timeout"
        assert trades[0]["tx_hash"] == "0xbuy"

    @pytest.mark.asyncio
    async def test_revert_adds_no_position(self, executor, store, chain, wallet):
        chain.wait_for_receipt.side_effect = TransactionReverted("Transaction reverted", tx_hash="0xbuy")

        with pytest.raises(TransactionReverted):
            await executor.buy(USER, TOKEN, "0.1")

        assert (await store.get(USER)).positions == []

    @pytest.mark.asyncio
    async def test_insufficient_native_balance(self, executor, oracle, chain, wallet):
        oracle.native_balance.return_value = Web3.to_wei("0.05", "ether")

        with pytest.raises(InsufficientFunds):
            await executor.buy(USER, TOKEN, "0.1")

        chain.send_buy.assert_not_called()

    @pytest.mark.asyncio
    async def test_quote_failure_submits_nothing(self, executor, gateway, chain, wallet):
        gateway.quote.side_effect = QuoteUnavailable("DEX quote failed")

        with pytest.raises(QuoteUnavailable):
            await executor.buy(USER, TOKEN, "0.1")

        chain.send_buy.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_amount_rejected_before_any_read(self, executor, gateway, wallet):
        for amount in ("0", "-1", "abc", "nan"):
            with pytest.raises(InvalidInput):
                await executor.buy(USER, TOKEN, amount)

        gateway.resolve_market.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_wallet(self, executor):
        with pytest.raises(WalletNotFound):
            await executor.buy(USER, TOKEN, "0.1")

    @pytest.mark.asyncio
    async def test_pending_callback_gets_tx_hash(self, executor, wallet):
        seen = []

        async def on_submitted(tx_hash):
            seen.append(tx_hash)

        await executor.buy(USER, TOKEN, "0.1", on_submitted=on_submitted)

        assert seen == ["0xbuy"]

    @pytest.mark.asyncio
    async def test_failing_pending_callback_does_not_abort(self, executor, store, wallet):
        async def on_submitted(tx_hash):
            raise RuntimeError("telegram down")

        result = await executor.buy(USER, TOKEN, "0.1", on_submitted=on_submitted)

        assert result.status == "confirmed"
        assert len((await store.get(USER)).positions) == 1

    @pytest.mark.asyncio
    async def test_buy_default_uses_record_amount(self, executor, wallet_with_default_amount, chain):
        await executor.buy_default(USER, TOKEN)

        assert chain.send_buy.call_args.args[3] == Web3.to_wei("0.25", "ether")


@pytest_asyncio.fixture
async def wallet_with_default_amount(store, wallet):
    wallet.default_buy_amount = "0.25"
    await store.save(USER, wallet)
    return wallet


class TestSell:
    """Selling a percentage of a position."""

    @pytest.mark.asyncio
    async def test_full_sell_removes_position(self, executor, store, chain, oracle, wallet):
        await _open_position(store)
        oracle.token_balance.return_value = 1000

        result = await executor.sell(USER, 0, 100)

        assert chain.send_sell.call_args.args[3] == 1000
        assert result.position_closed
        assert (await store.get(USER)).positions == []

    @pytest.mark.asyncio
    async def test_partial_sell_keeps_position(self, executor, store, chain, oracle, wallet):
        await _open_position(store)
        oracle.token_balance.side_effect = [1000, 500]

        result = await executor.sell(USER, 0, 50)

        chain.approve.assert_awaited_once()
        assert chain.approve.call_args.args[3] == 500
        assert chain.send_sell.call_args.args[3] == 500
        assert not result.position_closed
        assert result.remaining_balance == 500
        assert len((await store.get(USER)).positions) == 1

    @pytest.mark.asyncio
    async def test_partial_sell_closes_when_nothing_left(self, executor, store, oracle, wallet):
        await _open_position(store)
        oracle.token_balance.side_effect = [1000, 0]

        result = await executor.sell(USER, 0, 50)

        assert result.position_closed
        assert (await store.get(USER)).positions == []

    @pytest.mark.asyncio
    async def test_never_sells_more_than_balance(self, executor, store, chain, oracle, wallet):
        await _open_position(store)
        oracle.token_balance.side_effect = [999, 667]

        await executor.sell(USER, 0, 33)

        # floor(999 * 33 / 100)
        assert chain.send_sell.call_args.args[3] == 329

    @pytest.mark.asyncio
    async def test_zero_balance_closes_without_transaction(self, executor, store, chain, oracle, wallet):
        await _open_position(store)
        oracle.token_balance.return_value = 0

        result = await executor.sell(USER, 0, 50)

        assert result.status == "closed"
        chain.approve.assert_not_called()
        chain.send_sell.assert_not_called()
        assert (await store.get(USER)).positions == []

    @pytest.mark.asyncio
    async def test_amount_rounding_to_zero_is_rejected(self, executor, store, chain, oracle, wallet):
        await _open_position(store)
        oracle.token_balance.return_value = 1

        with pytest.raises(InvalidInput):
            await executor.sell(USER, 0, 50)

        chain.approve.assert_not_called()
        assert len((await store.get(USER)).positions) == 1

    @pytest.mark.asyncio
    async def test_dex_sell_quotes_to_base(self, executor, store, chain, gateway, oracle, wallet):
        await _open_position(store)
        oracle.token_balance.return_value = 1000
        gateway.quote.return_value = 2000

        await executor.sell(USER, 0, 100)

        gateway.quote.assert_awaited_once_with(TOKEN, VenueType.DEX, 1000, Direction.TO_BASE)
        assert chain.send_sell.call_args.args[4] == 1800

    @pytest.mark.asyncio
    async def test_curve_sell_has_no_minimum(self, executor, store, chain, gateway, oracle, wallet):
        await _open_position(store)
        gateway.resolve_market.return_value = make_market(VenueType.CURVE)
        oracle.token_balance.return_value = 1000

        await executor.sell(USER, 0, 100)

        gateway.quote.assert_not_called()
        assert chain.send_sell.call_args.args[4] == 0

    @pytest.mark.asyncio
    async def test_approval_confirms_before_sell(self, executor, store, chain, oracle, wallet):
        await _open_position(store)
        calls = []
        chain.approve.side_effect = lambda *a, **k: calls.append("approve") or "0xapprove"
        chain.send_sell.side_effect = lambda *a, **k: calls.append("sell") or "0xsell"

        async def receipt(tx_hash, *a, **k):
            calls.append(f"wait:{tx_hash}")
            return {"status": 1}

        chain.wait_for_receipt.side_effect = receipt

        await executor.sell(USER, 0, 100)

        assert calls == ["approve", "wait:0xapprove", "sell", "wait:0xsell"]

    @pytest.mark.asyncio
    async def test_reverted_sell_keeps_held_position(self, executor, store, chain, oracle, wallet):
        await _open_position(store)
        oracle.token_balance.return_value = 1000
        chain.wait_for_receipt.side_effect = [
            {"status": 1},
            TransactionReverted("Transaction reverted", tx_hash="0xsell"),
        ]

        with pytest.raises(TransactionReverted):
            await executor.sell(USER, 0, 100)

        assert len((await store.get(USER)).positions) == 1

    @pytest.mark.asyncio
    async def test_timed_out_sell_reconciles_empty_position(self, executor, store, chain, oracle, wallet):
        """The sell landed after our timeout: the live balance says the position is gone."""
        await _open_position(store)
        oracle.token_balance.side_effect = [1000, 0]
        chain.wait_for_receipt.side_effect = [
            {"status": 1},
            ConfirmationTimeout("Not confirmed after 5s", tx_hash="0xsell"),
        ]

        with pytest.raises(ConfirmationTimeout):
            await executor.sell(USER, 0, 100)

        assert (await store.get(USER)).positions == []

    @pytest.mark.asyncio
    async def test_invalid_percentage(self, executor, store, oracle, wallet):
        await _open_position(store)

        for pct in (0, 101, "abc"):
            with pytest.raises(InvalidInput):
                await executor.sell(USER, 0, pct)

        oracle.token_balance.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_position_index(self, executor, store, wallet):
        await _open_position(store)

        with pytest.raises(PositionNotFound):
            await executor.sell(USER, 3, 50)

    @pytest.mark.asyncio
    async def test_sell_by_token(self, executor, store, chain, oracle, wallet):
        await _open_position(store, token=TOKEN)
        await _open_position(store, token=OTHER_TOKEN)
        oracle.token_balance.return_value = 1000

        await executor.sell_token(USER, OTHER_TOKEN.lower(), "100%")

        assert chain.send_sell.call_args.args[2] == OTHER_TOKEN
        assert [p.token_address for p in (await store.get(USER)).positions] == [TOKEN]

    @pytest.mark.asyncio
    async def test_trade_audit_trail(self, executor, store, db, oracle, wallet):
        await _open_position(store)
        oracle.token_balance.side_effect = [1000, 750]

        await executor.sell(USER, 0, 25)

        trade = (await db.get_recent_trades(USER))[0]
        assert trade["side"] == "sell"
        assert trade["percentage"] == 25
        assert trade["amount_in"] == "250"
        assert trade["status"] == "confirmed"


class TestConcurrency:
    """Trades for one user never overlap."""

    @pytest.mark.asyncio
    async def test_lock_held_until_confirmation(self, executor, chain, locks, wallet):
        waiting = asyncio.Event()
        release = asyncio.Event()

        async def slow_receipt(*args, **kwargs):
            waiting.set()
            await release.wait()
            return {"status": 1}

        chain.wait_for_receipt.side_effect = slow_receipt

        task = asyncio.create_task(executor.buy(USER, TOKEN, "0.1"))
        await asyncio.wait_for(waiting.wait(), timeout=5)

        assert locks.is_locked(USER)
        assert not locks.is_locked("someone-else")

        release.set()
        await task
        assert not locks.is_locked(USER)

    @pytest.mark.asyncio
    async def test_chat_sell_and_auto_sell_take_turns(
        self, settings, executor, store, gateway, chain, oracle, ledger, locks, notifier, wallet
    ):
        """A user sell and an auto-sell of the same position never overlap or over-sell."""
        record = await _open_position(store, buy_time=0)
        record.auto_sell = AutoSellConfig(
            enabled=True,
            triggers=(AutoSellTrigger(type=TriggerType.TIME, value=Decimal(1), percentage=100),),
        )
        await store.save(USER, record)

        held = {"balance": 1000}
        sold = []
        entered = asyncio.Event()
        release = asyncio.Event()

        async def balance(token, owner):
            return held["balance"]

        async def send_sell(*args, **kwargs):
            sold.append(args[3])
            held["balance"] -= args[3]
            return f"0xsell{len(sold)}"

        async def slow_receipt(*args, **kwargs):
            entered.set()
            await release.wait()
            return {"status": 1}

        oracle.token_balance.side_effect = balance
        chain.send_sell.side_effect = send_sell
        chain.wait_for_receipt.side_effect = slow_receipt
        scheduler = AutomationScheduler(
            settings, store, gateway, executor, ledger, locks, notifier, users=lambda: [USER], clock=lambda: NOW
        )

        chat_sell = asyncio.create_task(executor.sell(USER, 0, 50))
        await asyncio.wait_for(entered.wait(), timeout=5)
        tick = asyncio.create_task(scheduler.tick(NOW))
        for _ in range(20):
            await asyncio.sleep(0)

        # The scheduler waits for the user's lock while the chat sell is in flight
        assert chain.approve.call_count == 1
        assert sold == []

        release.set()
        await asyncio.wait_for(asyncio.gather(chat_sell, tick), timeout=5)

        assert sold == [500, 500]
        assert sum(sold) <= 1000
        assert held["balance"] == 0
        assert (await store.get(USER)).positions == []


class TestTradeLogFailure:
    """A broken audit write never strands a broadcast transaction."""

    @pytest.mark.asyncio
    async def test_buy_still_confirms_and_opens_position(self, executor, store, db, chain, wallet):
        with patch.object(db, "insert_trade", new=AsyncMock(side_effect=RuntimeError("disk I/O error"))):
            result = await executor.buy(USER, TOKEN, "0.1")

        assert result.status == "confirmed"
        chain.wait_for_receipt.assert_awaited_once()
        assert (await store.get(USER)).find_position(TOKEN) is not None

    @pytest.mark.asyncio
    async def test_sell_still_confirms_and_closes_position(self, executor, store, db, chain, wallet):
        await _open_position(store)

        with patch.object(db, "update_trade_status", new=AsyncMock()) as update, \
                patch.object(db, "insert_trade", new=AsyncMock(side_effect=RuntimeError("disk I/O error"))):
            result = await executor.sell(USER, 0, 100)

        assert result.position_closed
        assert (await store.get(USER)).positions == []
        update.assert_not_awaited()
