"""
Trade Executor
==============
Buys and sells against whichever venue a token currently trades on.

Every line here moves real money. The rules:
- The user's lock is held from quote to ledger update, so a chat command
  and the automation scheduler can never trade the same wallet at once
- Slippage floors are integer math on wei-scale units
- The position ledger changes only on a confirmed receipt, or after a
  live balance read, never on a presumed outcome
- Nothing is retried automatically; a failed attempt is reported with
  its stage and tx hash and the user decides

The flow for a buy:
1. Resolve the venue (CURVE or DEX) via the market gateway
2. Quote native -> token, apply slippage -> minOut
3. Check the native balance covers the amount
4. Submit with deadline = now + 1800s, report "pending" with the tx hash
5. Wait for the receipt (client-side timeout)
6. First buy of this token -> open a position with the quote-time price

The flow for a sell:
1. Read the live token balance, sellAmount = balance * pct // 100
2. Approve the venue router for sellAmount and wait for that receipt
3. DEX: quote token -> native, apply slippage. CURVE: amountOutMin = 0
4. Submit, report "pending", wait for the receipt
5. 100% -> close the position; partial -> re-read the live balance
"""

from typing import Awaitable, Callable

from config.settings import Settings
from database.db import Database
from database.wallet_store import WalletStore
from trader.balance_oracle import BalanceOracle
from trader.errors import (
    STAGE_APPROVE,
    STAGE_CONFIRM,
    STAGE_QUOTE,
    STAGE_SUBMIT,
    BalanceUnavailable,
    ConfirmationTimeout,
    InsufficientFunds,
    InvalidInput,
    OnChainFailure,
    PositionNotFound,
    TransactionReverted,
)
from trader.locks import UserLocks
from trader.market_gateway import MarketGateway, min_output
from trader.models import Direction, Position, TradeResult, VenueType, WalletRecord, now_ms
from trader.position_ledger import PositionLedger
from trader.validation import parse_address, parse_amount, parse_percentage, to_wei
from utils.chain_client import ChainClient
from utils.logger import get_logger

logger = get_logger(__name__)

# Called with the tx hash as soon as the swap is broadcast
SubmittedCallback = Callable[[str], Awaitable[None]]


class TradeExecutor:
    """
    Usage:
        executor = TradeExecutor(settings, db, store, gateway, oracle, chain, ledger, locks)
        result = await executor.buy(user_id, token, "0.5", on_submitted=notify_pending)
        result = await executor.sell(user_id, position_index=0, percentage=50)
    """

    def __init__(
        self,
        settings: Settings,
        db: Database,
        store: WalletStore,
        gateway: MarketGateway,
        oracle: BalanceOracle,
        chain: ChainClient,
        ledger: PositionLedger,
        locks: UserLocks,
        clock: Callable[[], int] = now_ms,
    ):
        self.settings = settings
        self.db = db
        self.store = store
        self.gateway = gateway
        self.oracle = oracle
        self.chain = chain
        self.ledger = ledger
        self.locks = locks
        self.clock = clock

    # =========================================================================
    # Entry points (acquire the user's lock)
    # =========================================================================

    async def buy(
        self,
        user_id: str,
        token: str,
        amount: str,
        on_submitted: SubmittedCallback | None = None,
        reason: str = "manual",
    ) -> TradeResult:
        """Buy `amount` MON worth of `token`."""
        token = parse_address(token)
        amount_wei = to_wei(parse_amount(amount))

        async with self.locks.hold(user_id):
            record = await self.store.require(user_id)
            return await self.execute_buy(user_id, record, token, amount_wei, on_submitted, reason)

    async def buy_default(
        self,
        user_id: str,
        token: str,
        on_submitted: SubmittedCallback | None = None,
    ) -> TradeResult:
        """Auto-buy: spend the user's default buy amount."""
        token = parse_address(token)
        async with self.locks.hold(user_id):
            record = await self.store.require(user_id)
            amount_wei = to_wei(parse_amount(record.default_buy_amount))
            return await self.execute_buy(user_id, record, token, amount_wei, on_submitted, "auto_buy")

    async def sell(
        self,
        user_id: str,
        position_index: int,
        percentage: int,
        on_submitted: SubmittedCallback | None = None,
        reason: str = "manual",
    ) -> TradeResult:
        """Sell `percentage` (1-100) of the live balance of a position."""
        percentage = parse_percentage(percentage)

        async with self.locks.hold(user_id):
            record = await self.store.require(user_id)
            if not 0 <= position_index < len(record.positions):
                raise PositionNotFound(f"No position #{position_index + 1}")
            position = record.positions[position_index]
            return await self.execute_sell(user_id, record, position, percentage, on_submitted, reason)

    async def sell_token(
        self,
        user_id: str,
        token: str,
        percentage: int,
        on_submitted: SubmittedCallback | None = None,
    ) -> TradeResult:
        """Same as sell(), addressing the position by token instead of number."""
        token = parse_address(token)
        percentage = parse_percentage(percentage)

        async with self.locks.hold(user_id):
            record = await self.store.require(user_id)
            position = record.find_position(token)
            if position is None:
                raise PositionNotFound("No open position for this token", token=token)
            return await self.execute_sell(user_id, record, position, percentage, on_submitted)

    # =========================================================================
    # Execution (caller holds the user's lock)
    # =========================================================================

    async def execute_buy(
        self,
        user_id: str,
        record: WalletRecord,
        token: str,
        amount_wei: int,
        on_submitted: SubmittedCallback | None = None,
        reason: str = "manual",
    ) -> TradeResult:
        market = await self.gateway.resolve_market(token)
        router = self.gateway.router_for(market.venue)

        expected_out = await self.gateway.quote(token, market.venue, amount_wei, Direction.TO_TOKEN)
        min_out = min_output(expected_out, record.slippage)

        native = await self.oracle.native_balance(record.address)
        if native < amount_wei:
            raise InsufficientFunds(
                f"Balance {native} wei is below the buy amount {amount_wei} wei",
                stage=STAGE_QUOTE,
                token=token,
            )

        logger.info(
            "executing_buy",
            user=str(user_id),
            token=token,
            venue=market.venue.value,
            amount_wei=amount_wei,
            min_out=min_out,
            slippage=record.slippage,
            reason=reason,
        )

        tx_hash = await self.chain.send_buy(
            self.store.signer(record),
            router,
            token,
            amount_wei,
            min_out,
            self._deadline(),
            stage=STAGE_SUBMIT,
        )
        trade_id = await self._record_trade({
            "user_id": str(user_id),
            "token_address": token,
            "side": "buy",
            "venue": market.venue.value,
            "amount_in": amount_wei,
            "min_out": min_out,
            "reason": reason,
            "tx_hash": tx_hash,
        })
        await self._report_submitted(on_submitted, tx_hash)

        try:
            await self.chain.wait_for_receipt(
                tx_hash, self.settings.confirmation_timeout_seconds, stage=STAGE_CONFIRM, token=token
            )
        except OnChainFailure as e:
            await self._set_trade_status(trade_id, self._failure_status(e), e.message)
            logger.error("BUY_FAILED", user=str(user_id), token=token, tx=tx_hash, error=e.message)
            raise

        await self._set_trade_status(trade_id, "confirmed")

        # Cost basis is first-buy-only: later buys of a held token don't touch it
        if self.ledger.record_buy(record, token, str(market.price), self.clock()):
            await self.store.save(user_id, record)

        logger.info(
            "BUY_CONFIRMED",
            user=str(user_id),
            token=token,
            venue=market.venue.value,
            amount_wei=amount_wei,
            tx=tx_hash,
        )

        return TradeResult(
            side="buy",
            status="confirmed",
            token_address=token,
            venue=market.venue,
            amount_in=amount_wei,
            min_out=min_out,
            tx_hash=tx_hash,
        )

    async def execute_sell(
        self,
        user_id: str,
        record: WalletRecord,
        position: Position,
        percentage: int,
        on_submitted: SubmittedCallback | None = None,
        reason: str = "manual",
    ) -> TradeResult:
        token = position.token_address
        balance = await self.oracle.token_balance(token, record.address)
        sell_amount = balance * percentage // 100

        if balance == 0:
            # Tokens left the wallet some other way: close without a transaction
            self.ledger.remove(record, token)
            await self.store.save(user_id, record)
            logger.info("position_already_closed", user=str(user_id), token=token)
            return TradeResult(
                side="sell",
                status="closed",
                token_address=token,
                remaining_balance=0,
                position_closed=True,
            )

        if sell_amount == 0:
            raise InvalidInput(
                f"{percentage}% of the balance rounds down to zero tokens", stage=STAGE_QUOTE, token=token
            )

        market = await self.gateway.resolve_market(token)
        router = self.gateway.router_for(market.venue)
        account = self.store.signer(record)

        logger.info(
            "executing_sell",
            user=str(user_id),
            token=token,
            venue=market.venue.value,
            percentage=percentage,
            sell_amount=sell_amount,
            balance=balance,
            reason=reason,
        )

        # Phase 1: allowance. Must confirm before the sell or the router reverts.
        # If the sell then fails, the allowance just stays outstanding.
        approve_hash = await self.chain.approve(account, token, router, sell_amount, stage=STAGE_APPROVE)
        await self.chain.wait_for_receipt(
            approve_hash, self.settings.confirmation_timeout_seconds, stage=STAGE_APPROVE, token=token
        )

        # Phase 2: the swap
        if market.venue == VenueType.DEX:
            expected_out = await self.gateway.quote(token, market.venue, sell_amount, Direction.TO_BASE)
            min_out = min_output(expected_out, record.slippage)
        else:
            # The bonding curve sell path is submitted with no minimum output
            min_out = 0

        tx_hash = await self.chain.send_sell(
            account, router, token, sell_amount, min_out, self._deadline(), stage=STAGE_SUBMIT
        )
        trade_id = await self._record_trade({
            "user_id": str(user_id),
            "token_address": token,
            "side": "sell",
            "venue": market.venue.value,
            "amount_in": sell_amount,
            "min_out": min_out,
            "percentage": percentage,
            "reason": reason,
            "tx_hash": tx_hash,
        })
        await self._report_submitted(on_submitted, tx_hash)

        try:
            await self.chain.wait_for_receipt(
                tx_hash, self.settings.confirmation_timeout_seconds, stage=STAGE_CONFIRM, token=token
            )
        except OnChainFailure as e:
            await self._set_trade_status(trade_id, self._failure_status(e), e.message)
            logger.error("SELL_FAILED", user=str(user_id), token=token, tx=tx_hash, error=e.message)
            await self._reconcile_position(user_id, record, token)
            raise

        await self._set_trade_status(trade_id, "confirmed")

        if percentage == 100:
            remaining = 0
            closed = True
        else:
            remaining = await self._live_balance(token, record.address)
            closed = remaining == 0

        if closed:
            self.ledger.remove(record, token)
            await self.store.save(user_id, record)

        logger.info(
            "POSITION_CLOSED" if closed else "PARTIAL_SELL",
            user=str(user_id),
            token=token,
            percentage=percentage,
            sold=sell_amount,
            remaining=remaining,
            tx=tx_hash,
            reason=reason,
        )

        return TradeResult(
            side="sell",
            status="confirmed",
            token_address=token,
            venue=market.venue,
            amount_in=sell_amount,
            min_out=min_out,
            tx_hash=tx_hash,
            approve_tx_hash=approve_hash,
            remaining_balance=remaining,
            position_closed=closed,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _deadline(self) -> int:
        return self.clock() // 1000 + self.settings.tx_deadline_seconds

    async def _live_balance(self, token: str, owner: str) -> int | None:
        try:
            return await self.oracle.token_balance(token, owner)
        except BalanceUnavailable:
            return None

    async def _reconcile_position(self, user_id: str, record: WalletRecord, token: str) -> None:
        """After a failed sell, trust the chain: drop the position only if it is empty."""
        if await self._live_balance(token, record.address) == 0:
            self.ledger.remove(record, token)
            await self.store.save(user_id, record)
            logger.info("position_reconciled_closed", user=str(user_id), token=token)

    async def _record_trade(self, trade_data: dict) -> int | None:
        """Audit row for a broadcast transaction. The trade goes on without it."""
        try:
            return await self.db.insert_trade(trade_data)
        except Exception as e:
            logger.error("trade_audit_insert_failed", tx=trade_data.get("tx_hash"), error=str(e))
            return None

    async def _set_trade_status(self, trade_id: int | None, status: str, error: str | None = None) -> None:
        if trade_id is None:
            return
        try:
            await self.db.update_trade_status(trade_id, status, error)
        except Exception as e:
            logger.error("trade_audit_update_failed", trade_id=trade_id, status=status, error=str(e))

    @staticmethod
    async def _report_submitted(on_submitted: SubmittedCallback | None, tx_hash: str) -> None:
        if on_submitted is None:
            return
        try:
            await on_submitted(tx_hash)
        except Exception as e:
            # A failed "pending" message must not abandon a broadcast transaction
            logger.warning("submitted_callback_failed", tx=tx_hash, error=str(e))

    @staticmethod
    def _failure_status(error: OnChainFailure) -> str:
        if isinstance(error, ConfirmationTimeout):
            return "timeout"
        if isinstance(error, TransactionReverted):
            return "reverted"
        return "failed"
