"""
Position Ledger
===============
Keeps stored positions honest against what the wallet actually holds.

Reconciliation runs on the read path, every time positions are shown to
the user or walked by the automation scheduler:
- read each position's live balance
- drop positions whose balance is zero and persist the shorter list
- keep positions whose balance could not be read (unknown is not zero)

The ledger also owns cost basis: a position is created on the first
confirmed buy of a token and its buy price/time never change after that.
"""

from database.wallet_store import WalletStore
from trader.balance_oracle import BalanceOracle
from trader.errors import BalanceUnavailable
from trader.locks import UserLocks
from trader.models import Holding, Position, WalletRecord
from utils.logger import get_logger

logger = get_logger(__name__)


class PositionLedger:
    """
    Usage:
        ledger = PositionLedger(store, oracle, locks)
        holdings = await ledger.list_positions(user_id)
    """

    def __init__(self, store: WalletStore, oracle: BalanceOracle, locks: UserLocks):
        self.store = store
        self.oracle = oracle
        self.locks = locks

    async def list_positions(self, user_id: str) -> list[Holding]:
        """Reconciled positions for display. Waits for any in-flight trade."""
        async with self.locks.hold(user_id):
            record = await self.store.get(user_id)
            if record is None or not record.positions:
                return []
            return await self.reconcile(user_id, record)

    async def reconcile(self, user_id: str, record: WalletRecord) -> list[Holding]:
        """
        Prune zero-balance positions. The caller must hold the user's lock.
        Saves only when something was removed.
        """
        kept: list[Position] = []
        holdings: list[Holding] = []

        for position in record.positions:
            try:
                balance = await self.oracle.token_balance(position.token_address, record.address)
            except BalanceUnavailable:
                balance = None

            if balance == 0:
                logger.info("position_pruned", user=str(user_id), token=position.token_address)
                continue

            holdings.append(Holding(index=len(kept), position=position, balance=balance))
            kept.append(position)

        if len(kept) != len(record.positions):
            record.positions = kept
            await self.store.save(user_id, record)

        return holdings

    @staticmethod
    def record_buy(record: WalletRecord, token: str, price: str, buy_time: int) -> bool:
        """Add a position on first buy. Returns False if one already exists."""
        if record.find_position(token):
            return False
        record.positions.append(Position(token_address=token, buy_price=price, buy_time=buy_time))
        return True

    @staticmethod
    def remove(record: WalletRecord, token: str) -> bool:
        before = len(record.positions)
        record.positions = [
            p for p in record.positions if p.token_address.lower() != token.lower()
        ]
        return len(record.positions) != before
