"""
Balance Oracle
==============
Live balance reads. Positions never store a balance; whoever needs one
asks here, so external transfers and partial fills are always reflected.

A failed read raises BalanceUnavailable. Callers must not treat it as a
zero balance (that would prune a position that still holds tokens).
"""

from decimal import Decimal

from trader.errors import BalanceUnavailable
from utils.chain_client import RPC_ERRORS, ChainClient
from utils.logger import get_logger

logger = get_logger(__name__)


class BalanceOracle:
    def __init__(self, chain: ChainClient):
        self.chain = chain

    async def native_balance(self, address: str) -> int:
        try:
            return await self.chain.get_native_balance(address)
        except RPC_ERRORS as e:
            logger.warning("native_balance_failed", address=address, error=str(e))
            raise BalanceUnavailable("Could not read MON balance") from e

    async def token_balance(self, token: str, owner: str) -> int:
        try:
            return await self.chain.get_token_balance(token, owner)
        except RPC_ERRORS as e:
            logger.warning("token_balance_failed", token=token, owner=owner, error=str(e))
            raise BalanceUnavailable("Could not read token balance", token=token) from e

    async def token_decimals(self, token: str) -> int:
        try:
            return await self.chain.get_decimals(token)
        except RPC_ERRORS as e:
            raise BalanceUnavailable("Could not read token decimals", token=token) from e

    async def to_units(self, token: str, raw: int) -> Decimal:
        """Raw token amount as whole tokens, for display and market cap."""
        decimals = await self.token_decimals(token)
        return Decimal(raw) / (Decimal(10) ** decimals)
