"""
Chain Client
============
A thin async wrapper around the EVM JSON-RPC node (web3.py).

This module handles:
- Balance reads (native MON and ERC-20 tokens)
- Router quotes (getAmountOut)
- Building, signing and sending buy / sell / approve transactions
- Waiting for receipts with a client-side timeout

Every amount is an integer in the token's smallest unit. Library errors
are translated at this boundary into the trading error taxonomy, so the
rest of the bot never has to know about web3 exception types.
"""

import asyncio

import aiohttp
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from trader.errors import (
    STAGE_CONFIRM,
    ConfirmationTimeout,
    InsufficientFunds,
    OnChainFailure,
    SubmissionFailed,
    TransactionReverted,
)
from utils.abis import DEX_INSUFFICIENT_LIQUIDITY, ERC20_ABI, ROUTER_ABI
from utils.logger import get_logger

logger = get_logger(__name__)

# Errors a node call can surface besides contract reverts
RPC_ERRORS = (Web3Exception, ValueError, aiohttp.ClientError, asyncio.TimeoutError)


def _checksum(address: str) -> str:
    return Web3.to_checksum_address(address)


class ChainClient:
    """
    Async chain client.

    Usage:
        chain = ChainClient(rpc_url="https://testnet-rpc.monad.xyz")
        await chain.initialize()
        wei = await chain.get_native_balance("0x...")
        await chain.close()
    """

    def __init__(self, rpc_url: str, chain_id: int = 0):
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.session: aiohttp.ClientSession | None = None
        self.w3: AsyncWeb3 | None = None
        self._decimals: dict[str, int] = {}

    async def initialize(self) -> None:
        """Create the HTTP session and the web3 instance on top of it."""
        self.session = aiohttp.ClientSession()
        self.w3 = AsyncWeb3(AsyncHTTPProvider(self.rpc_url))
        await self.w3.provider.cache_async_session(self.session)
        logger.info("chain_client_initialized", rpc=self.rpc_url.split("?")[0])

    async def close(self) -> None:
        if self.session:
            await self.session.close()

    async def is_connected(self) -> bool:
        try:
            return await self.w3.is_connected()
        except RPC_ERRORS:
            return False

    async def get_chain_id(self) -> int:
        if not self.chain_id:
            self.chain_id = await self.w3.eth.chain_id
        return self.chain_id

    def _token(self, address: str):
        return self.w3.eth.contract(address=_checksum(address), abi=ERC20_ABI)

    def _router(self, address: str):
        return self.w3.eth.contract(address=_checksum(address), abi=ROUTER_ABI)

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_native_balance(self, address: str) -> int:
        """MON balance in wei."""
        return await self.w3.eth.get_balance(_checksum(address))

    async def get_token_balance(self, token: str, owner: str) -> int:
        """Raw ERC-20 balance (smallest unit)."""
        return await self._token(token).functions.balanceOf(_checksum(owner)).call()

    async def get_decimals(self, token: str) -> int:
        key = token.lower()
        if key not in self._decimals:
            self._decimals[key] = await self._token(token).functions.decimals().call()
        return self._decimals[key]

    async def get_total_supply(self, token: str) -> int:
        return await self._token(token).functions.totalSupply().call()

    async def get_amount_out(self, router: str, token: str, amount_in: int, is_buy: bool) -> int:
        """Router quote: tokens out for a buy, native out for a sell."""
        return await self._router(router).functions.getAmountOut(
            _checksum(token), amount_in, is_buy
        ).call()

    # =========================================================================
    # Writes
    # =========================================================================

    async def send_buy(
        self,
        account: LocalAccount,
        router: str,
        token: str,
        amount_in: int,
        amount_out_min: int,
        deadline: int,
        stage: str,
    ) -> str:
        params = (amount_out_min, _checksum(token), account.address, deadline)
        fn = self._router(router).functions.buy(params)
        return await self._send(account, fn, value=amount_in, stage=stage, token=token)

    async def send_sell(
        self,
        account: LocalAccount,
        router: str,
        token: str,
        amount_in: int,
        amount_out_min: int,
        deadline: int,
        stage: str,
    ) -> str:
        params = (amount_in, amount_out_min, _checksum(token), account.address, deadline)
        fn = self._router(router).functions.sell(params)
        return await self._send(account, fn, value=0, stage=stage, token=token)

    async def approve(self, account: LocalAccount, token: str, spender: str, amount: int, stage: str) -> str:
        fn = self._token(token).functions.approve(_checksum(spender), amount)
        return await self._send(account, fn, value=0, stage=stage, token=token)

    async def _send(self, account: LocalAccount, fn, *, value: int, stage: str, token: str) -> str:
        """
        Build, sign and broadcast a contract call.
        Gas and fee fields are filled in by web3 (estimateGas + fee history).
        """
        try:
            nonce = await self.w3.eth.get_transaction_count(account.address, "pending")
            tx = await fn.build_transaction({
                "from": account.address,
                "value": value,
                "nonce": nonce,
                "chainId": await self.get_chain_id(),
            })
        except ContractLogicError as e:
            raise self._revert_error(e, stage, token) from e
        except RPC_ERRORS as e:
            raise self._classify(e, stage, token) from e

        signed = account.sign_transaction(tx)

        try:
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as e:
            raise self._revert_error(e, stage, token) from e
        except RPC_ERRORS as e:
            raise self._classify(e, stage, token) from e

        tx_hex = Web3.to_hex(tx_hash)
        logger.info("tx_sent", stage=stage, token=token, tx=tx_hex)
        return tx_hex

    async def wait_for_receipt(self, tx_hash: str, timeout: float, stage: str = STAGE_CONFIRM, token: str | None = None) -> dict:
        """
        Wait until the transaction is mined.

        Raises ConfirmationTimeout if it isn't mined within timeout seconds
        (it may still land later) and TransactionReverted if it was mined
        with status 0.
        """
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=timeout, poll_latency=1
            )
        except TimeExhausted as e:
            logger.warning("tx_confirmation_timeout", tx=tx_hash, timeout=timeout)
            raise ConfirmationTimeout(
                f"Not confirmed after {timeout:.0f}s", stage=stage, token=token, tx_hash=tx_hash
            ) from e
        except RPC_ERRORS as e:
            logger.warning("tx_confirmation_error", tx=tx_hash, error=str(e))
            raise ConfirmationTimeout(
                f"Could not confirm: {e}", stage=stage, token=token, tx_hash=tx_hash
            ) from e

        if receipt["status"] != 1:
            logger.error("tx_reverted", tx=tx_hash, stage=stage)
            raise TransactionReverted("Transaction reverted", stage=stage, token=token, tx_hash=tx_hash)

        logger.info("tx_confirmed", tx=tx_hash, stage=stage, block=receipt.get("blockNumber"))
        return receipt

    # =========================================================================
    # Error translation
    # =========================================================================

    @staticmethod
    def _revert_error(e: Exception, stage: str, token: str) -> TransactionReverted:
        message = str(e)
        if DEX_INSUFFICIENT_LIQUIDITY in message:
            message = "Insufficient liquidity or token not properly listed on the DEX"
        return TransactionReverted(f"Transaction would revert: {message[:120]}", stage=stage, token=token)

    @staticmethod
    def _classify(e: Exception, stage: str, token: str) -> OnChainFailure:
        message = str(e)
        if "insufficient funds" in message.lower():
            return InsufficientFunds("Not enough MON for amount plus gas", stage=stage, token=token)
        return SubmissionFailed(f"Node rejected transaction: {message[:120]}", stage=stage, token=token)
