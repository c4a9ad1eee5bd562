"""
Shared fixtures.

Store-level tests run against a real temporary SQLite database; the
chain, the market API and the balance oracle are mocks.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from web3 import Web3

from config.settings import Settings
from database.db import Database
from database.wallet_store import WalletStore
from trader.balance_oracle import BalanceOracle
from trader.locks import UserLocks
from trader.market_gateway import MarketGateway
from trader.models import MarketInfo, MarketSnapshot, VenueType
from trader.position_ledger import PositionLedger
from trader.trade_executor import TradeExecutor
from utils.chain_client import ChainClient
from utils.crypto import KeyCipher

TEST_KEY = "11" * 32
USER = "1001"
TOKEN = Web3.to_checksum_address("0x" + "ab" * 20)
OTHER_TOKEN = Web3.to_checksum_address("0x" + "cd" * 20)
NOW = 1_700_000_000_000


def make_market(venue: VenueType = VenueType.DEX, price: str = "0.001") -> MarketInfo:
    return MarketInfo(venue=venue, price=Decimal(price), market_id="0xmarket", total_supply=Decimal("1000000"))


def make_snapshot(price: str = "0.001", supply: str = "1000000", venue: VenueType = VenueType.DEX) -> MarketSnapshot:
    return MarketSnapshot(market=make_market(venue, price), supply=Decimal(supply))


@pytest.fixture
def settings():
    return Settings(
        telegram_bot_token="",
        bot_password="letmein",
        encryption_key=TEST_KEY,
        default_slippage=10,
        default_buy_amount="0.1",
        confirmation_timeout_seconds=5,
        automation_position_delay=0,
    )


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "test.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def cipher():
    return KeyCipher(TEST_KEY)


@pytest.fixture
def store(settings, db, cipher):
    return WalletStore(settings, db, cipher)


@pytest.fixture
def locks():
    return UserLocks()


@pytest.fixture
def chain():
    mock = MagicMock(spec=ChainClient)
    mock.send_buy.return_value = "0xbuy"
    mock.send_sell.return_value = "0xsell"
    mock.approve.return_value = "0xapprove"
    mock.wait_for_receipt.return_value = {"status": 1, "blockNumber": 1}
    return mock


@pytest.fixture
def gateway():
    mock = MagicMock(spec=MarketGateway)
    mock.router_for.return_value = "0x" + "11" * 20
    mock.resolve_market.return_value = make_market()
    mock.get_market.return_value = make_market()
    mock.quote.return_value = 1000
    mock.snapshot.return_value = make_snapshot()
    return mock


@pytest.fixture
def oracle():
    mock = MagicMock(spec=BalanceOracle)
    mock.native_balance.return_value = Web3.to_wei(10, "ether")
    mock.token_balance.return_value = 1000
    return mock


@pytest.fixture
def ledger(store, oracle, locks):
    return PositionLedger(store, oracle, locks)


@pytest.fixture
def executor(settings, db, store, gateway, oracle, chain, ledger, locks):
    return TradeExecutor(settings, db, store, gateway, oracle, chain, ledger, locks, clock=lambda: NOW)


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.notify = AsyncMock()
    return mock


@pytest_asyncio.fixture
async def wallet(store):
    """A freshly created wallet for USER."""
    return await store.create(USER)
