"""
Trading Models
==============
The data the trading core works with.

A user's whole trading state is one aggregate, the WalletRecord: keypair
(encrypted), per-user config, open positions, auto-sell rules and DCA
campaigns. It is read, mutated and saved as a unit while the user's lock
is held (see trader/locks.py).

Units:
- Native and token amounts on-chain are integers in the smallest unit (wei)
- Prices are decimal strings: MON per whole token
- Times are epoch milliseconds
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class VenueType(str, Enum):
    CURVE = "CURVE"   # nad.fun bonding curve
    DEX = "DEX"       # graduated token, DEX pool


class Direction(str, Enum):
    TO_TOKEN = "toToken"   # buying: native in, token out
    TO_BASE = "toBase"     # selling: token in, native out


class TriggerType(str, Enum):
    MARKETCAP = "marketcap"
    PROFIT = "profit"
    LOSS = "loss"
    TIME = "time"


# =============================================================================
# Wallet aggregate
# =============================================================================

@dataclass(frozen=True)
class Position:
    """
    A tracked holding. The balance is never stored, it is always read live.
    Cost basis (buy_price, buy_time) is set on the first buy and never changes.
    """

    token_address: str
    buy_price: str
    buy_time: int


@dataclass(frozen=True)
class AutoSellTrigger:
    """
    One-shot sell rule, applied to every position of the user.

    value: MON market cap for marketcap, percent for profit/loss,
    milliseconds for time.
    """

    type: TriggerType
    value: Decimal
    percentage: int

    def describe(self) -> str:
        if self.type == TriggerType.MARKETCAP:
            condition = f"market cap >= {self.value} MON"
        elif self.type == TriggerType.PROFIT:
            condition = f"profit >= {self.value}%"
        elif self.type == TriggerType.LOSS:
            condition = f"loss >= {self.value}%"
        else:
            condition = f"held >= {int(self.value) // 60000} min"
        return f"{condition} -> sell {self.percentage}%"


@dataclass(frozen=True)
class AutoSellConfig:
    enabled: bool = False
    triggers: tuple[AutoSellTrigger, ...] = ()


@dataclass
class DCACampaign:
    """A scheduled, repeated fixed-amount buy of one token."""

    id: str
    token_address: str
    amount_per_buy: str
    interval_minutes: int
    max_executions: int
    executed_count: int = 0
    active: bool = True
    next_execution_at: int = 0

    @classmethod
    def create(
        cls,
        token_address: str,
        amount_per_buy: str,
        interval_minutes: int,
        max_executions: int,
        now: int,
    ) -> "DCACampaign":
        return cls(
            id=uuid.uuid4().hex[:8],
            token_address=token_address,
            amount_per_buy=amount_per_buy,
            interval_minutes=interval_minutes,
            max_executions=max_executions,
            next_execution_at=now + interval_minutes * 60_000,
        )

    @property
    def completed(self) -> bool:
        return self.executed_count >= self.max_executions

    def is_due(self, now: int) -> bool:
        return self.active and not self.completed and self.next_execution_at <= now

    def record_execution(self, now: int) -> None:
        """Count one successful buy, reschedule, and stop at the limit."""
        self.executed_count += 1
        self.next_execution_at = now + self.interval_minutes * 60_000
        if self.completed:
            self.active = False


@dataclass
class WalletRecord:
    """Everything we store for one user."""

    address: str
    encrypted_key: str
    auto_buy: bool = False
    slippage: int = 10
    default_buy_amount: str = "0.1"
    positions: list[Position] = field(default_factory=list)
    auto_sell: AutoSellConfig = field(default_factory=AutoSellConfig)
    dca_campaigns: list[DCACampaign] = field(default_factory=list)

    def find_position(self, token_address: str) -> Position | None:
        key = token_address.lower()
        for position in self.positions:
            if position.token_address.lower() == key:
                return position
        return None

    def find_campaign(self, campaign_id: str) -> DCACampaign | None:
        for campaign in self.dca_campaigns:
            if campaign.id == campaign_id:
                return campaign
        return None

    def with_triggers(self, triggers: tuple[AutoSellTrigger, ...]) -> None:
        """Swap in a new trigger tuple (triggers are never edited in place)."""
        self.auto_sell = replace(self.auto_sell, triggers=tuple(triggers))


# =============================================================================
# Market data
# =============================================================================

@dataclass(frozen=True)
class TokenMetadata:
    symbol: str
    name: str
    is_listed: bool = False
    creator: str = ""
    description: str = ""
    created_at: int | None = None
    website: str = ""
    twitter: str = ""
    telegram: str = ""


@dataclass(frozen=True)
class MarketInfo:
    """Current market for a token as reported by the nad.fun API."""

    venue: VenueType
    price: Decimal
    market_id: str
    total_supply: Decimal


@dataclass(frozen=True)
class MarketSnapshot:
    """One read of a token's market, shared by every trigger in a tick."""

    market: MarketInfo
    supply: Decimal   # whole tokens, read from the token contract

    @property
    def price(self) -> Decimal:
        return self.market.price

    @property
    def market_cap(self) -> Decimal:
        return self.market.price * self.supply


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class Holding:
    """A reconciled position. balance is None when the read failed."""

    index: int
    position: Position
    balance: int | None


@dataclass(frozen=True)
class TradeResult:
    side: str
    status: str
    token_address: str
    venue: VenueType | None = None
    amount_in: int = 0
    min_out: int = 0
    tx_hash: str | None = None
    approve_tx_hash: str | None = None
    remaining_balance: int | None = None
    position_closed: bool = False
