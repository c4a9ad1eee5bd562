"""
Market Gateway
==============
Answers two questions about a token before we trade it:

1. WHERE does it trade? nad.fun tokens start on a bonding curve (CURVE)
   and graduate to a DEX pool (DEX). The nad.fun API tells us which.
2. HOW MUCH will we get? The venue's router quotes the output amount
   for a given input (getAmountOut).

Token metadata and market data come from the nad.fun REST API; quotes
and supply come from the chain. "Not found" is returned as None, while
a failed lookup raises: a missing market and a broken network are
different answers, and neither is a zero.
"""

import asyncio
from decimal import Decimal, InvalidOperation

import aiohttp

from config.settings import Settings
from trader.errors import (
    STAGE_QUOTE,
    MarketDataUnavailable,
    QuoteUnavailable,
    TokenNotTradeable,
)
from trader.models import Direction, MarketInfo, MarketSnapshot, TokenMetadata, VenueType
from utils.chain_client import RPC_ERRORS, ChainClient
from utils.logger import get_logger

logger = get_logger(__name__)


def min_output(amount_out: int, slippage: int) -> int:
    """
    Lowest acceptable output for a quote, in the same integer unit.
    e.g. quote 1000, slippage 10% -> 900
    """
    return amount_out * (100 - slippage) // 100


class MarketGateway:
    """
    Usage:
        gateway = MarketGateway(settings, chain)
        await gateway.initialize()
        market = await gateway.resolve_market(token)
        out = await gateway.quote(token, market.venue, amount_wei, Direction.TO_TOKEN)
    """

    def __init__(self, settings: Settings, chain: ChainClient):
        self.settings = settings
        self.chain = chain
        self.base_url = settings.nad_api_base_url.rstrip("/")
        self.session: aiohttp.ClientSession | None = None

    async def initialize(self) -> None:
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.settings.api_timeout_seconds)
        )
        logger.info("market_gateway_initialized", api=self.base_url)

    async def close(self) -> None:
        if self.session:
            await self.session.close()

    def router_for(self, venue: VenueType) -> str:
        return self.settings.router_address(venue.value)

    # =========================================================================
    # nad.fun API
    # =========================================================================

    async def _get_json(self, path: str) -> dict | None:
        """
        GET an API path. Returns None for 4xx (unknown token); raises
        MarketDataUnavailable for network errors and 5xx.
        """
        url = f"{self.base_url}/{path}"
        try:
            async with self.session.get(url) as response:
                if 400 <= response.status < 500:
                    return None
                if response.status != 200:
                    error = await response.text()
                    logger.warning("market_api_error", url=url, status=response.status, error=error[:200])
                    raise MarketDataUnavailable(f"Market data API returned {response.status}")
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("market_api_unreachable", url=url, error=str(e))
            raise MarketDataUnavailable("Market data API unreachable") from e

    async def get_metadata(self, token: str) -> TokenMetadata | None:
        data = await self._get_json(f"token/metadata/{token}")
        meta = (data or {}).get("token_metadata")
        if not meta:
            return None
        return TokenMetadata(
            symbol=meta.get("symbol") or token[:8],
            name=meta.get("name") or "",
            is_listed=bool(meta.get("is_listing")),
            creator=meta.get("creator") or "",
            description=meta.get("description") or "",
            created_at=meta.get("created_at"),
            website=meta.get("website") or "",
            twitter=meta.get("twitter") or "",
            telegram=meta.get("telegram") or "",
        )

    async def get_market(self, token: str) -> MarketInfo | None:
        data = await self._get_json(f"trade/market/{token}")
        if not data:
            return None
        try:
            venue = VenueType(data.get("market_type"))
        except ValueError:
            logger.warning("unsupported_market_type", token=token, market_type=data.get("market_type"))
            return None
        try:
            return MarketInfo(
                venue=venue,
                price=Decimal(str(data.get("price", "0"))),
                market_id=str(data.get("market_id") or ""),
                total_supply=Decimal(str(data.get("total_supply", "0"))),
            )
        except InvalidOperation:
            logger.warning("malformed_market_data", token=token, data=str(data)[:200])
            return None

    async def resolve_market(self, token: str) -> MarketInfo:
        """Venue + price for a token we are about to trade."""
        market = await self.get_market(token)
        if market is None:
            raise TokenNotTradeable("Token not found or not tradeable", stage=STAGE_QUOTE, token=token)
        return market

    # =========================================================================
    # Quotes
    # =========================================================================

    async def quote(self, token: str, venue: VenueType, amount_in: int, direction: Direction) -> int:
        """
        Expected output for amount_in (smallest units) on the given venue.
        Raises QuoteUnavailable on any failure, including a zero quote.
        """
        router = self.router_for(venue)
        try:
            amount_out = await self.chain.get_amount_out(
                router, token, amount_in, direction == Direction.TO_TOKEN
            )
        except RPC_ERRORS as e:
            logger.warning("quote_failed", token=token, venue=venue.value, error=str(e))
            raise QuoteUnavailable(
                f"{venue.value} quote failed", stage=STAGE_QUOTE, token=token
            ) from e

        if amount_out <= 0:
            raise QuoteUnavailable(f"{venue.value} quoted zero output", stage=STAGE_QUOTE, token=token)

        logger.info(
            "quote_received",
            token=token,
            venue=venue.value,
            direction=direction.value,
            amount_in=amount_in,
            amount_out=amount_out,
        )
        return amount_out

    async def snapshot(self, token: str) -> MarketSnapshot:
        """Market + on-chain supply, read once per position per automation tick."""
        market = await self.resolve_market(token)
        try:
            raw_supply = await self.chain.get_total_supply(token)
            decimals = await self.chain.get_decimals(token)
        except RPC_ERRORS as e:
            raise MarketDataUnavailable("Could not read token supply", token=token) from e
        supply = Decimal(raw_supply) / (Decimal(10) ** decimals)
        return MarketSnapshot(market=market, supply=supply)
