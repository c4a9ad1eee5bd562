"""
Configuration Manager
=====================
Single source of truth for every bot setting.

Secrets (bot token, RPC endpoint, encryption key, access password) come
from a .env file in the project root; every tunable trading parameter has
a default so the bot starts with sensible values on a fresh install.

The Settings object is created once (module-level ``settings``) and
handed to each component that needs it.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from dotenv import load_dotenv


# Load environment variables from the .env file in the project root
load_dotenv(Path(__file__).parent.parent / ".env")


def _get_env(key: str, default: str = "") -> str:
    """Get an environment variable, returning default if not set."""
    return os.getenv(key, default)


def _get_env_float(key: str, default: float) -> float:
    """Get an environment variable as a float number."""
    val = os.getenv(key)
    return float(val) if val else default


def _get_env_int(key: str, default: int) -> int:
    """Get an environment variable as a whole number."""
    val = os.getenv(key)
    return int(val) if val else default


@dataclass
class Settings:
    """
    All bot configuration in one place.

    Sections:
    - Secrets & Endpoints: Telegram, RPC, nad.fun API, encryption key
    - Contracts: venue router addresses
    - Trading: per-user defaults and transaction limits
    - Automation: scheduler cadence
    - System: database path, logging level, sessions
    """

    # =========================================================================
    # Secrets & Endpoints
    # =========================================================================

    # Telegram bot token from @BotFather
    telegram_bot_token: str = field(default_factory=lambda: _get_env("TELEGRAM_BOT_TOKEN"))

    # Password users send with /auth before any command works
    bot_password: str = field(default_factory=lambda: _get_env("BOT_PASSWORD"))

    # JSON-RPC endpoint of the chain (Monad testnet)
    rpc_url: str = field(default_factory=lambda: _get_env("RPC_URL", "https://testnet-rpc.monad.xyz"))

    # Optional chain id; read from the node when 0
    chain_id: int = field(default_factory=lambda: _get_env_int("CHAIN_ID", 0))

    # 32-byte AES key, hex encoded. Protects every stored private key.
    # NEVER log or expose this.
    encryption_key: str = field(default_factory=lambda: _get_env("ENCRYPTION_KEY"))

    # nad.fun REST API: token metadata and market data
    nad_api_base_url: str = field(default_factory=lambda: _get_env(
        "NAD_API_BASE_URL", "https://testnet-v3-api.nad.fun"
    ))

    # Where /donate points
    donate_address: str = field(default_factory=lambda: _get_env("DONATE_ADDRESS"))

    # =========================================================================
    # Contracts
    # =========================================================================

    bonding_curve_router: str = field(default_factory=lambda: _get_env(
        "BONDING_CURVE_ROUTER", "0x4F5A3518F082275edf59026f72B66AC2838c0414"
    ))
    dex_router: str = field(default_factory=lambda: _get_env(
        "DEX_ROUTER", "0x4FBDC27FAE5f99E7B09590bEc8Bf20481FCf9551"
    ))

    # =========================================================================
    # Trading Parameters
    # =========================================================================

    # Slippage (whole percent) given to newly created wallets
    default_slippage: int = field(default_factory=lambda: _get_env_int("DEFAULT_SLIPPAGE", 10))

    # Native amount (MON) used for auto-buy on new wallets
    default_buy_amount: str = field(default_factory=lambda: _get_env("DEFAULT_BUY_AMOUNT", "0.1"))

    # Venue contracts reject a swap mined after now + this many seconds
    tx_deadline_seconds: int = field(default_factory=lambda: _get_env_int("TX_DEADLINE_SECONDS", 1800))

    # How long we wait for a receipt before reporting ConfirmationTimeout
    confirmation_timeout_seconds: float = field(
        default_factory=lambda: _get_env_float("CONFIRMATION_TIMEOUT_SECONDS", 120)
    )

    # =========================================================================
    # Automation
    # =========================================================================

    # Auto-sell + DCA evaluation cadence
    automation_interval_seconds: float = field(
        default_factory=lambda: _get_env_float("AUTOMATION_INTERVAL_SECONDS", 60)
    )

    # Pause between positions during auto-sell evaluation (API rate limits)
    automation_position_delay: float = 0.3

    # =========================================================================
    # System
    # =========================================================================

    db_path: str = field(
        default_factory=lambda: _get_env(
            "DB_PATH", str(Path(__file__).parent.parent / "data" / "wallets.db")
        )
    )

    # Logging level: DEBUG, INFO, WARNING, ERROR
    log_level: str = field(default_factory=lambda: _get_env("LOG_LEVEL", "INFO"))

    # An /auth session expires after this many hours
    session_ttl_hours: float = field(default_factory=lambda: _get_env_float("SESSION_TTL_HOURS", 24))

    # HTTP timeout for nad.fun API calls (seconds)
    api_timeout_seconds: float = 10

    def router_address(self, venue: str) -> str:
        """Router contract for a venue type ("CURVE" or "DEX")."""
        return self.bonding_curve_router if venue == "CURVE" else self.dex_router

    def validate(self) -> list[str]:
        """
        Check that all required settings are present.
        Returns a list of problems found (empty list = all good).
        """
        problems = []

        if not self.telegram_bot_token:
            problems.append("TELEGRAM_BOT_TOKEN is not set: needed for the chat interface")
        if not self.bot_password:
            problems.append("BOT_PASSWORD is not set: nobody can authenticate")
        if not self.rpc_url:
            problems.append("RPC_URL is not set: needed for balances and trading")

        try:
            if len(bytes.fromhex(self.encryption_key)) != 32:
                problems.append("ENCRYPTION_KEY must be 32 bytes (64 hex characters)")
        except ValueError:
            problems.append("ENCRYPTION_KEY is missing or not valid hex")

        if not 1 <= self.default_slippage <= 50:
            problems.append("DEFAULT_SLIPPAGE must be between 1 and 50")
        if self.tx_deadline_seconds <= 0:
            problems.append("TX_DEADLINE_SECONDS must be positive")
        if self.automation_interval_seconds <= 0:
            problems.append("AUTOMATION_INTERVAL_SECONDS must be positive")

        return problems


# Global settings instance
# Usage: from config.settings import settings
settings = Settings()
