"""
Telegram Bot
============
The chat interface to the trading bot. Every user gets their own wallet.

Commands:
    /start      - Welcome message
    /auth       - Unlock the bot with the access password
    /logout     - End your session (stops your automation)
    /wallet     - Show (or create) your wallet
    /export     - Reveal your private key
    /balance    - MON and token balances (alias /refresh)
    /deposit    - Your deposit address
    /buy        - Buy a token with MON
    /sell       - Sell a percentage of a position
    /positions  - Open positions with live balance and PnL
    /trades     - Recent transactions and their status
    /price      - Current price of a token
    /tokeninfo  - Token metadata and market data
    /debug      - Check that a token can be quoted on each venue
    /autobuy    - Toggle auto-buy for pasted token addresses
    /slippage   - Set slippage tolerance (1-50%)
    /setdefault - Set the default (auto-)buy amount
    /autosell   - Manage auto-sell rules
    /dca        - Manage DCA campaigns
    /donate     - Support the developer
    /help       - Show all commands

Everything except /start, /auth, /help and /donate needs an active
session. Buys and sells run as background tasks: the user gets a
"pending" message with the tx hash as soon as it is broadcast and a
final message when it confirms or fails.
"""

from decimal import Decimal

from telegram import Update
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)
from web3 import Web3

from config.settings import Settings
from database.db import Database
from database.wallet_store import WalletStore
from telegram_bot.sessions import SessionStore
from trader.account_settings import AccountSettings
from trader.automation import price_change_pct
from trader.balance_oracle import BalanceOracle
from trader.errors import TradingError
from trader.market_gateway import MarketGateway
from trader.models import Direction, TradeResult, VenueType
from trader.position_ledger import PositionLedger
from trader.trade_executor import TradeExecutor
from trader.validation import looks_like_address, parse_address, parse_positive_int
from utils.logger import get_logger

logger = get_logger(__name__)

HELP_TEXT = (
    "Commands\n"
    "========\n\n"
    "Account\n"
    "/auth <password> - Unlock the bot\n"
    "/logout - End your session\n"
    "/wallet - Show your wallet\n"
    "/balance - MON and token balances\n"
    "/deposit - Your deposit address\n"
    "/export - Export private key (DELETE after saving!)\n\n"
    "Trading\n"
    "/buy <token> <mon_amount> - Buy tokens\n"
    "/sell <position#|token> <percent> - Sell part of a position\n"
    "/positions - Open positions\n"
    "/trades - Your last 10 transactions\n\n"
    "Settings\n"
    "/autobuy - Toggle auto-buy on/off\n"
    "/slippage <1-50> - Set slippage tolerance\n"
    "/setdefault <amount> - Set default buy amount\n\n"
    "Automation\n"
    "/autosell - Show auto-sell rules\n"
    "/autosell on|off - Enable or disable auto-sell\n"
    "/autosell add <marketcap|profit|loss|time> <value> <percent>\n"
    "    marketcap in MON, profit/loss in %, time in minutes\n"
    "/autosell remove <n> | /autosell clear\n"
    "/dca - List DCA campaigns\n"
    "/dca add <token> <mon_amount> <interval_min> <buys>\n"
    "/dca pause|resume|delete <id>\n\n"
    "Information\n"
    "/price <token> - Current price\n"
    "/tokeninfo <token> - Token details\n"
    "/debug <token> - Check venue quotes\n"
    "/donate - Support the developer\n\n"
    "Auto-buy: paste a token address and it is bought with your default amount when auto-buy is on."
)

DEBUG_QUOTE_WEI = Web3.to_wei(Decimal("0.001"), "ether")


def _short(address: str) -> str:
    return address[:6] + "..." + address[-4:] if len(address) > 12 else address


def _mon(wei: int) -> str:
    return f"{Web3.from_wei(wei, 'ether'):.4f}"


def _price(value: Decimal) -> str:
    return f"{value:.4e}"


class TelegramBot:
    """
    Telegram bot: one wallet per user, password-gated sessions.

    Usage:
        bot = TelegramBot(settings, db, store, gateway, oracle, ledger, executor, account, sessions)
        await bot.initialize()
        await bot.start()  # Starts the polling loop
    """

    def __init__(
        self,
        settings: Settings,
        db: Database,
        store: WalletStore,
        gateway: MarketGateway,
        oracle: BalanceOracle,
        ledger: PositionLedger,
        executor: TradeExecutor,
        account: AccountSettings,
        sessions: SessionStore,
    ):
        self.settings = settings
        self.db = db
        self.store = store
        self.gateway = gateway
        self.oracle = oracle
        self.ledger = ledger
        self.executor = executor
        self.account = account
        self.sessions = sessions
        self.app: Application | None = None

    async def initialize(self) -> None:
        """Build the Telegram bot application and register commands."""
        if not self.settings.telegram_bot_token:
            logger.warning("telegram_no_token", note="TELEGRAM_BOT_TOKEN not set, bot disabled")
            return

        self.app = (
            Application.builder()
            .token(self.settings.telegram_bot_token)
            .build()
        )

        commands = {
            "start": self._cmd_start,
            "auth": self._cmd_auth,
            "logout": self._cmd_logout,
            "help": self._cmd_help,
            "wallet": self._cmd_wallet,
            "export": self._cmd_export,
            "balance": self._cmd_balance,
            "refresh": self._cmd_balance,
            "deposit": self._cmd_deposit,
            "buy": self._cmd_buy,
            "sell": self._cmd_sell,
            "positions": self._cmd_positions,
            "trades": self._cmd_trades,
            "price": self._cmd_price,
            "tokeninfo": self._cmd_tokeninfo,
            "debug": self._cmd_debug,
            "autobuy": self._cmd_autobuy,
            "slippage": self._cmd_slippage,
            "setdefault": self._cmd_setdefault,
            "autosell": self._cmd_autosell,
            "dca": self._cmd_dca,
            "donate": self._cmd_donate,
        }
        for name, handler in commands.items():
            self.app.add_handler(CommandHandler(name, handler))

        self.app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self._on_text))
        self.app.add_error_handler(self._on_error)

        logger.info("telegram_bot_initialized", commands=len(commands))

    async def start(self) -> None:
        """Start the bot polling loop."""
        if not self.app:
            logger.warning("telegram_not_initialized")
            return

        logger.info("telegram_bot_starting")
        await self.app.initialize()
        await self.app.start()
        await self.app.updater.start_polling(drop_pending_updates=True)

    async def stop(self) -> None:
        """Gracefully stop the bot."""
        if self.app and self.app.updater.running:
            await self.app.updater.stop()
            await self.app.stop()
            await self.app.shutdown()
            logger.info("telegram_bot_stopped")

    async def _is_authorized(self, update: Update) -> bool:
        """Check the user has a live session, telling them if not."""
        if self.sessions.is_active(self._user_id(update)):
            return True
        await update.message.reply_text("Access denied. Authenticate first with /auth <password>")
        return False

    @staticmethod
    def _user_id(update: Update) -> str:
        return str(update.effective_user.id)

    async def _on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.error("telegram_handler_error", error=str(context.error))

    # =========================================================================
    # Session Commands
    # =========================================================================

    async def _cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Welcome message when user first starts the bot."""
        await update.message.reply_text(
            "NAD Trading Bot\n"
            "===============\n\n"
            "This bot is password protected.\n"
            "Use /auth <password> to unlock it, then /help for the command list."
        )

    async def _cmd_auth(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not context.args:
            await update.message.reply_text("Usage: /auth <password>")
            return

        if self.sessions.authenticate(self._user_id(update), " ".join(context.args)):
            hours = self.settings.session_ttl_hours
            await update.message.reply_text(
                f"Authenticated. Session valid for {hours:g}h.\n\nUse /help to see available commands."
            )
        else:
            await update.message.reply_text("Invalid password. Access denied.")

    async def _cmd_logout(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        self.sessions.close(self._user_id(update))
        await update.message.reply_text("Logged out. Auto-sell and DCA pause until you /auth again.")

    async def _cmd_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Show all available commands."""
        await update.message.reply_text(HELP_TEXT)

    async def _cmd_donate(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not self.settings.donate_address:
            await update.message.reply_text("Donate address not configured. Please contact the developer.")
            return
        await update.message.reply_text(
            "Support NAD Bot Development\n\n"
            f"MON Address:\n{self.settings.donate_address}\n\n"
            "Thank you for your support!"
        )

    # =========================================================================
    # Wallet Commands
    # =========================================================================

    async def _cmd_wallet(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Show the user's wallet, creating one on first use."""
        if not await self._is_authorized(update):
            return

        user_id = self._user_id(update)
        record = await self.store.get(user_id)
        created = record is None
        if created:
            record = await self.store.create(user_id)

        header = "New wallet created" if created else "Your Wallet"
        await update.message.reply_text(
            f"{header}\n{'=' * len(header)}\n\n"
            f"Address: {record.address}\n"
            f"Auto-buy: {'ON' if record.auto_buy else 'OFF'}\n"
            f"Slippage: {record.slippage}%\n"
            f"Default buy: {record.default_buy_amount} MON\n\n"
            "Use /export to get your private key if needed."
        )

    async def _cmd_export(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._is_authorized(update):
            return

        user_id = self._user_id(update)
        try:
            record = await self.store.require(user_id)
            key = self.store.export_key(record)
        except TradingError as e:
            await update.message.reply_text(e.describe())
            return

        logger.warning("private_key_exported", user=user_id)
        await update.message.reply_text(
            f"Private Key: {key}\n\n"
            "SECURITY WARNING:\n"
            "- Save this key securely\n"
            "- DELETE this message immediately\n"
            "- Never share it with anyone\n"
            "- It gives full access to your funds"
        )

    async def _cmd_deposit(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._is_authorized(update):
            return

        try:
            record = await self.store.require(self._user_id(update))
        except TradingError as e:
            await update.message.reply_text(e.describe())
            return

        await update.message.reply_text(
            f"Deposit Address:\n\n{record.address}\n\n"
            "Send MON to this address to fund your trading wallet.\n"
            "Only send MON on Monad Testnet!"
        )

    async def _cmd_balance(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """MON balance plus every open position's live token balance."""
        if not await self._is_authorized(update):
            return

        user_id = self._user_id(update)
        try:
            record = await self.store.require(user_id)
            native = await self.oracle.native_balance(record.address)
            holdings = await self.ledger.list_positions(user_id)
        except TradingError as e:
            await update.message.reply_text(f"Failed to fetch balance: {e.describe()}")
            return

        lines = ["Balance Overview\n================\n", f"MON: {_mon(native)}"]

        if holdings:
            lines.append("\nToken Positions:")
            for holding in holdings:
                token = holding.position.token_address
                label = await self._symbol(token)
                if holding.balance is None:
                    lines.append(f"  {label}: balance unavailable")
                    continue
                amount = await self._token_units(token, holding.balance)
                lines.append(f"  {label}: {amount}")
        else:
            lines.append("\nNo token positions yet")

        await update.message.reply_text("\n".join(lines))

    # =========================================================================
    # Trading Commands
    # =========================================================================

    async def _cmd_buy(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._is_authorized(update):
            return

        if len(context.args) < 2:
            await update.message.reply_text(
                "Usage: /buy <token_address> <mon_amount>\n\nExample: /buy 0x123...abc 0.1"
            )
            return

        token, amount = context.args[0], context.args[1]
        await update.message.reply_text(f"Processing buy: {amount} MON -> {_short(token)}")

        user_id = self._user_id(update)
        context.application.create_task(
            self._run_trade(
                update,
                f"Buy {amount} MON of {_short(token)}",
                self.executor.buy(user_id, token, amount, on_submitted=self._pending_reporter(update)),
            )
        )

    async def _cmd_sell(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._is_authorized(update):
            return

        if len(context.args) < 2:
            await update.message.reply_text(
                "Usage: /sell <position#|token_address> <percent>\n\n"
                "Example: /sell 1 50  (sells half of position #1)"
            )
            return

        target, percentage = context.args[0], context.args[1]
        user_id = self._user_id(update)
        reporter = self._pending_reporter(update)

        if looks_like_address(target):
            trade = self.executor.sell_token(user_id, target, percentage, on_submitted=reporter)
            label = f"Sell {percentage.rstrip('%')}% of {_short(target)}"
        else:
            try:
                index = parse_positive_int(target, "Position number") - 1
            except TradingError as e:
                await update.message.reply_text(e.describe())
                return
            trade = self.executor.sell(user_id, index, percentage, on_submitted=reporter)
            label = f"Sell {percentage.rstrip('%')}% of position #{index + 1}"

        await update.message.reply_text(f"Processing: {label}")
        context.application.create_task(self._run_trade(update, label, trade))

    def _pending_reporter(self, update: Update):
        async def report(tx_hash: str) -> None:
            await update.message.reply_text(f"Transaction pending\nTx: {tx_hash}")
        return report

    async def _run_trade(self, update: Update, label: str, trade) -> None:
        """Await a buy/sell in the background and report the outcome."""
        try:
            result = await trade
        except TradingError as e:
            await update.message.reply_text(f"{label} FAILED\n{e.describe()}")
            return
        except Exception as e:
            logger.error("trade_task_error", label=label, error=str(e))
            await update.message.reply_text(f"{label} FAILED\nUnexpected error: {str(e)[:100]}")
            return

        await update.message.reply_text(self._result_message(label, result))

    @staticmethod
    def _result_message(label: str, result: TradeResult) -> str:
        if result.status == "closed":
            return f"{label}: balance is already zero, position closed."

        lines = [f"{label} CONFIRMED", f"Venue: {result.venue.value}"]
        if result.side == "buy":
            lines.append(f"Spent: {_mon(result.amount_in)} MON")
        else:
            lines.append(f"Sold: {result.amount_in} units")
            lines.append("Position closed" if result.position_closed else "Position still open")
        lines.append(f"Tx: {result.tx_hash}")
        return "\n".join(lines)

    async def _cmd_positions(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Show all open positions with live balance and PnL."""
        if not await self._is_authorized(update):
            return

        try:
            holdings = await self.ledger.list_positions(self._user_id(update))
        except TradingError as e:
            await update.message.reply_text(e.describe())
            return

        if not holdings:
            await update.message.reply_text("No open positions.\n\nStart trading with /buy")
            return

        lines = ["Open Positions\n==============\n"]

        for holding in holdings:
            position = holding.position
            token = position.token_address
            label = await self._symbol(token)

            balance = "unavailable"
            if holding.balance is not None:
                balance = await self._token_units(token, holding.balance)

            try:
                market = await self.gateway.get_market(token)
            except TradingError:
                market = None

            if market is not None:
                change = price_change_pct(position, market.price)
                pnl = f"{change:+.1f}%" if change is not None else "-"
                price_line = f"  Price: {_price(market.price)} MON ({market.venue.value})\n  PnL: {pnl}"
            else:
                price_line = "  Price: N/A"

            lines.append(
                f"#{holding.index + 1} {label} ({_short(token)})\n"
                f"  Balance: {balance}\n"
                f"  Entry: {_price(Decimal(position.buy_price))} MON\n"
                f"{price_line}\n"
            )

        await update.message.reply_text("\n".join(lines))

    async def _cmd_trades(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Last 10 submitted transactions, newest first."""
        if not await self._is_authorized(update):
            return

        trades = await self.db.get_recent_trades(self._user_id(update), limit=10)
        if not trades:
            await update.message.reply_text("No trades yet.")
            return

        lines = ["Recent Trades\n=============\n"]
        for t in trades:
            side = t["side"].upper()
            if t["side"] == "buy":
                size = f"{_mon(int(t['amount_in']))} MON"
            else:
                size = f"{t['percentage']}%"
            lines.append(
                f"{side} {_short(t['token_address'])} {size} [{t['status']}]\n"
                f"  Tx: {t['tx_hash']}"
            )
            if t["error_message"]:
                lines.append(f"  Error: {t['error_message'][:80]}")

        await update.message.reply_text("\n".join(lines))

    # =========================================================================
    # Information Commands
    # =========================================================================

    async def _token_arg(self, update: Update, context: ContextTypes.DEFAULT_TYPE, command: str) -> str | None:
        try:
            return parse_address(context.args[0] if context.args else "")
        except TradingError:
            await update.message.reply_text(
                f"Usage: /{command} <token_address>\n\nExample: /{command} 0x123...abc"
            )
            return None

    async def _cmd_price(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._is_authorized(update):
            return
        token = await self._token_arg(update, context, "price")
        if token is None:
            return

        try:
            snapshot = await self.gateway.snapshot(token)
            metadata = await self.gateway.get_metadata(token)
        except TradingError as e:
            await update.message.reply_text(f"Could not fetch price info: {e.describe()}")
            return

        symbol = metadata.symbol if metadata else _short(token)
        await update.message.reply_text(
            f"{symbol} Price\n{'=' * (len(symbol) + 6)}\n\n"
            f"Current Price: {_price(snapshot.price)} MON\n"
            f"Market Cap: {snapshot.market_cap:,.2f} MON\n"
            f"Market Type: {snapshot.market.venue.value}\n"
            f"Market: {_short(snapshot.market.market_id)}\n\n"
            "Use /buy or /sell to trade this token."
        )

    async def _cmd_tokeninfo(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._is_authorized(update):
            return
        token = await self._token_arg(update, context, "tokeninfo")
        if token is None:
            return

        try:
            metadata = await self.gateway.get_metadata(token)
            market = await self.gateway.get_market(token)
        except TradingError as e:
            await update.message.reply_text(f"Failed to fetch token info: {e.describe()}")
            return

        if metadata is None:
            await update.message.reply_text("Token not found or invalid address")
            return

        await update.message.reply_text(self._token_info_message(token, metadata, market))

    @staticmethod
    def _token_info_message(token: str, metadata, market) -> str:
        lines = [
            "Token Information",
            "=================\n",
            f"Name: {metadata.name}",
            f"Symbol: {metadata.symbol}",
            f"Address: {token}",
            f"Creator: {_short(metadata.creator) or '-'}",
            f"Description: {metadata.description or 'No description'}",
        ]
        if market is not None:
            lines += [
                "",
                "Market Data:",
                f"Price: {_price(market.price)} MON",
                f"Market Type: {market.venue.value}",
                f"Market ID: {_short(market.market_id)}",
                f"Total Supply: {market.total_supply:.2e}",
            ]
        lines.append(f"Listed: {'Yes' if metadata.is_listed else 'No'}")
        if metadata.website:
            lines.append(f"Website: {metadata.website}")
        if metadata.twitter:
            lines.append(f"Twitter: {metadata.twitter}")
        if metadata.telegram:
            lines.append(f"Telegram: {metadata.telegram}")
        return "\n".join(lines)

    async def _cmd_debug(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Quote 0.001 MON on both venues to see where a token can trade."""
        if not await self._is_authorized(update):
            return
        token = await self._token_arg(update, context, "debug")
        if token is None:
            return

        lines = [f"Debug {_short(token)}\n"]
        try:
            market = await self.gateway.get_market(token)
            lines.append(f"Market type: {market.venue.value if market else 'none'}")
        except TradingError as e:
            lines.append(f"Market data: {e.describe()}")

        for venue in VenueType:
            try:
                out = await self.gateway.quote(token, venue, DEBUG_QUOTE_WEI, Direction.TO_TOKEN)
                lines.append(f"{venue.value} quote: {out} units for 0.001 MON")
            except TradingError as e:
                lines.append(f"{venue.value} quote failed: {e.message}")

        await update.message.reply_text("\n".join(lines))

    # =========================================================================
    # Settings Commands
    # =========================================================================

    async def _cmd_autobuy(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._is_authorized(update):
            return
        try:
            enabled = await self.account.toggle_auto_buy(self._user_id(update))
        except TradingError as e:
            await update.message.reply_text(e.describe())
            return
        await update.message.reply_text(
            f"Auto-buy is now: {'ON' if enabled else 'OFF'}\n\n"
            "When ON, pasting a token address buys it with your default amount."
        )

    async def _cmd_slippage(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._is_authorized(update):
            return
        if not context.args:
            await update.message.reply_text("Usage: /slippage <1-50>\n\nExample: /slippage 15")
            return
        try:
            slippage = await self.account.set_slippage(self._user_id(update), context.args[0])
        except TradingError as e:
            await update.message.reply_text(f"{e.message}\n\nExample: /slippage 15")
            return
        await update.message.reply_text(f"Slippage set to {slippage}%")

    async def _cmd_setdefault(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._is_authorized(update):
            return
        if not context.args:
            await update.message.reply_text("Usage: /setdefault <mon_amount>\n\nExample: /setdefault 0.5")
            return
        try:
            amount = await self.account.set_default_buy_amount(self._user_id(update), context.args[0])
        except TradingError as e:
            await update.message.reply_text(f"{e.message}\n\nExample: /setdefault 0.5")
            return
        await update.message.reply_text(f"Default buy amount set to {amount} MON")

    async def _cmd_autosell(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._is_authorized(update):
            return

        user_id = self._user_id(update)
        args = context.args or []
        action = args[0].lower() if args else ""

        try:
            if action in ("on", "off"):
                await self.account.set_auto_sell_enabled(user_id, action == "on")
                msg = f"Auto-sell is now {action.upper()}"
            elif action == "add":
                if len(args) < 4:
                    msg = "Usage: /autosell add <marketcap|profit|loss|time> <value> <percent>"
                else:
                    trigger = await self.account.add_trigger(user_id, args[1], args[2], args[3])
                    msg = f"Rule added: {trigger.describe()}"
            elif action == "remove":
                if len(args) < 2:
                    msg = "Usage: /autosell remove <n>"
                else:
                    trigger = await self.account.remove_trigger(user_id, args[1])
                    msg = f"Rule removed: {trigger.describe()}"
            elif action == "clear":
                await self.account.clear_triggers(user_id)
                msg = "All auto-sell rules removed"
            else:
                record = await self.store.require(user_id)
                msg = self._autosell_status(record)
        except TradingError as e:
            msg = e.describe()

        await update.message.reply_text(msg)

    @staticmethod
    def _autosell_status(record) -> str:
        config = record.auto_sell
        lines = [
            "Auto-Sell\n=========\n",
            f"Status: {'ON' if config.enabled else 'OFF'}",
        ]
        if config.triggers:
            lines.append("\nRules (first match fires, each fires once):")
            for i, trigger in enumerate(config.triggers, start=1):
                lines.append(f"{i}. {trigger.describe()}")
        else:
            lines.append("\nNo rules. Add one with /autosell add ...")
        return "\n".join(lines)

    async def _cmd_dca(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not await self._is_authorized(update):
            return

        user_id = self._user_id(update)
        args = context.args or []
        action = args[0].lower() if args else ""

        try:
            if action == "add":
                if len(args) < 5:
                    msg = "Usage: /dca add <token> <mon_amount> <interval_min> <buys>"
                else:
                    campaign = await self.account.create_campaign(user_id, args[1], args[2], args[3], args[4])
                    msg = (
                        f"DCA campaign {campaign.id} created\n"
                        f"{campaign.amount_per_buy} MON of {_short(campaign.token_address)} "
                        f"every {campaign.interval_minutes} min, {campaign.max_executions} buys"
                    )
            elif action in ("pause", "resume", "delete"):
                if len(args) < 2:
                    msg = f"Usage: /dca {action} <id>"
                else:
                    operation = {
                        "pause": self.account.pause_campaign,
                        "resume": self.account.resume_campaign,
                        "delete": self.account.delete_campaign,
                    }[action]
                    await operation(user_id, args[1])
                    msg = f"DCA campaign {args[1]}: {action}d"
            else:
                record = await self.store.require(user_id)
                msg = self._dca_status(record)
        except TradingError as e:
            msg = e.describe()

        await update.message.reply_text(msg)

    @staticmethod
    def _dca_status(record) -> str:
        if not record.dca_campaigns:
            return "No DCA campaigns.\n\nCreate one with /dca add <token> <mon_amount> <interval_min> <buys>"

        lines = ["DCA Campaigns\n=============\n"]
        for c in record.dca_campaigns:
            state = "done" if c.completed else ("active" if c.active else "paused")
            lines.append(
                f"{c.id} [{state}] {_short(c.token_address)}\n"
                f"  {c.amount_per_buy} MON every {c.interval_minutes} min | {c.executed_count}/{c.max_executions} buys\n"
            )
        return "\n".join(lines)

    # =========================================================================
    # Pasted token addresses
    # =========================================================================

    async def _on_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """A pasted token address shows token info, or auto-buys when enabled."""
        text = (update.message.text or "").strip()
        if not looks_like_address(text):
            return
        if not await self._is_authorized(update):
            return

        user_id = self._user_id(update)
        record = await self.store.get(user_id)
        if record is None:
            return

        try:
            metadata = await self.gateway.get_metadata(text)
            market = await self.gateway.get_market(text)
        except TradingError as e:
            await update.message.reply_text(e.describe())
            return

        if metadata is None:
            await update.message.reply_text(f"Token not found: {_short(text)}")
            return

        if not record.auto_buy:
            venue = market.venue.value if market else "Unknown"
            price = _price(market.price) if market else "N/A"
            await update.message.reply_text(
                f"Token Detected: {metadata.symbol}\n\n"
                f"Name: {metadata.name}\n"
                f"Address: {text}\n"
                f"Market: {venue}\n"
                f"Price: {price} MON\n\n"
                "Auto-buy is OFF. Use /autobuy to enable it,\n"
                f"or /buy {text} <amount> to buy manually."
            )
            return

        if market is None:
            await update.message.reply_text(f"Token {metadata.symbol} is not tradeable yet")
            return

        label = f"Auto-buy {record.default_buy_amount} MON of {metadata.symbol}"
        await update.message.reply_text(
            f"Auto-buy triggered\n"
            f"Token: {metadata.symbol}\n"
            f"Amount: {record.default_buy_amount} MON\n"
            f"Slippage: {record.slippage}%\n"
            f"Market: {market.venue.value}"
        )
        context.application.create_task(
            self._run_trade(
                update,
                label,
                self.executor.buy_default(user_id, text, on_submitted=self._pending_reporter(update)),
            )
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _symbol(self, token: str) -> str:
        try:
            metadata = await self.gateway.get_metadata(token)
        except TradingError:
            metadata = None
        return metadata.symbol if metadata else _short(token)

    async def _token_units(self, token: str, raw: int) -> str:
        try:
            return f"{await self.oracle.to_units(token, raw):.4f}"
        except TradingError:
            return f"{raw} (raw)"
