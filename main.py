"""
NAD Trading Bot - Main Entry Point
==================================
This is where everything starts. Running this file:
1. Loads your configuration from .env
2. Validates that all required settings are present
3. Connects to the database and the chain RPC
4. Starts the Telegram bot and the automation scheduler (auto-sell + DCA)

Usage:
    python main.py                  # Normal startup
    python main.py --check          # Run startup checks and exit
    python main.py --json-logs      # Log JSON lines even on a terminal
"""

import asyncio
import argparse
import sys

from config.settings import settings
from database.db import Database
from database.wallet_store import WalletStore
from utils.chain_client import ChainClient
from utils.crypto import KeyCipher
from utils.logger import setup_logging, get_logger

logger = get_logger(__name__)


async def startup_checks(chain: ChainClient) -> bool:
    """
    Run checks before the bot starts trading.
    Returns True if everything looks good, False if there's a problem.
    """
    logger.info("running_startup_checks")
    all_good = True

    # Check 1: Validate settings
    problems = settings.validate()
    for problem in problems:
        logger.error("config_issue", issue=problem)
    if problems:
        all_good = False

    # Check 2: The RPC node answers and we know which chain it is
    if await chain.is_connected():
        try:
            chain_id = await chain.get_chain_id()
            logger.info("rpc_connected", chain_id=chain_id)
        except Exception as e:
            logger.error("rpc_chain_id_failed", error=str(e))
            all_good = False
    else:
        logger.error("rpc_unreachable", rpc=settings.rpc_url.split("?")[0])
        all_good = False

    return all_good


async def main() -> None:
    """Main async entry point."""

    # Parse command-line arguments
    parser = argparse.ArgumentParser(description="NAD Trading Bot")
    parser.add_argument("--check", action="store_true", help="Run startup checks and exit")
    parser.add_argument("--json-logs", action="store_true", help="Always log JSON lines")
    parser.add_argument("--log-dir", default="logs", help="Directory for the log file")
    args = parser.parse_args()

    # Set up logging
    setup_logging(log_level=settings.log_level, log_dir=args.log_dir, json_logs=args.json_logs or None)

    logger.info(
        "bot_starting",
        rpc=settings.rpc_url.split("?")[0],
        api=settings.nad_api_base_url,
        automation_interval=f"{settings.automation_interval_seconds}s",
    )

    chain = ChainClient(settings.rpc_url, chain_id=settings.chain_id)
    await chain.initialize()

    # Run startup checks
    checks_passed = await startup_checks(chain)

    if not checks_passed:
        logger.error("startup_checks_failed", note="Fix the issues above and restart")
        await chain.close()
        sys.exit(1)

    if args.check:
        logger.info("startup_checks_passed")
        await chain.close()
        return

    # Initialize core components
    db = Database(settings.db_path)
    await db.initialize()

    from telegram_bot.bot import TelegramBot
    from telegram_bot.notifier import TelegramNotifier
    from telegram_bot.sessions import SessionStore
    from trader.account_settings import AccountSettings
    from trader.automation import AutomationScheduler
    from trader.balance_oracle import BalanceOracle
    from trader.locks import UserLocks
    from trader.market_gateway import MarketGateway
    from trader.position_ledger import PositionLedger
    from trader.trade_executor import TradeExecutor

    gateway = MarketGateway(settings, chain)
    tg_bot = None

    try:
        await gateway.initialize()

        store = WalletStore(settings, db, KeyCipher(settings.encryption_key))
        locks = UserLocks()
        oracle = BalanceOracle(chain)
        ledger = PositionLedger(store, oracle, locks)
        executor = TradeExecutor(settings, db, store, gateway, oracle, chain, ledger, locks)
        account = AccountSettings(store, locks)
        sessions = SessionStore(settings.bot_password, ttl_seconds=settings.session_ttl_hours * 3600)

        # Telegram bot (commands from users) and notifier (pushes to users)
        tg_bot = TelegramBot(settings, db, store, gateway, oracle, ledger, executor, account, sessions)
        await tg_bot.initialize()

        notifier = TelegramNotifier(settings)
        await notifier.initialize()

        # Automation only runs for users with a live session
        scheduler = AutomationScheduler(
            settings, store, gateway, executor, ledger, locks, notifier, users=sessions.active_user_ids
        )

        logger.info("bot_ready", note="All systems running. Waiting for commands.")

        # The bot polls in the background once started; the scheduler loops forever
        try:
            await asyncio.gather(
                tg_bot.start(),
                scheduler.start(),
            )
        except asyncio.CancelledError:
            pass

    except KeyboardInterrupt:
        logger.info("bot_stopping", reason="keyboard_interrupt")
    except Exception as e:
        logger.error("bot_error", error=str(e), type=type(e).__name__)
        raise
    finally:
        # Clean shutdown, reverse order of startup
        logger.info("shutting_down")
        if tg_bot:
            await tg_bot.stop()
        await gateway.close()
        await chain.close()
        await db.close()
        logger.info("bot_stopped")


if __name__ == "__main__":
    # asyncio.run() starts the async event loop and runs our main function
    asyncio.run(main())
