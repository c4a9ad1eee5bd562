"""
Telegram Notifier
=================
Pushes messages to a user's Telegram chat from outside a command
handler: automation results, trade outcomes of background trades.

Delivery is best-effort. A failed send is logged and dropped; it never
propagates into the trading code that asked for it.

The notifier is independent of the bot commands: it pushes TO users,
while the bot waits for commands FROM them.
"""

import telegram

from config.settings import Settings
from utils.logger import get_logger

logger = get_logger(__name__)


class TelegramNotifier:
    """
    Sends messages to a user's Telegram chat.

    Usage:
        notifier = TelegramNotifier(settings)
        await notifier.initialize()
        await notifier.notify(user_id, "DCA executed")
    """

    def __init__(self, settings: Settings, bot: telegram.Bot | None = None):
        self.settings = settings
        self.bot = bot
        self.enabled: bool = bot is not None

    async def initialize(self) -> None:
        """Set up the Telegram bot for sending messages."""
        if self.bot is not None:
            return
        if not self.settings.telegram_bot_token:
            logger.info("notifier_disabled", note="Missing TELEGRAM_BOT_TOKEN")
            return

        self.bot = telegram.Bot(token=self.settings.telegram_bot_token)
        self.enabled = True
        logger.info("telegram_notifier_initialized")

    async def notify(self, user_id: str, text: str) -> None:
        """Send a message to a user's chat. Silently fails on error."""
        if not self.enabled or not self.bot:
            logger.debug("notification_dropped", user=str(user_id))
            return

        try:
            await self.bot.send_message(chat_id=int(user_id), text=text)
        except Exception as e:
            logger.error("telegram_send_failed", user=str(user_id), error=str(e))
