"""
Wallet Store
============
The durable home of every user's WalletRecord.

Contract:
- get(user_id)           -> WalletRecord | None
- save(user_id, record)  -> full upsert (config, positions, triggers, campaigns)
- create(user_id)        -> new random keypair with the configured defaults
- signer(record)         -> LocalAccount, decrypted only for the caller's signing

The private key never leaves this module in plaintext except through
signer() and export_key(). Decryption failure raises KeyDecryptionError;
there is no fallback key.
"""

from eth_account import Account
from eth_account.signers.local import LocalAccount

from config.settings import Settings
from database.db import Database
from trader.errors import KeyDecryptionError, WalletNotFound
from trader.models import WalletRecord
from utils.crypto import KeyCipher
from utils.logger import get_logger

logger = get_logger(__name__)


class WalletStore:
    """
    Usage:
        store = WalletStore(settings, db, KeyCipher(settings.encryption_key))
        record = await store.get("12345") or await store.create("12345")
    """

    def __init__(self, settings: Settings, db: Database, cipher: KeyCipher):
        self.settings = settings
        self.db = db
        self.cipher = cipher

    async def get(self, user_id: str) -> WalletRecord | None:
        return await self.db.get_wallet(str(user_id))

    async def require(self, user_id: str) -> WalletRecord:
        record = await self.get(user_id)
        if record is None:
            raise WalletNotFound("No wallet found, use /wallet first")
        return record

    async def save(self, user_id: str, record: WalletRecord) -> None:
        await self.db.save_wallet(str(user_id), record)

    async def create(self, user_id: str) -> WalletRecord:
        """Generate a fresh keypair for a user and persist it."""
        account = Account.create()
        record = WalletRecord(
            address=account.address,
            encrypted_key=self.cipher.encrypt(account.key.hex()),
            slippage=self.settings.default_slippage,
            default_buy_amount=self.settings.default_buy_amount,
        )
        await self.save(user_id, record)
        logger.info("wallet_created", user=str(user_id), address=account.address)
        return record

    def signer(self, record: WalletRecord) -> LocalAccount:
        """Decrypt the key just long enough to build a signing account."""
        account = Account.from_key(self.cipher.decrypt(record.encrypted_key))
        if account.address.lower() != record.address.lower():
            # Decrypted fine but belongs to another address: refuse to sign
            logger.error("wallet_key_mismatch", address=record.address)
            raise KeyDecryptionError("Stored key does not match the wallet address")
        return account

    def export_key(self, record: WalletRecord) -> str:
        key = self.cipher.decrypt(record.encrypted_key)
        return key if key.startswith("0x") else "0x" + key
