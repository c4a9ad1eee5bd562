"""
Trading Errors
==============
Every failure the trading core can report, grouped by how the caller
should react:

- NotFoundError:    token / market / position / wallet absent, the user can fix it
- UnavailableError: quote or balance read failed, retry later, never trade on it
- InvalidInput:     malformed user input, rejected before any state changes
- OnChainFailure:   reverted, rejected or unconfirmed transaction, terminal
                    for this attempt, never retried automatically
- FatalError:       stored key material cannot be decrypted, abort entirely

Each error carries the stage it happened at (quote, approve, submit,
confirm), the token, and the transaction hash when one exists, so the
message shown to the user says what to retry.
"""

STAGE_QUOTE = "quote"
STAGE_APPROVE = "approve"
STAGE_SUBMIT = "submit"
STAGE_CONFIRM = "confirm"


class TradingError(Exception):
    """Base class for all trading-core errors."""

    kind = "error"

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        token: str | None = None,
        tx_hash: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.token = token
        self.tx_hash = tx_hash

    def describe(self) -> str:
        """One-line human readable summary with whatever context we have."""
        parts = [self.message]
        if self.stage:
            parts.append(f"stage: {self.stage}")
        if self.token:
            parts.append(f"token: {self.token}")
        if self.tx_hash:
            parts.append(f"tx: {self.tx_hash}")
        return " | ".join(parts)


# =============================================================================
# NotFound
# =============================================================================

class NotFoundError(TradingError):
    kind = "not_found"


class TokenNotTradeable(NotFoundError):
    """No market exists for the token, or its venue type is unsupported."""


class PositionNotFound(NotFoundError):
    pass


class WalletNotFound(NotFoundError):
    pass


class CampaignNotFound(NotFoundError):
    pass


# =============================================================================
# Unavailable
# =============================================================================

class UnavailableError(TradingError):
    kind = "unavailable"


class QuoteUnavailable(UnavailableError):
    """The venue quote could not be obtained. Never treat as zero output."""


class BalanceUnavailable(UnavailableError):
    pass


class MarketDataUnavailable(UnavailableError):
    pass


# =============================================================================
# Invalid
# =============================================================================

class InvalidInput(TradingError):
    kind = "invalid"


# =============================================================================
# OnChainFailure
# =============================================================================

class OnChainFailure(TradingError):
    kind = "on_chain"


class InsufficientFunds(OnChainFailure):
    """Not enough native balance for the amount or for gas."""


class SubmissionFailed(OnChainFailure):
    """The node refused the signed transaction."""


class TransactionReverted(OnChainFailure):
    pass


class ConfirmationTimeout(OnChainFailure):
    """Submitted but not confirmed in time. The transaction may still land."""


# =============================================================================
# Fatal
# =============================================================================

class FatalError(TradingError):
    kind = "fatal"


class KeyDecryptionError(FatalError):
    """Stored key material failed authentication (tampered or wrong key)."""
