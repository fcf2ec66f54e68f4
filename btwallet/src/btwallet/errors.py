"""
Wallet error taxonomy.

Every error raised by the engine derives from WalletError so callers can
catch the family, while the concrete classes let them tell an actionable
shortfall apart from a locked wallet, a transient lock conflict or a fee
disagreement.
"""

from __future__ import annotations


class WalletError(Exception):
    """Base class for all wallet engine errors"""

    pass


class DerivationError(WalletError):
    """Raised for malformed paths or impossible derivations"""

    pass


class PrivateKeyRequiredError(DerivationError):
    """Raised when a hardened step is requested from a public-only key"""

    def __init__(self, index: int):
        self.index = index
        super().__init__(f"PrivateKeyRequired: hardened index {index} needs a private key")


class ScriptBuildError(WalletError):
    """Raised when a redeem script cannot be built from the given keys"""

    pass


class TransactionSigningError(WalletError):
    """Raised when an input cannot be signed with the given key"""

    pass


class UnlockError(WalletError):
    """Raised when the key vault refuses to unlock"""

    pass


class ChecksumMismatchError(UnlockError):
    """Raised when the unlocked primary key does not match the wallet checksum"""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"ChecksumMismatch: expected {expected}, got {actual}")


class WalletLockedError(WalletError):
    """Raised when an operation needs the primary private key while locked"""

    def __init__(self, message: str = "Wallet is locked"):
        super().__init__(message)


class InsufficientFundsError(WalletError):
    """Raised when the available UTXOs cannot cover outputs plus fee"""

    def __init__(self, shortfall: int, required: int = 0, available: int = 0):
        self.shortfall = shortfall
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient funds: need {required}, have {available} (shortfall {shortfall})"
        )


class FeeMismatchError(WalletError):
    """Raised when the broadcaster disagrees with the transaction fee"""

    def __init__(self, fee: int, message: str | None = None):
        self.fee = fee
        super().__init__(message or f"Fee of {fee} sat was rejected by fee verification")


class UtxoLockConflictError(WalletError):
    """Raised when another build already holds one of the selected outputs"""

    def __init__(self, outpoints: list[str]):
        self.outpoints = outpoints
        super().__init__(f"UTXOs already locked by another build: {', '.join(outpoints)}")


class FeeOverrideWarning(UserWarning):
    """Emitted when a forced fee differs from the computed fee beyond tolerance"""

    def __init__(self, forced_fee: int, computed_fee: int):
        self.forced_fee = forced_fee
        self.computed_fee = computed_fee
        super().__init__(
            f"Forced fee {forced_fee} sat differs from computed fee {computed_fee} sat"
        )
