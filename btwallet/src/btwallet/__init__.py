"""
btwallet - 2-of-3 multisig HD wallet engine

Derives primary, backup and cosigner keys, builds the multisig redeem
scripts and addresses, selects coins and assembles transactions.
"""

__version__ = "0.1.0"

from btwallet.errors import (
    ChecksumMismatchError,
    DerivationError,
    FeeMismatchError,
    FeeOverrideWarning,
    InsufficientFundsError,
    PrivateKeyRequiredError,
    ScriptBuildError,
    TransactionSigningError,
    UnlockError,
    UtxoLockConflictError,
    WalletError,
    WalletLockedError,
)
from btwallet.wallet.bip32 import BIP32Path, HDKey
from btwallet.wallet.models import FeeStrategy, NetworkType, Output
from btwallet.wallet.service import Wallet

__all__ = [
    "BIP32Path",
    "ChecksumMismatchError",
    "DerivationError",
    "FeeMismatchError",
    "FeeOverrideWarning",
    "FeeStrategy",
    "HDKey",
    "InsufficientFundsError",
    "NetworkType",
    "Output",
    "PrivateKeyRequiredError",
    "ScriptBuildError",
    "TransactionSigningError",
    "UnlockError",
    "UtxoLockConflictError",
    "Wallet",
    "WalletError",
    "WalletLockedError",
]
