"""
Key vault guarding the primary private key.

Two states, LOCKED (initial) and UNLOCKED. The private key is only held
while unlocked and every use of it goes through with_unlocked().
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import TypeVar

from loguru import logger

from btwallet.errors import ChecksumMismatchError, UnlockError, WalletLockedError
from btwallet.wallet.address import pubkey_to_p2pkh_address
from btwallet.wallet.bip32 import HDKey, mnemonic_to_seed
from btwallet.wallet.models import NetworkType

T = TypeVar("T")


class VaultState(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"


def compute_checksum(primary_key: HDKey, network: NetworkType = NetworkType.MAINNET) -> str:
    """Wallet checksum: P2PKH address of the primary master key"""
    return pubkey_to_p2pkh_address(primary_key.get_public_key_bytes(), network)


class KeyVault:
    def __init__(self, checksum: str, network: NetworkType = NetworkType.MAINNET):
        self.checksum = checksum
        self.network = NetworkType(network)
        self._state = VaultState.LOCKED
        self._primary_private_key: HDKey | None = None

    @property
    def state(self) -> VaultState:
        return self._state

    @property
    def is_locked(self) -> bool:
        return self._state == VaultState.LOCKED

    def unlock(
        self,
        primary_private_key: HDKey | str | None = None,
        mnemonic: str | None = None,
        passphrase: str | None = None,
    ) -> None:
        """
        Unlock with either the primary master private key (HDKey or xprv)
        or the primary mnemonic and its passphrase.

        Raises:
            UnlockError: If neither option is usable
            ChecksumMismatchError: If the key does not belong to this wallet
        """
        if primary_private_key is not None:
            if isinstance(primary_private_key, str):
                primary_private_key = HDKey.from_extended_key(primary_private_key)
            key = primary_private_key
        elif mnemonic is not None and passphrase is not None:
            key = HDKey.from_seed(mnemonic_to_seed(mnemonic, passphrase))
        else:
            raise UnlockError("Unlock needs primary_private_key or mnemonic and passphrase")

        if not key.is_private:
            raise UnlockError("Unlock needs a private primary key")

        actual = compute_checksum(key, self.network)
        if actual != self.checksum:
            logger.warning("Primary key does not match wallet checksum, staying locked")
            raise ChecksumMismatchError(self.checksum, actual)

        self._primary_private_key = key
        self._state = VaultState.UNLOCKED
        logger.info("Wallet unlocked")

    def lock(self) -> None:
        self._primary_private_key = None
        self._state = VaultState.LOCKED
        logger.info("Wallet locked")

    def with_unlocked(self, fn: Callable[[HDKey], T]) -> T:
        """Run fn with the primary master private key"""
        if self._state != VaultState.UNLOCKED or self._primary_private_key is None:
            raise WalletLockedError()
        return fn(self._primary_private_key)
