"""
Collaborator interfaces consumed by the wallet engine.

Transport, request signing, pagination and persistence live behind these
seams; the engine never talks to the network directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from btwallet.wallet.bip32 import HDKey
from btwallet.wallet.models import UTXO, CoinSelection, FeeStrategy, UtxoFilter


@dataclass
class SignedTransaction:
    """Primary-signed transaction handed to the broadcaster for cosigning"""

    raw: str
    txid: str
    fee: int
    paths: list[str]
    outpoints: list[str]
    # reservation the transaction was built from, None when built elsewhere
    selection: CoinSelection | None = field(default=None, repr=False, compare=False)


class BlocktrailKeyProvider(ABC):
    """Source of the cosigner's public keys, indexed by key-index"""

    @abstractmethod
    async def get_public_key(self, key_index: int) -> HDKey:
        """Public-only cosigner key at M/{key_index}'"""

    async def register_primary_key(
        self, wallet_id: str, key_index: int, primary_public_key: HDKey
    ) -> None:
        """Announce the primary public key for a new key-index"""
        pass


class UtxoListing(ABC):
    """
    UTXO source with advisory reservation.

    try_lock must be a single compare-and-lock over the whole set: either
    every outpoint gets reserved or none does.
    """

    @abstractmethod
    async def list(self, wallet_id: str, filters: UtxoFilter | None = None) -> list[UTXO]:
        """List the wallet's unspent outputs"""

    @abstractmethod
    async def try_lock(self, outpoints: list[str]) -> bool:
        """Atomically reserve outpoints ("txid:vout"), False if any is taken"""

    @abstractmethod
    async def unlock(self, outpoints: list[str]) -> None:
        """Release reservations"""

    async def mark_spent(self, outpoints: list[str]) -> None:
        """Turn reservations into permanent spends after broadcast"""
        pass


class AddressIndex(ABC):
    """Address to (path, key-index) mapping recorded at derivation time"""

    @abstractmethod
    async def record_address(self, wallet_id: str, path: str, key_index: int, address: str) -> None:
        """Remember where an address was derived"""

    @abstractmethod
    async def lookup(self, address: str) -> tuple[str, int] | None:
        """Return (path, key_index) for a known address"""

    @abstractmethod
    async def next_index(self, wallet_id: str, parent_path: str) -> int:
        """Reserve the next unused child index under parent_path"""

    @abstractmethod
    async def advance_index(self, wallet_id: str, parent_path: str, used_index: int) -> None:
        """Make next_index return an index above used_index from now on"""


class FeeOracle(ABC):
    @abstractmethod
    async def rate(self, strategy: FeeStrategy) -> int:
        """Fee rate in satoshis per KB for the strategy"""


class Broadcaster(ABC):
    @abstractmethod
    async def send(self, signed_tx: SignedTransaction) -> str:
        """Cosign and broadcast, returns txid"""

    @abstractmethod
    async def check_fee(self, signed_tx: SignedTransaction) -> bool:
        """Independent verification of the transaction fee"""

    async def close(self) -> None:
        """Close backend connection"""
        pass
