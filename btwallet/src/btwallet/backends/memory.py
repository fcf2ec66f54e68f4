"""
In-memory collaborator implementations.

Used for offline tooling and tests. Every method body runs without an
await point, so each call is atomic with respect to other coroutines on
the same event loop.
"""

from __future__ import annotations

import hashlib
from dataclasses import replace

from loguru import logger

from btwallet.backends.base import (
    AddressIndex,
    BlocktrailKeyProvider,
    Broadcaster,
    FeeOracle,
    SignedTransaction,
    UtxoListing,
)
from btwallet.constants import BASE_FEE_PER_KB
from btwallet.errors import DerivationError
from btwallet.wallet.bip32 import HDKey
from btwallet.wallet.models import UTXO, FeeStrategy, UtxoFilter


class StaticKeyProvider(BlocktrailKeyProvider):
    """Cosigner keys from a fixed mapping of key-index to extended public key"""

    def __init__(self, keys: dict[int, HDKey | str]):
        self._keys = {
            index: HDKey.from_extended_key(key) if isinstance(key, str) else key.neutered()
            for index, key in keys.items()
        }
        self.registered: dict[tuple[str, int], HDKey] = {}

    async def get_public_key(self, key_index: int) -> HDKey:
        if key_index not in self._keys:
            raise DerivationError(f"No cosigner key for key-index {key_index}")
        return self._keys[key_index]

    async def register_primary_key(
        self, wallet_id: str, key_index: int, primary_public_key: HDKey
    ) -> None:
        self.registered[(wallet_id, key_index)] = primary_public_key


class InMemoryUtxoListing(UtxoListing):
    def __init__(self, utxos: list[UTXO] | None = None):
        self._utxos: dict[str, UTXO] = {}
        self._locked: set[str] = set()
        self.spent: set[str] = set()
        for utxo in utxos or []:
            self.add(utxo)

    def add(self, utxo: UTXO) -> None:
        self._utxos[utxo.outpoint] = utxo
        if utxo.locked:
            self._locked.add(utxo.outpoint)

    async def list(self, wallet_id: str, filters: UtxoFilter | None = None) -> list[UTXO]:
        filters = filters or UtxoFilter()
        result = []
        for outpoint, utxo in self._utxos.items():
            locked = outpoint in self._locked
            if locked and not filters.include_locked:
                continue
            if utxo.confirmations < filters.min_confirmations:
                continue
            if filters.addresses is not None and utxo.address not in filters.addresses:
                continue
            result.append(replace(utxo, locked=locked))
        return result

    async def try_lock(self, outpoints: list[str]) -> bool:
        if any(op in self._locked or op not in self._utxos for op in outpoints):
            return False
        self._locked.update(outpoints)
        return True

    async def unlock(self, outpoints: list[str]) -> None:
        self._locked.difference_update(outpoints)

    async def mark_spent(self, outpoints: list[str]) -> None:
        for outpoint in outpoints:
            self._locked.discard(outpoint)
            self._utxos.pop(outpoint, None)
            self.spent.add(outpoint)

    def is_locked(self, outpoint: str) -> bool:
        return outpoint in self._locked


class InMemoryAddressIndex(AddressIndex):
    def __init__(self) -> None:
        self._records: dict[str, tuple[str, str, int]] = {}
        self._counters: dict[tuple[str, str], int] = {}

    async def record_address(self, wallet_id: str, path: str, key_index: int, address: str) -> None:
        self._records[address] = (wallet_id, path, key_index)

    async def lookup(self, address: str) -> tuple[str, int] | None:
        record = self._records.get(address)
        if record is None:
            return None
        _, path, key_index = record
        return path, key_index

    async def next_index(self, wallet_id: str, parent_path: str) -> int:
        key = (wallet_id, parent_path)
        index = self._counters.get(key, 0)
        self._counters[key] = index + 1
        return index

    async def advance_index(self, wallet_id: str, parent_path: str, used_index: int) -> None:
        key = (wallet_id, parent_path)
        self._counters[key] = max(self._counters.get(key, 0), used_index + 1)

    def addresses(self, wallet_id: str) -> list[str]:
        return [addr for addr, (wid, _, _) in self._records.items() if wid == wallet_id]


class StaticFeeOracle(FeeOracle):
    def __init__(self, rates: dict[FeeStrategy, int] | None = None):
        self._rates = {strategy: BASE_FEE_PER_KB for strategy in FeeStrategy}
        self._rates.update(rates or {})

    async def rate(self, strategy: FeeStrategy) -> int:
        return self._rates[FeeStrategy(strategy)]


class RecordingBroadcaster(Broadcaster):
    """
    Accepts every transaction and records it.

    ``expected_fee`` makes check_fee compare against a fixed value, to
    emulate a server-side fee policy.
    """

    def __init__(self, expected_fee: int | None = None):
        self.expected_fee = expected_fee
        self.sent: list[SignedTransaction] = []

    async def send(self, signed_tx: SignedTransaction) -> str:
        self.sent.append(signed_tx)
        logger.info(f"Recorded broadcast of {signed_tx.txid}")
        return signed_tx.txid or hashlib.sha256(signed_tx.raw.encode()).hexdigest()

    async def check_fee(self, signed_tx: SignedTransaction) -> bool:
        if self.expected_fee is None:
            return True
        return signed_tx.fee == self.expected_fee
