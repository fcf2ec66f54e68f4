"""
Collaborator interfaces and implementations.

Available implementations:
- StaticKeyProvider: cosigner keys from known extended public keys
- InMemoryUtxoListing: UTXO set with atomic compare-and-lock reservations
- InMemoryAddressIndex: address to (path, key-index) records
- StaticFeeOracle: fixed per-KB rates per fee strategy
- RecordingBroadcaster: accepts and records signed transactions
"""

from btwallet.backends.base import (
    AddressIndex,
    BlocktrailKeyProvider,
    Broadcaster,
    FeeOracle,
    SignedTransaction,
    UtxoListing,
)
from btwallet.backends.memory import (
    InMemoryAddressIndex,
    InMemoryUtxoListing,
    RecordingBroadcaster,
    StaticFeeOracle,
    StaticKeyProvider,
)

__all__ = [
    "AddressIndex",
    "BlocktrailKeyProvider",
    "Broadcaster",
    "FeeOracle",
    "InMemoryAddressIndex",
    "InMemoryUtxoListing",
    "RecordingBroadcaster",
    "SignedTransaction",
    "StaticFeeOracle",
    "StaticKeyProvider",
    "UtxoListing",
]
