"""
Test configuration for wallet tests.
"""

from __future__ import annotations

import hashlib
import itertools

import pytest
import pytest_asyncio

from btwallet.backends.memory import (
    InMemoryAddressIndex,
    InMemoryUtxoListing,
    RecordingBroadcaster,
    StaticFeeOracle,
    StaticKeyProvider,
)
from btwallet.config import WalletSettings
from btwallet.wallet.bip32 import HDKey, mnemonic_to_seed
from btwallet.wallet.models import UTXO, AddressType, FeeStrategy, NetworkType
from btwallet.wallet.service import Wallet

PRIMARY_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)
PRIMARY_PASSPHRASE = "password"
BACKUP_MNEMONIC = (
    "legal winner thank year wave sausage worth useful legal winner thank yellow"
)
COSIGNER_SEED = bytes.fromhex("000102030405060708090a0b0c0d0e0f")

# Any valid testnet address works as a payment destination
DESTINATION = "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"

WALLET_ID = "test-wallet"


@pytest.fixture
def primary_mnemonic() -> str:
    """Test mnemonic (not for production use!)."""
    return PRIMARY_MNEMONIC


@pytest.fixture
def primary_passphrase() -> str:
    return PRIMARY_PASSPHRASE


@pytest.fixture
def destination() -> str:
    return DESTINATION


@pytest.fixture
def primary_master() -> HDKey:
    return HDKey.from_seed(mnemonic_to_seed(PRIMARY_MNEMONIC, PRIMARY_PASSPHRASE))


@pytest.fixture
def backup_public_key() -> HDKey:
    return HDKey.from_seed(mnemonic_to_seed(BACKUP_MNEMONIC)).neutered()


@pytest.fixture
def cosigner_master() -> HDKey:
    return HDKey.from_seed(COSIGNER_SEED)


@pytest.fixture
def cosigner_keys(cosigner_master) -> dict[int, HDKey]:
    """Cosigner public keys at M/{key_index}' for key-index 0 and 1"""
    return {i: cosigner_master.derive(f"m/{i}'").neutered() for i in (0, 1)}


@pytest.fixture
def settings() -> WalletSettings:
    return WalletSettings(network=NetworkType.TESTNET, randomize_change_idx=False)


@pytest.fixture
def key_provider(cosigner_keys) -> StaticKeyProvider:
    return StaticKeyProvider(cosigner_keys)


@pytest.fixture
def listing() -> InMemoryUtxoListing:
    return InMemoryUtxoListing()


@pytest.fixture
def address_index() -> InMemoryAddressIndex:
    return InMemoryAddressIndex()


@pytest.fixture
def fee_oracle() -> StaticFeeOracle:
    return StaticFeeOracle(
        {
            FeeStrategy.BASE_FEE: 1_000,
            FeeStrategy.OPTIMAL: 1_000,
            FeeStrategy.LOW_PRIORITY: 500,
        }
    )


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def make_wallet(
    backup_public_key, key_provider, listing, address_index, fee_oracle, broadcaster, settings
):
    """Factory creating a locked wallet on the shared in-memory collaborators"""

    async def _make(**overrides) -> Wallet:
        kwargs = dict(
            identifier=WALLET_ID,
            primary_mnemonic=PRIMARY_MNEMONIC,
            passphrase=PRIMARY_PASSPHRASE,
            backup_public_key=backup_public_key,
            key_provider=key_provider,
            listing=listing,
            address_index=address_index,
            fee_oracle=fee_oracle,
            broadcaster=broadcaster,
            settings=settings,
        )
        kwargs.update(overrides)
        return await Wallet.create(**kwargs)

    return _make


@pytest_asyncio.fixture
async def wallet(make_wallet) -> Wallet:
    wallet = await make_wallet()
    yield wallet
    await wallet.close()


@pytest_asyncio.fixture
async def p2wsh_wallet(make_wallet) -> Wallet:
    settings = WalletSettings(
        network=NetworkType.TESTNET,
        address_type=AddressType.P2WSH,
        randomize_change_idx=False,
    )
    wallet = await make_wallet(settings=settings)
    yield wallet
    await wallet.close()


def _make_utxo(
    value: int, address: str = DESTINATION, confirmations: int = 6, path: str = "", n: int = 0
) -> UTXO:
    txid = hashlib.sha256(f"funding-{address}-{value}-{n}".encode()).hexdigest()
    return UTXO(
        txid=txid,
        vout=n % 4,
        value=value,
        address=address,
        confirmations=confirmations,
        path=path,
    )


@pytest.fixture
def utxo_factory():
    """UTXO with a deterministic txid; `n` keeps outpoints apart"""
    return _make_utxo


@pytest.fixture
def fund(listing):
    """Pay `value` to a fresh receive address of the given wallet"""
    counter = itertools.count()

    async def _fund(wallet: Wallet, value: int, confirmations: int = 6) -> UTXO:
        path, address = await wallet.get_new_address_pair()
        utxo = _make_utxo(value, address, confirmations, path, n=next(counter))
        listing.add(utxo)
        return utxo

    return _fund
