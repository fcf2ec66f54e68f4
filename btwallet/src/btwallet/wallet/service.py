"""
Multisig wallet service.

Ties together key resolution, redeem scripts, the key vault, coin
selection and transaction assembly for one 2-of-3 wallet.

Derivation path: M/{key_index}'/{chain}/{index}
- key_index: cosigner key set the address was created under
- chain: 0 (external/receive), 1 (internal/change)
- index: address index
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from loguru import logger

from btwallet.backends.base import (
    AddressIndex,
    BlocktrailKeyProvider,
    Broadcaster,
    FeeOracle,
    SignedTransaction,
    UtxoListing,
)
from btwallet.config import WalletSettings
from btwallet.constants import CHAIN_CHANGE, CHAIN_RECEIVE
from btwallet.errors import DerivationError
from btwallet.wallet.assembler import (
    OutputsLike,
    TransactionAssembler,
    UnsignedTx,
    normalize_outputs,
)
from btwallet.wallet.bip32 import BIP32Path, HDKey, mnemonic_to_seed
from btwallet.wallet.coin_selection import CoinSelector
from btwallet.wallet.models import (
    Balance,
    CoinSelection,
    FeeStrategy,
    NetworkType,
    UtxoFilter,
)
from btwallet.wallet.resolver import PathResolver
from btwallet.wallet.script import RedeemScript, RedeemScriptBuilder
from btwallet.wallet.vault import KeyVault, compute_checksum

T = TypeVar("T")


def _as_key(key: HDKey | str) -> HDKey:
    return HDKey.from_extended_key(key) if isinstance(key, str) else key


class Wallet:
    """
    2-of-3 multisig wallet (primary, backup, cosigner).

    The primary private key is only available through the vault while the
    wallet is unlocked; everything else works from public keys.
    """

    def __init__(
        self,
        identifier: str,
        primary_mnemonic: str | None,
        primary_public_keys: dict[int, HDKey | str],
        backup_public_key: HDKey | str,
        blocktrail_public_keys: dict[int, HDKey | str],
        key_index: int,
        checksum: str,
        key_provider: BlocktrailKeyProvider,
        listing: UtxoListing,
        address_index: AddressIndex,
        fee_oracle: FeeOracle,
        broadcaster: Broadcaster,
        settings: WalletSettings | None = None,
    ):
        self.settings = settings or WalletSettings()
        self._identifier = identifier
        self._primary_mnemonic = primary_mnemonic
        self._key_index = key_index
        self._checksum = checksum

        self.primary_public_keys = {
            i: _as_key(k).neutered() for i, k in primary_public_keys.items()
        }
        self.backup_public_key = _as_key(backup_public_key).neutered()
        self._blocktrail_public_keys = {
            i: _as_key(k).neutered() for i, k in blocktrail_public_keys.items()
        }
        if key_index not in self.primary_public_keys:
            raise DerivationError(f"No primary public key for key-index {key_index}")
        if key_index not in self._blocktrail_public_keys:
            raise DerivationError(f"No cosigner public key for key-index {key_index}")

        self.key_provider = key_provider
        self.listing = listing
        self.address_index = address_index
        self.fee_oracle = fee_oracle
        self.broadcaster = broadcaster

        self.vault = KeyVault(checksum, self.network)
        self.resolver = PathResolver(
            identifier,
            self.primary_public_keys,
            self.backup_public_key,
            self._blocktrail_public_keys,
        )
        self.script_builder = RedeemScriptBuilder(self.network, self.settings.address_type)
        self.selector = CoinSelector(
            identifier,
            listing,
            fee_oracle,
            address_type=self.settings.address_type,
            dust_threshold=self.settings.dust_threshold,
        )
        self.assembler = TransactionAssembler(self)

        logger.info(f"Initialized wallet {identifier} at key-index {key_index}")

    @classmethod
    async def create(
        cls,
        identifier: str,
        primary_mnemonic: str,
        passphrase: str,
        backup_public_key: HDKey | str,
        key_provider: BlocktrailKeyProvider,
        listing: UtxoListing,
        address_index: AddressIndex,
        fee_oracle: FeeOracle,
        broadcaster: Broadcaster,
        key_index: int = 0,
        settings: WalletSettings | None = None,
    ) -> Wallet:
        """
        Set up a wallet from its primary mnemonic.

        Derives the primary key, registers its public key for key_index
        with the key provider and fetches the matching cosigner key. The
        returned wallet is locked.
        """
        settings = settings or WalletSettings()
        primary_master = HDKey.from_seed(mnemonic_to_seed(primary_mnemonic, passphrase))
        checksum = compute_checksum(primary_master, settings.network)
        primary_public_key = primary_master.derive(f"m/{key_index}'").neutered()

        await key_provider.register_primary_key(identifier, key_index, primary_public_key)
        cosigner_key = await key_provider.get_public_key(key_index)

        return cls(
            identifier=identifier,
            primary_mnemonic=primary_mnemonic,
            primary_public_keys={key_index: primary_public_key},
            backup_public_key=backup_public_key,
            blocktrail_public_keys={key_index: cosigner_key},
            key_index=key_index,
            checksum=checksum,
            key_provider=key_provider,
            listing=listing,
            address_index=address_index,
            fee_oracle=fee_oracle,
            broadcaster=broadcaster,
            settings=settings,
        )

    @property
    def identifier(self) -> str:
        return self._identifier

    @property
    def primary_mnemonic(self) -> str | None:
        return self._primary_mnemonic

    @property
    def key_index(self) -> int:
        return self._key_index

    @property
    def checksum(self) -> str:
        return self._checksum

    @property
    def network(self) -> NetworkType:
        return self.settings.network

    @property
    def blocktrail_public_keys(self) -> dict[int, tuple[str, str]]:
        """key_index -> (extended public key, path)"""
        return {
            index: (key.to_extended_key(self.network), f"M/{index}'")
            for index, key in self._blocktrail_public_keys.items()
        }

    # Vault

    def unlock(
        self,
        primary_private_key: HDKey | str | None = None,
        passphrase: str | None = None,
        fn: Callable[[Wallet], T] | None = None,
    ) -> T | None:
        """
        Unlock with the primary private key, or the passphrase for the stored mnemonic.

        With fn, the wallet is only unlocked while fn(wallet) runs and is
        locked again afterwards, also when fn raises. Returns fn's result.
        """
        self.vault.unlock(
            primary_private_key=primary_private_key,
            mnemonic=self._primary_mnemonic if passphrase is not None else None,
            passphrase=passphrase,
        )
        if fn is None:
            return None
        try:
            return fn(self)
        finally:
            self.lock()

    def lock(self) -> None:
        self.vault.lock()

    def is_locked(self) -> bool:
        return self.vault.is_locked

    async def upgrade_key_index(self, key_index: int) -> None:
        """
        Move new addresses to the cosigner key set for key_index.

        Addresses created before keep resolving under the key-index recorded
        for them in the address index.

        Raises:
            WalletLockedError: If the wallet is locked (key-index is unchanged)
        """
        primary_public_key = self.vault.with_unlocked(
            lambda master: master.derive(f"m/{key_index}'").neutered()
        )

        await self.key_provider.register_primary_key(
            self._identifier, key_index, primary_public_key
        )
        cosigner_key = await self.key_provider.get_public_key(key_index)

        self.primary_public_keys[key_index] = primary_public_key
        self._blocktrail_public_keys[key_index] = cosigner_key.neutered()
        previous = self._key_index
        self._key_index = key_index
        logger.info(f"Upgraded wallet {self._identifier} from key-index {previous} to {key_index}")

    # Addresses

    def get_redeem_script(
        self, path: str | BIP32Path, key_index: int | None = None
    ) -> tuple[RedeemScript, str]:
        keys = self.resolver.resolve_for_path(path, key_index)
        return self.script_builder.build(keys.primary, keys.backup, keys.cosigner)

    def get_address_by_path(self, path: str | BIP32Path) -> str:
        _, address = self.get_redeem_script(path)
        return address

    def get_redeem_script_by_path(self, path: str | BIP32Path) -> tuple[str, str]:
        """Returns (address, redeem script hex)"""
        redeem_script, address = self.get_redeem_script(path)
        return address, redeem_script.hex()

    async def get_path_for_address(self, address: str) -> str:
        record = await self.address_index.lookup(address)
        if record is None:
            raise DerivationError(f"Address {address} is not known to wallet {self._identifier}")
        path, _ = record
        return path

    def get_blocktrail_public_key(self, path: str | BIP32Path) -> HDKey:
        return self.resolver.resolve_for_path(path).cosigner

    async def get_new_address_pair(self, chain: int = CHAIN_RECEIVE) -> tuple[str, str]:
        """Derive the next address under the current key-index, returns (path, address)"""
        parent = f"M/{self._key_index}'/{chain}"
        index = await self.address_index.next_index(self._identifier, parent)
        path = f"{parent}/{index}"
        address = self.get_address_by_path(path)
        await self.address_index.record_address(self._identifier, path, self._key_index, address)
        logger.debug(f"New address {address} at {path}")
        return path, address

    async def get_new_address(self) -> str:
        _, address = await self.get_new_address_pair(CHAIN_RECEIVE)
        return address

    async def get_new_change_address(self) -> str:
        _, address = await self.get_new_address_pair(CHAIN_CHANGE)
        return address

    # Balance and discovery

    async def get_balance(self) -> tuple[int, int]:
        """Returns (confirmed, unconfirmed) in satoshis"""
        balance = Balance()
        for utxo in await self.listing.list(self._identifier):
            if utxo.confirmations > 0:
                balance.confirmed += utxo.value
            else:
                balance.unconfirmed += utxo.value
        return balance.as_tuple()

    async def do_discovery(self, gap: int | None = None) -> tuple[int, int]:
        """
        Scan every known key-index and both chains for funded addresses.
        Stops a chain after `gap` consecutive addresses without UTXOs.
        """
        if gap is None:
            gap = self.settings.gap_limit
        batch_size = min(self.settings.discovery_batch_size, gap)
        balance = Balance()

        for key_index in sorted(self.primary_public_keys):
            if key_index not in self._blocktrail_public_keys:
                continue
            for chain in (CHAIN_RECEIVE, CHAIN_CHANGE):
                parent = f"M/{key_index}'/{chain}"
                consecutive_empty = 0
                index = 0
                highest_used = None

                while consecutive_empty < gap:
                    paths = [f"{parent}/{index + i}" for i in range(batch_size)]
                    addresses = [self.get_address_by_path(p) for p in paths]

                    utxos = await self.listing.list(
                        self._identifier, UtxoFilter(addresses=tuple(addresses))
                    )
                    utxos_by_address: dict[str, list] = {addr: [] for addr in addresses}
                    for utxo in utxos:
                        if utxo.address in utxos_by_address:
                            utxos_by_address[utxo.address].append(utxo)

                    for i, (path, address) in enumerate(zip(paths, addresses)):
                        addr_utxos = utxos_by_address[address]
                        if addr_utxos:
                            consecutive_empty = 0
                            highest_used = index + i
                            await self.address_index.record_address(
                                self._identifier, path, key_index, address
                            )
                            for utxo in addr_utxos:
                                if utxo.confirmations > 0:
                                    balance.confirmed += utxo.value
                                else:
                                    balance.unconfirmed += utxo.value
                        else:
                            consecutive_empty += 1

                        if consecutive_empty >= gap:
                            break

                    index += batch_size

                if highest_used is not None:
                    await self.address_index.advance_index(
                        self._identifier, parent, highest_used
                    )
                logger.debug(f"Discovery key-index {key_index} chain {chain}: scanned ~{index}")

        logger.info(
            f"Discovery complete: {balance.confirmed} confirmed, "
            f"{balance.unconfirmed} unconfirmed"
        )
        return balance.as_tuple()

    # Fees and payments

    async def get_optimal_fee_per_kb(self) -> int:
        return await self.fee_oracle.rate(FeeStrategy.OPTIMAL)

    async def get_low_priority_fee_per_kb(self) -> int:
        return await self.fee_oracle.rate(FeeStrategy.LOW_PRIORITY)

    async def coin_selection(
        self,
        outputs: OutputsLike,
        lock_utxos: bool = True,
        allow_zero_conf: bool = False,
        force_fee: int | None = None,
        fee_strategy: FeeStrategy | None = None,
    ) -> CoinSelection:
        return await self.selector.select(
            normalize_outputs(outputs),
            strategy=fee_strategy or self.settings.fee_strategy,
            allow_zero_conf=allow_zero_conf,
            force_fee=force_fee,
            lock_utxos=lock_utxos,
        )

    async def build_tx(
        self,
        outputs: OutputsLike,
        change_address: str | None = None,
        allow_zero_conf: bool = False,
        randomize_change_idx: bool | None = None,
        fee_strategy: FeeStrategy | None = None,
        force_fee: int | None = None,
    ) -> UnsignedTx:
        return await self.assembler.build_tx(
            outputs,
            change_address=change_address,
            fee_strategy=fee_strategy or self.settings.fee_strategy,
            force_fee=force_fee,
            allow_zero_conf=allow_zero_conf,
            randomize_change_idx=randomize_change_idx,
        )

    async def sign_tx(self, unsigned: UnsignedTx) -> SignedTransaction:
        return await self.assembler.sign(unsigned)

    async def send_tx(self, unsigned: UnsignedTx, api_check_fee: bool = True) -> str:
        signed = await self.assembler.sign(unsigned)
        return await self.assembler.send(signed, api_check_fee=api_check_fee)

    async def abort_tx(self, unsigned: UnsignedTx) -> None:
        """Release the UTXOs reserved for an unsigned transaction"""
        await self.selector.release(unsigned.selection)

    async def pay(
        self,
        outputs: OutputsLike,
        change_address: str | None = None,
        allow_zero_conf: bool = False,
        randomize_change_idx: bool | None = None,
        fee_strategy: FeeStrategy | None = None,
        force_fee: int | None = None,
        api_check_fee: bool | None = None,
    ) -> str:
        """
        Create, sign and send a transaction.

        A forced fee skips the broadcaster's fee verification unless
        api_check_fee is passed explicitly.
        """
        if api_check_fee is None:
            api_check_fee = force_fee is None

        unsigned = await self.build_tx(
            outputs,
            change_address=change_address,
            allow_zero_conf=allow_zero_conf,
            randomize_change_idx=randomize_change_idx,
            fee_strategy=fee_strategy,
            force_fee=force_fee,
        )
        return await self.send_tx(unsigned, api_check_fee=api_check_fee)

    async def close(self) -> None:
        """Close backend connection"""
        await self.broadcaster.close()
