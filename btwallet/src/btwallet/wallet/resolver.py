"""
Per-party key resolution for wallet paths.

Wallet paths follow M/{key_index}'/{chain}/{index}:
- primary: the primary public key stored for key_index sits at M/{key_index}',
  the remainder of the path is derived from it
- backup: the backup master key (M/) follows the unhardened path
- cosigner: the cosigner key for key_index sits at M/{key_index}',
  the remainder of the path is derived from it
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from btwallet.errors import DerivationError
from btwallet.wallet.bip32 import BIP32Path, HDKey
from btwallet.wallet.models import KeyRole


@dataclass(frozen=True)
class ResolvedKeys:
    """The three parties' public keys at one path"""

    primary: HDKey
    backup: HDKey
    cosigner: HDKey
    key_index: int

    def for_role(self, role: KeyRole) -> HDKey:
        return {
            KeyRole.PRIMARY: self.primary,
            KeyRole.BACKUP: self.backup,
            KeyRole.COSIGNER: self.cosigner,
        }[role]


class PathResolver:
    """
    Derives the primary, backup and cosigner keys for a wallet path.

    Only public material is derived and cached; the cache is keyed by
    (wallet identifier, path, key_index).
    """

    def __init__(
        self,
        wallet_id: str,
        primary_public_keys: dict[int, HDKey],
        backup_public_key: HDKey,
        blocktrail_public_keys: dict[int, HDKey],
    ):
        self.wallet_id = wallet_id
        self.primary_public_keys = primary_public_keys
        self.backup_public_key = backup_public_key.neutered()
        self.blocktrail_public_keys = blocktrail_public_keys
        self._cache: dict[tuple[str, BIP32Path, int], ResolvedKeys] = {}

    def resolve_for_path(
        self, path: str | BIP32Path, key_index: int | None = None
    ) -> ResolvedKeys:
        path = BIP32Path.parse(path)
        path_key_index = path.key_index
        if key_index is None:
            key_index = path_key_index
        elif key_index != path_key_index:
            raise DerivationError(
                f"Path {path} belongs to key-index {path_key_index}, not {key_index}"
            )

        cache_key = (self.wallet_id, path, key_index)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        if key_index not in self.primary_public_keys:
            raise DerivationError(f"No primary public key for key-index {key_index}")
        if key_index not in self.blocktrail_public_keys:
            raise DerivationError(f"No cosigner public key for key-index {key_index}")

        # keys for key_index already sit at depth 1 (M/{key_index}')
        relative = path.tail(1)
        resolved = ResolvedKeys(
            primary=self.primary_public_keys[key_index].neutered().derive(relative),
            backup=self.backup_public_key.derive(path.unhardened()),
            cosigner=self.blocktrail_public_keys[key_index].neutered().derive(relative),
            key_index=key_index,
        )

        self._cache[cache_key] = resolved
        logger.debug(f"Derived keys for {path.as_public()} (key-index {key_index})")
        return resolved

    def cache_size(self) -> int:
        return len(self._cache)
