"""
Wallet data models.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    REGTEST = "regtest"

    @property
    def is_testnet(self) -> bool:
        return self != NetworkType.MAINNET


class AddressType(str, Enum):
    P2SH = "p2sh"
    P2WSH = "p2wsh"


class FeeStrategy(str, Enum):
    BASE_FEE = "base_fee"
    OPTIMAL = "optimal"
    LOW_PRIORITY = "low_priority"


class KeyRole(str, Enum):
    """
    The three signing parties of a wallet.

    Declaration order is the key order inside every redeem script, which
    fixes whose signature goes in which slot.
    """

    PRIMARY = "primary"
    BACKUP = "backup"
    COSIGNER = "cosigner"


@dataclass
class UTXO:
    """Unspent output as reported by the UTXO listing"""

    txid: str
    vout: int
    value: int
    address: str
    confirmations: int
    path: str = ""
    scriptpubkey: str = ""
    locked: bool = False

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass(frozen=True)
class UtxoFilter:
    """Filters passed to UtxoListing.list"""

    min_confirmations: int = 0
    addresses: tuple[str, ...] | None = None
    include_locked: bool = True


@dataclass
class Output:
    """Payment output"""

    address: str
    value: int


@dataclass
class CoinSelection:
    """Result of coin selection"""

    utxos: list[UTXO]
    total_value: int
    change_value: int
    fee: int
    fee_per_kb: int = 0
    estimated_fee: int = 0
    locked: bool = False

    @property
    def outpoints(self) -> list[str]:
        return [u.outpoint for u in self.utxos]


@dataclass
class Balance:
    confirmed: int = 0
    unconfirmed: int = 0

    def as_tuple(self) -> tuple[int, int]:
        return self.confirmed, self.unconfirmed

