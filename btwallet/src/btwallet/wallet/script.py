"""
2-of-3 multisig redeem scripts.

Keys are placed in party order (primary, backup, cosigner) regardless of
their numeric value, so signature slot positions never move between
addresses of the same wallet.
"""

from __future__ import annotations

from dataclasses import dataclass

from coincurve import PublicKey
from loguru import logger

from btwallet.constants import REQUIRED_SIGNATURES, TOTAL_KEYS
from btwallet.errors import ScriptBuildError
from btwallet.wallet.address import (
    script_to_p2sh_address,
    script_to_p2sh_scriptpubkey,
    script_to_p2wsh_address,
    script_to_p2wsh_scriptpubkey,
)
from btwallet.wallet.bip32 import HDKey
from btwallet.wallet.models import AddressType, KeyRole, NetworkType

OP_0 = 0x00
OP_1 = 0x51
OP_CHECKMULTISIG = 0xAE
OP_PUSHDATA1 = 0x4C


def small_int_opcode(n: int) -> int:
    """OP_1..OP_16"""
    if not 1 <= n <= 16:
        raise ScriptBuildError(f"Cannot encode {n} as small integer opcode")
    return OP_1 + n - 1


def push_data(data: bytes) -> bytes:
    """Minimal push for data up to 255 bytes"""
    if len(data) < OP_PUSHDATA1:
        return bytes([len(data)]) + data
    if len(data) <= 0xFF:
        return bytes([OP_PUSHDATA1, len(data)]) + data
    raise ScriptBuildError(f"Push of {len(data)} bytes not supported")


@dataclass(frozen=True)
class RedeemScript:
    """m-of-n multisig script with its public keys in slot order"""

    script: bytes
    pubkeys: tuple[bytes, ...]
    required: int = REQUIRED_SIGNATURES

    def hex(self) -> str:
        return self.script.hex()

    def slot_of(self, role: KeyRole) -> int:
        return list(KeyRole).index(role)

    def scriptpubkey(self, address_type: AddressType = AddressType.P2SH) -> bytes:
        if address_type == AddressType.P2WSH:
            return script_to_p2wsh_scriptpubkey(self.script)
        return script_to_p2sh_scriptpubkey(self.script)


def _validate_pubkey(role: KeyRole, key: HDKey | bytes) -> bytes:
    pubkey = key.get_public_key_bytes() if isinstance(key, HDKey) else key
    if not isinstance(pubkey, bytes) or len(pubkey) != 33 or pubkey[0] not in (0x02, 0x03):
        raise ScriptBuildError(f"Malformed {role.value} key: expected 33-byte compressed pubkey")
    try:
        PublicKey(pubkey)
    except ValueError as e:
        raise ScriptBuildError(f"Malformed {role.value} key: not on curve") from e
    return pubkey


def build_multisig_script(pubkeys: list[bytes], required: int = REQUIRED_SIGNATURES) -> bytes:
    """OP_m <pubkey>... OP_n OP_CHECKMULTISIG, keys in the given order"""
    if not 1 <= required <= len(pubkeys):
        raise ScriptBuildError(f"Invalid multisig policy {required}-of-{len(pubkeys)}")
    script = bytes([small_int_opcode(required)])
    for pubkey in pubkeys:
        script += push_data(pubkey)
    script += bytes([small_int_opcode(len(pubkeys)), OP_CHECKMULTISIG])
    return script


class RedeemScriptBuilder:
    """Builds the wallet's 2-of-3 redeem script and address for one derivation path"""

    def __init__(
        self,
        network: NetworkType = NetworkType.MAINNET,
        address_type: AddressType = AddressType.P2SH,
    ):
        self.network = NetworkType(network)
        self.address_type = AddressType(address_type)

    def build(
        self, primary: HDKey | bytes, backup: HDKey | bytes, cosigner: HDKey | bytes
    ) -> tuple[RedeemScript, str]:
        keys = {KeyRole.PRIMARY: primary, KeyRole.BACKUP: backup, KeyRole.COSIGNER: cosigner}
        pubkeys = tuple(_validate_pubkey(role, keys[role]) for role in KeyRole)
        if len(pubkeys) != TOTAL_KEYS:
            raise ScriptBuildError(f"Expected {TOTAL_KEYS} keys, got {len(pubkeys)}")

        script = build_multisig_script(list(pubkeys), REQUIRED_SIGNATURES)
        redeem_script = RedeemScript(script=script, pubkeys=pubkeys)
        address = self.address_for(redeem_script)

        logger.debug(f"Built {REQUIRED_SIGNATURES}-of-{TOTAL_KEYS} script for {address}")
        return redeem_script, address

    def address_for(self, redeem_script: RedeemScript) -> str:
        if self.address_type == AddressType.P2WSH:
            return script_to_p2wsh_address(redeem_script.script, self.network)
        return script_to_p2sh_address(redeem_script.script, self.network)
