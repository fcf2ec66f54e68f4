"""
Bitcoin address generation utilities.
"""

from __future__ import annotations

import hashlib

import base58
import bech32

from btwallet.wallet.models import NetworkType

# (P2PKH, P2SH) base58 version bytes
BASE58_VERSIONS = {
    NetworkType.MAINNET: (0x00, 0x05),
    NetworkType.TESTNET: (0x6F, 0xC4),
    NetworkType.REGTEST: (0x6F, 0xC4),
}

BECH32_HRPS = {
    NetworkType.MAINNET: "bc",
    NetworkType.TESTNET: "tb",
    NetworkType.REGTEST: "bcrt",
}


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def pubkey_to_p2pkh_address(pubkey: bytes, network: NetworkType = NetworkType.MAINNET) -> str:
    """Legacy P2PKH address; also used as the wallet checksum."""
    version = BASE58_VERSIONS[NetworkType(network)][0]
    return base58.b58encode_check(bytes([version]) + hash160(pubkey)).decode("ascii")


def script_to_p2sh_address(script: bytes, network: NetworkType = NetworkType.MAINNET) -> str:
    """
    Convert a redeem script to a P2SH address (BIP16).

    Args:
        script: The redeem script bytes
        network: Network type (mainnet, testnet, regtest)

    Returns:
        Base58check encoded P2SH address
    """
    version = BASE58_VERSIONS[NetworkType(network)][1]
    return base58.b58encode_check(bytes([version]) + hash160(script)).decode("ascii")


def script_to_p2sh_scriptpubkey(script: bytes) -> bytes:
    """Create P2SH scriptPubKey (OP_HASH160 <20-byte-hash> OP_EQUAL)"""
    return bytes([0xA9, 0x14]) + hash160(script) + bytes([0x87])


def script_to_p2wsh_address(script: bytes, network: NetworkType = NetworkType.MAINNET) -> str:
    """
    Convert a witness script to P2WSH (pay-to-witness-script-hash) address.
    BIP173/BIP141 encoding.
    """
    # P2WSH uses SHA256, not HASH160
    script_hash = hashlib.sha256(script).digest()
    result = bech32.encode(BECH32_HRPS[NetworkType(network)], 0, script_hash)
    if result is None:
        raise ValueError(f"Failed to encode P2WSH address for script {script.hex()}")
    return result


def script_to_p2wsh_scriptpubkey(script: bytes) -> bytes:
    """Create P2WSH scriptPubKey (OP_0 <32-byte-hash>)"""
    return bytes([0x00, 0x20]) + hashlib.sha256(script).digest()


def address_to_scriptpubkey(address: str) -> bytes:
    """
    Convert a Bitcoin address to scriptPubKey.

    Supports:
    - P2WPKH / P2WSH (bc1q..., tb1q..., bcrt1q...)
    - P2TR (bc1p...)
    - P2PKH (1..., m..., n...)
    - P2SH (3..., 2...)
    """
    lowered = address.lower()
    if lowered.startswith(("bc1", "tb1", "bcrt1")):
        hrp = lowered.split("1", 1)[0]
        witver, witprog = bech32.decode(hrp, address)
        if witver is None or witprog is None:
            raise ValueError(f"Invalid bech32 address: {address}")

        witprog = bytes(witprog)
        if witver == 0 and len(witprog) in (20, 32):
            return bytes([0x00, len(witprog)]) + witprog
        if witver == 1 and len(witprog) == 32:
            return bytes([0x51, 0x20]) + witprog

        raise ValueError(f"Unsupported witness version: {witver}")

    try:
        decoded = base58.b58decode_check(address)
    except ValueError as e:
        raise ValueError(f"Invalid base58 address: {address}") from e
    if len(decoded) != 21:
        raise ValueError(f"Invalid base58 address length: {address}")

    version = decoded[0]
    payload = decoded[1:]

    if version in (0x00, 0x6F):
        # OP_DUP OP_HASH160 <20-byte-pubkeyhash> OP_EQUALVERIFY OP_CHECKSIG
        return bytes([0x76, 0xA9, 0x14]) + payload + bytes([0x88, 0xAC])
    if version in (0x05, 0xC4):
        # OP_HASH160 <20-byte-scripthash> OP_EQUAL
        return bytes([0xA9, 0x14]) + payload + bytes([0x87])

    raise ValueError(f"Unknown address version: {version}")


def is_valid_address(address: str) -> bool:
    try:
        address_to_scriptpubkey(address)
    except ValueError:
        return False
    return True
