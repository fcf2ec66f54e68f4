"""
Transaction serialization and size estimation.

Builds raw transactions spending 2-of-3 multisig inputs. Inputs carry
their scriptSig (P2SH) or witness stack (P2WSH); unsigned transactions
have both empty.
"""

from __future__ import annotations

import hashlib
import math
import struct
from dataclasses import dataclass, field

from btwallet.constants import (
    OUTPUT_SIZE,
    REDEEM_SCRIPT_SIZE,
    REQUIRED_SIGNATURES,
    SIGNATURE_SIZE,
    TX_OVERHEAD_SIZE,
)
from btwallet.wallet.address import address_to_scriptpubkey
from btwallet.wallet.models import AddressType


@dataclass
class TxInput:
    """Transaction input."""

    txid: str
    vout: int
    value: int
    script_sig: bytes = b""
    witness: list[bytes] = field(default_factory=list)
    sequence: int = 0xFFFFFFFF


@dataclass
class TxOutput:
    """Transaction output."""

    address: str
    value: int
    scriptpubkey: bytes = b""

    def script(self) -> bytes:
        return self.scriptpubkey or address_to_scriptpubkey(self.address)


def varint(n: int) -> bytes:
    """Encode integer as Bitcoin varint."""
    if n < 0xFD:
        return bytes([n])
    elif n <= 0xFFFF:
        return bytes([0xFD]) + struct.pack("<H", n)
    elif n <= 0xFFFFFFFF:
        return bytes([0xFE]) + struct.pack("<I", n)
    else:
        return bytes([0xFF]) + struct.pack("<Q", n)


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def serialize_outpoint(txid: str, vout: int) -> bytes:
    """Serialize outpoint (txid:vout)."""
    # txid is in RPC format (big-endian), need to reverse for raw tx
    return bytes.fromhex(txid)[::-1] + struct.pack("<I", vout)


def serialize_input(inp: TxInput, script_sig: bytes | None = None) -> bytes:
    """Serialize a transaction input, optionally overriding its scriptSig."""
    script = inp.script_sig if script_sig is None else script_sig
    result = serialize_outpoint(inp.txid, inp.vout)
    result += varint(len(script))
    result += script
    result += struct.pack("<I", inp.sequence)
    return result


def serialize_output(out: TxOutput) -> bytes:
    """Serialize a transaction output."""
    scriptpubkey = out.script()
    return struct.pack("<Q", out.value) + varint(len(scriptpubkey)) + scriptpubkey


def serialize_tx(
    inputs: list[TxInput],
    outputs: list[TxOutput],
    version: int = 1,
    locktime: int = 0,
    include_witness: bool = True,
) -> bytes:
    """Serialize transaction to bytes; witness section only if any input carries one."""
    has_witness = include_witness and any(inp.witness for inp in inputs)

    result = struct.pack("<I", version)
    if has_witness:
        result += bytes([0x00, 0x01])

    result += varint(len(inputs))
    for inp in inputs:
        result += serialize_input(inp)

    result += varint(len(outputs))
    for out in outputs:
        result += serialize_output(out)

    if has_witness:
        for inp in inputs:
            result += varint(len(inp.witness))
            for item in inp.witness:
                result += varint(len(item))
                result += item

    result += struct.pack("<I", locktime)
    return result


def get_txid(
    inputs: list[TxInput], outputs: list[TxOutput], version: int = 1, locktime: int = 0
) -> str:
    """Calculate txid (double SHA256 of non-witness data)."""
    data = serialize_tx(inputs, outputs, version, locktime, include_witness=False)
    return hash256(data)[::-1].hex()


def estimate_input_size(address_type: AddressType = AddressType.P2SH) -> float:
    """
    Size of one fully signed 2-of-3 input.

    P2SH scriptSig: OP_0 <sig> <sig> OP_PUSHDATA1 <redeem script>.
    P2WSH counts the witness at a quarter weight.
    """
    signatures = REQUIRED_SIGNATURES * (1 + SIGNATURE_SIZE)
    redeem_push = 2 + REDEEM_SCRIPT_SIZE
    if address_type == AddressType.P2WSH:
        witness = 1 + 1 + signatures + 1 + REDEEM_SCRIPT_SIZE
        return 36 + 1 + 4 + witness / 4
    script_sig = 1 + signatures + redeem_push
    return 36 + len(varint(script_sig)) + script_sig + 4


def estimate_size(
    num_inputs: int, num_outputs: int, address_type: AddressType = AddressType.P2SH
) -> int:
    """Estimated (virtual) size in bytes of the signed transaction."""
    size = TX_OVERHEAD_SIZE + num_inputs * estimate_input_size(address_type)
    size += num_outputs * OUTPUT_SIZE
    if address_type == AddressType.P2WSH and num_inputs:
        size += 0.5  # marker + flag
    return math.ceil(size)


def calculate_fee(size: int, fee_per_kb: int) -> int:
    """Fee for every started kilobyte."""
    return max(1, math.ceil(size / 1000)) * fee_per_kb
