"""
Bitcoin transaction signing utilities for 2-of-3 multisig inputs.

P2SH inputs use the legacy sighash, P2WSH inputs use BIP143. Partially
signed inputs keep one slot per key of the redeem script (OP_0 / empty
placeholder for missing signatures) so the cosigner can fill its own slot.
"""

from __future__ import annotations

from btwallet.constants import SIGHASH_ALL
from btwallet.errors import TransactionSigningError
from btwallet.wallet.bip32 import HDKey
from btwallet.wallet.models import AddressType, KeyRole
from btwallet.wallet.script import OP_0, RedeemScript, push_data
from btwallet.wallet.tx import (
    TxInput,
    TxOutput,
    hash256,
    serialize_input,
    serialize_outpoint,
    serialize_output,
    varint,
)


def compute_sighash_legacy(
    inputs: list[TxInput],
    outputs: list[TxOutput],
    input_index: int,
    script_code: bytes,
    sighash_type: int = SIGHASH_ALL,
    version: int = 1,
    locktime: int = 0,
) -> bytes:
    """Pre-segwit SIGHASH_ALL digest: every scriptSig emptied except the signed input's."""
    if input_index >= len(inputs):
        raise TransactionSigningError("Input index out of range")

    try:
        preimage = version.to_bytes(4, "little")
        preimage += varint(len(inputs))
        for i, inp in enumerate(inputs):
            preimage += serialize_input(inp, script_code if i == input_index else b"")
        preimage += varint(len(outputs))
        for out in outputs:
            preimage += serialize_output(out)
        preimage += locktime.to_bytes(4, "little")
        preimage += sighash_type.to_bytes(4, "little")
    except ValueError as e:
        raise TransactionSigningError(f"Failed to compute sighash: {e}") from e

    return hash256(preimage)


def compute_sighash_segwit(
    inputs: list[TxInput],
    outputs: list[TxOutput],
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int = SIGHASH_ALL,
    version: int = 1,
    locktime: int = 0,
) -> bytes:
    """BIP143 digest for a witness input."""
    if input_index >= len(inputs):
        raise TransactionSigningError("Input index out of range")

    try:
        hash_prevouts = hash256(b"".join(serialize_outpoint(i.txid, i.vout) for i in inputs))
        hash_sequence = hash256(b"".join(i.sequence.to_bytes(4, "little") for i in inputs))
        hash_outputs = hash256(b"".join(serialize_output(out) for out in outputs))

        target_input = inputs[input_index]

        preimage = (
            version.to_bytes(4, "little")
            + hash_prevouts
            + hash_sequence
            + serialize_outpoint(target_input.txid, target_input.vout)
            + varint(len(script_code))
            + script_code
            + value.to_bytes(8, "little")
            + target_input.sequence.to_bytes(4, "little")
            + hash_outputs
            + locktime.to_bytes(4, "little")
            + sighash_type.to_bytes(4, "little")
        )
    except ValueError as e:
        raise TransactionSigningError(f"Failed to compute sighash: {e}") from e

    return hash256(preimage)


def sign_multisig_input(
    inputs: list[TxInput],
    outputs: list[TxOutput],
    input_index: int,
    redeem_script: RedeemScript,
    key: HDKey,
    address_type: AddressType = AddressType.P2SH,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """Sign a multisig input using coincurve.

    Args:
        inputs: All transaction inputs (values needed for P2WSH)
        outputs: All transaction outputs
        input_index: Index of the input to sign
        redeem_script: Redeem (or witness) script of the spent output
        key: Private key for one of the script's slots
        address_type: P2SH (legacy sighash) or P2WSH (BIP143)
        sighash_type: Sighash type (default SIGHASH_ALL = 1)

    Returns:
        DER-encoded signature with sighash type byte appended
    """
    if key.get_public_key_bytes() not in redeem_script.pubkeys:
        raise TransactionSigningError(f"Key does not belong to the script of input {input_index}")

    if address_type == AddressType.P2WSH:
        sighash = compute_sighash_segwit(
            inputs,
            outputs,
            input_index,
            redeem_script.script,
            inputs[input_index].value,
            sighash_type,
        )
    else:
        sighash = compute_sighash_legacy(
            inputs, outputs, input_index, redeem_script.script, sighash_type
        )

    # The sighash is already SHA256d
    return key.sign(sighash) + bytes([sighash_type])


def signature_slots(signatures: dict[KeyRole, bytes]) -> list[bytes]:
    """One entry per key of the script in party order, empty for missing signatures."""
    return [signatures.get(role, b"") for role in KeyRole]


def create_partial_script_sig(
    signatures: dict[KeyRole, bytes], redeem_script: RedeemScript
) -> bytes:
    """OP_0 <slot>... <redeem script>; OP_0 marks an unsigned slot."""
    script_sig = bytes([OP_0])
    for sig in signature_slots(signatures):
        script_sig += push_data(sig) if sig else bytes([OP_0])
    script_sig += push_data(redeem_script.script)
    return script_sig


def create_partial_witness(
    signatures: dict[KeyRole, bytes], redeem_script: RedeemScript
) -> list[bytes]:
    return [b""] + signature_slots(signatures) + [redeem_script.script]
