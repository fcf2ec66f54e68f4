"""
Tests for transaction serialization and size estimation.
"""

from __future__ import annotations

from btwallet.wallet.models import AddressType
from btwallet.wallet.tx import (
    TxInput,
    TxOutput,
    calculate_fee,
    estimate_input_size,
    estimate_size,
    get_txid,
    hash256,
    serialize_outpoint,
    serialize_tx,
    varint,
)


class TestHash256:
    def test_empty_input(self):
        # SHA256(SHA256("")) = known value
        expected = bytes.fromhex("5df6e0e2761359d30a8275058e299fcc0381534545f55cf43e41983f5d4c9456")
        assert hash256(b"") == expected


class TestVarint:
    """Tests for varint encoding."""

    def test_single_byte(self) -> None:
        assert varint(0) == bytes([0x00])
        assert varint(252) == bytes([0xFC])

    def test_two_bytes(self) -> None:
        assert varint(253) == bytes([0xFD, 0xFD, 0x00])
        assert varint(0x100) == bytes([0xFD, 0x00, 0x01])

    def test_four_bytes(self) -> None:
        assert varint(0x10000) == bytes([0xFE, 0x00, 0x00, 0x01, 0x00])

    def test_eight_bytes(self) -> None:
        result = varint(4294967296)
        assert result[0] == 0xFF
        assert len(result) == 9


class TestSerializeOutpoint:
    def test_serialize_outpoint(self) -> None:
        """Test outpoint serialization reverses txid."""
        txid = "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
        result = serialize_outpoint(txid, 1)

        assert len(result) == 36
        assert result[:32] == bytes.fromhex(txid)[::-1]
        assert result[32:36] == bytes([0x01, 0x00, 0x00, 0x00])


class TestSerializeTx:
    ADDRESS = "3J98t1WpEZ73CNmQviecrnyiWrnqRhWNLy"

    def test_legacy_layout(self) -> None:
        inputs = [TxInput(txid="aa" * 32, vout=0, value=10_000)]
        outputs = [TxOutput(address=self.ADDRESS, value=9_000)]
        raw = serialize_tx(inputs, outputs)

        assert raw[:4] == bytes([0x01, 0x00, 0x00, 0x00])
        assert raw[4] == 1  # input count
        assert raw[-4:] == bytes(4)
        # version + count + outpoint + empty script + sequence + count + output + locktime
        assert len(raw) == 4 + 1 + 36 + 1 + 4 + 1 + (8 + 1 + 23) + 4

    def test_witness_marker_only_with_witness(self) -> None:
        inputs = [TxInput(txid="aa" * 32, vout=0, value=10_000, witness=[b"", b"\x01"])]
        outputs = [TxOutput(address=self.ADDRESS, value=9_000)]

        raw = serialize_tx(inputs, outputs)
        stripped = serialize_tx(inputs, outputs, include_witness=False)

        assert raw[4:6] == bytes([0x00, 0x01])
        assert stripped[4] == 1
        assert get_txid(inputs, outputs) == hash256(stripped)[::-1].hex()

    def test_explicit_scriptpubkey(self) -> None:
        out = TxOutput(address="", value=1, scriptpubkey=b"\x6a")
        assert out.script() == b"\x6a"


class TestSizeEstimation:
    def test_p2sh_input_size(self) -> None:
        assert estimate_input_size(AddressType.P2SH) == 297

    def test_p2wsh_input_smaller(self) -> None:
        assert estimate_input_size(AddressType.P2WSH) < estimate_input_size(AddressType.P2SH)

    def test_estimate_size(self) -> None:
        assert estimate_size(1, 2) == 10 + 297 + 2 * 34
        assert estimate_size(0, 1) == 10 + 34

    def test_calculate_fee_rounds_up_per_kilobyte(self) -> None:
        assert calculate_fee(375, 10_000) == 10_000
        assert calculate_fee(1000, 10_000) == 10_000
        assert calculate_fee(1001, 10_000) == 20_000
        assert calculate_fee(0, 10_000) == 10_000
