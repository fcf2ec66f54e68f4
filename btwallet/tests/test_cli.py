"""
Tests for the offline key and address CLI.
"""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from btwallet.cli import app
from btwallet.wallet.models import NetworkType
from btwallet.wallet.resolver import PathResolver
from btwallet.wallet.script import RedeemScriptBuilder
from btwallet.wallet.vault import compute_checksum

runner = CliRunner()


@pytest.fixture
def network_keys(primary_master, backup_public_key, cosigner_keys):
    network = NetworkType.TESTNET
    return {
        "primary": primary_master.derive("m/0'").to_extended_key(network, private=False),
        "backup": backup_public_key.to_extended_key(network),
        "cosigner": cosigner_keys[0].to_extended_key(network),
    }


class TestChecksumCommand:
    def test_checksum(self, primary_mnemonic, primary_passphrase, primary_master):
        result = runner.invoke(
            app,
            [
                "checksum",
                "--mnemonic",
                primary_mnemonic,
                "--passphrase",
                primary_passphrase,
                "--network",
                "testnet",
            ],
        )

        assert result.exit_code == 0
        assert compute_checksum(primary_master, NetworkType.TESTNET) in result.output

    def test_mnemonic_file(self, tmp_path, primary_mnemonic, primary_passphrase, primary_master):
        mnemonic_file = tmp_path / "mnemonic.txt"
        mnemonic_file.write_text(primary_mnemonic + "\n")

        result = runner.invoke(
            app, ["checksum", "-f", str(mnemonic_file), "--passphrase", primary_passphrase]
        )

        assert result.exit_code == 0
        assert compute_checksum(primary_master) in result.output

    def test_missing_mnemonic_file(self, tmp_path):
        result = runner.invoke(app, ["checksum", "-f", str(tmp_path / "missing.txt")])
        assert result.exit_code == 1


class TestXpubCommand:
    def test_primary_xpub(self, primary_mnemonic, primary_passphrase, network_keys):
        result = runner.invoke(
            app,
            [
                "xpub",
                "--mnemonic",
                primary_mnemonic,
                "--passphrase",
                primary_passphrase,
                "--network",
                "testnet",
            ],
        )

        assert result.exit_code == 0
        assert network_keys["primary"] in result.output
        assert "M/0'" in result.output

    def test_invalid_path(self, primary_mnemonic):
        result = runner.invoke(app, ["xpub", "--mnemonic", primary_mnemonic, "--path", "x/1"])
        assert result.exit_code == 1


class TestDeriveAddressCommand:
    def test_derive_address(self, network_keys, primary_master, backup_public_key, cosigner_keys):
        result = runner.invoke(
            app,
            [
                "derive-address",
                "M/0'/0/4",
                "--primary",
                network_keys["primary"],
                "--backup",
                network_keys["backup"],
                "--cosigner",
                network_keys["cosigner"],
                "--network",
                "testnet",
            ],
        )

        resolver = PathResolver(
            "expected",
            {0: primary_master.derive("m/0'").neutered()},
            backup_public_key,
            {0: cosigner_keys[0]},
        )
        keys = resolver.resolve_for_path("M/0'/0/4")
        redeem_script, address = RedeemScriptBuilder(NetworkType.TESTNET).build(
            keys.primary, keys.backup, keys.cosigner
        )

        assert result.exit_code == 0
        assert address in result.output
        assert redeem_script.hex() in result.output

    def test_path_without_key_index(self, network_keys):
        result = runner.invoke(
            app,
            [
                "derive-address",
                "M/0/0/4",
                "--primary",
                network_keys["primary"],
                "--backup",
                network_keys["backup"],
                "--cosigner",
                network_keys["cosigner"],
            ],
        )
        assert result.exit_code == 1
