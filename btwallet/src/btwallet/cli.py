"""
Multisig Wallet CLI - offline key and address derivation.
"""

from __future__ import annotations

import sys
from pathlib import Path

import typer
from loguru import logger

from btwallet.config import get_settings
from btwallet.errors import WalletError
from btwallet.wallet.bip32 import BIP32Path, HDKey, mnemonic_to_seed
from btwallet.wallet.models import AddressType, NetworkType
from btwallet.wallet.resolver import PathResolver
from btwallet.wallet.script import RedeemScriptBuilder
from btwallet.wallet.vault import compute_checksum

app = typer.Typer(
    name="bt-wallet",
    help="Multisig Wallet Key Management",
    add_completion=False,
)


def setup_logging(level: str | None = None) -> None:
    """Configure loguru logging, defaulting to the configured level."""
    level = level or get_settings().log_level
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def _load_mnemonic(mnemonic: str | None, mnemonic_file: Path | None) -> str:
    if mnemonic_file:
        if not mnemonic_file.exists():
            logger.error(f"Mnemonic file not found: {mnemonic_file}")
            raise typer.Exit(1)
        mnemonic = mnemonic_file.read_text().strip()

    if not mnemonic:
        logger.error("Mnemonic required. Use --mnemonic, --mnemonic-file, or MNEMONIC env var")
        raise typer.Exit(1)
    return mnemonic


@app.command()
def xpub(
    mnemonic: str = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="BIP39 mnemonic"),
    mnemonic_file: Path | None = typer.Option(
        None, "--mnemonic-file", "-f", help="Path to mnemonic file"
    ),
    passphrase: str = typer.Option("", "--passphrase", "-p", envvar="PASSPHRASE"),
    path: str = typer.Option("m/0'", "--path", help="Derivation path of the exported key"),
    network: NetworkType = typer.Option(NetworkType.MAINNET, "--network", "-n"),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Export the extended public key at a path (m/ for a backup master key)."""
    setup_logging(log_level)
    seed = mnemonic_to_seed(_load_mnemonic(mnemonic, mnemonic_file), passphrase)
    master = HDKey.from_seed(seed)
    try:
        key = master.derive(path)
    except WalletError as e:
        logger.error(f"Failed to derive {path}: {e}")
        raise typer.Exit(1)

    extended_key = key.to_extended_key(network, private=False)
    typer.echo(f"{extended_key}  {BIP32Path.parse(path).as_public()}")


@app.command()
def checksum(
    mnemonic: str = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="BIP39 mnemonic"),
    mnemonic_file: Path | None = typer.Option(
        None, "--mnemonic-file", "-f", help="Path to mnemonic file"
    ),
    passphrase: str = typer.Option("", "--passphrase", "-p", envvar="PASSPHRASE"),
    network: NetworkType = typer.Option(NetworkType.MAINNET, "--network", "-n"),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Print the wallet checksum for a primary mnemonic and passphrase."""
    setup_logging(log_level)
    seed = mnemonic_to_seed(_load_mnemonic(mnemonic, mnemonic_file), passphrase)
    master = HDKey.from_seed(seed)
    typer.echo(compute_checksum(master, network))


@app.command("derive-address")
def derive_address(
    path: str = typer.Argument(..., help="Wallet path, e.g. M/0'/0/5"),
    primary_xpub: str = typer.Option(..., "--primary", help="Primary key at M/{key_index}'"),
    backup_xpub: str = typer.Option(..., "--backup", help="Backup master key (M/)"),
    cosigner_xpub: str = typer.Option(..., "--cosigner", help="Cosigner key at M/{key_index}'"),
    network: NetworkType = typer.Option(NetworkType.MAINNET, "--network", "-n"),
    address_type: AddressType = typer.Option(AddressType.P2SH, "--address-type", "-t"),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Derive the multisig address and redeem script for a wallet path."""
    setup_logging(log_level)

    try:
        parsed = BIP32Path.parse(path)
        key_index = parsed.key_index
        resolver = PathResolver(
            "cli",
            {key_index: HDKey.from_extended_key(primary_xpub)},
            HDKey.from_extended_key(backup_xpub),
            {key_index: HDKey.from_extended_key(cosigner_xpub)},
        )
        keys = resolver.resolve_for_path(parsed)
        redeem_script, address = RedeemScriptBuilder(network, address_type).build(
            keys.primary, keys.backup, keys.cosigner
        )
    except WalletError as e:
        logger.error(f"Failed to derive address for {path}: {e}")
        raise typer.Exit(1)

    typer.echo(f"Path:          {parsed.as_public()}")
    typer.echo(f"Address:       {address}")
    typer.echo(f"Redeem script: {redeem_script.hex()}")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
