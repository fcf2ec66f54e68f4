"""
Tests for wallet settings.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from btwallet.config import WalletSettings, get_settings
from btwallet.wallet.models import AddressType, FeeStrategy, NetworkType


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Keep host environment and .env files out of the settings under test"""
    monkeypatch.chdir(tmp_path)
    for name in ("NETWORK", "ADDRESS_TYPE", "FEE_STRATEGY", "DUST_THRESHOLD"):
        monkeypatch.delenv(f"BTWALLET_{name}", raising=False)


class TestWalletSettings:
    def test_default_values(self) -> None:
        settings = WalletSettings()
        assert settings.network == NetworkType.MAINNET
        assert settings.address_type == AddressType.P2SH
        assert settings.fee_strategy == FeeStrategy.OPTIMAL
        assert settings.dust_threshold == 546
        assert settings.fee_tolerance_ratio == 0.5
        assert settings.fee_tolerance_min == 1_000
        assert settings.randomize_change_idx is True

    def test_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BTWALLET_NETWORK", "testnet")
        monkeypatch.setenv("BTWALLET_ADDRESS_TYPE", "p2wsh")
        monkeypatch.setenv("BTWALLET_DUST_THRESHOLD", "1000")

        settings = get_settings()

        assert settings.network == NetworkType.TESTNET
        assert settings.address_type == AddressType.P2WSH
        assert settings.dust_threshold == 1_000

    def test_from_env_file(self, tmp_path) -> None:
        (tmp_path / ".env").write_text("BTWALLET_FEE_STRATEGY=low_priority\n")
        assert WalletSettings().fee_strategy == FeeStrategy.LOW_PRIORITY

    def test_invalid_network(self) -> None:
        with pytest.raises(ValidationError):
            WalletSettings(network="signet")

    def test_negative_dust_threshold(self) -> None:
        with pytest.raises(ValidationError):
            WalletSettings(dust_threshold=-1)

    def test_gap_limit_positive(self) -> None:
        with pytest.raises(ValidationError):
            WalletSettings(gap_limit=0)
