"""
Configuration management using pydantic-settings.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from btwallet.constants import DEFAULT_DUST_THRESHOLD
from btwallet.wallet.models import AddressType, FeeStrategy, NetworkType


class WalletSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BTWALLET_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    network: NetworkType = NetworkType.MAINNET
    address_type: AddressType = AddressType.P2SH

    # Fee policy
    fee_strategy: FeeStrategy = FeeStrategy.OPTIMAL
    dust_threshold: int = Field(default=DEFAULT_DUST_THRESHOLD, ge=0)
    fee_tolerance_ratio: float = Field(
        default=0.5, ge=0.0, description="Forced fee may differ from computed fee by this ratio"
    )
    fee_tolerance_min: int = Field(
        default=1_000, ge=0, description="Lower bound of the forced fee tolerance in sats"
    )

    randomize_change_idx: bool = True
    gap_limit: int = Field(default=200, ge=1)
    discovery_batch_size: int = Field(default=20, ge=1)

    log_level: str = "INFO"


def get_settings() -> WalletSettings:
    return WalletSettings()
