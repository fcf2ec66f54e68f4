"""
Coin selection for multisig payments.

Largest-first accumulation with fee re-estimation: every added input
grows the transaction, so the fee is recomputed for the current input
count before checking whether the accumulated value suffices.
"""

from __future__ import annotations

from loguru import logger

from btwallet.backends.base import FeeOracle, UtxoListing
from btwallet.constants import DEFAULT_DUST_THRESHOLD
from btwallet.errors import InsufficientFundsError, UtxoLockConflictError
from btwallet.wallet.models import (
    UTXO,
    AddressType,
    CoinSelection,
    FeeStrategy,
    Output,
    UtxoFilter,
)
from btwallet.wallet.tx import calculate_fee, estimate_size


class CoinSelector:
    def __init__(
        self,
        wallet_id: str,
        listing: UtxoListing,
        fee_oracle: FeeOracle,
        address_type: AddressType = AddressType.P2SH,
        dust_threshold: int = DEFAULT_DUST_THRESHOLD,
    ):
        self.wallet_id = wallet_id
        self.listing = listing
        self.fee_oracle = fee_oracle
        self.address_type = AddressType(address_type)
        self.dust_threshold = dust_threshold

    def estimate_fee(self, num_inputs: int, num_outputs: int, fee_per_kb: int) -> int:
        size = estimate_size(num_inputs, num_outputs, self.address_type)
        return calculate_fee(size, fee_per_kb)

    async def select(
        self,
        outputs: list[Output],
        strategy: FeeStrategy = FeeStrategy.OPTIMAL,
        allow_zero_conf: bool = False,
        force_fee: int | None = None,
        lock_utxos: bool = True,
    ) -> CoinSelection:
        """
        Choose UTXOs covering outputs plus fee.

        Args:
            outputs: Payment outputs
            strategy: Fee strategy used to look up the per-KB rate
            allow_zero_conf: Retry with unconfirmed UTXOs if confirmed ones fall short
            force_fee: Fixed absolute fee instead of the estimate
            lock_utxos: Reserve the selected UTXOs at the listing

        Returns:
            CoinSelection where total_value == target + change_value + fee

        Raises:
            InsufficientFundsError: If no candidate set covers target plus fee
            UtxoLockConflictError: If the reservation was refused
        """
        if not outputs:
            raise ValueError("At least one output is required")
        if any(out.value <= 0 for out in outputs):
            raise ValueError("Output values must be positive")
        if force_fee is not None and force_fee < 0:
            raise ValueError("Forced fee must not be negative")

        target = sum(out.value for out in outputs)
        fee_per_kb = await self.fee_oracle.rate(FeeStrategy(strategy))

        candidates = await self._candidates(include_unconfirmed=False)
        try:
            selection = self._accumulate(candidates, target, len(outputs), fee_per_kb, force_fee)
        except InsufficientFundsError as e:
            if not allow_zero_conf:
                raise
            logger.info(f"Confirmed UTXOs short by {e.shortfall} sat, including unconfirmed")
            candidates = await self._candidates(include_unconfirmed=True)
            selection = self._accumulate(candidates, target, len(outputs), fee_per_kb, force_fee)

        if lock_utxos:
            outpoints = selection.outpoints
            if not await self.listing.try_lock(outpoints):
                raise UtxoLockConflictError(outpoints)
            selection.locked = True
            logger.debug(f"Locked {len(outpoints)} UTXOs")

        logger.info(
            f"Selected {len(selection.utxos)} UTXOs ({selection.total_value} sat) for "
            f"{target} sat, fee {selection.fee}, change {selection.change_value}"
        )
        return selection

    async def reacquire(self, selection: CoinSelection) -> None:
        """
        Take the reservation back after release().

        Raises:
            UtxoLockConflictError: If another selection holds any of the UTXOs
        """
        if selection.locked:
            return
        outpoints = selection.outpoints
        if not await self.listing.try_lock(outpoints):
            raise UtxoLockConflictError(outpoints)
        selection.locked = True
        logger.debug(f"Re-locked {len(outpoints)} UTXOs")

    async def release(self, selection: CoinSelection) -> None:
        """Drop the reservation taken by select()"""
        if selection.locked:
            await self.listing.unlock(selection.outpoints)
            selection.locked = False
            logger.debug(f"Released {len(selection.utxos)} UTXOs")

    async def _candidates(self, include_unconfirmed: bool) -> list[UTXO]:
        filters = UtxoFilter(
            min_confirmations=0 if include_unconfirmed else 1,
            include_locked=False,
        )
        utxos = await self.listing.list(self.wallet_id, filters)
        eligible = [u for u in utxos if not u.locked]
        # largest first, outpoint as tie-break keeps selection deterministic
        eligible.sort(key=lambda u: (-u.value, u.outpoint))
        return eligible

    def _fee(
        self, num_inputs: int, num_outputs: int, fee_per_kb: int, force_fee: int | None
    ) -> int:
        if force_fee is not None:
            return force_fee
        return self.estimate_fee(num_inputs, num_outputs, fee_per_kb)

    def _accumulate(
        self,
        candidates: list[UTXO],
        target: int,
        num_outputs: int,
        fee_per_kb: int,
        force_fee: int | None,
    ) -> CoinSelection:
        selected: list[UTXO] = []
        total = 0
        # a change output is assumed until proven unnecessary
        fee = self._fee(1, num_outputs + 1, fee_per_kb, force_fee)

        for utxo in candidates:
            selected.append(utxo)
            total += utxo.value
            fee = self._fee(len(selected), num_outputs + 1, fee_per_kb, force_fee)
            if total >= target + fee:
                break

        if total < target + fee:
            fee_without_change = self._fee(len(selected), num_outputs, fee_per_kb, force_fee)
            if not selected or total < target + fee_without_change:
                shortfall = target + fee - total
                raise InsufficientFundsError(shortfall, required=target + fee, available=total)
            # enough for the outputs but not for a change output: leftover goes to fee
            fee = total - target

        change = total - target - fee
        if 0 < change < self.dust_threshold:
            logger.debug(f"Change of {change} sat below dust threshold, adding to fee")
            fee += change
            change = 0

        return CoinSelection(
            utxos=selected,
            total_value=total,
            change_value=change,
            fee=fee,
            fee_per_kb=fee_per_kb,
            estimated_fee=self.estimate_fee(
                len(selected), num_outputs + (1 if change else 0), fee_per_kb
            ),
        )
