"""
Tests for coin selection.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from btwallet.backends.memory import InMemoryUtxoListing
from btwallet.errors import InsufficientFundsError, UtxoLockConflictError
from btwallet.wallet.coin_selection import CoinSelector
from btwallet.wallet.models import CoinSelection, FeeStrategy, Output


@pytest.fixture
def selector(listing, fee_oracle) -> CoinSelector:
    return CoinSelector("wallet-1", listing, fee_oracle)


def assert_conserved(selection: CoinSelection, outputs: list[Output]) -> None:
    target = sum(out.value for out in outputs)
    assert selection.total_value == target + selection.change_value + selection.fee
    assert selection.total_value == sum(u.value for u in selection.utxos)


class TestEstimateFee:
    def test_fee_per_started_kilobyte(self, selector):
        # 10 + 297 + 2 * 34 = 375 bytes
        assert selector.estimate_fee(1, 2, 10_000) == 10_000
        # 10 + 4 * 297 + 2 * 34 = 1266 bytes
        assert selector.estimate_fee(4, 2, 1_000) == 2_000


class TestCoinSelector:
    @pytest.mark.asyncio
    async def test_single_input_with_change(self, selector, listing, utxo_factory):
        utxo = utxo_factory(100_000)
        listing.add(utxo)
        outputs = [Output("addr", 50_000)]

        selection = await selector.select(outputs)

        assert selection.utxos == [utxo]
        assert selection.fee == 1_000
        assert selection.change_value == 49_000
        assert selection.locked
        assert listing.is_locked(utxo.outpoint)
        assert_conserved(selection, outputs)

    @pytest.mark.asyncio
    async def test_insufficient_funds(self, selector, listing, utxo_factory):
        listing.add(utxo_factory(100_000))

        with pytest.raises(InsufficientFundsError) as exc_info:
            await selector.select([Output("addr", 150_000)])

        assert exc_info.value.shortfall == 51_000
        assert exc_info.value.available == 100_000

    @pytest.mark.asyncio
    async def test_no_utxos(self, selector):
        with pytest.raises(InsufficientFundsError) as exc_info:
            await selector.select([Output("addr", 10_000)])
        assert exc_info.value.shortfall == 11_000

    @pytest.mark.asyncio
    async def test_largest_first(self, selector, listing, utxo_factory):
        for n, value in enumerate((30_000, 20_000, 70_000, 5_000)):
            listing.add(utxo_factory(value, n=n))
        outputs = [Output("addr", 80_000)]

        selection = await selector.select(outputs)

        assert [u.value for u in selection.utxos] == [70_000, 30_000]
        assert selection.fee == 1_000
        assert selection.change_value == 19_000
        assert_conserved(selection, outputs)

    @pytest.mark.asyncio
    async def test_fee_reestimated_per_input(self, selector, listing, utxo_factory):
        for n in range(4):
            listing.add(utxo_factory(10_000, n=n))
        outputs = [Output("addr", 35_000)]

        selection = await selector.select(outputs)

        # four inputs push the transaction past one kilobyte
        assert len(selection.utxos) == 4
        assert selection.fee == 2_000
        assert selection.change_value == 3_000
        assert_conserved(selection, outputs)

    @pytest.mark.asyncio
    async def test_dust_change_goes_to_fee(self, selector, listing, utxo_factory):
        listing.add(utxo_factory(100_000))
        outputs = [Output("addr", 98_700)]

        selection = await selector.select(outputs)

        assert selection.change_value == 0
        assert selection.fee == 1_300
        assert_conserved(selection, outputs)

    @pytest.mark.asyncio
    async def test_forced_fee(self, selector, listing, utxo_factory):
        listing.add(utxo_factory(100_000))
        outputs = [Output("addr", 50_000)]

        selection = await selector.select(outputs, force_fee=5_000)

        assert selection.fee == 5_000
        assert selection.estimated_fee == 1_000
        assert selection.change_value == 45_000
        assert_conserved(selection, outputs)

    @pytest.mark.asyncio
    async def test_fee_strategy_rate(self, selector, listing, utxo_factory):
        listing.add(utxo_factory(100_000))

        selection = await selector.select(
            [Output("addr", 50_000)], strategy=FeeStrategy.LOW_PRIORITY
        )

        assert selection.fee_per_kb == 500
        assert selection.fee == 500

    @pytest.mark.asyncio
    async def test_unconfirmed_excluded_by_default(self, selector, listing, utxo_factory):
        listing.add(utxo_factory(100_000, confirmations=0))

        with pytest.raises(InsufficientFundsError):
            await selector.select([Output("addr", 50_000)])

    @pytest.mark.asyncio
    async def test_zero_conf_retry(self, selector, listing, utxo_factory):
        confirmed = utxo_factory(30_000, n=1)
        unconfirmed = utxo_factory(100_000, confirmations=0, n=2)
        listing.add(confirmed)
        listing.add(unconfirmed)

        selection = await selector.select([Output("addr", 50_000)], allow_zero_conf=True)

        assert unconfirmed in selection.utxos

    @pytest.mark.asyncio
    async def test_confirmed_preferred(self, selector, listing, utxo_factory):
        confirmed = utxo_factory(60_000, confirmations=3, n=1)
        listing.add(confirmed)
        listing.add(utxo_factory(100_000, confirmations=0, n=2))

        selection = await selector.select([Output("addr", 50_000)], allow_zero_conf=True)

        assert selection.utxos == [confirmed]

    @pytest.mark.asyncio
    async def test_locked_utxos_skipped(self, selector, listing, utxo_factory):
        locked = utxo_factory(100_000, n=1)
        locked.locked = True
        listing.add(locked)

        with pytest.raises(InsufficientFundsError):
            await selector.select([Output("addr", 50_000)])

    @pytest.mark.asyncio
    async def test_lock_conflict(self, selector, listing, utxo_factory):
        listing.add(utxo_factory(100_000))
        listing.try_lock = AsyncMock(return_value=False)

        with pytest.raises(UtxoLockConflictError):
            await selector.select([Output("addr", 50_000)])

    @pytest.mark.asyncio
    async def test_without_locking(self, selector, listing, utxo_factory):
        utxo = utxo_factory(100_000)
        listing.add(utxo)

        selection = await selector.select([Output("addr", 50_000)], lock_utxos=False)

        assert not selection.locked
        assert not listing.is_locked(utxo.outpoint)

    @pytest.mark.asyncio
    async def test_release(self, selector, listing, utxo_factory):
        utxo = utxo_factory(100_000)
        listing.add(utxo)
        selection = await selector.select([Output("addr", 50_000)])

        await selector.release(selection)

        assert not selection.locked
        assert not listing.is_locked(utxo.outpoint)

    @pytest.mark.asyncio
    async def test_concurrent_selections_do_not_share_utxos(self, fee_oracle, utxo_factory):
        listing = InMemoryUtxoListing([utxo_factory(100_000)])
        selector = CoinSelector("wallet-1", listing, fee_oracle)
        outputs = [Output("addr", 50_000)]

        results = await asyncio.gather(
            selector.select(outputs), selector.select(outputs), return_exceptions=True
        )

        selections = [r for r in results if isinstance(r, CoinSelection)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(selections) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], (InsufficientFundsError, UtxoLockConflictError))

    @pytest.mark.asyncio
    async def test_invalid_outputs(self, selector):
        with pytest.raises(ValueError):
            await selector.select([])
        with pytest.raises(ValueError):
            await selector.select([Output("addr", 0)])
        with pytest.raises(ValueError):
            await selector.select([Output("addr", 1_000)], force_fee=-1)
