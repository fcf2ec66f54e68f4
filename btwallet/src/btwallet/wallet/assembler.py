"""
Transaction assembly for multisig payments.

build_tx() selects and reserves UTXOs, re-derives each input's redeem
script under the key-index recorded for its address and lays out the
outputs. sign() adds the primary signature to every input; the cosigner
slot is filled by the broadcaster. send() optionally lets the broadcaster
verify the fee, then broadcasts.

Reserved UTXOs are released on every failure after selection and marked
spent once the broadcaster accepts the transaction.
"""

from __future__ import annotations

import random
import warnings
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from loguru import logger

from btwallet.backends.base import SignedTransaction
from btwallet.errors import (
    DerivationError,
    FeeMismatchError,
    FeeOverrideWarning,
    ScriptBuildError,
)
from btwallet.wallet.address import address_to_scriptpubkey
from btwallet.wallet.bip32 import HDKey
from btwallet.wallet.models import (
    UTXO,
    AddressType,
    CoinSelection,
    FeeStrategy,
    KeyRole,
    Output,
)
from btwallet.wallet.script import RedeemScript
from btwallet.wallet.signing import (
    create_partial_script_sig,
    create_partial_witness,
    sign_multisig_input,
)
from btwallet.wallet.tx import TxInput, TxOutput, get_txid, serialize_tx

if TYPE_CHECKING:
    from btwallet.wallet.service import Wallet


OutputsLike = list[Output] | list[tuple[str, int]] | list[dict] | dict[str, int]


def normalize_outputs(outputs: OutputsLike) -> list[Output]:
    """
    Accepts {address: value}, [(address, value)], [{"address": ..., "value": ...}]
    or a list of Output.
    """
    if isinstance(outputs, dict):
        items = list(outputs.items())
    else:
        items = list(outputs)

    result = []
    for item in items:
        if isinstance(item, Output):
            out = item
        elif isinstance(item, dict):
            out = Output(address=item["address"], value=item["value"])
        else:
            address, value = item
            out = Output(address=address, value=value)
        if not isinstance(out.value, int) or isinstance(out.value, bool):
            raise ValueError(f"Output value must be an integer amount of satoshis: {out.value!r}")
        result.append(out)
    return result


@dataclass
class InputSpend:
    """Everything needed to sign one input"""

    utxo_txid: str
    utxo_vout: int
    value: int
    address: str
    path: str
    key_index: int
    redeem_script: RedeemScript


@dataclass
class UnsignedTx:
    inputs: list[TxInput]
    outputs: list[TxOutput]
    spends: list[InputSpend]
    selection: CoinSelection
    change_index: int | None = None
    fee_discrepancy: int | None = None

    @property
    def fee(self) -> int:
        return self.selection.fee

    @property
    def txid(self) -> str:
        return get_txid(self.inputs, self.outputs)

    def raw(self) -> bytes:
        return serialize_tx(self.inputs, self.outputs)


class TransactionAssembler:
    def __init__(self, wallet: Wallet):
        self.wallet = wallet

    async def build_tx(
        self,
        outputs: OutputsLike,
        change_address: str | None = None,
        fee_strategy: FeeStrategy = FeeStrategy.OPTIMAL,
        force_fee: int | None = None,
        allow_zero_conf: bool = False,
        randomize_change_idx: bool | None = None,
    ) -> UnsignedTx:
        """
        Build the unsigned transaction.

        Raises:
            InsufficientFundsError: Not enough confirmed (or permitted unconfirmed) value
            UtxoLockConflictError: Selected outputs are reserved by another build
            DerivationError: A selected UTXO's address is unknown to the address index
        """
        payments = normalize_outputs(outputs)
        for out in payments:
            address_to_scriptpubkey(out.address)
        if change_address is not None:
            address_to_scriptpubkey(change_address)
        if randomize_change_idx is None:
            randomize_change_idx = self.wallet.settings.randomize_change_idx

        selection = await self.wallet.selector.select(
            payments,
            strategy=fee_strategy,
            allow_zero_conf=allow_zero_conf,
            force_fee=force_fee,
        )

        try:
            spends = [await self._spend_for(utxo) for utxo in selection.utxos]
            inputs = [TxInput(txid=s.utxo_txid, vout=s.utxo_vout, value=s.value) for s in spends]
            tx_outputs = [TxOutput(address=out.address, value=out.value) for out in payments]

            change_index = None
            if selection.change_value > 0:
                if change_address is None:
                    change_address = await self.wallet.get_new_change_address()
                change_index = (
                    random.randint(0, len(tx_outputs)) if randomize_change_idx else len(tx_outputs)
                )
                tx_outputs.insert(
                    change_index, TxOutput(address=change_address, value=selection.change_value)
                )

            unsigned = UnsignedTx(
                inputs=inputs,
                outputs=tx_outputs,
                spends=spends,
                selection=selection,
                change_index=change_index,
            )
            if force_fee is not None:
                unsigned.fee_discrepancy = self._check_forced_fee(force_fee, selection)
        except BaseException:
            await self.wallet.selector.release(selection)
            raise

        logger.info(
            f"Built unsigned tx with {len(inputs)} inputs, {len(tx_outputs)} outputs, "
            f"fee {unsigned.fee}"
        )
        return unsigned

    async def sign(self, unsigned: UnsignedTx) -> SignedTransaction:
        """
        Add the primary signature to every input.

        A transaction whose reservation was released by an earlier failure
        takes it back before signing.

        Raises:
            WalletLockedError: If the vault is locked
            UtxoLockConflictError: If the released UTXOs were reserved by another build
        """
        address_type = self.wallet.settings.address_type
        await self.wallet.selector.reacquire(unsigned.selection)

        def sign_with(primary_master: HDKey) -> list[TxInput]:
            signed_inputs = []
            for i, spend in enumerate(unsigned.spends):
                key = primary_master.derive(spend.path)
                signature = sign_multisig_input(
                    unsigned.inputs,
                    unsigned.outputs,
                    i,
                    spend.redeem_script,
                    key,
                    address_type,
                )
                signatures = {KeyRole.PRIMARY: signature}
                if address_type == AddressType.P2WSH:
                    witness = create_partial_witness(signatures, spend.redeem_script)
                    signed_inputs.append(replace(unsigned.inputs[i], witness=witness))
                else:
                    script_sig = create_partial_script_sig(signatures, spend.redeem_script)
                    signed_inputs.append(replace(unsigned.inputs[i], script_sig=script_sig))
            return signed_inputs

        try:
            signed_inputs = self.wallet.vault.with_unlocked(sign_with)
        except BaseException:
            await self.wallet.selector.release(unsigned.selection)
            raise

        raw = serialize_tx(signed_inputs, unsigned.outputs)
        logger.debug(f"Signed {len(signed_inputs)} inputs with primary key")
        return SignedTransaction(
            raw=raw.hex(),
            txid=get_txid(signed_inputs, unsigned.outputs),
            fee=unsigned.fee,
            paths=[spend.path for spend in unsigned.spends],
            outpoints=unsigned.selection.outpoints,
            selection=unsigned.selection,
        )

    async def send(self, signed: SignedTransaction, api_check_fee: bool = True) -> str:
        """
        Hand the signed transaction to the broadcaster.

        Only a reservation held by this transaction's own selection is
        released on failure; transactions signed elsewhere leave locks alone.

        Raises:
            FeeMismatchError: If api_check_fee is set and the broadcaster rejects the fee
            UtxoLockConflictError: If the released UTXOs were reserved by another build
        """
        selector = self.wallet.selector
        selection = signed.selection
        if selection is not None:
            await selector.reacquire(selection)
        try:
            if api_check_fee and not await self.wallet.broadcaster.check_fee(signed):
                logger.warning(f"Fee verification rejected fee of {signed.fee} sat")
                raise FeeMismatchError(signed.fee)
            txid = await self.wallet.broadcaster.send(signed)
        except BaseException:
            if selection is not None:
                await selector.release(selection)
            raise

        await self.wallet.listing.mark_spent(signed.outpoints)
        if selection is not None:
            selection.locked = False
        logger.info(f"Transaction {txid} sent")
        return txid

    async def _spend_for(self, utxo: UTXO) -> InputSpend:
        record = await self.wallet.address_index.lookup(utxo.address)
        if record is None:
            raise DerivationError(f"No path recorded for address {utxo.address}")
        path, key_index = record

        redeem_script, address = self.wallet.get_redeem_script(path, key_index)
        if address != utxo.address:
            raise ScriptBuildError(
                f"Derived {address} for {path} (key-index {key_index}), expected {utxo.address}"
            )

        return InputSpend(
            utxo_txid=utxo.txid,
            utxo_vout=utxo.vout,
            value=utxo.value,
            address=utxo.address,
            path=path,
            key_index=key_index,
            redeem_script=redeem_script,
        )

    def _check_forced_fee(self, force_fee: int, selection: CoinSelection) -> int | None:
        settings = self.wallet.settings
        computed = selection.estimated_fee
        tolerance = max(settings.fee_tolerance_min, int(computed * settings.fee_tolerance_ratio))
        discrepancy = force_fee - computed
        if abs(discrepancy) <= tolerance:
            return None

        logger.warning(
            f"Forced fee {force_fee} sat differs from computed {computed} sat "
            f"by more than {tolerance} sat, using forced fee"
        )
        warnings.warn(FeeOverrideWarning(force_fee, computed), stacklevel=2)
        return discrepancy
