"""Merging of PSBTs that spend different inputs."""

from __future__ import annotations

from itertools import chain, groupby
from operator import attrgetter

from payjoin.primitives import Transaction
from payjoin.psbt import Psbt

__all__ = ["merge_unsigned_tx"]


def merge_unsigned_tx(acc: Psbt, psbt: Psbt) -> Psbt:
    """Merge the unsigned transactions of two PSBTs.

    Only inputs and outputs are merged. Adjacent inputs spending the same
    outpoint are collapsed to the first; duplicate outputs are all kept.
    Witness UTXOs are carried over by position.
    """
    combined = chain(acc.unsigned_tx.inputs, psbt.unsigned_tx.inputs)
    inputs = [next(group) for _, group in groupby(combined, key=attrgetter("previous_output"))]
    tx = Transaction(
        version=acc.unsigned_tx.version,
        lock_time=acc.unsigned_tx.lock_time,
        inputs=inputs,
        outputs=[*acc.unsigned_tx.outputs, *psbt.unsigned_tx.outputs],
    )
    merged = Psbt.from_unsigned_tx(tx)
    for target, source in zip(merged.inputs, chain(acc.inputs, psbt.inputs)):
        target.witness_utxo = source.witness_utxo
    return merged