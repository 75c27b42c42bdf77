"""Receiver-side helpers: contributed input pairs and original payload parsing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence
from urllib.parse import parse_qsl

from payjoin.errors import PayloadError, PayloadErrorKind
from payjoin.params import Params, ParamsError
from payjoin.primitives import SEQUENCE_MAX, AddressType, OutPoint, TxIn, TxOut
from payjoin.psbt import (
    AddressTypeError,
    InconsistentPsbtError,
    InputPairView,
    NoRedeemScriptError,
    Psbt,
    PsbtInput,
    PsbtInputError,
)

__all__ = ["InputPair", "parse_payload"]

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class InputPair:
    """A transaction input and its PSBT input map, contributed by the receiver.

    Use :meth:`from_parts` to build a validated pair from arbitrary parts.
    """

    txin: TxIn
    psbtin: PsbtInput

    @classmethod
    def from_parts(cls, txin: TxIn, psbtin: PsbtInput) -> InputPair:
        """Build a pair, checking its UTXO information and address type.

        Raises :class:`PsbtInputError` (or a subclass) when the parts are unusable.
        """
        pair = cls(txin, psbtin)
        view = pair._view()
        view.validate_utxo()
        try:
            kind = view.address_type()
        except AddressTypeError as exc:
            raise PsbtInputError("invalid address type") from exc
        if kind is AddressType.P2SH and psbtin.redeem_script is None:
            raise NoRedeemScriptError()
        return pair

    @classmethod
    def new_p2wpkh(
        cls, witness_utxo: TxOut, previous_output: OutPoint, sequence: int | None = None
    ) -> InputPair:
        """A pair spending a P2WPKH output described by ``witness_utxo``."""
        return cls._segwit(witness_utxo, previous_output, sequence)

    @classmethod
    def new_p2tr(
        cls, witness_utxo: TxOut, previous_output: OutPoint, sequence: int | None = None
    ) -> InputPair:
        """A pair spending a P2TR output described by ``witness_utxo``."""
        return cls._segwit(witness_utxo, previous_output, sequence)

    @classmethod
    def _segwit(
        cls, witness_utxo: TxOut, previous_output: OutPoint, sequence: int | None
    ) -> InputPair:
        txin = TxIn(
            previous_output=previous_output,
            script_sig=b"",
            sequence=SEQUENCE_MAX if sequence is None else sequence,
            witness=(),
        )
        return cls(txin, PsbtInput(witness_utxo=witness_utxo))

    def _view(self) -> InputPairView:
        return InputPairView(self.txin, self.psbtin)

    def previous_txout(self) -> TxOut:
        """The output this input spends."""
        return self._view().previous_txout()


def parse_payload(
    base64_psbt: str, query: str, supported_versions: Sequence[int]
) -> tuple[Psbt, Params]:
    """Parse and sanity-check the original PSBT and the sender's parameters.

    Raises :class:`PayloadError` describing what was wrong.
    """
    try:
        unchecked = Psbt.from_base64(base64_psbt)
    except ValueError as exc:
        raise PayloadError(PayloadErrorKind.PARSE_PSBT, exc) from exc

    try:
        psbt = unchecked.validate()
    except InconsistentPsbtError as exc:
        raise PayloadError(PayloadErrorKind.INCONSISTENT_PSBT, exc) from exc
    log.debug("Received original psbt: %r", psbt)

    pairs = parse_qsl(query, keep_blank_values=True, errors="replace")
    try:
        params = Params.from_query_pairs(pairs, supported_versions)
    except ParamsError as exc:
        raise PayloadError(PayloadErrorKind.SENDER_PARAMS, exc) from exc
    log.debug("Received request with params: %r", params)

    return psbt, params