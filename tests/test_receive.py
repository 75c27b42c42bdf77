import pytest

from payjoin.errors import PayloadError, PayloadErrorKind
from payjoin.output_substitution import OutputSubstitution
from payjoin.params import FeeRateParseError, UnknownVersionError
from payjoin.primitives import SEQUENCE_MAX, FeeRate, OutPoint, Transaction, TxIn, TxOut
from payjoin.psbt import (
    NoRedeemScriptError,
    Psbt,
    PsbtInput,
    PsbtInputError,
    UnequalTxidError,
)
from payjoin.receive import InputPair, parse_payload

P2WPKH_SCRIPT = b"\x00\x14" + bytes(range(20))
P2SH_SCRIPT = b"\xa9\x14" + bytes(range(20)) + b"\x87"
ZERO_TXID = "00" * 32
ONES_TXID = "11" * 32


def _txin(txid=ZERO_TXID, vout=0):
    return TxIn(OutPoint(txid, vout))


def _sample_psbt():
    tx = Transaction(
        version=2,
        lock_time=0,
        inputs=[_txin(ONES_TXID, 3)],
        outputs=[TxOut(5000, P2WPKH_SCRIPT)],
    )
    return Psbt.from_unsigned_tx(tx)


def test_new_p2wpkh_initializes_correctly():
    outpoint = OutPoint(ZERO_TXID, 0)
    txout = TxOut(1000, b"")
    pair = InputPair.new_p2wpkh(txout, outpoint, None)

    assert pair.psbtin.witness_utxo == txout
    assert pair.psbtin.non_witness_utxo is None
    assert pair.psbtin.redeem_script is None
    assert pair.psbtin.partial_sigs == {}
    assert pair.psbtin.sighash_type is None
    assert pair.psbtin.final_script_sig is None
    assert pair.psbtin.final_script_witness is None
    assert pair.psbtin.ripemd160_preimages == {}
    assert pair.psbtin.sha256_preimages == {}
    assert pair.psbtin.hash160_preimages == {}
    assert pair.psbtin.tap_key_sig is None
    assert pair.psbtin.tap_script_sigs == {}
    assert pair.psbtin.tap_scripts == {}
    assert pair.psbtin.proprietary == {}
    assert pair.psbtin.unknown == {}
    assert pair.txin.previous_output == outpoint


def test_new_p2tr_initializes_correctly():
    outpoint = OutPoint(ONES_TXID, 1)
    txout = TxOut(2000, b"")
    pair = InputPair.new_p2tr(txout, outpoint, None)

    assert pair.psbtin.witness_utxo == txout
    assert pair.psbtin.non_witness_utxo is None
    assert pair.psbtin.redeem_script is None
    assert pair.psbtin.witness_script is None
    assert pair.psbtin.partial_sigs == {}
    assert pair.psbtin.sighash_type is None
    assert pair.psbtin.final_script_sig is None
    assert pair.psbtin.final_script_witness is None
    assert pair.psbtin.ripemd160_preimages == {}
    assert pair.psbtin.sha256_preimages == {}
    assert pair.psbtin.hash160_preimages == {}
    assert pair.psbtin.hash256_preimages == {}
    assert pair.psbtin.tap_key_sig is None
    assert pair.psbtin.tap_script_sigs == {}
    assert pair.psbtin.tap_scripts == {}
    assert pair.psbtin.tap_key_origins == {}
    assert pair.psbtin.tap_internal_key is None
    assert pair.psbtin.tap_merkle_root is None
    assert pair.psbtin.proprietary == {}
    assert pair.psbtin.unknown == {}

    assert pair.txin.previous_output == outpoint
    assert pair.txin.script_sig == b""
    assert pair.txin.sequence == SEQUENCE_MAX
    assert pair.txin.witness == ()


def test_explicit_sequence_is_kept():
    pair = InputPair.new_p2wpkh(TxOut(1, P2WPKH_SCRIPT), OutPoint(ZERO_TXID, 0), 5)
    assert pair.txin.sequence == 5


def test_previous_txout_from_witness_utxo():
    txout = TxOut(1234, P2WPKH_SCRIPT)
    pair = InputPair.new_p2wpkh(txout, OutPoint(ZERO_TXID, 2), None)
    assert pair.previous_txout() == txout


def test_from_parts_accepts_p2wpkh():
    txout = TxOut(1000, P2WPKH_SCRIPT)
    pair = InputPair.from_parts(_txin(), PsbtInput(witness_utxo=txout))
    assert pair.previous_txout() == txout


def test_from_parts_missing_utxo_information():
    with pytest.raises(PsbtInputError, match="invalid previous transaction output"):
        InputPair.from_parts(_txin(), PsbtInput())


def test_from_parts_unknown_script_is_invalid_address_type():
    with pytest.raises(PsbtInputError, match="invalid address type"):
        InputPair.from_parts(_txin(), PsbtInput(witness_utxo=TxOut(1000, b"\x6a")))


def test_from_parts_p2sh_requires_redeem_script():
    with pytest.raises(NoRedeemScriptError):
        InputPair.from_parts(_txin(), PsbtInput(witness_utxo=TxOut(1000, P2SH_SCRIPT)))


def test_from_parts_p2sh_with_redeem_script():
    psbtin = PsbtInput(witness_utxo=TxOut(1000, P2SH_SCRIPT), redeem_script=P2WPKH_SCRIPT)
    pair = InputPair.from_parts(_txin(), psbtin)
    assert pair.psbtin.redeem_script == P2WPKH_SCRIPT


def test_from_parts_non_witness_utxo_matching_txid():
    prev = Transaction(
        inputs=[_txin(ONES_TXID, 0)],
        outputs=[TxOut(700, P2WPKH_SCRIPT), TxOut(300, P2WPKH_SCRIPT)],
    )
    txin = _txin(prev.compute_txid(), 1)
    pair = InputPair.from_parts(txin, PsbtInput(non_witness_utxo=prev))
    assert pair.previous_txout() == TxOut(300, P2WPKH_SCRIPT)


def test_from_parts_non_witness_utxo_wrong_txid():
    prev = Transaction(inputs=[_txin(ONES_TXID, 0)], outputs=[TxOut(700, P2WPKH_SCRIPT)])
    with pytest.raises(UnequalTxidError):
        InputPair.from_parts(_txin(ZERO_TXID, 0), PsbtInput(non_witness_utxo=prev))


def test_parse_payload_round_trips_psbt_and_params():
    original = _sample_psbt()
    psbt, params = parse_payload(
        original.to_base64(), "v=1&minfeerate=2&disableoutputsubstitution=true", [1]
    )
    assert psbt == original
    assert params.v == 1
    assert params.min_fee_rate == FeeRate.from_sat_per_kwu(500)
    assert params.output_substitution is OutputSubstitution.DISABLED


def test_parse_payload_empty_query_uses_defaults():
    _, params = parse_payload(_sample_psbt().to_base64(), "", [1])
    assert params.v == 1
    assert params.min_fee_rate == FeeRate.BROADCAST_MIN
    assert params.additional_fee_contribution is None


def test_parse_payload_fee_contribution():
    _, params = parse_payload(
        _sample_psbt().to_base64(),
        "maxadditionalfeecontribution=182&additionalfeeoutputindex=0",
        [1],
    )
    assert params.additional_fee_contribution == (182, 0)


def test_parse_payload_bad_psbt():
    with pytest.raises(PayloadError) as info:
        parse_payload("not a psbt!", "", [1])
    assert info.value.kind is PayloadErrorKind.PARSE_PSBT


def test_parse_payload_unknown_version():
    with pytest.raises(PayloadError) as info:
        parse_payload(_sample_psbt().to_base64(), "v=3", [1, 2])
    assert info.value.kind is PayloadErrorKind.SENDER_PARAMS
    assert isinstance(info.value.source, UnknownVersionError)
    assert info.value.source.supported_versions == (1, 2)


def test_parse_payload_bad_fee_rate():
    with pytest.raises(PayloadError) as info:
        parse_payload(_sample_psbt().to_base64(), "minfeerate=abc", [1])
    assert info.value.kind is PayloadErrorKind.SENDER_PARAMS
    assert isinstance(info.value.source, FeeRateParseError)
    assert str(info.value) == "could not parse feerate"