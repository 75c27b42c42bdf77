import pytest

from payjoin.primitives import (
    SEQUENCE_MAX,
    AddressType,
    FeeRate,
    InputWeightPrediction,
    OutPoint,
    Transaction,
    TxIn,
    TxOut,
    address_type,
    is_p2wpkh,
    redeem_script_from_script_sig,
)

TXID_A = "00" * 31 + "01"
TXID_B = "11" * 32

P2WPKH = b"\x00\x14" + bytes(range(20))
P2WSH = b"\x00\x20" + bytes(range(32))
P2TR = b"\x51\x20" + bytes(range(32))
P2PKH = b"\x76\xa9\x14" + bytes(range(20)) + b"\x88\xac"
P2SH = b"\xa9\x14" + bytes(range(20)) + b"\x87"


def make_tx(witness=()):
    return Transaction(
        version=2,
        lock_time=0,
        inputs=[
            TxIn(OutPoint(TXID_A, 0), witness=witness),
            TxIn(OutPoint(TXID_B, 3), script_sig=b"\x01\x02", sequence=5),
        ],
        outputs=[TxOut(1000, P2WPKH), TxOut(2500, P2TR)],
    )


def test_broadcast_min_is_one_sat_per_vbyte():
    assert FeeRate.BROADCAST_MIN == FeeRate.from_sat_per_vb(1)
    assert FeeRate.BROADCAST_MIN.sat_per_kwu == 250


def test_fee_rate_vbyte_round_trip():
    rate = FeeRate.from_sat_per_vb(7)
    assert rate.to_sat_per_vb_floor() == 7
    assert rate.to_sat_per_vb_ceil() == 7
    assert FeeRate.from_sat_per_kwu(251).to_sat_per_vb_ceil() == 2
    assert FeeRate.from_sat_per_kwu(251).to_sat_per_vb_floor() == 1


def test_fee_rate_ordering_and_display():
    assert FeeRate.from_sat_per_vb(1) < FeeRate.from_sat_per_vb(2)
    assert str(FeeRate.from_sat_per_kwu(300)) == "300"


def test_fee_rate_rejects_negative():
    with pytest.raises(ValueError):
        FeeRate.from_sat_per_kwu(-1)


def test_outpoint_rejects_short_txid():
    with pytest.raises(ValueError):
        OutPoint("abcd", 0)


def test_txin_defaults_to_max_sequence():
    txin = TxIn(OutPoint(TXID_A, 1))
    assert txin.sequence == SEQUENCE_MAX
    assert txin.witness == ()
    assert txin.script_sig == b""


def test_legacy_round_trip():
    tx = make_tx()
    assert Transaction.from_bytes(tx.serialize()) == tx


def test_segwit_round_trip_and_marker():
    tx = make_tx(witness=(b"\x30" * 71, b"\x02" * 33))
    data = tx.serialize()
    assert data[4:6] == b"\x00\x01"
    assert Transaction.from_bytes(data) == tx


def test_empty_transaction_round_trip():
    tx = Transaction()
    assert Transaction.from_bytes(tx.serialize()) == tx


def test_txid_ignores_witness():
    plain = make_tx()
    signed = make_tx(witness=(b"\x01",))
    assert plain.compute_txid() == signed.compute_txid()
    assert plain.serialize() != signed.serialize()


def test_txid_changes_with_outputs():
    tx = make_tx()
    other = make_tx()
    other.outputs.append(TxOut(1, P2WSH))
    assert tx.compute_txid() != other.compute_txid()
    assert len(tx.compute_txid()) == 64


def test_from_bytes_rejects_truncated_data():
    with pytest.raises(ValueError):
        Transaction.from_bytes(make_tx().serialize()[:-1])


def test_from_bytes_rejects_trailing_data():
    with pytest.raises(ValueError):
        Transaction.from_bytes(make_tx().serialize() + b"\x00")


@pytest.mark.parametrize(
    "script, expected",
    [
        (P2PKH, AddressType.P2PKH),
        (P2SH, AddressType.P2SH),
        (P2WPKH, AddressType.P2WPKH),
        (P2WSH, AddressType.P2WSH),
        (P2TR, AddressType.P2TR),
    ],
)
def test_address_type(script, expected):
    assert address_type(script) is expected


def test_unknown_witness_program_has_no_type():
    assert address_type(b"\x52\x20" + bytes(32)) is None


def test_non_standard_script_is_rejected():
    with pytest.raises(ValueError):
        address_type(b"\x6a\x01\x00")


def test_bad_v0_program_length_is_rejected():
    with pytest.raises(ValueError):
        address_type(b"\x00\x10" + bytes(16))


def test_is_p2wpkh():
    assert is_p2wpkh(P2WPKH)
    assert not is_p2wpkh(P2WSH)
    assert not is_p2wpkh(P2TR)


def test_redeem_script_is_last_push():
    redeem = b"\x00\x14" + bytes(20)
    script_sig = bytes([len(redeem)]) + redeem
    assert redeem_script_from_script_sig(script_sig) == redeem
    assert is_p2wpkh(redeem_script_from_script_sig(script_sig))


def test_redeem_script_with_pushdata1():
    redeem = bytes(range(80))
    script_sig = b"\x00" + b"\x4c" + bytes([len(redeem)]) + redeem
    assert redeem_script_from_script_sig(script_sig) == redeem


def test_redeem_script_requires_push_only():
    assert redeem_script_from_script_sig(b"\x02\xaa\xbb\x51") is None
    assert redeem_script_from_script_sig(b"") is None
    assert redeem_script_from_script_sig(b"\x05\x01") is None


def test_weight_prediction_values():
    assert InputWeightPrediction.P2WPKH_MAX == InputWeightPrediction.from_slice(0, [72, 33])
    assert InputWeightPrediction.P2WPKH_MAX.weight() == 112
    assert InputWeightPrediction.from_slice(0, []).weight() == 4


def test_weight_prediction_ordering():
    taproot = InputWeightPrediction.P2TR_KEY_DEFAULT_SIGHASH.weight()
    segwit = InputWeightPrediction.P2WPKH_MAX.weight()
    legacy = InputWeightPrediction.P2PKH_COMPRESSED_MAX.weight()
    assert taproot < segwit < legacy
    assert InputWeightPrediction.P2PKH_COMPRESSED_MAX.witness_size == 0