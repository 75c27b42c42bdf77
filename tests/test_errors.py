import pytest

from payjoin.errors import (
    ErrorCode,
    ImplementationError,
    InputContributionError,
    JsonReply,
    MultipartyError,
    OutputSubstitutionError,
    PayloadError,
    PayloadErrorKind,
    ReceiveError,
    ReplyableError,
    SelectionError,
    json_reply_from,
)
from payjoin.params import FeeRateParseError, Params, UnknownVersionError
from payjoin.primitives import FeeRate
from payjoin.psbt import MissingUtxoInformationError, WeightNotSupportedError


def test_error_code_wire_strings():
    rejected = JsonReply(ErrorCode.ORIGINAL_PSBT_REJECTED, "x").to_json()
    unavailable = JsonReply(ErrorCode.UNAVAILABLE, "y").to_json()
    assert rejected["errorCode"] == "original-psbt-rejected"
    assert unavailable["errorCode"] == "unavailable"


def test_json_reply_to_json_has_code_and_message():
    reply = JsonReply(ErrorCode.NOT_ENOUGH_MONEY, "Missing payment.")
    body = reply.to_json()
    assert body["errorCode"] == str(ErrorCode.NOT_ENOUGH_MONEY)
    assert body["message"] == "Missing payment."
    assert set(body) == {"errorCode", "message"}


def test_json_reply_message_is_stringified():
    reply = JsonReply(ErrorCode.UNAVAILABLE, 42)
    assert reply.message == "42"


def test_with_extra_returns_new_reply():
    reply = JsonReply(ErrorCode.UNAVAILABLE, "Receiver error")
    extended = reply.with_extra("supported", "[2]")
    assert extended.to_json()["supported"] == "[2]"
    assert "supported" not in reply.to_json()
    assert extended != reply


def test_extra_overrides_standard_fields():
    reply = JsonReply(ErrorCode.UNAVAILABLE, "a").with_extra("message", "b")
    assert reply.to_json()["message"] == "b"


def test_implementation_error_reply_hides_details():
    cause = RuntimeError("database locked")
    error = ImplementationError(cause)
    assert str(error) == "Internal Server Error: database locked"
    assert error.__cause__ is cause
    reply = json_reply_from(error)
    assert reply == JsonReply(ErrorCode.UNAVAILABLE, "Receiver error")


def test_fee_too_high_replies_not_enough_money():
    error = PayloadError(
        PayloadErrorKind.FEE_TOO_HIGH,
        fee_rates=(FeeRate.from_sat_per_kwu(1000), FeeRate.from_sat_per_kwu(500)),
    )
    assert str(error) == (
        "Effective receiver feerate exceeds maximum allowed feerate: 1000 > 500"
    )
    reply = json_reply_from(error)
    assert reply.error_code is ErrorCode.NOT_ENOUGH_MONEY
    assert reply.message == str(error)


def test_below_fee_rate_message_and_reply():
    error = PayloadError(
        PayloadErrorKind.PSBT_BELOW_FEE_RATE,
        fee_rates=(FeeRate.from_sat_per_kwu(100), FeeRate.from_sat_per_kwu(250)),
    )
    assert str(error) == "Original PSBT fee rate too low: 100 < 250."
    assert json_reply_from(error).error_code is ErrorCode.ORIGINAL_PSBT_REJECTED


def test_unknown_version_reply_lists_supported_versions():
    with pytest.raises(UnknownVersionError) as excinfo:
        Params.from_query_pairs([("v", "3")], [1, 2])
    error = PayloadError(PayloadErrorKind.SENDER_PARAMS, excinfo.value)
    assert str(error) == "unknown version"
    reply = json_reply_from(error)
    assert reply.error_code is ErrorCode.VERSION_UNSUPPORTED
    assert reply.message == "This version of payjoin is not supported."
    assert reply.to_json()["supported"] == "[1,2]"


def test_fee_rate_param_error_is_rejected_with_message():
    with pytest.raises(FeeRateParseError) as excinfo:
        Params.from_query_pairs([("minfeerate", "abc")], [1])
    error = PayloadError(PayloadErrorKind.SENDER_PARAMS, excinfo.value)
    reply = json_reply_from(error)
    assert reply.error_code is ErrorCode.ORIGINAL_PSBT_REJECTED
    assert reply.message == "could not parse feerate"


def test_prev_txout_message_wraps_source():
    source = MissingUtxoInformationError()
    error = PayloadError(PayloadErrorKind.PREV_TXOUT, source)
    assert str(error) == "PrevTxOut Error: missing UTXO information"
    assert error.__cause__ is source


def test_input_weight_message_wraps_source():
    error = PayloadError(PayloadErrorKind.INPUT_WEIGHT, WeightNotSupportedError())
    assert str(error) == "InputWeight Error: weight prediction not supported"


@pytest.mark.parametrize(
    "kind, message",
    [
        (PayloadErrorKind.MISSING_PAYMENT, "Missing payment."),
        (
            PayloadErrorKind.ORIGINAL_PSBT_NOT_BROADCASTABLE,
            "Can't broadcast. PSBT rejected by mempool.",
        ),
        (PayloadErrorKind.INPUT_OWNED, "The receiver rejected the original PSBT."),
        (PayloadErrorKind.INPUT_SEEN, "The receiver rejected the original PSBT."),
    ],
)
def test_fixed_payload_messages_are_rejections(kind, message):
    error = PayloadError(kind)
    assert str(error) == message
    assert error.__cause__ is None
    assert json_reply_from(error) == JsonReply(ErrorCode.ORIGINAL_PSBT_REJECTED, message)


def test_payload_error_requires_source_and_fee_rates():
    with pytest.raises(TypeError):
        PayloadError(PayloadErrorKind.PARSE_PSBT)
    with pytest.raises(TypeError):
        PayloadError(PayloadErrorKind.FEE_TOO_HIGH)


def test_payload_error_is_replyable():
    with pytest.raises(ReplyableError) as excinfo:
        raise PayloadError(PayloadErrorKind.MISSING_PAYMENT)
    assert str(excinfo.value) == "Missing payment."
    assert json_reply_from(excinfo.value).error_code is ErrorCode.ORIGINAL_PSBT_REJECTED


def test_receive_error_wraps_replyable():
    source = MissingUtxoInformationError()
    inner = PayloadError(PayloadErrorKind.PREV_TXOUT, source)
    error = ReceiveError(inner)
    assert str(error) == "replyable error: PrevTxOut Error: missing UTXO information"
    assert error.error is inner
    assert error.__cause__ is source


def test_json_reply_from_rejects_other_errors():
    with pytest.raises(TypeError):
        json_reply_from(ValueError("nope"))


def test_output_substitution_error_messages():
    error = OutputSubstitutionError(OutputSubstitutionError.Kind.NOT_ENOUGH_OUTPUTS)
    assert str(error) == (
        "Current output substitution implementation doesn't support reducing "
        "the number of outputs"
    )
    assert error.kind is OutputSubstitutionError.Kind.NOT_ENOUGH_OUTPUTS


def test_selection_error_messages():
    assert str(SelectionError(SelectionError.Kind.NOT_FOUND)) == (
        "No selection candidates improve privacy"
    )
    assert str(SelectionError(SelectionError.Kind.EMPTY)) == (
        "No candidates available for selection"
    )


def test_input_contribution_error_message():
    error = InputContributionError(InputContributionError.Kind.VALUE_TOO_LOW)
    assert str(error) == "Total input value is not enough to cover additional output value"


def test_multiparty_version_message():
    error = MultipartyError(MultipartyError.Kind.PROPOSAL_VERSION_NOT_SUPPORTED, 3)
    assert str(error) == "Proposal version not supported: 3"
    assert error.detail == 3


def test_multiparty_fixed_messages():
    assert str(MultipartyError(MultipartyError.Kind.NOT_ENOUGH_PROPOSALS)) == (
        "Not enough proposals"
    )
    assert str(MultipartyError(MultipartyError.Kind.OPTIMISTIC_MERGE_NOT_SUPPORTED)) == (
        "Optimistic merge not supported"
    )


def test_multiparty_combine_error_keeps_cause():
    cause = ValueError("mismatch")
    error = MultipartyError(MultipartyError.Kind.FAILED_TO_COMBINE_PSBTS, cause)
    assert str(error) == f"Failed to combine psbts: {cause!r}"
    assert error.__cause__ is cause


def test_multiparty_requires_details():
    with pytest.raises(TypeError):
        MultipartyError(MultipartyError.Kind.PROPOSAL_VERSION_NOT_SUPPORTED)
    with pytest.raises(TypeError):
        MultipartyError(MultipartyError.Kind.BITCOIN_EXTRACT_TX_ERROR)