"""Errors raised while receiving a payjoin, and their JSON replies to the sender."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from payjoin.params import UnknownVersionError
from payjoin.primitives import FeeRate

__all__ = [
    "ErrorCode",
    "JsonReply",
    "ReceiveError",
    "ReplyableError",
    "ImplementationError",
    "PayloadErrorKind",
    "PayloadError",
    "OutputSubstitutionError",
    "SelectionError",
    "InputContributionError",
    "MultipartyError",
    "json_reply_from",
]


class ErrorCode(Enum):
    """Well-known error codes a receiver may reply with."""

    UNAVAILABLE = "unavailable"
    NOT_ENOUGH_MONEY = "not-enough-money"
    VERSION_UNSUPPORTED = "version-unsupported"
    ORIGINAL_PSBT_REJECTED = "original-psbt-rejected"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class JsonReply:
    """An error reply in the JSON shape the sender expects."""

    error_code: ErrorCode
    message: str
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "message", str(self.message))
        object.__setattr__(self, "extra", dict(self.extra))

    def with_extra(self, key: str, value: Any) -> JsonReply:
        """A copy of this reply with one more field in the JSON body."""
        return replace(self, extra={**self.extra, key: value})

    def to_json(self) -> dict[str, Any]:
        """The reply as a JSON object; extra fields may override the standard ones."""
        return {"errorCode": str(self.error_code), "message": self.message, **self.extra}


class ReplyableError(Exception):
    """An error that can be replied to the sender."""


class ReceiveError(Exception):
    """The top-level error of a payjoin receiver."""

    def __init__(self, error: ReplyableError) -> None:
        super().__init__(f"replyable error: {error}")
        self.error = error
        self.__cause__ = error.__cause__


class ImplementationError(ReplyableError):
    """A failure of the receiver's own implementation: database, network, wallet."""

    def __init__(self, error: BaseException | str) -> None:
        super().__init__(f"Internal Server Error: {error}")
        self.error = error
        if isinstance(error, BaseException):
            self.__cause__ = error


class PayloadErrorKind(Enum):
    """What was wrong with the original PSBT payload."""

    UTF8 = "utf8"
    PARSE_PSBT = "parse_psbt"
    SENDER_PARAMS = "sender_params"
    INCONSISTENT_PSBT = "inconsistent_psbt"
    PREV_TXOUT = "prev_txout"
    MISSING_PAYMENT = "missing_payment"
    ORIGINAL_PSBT_NOT_BROADCASTABLE = "original_psbt_not_broadcastable"
    INPUT_OWNED = "input_owned"
    INPUT_WEIGHT = "input_weight"
    INPUT_SEEN = "input_seen"
    PSBT_BELOW_FEE_RATE = "psbt_below_fee_rate"
    FEE_TOO_HIGH = "fee_too_high"


_SOURCE_KINDS = frozenset(
    {
        PayloadErrorKind.UTF8,
        PayloadErrorKind.PARSE_PSBT,
        PayloadErrorKind.SENDER_PARAMS,
        PayloadErrorKind.INCONSISTENT_PSBT,
        PayloadErrorKind.PREV_TXOUT,
        PayloadErrorKind.INPUT_WEIGHT,
    }
)
_FEE_KINDS = frozenset({PayloadErrorKind.PSBT_BELOW_FEE_RATE, PayloadErrorKind.FEE_TOO_HIGH})
_REJECTED = "The receiver rejected the original PSBT."


def _describe(
    kind: PayloadErrorKind,
    source: BaseException | None,
    fee_rates: tuple[FeeRate, FeeRate] | None,
) -> str:
    if kind is PayloadErrorKind.PREV_TXOUT:
        return f"PrevTxOut Error: {source}"
    if kind is PayloadErrorKind.INPUT_WEIGHT:
        return f"InputWeight Error: {source}"
    if kind in _SOURCE_KINDS:
        return str(source)
    if kind is PayloadErrorKind.MISSING_PAYMENT:
        return "Missing payment."
    if kind is PayloadErrorKind.ORIGINAL_PSBT_NOT_BROADCASTABLE:
        return "Can't broadcast. PSBT rejected by mempool."
    if kind in (PayloadErrorKind.INPUT_OWNED, PayloadErrorKind.INPUT_SEEN):
        return _REJECTED
    assert fee_rates is not None
    first, second = fee_rates
    if kind is PayloadErrorKind.PSBT_BELOW_FEE_RATE:
        return f"Original PSBT fee rate too low: {first} < {second}."
    return f"Effective receiver feerate exceeds maximum allowed feerate: {first} > {second}"


class PayloadError(ReplyableError):
    """The original PSBT payload failed validation.

    ``source`` is the underlying error for the kinds that wrap one;
    ``fee_rates`` is the (actual, limit) pair for the fee rate kinds;
    ``subject`` is the owned script or seen outpoint, kept for inspection only.
    """

    def __init__(
        self,
        kind: PayloadErrorKind,
        source: BaseException | None = None,
        *,
        fee_rates: tuple[FeeRate, FeeRate] | None = None,
        subject: Any = None,
    ) -> None:
        if kind in _SOURCE_KINDS and source is None:
            raise TypeError(f"{kind.name} payload error needs a source error")
        if kind in _FEE_KINDS and fee_rates is None:
            raise TypeError(f"{kind.name} payload error needs fee rates")
        super().__init__(_describe(kind, source, fee_rates))
        self.kind = kind
        self.source = source
        self.fee_rates = fee_rates
        self.subject = subject
        if kind in _SOURCE_KINDS:
            self.__cause__ = source


def _payload_reply(error: PayloadError) -> JsonReply:
    if error.kind is PayloadErrorKind.FEE_TOO_HIGH:
        return JsonReply(ErrorCode.NOT_ENOUGH_MONEY, str(error))
    if error.kind is PayloadErrorKind.SENDER_PARAMS and isinstance(
        error.source, UnknownVersionError
    ):
        supported = json.dumps(list(error.source.supported_versions), separators=(",", ":"))
        return JsonReply(
            ErrorCode.VERSION_UNSUPPORTED, "This version of payjoin is not supported."
        ).with_extra("supported", supported)
    return JsonReply(ErrorCode.ORIGINAL_PSBT_REJECTED, str(error))


def json_reply_from(error: ReplyableError) -> JsonReply:
    """The reply to send for a replyable error, hiding implementation details."""
    if isinstance(error, ImplementationError):
        return JsonReply(ErrorCode.UNAVAILABLE, "Receiver error")
    if isinstance(error, PayloadError):
        return _payload_reply(error)
    raise TypeError(f"cannot build a reply from {type(error).__name__}")


class OutputSubstitutionError(ValueError):
    """Output substitution failed."""

    class Kind(Enum):
        DECREASED_VALUE_WHEN_DISABLED = (
            "Decreasing the receiver output value is not allowed when output "
            "substitution is disabled"
        )
        SCRIPT_PUBKEY_CHANGED_WHEN_DISABLED = (
            "Changing the receiver output script pubkey is not allowed when output "
            "substitution is disabled"
        )
        NOT_ENOUGH_OUTPUTS = (
            "Current output substitution implementation doesn't support reducing "
            "the number of outputs"
        )
        INVALID_DRAIN_SCRIPT = (
            "The provided drain script could not be identified in the provided "
            "replacement outputs"
        )

    def __init__(self, kind: OutputSubstitutionError.Kind) -> None:
        super().__init__(kind.value)
        self.kind = kind


class SelectionError(ValueError):
    """Coin selection failed."""

    class Kind(Enum):
        EMPTY = "No candidates available for selection"
        UNSUPPORTED_OUTPUT_LENGTH = (
            "Current privacy selection implementation only supports 2-output transactions"
        )
        NOT_FOUND = "No selection candidates improve privacy"

    def __init__(self, kind: SelectionError.Kind) -> None:
        super().__init__(kind.value)
        self.kind = kind


class InputContributionError(ValueError):
    """Contributing receiver inputs failed."""

    class Kind(Enum):
        VALUE_TOO_LOW = "Total input value is not enough to cover additional output value"

    def __init__(self, kind: InputContributionError.Kind) -> None:
        super().__init__(kind.value)
        self.kind = kind


class MultipartyError(ValueError):
    """Building or combining a multiparty proposal failed.

    ``detail`` is the proposal version for PROPOSAL_VERSION_NOT_SUPPORTED and
    the underlying error for BITCOIN_EXTRACT_TX_ERROR and FAILED_TO_COMBINE_PSBTS.
    """

    class Kind(Enum):
        NOT_ENOUGH_PROPOSALS = "not_enough_proposals"
        PROPOSAL_VERSION_NOT_SUPPORTED = "proposal_version_not_supported"
        OPTIMISTIC_MERGE_NOT_SUPPORTED = "optimistic_merge_not_supported"
        BITCOIN_EXTRACT_TX_ERROR = "bitcoin_extract_tx_error"
        INPUT_MISSING_WITNESS_OR_SCRIPT_SIG = "input_missing_witness_or_script_sig"
        FAILED_TO_COMBINE_PSBTS = "failed_to_combine_psbts"

    _WITH_SOURCE = ("BITCOIN_EXTRACT_TX_ERROR", "FAILED_TO_COMBINE_PSBTS")

    def __init__(self, kind: MultipartyError.Kind, detail: Any = None) -> None:
        kinds = MultipartyError.Kind
        if kind is kinds.PROPOSAL_VERSION_NOT_SUPPORTED and detail is None:
            raise TypeError("an unsupported proposal version needs the version")
        if kind.name in self._WITH_SOURCE and not isinstance(detail, BaseException):
            raise TypeError(f"{kind.name} needs the underlying error")
        messages = {
            kinds.NOT_ENOUGH_PROPOSALS: "Not enough proposals",
            kinds.PROPOSAL_VERSION_NOT_SUPPORTED: f"Proposal version not supported: {detail}",
            kinds.OPTIMISTIC_MERGE_NOT_SUPPORTED: "Optimistic merge not supported",
            kinds.BITCOIN_EXTRACT_TX_ERROR: f"Bitcoin extract tx error: {detail!r}",
            kinds.INPUT_MISSING_WITNESS_OR_SCRIPT_SIG: (
                "Input in Finalized Proposal is missing witness or script_sig"
            ),
            kinds.FAILED_TO_COMBINE_PSBTS: f"Failed to combine psbts: {detail!r}",
        }
        super().__init__(messages[kind])
        self.kind = kind
        self.detail = detail
        if kind.name in self._WITH_SOURCE:
            self.__cause__ = detail