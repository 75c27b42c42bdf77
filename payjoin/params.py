"""Optional sender parameters carried in a payjoin request's query string."""

from __future__ import annotations

import logging
import math
import re
import struct
from dataclasses import dataclass
from typing import Iterable, Sequence

from payjoin.output_substitution import OutputSubstitution
from payjoin.primitives import FeeRate

__all__ = ["ParamsError", "UnknownVersionError", "FeeRateParseError", "Params"]

log = logging.getLogger(__name__)

_U64_MAX = 2**64 - 1
_USIZE_RE = re.compile(r"\+?[0-9]+")
_AMOUNT_RE = re.compile(r"([0-9]+)(?:\.0+)?")
_FLOAT_RE = re.compile(
    r"[+-]?(?:inf|infinity|nan|(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:e[+-]?[0-9]+)?)",
    re.IGNORECASE,
)


class ParamsError(ValueError):
    """The sender's optional parameters are invalid."""


class UnknownVersionError(ParamsError):
    """The requested protocol version is not supported."""

    def __init__(self, supported_versions: Sequence[int]) -> None:
        super().__init__("unknown version")
        self.supported_versions = tuple(supported_versions)


class FeeRateParseError(ParamsError):
    """The minimum fee rate could not be parsed."""

    def __init__(self) -> None:
        super().__init__("could not parse feerate")


def _parse_usize(text: str) -> int | None:
    if not _USIZE_RE.fullmatch(text):
        return None
    value = int(text)
    return value if value <= _U64_MAX else None


def _parse_sats(text: str) -> int | None:
    match = _AMOUNT_RE.fullmatch(text)
    if match is None:
        return None
    value = int(match.group(1))
    return value if value <= _U64_MAX else None


def _to_f32(value: float) -> float:
    if math.isnan(value) or math.isinf(value):
        return value
    try:
        return struct.unpack("<f", struct.pack("<f", value))[0]
    except OverflowError:
        return math.copysign(math.inf, value)


def _saturating_u64(value: float) -> int:
    if math.isnan(value) or value <= 0:
        return 0
    if math.isinf(value) or value >= _U64_MAX:
        return _U64_MAX
    return int(value)


def _parse_min_fee_rate(text: str) -> FeeRate:
    if not _FLOAT_RE.fullmatch(text):
        raise FeeRateParseError()
    sat_per_vb = _to_f32(float(text))
    sat_per_kwu = _to_f32(sat_per_vb * 250.0)
    # A minimum, so round up.
    if math.isfinite(sat_per_kwu):
        sat_per_kwu = math.ceil(sat_per_kwu)
    return FeeRate.from_sat_per_kwu(_saturating_u64(sat_per_kwu))


@dataclass
class Params:
    """Parsed optional parameters of a payjoin request."""

    v: int = 1
    output_substitution: OutputSubstitution = OutputSubstitution.ENABLED
    additional_fee_contribution: tuple[int, int] | None = None
    min_fee_rate: FeeRate = FeeRate.BROADCAST_MIN
    optimistic_merge: bool = False

    @classmethod
    def from_query_pairs(
        cls, pairs: Iterable[tuple[str, str]], supported_versions: Sequence[int]
    ) -> Params:
        """Build parameters from decoded query pairs.

        Unknown keys are ignored, malformed fee contribution values are
        logged and dropped, and a bad version or fee rate raises.
        """
        params = cls()
        fee_output_index: int | None = None
        max_fee_contribution: int | None = None

        for key, value in pairs:
            if key == "v":
                version = _parse_usize(value)
                if version is None or version not in supported_versions:
                    raise UnknownVersionError(supported_versions)
                params.v = version
            elif key == "additionalfeeoutputindex":
                fee_output_index = _parse_usize(value)
                if fee_output_index is None:
                    log.warning("bad `additionalfeeoutputindex` query value '%s'", value)
            elif key == "maxadditionalfeecontribution":
                max_fee_contribution = _parse_sats(value)
                if max_fee_contribution is None:
                    log.warning("bad `maxadditionalfeecontribution` query value '%s'", value)
            elif key == "minfeerate":
                params.min_fee_rate = _parse_min_fee_rate(value)
            elif key == "disableoutputsubstitution":
                params.output_substitution = (
                    OutputSubstitution.DISABLED if value == "true" else OutputSubstitution.ENABLED
                )
            elif key == "optimisticmerge":
                params.optimistic_merge = value == "true"

        if max_fee_contribution is not None and fee_output_index is not None:
            params.additional_fee_contribution = (max_fee_contribution, fee_output_index)
        elif max_fee_contribution is not None or fee_output_index is not None:
            log.warning("only one additional-fee parameter specified: %r", params)

        log.debug("parsed optional parameters: %r", params)
        return params