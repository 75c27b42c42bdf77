"""Partially signed Bitcoin transactions (BIP 174, version 0) and input checks."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from payjoin.primitives import (
    AddressType,
    InputWeightPrediction,
    OutPoint,
    Transaction,
    TxIn,
    TxOut,
    address_type as script_address_type,
    is_p2wpkh,
    redeem_script_from_script_sig,
)

__all__ = [
    "InconsistentPsbtError",
    "PrevTxOutError",
    "MissingUtxoInformationError",
    "IndexOutOfBoundsError",
    "PsbtInputError",
    "UnequalTxidError",
    "SegWitTxOutMismatchError",
    "NoRedeemScriptError",
    "PsbtInputsError",
    "AddressTypeError",
    "UnknownAddressTypeError",
    "InputWeightError",
    "WeightNotSupportedError",
    "PsbtInput",
    "PsbtOutput",
    "Psbt",
    "InputPairView",
]

_MAGIC = b"psbt\xff"

# input script: 0x160014{20-byte-key-hash} = 23 bytes
# witness: <signature> <pubkey> = 72, 33 bytes
_NESTED_P2WPKH_MAX = InputWeightPrediction.from_slice(23, [72, 33])
# Lengths of txid, index and sequence, counted as non-witness data.
_TXIN_BASE_WEIGHT = 4 * (32 + 4 + 4)


class InconsistentPsbtError(ValueError):
    """The PSBT maps do not match the unsigned transaction."""

    def __init__(self, kind: str, tx_count: int, psbt_count: int) -> None:
        self.kind = kind
        self.tx_count = tx_count
        self.psbt_count = psbt_count
        super().__init__(
            f"The number of PSBT {kind} ({psbt_count}) doesn't equal to the number "
            f"of unsigned transaction {kind} ({tx_count})"
        )


class PrevTxOutError(ValueError):
    """The output spent by an input cannot be determined."""


class MissingUtxoInformationError(PrevTxOutError):
    def __init__(self) -> None:
        super().__init__("missing UTXO information")


class IndexOutOfBoundsError(PrevTxOutError):
    def __init__(self, output_count: int, index: int) -> None:
        self.output_count = output_count
        self.index = index
        super().__init__(f"index {index} out of bounds (number of outputs: {output_count})")


class PsbtInputError(ValueError):
    """A PSBT input is invalid."""


class UnequalTxidError(PsbtInputError):
    def __init__(self) -> None:
        super().__init__(
            "transaction ID of previous transaction doesn't match one specified "
            "in input spending it"
        )


class SegWitTxOutMismatchError(PsbtInputError):
    def __init__(self) -> None:
        super().__init__(
            "transaction output provided in SegWit UTXO field doesn't match the one "
            "in non-SegWit UTXO field"
        )


class NoRedeemScriptError(PsbtInputError):
    def __init__(self) -> None:
        super().__init__("provided p2sh PSBT input is missing a redeem_script")


class PsbtInputsError(ValueError):
    """One input of a PSBT failed validation."""

    def __init__(self, index: int, error: PsbtInputError) -> None:
        self.index = index
        self.error = error
        super().__init__(f"invalid PSBT input #{index}")


class AddressTypeError(ValueError):
    """The address type of an input's previous output cannot be determined."""


class UnknownAddressTypeError(AddressTypeError):
    def __init__(self) -> None:
        super().__init__("unknown address type")


class InputWeightError(ValueError):
    """The weight of an input cannot be predicted."""


class WeightNotSupportedError(InputWeightError):
    def __init__(self) -> None:
        super().__init__("weight prediction not supported")


@dataclass
class PsbtInput:
    """The per-input map of a PSBT. Map fields are keyed by key data."""

    non_witness_utxo: Transaction | None = None
    witness_utxo: TxOut | None = None
    partial_sigs: dict[bytes, bytes] = field(default_factory=dict)
    sighash_type: int | None = None
    redeem_script: bytes | None = None
    witness_script: bytes | None = None
    bip32_derivation: dict[bytes, bytes] = field(default_factory=dict)
    final_script_sig: bytes | None = None
    final_script_witness: tuple[bytes, ...] | None = None
    ripemd160_preimages: dict[bytes, bytes] = field(default_factory=dict)
    sha256_preimages: dict[bytes, bytes] = field(default_factory=dict)
    hash160_preimages: dict[bytes, bytes] = field(default_factory=dict)
    hash256_preimages: dict[bytes, bytes] = field(default_factory=dict)
    tap_key_sig: bytes | None = None
    tap_script_sigs: dict[bytes, bytes] = field(default_factory=dict)
    tap_scripts: dict[bytes, bytes] = field(default_factory=dict)
    tap_key_origins: dict[bytes, bytes] = field(default_factory=dict)
    tap_internal_key: bytes | None = None
    tap_merkle_root: bytes | None = None
    proprietary: dict[bytes, bytes] = field(default_factory=dict)
    unknown: dict[bytes, bytes] = field(default_factory=dict)


@dataclass
class PsbtOutput:
    """The per-output map of a PSBT. Map fields are keyed by key data."""

    redeem_script: bytes | None = None
    witness_script: bytes | None = None
    bip32_derivation: dict[bytes, bytes] = field(default_factory=dict)
    tap_internal_key: bytes | None = None
    tap_tree: bytes | None = None
    tap_key_origins: dict[bytes, bytes] = field(default_factory=dict)
    proprietary: dict[bytes, bytes] = field(default_factory=dict)
    unknown: dict[bytes, bytes] = field(default_factory=dict)


def _compact_size(n: int) -> bytes:
    if n < 0xFD:
        return bytes([n])
    if n <= 0xFFFF:
        return b"\xfd" + n.to_bytes(2, "little")
    if n <= 0xFFFFFFFF:
        return b"\xfe" + n.to_bytes(4, "little")
    return b"\xff" + n.to_bytes(8, "little")


def _var_bytes(data: bytes) -> bytes:
    return _compact_size(len(data)) + data


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def read(self, n: int) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise ValueError("unexpected end of PSBT data")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def uint(self, size: int) -> int:
        return int.from_bytes(self.read(size), "little")

    def compact_size(self) -> int:
        first = self.uint(1)
        if first < 0xFD:
            return first
        return self.uint(1 << (first - 0xFC))

    def var_bytes(self) -> bytes:
        return self.read(self.compact_size())

    def at_end(self) -> bool:
        return self._pos == len(self._data)

    def expect_end(self) -> None:
        if not self.at_end():
            raise ValueError("trailing data in PSBT value")


def _encode_u32(value: int) -> bytes:
    return value.to_bytes(4, "little")


def _decode_u32(data: bytes) -> int:
    if len(data) != 4:
        raise ValueError("expected a 4-byte integer")
    return int.from_bytes(data, "little")


def _encode_txout(txout: TxOut) -> bytes:
    return txout.value.to_bytes(8, "little") + _var_bytes(txout.script_pubkey)


def _decode_txout(data: bytes) -> TxOut:
    reader = _Reader(data)
    value = reader.uint(8)
    script = reader.var_bytes()
    reader.expect_end()
    return TxOut(value, script)


def _encode_witness(witness: tuple[bytes, ...]) -> bytes:
    return _compact_size(len(witness)) + b"".join(_var_bytes(item) for item in witness)


def _decode_witness(data: bytes) -> tuple[bytes, ...]:
    reader = _Reader(data)
    items = tuple(reader.var_bytes() for _ in range(reader.compact_size()))
    reader.expect_end()
    return items


def _encode_unsigned_tx(tx: Transaction) -> bytes:
    # Always the legacy layout, so that transactions without inputs round-trip.
    parts = [(tx.version & 0xFFFFFFFF).to_bytes(4, "little"), _compact_size(len(tx.inputs))]
    for txin in tx.inputs:
        parts.append(bytes.fromhex(txin.previous_output.txid)[::-1])
        parts.append(txin.previous_output.vout.to_bytes(4, "little"))
        parts.append(_var_bytes(txin.script_sig))
        parts.append(txin.sequence.to_bytes(4, "little"))
    parts.append(_compact_size(len(tx.outputs)))
    parts.extend(_encode_txout(txout) for txout in tx.outputs)
    parts.append(tx.lock_time.to_bytes(4, "little"))
    return b"".join(parts)


def _decode_unsigned_tx(data: bytes) -> Transaction:
    reader = _Reader(data)
    version = int.from_bytes(reader.read(4), "little", signed=True)
    inputs = []
    for _ in range(reader.compact_size()):
        txid = reader.read(32)[::-1].hex()
        vout = reader.uint(4)
        script_sig = reader.var_bytes()
        sequence = reader.uint(4)
        inputs.append(TxIn(OutPoint(txid, vout), script_sig, sequence))
    outputs = []
    for _ in range(reader.compact_size()):
        value = reader.uint(8)
        outputs.append(TxOut(value, reader.var_bytes()))
    lock_time = reader.uint(4)
    reader.expect_end()
    return Transaction(version, lock_time, inputs, outputs)


@dataclass(frozen=True)
class _Field:
    key_type: int
    name: str
    is_map: bool = False
    decode: Callable[[bytes], Any] = bytes
    encode: Callable[[Any], bytes] = bytes


_INPUT_FIELDS = (
    _Field(0x00, "non_witness_utxo", decode=Transaction.from_bytes, encode=Transaction.serialize),
    _Field(0x01, "witness_utxo", decode=_decode_txout, encode=_encode_txout),
    _Field(0x02, "partial_sigs", is_map=True),
    _Field(0x03, "sighash_type", decode=_decode_u32, encode=_encode_u32),
    _Field(0x04, "redeem_script"),
    _Field(0x05, "witness_script"),
    _Field(0x06, "bip32_derivation", is_map=True),
    _Field(0x07, "final_script_sig"),
    _Field(0x08, "final_script_witness", decode=_decode_witness, encode=_encode_witness),
    _Field(0x0A, "ripemd160_preimages", is_map=True),
    _Field(0x0B, "sha256_preimages", is_map=True),
    _Field(0x0C, "hash160_preimages", is_map=True),
    _Field(0x0D, "hash256_preimages", is_map=True),
    _Field(0x13, "tap_key_sig"),
    _Field(0x14, "tap_script_sigs", is_map=True),
    _Field(0x15, "tap_scripts", is_map=True),
    _Field(0x16, "tap_key_origins", is_map=True),
    _Field(0x17, "tap_internal_key"),
    _Field(0x18, "tap_merkle_root"),
    _Field(0xFC, "proprietary", is_map=True),
)

_OUTPUT_FIELDS = (
    _Field(0x00, "redeem_script"),
    _Field(0x01, "witness_script"),
    _Field(0x02, "bip32_derivation", is_map=True),
    _Field(0x05, "tap_internal_key"),
    _Field(0x06, "tap_tree"),
    _Field(0x07, "tap_key_origins", is_map=True),
    _Field(0xFC, "proprietary", is_map=True),
)


def _pair(key: bytes, value: bytes) -> bytes:
    return _var_bytes(key) + _var_bytes(value)


def _encode_section(obj: Any, fields: tuple[_Field, ...]) -> bytes:
    parts = []
    for spec in fields:
        value = getattr(obj, spec.name)
        if spec.is_map:
            parts.extend(
                _pair(bytes([spec.key_type]) + keydata, value[keydata])
                for keydata in sorted(value)
            )
        elif value is not None:
            parts.append(_pair(bytes([spec.key_type]), spec.encode(value)))
    parts.extend(_pair(key, obj.unknown[key]) for key in sorted(obj.unknown))
    parts.append(b"\x00")
    return b"".join(parts)


def _read_pairs(reader: _Reader) -> Iterator[tuple[bytes, bytes]]:
    seen: set[bytes] = set()
    while True:
        key = reader.var_bytes()
        if not key:
            return
        if key in seen:
            raise ValueError(f"duplicate PSBT key: {key.hex()}")
        seen.add(key)
        yield key, reader.var_bytes()


def _decode_section(cls: type, reader: _Reader, fields: tuple[_Field, ...]) -> Any:
    by_type = {spec.key_type: spec for spec in fields}
    values: dict[str, Any] = {}
    unknown: dict[bytes, bytes] = {}
    for key, value in _read_pairs(reader):
        spec = by_type.get(key[0])
        if spec is None:
            unknown[key] = value
        elif spec.is_map:
            values.setdefault(spec.name, {})[key[1:]] = value
        else:
            if len(key) != 1:
                raise ValueError(f"invalid PSBT key: {key.hex()}")
            values[spec.name] = spec.decode(value)
    return cls(**values, unknown=unknown)


def _require_empty_keydata(key: bytes) -> None:
    if len(key) != 1:
        raise ValueError(f"invalid PSBT key: {key.hex()}")


@dataclass
class Psbt:
    """A version 0 partially signed transaction."""

    unsigned_tx: Transaction
    inputs: list[PsbtInput] = field(default_factory=list)
    outputs: list[PsbtOutput] = field(default_factory=list)
    version: int = 0
    xpub: dict[bytes, bytes] = field(default_factory=dict)
    proprietary: dict[bytes, bytes] = field(default_factory=dict)
    unknown: dict[bytes, bytes] = field(default_factory=dict)

    @classmethod
    def from_unsigned_tx(cls, tx: Transaction) -> Psbt:
        """Wrap a transaction that carries no script sigs or witnesses."""
        _check_unsigned(tx)
        copy = Transaction(tx.version, tx.lock_time, list(tx.inputs), list(tx.outputs))
        return cls(
            unsigned_tx=copy,
            inputs=[PsbtInput() for _ in copy.inputs],
            outputs=[PsbtOutput() for _ in copy.outputs],
        )

    @classmethod
    def from_base64(cls, text: str) -> Psbt:
        """Parse a base64-encoded PSBT; raises ValueError on malformed data."""
        try:
            data = base64.b64decode(text.strip(), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("invalid base64 PSBT") from exc
        return cls._from_bytes(data)

    def to_base64(self) -> str:
        return base64.b64encode(self._serialize()).decode("ascii")

    def __str__(self) -> str:
        return self.to_base64()

    def _serialize(self) -> bytes:
        parts = [_MAGIC, _pair(b"\x00", _encode_unsigned_tx(self.unsigned_tx))]
        parts.extend(_pair(b"\x01" + keydata, self.xpub[keydata]) for keydata in sorted(self.xpub))
        if self.version > 0:
            parts.append(_pair(b"\xfb", _encode_u32(self.version)))
        parts.extend(
            _pair(b"\xfc" + keydata, self.proprietary[keydata])
            for keydata in sorted(self.proprietary)
        )
        parts.extend(_pair(key, self.unknown[key]) for key in sorted(self.unknown))
        parts.append(b"\x00")
        parts.extend(_encode_section(psbtin, _INPUT_FIELDS) for psbtin in self.inputs)
        parts.extend(_encode_section(psbtout, _OUTPUT_FIELDS) for psbtout in self.outputs)
        return b"".join(parts)

    @classmethod
    def _from_bytes(cls, data: bytes) -> Psbt:
        if not data.startswith(_MAGIC):
            raise ValueError("invalid PSBT magic bytes")
        reader = _Reader(data[len(_MAGIC):])
        unsigned_tx: Transaction | None = None
        version = 0
        xpub: dict[bytes, bytes] = {}
        proprietary: dict[bytes, bytes] = {}
        unknown: dict[bytes, bytes] = {}
        for key, value in _read_pairs(reader):
            key_type, keydata = key[0], key[1:]
            if key_type == 0x00:
                _require_empty_keydata(key)
                unsigned_tx = _decode_unsigned_tx(value)
            elif key_type == 0x01:
                xpub[keydata] = value
            elif key_type == 0xFB:
                _require_empty_keydata(key)
                version = _decode_u32(value)
            elif key_type == 0xFC:
                proprietary[keydata] = value
            else:
                unknown[key] = value
        if unsigned_tx is None:
            raise ValueError("PSBT is missing the unsigned transaction")
        if version != 0:
            raise ValueError(f"unsupported PSBT version: {version}")
        _check_unsigned(unsigned_tx)
        inputs = [_decode_section(PsbtInput, reader, _INPUT_FIELDS) for _ in unsigned_tx.inputs]
        outputs = [
            _decode_section(PsbtOutput, reader, _OUTPUT_FIELDS) for _ in unsigned_tx.outputs
        ]
        return cls(unsigned_tx, inputs, outputs, version, xpub, proprietary, unknown)

    def input_pairs(self) -> Iterator[InputPairView]:
        """Each transaction input together with its PSBT input map."""
        return (
            InputPairView(txin, psbtin)
            for txin, psbtin in zip(self.unsigned_tx.inputs, self.inputs)
        )

    def validate(self) -> Psbt:
        """Return self if the maps match the transaction, else raise."""
        tx_ins, psbt_ins = len(self.unsigned_tx.inputs), len(self.inputs)
        tx_outs, psbt_outs = len(self.unsigned_tx.outputs), len(self.outputs)
        if psbt_ins != tx_ins:
            raise InconsistentPsbtError("inputs", tx_ins, psbt_ins)
        if psbt_outs != tx_outs:
            raise InconsistentPsbtError("outputs", tx_outs, psbt_outs)
        return self

    def validate_input_utxos(self) -> None:
        """Check the UTXO information of every input."""
        for index, pair in enumerate(self.input_pairs()):
            try:
                pair.validate_utxo()
            except PsbtInputError as exc:
                raise PsbtInputsError(index, exc) from exc


def _check_unsigned(tx: Transaction) -> None:
    if any(txin.script_sig for txin in tx.inputs):
        raise ValueError("unsigned transaction has script sigs")
    if any(txin.witness for txin in tx.inputs):
        raise ValueError("unsigned transaction has script witnesses")


def _invalid_prev_txout() -> PsbtInputError:
    return PsbtInputError("invalid previous transaction output")


@dataclass(frozen=True)
class InputPairView:
    """A transaction input viewed together with its PSBT input map."""

    txin: TxIn
    psbtin: PsbtInput

    def _non_witness_txout(self, tx: Transaction) -> TxOut:
        vout = self.txin.previous_output.vout
        if vout >= len(tx.outputs):
            raise IndexOutOfBoundsError(len(tx.outputs), vout)
        return tx.outputs[vout]

    def previous_txout(self) -> TxOut:
        """The output this input spends."""
        if self.psbtin.witness_utxo is not None:
            return self.psbtin.witness_utxo
        if self.psbtin.non_witness_utxo is None:
            raise MissingUtxoInformationError()
        return self._non_witness_txout(self.psbtin.non_witness_utxo)

    def validate_utxo(self) -> None:
        """Check that the UTXO fields are present and agree with the input."""
        non_witness = self.psbtin.non_witness_utxo
        witness = self.psbtin.witness_utxo
        if non_witness is None:
            if witness is None:
                raise _invalid_prev_txout() from MissingUtxoInformationError()
            return
        if non_witness.compute_txid() != self.txin.previous_output.txid:
            raise UnequalTxidError()
        try:
            non_witness_txout = self._non_witness_txout(non_witness)
        except PrevTxOutError as exc:
            raise _invalid_prev_txout() from exc
        if witness is not None and witness != non_witness_txout:
            raise SegWitTxOutMismatchError()

    def address_type(self) -> AddressType:
        """The address type of the output this input spends."""
        try:
            txo = self.previous_txout()
        except PrevTxOutError as exc:
            raise AddressTypeError("invalid previous transaction output") from exc
        try:
            kind = script_address_type(txo.script_pubkey)
        except ValueError as exc:
            raise AddressTypeError("invalid script") from exc
        if kind is None:
            raise UnknownAddressTypeError()
        return kind

    def expected_input_weight(self) -> int:
        """Predicted weight of this input once signed, in weight units."""
        try:
            kind = self.address_type()
        except AddressTypeError as exc:
            raise InputWeightError("invalid address type") from exc

        if kind is AddressType.P2PKH:
            prediction = InputWeightPrediction.P2PKH_COMPRESSED_MAX
        elif kind is AddressType.P2SH:
            if self.psbtin.final_script_sig is not None:
                redeem_script = redeem_script_from_script_sig(self.psbtin.final_script_sig)
            else:
                redeem_script = self.psbtin.redeem_script
            if redeem_script is None:
                raise InputWeightError("p2sh input missing a redeem script")
            if not is_p2wpkh(redeem_script):
                raise WeightNotSupportedError()
            prediction = _NESTED_P2WPKH_MAX
        elif kind is AddressType.P2WPKH:
            prediction = InputWeightPrediction.P2WPKH_MAX
        elif kind is AddressType.P2TR:
            prediction = InputWeightPrediction.P2TR_KEY_DEFAULT_SIGHASH
        else:
            raise WeightNotSupportedError()

        return prediction.weight() + _TXIN_BASE_WEIGHT