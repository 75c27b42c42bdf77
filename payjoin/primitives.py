"""Bitcoin transaction primitives: fee rates, outpoints, transactions and scripts."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Iterator, Sequence

__all__ = [
    "SEQUENCE_MAX",
    "FeeRate",
    "OutPoint",
    "TxIn",
    "TxOut",
    "Transaction",
    "AddressType",
    "address_type",
    "is_p2wpkh",
    "redeem_script_from_script_sig",
    "InputWeightPrediction",
]

SEQUENCE_MAX = 0xFFFFFFFF
_U64_MAX = 2**64 - 1


@dataclass(frozen=True, order=True)
class FeeRate:
    """A fee rate in satoshis per 1000 weight units."""

    sat_per_kwu: int

    BROADCAST_MIN: ClassVar[FeeRate]
    ZERO: ClassVar[FeeRate]

    def __post_init__(self) -> None:
        if not 0 <= self.sat_per_kwu <= _U64_MAX:
            raise ValueError(f"fee rate out of range: {self.sat_per_kwu}")

    @classmethod
    def from_sat_per_kwu(cls, sat_per_kwu: int) -> FeeRate:
        return cls(sat_per_kwu)

    @classmethod
    def from_sat_per_vb(cls, sat_per_vb: int) -> FeeRate:
        return cls(sat_per_vb * 250)

    def to_sat_per_vb_floor(self) -> int:
        return self.sat_per_kwu // 250

    def to_sat_per_vb_ceil(self) -> int:
        return -(-self.sat_per_kwu // 250)

    def __str__(self) -> str:
        return str(self.sat_per_kwu)


FeeRate.BROADCAST_MIN = FeeRate.from_sat_per_vb(1)
FeeRate.ZERO = FeeRate(0)


@dataclass(frozen=True)
class OutPoint:
    """A reference to a transaction output; ``txid`` is hex in display order."""

    txid: str
    vout: int

    def __post_init__(self) -> None:
        txid = self.txid.lower()
        if len(txid) != 64:
            raise ValueError("txid must be 64 hex characters")
        bytes.fromhex(txid)
        if not 0 <= self.vout <= 0xFFFFFFFF:
            raise ValueError(f"vout out of range: {self.vout}")
        object.__setattr__(self, "txid", txid)

    def _serialize(self) -> bytes:
        return bytes.fromhex(self.txid)[::-1] + self.vout.to_bytes(4, "little")


@dataclass(frozen=True)
class TxIn:
    """A transaction input."""

    previous_output: OutPoint
    script_sig: bytes = b""
    sequence: int = SEQUENCE_MAX
    witness: tuple[bytes, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "script_sig", bytes(self.script_sig))
        object.__setattr__(self, "witness", tuple(bytes(item) for item in self.witness))
        if not 0 <= self.sequence <= 0xFFFFFFFF:
            raise ValueError(f"sequence out of range: {self.sequence}")


@dataclass(frozen=True)
class TxOut:
    """A transaction output: an amount in satoshis locked to a script."""

    value: int
    script_pubkey: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "script_pubkey", bytes(self.script_pubkey))
        if not 0 <= self.value <= _U64_MAX:
            raise ValueError(f"amount out of range: {self.value}")


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
            raise ValueError("unexpected end of transaction data")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def uint(self, size: int) -> int:
        return int.from_bytes(self.read(size), "little")

    def compact_size(self) -> int:
        first = self.uint(1)
        if first < 0xFD:
            return first
        size = {0xFD: 2, 0xFE: 4, 0xFF: 8}[first]
        return self.uint(size)

    def var_bytes(self) -> bytes:
        return self.read(self.compact_size())

    def at_end(self) -> bool:
        return self._pos == len(self._data)


def _read_input(reader: _Reader) -> TxIn:
    txid = reader.read(32)[::-1].hex()
    vout = reader.uint(4)
    script_sig = reader.var_bytes()
    sequence = reader.uint(4)
    return TxIn(OutPoint(txid, vout), script_sig, sequence)


def _read_output(reader: _Reader) -> TxOut:
    value = reader.uint(8)
    return TxOut(value, reader.var_bytes())


@dataclass
class Transaction:
    """A Bitcoin transaction."""

    version: int = 2
    lock_time: int = 0
    inputs: list[TxIn] = field(default_factory=list)
    outputs: list[TxOut] = field(default_factory=list)

    def _uses_segwit_serialization(self) -> bool:
        return not self.inputs or any(txin.witness for txin in self.inputs)

    def _encode(self, with_witness: bool) -> bytes:
        parts = [(self.version & 0xFFFFFFFF).to_bytes(4, "little")]
        if with_witness:
            parts.append(b"\x00\x01")
        parts.append(_compact_size(len(self.inputs)))
        for txin in self.inputs:
            parts.append(txin.previous_output._serialize())
            parts.append(_var_bytes(txin.script_sig))
            parts.append(txin.sequence.to_bytes(4, "little"))
        parts.append(_compact_size(len(self.outputs)))
        for txout in self.outputs:
            parts.append(txout.value.to_bytes(8, "little"))
            parts.append(_var_bytes(txout.script_pubkey))
        if with_witness:
            for txin in self.inputs:
                parts.append(_compact_size(len(txin.witness)))
                parts.extend(_var_bytes(item) for item in txin.witness)
        parts.append(self.lock_time.to_bytes(4, "little"))
        return b"".join(parts)

    def serialize(self) -> bytes:
        """Consensus-encode the transaction, with witnesses where needed."""
        return self._encode(self._uses_segwit_serialization())

    @classmethod
    def from_bytes(cls, data: bytes) -> Transaction:
        """Decode a consensus-encoded transaction; raises ValueError on bad data."""
        reader = _Reader(bytes(data))
        version = int.from_bytes(reader.read(4), "little", signed=True)
        count = reader.compact_size()
        if count == 0:
            flag = reader.uint(1)
            if flag != 1:
                raise ValueError(f"unsupported segwit flag: {flag}")
            inputs = [_read_input(reader) for _ in range(reader.compact_size())]
            outputs = [_read_output(reader) for _ in range(reader.compact_size())]
            witnesses = [
                tuple(reader.var_bytes() for _ in range(reader.compact_size()))
                for _ in inputs
            ]
            if not any(witnesses):
                raise ValueError("witness flag set but no witnesses present")
            inputs = [
                TxIn(txin.previous_output, txin.script_sig, txin.sequence, witness)
                for txin, witness in zip(inputs, witnesses)
            ]
        else:
            inputs = [_read_input(reader) for _ in range(count)]
            outputs = [_read_output(reader) for _ in range(reader.compact_size())]
        lock_time = reader.uint(4)
        if not reader.at_end():
            raise ValueError("trailing data after transaction")
        return cls(version, lock_time, inputs, outputs)

    def compute_txid(self) -> str:
        """The transaction id, hex in display order."""
        digest = hashlib.sha256(hashlib.sha256(self._encode(False)).digest()).digest()
        return digest[::-1].hex()


class AddressType(Enum):
    P2PKH = "p2pkh"
    P2SH = "p2sh"
    P2WPKH = "p2wpkh"
    P2WSH = "p2wsh"
    P2TR = "p2tr"


def _witness_version(opcode: int) -> int | None:
    if opcode == 0x00:
        return 0
    if 0x51 <= opcode <= 0x60:
        return opcode - 0x50
    return None


def _is_witness_program(script: bytes) -> bool:
    if not 4 <= len(script) <= 42:
        return False
    if _witness_version(script[0]) is None:
        return False
    push = script[1]
    return 2 <= push <= 40 and push == len(script) - 2


def is_p2wpkh(script: bytes) -> bool:
    """Whether the script is a version 0, 20-byte witness program."""
    return len(script) == 22 and script[0] == 0x00 and script[1] == 0x14


def address_type(script: bytes) -> AddressType | None:
    """The address type of a script pubkey.

    Returns None for a valid witness program of an unknown kind and raises
    ValueError when the script does not correspond to an address at all.
    """
    script = bytes(script)
    if (
        len(script) == 25
        and script[:3] == b"\x76\xa9\x14"
        and script[23:] == b"\x88\xac"
    ):
        return AddressType.P2PKH
    if len(script) == 23 and script[:2] == b"\xa9\x14" and script[22] == 0x87:
        return AddressType.P2SH
    if not _is_witness_program(script):
        raise ValueError("script is not a p2pkh, p2sh or witness program")
    version = _witness_version(script[0])
    program_len = len(script) - 2
    if version == 0:
        if program_len == 20:
            return AddressType.P2WPKH
        if program_len == 32:
            return AddressType.P2WSH
        raise ValueError("invalid segwit v0 program length")
    if version == 1 and program_len == 32:
        return AddressType.P2TR
    return None


def _pushes(script: bytes) -> Iterator[bytes | None]:
    """Yield pushed data for push instructions and None for other opcodes."""
    pos = 0
    while pos < len(script):
        opcode = script[pos]
        pos += 1
        if opcode <= 0x4B:
            length = opcode
        elif opcode in (0x4C, 0x4D, 0x4E):
            size = {0x4C: 1, 0x4D: 2, 0x4E: 4}[opcode]
            if pos + size > len(script):
                raise ValueError("truncated push length")
            length = int.from_bytes(script[pos:pos + size], "little")
            pos += size
        else:
            yield None
            continue
        if pos + length > len(script):
            raise ValueError("truncated push data")
        yield script[pos:pos + length]
        pos += length


def redeem_script_from_script_sig(script_sig: bytes) -> bytes | None:
    """The redeem script pushed last by a push-only script sig, if any."""
    try:
        pushes = list(_pushes(bytes(script_sig)))
    except ValueError:
        return None
    if not pushes or any(item is None for item in pushes):
        return None
    return pushes[-1]


@dataclass(frozen=True)
class InputWeightPrediction:
    """Predicted sizes of an input's script sig and witness."""

    script_size: int
    witness_size: int

    P2WPKH_MAX: ClassVar[InputWeightPrediction]
    P2PKH_COMPRESSED_MAX: ClassVar[InputWeightPrediction]
    P2PKH_UNCOMPRESSED_MAX: ClassVar[InputWeightPrediction]
    P2TR_KEY_DEFAULT_SIGHASH: ClassVar[InputWeightPrediction]
    P2TR_KEY_NON_DEFAULT_SIGHASH: ClassVar[InputWeightPrediction]

    @classmethod
    def from_slice(
        cls, script_size: int, witness_element_sizes: Sequence[int]
    ) -> InputWeightPrediction:
        elements = list(witness_element_sizes)
        witness = sum(size + len(_compact_size(size)) for size in elements)
        if elements:
            witness += len(_compact_size(len(elements)))
        return cls(script_size + len(_compact_size(script_size)), witness)

    def weight(self) -> int:
        """Weight in weight units of the script sig and witness."""
        return self.script_size * 4 + self.witness_size


InputWeightPrediction.P2WPKH_MAX = InputWeightPrediction.from_slice(0, [72, 33])
InputWeightPrediction.P2PKH_COMPRESSED_MAX = InputWeightPrediction.from_slice(107, [])
InputWeightPrediction.P2PKH_UNCOMPRESSED_MAX = InputWeightPrediction.from_slice(139, [])
InputWeightPrediction.P2TR_KEY_DEFAULT_SIGHASH = InputWeightPrediction.from_slice(0, [64])
InputWeightPrediction.P2TR_KEY_NON_DEFAULT_SIGHASH = InputWeightPrediction.from_slice(0, [65])