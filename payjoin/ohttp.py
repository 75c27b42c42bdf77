"""Oblivious HTTP key configurations and their compact bech32 text form."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

__all__ = [
    "KEM_X25519_SHA256",
    "KEM_K256_SHA256",
    "KDF_HKDF_SHA256",
    "KDF_HKDF_SHA384",
    "KDF_HKDF_SHA512",
    "AEAD_AES_128_GCM",
    "AEAD_AES_256_GCM",
    "AEAD_CHACHA20_POLY1305",
    "KeyConfig",
    "ParseOhttpKeysError",
    "OhttpKeys",
    "bech32_encode_nochecksum",
    "bech32_decode_nochecksum",
]

KEM_X25519_SHA256 = 0x0020
KEM_K256_SHA256 = 0x0016  # DHKEM(secp256k1, HKDF-SHA256)

KDF_HKDF_SHA256 = 0x0001
KDF_HKDF_SHA384 = 0x0002
KDF_HKDF_SHA512 = 0x0003

AEAD_AES_128_GCM = 0x0001
AEAD_AES_256_GCM = 0x0002
AEAD_CHACHA20_POLY1305 = 0x0003

_KEM_PUBLIC_KEY_SIZES = {KEM_X25519_SHA256: 32, KEM_K256_SHA256: 65}
_KDFS = frozenset({KDF_HKDF_SHA256, KDF_HKDF_SHA384, KDF_HKDF_SHA512})
_AEADS = frozenset({AEAD_AES_128_GCM, AEAD_AES_256_GCM, AEAD_CHACHA20_POLY1305})

_ERR_FORMAT = "an error was found in the format"
_ERR_TRUNCATED = "a field was truncated"
_ERR_UNSUPPORTED = "the configuration was not supported"
_ERR_CRYPTO = "a problem occurred during cryptographic processing"
_ERR_TOO_MANY_SUITES = "the configuration contained too many symmetric suites"

_OH_HRP = "OH"
_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_CHARSET_INDEX = {char: index for index, char in enumerate(_CHARSET)}


def _validate_public_key(kem: int, public_key: bytes) -> None:
    try:
        if kem == KEM_K256_SHA256:
            if public_key[:1] != b"\x04":
                raise ValueError("expected an uncompressed point")
            ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), public_key)
        else:
            X25519PublicKey.from_public_bytes(public_key)
    except ValueError as exc:
        raise ValueError(_ERR_CRYPTO) from exc


def _compress_k256(public_key: bytes) -> bytes:
    point = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), public_key)
    return point.public_bytes(Encoding.X962, PublicFormat.CompressedPoint)


def _decompress_k256(public_key: bytes) -> bytes:
    if len(public_key) != 33 or public_key[0] not in (2, 3):
        raise ValueError("expected a compressed point")
    point = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), public_key)
    return point.public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)


class _Cursor:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def take(self, n: int) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise ValueError(_ERR_TRUNCATED)
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def u16(self) -> int:
        return int.from_bytes(self.take(2), "big")

    def at_end(self) -> bool:
        return self._pos == len(self._data)


@dataclass(frozen=True)
class KeyConfig:
    """An OHTTP key configuration: key id, KEM, public key and symmetric suites.

    ``symmetric`` holds (KDF id, AEAD id) pairs.
    """

    key_id: int
    kem: int
    public_key: bytes
    symmetric: tuple[tuple[int, int], ...]
    private_key: Any = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not 0 <= self.key_id <= 0xFF:
            raise ValueError(f"key id out of range: {self.key_id}")
        object.__setattr__(self, "public_key", bytes(self.public_key))
        object.__setattr__(
            self, "symmetric", tuple((int(kdf), int(aead)) for kdf, aead in self.symmetric)
        )

    @classmethod
    def generate(cls, key_id: int) -> KeyConfig:
        """A fresh secp256k1 configuration using HKDF-SHA256 and ChaCha20Poly1305."""
        secret = ec.generate_private_key(ec.SECP256K1())
        public_key = secret.public_key().public_bytes(
            Encoding.X962, PublicFormat.UncompressedPoint
        )
        return cls(
            key_id,
            KEM_K256_SHA256,
            public_key,
            ((KDF_HKDF_SHA256, AEAD_CHACHA20_POLY1305),),
            private_key=secret,
        )

    @classmethod
    def decode(cls, data: bytes) -> KeyConfig:
        """Decode an encoded key configuration; raises ValueError on bad data."""
        cursor = _Cursor(bytes(data))
        key_id = cursor.take(1)[0]
        kem = cursor.u16()
        public_key_size = _KEM_PUBLIC_KEY_SIZES.get(kem)
        if public_key_size is None:
            raise ValueError(_ERR_UNSUPPORTED)
        public_key = cursor.take(public_key_size)
        symmetric_bytes = cursor.take(cursor.u16())
        if not symmetric_bytes or len(symmetric_bytes) % 4:
            raise ValueError(_ERR_FORMAT)
        suites = []
        for offset in range(0, len(symmetric_bytes), 4):
            kdf = int.from_bytes(symmetric_bytes[offset:offset + 2], "big")
            aead = int.from_bytes(symmetric_bytes[offset + 2:offset + 4], "big")
            if kdf not in _KDFS or aead not in _AEADS:
                raise ValueError(_ERR_UNSUPPORTED)
            suites.append((kdf, aead))
        if not cursor.at_end():
            raise ValueError(_ERR_FORMAT)
        _validate_public_key(kem, public_key)
        return cls(key_id, kem, public_key, tuple(suites))

    def encode(self) -> bytes:
        """The wire encoding of this configuration."""
        symmetric_len = 4 * len(self.symmetric)
        if symmetric_len > 0xFFFF:
            raise ValueError(_ERR_TOO_MANY_SUITES)
        parts = [
            bytes([self.key_id]),
            self.kem.to_bytes(2, "big"),
            self.public_key,
            symmetric_len.to_bytes(2, "big"),
        ]
        parts.extend(
            kdf.to_bytes(2, "big") + aead.to_bytes(2, "big") for kdf, aead in self.symmetric
        )
        return b"".join(parts)


def _validate_hrp(hrp: str) -> None:
    if not 1 <= len(hrp) <= 83:
        raise ValueError("invalid human-readable part length")
    if any(not 33 <= ord(char) <= 126 for char in hrp):
        raise ValueError("invalid character in human-readable part")


def bech32_encode_nochecksum(hrp: str, data: bytes) -> str:
    """Encode ``data`` as upper-case bech32 text without a checksum."""
    _validate_hrp(hrp)
    bits = "".join(f"{byte:08b}" for byte in bytes(data))
    if len(bits) % 5:
        bits += "0" * (5 - len(bits) % 5)
    chars = "".join(_CHARSET[int(bits[pos:pos + 5], 2)] for pos in range(0, len(bits), 5))
    return f"{hrp}1{chars}".upper()


def bech32_decode_nochecksum(text: str) -> tuple[str, bytes]:
    """Decode bech32 text without a checksum into (hrp, data).

    Raises ValueError for mixed case, a missing separator or invalid characters.
    """
    if text != text.lower() and text != text.upper():
        raise ValueError("mixed-case bech32 string")
    separator = text.rfind("1")
    if separator < 0:
        raise ValueError("missing bech32 separator")
    hrp, payload = text[:separator], text[separator + 1:]
    _validate_hrp(hrp)
    values = []
    for char in payload.lower():
        value = _CHARSET_INDEX.get(char)
        if value is None:
            raise ValueError(f"invalid bech32 character: {char!r}")
        values.append(value)
    bits = "".join(f"{value:05b}" for value in values)
    data = bytes(int(bits[pos:pos + 8], 2) for pos in range(0, len(bits) - 7, 8))
    return hrp, data


class ParseOhttpKeysError(ValueError):
    """Compact OHTTP keys could not be parsed."""

    class Kind(Enum):
        INVALID_FORMAT = "invalid_format"
        INVALID_PUBLIC_KEY = "invalid_public_key"
        DECODE_BECH32 = "decode_bech32"
        DECODE_KEY_CONFIG = "decode_key_config"

    def __init__(self, kind: ParseOhttpKeysError.Kind, source: Exception | None = None) -> None:
        kinds = ParseOhttpKeysError.Kind
        if kind is kinds.INVALID_FORMAT:
            message = "Invalid format"
        elif kind is kinds.INVALID_PUBLIC_KEY:
            message = "Invalid public key"
        elif kind is kinds.DECODE_BECH32:
            message = f"Failed to decode base64: {source}"
        else:
            message = f"Failed to decode KeyConfig: {source}"
        super().__init__(message)
        self.kind = kind
        self.source = source
        if source is not None:
            self.__cause__ = source


@dataclass(frozen=True, eq=False)
class OhttpKeys:
    """The OHTTP key configuration of a payjoin directory."""

    config: KeyConfig

    @classmethod
    def decode(cls, data: bytes) -> OhttpKeys:
        """Decode a full key configuration; raises ValueError on bad data."""
        return cls(KeyConfig.decode(data))

    @classmethod
    def from_compact(cls, data: bytes) -> OhttpKeys:
        """Build keys from ``key_id || compressed secp256k1 public key``."""
        data = bytes(data)
        if len(data) < 34:
            raise ParseOhttpKeysError(ParseOhttpKeysError.Kind.INVALID_FORMAT)
        key_id, compressed = data[0], data[1:34]
        try:
            public_key = _decompress_k256(compressed)
        except ValueError as exc:
            raise ParseOhttpKeysError(ParseOhttpKeysError.Kind.INVALID_PUBLIC_KEY) from exc
        encoded = (
            bytes([key_id])
            + KEM_K256_SHA256.to_bytes(2, "big")
            + public_key
            + (4).to_bytes(2, "big")
            + KDF_HKDF_SHA256.to_bytes(2, "big")
            + AEAD_CHACHA20_POLY1305.to_bytes(2, "big")
        )
        try:
            return cls(KeyConfig.decode(encoded))
        except ValueError as exc:
            raise ParseOhttpKeysError(ParseOhttpKeysError.Kind.DECODE_KEY_CONFIG, exc) from exc

    @classmethod
    def from_str(cls, text: str) -> OhttpKeys:
        """Parse the compact bech32 form produced by ``str(keys)``."""
        try:
            hrp, data = bech32_decode_nochecksum(text)
        except ValueError as exc:
            raise ParseOhttpKeysError(ParseOhttpKeysError.Kind.DECODE_BECH32, exc) from exc
        if hrp.upper() != _OH_HRP:
            raise ParseOhttpKeysError(ParseOhttpKeysError.Kind.INVALID_FORMAT)
        return cls.from_compact(data)

    def encode(self) -> bytes:
        """The wire encoding of the key configuration."""
        return self.config.encode()

    def __str__(self) -> str:
        encoded = self.encode()
        public_key = encoded[3:68]
        if len(public_key) != 65:
            raise ValueError("key configuration has no secp256k1 public key")
        compressed = _compress_k256(public_key)
        return bech32_encode_nochecksum(_OH_HRP, bytes([encoded[0]]) + compressed)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OhttpKeys):
            return NotImplemented
        try:
            return self.encode() == other.encode()
        except ValueError:
            return False

    def __hash__(self) -> int:
        return hash(self.encode())