"""
Kaspa address codec.

Addresses look like ``kaspa:<base32 payload><8 char checksum>``. The payload
is a version byte followed by a public key or script hash, and the checksum
is the 40-bit cashaddr BCH code over the prefix and payload.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from kaspa_explorer.exceptions import InvalidAddressError

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_CHARSET_INDEX = {char: index for index, char in enumerate(CHARSET)}

PREFIXES = ("kaspa", "kaspatest", "kaspasim", "kaspadev")

CHECKSUM_LENGTH = 8

_GENERATORS = (0x98F2BC8E61, 0x79B76D99E2, 0xF33E5FB3C4, 0xAE2EABE2A8, 0x1E4F43E470)


class AddressVersion(IntEnum):
    PUBKEY = 0
    PUBKEY_ECDSA = 1
    SCRIPT_HASH = 8

    @property
    def payload_length(self) -> int:
        return 33 if self is AddressVersion.PUBKEY_ECDSA else 32


@dataclass(frozen=True)
class KaspaAddress:
    """A parsed address; ``str()`` gives the canonical lowercase form."""

    prefix: str
    version: AddressVersion
    payload: bytes

    def __str__(self) -> str:
        return encode_address(self.prefix, self.version, self.payload)


def _polymod(values: list[int]) -> int:
    checksum = 1
    for value in values:
        top = checksum >> 35
        checksum = ((checksum & 0x07FFFFFFFF) << 5) ^ value
        for bit, generator in enumerate(_GENERATORS):
            if (top >> bit) & 1:
                checksum ^= generator
    return checksum ^ 1


def _checksum(prefix: str, payload5: list[int]) -> int:
    prefix5 = [ord(char) & 0x1F for char in prefix]
    return _polymod(prefix5 + [0] + payload5 + [0] * CHECKSUM_LENGTH)


def _convert_bits(data: bytes | list[int], from_bits: int, to_bits: int, pad: bool) -> list[int]:
    accumulator = 0
    bits = 0
    result: list[int] = []
    max_value = (1 << to_bits) - 1
    for value in data:
        accumulator = (accumulator << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            result.append((accumulator >> bits) & max_value)
    if pad:
        if bits:
            result.append((accumulator << (to_bits - bits)) & max_value)
    elif bits >= from_bits or (accumulator << (to_bits - bits)) & max_value:
        raise ValueError("non-zero padding bits")
    return result


def encode_address(prefix: str, version: AddressVersion | int, payload: bytes) -> str:
    """Encode a version byte and payload into ``prefix:...`` form."""
    if prefix not in PREFIXES:
        raise InvalidAddressError(f"Unknown address prefix: {prefix}")
    version = AddressVersion(version)
    if len(payload) != version.payload_length:
        raise InvalidAddressError(
            f"Payload for version {version.name} must be {version.payload_length} bytes, got {len(payload)}"
        )
    payload5 = _convert_bits(bytes([version]) + payload, 8, 5, pad=True)
    checksum = _checksum(prefix, payload5)
    checksum5 = [(checksum >> (5 * (CHECKSUM_LENGTH - 1 - i))) & 0x1F for i in range(CHECKSUM_LENGTH)]
    return f"{prefix}:" + "".join(CHARSET[value] for value in payload5 + checksum5)


def parse_address(text: str) -> KaspaAddress:
    """
    Parse and validate a Kaspa address.

    Raises:
        InvalidAddressError: on any structural, charset or checksum problem
    """
    if not isinstance(text, str) or not text.strip():
        raise InvalidAddressError("Address is required")
    candidate = text.strip()
    if candidate.lower() != candidate and candidate.upper() != candidate:
        raise InvalidAddressError("Address must not mix upper and lower case", details={"address": text})
    candidate = candidate.lower()

    prefix, separator, body = candidate.partition(":")
    if not separator:
        raise InvalidAddressError("Address is missing its network prefix", details={"address": text})
    if prefix not in PREFIXES:
        raise InvalidAddressError(f"Unknown address prefix: {prefix}", details={"address": text})
    if len(body) <= CHECKSUM_LENGTH:
        raise InvalidAddressError("Address payload is too short", details={"address": text})

    try:
        values = [_CHARSET_INDEX[char] for char in body]
    except KeyError as exc:
        raise InvalidAddressError(f"Invalid character in address: {exc.args[0]!r}", details={"address": text}) from exc

    payload5, checksum5 = values[:-CHECKSUM_LENGTH], values[-CHECKSUM_LENGTH:]
    expected = 0
    for value in checksum5:
        expected = (expected << 5) | value
    if _checksum(prefix, payload5) != expected:
        raise InvalidAddressError("Address checksum mismatch", details={"address": text})

    try:
        raw = bytes(_convert_bits(payload5, 5, 8, pad=False))
    except ValueError as exc:
        raise InvalidAddressError("Address has non-canonical padding", details={"address": text}) from exc
    if not raw:
        raise InvalidAddressError("Address payload is empty", details={"address": text})
    try:
        version = AddressVersion(raw[0])
    except ValueError as exc:
        raise InvalidAddressError(f"Unsupported address version: {raw[0]}", details={"address": text}) from exc
    payload = raw[1:]
    if len(payload) != version.payload_length:
        raise InvalidAddressError(
            f"Invalid payload length {len(payload)} for version {version.name}",
            details={"address": text},
        )
    return KaspaAddress(prefix=prefix, version=version, payload=payload)
