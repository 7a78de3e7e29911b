"""SiLo tag memory layout.

Decodes the static record and the output record read back from a tag, and
encodes the input record written to it. Offsets are fixed by the tag
firmware; the encoder output is consumed by hardware that does no tolerant
parsing, so byte order and padding must not change.

Memory map (4-byte pages):
    0x00 - 0x62   static record (identity, keys, serials, config zone)
    0x64 - 0xA4   output record (last hash, signatures, counter)
    0xAC - 0xAE   diagnostic text
    0xB0 - 0xC9   input record (written by the host)
    0xCB          last IC block, read to confirm writes
    0xE8          configuration page
"""

import os
from typing import Optional

from .checksum import crc16, sha256
from .exceptions import MalformedTagError
from .types import TagSnapshot, SignatureResult, ProvisioningRequest

PAGE_SIZE = 4

STATIC_FIRST_PAGE = 0x00
STATIC_END_PAGE = 0x63
OUTPUT_FIRST_PAGE = 0x64
OUTPUT_END_PAGE = 0xA5
DIAGNOSTIC_FIRST_PAGE = 0xAC
DIAGNOSTIC_END_PAGE = 0xAF
INPUT_RECORD_PAGE = 0xB0
CONFIRM_PAGE = 0xCB
CONFIG_PAGE = 0xE8

STATIC_CAPACITY = (STATIC_END_PAGE - STATIC_FIRST_PAGE) * PAGE_SIZE
OUTPUT_CAPACITY = (OUTPUT_END_PAGE - OUTPUT_FIRST_PAGE) * PAGE_SIZE
DIAGNOSTIC_CAPACITY = (DIAGNOSTIC_END_PAGE - DIAGNOSTIC_FIRST_PAGE) * PAGE_SIZE

# (field, offset, length) in bytes
STATIC_LAYOUT = (
    ("hardware_revision", 70, 4),
    ("firmware_number", 74, 4),
    ("serial_number", 78, 8),
    ("external_public_key", 86, 64),
    ("internal_public_key", 150, 64),
    ("smart_contract_address", 214, 20),
    ("nxp_i2c_serial", 234, 7),
    ("nxp_mcu_serial", 241, 16),
    ("secure_element_serial", 257, 9),
    ("config_zone", 266, 128),
)

OUTPUT_LAYOUT = (
    ("last_hash", 65, 33),
    ("external_signature", 129, 64),
    ("internal_signature", 193, 64),
    ("counter", 257, 1),
)

FRAME_HEADER = bytes.fromhex("550063")
FRAME_TRAILER = bytes.fromhex("fe00")
ADDRESS_FIELD_WIDTH = 32
BLOCK_WIDTH = 32
DIGEST_WIDTH = 32
WRITE_RECORD_LENGTH = (
    len(FRAME_HEADER) + 1 + ADDRESS_FIELD_WIDTH + BLOCK_WIDTH + DIGEST_WIDTH + 2 + len(FRAME_TRAILER)
)

DIAGNOSTIC_SUCCESS = "Tag written\x00"


class _FieldCursor:
    """Reads named fixed-width fields out of one flat buffer."""

    def __init__(self, buffer: bytes):
        self._buffer = bytes(buffer)
        self._pos = 0

    def seek(self, offset: int) -> None:
        self._pos = offset

    def read(self, name: str, length: int) -> bytes:
        end = self._pos + length
        if end > len(self._buffer):
            raise MalformedTagError(name, end, len(self._buffer))
        chunk = self._buffer[self._pos:end]
        self._pos = end
        return chunk


def _decode_layout(raw: bytes, layout) -> dict:
    cursor = _FieldCursor(raw)
    fields = {}
    for name, offset, length in layout:
        cursor.seek(offset)
        fields[name] = cursor.read(name, length).hex()
    return fields


def decode(raw: bytes) -> TagSnapshot:
    """Decode a static record dump (pages 0x00-0x62).

    Raises:
        MalformedTagError: If the dump is not exactly the static capacity.
    """
    if len(raw) != STATIC_CAPACITY:
        raise MalformedTagError("static_record", STATIC_CAPACITY, len(raw))
    return TagSnapshot(**_decode_layout(raw, STATIC_LAYOUT))


def decode_output_region(raw: bytes) -> SignatureResult:
    """Decode an output record dump (pages 0x64-0xA4)."""
    return SignatureResult(**_decode_layout(raw, OUTPUT_LAYOUT))


def decode_diagnostic(raw: bytes) -> str:
    """Decode the diagnostic pages as ASCII text (NUL bytes kept)."""
    return bytes(b & 0x7F for b in raw).decode("ascii")


def pad_address(address: bytes) -> bytes:
    """Right-pad a destination address with zeros to the record field width."""
    if len(address) > ADDRESS_FIELD_WIDTH:
        raise ValueError(
            f"address must be at most {ADDRESS_FIELD_WIDTH} bytes, got {len(address)}"
        )
    return address + b"\x00" * (ADDRESS_FIELD_WIDTH - len(address))


def command_digest(address: bytes, block: bytes) -> bytes:
    """Digest the secure element signs: SHA-256 over address || block."""
    return sha256(address + block)


def encode_write_record(command: bytes, address: bytes, block: bytes, digest: bytes) -> bytes:
    """Encode the input record written at page 0xB0.

    Layout: 55 00 63 | command | address (zero padded to 32) | block | digest |
    CRC-16 big endian | FE 00. The CRC covers command through digest.
    """
    if len(command) != 1:
        raise ValueError(f"command must be 1 byte, got {len(command)}")
    if len(block) != BLOCK_WIDTH:
        raise ValueError(f"block must be {BLOCK_WIDTH} bytes, got {len(block)}")
    if len(digest) != DIGEST_WIDTH:
        raise ValueError(f"digest must be {DIGEST_WIDTH} bytes, got {len(digest)}")

    body = command + pad_address(address) + block + digest
    checksum = crc16(body).to_bytes(2, "big")
    return FRAME_HEADER + body + checksum + FRAME_TRAILER


def record_checksum(record: bytes) -> int:
    """Checksum field of an encoded input record."""
    return int.from_bytes(record[-4:-2], "big")


def build_request(command: str, address: str, block: Optional[str] = None) -> ProvisioningRequest:
    """Build a fresh input record from hex inputs.

    A random 32-byte block reference is generated when ``block`` is None.
    The digest is computed over the unpadded address.
    """
    command_bytes = bytes.fromhex(command)
    address_bytes = bytes.fromhex(address)
    block_bytes = bytes.fromhex(block) if block else os.urandom(BLOCK_WIDTH)

    digest = command_digest(address_bytes, block_bytes)
    record = encode_write_record(command_bytes, address_bytes, block_bytes, digest)

    return ProvisioningRequest(
        command=command_bytes.hex(),
        address=address_bytes.hex(),
        block=block_bytes.hex(),
        digest=digest.hex(),
        checksum=record_checksum(record),
        record=record,
    )
