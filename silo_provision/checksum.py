"""Checksums used by the SiLo command framing and record identifiers."""

import hashlib
from typing import List

_CRC16_POLY = 0x1021
_CRC16_INIT = 0xFFFF
_CRC16_TABLE: List[int] = []


def _init_crc16_table() -> None:
    if _CRC16_TABLE:
        return
    for i in range(256):
        crc = i << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ _CRC16_POLY) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
        _CRC16_TABLE.append(crc)


def crc16(data: bytes) -> int:
    """CRC-16/CCITT-FALSE (poly 0x1021, init 0xFFFF, unreflected).

    This is the variant the tag firmware checks the input record against.
    """
    _init_crc16_table()
    crc = _CRC16_INIT
    for byte in data:
        crc = ((crc << 8) & 0xFFFF) ^ _CRC16_TABLE[((crc >> 8) ^ byte) & 0xFF]
    return crc


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def prefixed_sha256(data: bytes) -> str:
    """SHA-256 as a ``0x``-prefixed hex string, the form used in record files."""
    return "0x" + sha256_hex(data)
