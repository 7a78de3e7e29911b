"""Contactless transport for SiLo tags.

The orchestrator only needs page reads and writes (``TagTransport``). This
module ships a PC/SC implementation on top of pyscard, a listener that turns
pyscard card/reader events into workflow runs, and an in-memory simulated
tag for tests and dry runs.
"""

import os
import logging
from typing import Callable, Iterable, List, Optional, Protocol, Tuple

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, decode_dss_signature

from . import codec
from .checksum import crc16
from .exceptions import TransportError

logger = logging.getLogger(__name__)

# PC/SC pseudo-APDUs for memory cards (READ BINARY / UPDATE BINARY)
_APDU_READ = [0xFF, 0xB0, 0x00]
_APDU_UPDATE = [0xFF, 0xD6, 0x00]
_SW_OK = (0x90, 0x00)


class TagTransport(Protocol):
    """Page-level access to one presented tag."""

    def read_page(self, address: int, length: int) -> bytes:
        ...

    def write_page(self, address: int, data: bytes) -> None:
        ...


class PcscCardSession:
    """``TagTransport`` over a connected pyscard card connection."""

    def __init__(self, connection, reader_name: str = ""):
        self._connection = connection
        self.reader_name = reader_name

    def _transmit(self, operation: str, address: int, apdu: List[int]) -> bytes:
        try:
            data, sw1, sw2 = self._connection.transmit(apdu)
        except Exception as e:
            raise TransportError(operation, address, str(e), e)
        if (sw1, sw2) != _SW_OK:
            raise TransportError(operation, address, f"status {sw1:02X}{sw2:02X}")
        return bytes(data)

    def read_page(self, address: int, length: int) -> bytes:
        data = self._transmit("read", address, _APDU_READ + [address & 0xFF, length])
        if len(data) < length:
            raise TransportError("read", address, f"short read: {len(data)} of {length} bytes")
        return data[:length]

    def write_page(self, address: int, data: bytes) -> None:
        """Write ``data`` one 4-byte page at a time starting at ``address``."""
        if len(data) % codec.PAGE_SIZE:
            raise TransportError(
                "write", address, f"data length {len(data)} is not a multiple of {codec.PAGE_SIZE}"
            )
        for i in range(0, len(data), codec.PAGE_SIZE):
            page = address + i // codec.PAGE_SIZE
            chunk = list(data[i:i + codec.PAGE_SIZE])
            self._transmit("write", page, _APDU_UPDATE + [page & 0xFF, codec.PAGE_SIZE] + chunk)


class PcscListener:
    """Forwards PC/SC card-present events to a handler.

    pyscard notifies observers from its monitoring thread one event at a
    time, so a handler that runs the workflow to completion serializes
    cards naturally. pyscard is imported here rather than at module level
    since it needs the PC/SC system library (``pip install silo-provision[pcsc]``).

    Usage:
        listener = PcscListener(lambda session, reader: orchestrator.process_card_sync(session, reader))
        listener.start()
    """

    def __init__(
        self,
        on_card_present: Callable[[PcscCardSession, str], None],
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        from smartcard.CardMonitoring import CardMonitor, CardObserver
        from smartcard.ReaderMonitoring import ReaderMonitor, ReaderObserver

        listener = self

        class _Cards(CardObserver):
            def update(self, observable, actions):
                added, _removed = actions
                for card in added:
                    listener._card_present(card)

        class _Readers(ReaderObserver):
            def update(self, observable, actions):
                added, removed = actions
                for reader in added:
                    listener.on_reader_attached(str(reader))
                for reader in removed:
                    listener.on_reader_removed(str(reader))

        self._on_card_present = on_card_present
        self._on_error = on_error
        self._card_monitor_cls = CardMonitor
        self._reader_monitor_cls = ReaderMonitor
        self._card_observer = _Cards()
        self._reader_observer = _Readers()
        self._card_monitor = None
        self._reader_monitor = None

    def on_reader_attached(self, reader: str) -> None:
        logger.info(f"device attached {reader}")

    def on_reader_removed(self, reader: str) -> None:
        logger.info(f"device removed {reader}")

    def on_error(self, error: Exception) -> None:
        logger.error(f"an error occurred: {error}")
        if self._on_error:
            self._on_error(error)

    def _card_present(self, card) -> None:
        reader = str(card.reader)
        logger.info(f"card detected {reader} atr={bytes(card.atr).hex()}")
        try:
            connection = card.createConnection()
            connection.connect()
        except Exception as e:
            self.on_error(e)
            return
        try:
            self._on_card_present(PcscCardSession(connection, reader), reader)
        except Exception as e:
            self.on_error(e)
        finally:
            try:
                connection.disconnect()
            except Exception as e:
                logger.debug(f"disconnect failed on {reader}: {e}")

    def start(self) -> None:
        self._reader_monitor = self._reader_monitor_cls()
        self._reader_monitor.addObserver(self._reader_observer)
        self._card_monitor = self._card_monitor_cls()
        self._card_monitor.addObserver(self._card_observer)

    def stop(self) -> None:
        if self._card_monitor is not None:
            self._card_monitor.deleteObserver(self._card_observer)
            self._card_monitor = None
        if self._reader_monitor is not None:
            self._reader_monitor.deleteObserver(self._reader_observer)
            self._reader_monitor = None


def raw_public_key(private_key: ec.EllipticCurvePrivateKey) -> bytes:
    """Raw X || Y encoding of a P-256 public key."""
    numbers = private_key.public_key().public_numbers()
    return numbers.x.to_bytes(32, "big") + numbers.y.to_bytes(32, "big")


def sign_digest(private_key: ec.EllipticCurvePrivateKey, digest: bytes) -> bytes:
    """Raw R || S signature over a precomputed SHA-256 digest."""
    der = private_key.sign(digest, ec.ECDSA(Prehashed(hashes.SHA256())))
    r, s = decode_dss_signature(der)
    return r.to_bytes(32, "big") + s.to_bytes(32, "big")


class MockTagTransport:
    """Simulated SiLo tag for testing without hardware.

    Holds the tag memory in a flat buffer. Writing an input record at page
    0xB0 makes the simulated secure element check the CRC, sign the digest
    and fill the output and diagnostic pages, the way a real unit does.

    Usage:
        tag = MockTagTransport()
        result = orchestrator.process_card_sync(tag)
        assert result.verified
    """

    MEMORY_PAGES = 0x100

    def __init__(
        self,
        external_key: Optional[ec.EllipticCurvePrivateKey] = None,
        internal_key: Optional[ec.EllipticCurvePrivateKey] = None,
        provisioning_key: Optional[ec.EllipticCurvePrivateKey] = None,
        diagnostic: str = codec.DIAGNOSTIC_SUCCESS,
        failing_pages: Iterable[int] = (),
        short_pages: Iterable[int] = (),
        tamper_signature: bool = False,
    ):
        self.external_key = external_key or ec.generate_private_key(ec.SECP256R1())
        self.internal_key = internal_key or ec.generate_private_key(ec.SECP256R1())
        self.provisioning_key = provisioning_key or ec.generate_private_key(ec.SECP256R1())
        self.diagnostic = diagnostic
        self.failing_pages = set(failing_pages)
        self.short_pages = set(short_pages)
        self.tamper_signature = tamper_signature
        self.operations: List[Tuple[str, int]] = []
        self.counter = 0
        self.memory = bytearray(self.MEMORY_PAGES * codec.PAGE_SIZE)
        self._load_static_record()

    @property
    def external_public_key(self) -> str:
        return raw_public_key(self.external_key).hex()

    @property
    def internal_public_key(self) -> str:
        return raw_public_key(self.internal_key).hex()

    @property
    def provisioning_public_key(self) -> str:
        return raw_public_key(self.provisioning_key).hex()

    def _put(self, offset: int, data: bytes) -> None:
        self.memory[offset:offset + len(data)] = data

    def _load_static_record(self) -> None:
        fills = {
            "hardware_revision": b"\x01" * 4,
            "firmware_number": b"\x02" * 4,
            "serial_number": b"\x03" * 8,
            "external_public_key": raw_public_key(self.external_key),
            "internal_public_key": raw_public_key(self.internal_key),
            "smart_contract_address": b"\x06" * 20,
            "nxp_i2c_serial": b"\x07" * 7,
            "nxp_mcu_serial": b"\x08" * 16,
            "secure_element_serial": bytes.fromhex("0123") + os.urandom(6) + b"\xee",
            "config_zone": bytes(range(128)),
        }
        for name, offset, length in codec.STATIC_LAYOUT:
            self._put(codec.STATIC_FIRST_PAGE * codec.PAGE_SIZE + offset, fills[name][:length])

    def read_page(self, address: int, length: int) -> bytes:
        self.operations.append(("read", address))
        if address in self.failing_pages:
            raise TransportError("read", address, "simulated read failure")
        start = address * codec.PAGE_SIZE
        data = bytes(self.memory[start:start + length])
        if address in self.short_pages:
            data = data[:-1]
        if len(data) < length:
            raise TransportError("read", address, f"short read: {len(data)} of {length} bytes")
        return data

    def write_page(self, address: int, data: bytes) -> None:
        self.operations.append(("write", address))
        if address in self.failing_pages:
            raise TransportError("write", address, "simulated write failure")
        self._put(address * codec.PAGE_SIZE, bytes(data))
        if address == codec.INPUT_RECORD_PAGE:
            self._run_secure_element(bytes(data))

    def _set_diagnostic(self, text: str) -> None:
        raw = text.encode("ascii")[:codec.DIAGNOSTIC_CAPACITY]
        raw = raw + b"\x00" * (codec.DIAGNOSTIC_CAPACITY - len(raw))
        self._put(codec.DIAGNOSTIC_FIRST_PAGE * codec.PAGE_SIZE, raw)

    def _run_secure_element(self, record: bytes) -> None:
        if (
            len(record) != codec.WRITE_RECORD_LENGTH
            or not record.startswith(codec.FRAME_HEADER)
            or not record.endswith(codec.FRAME_TRAILER)
        ):
            self._set_diagnostic("Bad frame")
            return
        body = record[len(codec.FRAME_HEADER):-4]
        if crc16(body) != codec.record_checksum(record):
            self._set_diagnostic("Bad CRC")
            return

        command = body[0]
        digest = body[-codec.DIGEST_WIDTH:]
        exposes_key = command in (0x55, 0x56)

        signer = self.provisioning_key if exposes_key else self.external_key
        signature = sign_digest(signer, digest)
        if self.tamper_signature:
            signature = bytes([signature[0] ^ 0x01]) + signature[1:]

        if exposes_key:
            internal_slot = raw_public_key(self.provisioning_key)
        else:
            internal_slot = sign_digest(self.internal_key, os.urandom(32))

        self.counter = (self.counter + 1) & 0xFF
        base = codec.OUTPUT_FIRST_PAGE * codec.PAGE_SIZE
        fields = {
            "last_hash": b"\x20" + digest,
            "external_signature": signature,
            "internal_signature": internal_slot,
            "counter": bytes([self.counter]),
        }
        for name, offset, length in codec.OUTPUT_LAYOUT:
            self._put(base + offset, fields[name][:length])

        self._set_diagnostic(self.diagnostic)
