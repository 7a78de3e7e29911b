"""Tests for the PC/SC session and the simulated tag."""

from unittest.mock import Mock

import pytest

from silo_provision import codec
from silo_provision.exceptions import TransportError
from silo_provision.transport import MockTagTransport, PcscCardSession
from silo_provision.verifier import verify_signature


class TestPcscCardSession:
    """Tests for PC/SC page access."""

    def test_read_page(self):
        connection = Mock()
        connection.transmit.return_value = ([1, 2, 3, 4], 0x90, 0x00)
        session = PcscCardSession(connection, "ACR122U")

        assert session.read_page(0x64, 4) == b"\x01\x02\x03\x04"
        connection.transmit.assert_called_once_with([0xFF, 0xB0, 0x00, 0x64, 4])

    def test_read_error_status(self):
        connection = Mock()
        connection.transmit.return_value = ([], 0x63, 0x00)
        with pytest.raises(TransportError, match="status 6300"):
            PcscCardSession(connection).read_page(0x10, 4)

    def test_short_read(self):
        connection = Mock()
        connection.transmit.return_value = ([1, 2], 0x90, 0x00)
        with pytest.raises(TransportError, match="short read"):
            PcscCardSession(connection).read_page(0x10, 4)

    def test_transmit_exception_wrapped(self):
        connection = Mock()
        connection.transmit.side_effect = RuntimeError("card removed")
        with pytest.raises(TransportError) as exc:
            PcscCardSession(connection).read_page(0x20, 4)
        assert isinstance(exc.value.cause, RuntimeError)
        assert exc.value.address == 0x20

    def test_write_splits_into_pages(self):
        connection = Mock()
        connection.transmit.return_value = ([], 0x90, 0x00)
        PcscCardSession(connection).write_page(0xB0, bytes(range(8)))

        calls = [c.args[0] for c in connection.transmit.call_args_list]
        assert calls == [
            [0xFF, 0xD6, 0x00, 0xB0, 4, 0, 1, 2, 3],
            [0xFF, 0xD6, 0x00, 0xB1, 4, 4, 5, 6, 7],
        ]

    def test_write_full_record(self):
        connection = Mock()
        connection.transmit.return_value = ([], 0x90, 0x00)
        PcscCardSession(connection).write_page(0xB0, b"\x00" * codec.WRITE_RECORD_LENGTH)
        assert connection.transmit.call_count == codec.WRITE_RECORD_LENGTH // 4

    def test_write_unaligned_rejected(self):
        connection = Mock()
        with pytest.raises(TransportError):
            PcscCardSession(connection).write_page(0xB0, b"\x00" * 5)
        connection.transmit.assert_not_called()


class TestMockTagTransport:
    """Tests for the simulated tag."""

    def test_static_record_decodes(self):
        tag = MockTagTransport()
        raw = b"".join(tag.read_page(p, 4) for p in range(codec.STATIC_FIRST_PAGE, codec.STATIC_END_PAGE))
        snapshot = codec.decode(raw)
        assert snapshot.external_public_key == tag.external_public_key
        assert snapshot.internal_public_key == tag.internal_public_key

    def test_signs_valid_record(self):
        tag = MockTagTransport()
        request = codec.build_request("00", "00" * 20)
        tag.write_page(codec.INPUT_RECORD_PAGE, request.record)

        raw = b"".join(tag.read_page(p, 4) for p in range(codec.OUTPUT_FIRST_PAGE, codec.OUTPUT_END_PAGE))
        result = codec.decode_output_region(raw)
        assert verify_signature(request.digest, tag.external_public_key, result.external_signature)
        assert result.counter == "01"

    def test_bad_crc_rejected(self):
        tag = MockTagTransport()
        record = bytearray(codec.build_request("00", "00" * 20).record)
        record[50] ^= 0xFF
        tag.write_page(codec.INPUT_RECORD_PAGE, bytes(record))

        raw = b"".join(tag.read_page(p, 4) for p in range(codec.DIAGNOSTIC_FIRST_PAGE, codec.DIAGNOSTIC_END_PAGE))
        assert codec.decode_diagnostic(raw).startswith("Bad CRC")

    def test_failing_page(self):
        tag = MockTagTransport(failing_pages=[0x05])
        with pytest.raises(TransportError):
            tag.read_page(0x05, 4)
