"""Tests for the SiLo memory layout codec."""

import pytest

from silo_provision import codec
from silo_provision.checksum import crc16, sha256
from silo_provision.exceptions import MalformedTagError


def _patterned(length: int) -> bytes:
    return bytes((i * 7 + 3) & 0xFF for i in range(length))


class TestDecode:
    """Tests for decoding the static record."""

    @pytest.fixture
    def dump(self):
        return _patterned(codec.STATIC_CAPACITY)

    def test_static_capacity(self):
        assert codec.STATIC_CAPACITY == 396

    def test_fields_match_byte_ranges(self, dump):
        snapshot = codec.decode(dump)
        for name, offset, length in codec.STATIC_LAYOUT:
            assert getattr(snapshot, name) == dump[offset:offset + length].hex()

    def test_key_widths(self, dump):
        snapshot = codec.decode(dump)
        assert len(snapshot.external_public_key) == 128
        assert len(snapshot.internal_public_key) == 128
        assert len(snapshot.config_zone) == 256

    def test_config_zone_ends_before_capacity(self, dump):
        snapshot = codec.decode(dump)
        assert snapshot.config_zone == dump[266:394].hex()

    @pytest.mark.parametrize("length", [394, 395, 100, 0])
    def test_short_dump_rejected(self, dump, length):
        with pytest.raises(MalformedTagError) as exc:
            codec.decode(dump[:length])
        assert exc.value.field == "static_record"
        assert exc.value.required == 396
        assert exc.value.actual == length

    def test_long_dump_rejected(self, dump):
        with pytest.raises(MalformedTagError) as exc:
            codec.decode(dump + b"\x00\x00\x00\x00")
        assert exc.value.actual == 400

    def test_primary_key_hash(self, dump):
        snapshot = codec.decode(dump)
        expected = "0x" + sha256(dump[86:150]).hex()
        assert snapshot.primary_public_key_hash == expected


class TestDecodeOutputRegion:
    """Tests for decoding the output record."""

    def test_fields_match_byte_ranges(self):
        raw = _patterned(codec.OUTPUT_CAPACITY)
        result = codec.decode_output_region(raw)
        assert result.last_hash == raw[65:98].hex()
        assert result.external_signature == raw[129:193].hex()
        assert result.internal_signature == raw[193:257].hex()
        assert result.counter == raw[257:258].hex()

    def test_short_output_rejected(self):
        with pytest.raises(MalformedTagError) as exc:
            codec.decode_output_region(_patterned(257))
        assert exc.value.field == "counter"


class TestDiagnostic:
    """Tests for the diagnostic text decoder."""

    def test_success_marker(self):
        assert codec.decode_diagnostic(b"Tag written\x00") == codec.DIAGNOSTIC_SUCCESS

    def test_high_bit_masked(self):
        assert codec.decode_diagnostic(b"\xc1B") == "AB"


class TestEncodeWriteRecord:
    """Tests for the input record encoder."""

    @pytest.fixture
    def parts(self):
        address = bytes(range(20))
        block = bytes(range(100, 132))
        return b"\x56", address, block, sha256(address + block)

    def test_constant_length(self, parts):
        command, address, block, digest = parts
        assert len(codec.encode_write_record(command, address, block, digest)) == 104
        assert len(codec.encode_write_record(b"\x00", b"", block, digest)) == 104
        assert codec.WRITE_RECORD_LENGTH == 104

    def test_layout(self, parts):
        command, address, block, digest = parts
        record = codec.encode_write_record(command, address, block, digest)
        assert record[:3] == bytes.fromhex("550063")
        assert record[3:4] == command
        assert record[4:24] == address
        assert record[24:36] == b"\x00" * 12
        assert record[36:68] == block
        assert record[68:100] == digest
        assert record[-2:] == bytes.fromhex("fe00")

    def test_checksum_covers_body(self, parts):
        command, address, block, digest = parts
        record = codec.encode_write_record(command, address, block, digest)
        padded = address + b"\x00" * 12
        expected = crc16(command + padded + block + digest)
        assert record[100:102] == expected.to_bytes(2, "big")
        assert codec.record_checksum(record) == expected

    def test_rejects_bad_widths(self, parts):
        command, address, block, digest = parts
        with pytest.raises(ValueError):
            codec.encode_write_record(b"\x00\x00", address, block, digest)
        with pytest.raises(ValueError):
            codec.encode_write_record(command, address, block[:31], digest)
        with pytest.raises(ValueError):
            codec.encode_write_record(command, address, block, digest[:16])

    def test_address_too_long(self):
        with pytest.raises(ValueError, match="at most 32 bytes"):
            codec.pad_address(b"\x01" * 33)


class TestBuildRequest:
    """Tests for request construction."""

    def test_given_block(self):
        block = "ab" * 32
        address = "11" * 20
        request = codec.build_request("00", address, block)
        assert request.block == block
        assert request.digest == sha256(bytes.fromhex(address + block)).hex()
        assert request.checksum == codec.record_checksum(request.record)

    def test_random_block_per_request(self):
        first = codec.build_request("00", "00" * 20)
        second = codec.build_request("00", "00" * 20)
        assert len(first.block) == 64
        assert first.block != second.block
        assert first.checksum == codec.record_checksum(first.record)
        assert second.checksum == codec.record_checksum(second.record)

    def test_digest_over_unpadded_address(self):
        request = codec.build_request("56", "00" * 20, "00" * 32)
        assert request.digest == sha256(b"\x00" * 52).hex()
        assert request.digest != sha256(b"\x00" * 64).hex()
