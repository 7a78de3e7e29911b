"""Tests for silo-provision type definitions."""

import pytest

from silo_provision.types import (
    CommandCode,
    DeviceRegistryEntry,
    LifecycleStatus,
    ProvisioningResult,
    ResolvedState,
    TagSnapshot,
    key_pair,
)


class TestCommandCode:
    """Tests for CommandCode."""

    def test_values(self):
        assert CommandCode.STANDARD_SIGNATURE == "00"
        assert CommandCode.PROVISION == "55"
        assert CommandCode.EXPORT == "56"

    def test_provisioning_key_exposure(self):
        assert CommandCode.exposes_provisioning_key("55")
        assert CommandCode.exposes_provisioning_key("56")
        assert not CommandCode.exposes_provisioning_key("00")
        assert not CommandCode.exposes_provisioning_key("57")


class TestLifecycleStatus:
    """Tests for LifecycleStatus."""

    def test_conflicts(self):
        assert LifecycleStatus.ALREADY_EXPORTED.is_conflict()
        assert LifecycleStatus.REFUSED_COMMAND.is_conflict()
        assert LifecycleStatus.NOTHING_TO_VERIFY.is_conflict()

    def test_successes(self):
        assert not LifecycleStatus.EXPORTED.is_conflict()
        assert not LifecycleStatus.VERIFIED.is_conflict()
        assert not LifecycleStatus.ALREADY_VERIFIED.is_conflict()
        assert not LifecycleStatus.SIGNATURE_SAVED.is_conflict()


class TestKeyPair:
    """Tests for key_pair."""

    def test_split(self):
        key = "aa" * 32 + "bb" * 32
        assert key_pair(key) == ["0x" + "aa" * 32, "0x" + "bb" * 32]


class TestTagSnapshot:
    """Tests for TagSnapshot model."""

    @pytest.fixture
    def snapshot(self):
        return TagSnapshot(
            hardware_revision="01" * 4,
            firmware_number="02" * 4,
            serial_number="03" * 8,
            external_public_key="04" * 64,
            internal_public_key="05" * 64,
            smart_contract_address="06" * 20,
            nxp_i2c_serial="07" * 7,
            nxp_mcu_serial="08" * 16,
            secure_element_serial="09" * 9,
            config_zone="01" * 128,
        )

    def test_immutable(self, snapshot):
        with pytest.raises(Exception):  # Frozen model
            snapshot.serial_number = "00"

    def test_primary_key_hash_prefixed(self, snapshot):
        assert snapshot.primary_public_key_hash.startswith("0x")
        assert len(snapshot.primary_public_key_hash) == 66


class TestDeviceRegistryEntry:
    """Tests for DeviceRegistryEntry model."""

    def test_alias(self):
        entry = DeviceRegistryEntry.model_validate({"primaryPublicKeyHash": "0xab", "name": "n"})
        assert entry.primary_public_key_hash == "0xab"
        assert entry.poap is None
        assert entry.image is None


class TestProvisioningResult:
    """Tests for ProvisioningResult model."""

    def test_error_result(self):
        result = ProvisioningResult(state=ResolvedState.ERROR, error="boom")
        assert result.primary_public_key_hash is None
        assert not result.verified
        assert result.lifecycle == []
