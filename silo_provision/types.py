"""Type definitions for silo-provision.

All types use Pydantic for validation. Byte ranges read from a tag are kept
as lowercase hex strings, which is how they are logged and persisted.
"""

from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from .checksum import prefixed_sha256


class CommandCode(str, Enum):
    """Command codes understood by the SiLo input record.

    Commands 0x55 and 0x56 expose the provisioning key through the
    internal-signature slot of the output region. 0x55 also provisions
    that key, so it is not safe to send to a finished unit.
    """
    STANDARD_SIGNATURE = "00"
    PROVISION = "55"
    EXPORT = "56"

    @classmethod
    def exposes_provisioning_key(cls, command: str) -> bool:
        return command in (cls.PROVISION.value, cls.EXPORT.value)


class WorkflowState(str, Enum):
    """Per-card workflow states, in the order they are entered."""
    IDLE = "idle"
    TAG_READ = "tag_read"
    REQUEST_BUILT = "request_built"
    WRITTEN = "written"
    AWAITING_RESULT = "awaiting_result"
    RESULT_READ = "result_read"
    VERIFYING = "verifying"
    DIAGNOSTIC_READ = "diagnostic_read"
    RESOLVED = "resolved"


class ResolvedState(str, Enum):
    """Terminal outcome of one card workflow."""
    SUCCESS = "success"
    REFUSED = "refused"
    ERROR = "error"


class LifecycleStatus(str, Enum):
    """Outcome of an attestation lifecycle operation.

    None of these are errors; conflicts are informational.
    """
    SIGNATURE_SAVED = "signature_saved"
    EXPORTED = "exported"
    ALREADY_EXPORTED = "already_exported"
    REFUSED_COMMAND = "refused_command"
    VERIFIED = "verified"
    ALREADY_VERIFIED = "already_verified"
    NOTHING_TO_VERIFY = "nothing_to_verify"

    def is_conflict(self) -> bool:
        return self in (
            LifecycleStatus.ALREADY_EXPORTED,
            LifecycleStatus.REFUSED_COMMAND,
            LifecycleStatus.NOTHING_TO_VERIFY,
        )


def key_pair(public_key_hex: str) -> List[str]:
    """Split a 64-byte public key into ``0x``-prefixed X and Y coordinates."""
    return ["0x" + public_key_hex[:64], "0x" + public_key_hex[-64:]]


class TagSnapshot(BaseModel):
    """Decoded static memory of one tag read."""
    hardware_revision: str = Field(..., description="Hardware revision number (4 bytes)")
    firmware_number: str = Field(..., description="Firmware number (4 bytes)")
    serial_number: str = Field(..., description="Unit serial number (8 bytes)")
    external_public_key: str = Field(..., description="Primary key, signs external data (64 bytes)")
    internal_public_key: str = Field(..., description="Secondary key, signs internal randoms (64 bytes)")
    smart_contract_address: str = Field(..., description="Smart contract address (20 bytes)")
    nxp_i2c_serial: str = Field(..., description="NXP i2c serial number (7 bytes)")
    nxp_mcu_serial: str = Field(..., description="NXP MCU serial number (16 bytes)")
    secure_element_serial: str = Field(..., description="ATECC608 serial number (9 bytes)")
    config_zone: str = Field(..., description="Secure element config zone (128 bytes)")

    class Config:
        frozen = True

    @property
    def primary_public_key_hash(self) -> str:
        """``0x``-prefixed SHA-256 of the primary public key bytes."""
        return prefixed_sha256(bytes.fromhex(self.external_public_key))


class ProvisioningRequest(BaseModel):
    """One input record, exactly as written to the tag."""
    command: str = Field(..., description="Command code, two hex chars")
    address: str = Field(..., description="Destination address, unpadded hex")
    block: str = Field(..., description="Block reference, 32 bytes hex")
    digest: str = Field(..., description="SHA-256 over address || block")
    checksum: int = Field(..., description="CRC-16 over command || padded address || block || digest")
    record: bytes = Field(..., description="Encoded input record")

    class Config:
        frozen = True


class SignatureResult(BaseModel):
    """Fields sliced from the output region after the secure element signs."""
    last_hash: str
    external_signature: str
    internal_signature: str = Field(
        ..., description="Internal signature, or the provisioning public key for 0x55/0x56"
    )
    counter: str

    class Config:
        frozen = True


class AttestationRecord(BaseModel):
    """Attestation material for one tag, keyed by primary public key hash."""
    command: str
    primary_public_key: str
    primary_public_key_hash: str = Field(..., description="0x-prefixed SHA-256 of the primary key")
    digest: str
    signature: str
    signing_key: str
    secondary_public_key: Optional[str] = None
    tertiary_public_key: Optional[str] = None
    secure_element_serial: Optional[str] = None
    config_zone: Optional[str] = None
    hardware_manufacturer: str = "Microchip Technology Inc."
    hardware_model: str = "ATECC608A"

    class Config:
        frozen = True

    def signature_document(self) -> Dict[str, Any]:
        """Document written to the signatures store."""
        return {
            "primaryPublicKey": key_pair(self.primary_public_key),
            "primaryPublicKeyHash": self.primary_public_key_hash,
            "digest": "0x" + self.digest,
            "signature": "0x" + self.signature,
            "signingKey": self.signing_key,
        }

    def export_document(self) -> Dict[str, Any]:
        """Full document written to the export store.

        Serial and config hashes are taken over the ASCII hex text, not the
        raw bytes, to stay compatible with records already on chain. The
        config zone drops its serial number and the incrementing i2c byte.
        """
        doc: Dict[str, Any] = {
            "primaryPublicKey": key_pair(self.primary_public_key),
            "primaryPublicKeyHash": self.primary_public_key_hash,
        }
        if self.secondary_public_key:
            doc["secondaryPublicKey"] = key_pair(self.secondary_public_key)
            doc["secondaryPublicKeyHash"] = prefixed_sha256(bytes.fromhex(self.secondary_public_key))
        if self.tertiary_public_key and CommandCode.exposes_provisioning_key(self.command):
            doc["tertiaryPublicKey"] = key_pair(self.tertiary_public_key)
            doc["tertiaryPublicKeyHash"] = prefixed_sha256(bytes.fromhex(self.tertiary_public_key))

        doc["hardwareManufacturer"] = prefixed_sha256(self.hardware_manufacturer.encode("utf-8"))
        doc["hardwareModel"] = prefixed_sha256(self.hardware_model.encode("utf-8"))
        if self.secure_element_serial is not None:
            doc["hardwareSerial"] = prefixed_sha256(self.secure_element_serial.encode("ascii"))
        if self.config_zone is not None:
            zone = self.config_zone
            minus_serial = zone[8:16] + zone[26:28] + zone[30:256]
            doc["hardwareConfig"] = prefixed_sha256(minus_serial.encode("ascii"))
        return doc


class DeviceRegistryEntry(BaseModel):
    """One known device in the match registry."""
    primary_public_key_hash: str = Field(..., alias="primaryPublicKeyHash")
    name: Optional[str] = None
    poap: Optional[str] = Field(default=None, description="Proof-of-attendance payload")
    image: Optional[str] = Field(default=None, description="Path to an image to open")

    class Config:
        frozen = True
        populate_by_name = True


class LifecycleResult(BaseModel):
    """Result of one lifecycle operation."""
    status: LifecycleStatus
    primary_public_key_hash: str
    path: Optional[str] = Field(default=None, description="File written or moved, if any")
    message: str

    class Config:
        frozen = True


class ProvisioningResult(BaseModel):
    """Complete outcome of one card workflow."""
    state: ResolvedState
    history: List[WorkflowState] = Field(default_factory=list)
    snapshot: Optional[TagSnapshot] = None
    request: Optional[ProvisioningRequest] = None
    signature: Optional[SignatureResult] = None
    verification_key: Optional[str] = None
    verified: bool = False
    diagnostic: Optional[str] = None
    lifecycle: List[LifecycleResult] = Field(default_factory=list)
    error: Optional[str] = None

    class Config:
        frozen = True

    @property
    def primary_public_key_hash(self) -> Optional[str]:
        if self.snapshot is None:
            return None
        return self.snapshot.primary_public_key_hash
