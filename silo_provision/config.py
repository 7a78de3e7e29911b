"""Provisioning configuration.

One immutable config object is built at startup (from the CLI or the
environment) and handed to the orchestrator.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .types import CommandCode

DEFAULT_TO_ADDRESS = "00" * 20


def _strip_hex(value: str) -> str:
    value = value.strip().lower()
    if value.startswith("0x"):
        value = value[2:]
    if len(value) % 2 or any(c not in "0123456789abcdef" for c in value):
        raise ValueError(f"not an even-length hex string: {value!r}")
    return value


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "false").lower() in ("1", "true", "yes")


class ProvisioningConfig(BaseModel):
    """Settings for one scanning session."""
    command: str = Field(default=CommandCode.STANDARD_SIGNATURE.value, description="Command code, 1 byte hex")
    to_address: str = Field(default=DEFAULT_TO_ADDRESS, description="Destination address, 20 bytes hex")
    block: Optional[str] = Field(default=None, description="Block reference; random per card if None")
    override_public_key: Optional[str] = Field(default=None, description="Verification key override")
    export_json: bool = Field(default=False, description="Export attestation (needs command 0x56)")
    verify: bool = Field(default=False, description="Promote an exported record to verified")
    save_signature: bool = Field(default=False, description="Save the signature capture")
    scan_once: bool = Field(default=False, description="Stop after the first card")
    registry_path: Optional[str] = Field(default=None, description="Device registry JSON file")
    test_match: Optional[str] = Field(default=None, description="Primary key hash to test-match at startup")
    data_dir: str = Field(default=".", description="Base directory for record stores")
    signatures_dir: str = "signatures"
    export_dir: str = "export"
    verified_dir: str = "verified"
    hardware_model: str = Field(default="ATECC608A", description="Secure element model name")

    class Config:
        frozen = True

    @field_validator("command")
    @classmethod
    def _check_command(cls, v: str) -> str:
        v = _strip_hex(v)
        if len(v) != 2:
            raise ValueError("command must be exactly 1 byte")
        return v

    @field_validator("to_address")
    @classmethod
    def _check_address(cls, v: str) -> str:
        v = _strip_hex(v)
        if len(v) > 64:
            raise ValueError("to_address must be at most 32 bytes")
        return v

    @field_validator("block")
    @classmethod
    def _check_block(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = _strip_hex(v)
        if len(v) != 64:
            raise ValueError("block must be exactly 32 bytes")
        return v

    @field_validator("override_public_key")
    @classmethod
    def _check_override(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip().lower()

    @field_validator("test_match")
    @classmethod
    def _check_test_match(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = _strip_hex(v)
        if len(v) != 64:
            raise ValueError("test_match must be a 32-byte hash")
        return v

    @classmethod
    def from_env(cls) -> "ProvisioningConfig":
        """Build a config from ``SILO_*`` environment variables."""
        values = {
            "command": os.environ.get("SILO_COMMAND"),
            "to_address": os.environ.get("SILO_TO_ADDRESS"),
            "block": os.environ.get("SILO_BLOCK"),
            "override_public_key": os.environ.get("SILO_PUBKEY"),
            "registry_path": os.environ.get("SILO_MATCH_FILE"),
            "test_match": os.environ.get("SILO_TEST_MATCH"),
            "data_dir": os.environ.get("SILO_DATA_DIR"),
            "hardware_model": os.environ.get("SILO_HARDWARE_MODEL"),
        }
        values = {k: v for k, v in values.items() if v}
        return cls(
            export_json=_env_flag("SILO_EXPORT_JSON"),
            verify=_env_flag("SILO_VERIFY"),
            save_signature=_env_flag("SILO_SAVE_SIG"),
            scan_once=_env_flag("SILO_SCAN_ONCE"),
            **values,
        )
