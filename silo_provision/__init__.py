"""silo-provision: provisioning and verification of SiLo NFC tags.

Reads a tag's static record, asks its secure element to sign a digest over
a destination address and block hash, verifies the P-256 signature, and
moves the resulting attestation through export and verification.

Usage:
    from silo_provision import (
        MockTagTransport, ProvisioningConfig, ProvisioningOrchestrator, ResolvedState,
    )

    orchestrator = ProvisioningOrchestrator(ProvisioningConfig(command="56", export_json=True))
    result = orchestrator.process_card_sync(MockTagTransport())

    if result.state == ResolvedState.SUCCESS:
        print(result.lifecycle[-1].message)

Logging:
    from silo_provision import setup_logging
    setup_logging(level="DEBUG")
"""

import logging as _logging
import sys as _sys

from .config import ProvisioningConfig
from .orchestrator import ProvisioningOrchestrator
from .lifecycle import AttestationLifecycle
from .registry import DeviceMatcher, DeviceRenderer, load_registry, load_registry_or_empty
from .transport import MockTagTransport, PcscCardSession, PcscListener, TagTransport
from .verifier import SignatureVerifier, verify_signature
from .types import (
    AttestationRecord,
    CommandCode,
    DeviceRegistryEntry,
    LifecycleResult,
    LifecycleStatus,
    ProvisioningRequest,
    ProvisioningResult,
    ResolvedState,
    SignatureResult,
    TagSnapshot,
    WorkflowState,
)
from .exceptions import (
    SiloProvisionError,
    TransportError,
    MalformedTagError,
    RegistryLoadError,
)


def setup_logging(level: str = "INFO", logger_name: str = "silo_provision"):
    """Send silo-provision logs to stdout.

    Args:
        level: Minimum log level: "ERROR", "WARNING", "INFO", "DEBUG".
        logger_name: Python logger name to configure.

    Example:
        setup_logging(level="DEBUG")
        orchestrator.process_card_sync(session)
    """
    logger = _logging.getLogger(logger_name)

    # Accept the short forms operators tend to type
    level_map = {
        "ERROR": _logging.ERROR,
        "WARN": _logging.WARNING,
        "WARNING": _logging.WARNING,
        "INFO": _logging.INFO,
        "DEBUG": _logging.DEBUG,
    }
    logger.setLevel(level_map.get(level.upper(), _logging.INFO))

    if not logger.handlers:
        handler = _logging.StreamHandler(_sys.stdout)
        handler.setFormatter(_logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s"))
        logger.addHandler(handler)
    return logger


__version__ = "0.1.0"
__all__ = [
    "ProvisioningConfig",
    "ProvisioningOrchestrator",
    "AttestationLifecycle",
    "DeviceMatcher",
    "DeviceRenderer",
    "load_registry",
    "load_registry_or_empty",
    "MockTagTransport",
    "PcscCardSession",
    "PcscListener",
    "TagTransport",
    "SignatureVerifier",
    "verify_signature",
    "setup_logging",
    "AttestationRecord",
    "CommandCode",
    "DeviceRegistryEntry",
    "LifecycleResult",
    "LifecycleStatus",
    "ProvisioningRequest",
    "ProvisioningResult",
    "ResolvedState",
    "SignatureResult",
    "TagSnapshot",
    "WorkflowState",
    "SiloProvisionError",
    "TransportError",
    "MalformedTagError",
    "RegistryLoadError",
]
