"""Per-card provisioning workflow.

Drives one tag presentation from the first static read to a resolved
outcome:

    IDLE -> TAG_READ -> REQUEST_BUILT -> WRITTEN -> AWAITING_RESULT
         -> RESULT_READ -> VERIFYING -> DIAGNOSTIC_READ -> RESOLVED

Every step runs strictly in order. The delays are real blocking waits: the
secure element answers asynchronously and its result is only valid after
the settle delay has elapsed. A failed read or write ends the workflow for
that card; nothing is retried and the operator re-presents the tag.
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from . import codec
from .checksum import prefixed_sha256
from .config import ProvisioningConfig
from .exceptions import MalformedTagError, TransportError
from .lifecycle import AttestationLifecycle
from .registry import DeviceMatcher, load_registry_or_empty
from .transport import TagTransport
from .types import (
    AttestationRecord,
    CommandCode,
    LifecycleResult,
    ProvisioningRequest,
    ProvisioningResult,
    ResolvedState,
    SignatureResult,
    TagSnapshot,
    WorkflowState,
)
from .verifier import SignatureVerifier

logger = logging.getLogger(__name__)

# Seconds. The settle delay must exceed the secure element's worst-case
# signing latency; shortening it yields stale output pages.
WAKE_DELAY = 0.2
SETTLE_DELAY = 2.5
DIAGNOSTIC_DELAY = 0.2
POST_DIAGNOSTIC_DELAY = 0.1


class _Run:
    """Mutable state of one workflow, frozen into a ProvisioningResult at the end."""

    def __init__(self):
        self.history: List[WorkflowState] = [WorkflowState.IDLE]
        self.snapshot: Optional[TagSnapshot] = None
        self.request: Optional[ProvisioningRequest] = None
        self.signature: Optional[SignatureResult] = None
        self.verification_key: Optional[str] = None
        self.verified = False
        self.diagnostic: Optional[str] = None
        self.lifecycle: List[LifecycleResult] = []

    def enter(self, state: WorkflowState) -> None:
        self.history.append(state)

    def resolve(self, state: ResolvedState, error: Optional[str] = None) -> ProvisioningResult:
        self.enter(WorkflowState.RESOLVED)
        return ProvisioningResult(
            state=state,
            history=self.history,
            snapshot=self.snapshot,
            request=self.request,
            signature=self.signature,
            verification_key=self.verification_key,
            verified=self.verified,
            diagnostic=self.diagnostic,
            lifecycle=self.lifecycle,
            error=error,
        )


class ProvisioningOrchestrator:
    """Runs the read / write / verify / persist sequence for each card.

    Usage:
        orchestrator = ProvisioningOrchestrator(ProvisioningConfig(command="56", export_json=True))
        result = orchestrator.process_card_sync(session)

        # or from async code
        result = await orchestrator.process_card(session)

    Thread Safety:
        Cards are processed one at a time. A second card presented while a
        workflow is running waits for it to resolve.
    """

    def __init__(
        self,
        config: ProvisioningConfig,
        lifecycle: Optional[AttestationLifecycle] = None,
        matcher: Optional[DeviceMatcher] = None,
        verifier: Optional[SignatureVerifier] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the orchestrator.

        Args:
            config: Immutable session configuration.
            lifecycle: Record store. Built from the config directories if None.
            matcher: Device matcher. Loaded from ``config.registry_path`` if None.
            verifier: Signature verifier.
            sleep: Blocking wait used for the protocol delays.
        """
        self._config = config
        self._lifecycle = lifecycle or AttestationLifecycle(
            config.data_dir,
            signatures_dir=config.signatures_dir,
            export_dir=config.export_dir,
            verified_dir=config.verified_dir,
        )
        self._matcher = matcher or DeviceMatcher(load_registry_or_empty(config.registry_path))
        self._verifier = verifier or SignatureVerifier()
        self._sleep = sleep
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="silo_provision")

    @property
    def config(self) -> ProvisioningConfig:
        return self._config

    @property
    def lifecycle(self) -> AttestationLifecycle:
        return self._lifecycle

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def log_startup(self) -> None:
        """Log the session configuration and the known model hashes."""
        cfg = self._config
        logger.info(f"command {cfg.command}")
        logger.info(f"block number {cfg.block or 'random per card'}")
        logger.info(f"to address {cfg.to_address}")
        logger.info(f"validation pub key {cfg.override_public_key or 'primary key after read'}")
        logger.info(f"export json {cfg.export_json}")
        logger.info(f"save signature {cfg.save_signature}")
        logger.info(f"verify json {cfg.verify}")
        logger.info(f"kill after single scan {cfg.scan_once}")
        logger.info(f"devices to match {cfg.registry_path}")
        logger.info(f"ATECC608A hash {prefixed_sha256(b'ATECC608A')}")
        logger.info(f"ATECC608B hash {prefixed_sha256(b'ATECC608B')}")

    def run_test_match(self) -> Optional[LifecycleResult]:
        """Render and save a placeholder capture for ``config.test_match``."""
        key_hash = self._config.test_match
        if not key_hash:
            return None
        logger.info(f"test matching device {key_hash}")
        self._matcher.render(key_hash)
        record = AttestationRecord(
            command=self._config.command,
            primary_public_key="test-primaryPublicKey",
            primary_public_key_hash="0x" + key_hash,
            digest="test-combinedHash",
            signature="test-externalSignature",
            signing_key="test-verificationKey",
        )
        return self._lifecycle.save_signature(record)

    async def process_card(self, transport: TagTransport, reader: str = "") -> ProvisioningResult:
        """Async facade: runs the blocking workflow on the worker thread."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self._executor, self.process_card_sync, transport, reader)

    def process_card_sync(self, transport: TagTransport, reader: str = "") -> ProvisioningResult:
        """Run the full workflow for one presented card.

        Never raises for transport or layout failures; those resolve the
        workflow as ``ResolvedState.ERROR``.
        """
        with self._lock:
            run = _Run()
            try:
                return self._run(transport, reader, run)
            except (TransportError, MalformedTagError) as e:
                logger.error(f"error when reading data {reader}: {e}")
                return run.resolve(ResolvedState.ERROR, error=str(e))
            except OSError as e:
                logger.error(f"failed to persist attestation record {reader}: {e}")
                return run.resolve(ResolvedState.ERROR, error=str(e))

    def _read_page(self, transport: TagTransport, page: int) -> bytes:
        data = transport.read_page(page, codec.PAGE_SIZE)
        if len(data) != codec.PAGE_SIZE:
            raise TransportError("read", page, f"short read: {len(data)} of {codec.PAGE_SIZE} bytes")
        return data

    def _read_pages(self, transport: TagTransport, first: int, end: int) -> bytes:
        return b"".join(self._read_page(transport, page) for page in range(first, end))

    def _run(self, transport: TagTransport, reader: str, run: _Run) -> ProvisioningResult:
        cfg = self._config

        # Static record
        config_bytes = self._read_page(transport, codec.CONFIG_PAGE)
        logger.info(f"configBytes {reader} {config_bytes.hex()}")
        raw = self._read_pages(transport, codec.STATIC_FIRST_PAGE, codec.STATIC_END_PAGE)
        snapshot = codec.decode(raw)
        run.snapshot = snapshot
        run.enter(WorkflowState.TAG_READ)

        key_hash = snapshot.primary_public_key_hash
        logger.info(f"externalPublicKey {snapshot.external_public_key}")
        logger.info(f"internalPublicKey {snapshot.internal_public_key}")
        logger.info(f"atecc608aSerial {snapshot.secure_element_serial}")
        logger.info(f"configZoneBytes {snapshot.config_zone}")
        logger.info(f"externalPublicKeyHash {key_hash}")

        # Input record
        request = codec.build_request(cfg.command, cfg.to_address, cfg.block)
        run.request = request
        run.enter(WorkflowState.REQUEST_BUILT)
        if cfg.block is None:
            logger.info(f"no block number given, using random number: {request.block}")
        logger.info(f"combinedHash {request.digest}")
        logger.info(f"crc {reader} {request.checksum:04x}")

        self._sleep(WAKE_DELAY)
        transport.write_page(codec.INPUT_RECORD_PAGE, request.record)
        run.enter(WorkflowState.WRITTEN)

        confirm = self._read_page(transport, codec.CONFIRM_PAGE)
        logger.info(f"readLastIcBlockAfterWrite {reader} {confirm.hex()}")
        run.enter(WorkflowState.AWAITING_RESULT)
        self._sleep(SETTLE_DELAY)

        # Output record
        output = self._read_pages(transport, codec.OUTPUT_FIRST_PAGE, codec.OUTPUT_END_PAGE)
        result = codec.decode_output_region(output)
        run.signature = result
        run.enter(WorkflowState.RESULT_READ)
        logger.info(f"lastHash {reader} {result.last_hash}")
        logger.info(f"externalSignature {reader} {result.external_signature}")
        logger.info(f"internalSignature {reader} {result.internal_signature}")
        logger.info(f"counter {reader} {result.counter}")

        run.enter(WorkflowState.VERIFYING)
        verification_key = self._verifier.select_key(
            request.command,
            snapshot.external_public_key,
            result.internal_signature,
            cfg.override_public_key,
        )
        run.verification_key = verification_key
        run.verified = self._verifier.verify(request.digest, verification_key, result.external_signature)
        if run.verified:
            logger.info(f"verification worked? {reader} True")
        else:
            logger.warning(f"verification worked? {reader} False")

        # Diagnostic
        self._read_page(transport, codec.CONFIRM_PAGE)
        self._sleep(DIAGNOSTIC_DELAY)
        debug_bytes = self._read_pages(transport, codec.DIAGNOSTIC_FIRST_PAGE, codec.DIAGNOSTIC_END_PAGE)
        run.diagnostic = codec.decode_diagnostic(debug_bytes)
        run.enter(WorkflowState.DIAGNOSTIC_READ)
        logger.info(f"debugBytes: {reader} {run.diagnostic!r}")
        self._sleep(POST_DIAGNOSTIC_DELAY)

        if self._matcher.registry:
            self._matcher.render(key_hash)

        if not run.verified:
            logger.warning("Refusing to export, signature verification failed")
            return run.resolve(ResolvedState.REFUSED)
        if run.diagnostic != codec.DIAGNOSTIC_SUCCESS:
            logger.warning("Refusing to export, bad debugBytes message")
            return run.resolve(ResolvedState.REFUSED)

        self._persist(snapshot, request, result, verification_key, run)
        return run.resolve(ResolvedState.SUCCESS)

    def _persist(
        self,
        snapshot: TagSnapshot,
        request: ProvisioningRequest,
        result: SignatureResult,
        verification_key: str,
        run: _Run,
    ) -> None:
        cfg = self._config
        record = AttestationRecord(
            command=request.command,
            primary_public_key=snapshot.external_public_key,
            primary_public_key_hash=snapshot.primary_public_key_hash,
            digest=request.digest,
            signature=result.external_signature,
            signing_key=verification_key,
            secondary_public_key=snapshot.internal_public_key,
            tertiary_public_key=(
                verification_key if CommandCode.exposes_provisioning_key(request.command) else None
            ),
            secure_element_serial=snapshot.secure_element_serial,
            config_zone=snapshot.config_zone,
            hardware_model=cfg.hardware_model,
        )

        if cfg.save_signature:
            run.lifecycle.append(self._lifecycle.save_signature(record))

        if cfg.export_json:
            run.lifecycle.append(self._lifecycle.export_attestation(record))
        elif cfg.verify:
            run.lifecycle.append(self._lifecycle.promote_to_verified(record.primary_public_key_hash))
