"""Attestation record lifecycle: pending -> exported -> verified.

Records live as one JSON file per tag, named by the ``0x``-prefixed primary
public key hash, under three directories:

    signatures/   ad hoc signature captures, last write wins
    export/       full attestation, write-once, command 0x56 only
    verified/     exported records that passed a later verification scan

Export and promotion hold a per-hash lock and use atomic filesystem
operations, so two workflows for the same tag never interleave writes.
"""

import os
import json
import logging
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Union

from .types import AttestationRecord, CommandCode, LifecycleResult, LifecycleStatus

logger = logging.getLogger(__name__)

_locks_guard = threading.Lock()
# hash -> [lock, holders]; entries are dropped once no thread holds or waits on them
_hash_locks: Dict[str, list] = {}


@contextmanager
def _hash_lock(key_hash: str) -> Iterator[None]:
    with _locks_guard:
        entry = _hash_locks.setdefault(key_hash, [threading.Lock(), 0])
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _locks_guard:
            entry[1] -= 1
            if entry[1] == 0:
                del _hash_locks[key_hash]


def _normalize_hash(key_hash: str) -> str:
    key_hash = key_hash.lower()
    if not key_hash.startswith("0x"):
        key_hash = "0x" + key_hash
    if len(key_hash) != 66 or any(c not in "0123456789abcdef" for c in key_hash[2:]):
        raise ValueError(f"Not a primary public key hash: {key_hash}")
    return key_hash


def _dump(document: dict) -> bytes:
    return json.dumps(document, separators=(",", ":")).encode("utf-8")


class AttestationLifecycle:
    """File-backed attestation store keyed by primary public key hash.

    Usage:
        lifecycle = AttestationLifecycle("var/silo")
        result = lifecycle.export_attestation(record)
        if result.status == LifecycleStatus.EXPORTED:
            ...
    """

    def __init__(
        self,
        data_dir: Union[str, Path] = ".",
        signatures_dir: Union[str, Path] = "signatures",
        export_dir: Union[str, Path] = "export",
        verified_dir: Union[str, Path] = "verified",
    ):
        base = Path(data_dir)
        self.signatures_dir = base / signatures_dir
        self.export_dir = base / export_dir
        self.verified_dir = base / verified_dir

    def _path(self, directory: Path, key_hash: str) -> Path:
        return directory / f"{key_hash}.json"

    @staticmethod
    def _write_temp(directory: Path, data: bytes) -> str:
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".json")
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        return tmp_path

    def save_signature(self, record: AttestationRecord) -> LifecycleResult:
        """Write a signature-only record. Overwrites any previous capture."""
        key_hash = _normalize_hash(record.primary_public_key_hash)
        target = self._path(self.signatures_dir, key_hash)

        with _hash_lock(key_hash):
            tmp_path = self._write_temp(self.signatures_dir, _dump(record.signature_document()))
            os.replace(tmp_path, target)

        message = f"saving signature for the device: {key_hash}"
        logger.info(message)
        return LifecycleResult(
            status=LifecycleStatus.SIGNATURE_SAVED,
            primary_public_key_hash=key_hash,
            path=str(target),
            message=message,
        )

    def export_attestation(self, record: AttestationRecord) -> LifecycleResult:
        """Export the full record, once.

        An existing export is left untouched. Records from any command other
        than 0x56 are refused because they lack the provisioning key the
        smart contract needs.
        """
        key_hash = _normalize_hash(record.primary_public_key_hash)
        target = self._path(self.export_dir, key_hash)

        with _hash_lock(key_hash):
            if target.exists():
                message = f"Found existing JSON for public key hash: {key_hash}"
                logger.info(message)
                return LifecycleResult(
                    status=LifecycleStatus.ALREADY_EXPORTED,
                    primary_public_key_hash=key_hash,
                    path=str(target),
                    message=message,
                )

            if record.command != CommandCode.EXPORT.value:
                message = (
                    "Refusing to export, missing param required for smart contract "
                    f"or not command 0x{CommandCode.EXPORT.value} (got 0x{record.command})"
                )
                logger.warning(message)
                return LifecycleResult(
                    status=LifecycleStatus.REFUSED_COMMAND,
                    primary_public_key_hash=key_hash,
                    message=message,
                )

            tmp_path = self._write_temp(self.export_dir, _dump(record.export_document()))
            try:
                # link() refuses to replace an existing file
                os.link(tmp_path, target)
            except FileExistsError:
                message = f"Found existing JSON for public key hash: {key_hash}"
                logger.info(message)
                return LifecycleResult(
                    status=LifecycleStatus.ALREADY_EXPORTED,
                    primary_public_key_hash=key_hash,
                    path=str(target),
                    message=message,
                )
            finally:
                os.unlink(tmp_path)

        message = f"Successfully exported JSON for device with public key hash: {key_hash}"
        logger.info(message)
        return LifecycleResult(
            status=LifecycleStatus.EXPORTED,
            primary_public_key_hash=key_hash,
            path=str(target),
            message=message,
        )

    def promote_to_verified(self, key_hash: str) -> LifecycleResult:
        """Move an exported record to the verified store."""
        key_hash = _normalize_hash(key_hash)
        exported = self._path(self.export_dir, key_hash)
        verified = self._path(self.verified_dir, key_hash)

        with _hash_lock(key_hash):
            if exported.exists():
                logger.info(f"Found existing JSON for public key hash, moving: {key_hash}")
                self.verified_dir.mkdir(parents=True, exist_ok=True)
                os.replace(exported, verified)
                message = f"Move complete: {key_hash}"
                logger.info(message)
                return LifecycleResult(
                    status=LifecycleStatus.VERIFIED,
                    primary_public_key_hash=key_hash,
                    path=str(verified),
                    message=message,
                )

            if verified.exists():
                message = f"Already verified successfully: {key_hash}"
                logger.info(message)
                return LifecycleResult(
                    status=LifecycleStatus.ALREADY_VERIFIED,
                    primary_public_key_hash=key_hash,
                    path=str(verified),
                    message=message,
                )

        message = f"WARNING: no JSON file found to verify: {key_hash}"
        logger.warning(message)
        return LifecycleResult(
            status=LifecycleStatus.NOTHING_TO_VERIFY,
            primary_public_key_hash=key_hash,
            message=message,
        )
