"""Command line scanner: ``silo-scan``.

Listens for tags on every PC/SC reader and runs the provisioning workflow
for each card presented.

Examples:
    silo-scan --command=00
    silo-scan --command=56 --json --data-dir=var/silo
    silo-scan --verify --match-file=devices.json --scan-once
"""

import argparse
import logging
import sys
import threading
from typing import List, Optional

from pydantic import ValidationError

from . import setup_logging
from .config import ProvisioningConfig
from .orchestrator import ProvisioningOrchestrator

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="silo-scan", description="Provision and verify SiLo tags over NFC")
    p.add_argument("--command", default="00", help="Command code, e.g. 00 (signature), 55 (mint), 56 (export)")
    p.add_argument("--block", default=None, help="32-byte block hash to sign; random per card if omitted")
    p.add_argument("--to-addr", dest="to_addr", default="00" * 20, help="20-byte destination address")
    p.add_argument("--pubkey", default=None, help="Override the key used to validate the signature")
    p.add_argument("--json", action="store_true", help="Export the attestation JSON (requires command 56)")
    p.add_argument("--verify", action="store_true", help="Move the exported JSON for the tag to verified/")
    p.add_argument("--save-sig", dest="save_sig", action="store_true", help="Save the signature from the device")
    p.add_argument("--scan-once", dest="scan_once", action="store_true", help="Exit after one scan")
    p.add_argument("--match-file", dest="match_file", default=None, help="Device registry JSON to match against")
    p.add_argument("--test-match", dest="test_match", default=None, help="Primary key hash of a test device to match")
    p.add_argument("--data-dir", dest="data_dir", default=".", help="Directory holding signatures/export/verified")
    p.add_argument("--hardware-model", dest="hardware_model", default="ATECC608A", help="Secure element model name")
    p.add_argument("--log-level", dest="log_level", default="INFO", help="Python logging level")
    return p


def config_from_args(args: argparse.Namespace) -> ProvisioningConfig:
    return ProvisioningConfig(
        command=args.command,
        to_address=args.to_addr,
        block=args.block,
        override_public_key=args.pubkey,
        export_json=args.json,
        verify=args.verify,
        save_signature=args.save_sig,
        scan_once=args.scan_once,
        registry_path=args.match_file,
        test_match=args.test_match,
        data_dir=args.data_dir,
        hardware_model=args.hardware_model,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = config_from_args(args)
    except ValidationError as e:
        print(f"error: invalid arguments: {e}", file=sys.stderr)
        return 2

    from .transport import PcscListener

    orchestrator = ProvisioningOrchestrator(config)
    orchestrator.log_startup()
    orchestrator.run_test_match()

    done = threading.Event()

    def on_card(session, reader):
        result = orchestrator.process_card_sync(session, reader)
        logger.info(f"card resolved {reader}: {result.state.value}")
        if config.scan_once:
            done.set()

    listener = PcscListener(on_card)
    listener.start()
    logger.info("waiting for tags")
    try:
        done.wait()
    except KeyboardInterrupt:
        pass
    finally:
        listener.stop()
        orchestrator.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
