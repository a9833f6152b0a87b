#!/usr/bin/env python3
"""
Logbook Anchor runner.

Creates, validates, reconciles, exports and verifies ledger-anchored logbooks
against the local reference ledger.

Usage:
    export LOGBOOK_ROOT=./logbooks
    python run_logbook.py create research --name first-note --file note.txt
    python run_logbook.py validate research
    python run_logbook.py reconcile research
    python run_logbook.py export research
    python run_logbook.py verify exports/research_20260101_120000.zip

    # Chain documents in S3 instead of the filesystem:
    export LOGBOOK_S3_BUCKET=my-logbooks
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

# Allow running from the repository root
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from logbook_anchor import KeyPair, LocalLedger, Logbook, LogbookConfig
from logbook_anchor.bundle import ZipBundleReader
from logbook_anchor.chain import FilePersistence, S3Persistence
from logbook_anchor.errors import LogbookError
from logbook_anchor.verifier import BundleVerifier, Verdict

logger = logging.getLogger("logbook.cli")

EXIT_CODES = {Verdict.PASSED: 0, Verdict.PASSED_WITH_PLACEHOLDERS: 0,
              Verdict.FAILED: 1, Verdict.VERIFICATION_INCOMPLETE: 2}


def build_config(args: argparse.Namespace) -> LogbookConfig:
    root = Path(args.root)
    persistence = (S3Persistence(args.s3_bucket, prefix=args.s3_prefix)
                   if args.s3_bucket else FilePersistence(root))
    return LogbookConfig(storage_root=root, chain_id=args.chain_id,
                         exports_dir=Path(args.exports_dir) if args.exports_dir else None,
                         persistence=persistence)


def build_ledger(args: argparse.Namespace) -> LocalLedger:
    root = Path(args.root)
    ledger_path = Path(args.ledger) if args.ledger else root / ".ledger.json"
    key_path = Path(args.key) if args.key else root / ".identity.pem"
    return LocalLedger(ledger_path, KeyPair.load_or_create(key_path), explorer_url=args.explorer_url)


def cmd_create(args, config, ledger) -> int:
    content = Path(args.file).read_bytes().decode("utf-8") if args.file else sys.stdin.read()
    created = Logbook(args.logbook, config, ledger).create_entry(args.name, content)
    print(f"Entry:       {created.entry.name}")
    print(f"Entry hash:  {created.entry.entry_hash}")
    print(f"Transaction: {created.entry.external_ref}")
    print(f"Merkle root: {created.entry.merkle_root}")
    if created.explorer_url:
        print(f"Explorer:    {created.explorer_url}")
    return 0


def cmd_list(args, config, ledger) -> int:
    local = set(config.persistence.list_logbooks())
    anchored = ledger.get_logbook_names()
    for name in sorted(local | anchored):
        where = "local+ledger" if name in local and name in anchored else ("local" if name in local else "ledger")
        print(f"  {name:<32} {ledger.get_entry_count(name):>6} anchored  [{where}]")
    return 0


def cmd_validate(args, config, ledger) -> int:
    report = Logbook(args.logbook, config, ledger).validate()
    for finding in report.findings:
        print(f"  {finding.status.value:<8} {finding.describe()}")
    print(f"Chain validation: {'VALID' if report.valid else 'INVALID'}")
    return 0 if report.valid else 1


def cmd_reconcile(args, config, ledger) -> int:
    result = Logbook(args.logbook, config, ledger).reconcile()
    print(result.summary())
    return 0


def cmd_export(args, config, ledger) -> int:
    _, path = Logbook(args.logbook, config, ledger).export()
    print(f"Export created: {path}")
    return 0


def cmd_verify(args, config, ledger) -> int:
    with ZipBundleReader(args.bundle) as reader:
        report = BundleVerifier(ledger, config.code_version).verify(reader)
    print(report.summary())
    return EXIT_CODES[report.verdict]


def cmd_proof(args, config, ledger) -> int:
    proof = Logbook(args.logbook, config, ledger).store.proof_for(args.entry)
    if proof is None:
        print(f"Entry '{args.entry}' not found")
        return 1
    print(f"Leaf:  {proof.leaf}")
    print(f"Root:  {proof.root_hash}")
    for h in proof.proof_hashes:
        print(f"  - {h}")
    print(f"Valid: {proof.verify()}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ledger-anchored logbooks")
    parser.add_argument("--root", default=os.environ.get("LOGBOOK_ROOT", "logbooks"),
                        help="Logbook storage root (default: ./logbooks)")
    parser.add_argument("--ledger", default=os.environ.get("LOGBOOK_LEDGER_PATH"),
                        help="Reference ledger document (default: <root>/.ledger.json)")
    parser.add_argument("--key", default=os.environ.get("LOGBOOK_KEY_PATH"),
                        help="Ed25519 identity key, created if missing (default: <root>/.identity.pem)")
    parser.add_argument("--chain-id", type=int, default=int(os.environ.get("LOGBOOK_CHAIN_ID", "0")))
    parser.add_argument("--explorer-url", default=os.environ.get("LOGBOOK_EXPLORER_URL"))
    parser.add_argument("--exports-dir", default=os.environ.get("LOGBOOK_EXPORTS_DIR"))
    parser.add_argument("--s3-bucket", default=os.environ.get("LOGBOOK_S3_BUCKET"))
    parser.add_argument("--s3-prefix", default=os.environ.get("LOGBOOK_S3_PREFIX", "logbooks"))
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create", help="Anchor a new entry")
    p.add_argument("logbook")
    p.add_argument("--name", required=True, help="Entry name (prefixed with its 4-digit ordinal)")
    p.add_argument("--file", help="Content file (default: stdin)")
    p.set_defaults(func=cmd_create)

    sub.add_parser("list", help="List local and anchored logbooks").set_defaults(func=cmd_list)

    for name, func, help_text in (("validate", cmd_validate, "Validate the local chain"),
                                  ("reconcile", cmd_reconcile, "Rebuild the local chain from the ledger if needed"),
                                  ("export", cmd_export, "Write a ZIP export bundle")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("logbook")
        p.set_defaults(func=func)

    p = sub.add_parser("verify", help="Verify a ZIP export bundle")
    p.add_argument("bundle")
    p.set_defaults(func=cmd_verify)

    p = sub.add_parser("proof", help="Print the Merkle inclusion proof of an entry")
    p.add_argument("logbook")
    p.add_argument("entry")
    p.set_defaults(func=cmd_proof)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(levelname)s: %(message)s")
    try:
        config = build_config(args)
        ledger = build_ledger(args)
        return args.func(args, config, ledger)
    except LogbookError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
