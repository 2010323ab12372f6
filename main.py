#!/usr/bin/env python3
"""
Block Lease — Command Line
==========================

Operator tools around the reconciliation engine.

Usage:
    python main.py fingerprint contract.pdf     # Extract fingerprint + provisional hash
    python main.py verify <doc_hash>            # Public verification of a hash
    python main.py dispatch                     # Retry queued notifications

Configuration is read from the environment (and ``.env``): OPENAI_API_KEY,
BLOCKLEASE_DATABASE_URL, BLOCKLEASE_LEDGER_URL, SMTP_HOST, ...
"""

from __future__ import annotations

import argparse
import logging
import mimetypes
import sys
from pathlib import Path

from dotenv import load_dotenv

from blocklease import fingerprint
from blocklease.config import Settings
from blocklease.engine import ReconciliationEngine
from blocklease.exceptions import BlockLeaseError
from blocklease.intelligence import DocumentIntelligence
from blocklease.ledger import compute_document_hash
from blocklease.models import ContractStatus, Document, PublicVerification

load_dotenv()


# ─── ANSI Color Constants ───────────────────────────────────────────

_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"
_BOLD = "\033[1m"
_RESET = "\033[0m"
_WIDTH = 72


# ─── Pretty Printers ────────────────────────────────────────────────


def _header(title: str) -> None:
    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  {title}{_RESET}")
    print(f"{'=' * _WIDTH}")


def _print_error(error: BlockLeaseError) -> None:
    print(f"\n  {_RED}{_BOLD}[{error.code}]{_RESET} {error.message}")
    for k, v in error.details.items():
        print(f"      {_DIM}{k}: {v}{_RESET}")
    print()


def print_fingerprint(text: str) -> None:
    fp = fingerprint.parse(text)
    _header("CONTRACT FINGERPRINT")
    print(f"  Landlord:    {fp.landlord_name}")
    print(f"  Tenant:      {fp.tenant_name}")
    print(f"  Unit:        {fp.unit_info}")
    print(f"  Period:      {fp.period_from} {_DIM}→{_RESET} {fp.period_to}")
    print(f"  Rent:        {fp.rent}")
    print(f"{'─' * _WIDTH}")
    print(f"  Raw:         {_DIM}{text}{_RESET}")
    print(f"  Hash:        {_BOLD}{compute_document_hash(text)}{_RESET}")
    print(f"  {_YELLOW}Provisional: the landlord's approval re-derives the public hash.{_RESET}")
    print(f"{'=' * _WIDTH}\n")


def print_verification(result: PublicVerification) -> int:
    """Pretty-print a public verification.

    Returns:
        0 if the contract is active, 1 if terminated.
    """
    _header("PUBLIC VERIFICATION")
    print(f"  Hash:        {result.doc_hash}")
    if result.tx_hash:
        print(f"  Tx:          {_DIM}{result.tx_hash}{_RESET}")
    record = result.on_chain
    print(f"{'─' * _WIDTH}")
    print(f"  Landlord:    {record.landlord_name}")
    print(f"  Tenant:      {record.tenant_name}")
    print(f"  Unit:        {record.unit_info}")
    print(f"  Period:      {record.period_from} {_DIM}→{_RESET} {record.period_to}")
    if record.approved_timestamp:
        print(f"  Recorded:    {record.approved_timestamp.isoformat()}")
    print(f"  Fingerprint: {_DIM}{result.fingerprint}{_RESET}")
    if result.document_url:
        print(f"  Document:    {result.document_url}")
    print(f"{'=' * _WIDTH}")

    if result.contract_status == ContractStatus.ACTIVE:
        print(f"  {_GREEN}{_BOLD}CONTRACT IS ACTIVE AND ON THE LEDGER{_RESET}")
    else:
        print(f"  {_RED}{_BOLD}CONTRACT IS TERMINATED{_RESET}")
    print(f"{'=' * _WIDTH}\n")
    return 0 if result.contract_status == ContractStatus.ACTIVE else 1


# ─── Commands ───────────────────────────────────────────────────────


def cmd_fingerprint(settings: Settings, path: Path) -> int:
    mime_type, _ = mimetypes.guess_type(path.name)
    document = Document(
        content=path.read_bytes(),
        mime_type=mime_type or "application/octet-stream",
        filename=path.name,
    )
    text = DocumentIntelligence.from_settings(settings).extract_fingerprint(document)
    print_fingerprint(text)
    return 0


def cmd_verify(settings: Settings, doc_hash: str) -> int:
    engine = ReconciliationEngine.from_settings(settings)
    return print_verification(engine.public_verify(doc_hash))


def cmd_dispatch(settings: Settings) -> int:
    engine = ReconciliationEngine.from_settings(settings)
    if engine.notifier is None:
        print(f"\n  {_YELLOW}SMTP_HOST is not set; nothing can be delivered.{_RESET}\n")
        return 1
    sent = engine.dispatch_outbox()
    print(f"\n  {_GREEN}Delivered {sent} queued message(s).{_RESET}\n")
    return 0


# ─── Main ────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="blocklease", description="Block Lease operator tools")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    fp = sub.add_parser("fingerprint", help="extract a contract's fingerprint")
    fp.add_argument("path", type=Path)

    verify = sub.add_parser("verify", help="look up a document hash")
    verify.add_argument("doc_hash")

    sub.add_parser("dispatch", help="retry queued notifications")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    settings = Settings()

    try:
        if args.command == "fingerprint":
            return cmd_fingerprint(settings, args.path)
        if args.command == "verify":
            return cmd_verify(settings, args.doc_hash)
        return cmd_dispatch(settings)
    except BlockLeaseError as e:
        _print_error(e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
