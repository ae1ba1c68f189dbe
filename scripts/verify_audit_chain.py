#!/usr/bin/env python
"""Check that the patient audit trail hash chain is intact."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from app.core.config import get_settings
from app.core.database import session_scope
from app.core.logging import configure_logging
from app.services.audit_verifier import AuditVerificationError, AuditVerifier

LOGGER = logging.getLogger("app.scripts.verify_audit_chain")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recompute audit entry hashes and report the first break.")
    parser.add_argument("--from", dest="start_sequence", type=int, default=None, help="First sequence to check.")
    parser.add_argument("--to", dest="end_sequence", type=int, default=None, help="Last sequence to check.")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(get_settings())

    try:
        with session_scope() as session:
            result = AuditVerifier(session).verify(
                start_sequence=args.start_sequence,
                end_sequence=args.end_sequence,
            )
    except AuditVerificationError as exc:
        LOGGER.error("audit_chain_broken", extra={"reason": str(exc)})
        return 1

    if result.checked == 0:
        LOGGER.warning("audit_chain_empty_range")
        return 0

    LOGGER.info(
        "audit_chain_verified",
        extra={
            "first_sequence": result.start_sequence,
            "last_sequence": result.end_sequence,
            "entries_checked": result.checked,
        },
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
