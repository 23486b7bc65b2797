#!/usr/bin/env python3
"""
Ledger audit script for Verity
Rebuilds the chain from the configured block store and checks every block's
hash and linkage. Exits non-zero when tampering is detected.
"""

import os
import sys
from pathlib import Path
from typing import Any, Dict

# Add the parent directory to Python path so we can import our modules
sys.path.append(str(Path(__file__).parent.parent))

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

import structlog

from verity.blockchain.ledger import Ledger
from verity.core.database import BlockStore, create_block_store
from verity.core.exceptions import StorageFailure, TamperDetected

logger = structlog.get_logger()


def audit_store(store: BlockStore, difficulty: int = 0) -> Dict[str, Any]:
    """
    Verify the chain held by a block store.

    Args:
        store: Block store to audit
        difficulty: Minimum leading zero hex digits expected on non-genesis blocks

    Returns:
        Report with validity, length, tip hash and the first failing index
    """
    report = {
        "backend": store.backend,
        "valid": False,
        "length": 0,
        "tip_hash": None,
        "failed_index": None,
        "reason": None,
        "underpowered_blocks": [],
    }

    blocks = list(store.iter_blocks())
    report["length"] = len(blocks)

    try:
        ledger = Ledger.from_blocks(blocks)
    except TamperDetected as e:
        report["failed_index"] = e.index
        report["reason"] = str(e)
        logger.error("Ledger audit failed", index=e.index, reason=str(e))
        return report

    report["valid"] = True
    report["tip_hash"] = ledger.tip().hash
    report["underpowered_blocks"] = [
        block.index for block in blocks[1:] if not block.meets_difficulty(difficulty)
    ]

    logger.info("Ledger audit passed",
                length=report["length"],
                underpowered=len(report["underpowered_blocks"]))
    return report


def print_report(report: Dict[str, Any]) -> None:
    print("Verity - Ledger Audit")
    print("=" * 50)
    print(f"  Backend: {report['backend']}")
    print(f"  Blocks:  {report['length']}")
    if report["valid"]:
        print(f"  Tip:     {report['tip_hash']}")
        print("  Result:  chain intact")
        if report["underpowered_blocks"]:
            print(f"  Warning: blocks below difficulty: {report['underpowered_blocks']}")
    else:
        print(f"  Result:  TAMPER DETECTED at block {report['failed_index']}")
        print(f"  Reason:  {report['reason']}")


def main(argv=None) -> int:
    import argparse

    parser = argparse.ArgumentParser(description="Audit the Verity evidence ledger")
    parser.add_argument("--backend", default=os.getenv("BLOCK_STORE", "postgres"),
                        help="Block store backend to audit (only postgres persists blocks)")
    parser.add_argument("--dsn", default=os.getenv("DB_DSN"),
                        help="PostgreSQL DSN")
    parser.add_argument("--difficulty", type=int, default=int(os.getenv("VERITY_DIFFICULTY", 0)),
                        help="Expected leading zero hex digits on sealed blocks")
    args = parser.parse_args(argv)

    if args.backend == "memory":
        print("The memory backend holds no blocks outside a running server; audit a postgres store instead.")
        return 2

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    store = create_block_store(args.backend, dsn=args.dsn)
    try:
        report = audit_store(store, difficulty=args.difficulty)
    except StorageFailure as e:
        print(f"Block store error: {str(e)}")
        return 2
    finally:
        store.close()

    print_report(report)
    return 0 if report["valid"] else 1


if __name__ == "__main__":
    sys.exit(main())
