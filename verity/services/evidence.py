import threading
from typing import Any, Dict, Mapping, Optional

import structlog

from verity.blockchain.block import Block, check_difficulty
from verity.blockchain.ledger import Ledger
from verity.core.database import BlockStore
from verity.core.exceptions import LedgerError, StorageFailure
from verity.core.utils import current_timestamp_ms, format_hash
from verity.models.evidence import SubmissionResult, VerificationResult
from verity.services.fingerprint import compute_fingerprint

logger = structlog.get_logger()

DEFAULT_DIFFICULTY = 2
DEFAULT_MAX_NONCE = 5_000_000


class EvidenceService:
    """
    Submits and verifies evidence against the ledger and its block store.

    Submissions are serialized through a single writer lock: the candidate is
    built against the current tip, sealed, durably stored, and only then
    appended to the in-memory ledger. The store therefore never lags the
    ledger, and the ledger can always be rebuilt from the store.
    """

    def __init__(self, ledger: Ledger, store: BlockStore,
                 difficulty: int = DEFAULT_DIFFICULTY,
                 max_nonce: Optional[int] = DEFAULT_MAX_NONCE):
        check_difficulty(difficulty)
        stored = store.length()
        if len(ledger) != stored:
            raise StorageFailure(
                f"ledger has {len(ledger)} blocks but the block store has {stored}"
            )
        self.ledger = ledger
        self.store = store
        self.difficulty = difficulty
        self.max_nonce = max_nonce
        self._write_lock = threading.Lock()

    @classmethod
    def open(cls, store: BlockStore,
             difficulty: int = DEFAULT_DIFFICULTY,
             max_nonce: Optional[int] = DEFAULT_MAX_NONCE) -> "EvidenceService":
        """
        Build a service from the block store, which is the source of truth.

        An empty store is seeded with a fresh genesis block; otherwise the
        ledger is rebuilt from the stored blocks and verified.
        """
        check_difficulty(difficulty)
        if store.length() == 0:
            ledger = Ledger.initialize()
            store.put(ledger.tip())
            logger.info("Seeded empty block store with genesis block", backend=store.backend)
        else:
            ledger = Ledger.from_blocks(store.iter_blocks())

        service = cls(ledger, store, difficulty=difficulty, max_nonce=max_nonce)
        logger.info("Evidence service ready",
                    backend=store.backend, length=len(ledger),
                    difficulty=difficulty, max_nonce=max_nonce)
        return service

    def submit(self, media_bytes: bytes, metadata: Mapping[str, Any]) -> SubmissionResult:
        """
        Record evidence as a new sealed block.

        Raises:
            InvalidInput: media or metadata cannot be fingerprinted
            SealTimeout: no nonce found under the configured ceiling
            LinkageMismatch: the candidate no longer extends the tip
            StorageFailure: the durable write did not complete
        """
        fingerprint = compute_fingerprint(media_bytes, metadata)

        with self._write_lock:
            tip = self.ledger.tip()
            candidate = Block(
                index=self.store.length(),
                timestamp=current_timestamp_ms(),
                data={
                    "type": "photo",
                    "fingerprint": fingerprint,
                    "latitude": metadata["latitude"],
                    "longitude": metadata["longitude"],
                    "timestamp": metadata["timestamp"],
                },
                previous_hash=tip.hash,
            )

            try:
                candidate.seal(self.difficulty, max_nonce=self.max_nonce)
                self.ledger.check_linkage(candidate)
                self.store.put(candidate)
                index = self.ledger.append(candidate)
            except LedgerError as e:
                logger.error("Evidence submission failed",
                             index=candidate.index, fingerprint=format_hash(fingerprint),
                             error_type=type(e).__name__, error=str(e))
                raise

        logger.info("Evidence recorded",
                    index=index, fingerprint=format_hash(fingerprint), nonce=candidate.nonce)
        return SubmissionResult(index=index, fingerprint=fingerprint)

    def verify(self, media_bytes: bytes, metadata: Mapping[str, Any]) -> VerificationResult:
        """
        Check whether this exact media with this exact metadata was recorded.

        A mismatch in either content or claimed metadata yields verified=False;
        the two cases are not distinguished.
        """
        fingerprint = compute_fingerprint(media_bytes, metadata)
        block = self.store.find_by_fingerprint(fingerprint)

        if block is None:
            logger.info("Evidence not found", fingerprint=format_hash(fingerprint))
            return VerificationResult(verified=False)

        logger.info("Evidence verified", index=block.index, fingerprint=format_hash(fingerprint))
        return VerificationResult(
            verified=True,
            index=block.index,
            recorded_at=block.timestamp,
            captured_at=block.data.get("timestamp"),
        )

    def tip(self) -> Block:
        return self.ledger.tip()

    def get_block(self, index: int) -> Optional[Block]:
        return self.store.get(index)

    def validate(self) -> bool:
        return self.ledger.validate()

    def verify_integrity(self) -> None:
        self.ledger.verify_integrity()

    def stats(self) -> Dict[str, Any]:
        tip = self.ledger.tip()
        return {
            "ledger_length": len(self.ledger),
            "store_length": self.store.length(),
            "difficulty": self.difficulty,
            "max_nonce": self.max_nonce,
            "tip_index": tip.index,
            "tip_hash": tip.hash,
            "store": self.store.stats(),
        }
