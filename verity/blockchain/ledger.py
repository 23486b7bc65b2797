import threading
from typing import Iterable, Iterator, Optional, Tuple

import structlog

from verity.blockchain.block import Block
from verity.core.exceptions import LinkageMismatch, TamperDetected
from verity.core.utils import current_timestamp_ms, format_hash

logger = structlog.get_logger()

GENESIS_DATA = {"type": "genesis", "message": "Genesis Block"}


def create_genesis_block(timestamp: Optional[int] = None) -> Block:
    """Genesis block: index 0, empty previous hash, fixed sentinel payload."""
    return Block(
        index=0,
        timestamp=current_timestamp_ms() if timestamp is None else timestamp,
        data=dict(GENESIS_DATA),
        previous_hash="",
    )


class Ledger:
    """
    Append-only, hash-linked sequence of blocks.

    Block N sits at position N, and for every N > 0 its previous_hash equals
    the hash of block N-1. The only mutation is append().
    """

    def __init__(self, genesis: Block):
        if genesis.index != 0 or genesis.previous_hash != "":
            raise ValueError("genesis block must have index 0 and an empty previous hash")
        self._chain = [genesis]
        self._lock = threading.RLock()

    @classmethod
    def initialize(cls, timestamp: Optional[int] = None) -> "Ledger":
        """Create a ledger holding only a fresh genesis block."""
        ledger = cls(create_genesis_block(timestamp))
        logger.info("Ledger initialized", genesis_hash=format_hash(ledger.tip().hash))
        return ledger

    @classmethod
    def from_blocks(cls, blocks: Iterable[Block]) -> "Ledger":
        """
        Rebuild a ledger from persisted blocks in index order.

        Raises:
            TamperDetected: the blocks do not form a valid chain
        """
        iterator = iter(blocks)
        genesis = next(iterator, None)
        if genesis is None:
            raise TamperDetected("cannot rebuild ledger: no genesis block")
        if genesis.index != 0 or genesis.previous_hash != "":
            raise TamperDetected("first stored block is not a genesis block", index=genesis.index)

        ledger = cls(genesis)
        ledger._chain.extend(iterator)
        ledger.verify_integrity()

        logger.info("Ledger rebuilt from stored blocks",
                    length=len(ledger), tip_hash=format_hash(ledger.tip().hash))
        return ledger

    def tip(self) -> Block:
        """Most recently appended block; genesis always exists."""
        with self._lock:
            return self._chain[-1]

    def length(self) -> int:
        with self._lock:
            return len(self._chain)

    def __len__(self) -> int:
        return self.length()

    def __getitem__(self, index: int) -> Block:
        with self._lock:
            return self._chain[index]

    def __iter__(self) -> Iterator[Block]:
        return iter(self.blocks())

    def blocks(self) -> Tuple[Block, ...]:
        """Consistent snapshot of the chain."""
        with self._lock:
            return tuple(self._chain)

    def check_linkage(self, candidate: Block) -> None:
        """
        Raise LinkageMismatch unless the candidate directly extends the current tip.
        """
        with self._lock:
            tip = self._chain[-1]
            expected_index = tip.index + 1
            if candidate.index != expected_index:
                raise LinkageMismatch(
                    f"candidate index {candidate.index} does not follow tip index {tip.index}",
                    expected_index=expected_index,
                    actual_index=candidate.index,
                )
            if candidate.previous_hash != tip.hash:
                raise LinkageMismatch(
                    f"candidate {candidate.index} previous hash does not match tip hash",
                    expected_index=expected_index,
                    actual_index=candidate.index,
                )

    def append(self, candidate: Block) -> int:
        """
        Append a candidate block after validating its linkage to the tip.

        Returns:
            The index of the appended block

        Raises:
            LinkageMismatch: candidate does not extend the tip; chain unchanged
            TamperDetected: candidate's stored hash does not match its fields
        """
        with self._lock:
            self.check_linkage(candidate)
            if not candidate.has_valid_hash():
                raise TamperDetected(
                    f"candidate {candidate.index} hash does not match its contents",
                    index=candidate.index,
                )
            self._chain.append(candidate)

        logger.info("Block appended to ledger",
                    index=candidate.index, hash=format_hash(candidate.hash))
        return candidate.index

    def verify_integrity(self) -> None:
        """
        Walk the full chain checking hashes and linkage.

        Raises:
            TamperDetected: on the first block that fails a check
        """
        chain = self.blocks()

        genesis = chain[0]
        if genesis.index != 0 or genesis.previous_hash != "":
            raise TamperDetected("genesis block has been altered", index=genesis.index)
        if not genesis.has_valid_hash():
            raise TamperDetected("genesis hash does not match its contents", index=0)

        for position in range(1, len(chain)):
            current = chain[position]
            previous = chain[position - 1]

            if current.index != position:
                raise TamperDetected(
                    f"block at position {position} has index {current.index}",
                    index=current.index,
                )
            if not current.has_valid_hash():
                raise TamperDetected(
                    f"block {position} hash does not match its contents",
                    index=position,
                )
            if current.previous_hash != previous.hash:
                raise TamperDetected(
                    f"block {position} is not linked to block {position - 1}",
                    index=position,
                )

    def validate(self) -> bool:
        """Read-only integrity check; True when the whole chain is intact."""
        try:
            self.verify_integrity()
        except TamperDetected as e:
            logger.warning("Ledger validation failed", index=e.index, reason=str(e))
            return False
        return True
