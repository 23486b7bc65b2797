from typing import Any, Dict, Optional

import structlog

from verity.core.exceptions import BlockStateError, SealTimeout
from verity.core.utils import canonical_json, sha256_hex, leading_zero_digits, format_hash

logger = structlog.get_logger()

MAX_DIFFICULTY = 64  # SHA-256 hex digest length


def check_difficulty(difficulty: int) -> None:
    """Raise ValueError unless difficulty is an int in [0, MAX_DIFFICULTY]."""
    if isinstance(difficulty, bool) or not isinstance(difficulty, int):
        raise ValueError(f"difficulty must be an integer, got {difficulty!r}")
    if not 0 <= difficulty <= MAX_DIFFICULTY:
        raise ValueError(f"difficulty must be between 0 and {MAX_DIFFICULTY}, got {difficulty}")


class Block:
    """
    One ledger entry: an evidence payload with chain linkage and a proof-of-work seal.

    The hash is recomputed every time the nonce changes, so a block is never
    observed with a stale hash while it is being sealed.
    """

    def __init__(self, index: int, timestamp: int, data: Dict[str, Any], previous_hash: str = ""):
        if index < 0:
            raise ValueError(f"block index must be non-negative, got {index}")
        self.index = index
        self.timestamp = timestamp
        self.data = data
        self.previous_hash = previous_hash
        self.nonce = 0
        self.sealed = False
        self.hash = self.calculate_hash()

    def calculate_hash(self) -> str:
        """SHA-256 over index, previous hash, timestamp, serialized data and nonce."""
        preimage = (
            f"{self.index}"
            f"{self.previous_hash}"
            f"{self.timestamp}"
            f"{canonical_json(self.data)}"
            f"{self.nonce}"
        )
        return sha256_hex(preimage.encode("utf-8"))

    def has_valid_hash(self) -> bool:
        return self.hash == self.calculate_hash()

    def leading_zero_digits(self) -> int:
        return leading_zero_digits(self.hash)

    def meets_difficulty(self, difficulty: int) -> bool:
        return self.hash.startswith("0" * difficulty)

    def seal(self, difficulty: int, max_nonce: Optional[int] = None) -> None:
        """
        Search nonces until the hash has at least `difficulty` leading hex zeros.

        Args:
            difficulty: Required count of leading '0' hex digits
            max_nonce: Highest nonce to try; None searches without a ceiling

        Raises:
            SealTimeout: ceiling reached; nonce and hash are restored
        """
        check_difficulty(difficulty)
        if self.sealed:
            raise BlockStateError(f"block {self.index} is already sealed")

        start_nonce = self.nonce
        start_hash = self.hash
        target = "0" * difficulty

        nonce = start_nonce
        digest = start_hash
        while not digest.startswith(target):
            if max_nonce is not None and nonce >= max_nonce:
                self.nonce = start_nonce
                self.hash = start_hash
                attempts = nonce - start_nonce + 1
                logger.warning("Block sealing hit nonce ceiling",
                               index=self.index, difficulty=difficulty,
                               max_nonce=max_nonce, attempts=attempts)
                raise SealTimeout(
                    f"no nonce up to {max_nonce} satisfies difficulty {difficulty}",
                    difficulty=difficulty,
                    attempts=attempts,
                )
            nonce += 1
            self.nonce = nonce
            digest = self.calculate_hash()
            self.hash = digest

        self.sealed = True
        logger.info("Block sealed",
                    index=self.index, nonce=self.nonce,
                    difficulty=difficulty, hash=format_hash(self.hash))

    def to_record(self) -> Dict[str, Any]:
        """Persisted layout of the block."""
        return {
            "index": self.index,
            "timestamp": self.timestamp,
            "data": self.data,
            "previousHash": self.previous_hash,
            "hash": self.hash,
            "nonce": self.nonce,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Block":
        """
        Rebuild a block from its persisted layout.

        The stored hash is kept as-is rather than recomputed, so tampering
        with any stored field remains detectable.
        """
        block = cls.__new__(cls)
        block.index = int(record["index"])
        block.timestamp = int(record["timestamp"])
        block.data = record["data"]
        block.previous_hash = record.get("previousHash", "") or ""
        block.nonce = int(record.get("nonce", 0))
        block.hash = record["hash"]
        block.sealed = True
        return block

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Block):
            return NotImplemented
        return self.to_record() == other.to_record()

    def __repr__(self) -> str:
        return (f"Block(index={self.index}, timestamp={self.timestamp}, "
                f"nonce={self.nonce}, hash={format_hash(self.hash)!r})")
