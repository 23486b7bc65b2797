"""
Error taxonomy for the evidence ledger.
"""

from typing import Optional


class LedgerError(Exception):
    """Base class for all ledger errors."""
    pass


class InvalidInput(LedgerError):
    """
    Malformed or missing media bytes or metadata.

    Also raised for coordinates outside the WGS84 range (latitude [-90, 90],
    longitude [-180, 180]), which are finite but cannot be a capture location.
    """
    pass


class ChainError(LedgerError):
    """Chain linkage or integrity violation."""
    pass


class LinkageMismatch(ChainError):
    """A candidate block does not extend the current tip."""

    def __init__(self, message: str, expected_index: Optional[int] = None, actual_index: Optional[int] = None):
        super().__init__(message)
        self.expected_index = expected_index
        self.actual_index = actual_index


class TamperDetected(ChainError):
    """A stored block no longer matches its hash or its predecessor."""

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


class StorageFailure(LedgerError):
    """The block store could not complete an operation."""
    pass


class ImmutableBlockError(StorageFailure):
    """A different block was put at an index that is already stored."""
    pass


class SealTimeout(LedgerError):
    """The nonce search hit its ceiling before meeting the difficulty."""

    def __init__(self, message: str, difficulty: int, attempts: int):
        super().__init__(message)
        self.difficulty = difficulty
        self.attempts = attempts


class BlockStateError(LedgerError):
    """Operation not allowed in the block's current state."""
    pass
