import pytest

from verity.blockchain.block import Block
from verity.core.exceptions import BlockStateError, SealTimeout

DATA = {"type": "photo", "fingerprint": "ab" * 32, "latitude": 40.7128, "longitude": -74.006,
        "timestamp": 1700000000000}


def make_block(index=1, data=None, previous_hash="f" * 64):
    return Block(index, 1700000001234, dict(data or DATA), previous_hash)


def test_new_block_has_consistent_hash():
    block = make_block()
    assert block.nonce == 0
    assert not block.sealed
    assert block.hash == block.calculate_hash()
    assert len(block.hash) == 64


def test_hash_covers_every_field():
    base = make_block()
    assert Block(2, base.timestamp, dict(DATA), base.previous_hash).hash != base.hash
    assert Block(1, base.timestamp + 1, dict(DATA), base.previous_hash).hash != base.hash
    assert Block(1, base.timestamp, dict(DATA, latitude=40.7), base.previous_hash).hash != base.hash
    assert Block(1, base.timestamp, dict(DATA), "e" * 64).hash != base.hash


def test_hash_ignores_data_key_order():
    reordered = dict(reversed(list(DATA.items())))
    assert make_block(data=reordered).hash == make_block().hash


@pytest.mark.parametrize("difficulty", [0, 1, 2, 3])
def test_seal_meets_difficulty(difficulty):
    block = make_block()
    block.seal(difficulty)
    assert block.sealed
    assert block.hash.startswith("0" * difficulty)
    assert block.leading_zero_digits() >= difficulty
    assert block.meets_difficulty(difficulty)
    assert block.hash == block.calculate_hash()


def test_seal_is_deterministic():
    first, second = make_block(), make_block()
    first.seal(2)
    second.seal(2)
    assert first.nonce == second.nonce
    assert first.hash == second.hash


def test_seal_at_zero_difficulty_keeps_nonce():
    block = make_block()
    original = block.hash
    block.seal(0)
    assert block.nonce == 0
    assert block.hash == original


def test_seal_ceiling_raises_and_restores_block():
    block = make_block()
    original_hash = block.hash
    with pytest.raises(SealTimeout) as excinfo:
        block.seal(8, max_nonce=10)
    assert excinfo.value.difficulty == 8
    assert excinfo.value.attempts == 11
    assert block.nonce == 0
    assert block.hash == original_hash
    assert not block.sealed


def test_sealed_block_cannot_be_resealed():
    block = make_block()
    block.seal(1)
    with pytest.raises(BlockStateError):
        block.seal(1)


@pytest.mark.parametrize("difficulty", [-1, 65, "2", True, 1.5])
def test_invalid_difficulty_rejected(difficulty):
    with pytest.raises(ValueError):
        make_block().seal(difficulty)


def test_negative_index_rejected():
    with pytest.raises(ValueError):
        Block(-1, 0, {}, "")


def test_record_round_trip_keeps_stored_hash():
    block = make_block()
    block.seal(1)
    record = block.to_record()
    assert set(record) == {"index", "timestamp", "data", "previousHash", "hash", "nonce"}

    restored = Block.from_record(record)
    assert restored == block
    assert restored.has_valid_hash()


def test_record_with_altered_field_fails_hash_check():
    block = make_block()
    block.seal(1)
    record = block.to_record()
    record["data"] = dict(record["data"], fingerprint="cd" * 32)

    restored = Block.from_record(record)
    assert restored.hash == block.hash
    assert not restored.has_valid_hash()
