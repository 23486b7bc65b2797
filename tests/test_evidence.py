from concurrent.futures import ThreadPoolExecutor

import pytest

from verity.blockchain.ledger import Ledger
from verity.core.database import InMemoryBlockStore
from verity.core.exceptions import InvalidInput, SealTimeout, StorageFailure, TamperDetected
from verity.services.evidence import EvidenceService
from verity.services.fingerprint import compute_fingerprint


class FailingStore(InMemoryBlockStore):
    """Accepts the genesis block, then fails every durable write."""

    def put(self, block):
        if block.index > 0:
            raise StorageFailure("disk full")
        super().put(block)


def test_open_seeds_genesis(service, store):
    assert len(service.ledger) == 1
    assert store.length() == 1
    assert store.get(0) == service.tip()


def test_submit_and_verify_scenario(service, photo, meta):
    result = service.submit(photo, meta)
    assert result.index == 1
    assert result.fingerprint == compute_fingerprint(photo, meta)

    verified = service.verify(photo, meta)
    assert verified.verified
    assert verified.index == 1
    assert verified.recorded_at == service.get_block(1).timestamp
    assert verified.captured_at == meta["timestamp"]

    shifted = dict(meta, timestamp=meta["timestamp"] + 1)
    assert service.verify(photo, shifted).verified is False


def test_verify_with_different_bytes_fails(service, photo, meta):
    service.submit(photo, meta)
    result = service.verify(photo + b"\x00", meta)
    assert result.verified is False
    assert result.index is None


def test_submitted_block_payload(service, photo, meta):
    result = service.submit(photo, meta)
    block = service.get_block(result.index)
    assert block.data == {
        "type": "photo",
        "fingerprint": result.fingerprint,
        "latitude": meta["latitude"],
        "longitude": meta["longitude"],
        "timestamp": meta["timestamp"],
    }
    assert block.previous_hash == service.ledger[0].hash
    assert block.meets_difficulty(service.difficulty)


def test_chain_links_after_many_submissions(service, photo, meta):
    for i in range(6):
        assert service.submit(photo, dict(meta, timestamp=meta["timestamp"] + i)).index == i + 1

    assert service.validate()
    chain = service.ledger.blocks()
    for i in range(1, len(chain)):
        assert chain[i].previous_hash == chain[i - 1].hash
    assert service.store.length() == len(chain) == 7


def test_duplicate_submission_verifies_to_latest_block(service, photo, meta):
    service.submit(photo, meta)
    service.submit(photo, meta)
    assert service.verify(photo, meta).index == 2


def test_invalid_submission_leaves_chain_unchanged(service, photo, meta):
    with pytest.raises(InvalidInput):
        service.submit(b"", meta)
    with pytest.raises(InvalidInput):
        service.submit(photo, dict(meta, latitude=None))
    assert len(service.ledger) == 1
    assert service.store.length() == 1


def test_verify_invalid_input_raises(service, meta):
    with pytest.raises(InvalidInput):
        service.verify(b"", meta)


def test_storage_failure_is_not_appended(photo, meta):
    store = FailingStore()
    service = EvidenceService.open(store, difficulty=1)

    with pytest.raises(StorageFailure):
        service.submit(photo, meta)
    assert len(service.ledger) == 1
    assert store.length() == 1


def test_seal_timeout_is_not_appended(store, photo, meta):
    service = EvidenceService.open(store, difficulty=8, max_nonce=5)
    with pytest.raises(SealTimeout):
        service.submit(photo, meta)
    assert len(service.ledger) == 1
    assert store.length() == 1


def test_reopen_rebuilds_ledger_from_store(service, store, photo, meta):
    service.submit(photo, meta)
    service.submit(photo, dict(meta, latitude=41.0))

    reopened = EvidenceService.open(store, difficulty=1)
    assert len(reopened.ledger) == 3
    assert reopened.tip().hash == service.tip().hash
    assert reopened.verify(photo, meta).index == 1
    assert reopened.submit(photo, dict(meta, latitude=42.0)).index == 3


def test_reopen_detects_tampered_store(service, store, photo, meta):
    service.submit(photo, meta)
    store._records[1]["data"]["latitude"] = 0.0

    with pytest.raises(TamperDetected):
        EvidenceService.open(store)


def test_ledger_store_length_mismatch_rejected():
    with pytest.raises(StorageFailure):
        EvidenceService(Ledger.initialize(), InMemoryBlockStore())


@pytest.mark.parametrize("difficulty", [70, -1, True, "2"])
def test_open_rejects_bad_difficulty_before_seeding(difficulty):
    store = InMemoryBlockStore()
    with pytest.raises(ValueError):
        EvidenceService.open(store, difficulty=difficulty)
    assert store.length() == 0


def test_constructor_rejects_bad_difficulty(store):
    ledger = Ledger.initialize()
    store.put(ledger.tip())
    with pytest.raises(ValueError):
        EvidenceService(ledger, store, difficulty=70)


def test_concurrent_submissions_are_serialized(service, photo, meta):
    def submit(i):
        return service.submit(photo, dict(meta, timestamp=meta["timestamp"] + i)).index

    with ThreadPoolExecutor(max_workers=8) as pool:
        indices = sorted(pool.map(submit, range(16)))

    assert indices == list(range(1, 17))
    assert service.validate()
    assert service.store.length() == 17


def test_tampering_after_submission_fails_validation(service, photo, meta):
    service.submit(photo, meta)
    service.submit(photo, dict(meta, longitude=0.5))
    assert service.validate()

    block = service.ledger[1]
    fingerprint = block.data["fingerprint"]
    block.data["fingerprint"] = ("0" if fingerprint[0] != "0" else "1") + fingerprint[1:]
    assert not service.validate()
    with pytest.raises(TamperDetected):
        service.verify_integrity()


def test_stats(service, photo, meta):
    service.submit(photo, meta)
    stats = service.stats()
    assert stats["ledger_length"] == 2
    assert stats["store_length"] == 2
    assert stats["difficulty"] == 1
    assert stats["tip_index"] == 1
    assert stats["store"]["backend"] == "memory"
