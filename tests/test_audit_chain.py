from scripts.audit_chain import audit_store, main


def test_audit_passes_on_intact_chain(service, store, photo, meta):
    service.submit(photo, meta)
    service.submit(photo, dict(meta, latitude=10.0))

    report = audit_store(store, difficulty=1)
    assert report["valid"] is True
    assert report["length"] == 3
    assert report["tip_hash"] == service.tip().hash
    assert report["underpowered_blocks"] == []


def test_audit_flags_blocks_below_difficulty(service, store, photo, meta):
    service.submit(photo, meta)
    report = audit_store(store, difficulty=64)
    assert report["valid"] is True
    assert report["underpowered_blocks"] == [1]


def test_audit_reports_tampered_block(service, store, photo, meta):
    service.submit(photo, meta)
    service.submit(photo, dict(meta, latitude=10.0))
    store._records[2]["nonce"] += 1

    report = audit_store(store)
    assert report["valid"] is False
    assert report["failed_index"] == 2
    assert report["tip_hash"] is None


def test_memory_backend_is_refused(capsys):
    assert main(["--backend", "memory"]) == 2
    assert "postgres" in capsys.readouterr().out
