import pytest

from verity.core.database import InMemoryBlockStore
from verity.services.evidence import EvidenceService

PHOTO = b"\xff\xd8\xff\xe0 normalized jpeg payload \x00\x01\x02\xff\xd9"
META = {"latitude": 40.7128, "longitude": -74.006, "timestamp": 1700000000000}


@pytest.fixture
def photo():
    return PHOTO


@pytest.fixture
def meta():
    return dict(META)


@pytest.fixture
def store():
    return InMemoryBlockStore()


@pytest.fixture
def service(store):
    return EvidenceService.open(store, difficulty=1, max_nonce=100_000)
