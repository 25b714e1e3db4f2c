"""
Pytest configuration and shared fixtures.
"""

import hashlib
import math
from typing import List, Optional

import pytest

from agentic_memory.config import EmbeddingsConfig, MemoryConfig, PrivacyConfig
from agentic_memory.embeddings import EmbeddingGenerator, EmbeddingProvider
from agentic_memory.errors import EmbeddingError, EmbeddingProviderError
from agentic_memory.manager import MemoryManager
from agentic_memory.storage import MemoryStore
from agentic_memory.types import MemoryInput, MemoryType


FAKE_DIMENSIONS = 64

# 2024-01-01 00:00:00 UTC
START_TIME = 1704067200


class FakeClock:
    """Controllable time source returning Unix seconds."""

    def __init__(self, start: int = START_TIME):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int = 1) -> int:
        self.now += seconds
        return self.now


def hash_embedding(text: str, dimensions: int = FAKE_DIMENSIONS) -> List[float]:
    """Bag-of-words vector: each word hashed into one bucket, L2-normalized."""
    words = [w for w in "".join(
        c if c.isalnum() else " " for c in text.lower()
    ).split() if len(w) > 2]

    vector = [0.0] * dimensions
    for word in words:
        index = int(hashlib.md5(word.encode()).hexdigest(), 16) % dimensions
        vector[index] += 1.0

    magnitude = math.sqrt(sum(x * x for x in vector))
    if magnitude == 0:
        return vector
    return [x / magnitude for x in vector]


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic in-process provider for tests."""

    DEFAULT_MODEL = "fake-hash"

    def __init__(
        self,
        config: Optional[EmbeddingsConfig] = None,
        fail_init: bool = False,
        fail_generate: bool = False,
    ):
        super().__init__(config or EmbeddingsConfig(
            provider="fake", dimensions=FAKE_DIMENSIONS,
        ))
        self.fail_init = fail_init
        self.fail_generate = fail_generate
        self.init_count = 0
        self.calls: List[str] = []
        self.batch_calls: List[List[str]] = []

    def _initialize(self) -> None:
        self.init_count += 1
        if self.fail_init:
            raise EmbeddingError("model not available")

    def generate(self, text, cancel_event=None):
        self._check_cancelled(cancel_event)
        if self.fail_generate:
            raise EmbeddingProviderError("backend down", status_code=503, body="down")
        self.calls.append(text)
        return hash_embedding(text, self.dimensions)

    def generate_batch(self, texts, cancel_event=None):
        self.batch_calls.append(list(texts))
        return [self.generate(text, cancel_event) for text in texts]


def make_input(
    title: str = "Test memory",
    content: str = "Some content",
    memory_type: MemoryType = MemoryType.OBSERVATION,
    **kwargs,
) -> MemoryInput:
    """Build a MemoryInput with sensible defaults."""
    return MemoryInput(type=memory_type, title=title, content=content, **kwargs)


@pytest.fixture
def clock():
    """A controllable clock starting at a fixed time."""
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    """Path to a fresh database file."""
    return str(tmp_path / "memory.db")


@pytest.fixture
def store(db_path, clock):
    """A memory store backed by a temporary database."""
    memory_store = MemoryStore(db_path, clock=clock)
    yield memory_store
    memory_store.close()


@pytest.fixture
def fake_provider():
    """A deterministic embedding provider."""
    return FakeEmbeddingProvider()


@pytest.fixture
def memory_config(db_path):
    """Configuration with a temporary database and fake-sized embeddings."""
    return MemoryConfig(
        db_path=db_path,
        privacy=PrivacyConfig(),
        embeddings=EmbeddingsConfig(provider="fake", dimensions=FAKE_DIMENSIONS),
    )


@pytest.fixture
def manager(memory_config, fake_provider, clock):
    """A manager with hybrid search over the fake provider."""
    generator = EmbeddingGenerator(memory_config.embeddings, provider=fake_provider)
    memory_manager = MemoryManager(memory_config, generator=generator, clock=clock)
    yield memory_manager
    memory_manager.close()


@pytest.fixture
def lexical_manager(db_path, clock):
    """A manager with embeddings turned off."""
    config = MemoryConfig(
        db_path=db_path,
        embeddings=EmbeddingsConfig(enabled=False),
    )
    memory_manager = MemoryManager(config, clock=clock)
    yield memory_manager
    memory_manager.close()
