import logging
import os
import tempfile

import pytest

# keep log files of imported entry points out of the working tree
os.environ.setdefault("ROOT_DIR", tempfile.mkdtemp(prefix="knowledge-base-tests-"))

from fakes import EMBED_HOST, QDRANT_HOST, VECTOR_SIZE, FakeBackends  # noqa: E402
from shared.helper.HelperConfig import HelperConfig  # noqa: E402
from shared.logging.logging_setup import ColorLogger  # noqa: E402


@pytest.fixture
def env(monkeypatch, tmp_path) -> dict[str, str]:
    values = {
        "APP_API_KEY": "test-key",
        "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'knowledge.db'}",
        "EMBED_ENGINE": "openai",
        "EMBED_MODEL": "test-embedding",
        "EMBED_VECTOR_SIZE": str(VECTOR_SIZE),
        "EMBED_OPENAI_BASE_URL": f"http://{EMBED_HOST}/v1",
        "EMBED_OPENAI_API_KEY": "sk-test",
        "EMBED_RETRY_BACKOFF": "0",
        "RAG_ENGINE": "qdrant",
        "RAG_QDRANT_BASE_URL": f"http://{QDRANT_HOST}:6333",
        "RAG_QDRANT_COLLECTION": "knowledge_base",
        "RAG_RETRY_BACKOFF": "0",
        "INGEST_SWEEP_INTERVAL_SECONDS": "0",
    }
    for key in ("BLOB_ENGINE", "RAG_QDRANT_PORT", "RAG_QDRANT_BEHIND_PROXY", "RAG_QDRANT_API_KEY"):
        monkeypatch.delenv(key, raising=False)
    for key, value in values.items():
        monkeypatch.setenv(key, value)
    return values


@pytest.fixture
def helper_config(env) -> HelperConfig:
    return HelperConfig(logger=ColorLogger(logging.getLogger("tests")))


@pytest.fixture
def backends() -> FakeBackends:
    return FakeBackends(vector_size=VECTOR_SIZE)
