import asyncio

import pytest

from fakes import VECTOR_SIZE, hash_vector
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.embed.ollama.EmbedClientOllama import EmbedClientOllama
from shared.clients.embed.openai.EmbedClientOpenai import EmbedClientOpenai
from shared.errors import ClientRequestError, ConfigurationError, TransientClientError


def _run_with_client(client, backends, scenario):
    async def _wrapped():
        await client.boot(transport=backends.transport())
        try:
            return await scenario(client)
        finally:
            await client.close()

    return asyncio.run(_wrapped())


def test_manager_selects_openai_engine(helper_config):
    client = EmbedClientManager(helper_config=helper_config).get_client()
    assert isinstance(client, EmbedClientOpenai)
    assert client.get_vector_size() == VECTOR_SIZE
    assert client.get_distance() == "Cosine"


def test_manager_selects_ollama_engine(helper_config, monkeypatch):
    monkeypatch.setenv("EMBED_ENGINE", "ollama")
    monkeypatch.setenv("EMBED_OLLAMA_BASE_URL", "http://embed.test")
    client = EmbedClientManager(helper_config=helper_config).get_client()
    assert isinstance(client, EmbedClientOllama)


def test_manager_rejects_unknown_engine(helper_config, monkeypatch):
    monkeypatch.setenv("EMBED_ENGINE", "nonexistent")
    with pytest.raises(ConfigurationError):
        EmbedClientManager(helper_config=helper_config).get_client()


def test_missing_model_fails_at_construction(helper_config, monkeypatch):
    monkeypatch.delenv("EMBED_MODEL")
    with pytest.raises(ValueError):
        EmbedClientOpenai(helper_config=helper_config)


def test_openai_embeddings_keep_input_order(helper_config, backends):
    client = EmbedClientOpenai(helper_config=helper_config)

    vectors = _run_with_client(client, backends, lambda c: c.do_embed(["a", "b", "c"]))

    # the fake answers in reverse order, so this checks the sort by index
    assert vectors == [hash_vector(text, VECTOR_SIZE) for text in ("a", "b", "c")]


def test_ollama_embeddings_keep_input_order(helper_config, backends, monkeypatch):
    monkeypatch.setenv("EMBED_OLLAMA_BASE_URL", "http://embed.test")
    client = EmbedClientOllama(helper_config=helper_config)

    vectors = _run_with_client(client, backends, lambda c: c.do_embed(["x", "y"]))

    assert vectors == [hash_vector("x", VECTOR_SIZE), hash_vector("y", VECTOR_SIZE)]


def test_large_inputs_are_split_into_sequential_requests(helper_config, backends, monkeypatch):
    monkeypatch.setenv("EMBED_MAX_BATCH_SIZE", "4")
    client = EmbedClientOpenai(helper_config=helper_config)
    texts = [f"text {i}" for i in range(10)]

    vectors = _run_with_client(client, backends, lambda c: c.do_embed(texts))

    assert [len(batch) for batch in backends.embeddings.requests] == [4, 4, 2]
    assert vectors == [hash_vector(text, VECTOR_SIZE) for text in texts]


def test_empty_input_sends_no_request(helper_config, backends):
    client = EmbedClientOpenai(helper_config=helper_config)

    vectors = _run_with_client(client, backends, lambda c: c.do_embed([]))

    assert vectors == []
    assert backends.embeddings.requests == []


def test_embed_one_returns_a_single_vector(helper_config, backends):
    client = EmbedClientOpenai(helper_config=helper_config)

    vector = _run_with_client(client, backends, lambda c: c.do_embed_one("query"))

    assert vector == hash_vector("query", VECTOR_SIZE)


def test_dimension_mismatch_is_a_configuration_error(helper_config, backends):
    backends.embeddings.override_size = VECTOR_SIZE + 1
    client = EmbedClientOpenai(helper_config=helper_config)

    with pytest.raises(ConfigurationError):
        _run_with_client(client, backends, lambda c: c.do_embed(["a"]))


def test_server_errors_are_retried_then_raised(helper_config, backends, monkeypatch):
    monkeypatch.setenv("EMBED_RETRY_ATTEMPTS", "2")
    backends.embeddings.fail_with = 503
    client = EmbedClientOpenai(helper_config=helper_config)

    with pytest.raises(TransientClientError):
        _run_with_client(client, backends, lambda c: c.do_embed(["a"]))


def test_client_errors_are_not_retried(helper_config, backends):
    backends.embeddings.fail_with = 400
    client = EmbedClientOpenai(helper_config=helper_config)

    with pytest.raises(ClientRequestError) as exc_info:
        _run_with_client(client, backends, lambda c: c.do_embed(["a"]))

    assert exc_info.value.status_code == 400
