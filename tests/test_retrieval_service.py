import asyncio
import logging

import pytest

from harness import open_stack
from shared.errors import TransientClientError


def test_owner_only_sees_their_own_chunks(helper_config, backends):
    shared_text = b"Quarterly revenue grew by ten percent. The board approved the budget."

    async def scenario():
        async with open_stack(helper_config, backends) as stack:
            doc_a = await stack.ingest("owner-a", "a.txt", shared_text)
            doc_b = await stack.ingest("owner-b", "b.txt", shared_text)
            results_a = await stack.retrieval.do_retrieve("Quarterly revenue grew by ten percent.", "owner-a", limit=10)
            results_b = await stack.retrieval.do_retrieve("Quarterly revenue grew by ten percent.", "owner-b", limit=10)
            return doc_a, doc_b, results_a, results_b

    doc_a, doc_b, results_a, results_b = asyncio.run(scenario())

    assert results_a and results_b
    assert {result.source_document_id for result in results_a} == {doc_a.document_id}
    assert {result.source_document_id for result in results_b} == {doc_b.document_id}
    for call in backends.qdrant.calls_to("POST", "/points/search"):
        assert call[2]["body"]["filter"]["must"][0]["key"] == "owner_id"


def test_results_are_ranked_by_score(helper_config, backends):
    async def scenario():
        async with open_stack(helper_config, backends) as stack:
            text = " ".join(f"Paragraph {i} talks about topic {i}." for i in range(200))
            await stack.ingest("owner-a", "long.txt", text.encode("utf-8"))
            return await stack.retrieval.do_retrieve("topic 7", "owner-a", limit=3)

    results = asyncio.run(scenario())

    assert len(results) == 3
    assert [result.score for result in results] == sorted((result.score for result in results), reverse=True)
    assert all(result.title == "long.txt" for result in results)


def test_exact_chunk_text_is_the_top_hit(helper_config, backends):
    async def scenario():
        async with open_stack(helper_config, backends) as stack:
            await stack.ingest("owner-a", "one.txt", b"alpha beta gamma")
            await stack.ingest("owner-a", "two.txt", b"delta epsilon zeta")
            return await stack.retrieval.do_retrieve("delta epsilon zeta", "owner-a")

    results = asyncio.run(scenario())

    # hash embeddings: identical text means identical vector, cosine 1.0
    assert results[0].text == "delta epsilon zeta"
    assert results[0].score == pytest.approx(1.0)
    assert results[0].chunk_index == 0


def test_unknown_owner_gets_an_empty_list(helper_config, backends):
    async def scenario():
        async with open_stack(helper_config, backends) as stack:
            await stack.ingest("owner-a", "a.txt", b"some content")
            return await stack.retrieval.do_retrieve("some content", "nobody")

    assert asyncio.run(scenario()) == []


def test_default_limit_applies(helper_config, backends, monkeypatch):
    monkeypatch.setenv("RETRIEVAL_DEFAULT_LIMIT", "2")

    async def scenario():
        async with open_stack(helper_config, backends) as stack:
            for i in range(4):
                await stack.ingest("owner-a", f"{i}.txt", f"document number {i}".encode("utf-8"))
            return await stack.retrieval.do_retrieve("document", "owner-a")

    assert len(asyncio.run(scenario())) == 2


@pytest.mark.parametrize(("query", "owner_id", "limit"), [("", "owner-a", 5), ("q", "", 5), ("q", "owner-a", 0)])
def test_invalid_arguments_are_rejected(helper_config, backends, query, owner_id, limit):
    async def scenario():
        async with open_stack(helper_config, backends) as stack:
            await stack.retrieval.do_retrieve(query, owner_id, limit=limit)

    with pytest.raises(ValueError):
        asyncio.run(scenario())


def test_slow_backend_is_a_transient_failure(helper_config, backends, monkeypatch):
    monkeypatch.setenv("RETRIEVAL_TIMEOUT", "0.05")

    async def scenario():
        async with open_stack(helper_config, backends) as stack:
            async def slow_embed(text):
                await asyncio.sleep(1)
                return [0.0] * 8

            stack.embed_client.do_embed_one = slow_embed
            await stack.retrieval.do_retrieve("anything", "owner-a")

    with pytest.raises(TransientClientError):
        asyncio.run(scenario())


def test_empty_result_survives_a_failing_diagnostic_count(helper_config, backends, caplog):
    async def scenario():
        async with open_stack(helper_config, backends) as stack:
            backends.qdrant.fail_next("/points/count", 503, 503, 503)
            results = await stack.retrieval.do_retrieve("anything", "owner-without-documents")
            return results, backends.qdrant.calls_to("POST", "/points/count")

    with caplog.at_level(logging.DEBUG, logger="tests"):
        results, count_calls = asyncio.run(scenario())

    assert results == []
    assert len(count_calls) == 3
    assert any("unknown indexed point" in record.getMessage() for record in caplog.records)


def test_empty_result_skips_the_count_unless_debugging(helper_config, backends, caplog):
    async def scenario():
        async with open_stack(helper_config, backends) as stack:
            results = await stack.retrieval.do_retrieve("anything", "owner-without-documents")
            return results, backends.qdrant.calls_to("POST", "/points/count")

    with caplog.at_level(logging.INFO, logger="tests"):
        results, count_calls = asyncio.run(scenario())

    assert results == []
    assert count_calls == []
