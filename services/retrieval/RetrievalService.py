"""Retrieval service: embed a query and return the owner's most similar chunks."""

import asyncio
import logging

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.errors import TransientClientError
from shared.helper.HelperConfig import HelperConfig
from shared.models.retrieval import RetrievedChunk

DEFAULT_LIMIT = 5
DEFAULT_TIMEOUT = 20.0


class RetrievalService:
    """Handles semantic search queries: embed -> search -> map results."""

    def __init__(
        self,
        helper_config: HelperConfig,
        embed_client: EmbedClientInterface,
        rag_client: RAGClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._embed_client = embed_client
        self._rag_client = rag_client
        self.default_limit = int(helper_config.get_number_val("RETRIEVAL_DEFAULT_LIMIT", default=DEFAULT_LIMIT))
        self.timeout = float(helper_config.get_number_val("RETRIEVAL_TIMEOUT", default=DEFAULT_TIMEOUT))

    ##########################################
    ############### CORE #####################
    ##########################################

    async def do_retrieve(self, query: str, owner_id: str, limit: int | None = None) -> list[RetrievedChunk]:
        """Return the chunks of owner_id's documents most similar to query.

        Args:
            query (str): Free text query.
            owner_id (str): The requesting user. Only their chunks are ever returned.
            limit (int | None): Maximum number of results, defaults to RETRIEVAL_DEFAULT_LIMIT.

        Returns:
            list[RetrievedChunk]: Results ordered by descending similarity.

        Raises:
            ValueError: If query or owner_id is empty, or limit is not positive.
            TransientClientError: If embedding and search together exceed RETRIEVAL_TIMEOUT.
        """
        if not query or not query.strip():
            raise ValueError("query must not be empty.")
        if not owner_id or not owner_id.strip():
            raise ValueError("owner_id is required for retrieval.")
        limit = self.default_limit if limit is None else limit
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}.")

        self.logging.info("Retrieving up to %d chunk(s) for owner %s.", limit, owner_id)
        try:
            results = await asyncio.wait_for(self._retrieve(query, owner_id, limit), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            self.logging.error("Retrieval for owner %s timed out after %.1fs.", owner_id, self.timeout)
            raise TransientClientError(f"Retrieval timed out after {self.timeout}s.") from e

        self.logging.info("Returning %d result(s) for owner %s.", len(results), owner_id)
        return results

    async def _retrieve(self, query: str, owner_id: str, limit: int) -> list[RetrievedChunk]:
        query_vector = await self._embed_client.do_embed_one(query)
        hits = await self._rag_client.do_search(query_vector, owner_id=owner_id, limit=limit)

        if not hits and self.logging.isEnabledFor(logging.DEBUG):
            self.logging.debug("No hits for owner %s (%s indexed point(s)).", owner_id, await self._count_owner_points(owner_id))

        results: list[RetrievedChunk] = []
        for hit in hits:
            payload = hit.payload or {}
            results.append(
                RetrievedChunk(
                    text=str(payload.get("chunk_text", "")),
                    source_document_id=str(payload.get("document_id", "")),
                    title=payload.get("title"),
                    chunk_index=int(payload.get("chunk_index", 0)),
                    score=hit.score,
                )
            )
        return results

    async def _count_owner_points(self, owner_id: str) -> str:
        """Point count of owner_id for diagnostics, "unknown" if the count fails."""
        owner_filter = self._rag_client.build_filter([self._rag_client.build_match_condition("owner_id", owner_id)])
        try:
            return str(await self._rag_client.do_count(owner_filter))
        except Exception as e:
            self.logging.debug("Could not count points of owner %s: %r", owner_id, e)
            return "unknown"
