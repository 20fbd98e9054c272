from abc import abstractmethod
import json
import math

import httpx
from shared.clients.rag.models.Scroll import ScrollResult
from shared.clients.rag.models.SearchHit import SearchHit
from shared.clients.rag.models.VectorPoint import VectorPoint
from shared.clients.ClientInterface import ClientInterface
from shared.errors import ClientRequestError, ConfigurationError

from shared.helper.HelperConfig import HelperConfig

# payload fields used by filtered delete (document_id) and filtered search (owner_id)
PAYLOAD_INDEX_FIELDS = ("document_id", "owner_id")


class RAGClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.upsert_batch_size = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_UPSERT_BATCH_SIZE", default=50))

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        return "rag"

    def _get_default_timeout(self) -> float:
        return 60.0

    @abstractmethod
    def get_collection_name(self) -> str:
        """
        Returns the configured default collection name.
        """
        pass

    def _resolve_collection(self, collection: str | None) -> str:
        return collection or self.get_collection_name()

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_check_collection_existence(self, collection: str) -> str:
        """
        Returns the endpoint path for collection existence check requests (e.g. "/collections/my_col/exists").
        """
        pass

    @abstractmethod
    def _get_endpoint_collection(self, collection: str) -> str:
        """
        Returns the endpoint path used to create and describe a collection (e.g. "/collections/my_col").
        """
        pass

    @abstractmethod
    def _get_endpoint_payload_index(self, collection: str) -> str:
        """
        Returns the endpoint path for creating a payload field index (e.g. "/collections/my_col/index").
        """
        pass

    @abstractmethod
    def _get_endpoint_points(self, collection: str) -> str:
        """
        Returns the endpoint path for points upsert requests (e.g. "/collections/my_col/points").
        """
        pass

    @abstractmethod
    def _get_endpoint_search(self, collection: str) -> str:
        """
        Returns the endpoint path for similarity search requests (e.g. "/collections/my_col/points/search").
        """
        pass

    @abstractmethod
    def _get_endpoint_delete_points(self, collection: str) -> str:
        """
        Returns the endpoint path for deleting points by filter (e.g. "/collections/my_col/points/delete").
        """
        pass

    @abstractmethod
    def _get_endpoint_count(self, collection: str) -> str:
        """
        Returns the endpoint path for counting points matching a filter (e.g. "/collections/my_col/points/count").
        """
        pass

    @abstractmethod
    def _get_endpoint_scroll(self, collection: str) -> str:
        """
        Returns the endpoint path for scroll requests (e.g. "/collections/my_col/points/scroll").
        """
        pass

    @abstractmethod
    def _get_write_params(self) -> dict:
        """
        Returns the query parameters that make a write block until it is durable (e.g. {"wait": "true"}).
        """
        pass

    ########### PAYLOAD BUILDER ##############
    @abstractmethod
    def build_match_condition(self, key: str, value: str) -> dict:
        """
        Builds an equality condition on a payload field.

        Args:
            key (str): Payload field name.
            value (str): Value the field must equal.

        Returns:
            dict: The backend-specific condition.
        """
        pass

    @abstractmethod
    def build_filter(self, conditions: list[dict]) -> dict:
        """
        Combines conditions into a filter that requires all of them.

        Args:
            conditions (list[dict]): Conditions built by build_match_condition().

        Returns:
            dict: The backend-specific filter.
        """
        pass

    @abstractmethod
    def get_create_collection_payload(self, vector_size: int, distance: str) -> dict:
        """
        Returns the request body to create a collection.
        """
        pass

    @abstractmethod
    def get_payload_index_payload(self, field_name: str) -> dict:
        """
        Returns the request body to create a keyword index on a payload field.
        """
        pass

    @abstractmethod
    def get_upsert_payload(self, points: list[VectorPoint]) -> dict:
        """
        Returns the request body to upsert a batch of points.
        """
        pass

    @abstractmethod
    def get_search_payload(self, query_vector: list[float], filter: dict, limit: int, score_threshold: float | None = None) -> dict:
        """
        Returns the request body for a filtered similarity search.

        Args:
            query_vector (list[float]): The query embedding.
            filter (dict): Filter built by build_filter(). Never empty for searches.
            limit (int): Maximum number of hits.
            score_threshold (float | None): Minimum score, None for the backend default.

        Returns:
            dict: The payload for the search request.
        """
        pass

    @abstractmethod
    def get_delete_payload(self, filter: dict) -> dict:
        """
        Returns the request body for a filter-based delete.
        """
        pass

    @abstractmethod
    def get_count_payload(self, filter: dict | None) -> dict:
        """
        Returns the request body for a point count. None counts the whole collection.
        """
        pass

    @abstractmethod
    def get_scroll_payload(self, filter: dict | None, with_payload: bool | list, with_vector: bool, limit: int | None = None, offset: str | int | None = None) -> dict:
        """
        Returns the request body for one scroll page.
        """
        pass

    ########### RESPONSE PARSER ##############
    @abstractmethod
    def extract_existence(self, raw_response: dict) -> bool:
        """
        Extracts whether a collection exists from the existence check response.
        """
        pass

    @abstractmethod
    def extract_vector_params(self, raw_response: dict) -> tuple[int, str]:
        """
        Extracts (vector_size, distance) from a collection description.

        Raises:
            ConfigurationError: If the collection uses a layout the client cannot work with.
        """
        pass

    @abstractmethod
    def extract_indexed_fields(self, raw_response: dict) -> set[str]:
        """
        Extracts the names of payload fields that already have an index.
        """
        pass

    @abstractmethod
    def extract_search_hits(self, raw_response: dict) -> list[SearchHit]:
        """
        Extracts the hits of a search response.
        """
        pass

    @abstractmethod
    def extract_count(self, raw_response: dict) -> int:
        pass

    @abstractmethod
    def extract_scroll_content(self, raw_response: dict) -> ScrollResult:
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_existence_check(self, collection: str | None = None) -> bool:
        """Check if a collection exists in the rag backend.

        Returns:
            bool: True if the collection exists, False otherwise.
        """
        collection = self._resolve_collection(collection)
        resp = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_check_collection_existence(collection),
            raise_on_error=True,
        )
        return self.extract_existence(resp.json())

    async def do_create_collection(self, vector_size: int, distance: str = "Cosine", collection: str | None = None) -> httpx.Response:
        """Create a collection in the rag backend.

        Args:
            vector_size (int): The size of the vectors in the collection.
            distance (str): The distance metric for the vectors.
            collection (str | None): Collection name, defaults to the configured one.

        Returns:
            httpx.Response: The response from the create collection request.
        """
        return await self.do_request(
            method="PUT",
            json=self.get_create_collection_payload(vector_size, distance),
            endpoint=self._get_endpoint_collection(self._resolve_collection(collection)),
            raise_on_error=True,
        )

    async def do_fetch_collection_info(self, collection: str | None = None) -> dict:
        """Fetch the raw description of a collection (vector params, payload schema)."""
        resp = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_collection(self._resolve_collection(collection)),
            raise_on_error=True,
        )
        return resp.json()

    async def do_create_payload_index(self, field_name: str, collection: str | None = None) -> None:
        """Create a keyword index on a payload field, waiting until it is built."""
        await self.do_request(
            method="PUT",
            json=self.get_payload_index_payload(field_name),
            params=self._get_write_params(),
            endpoint=self._get_endpoint_payload_index(self._resolve_collection(collection)),
            raise_on_error=True,
        )

    async def do_ensure_collection(self, vector_size: int, distance: str = "Cosine", collection: str | None = None) -> None:
        """Create the collection and its payload indexes if they are missing.

        Safe to call repeatedly: an existing collection is verified instead of
        recreated, and only missing payload indexes are created.

        Args:
            vector_size (int): Expected vector dimensionality.
            distance (str): Expected distance metric (e.g. "Cosine").
            collection (str | None): Collection name, defaults to the configured one.

        Raises:
            ConfigurationError: If the collection cannot be created, or exists with a
                different vector size or distance.
        """
        collection = self._resolve_collection(collection)

        if not await self.do_existence_check(collection):
            try:
                await self.do_create_collection(vector_size=vector_size, distance=distance, collection=collection)
                self.logging.info("Created collection %r (size=%d, distance=%s).", collection, vector_size, distance)
            except ClientRequestError as e:
                # another process may have created it in the meantime
                if not await self.do_existence_check(collection):
                    raise ConfigurationError(f"Collection {collection!r} does not exist and cannot be created: {e}") from e
                self.logging.info("Collection %r was created concurrently.", collection)
        else:
            self.logging.info("Collection %r already exists.", collection)

        info = await self.do_fetch_collection_info(collection)
        actual_size, actual_distance = self.extract_vector_params(info)
        if actual_size != vector_size or actual_distance.lower() != distance.lower():
            self.logging.critical(
                "Collection %r is configured with size=%d distance=%s, but size=%d distance=%s is required.",
                collection, actual_size, actual_distance, vector_size, distance,
            )
            raise ConfigurationError(
                f"Collection {collection!r} has size={actual_size} distance={actual_distance}, "
                f"expected size={vector_size} distance={distance}."
            )

        indexed = self.extract_indexed_fields(info)
        for field_name in PAYLOAD_INDEX_FIELDS:
            if field_name in indexed:
                self.logging.debug("Payload index for %r already present.", field_name)
                continue
            await self.do_create_payload_index(field_name, collection=collection)
            self.logging.info("Created payload index for %r on collection %r.", field_name, collection)

    async def do_upsert_points(self, points: list[VectorPoint], batch_size: int | None = None, collection: str | None = None) -> int:
        """Upsert points in sequential, bounded batches.

        Each batch blocks until the backend acknowledged it as durable before the
        next one is sent, so an aborted run leaves a prefix of batches written.

        Args:
            points (list[VectorPoint]): The points to upsert.
            batch_size (int | None): Points per request, defaults to RAG_UPSERT_BATCH_SIZE.
            collection (str | None): Collection name, defaults to the configured one.

        Returns:
            int: Number of batches sent.

        Raises:
            ValueError: If batch_size is not positive.
        """
        batch_size = batch_size or self.upsert_batch_size
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}.")
        collection = self._resolve_collection(collection)

        total_batches = math.ceil(len(points) / batch_size)
        for batch_number, batch_start in enumerate(range(0, len(points), batch_size), start=1):
            batch = points[batch_start: batch_start + batch_size]
            self.logging.debug("Upserting batch %d of %d (%d points) into %r", batch_number, total_batches, len(batch), collection)
            await self.do_request(
                method="PUT",
                content=json.dumps(self.get_upsert_payload(batch)),
                params=self._get_write_params(),
                endpoint=self._get_endpoint_points(collection),
                additional_headers={"Content-Type": "application/json"},
                raise_on_error=True,
            )
        return total_batches

    async def do_search(
        self,
        query_vector: list[float],
        owner_id: str,
        limit: int = 5,
        score_threshold: float | None = None,
        collection: str | None = None,
    ) -> list[SearchHit]:
        """Similarity search, always restricted to one owner's points.

        The owner filter is built here and cannot be removed or widened by callers.

        Args:
            query_vector (list[float]): The query embedding vector.
            owner_id (str): The requesting user's ID. Always enforced as a filter.
            limit (int): Maximum number of results to return.
            score_threshold (float | None): Optional minimum score.
            collection (str | None): Collection name, defaults to the configured one.

        Returns:
            list[SearchHit]: Hits ordered by descending score.

        Raises:
            ValueError: If owner_id is empty or limit is not positive.
        """
        if not owner_id or not str(owner_id).strip():
            raise ValueError("owner_id is required for every search (security invariant).")
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}.")

        owner_filter = self.build_filter([self.build_match_condition("owner_id", str(owner_id))])
        resp = await self.do_request(
            method="POST",
            content=json.dumps(self.get_search_payload(query_vector, owner_filter, limit, score_threshold)),
            endpoint=self._get_endpoint_search(self._resolve_collection(collection)),
            additional_headers={"Content-Type": "application/json"},
            raise_on_error=True,
        )
        hits = self.extract_search_hits(resp.json())
        return sorted(hits, key=lambda hit: hit.score, reverse=True)

    async def do_delete_points_by_filter(self, filter: dict, collection: str | None = None) -> None:
        """Deletes all points matching the given filter and waits for the delete to apply.

        Args:
            filter (dict): The filter that identifies which points to delete.
            collection (str | None): Collection name, defaults to the configured one.
        """
        await self.do_request(
            method="POST",
            content=json.dumps(self.get_delete_payload(filter)),
            params=self._get_write_params(),
            endpoint=self._get_endpoint_delete_points(self._resolve_collection(collection)),
            additional_headers={"Content-Type": "application/json"},
            raise_on_error=True,
        )

    async def do_delete_by_document_id(self, document_id: str, collection: str | None = None) -> None:
        """Remove every point of a document. Deleting an already clean document is a no-op.

        Args:
            document_id (str): The document whose points to remove.
            collection (str | None): Collection name, defaults to the configured one.

        Raises:
            ValueError: If document_id is empty (it would match nothing or everything).
        """
        if not document_id:
            raise ValueError("document_id is required for a document delete.")
        document_filter = self.build_filter([self.build_match_condition("document_id", str(document_id))])
        await self.do_delete_points_by_filter(document_filter, collection=collection)
        self.logging.debug("Deleted all points for document_id=%s.", document_id)

    async def do_count(self, filter: dict | None = None, collection: str | None = None) -> int:
        """Count the exact number of points matching a filter.

        Args:
            filter (dict | None): Filter built by build_filter(), None counts everything.
            collection (str | None): Collection name, defaults to the configured one.

        Returns:
            int: Total number of matching points.
        """
        resp = await self.do_request(
            method="POST",
            content=json.dumps(self.get_count_payload(filter)),
            endpoint=self._get_endpoint_count(self._resolve_collection(collection)),
            additional_headers={"Content-Type": "application/json"},
            raise_on_error=True,
        )
        return self.extract_count(resp.json())

    async def do_scroll(
        self,
        filter: dict | None = None,
        with_payload: bool | list = True,
        with_vector: bool = False,
        limit: int | None = 10,
        offset: str | int | None = None,
        collection: str | None = None,
    ) -> ScrollResult:
        """Scroll a single page of points, used for diagnostics.

        Args:
            filter (dict | None): Optional filter built by build_filter().
            with_payload (bool | list): Whether to include the payload, or which fields.
            with_vector (bool): Whether to include the vector.
            limit (int | None): Page size.
            offset (str | int | None): Cursor of the previous page's next_page_offset.
            collection (str | None): Collection name, defaults to the configured one.

        Returns:
            ScrollResult: The page of points.
        """
        resp = await self.do_request(
            method="POST",
            content=json.dumps(self.get_scroll_payload(filter, with_payload, with_vector, limit, offset)),
            endpoint=self._get_endpoint_scroll(self._resolve_collection(collection)),
            additional_headers={"Content-Type": "application/json"},
            raise_on_error=True,
        )
        return self.extract_scroll_content(resp.json())
