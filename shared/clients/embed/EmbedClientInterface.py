from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.errors import ClientError, ConfigurationError

from shared.helper.HelperConfig import HelperConfig


class EmbedClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # model and embedding config
        self.embed_distance = helper_config.get_string_val(f"{self.get_client_type().upper()}_DISTANCE", default="Cosine")
        self.embed_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_MODEL")
        self.embed_vector_size = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_VECTOR_SIZE", default=1536))
        self.embed_max_batch_size = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_MAX_BATCH_SIZE", default=256))
        if self.embed_max_batch_size < 1:
            raise ValueError(f"EMBED_MAX_BATCH_SIZE must be at least 1, got {self.embed_max_batch_size}.")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        return "embed"

    def get_vector_size(self) -> int:
        """Dimensionality every vector of this client must have."""
        return self.embed_vector_size

    def get_distance(self) -> str:
        return self.embed_distance

    ################ ENDPOINTS ##################
    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """
        Returns the endpoint path for embedding requests.

        Returns:
            str: The endpoint path for embedding requests (e.g. "/api/embed")
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            texts (list[str]): The texts to embed.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": [...]}).
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a raw embedding API response.

        Response format differs by backend:
        - Ollama /api/embed: {"embeddings": [[...], [...]]}, already ordered
        - OpenAI-compatible: {"data": [{"embedding": [...], "index": 0}]}, needs sorting

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the input texts.

        Raises:
            ClientError: If the response format is invalid or embeddings are empty.
        """
        pass

    def _validate_embeddings(self, texts: list[str], vectors: list[list[float]]) -> None:
        """Enforce positional correspondence and the fixed dimensionality.

        Raises:
            ClientError: If the backend returned a different number of vectors.
            ConfigurationError: If a vector has the wrong number of components.
        """
        if len(vectors) != len(texts):
            raise ClientError(
                f"Embedding backend returned {len(vectors)} vectors for {len(texts)} inputs."
            )
        for position, vector in enumerate(vectors):
            if len(vector) != self.embed_vector_size:
                self.logging.critical(
                    "Embedding model '%s' produced %d dimensions at position %d, expected %d. "
                    "Check EMBED_MODEL and EMBED_VECTOR_SIZE.",
                    self.embed_model, len(vector), position, self.embed_vector_size,
                )
                raise ConfigurationError(
                    f"Embedding dimension mismatch: got {len(vector)}, expected {self.embed_vector_size}."
                )

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def _do_embed_request(self, texts: list[str]) -> list[list[float]]:
        """One embedding HTTP request for at most embed_max_batch_size texts."""
        response = await self.do_request(
            method="POST",
            endpoint=self.get_endpoint_embedding(),
            json=self.get_embed_payload(texts),
            raise_on_error=True,
        )
        vectors = self.extract_embeddings_from_response(response.json())
        self._validate_embeddings(texts, vectors)
        return vectors

    async def do_embed(self, texts: list[str] | str) -> list[list[float]]:
        """Embed texts and return one vector per input, in input order.

        Large inputs are sent as consecutive sub-requests of at most
        embed_max_batch_size texts. The call either returns a vector for every
        input or raises; it never returns a partial or reordered result.

        Args:
            texts (list[str] | str): One or more texts to embed.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the inputs.

        Raises:
            TransientClientError: If the backend stayed unreachable after all retries.
            ClientRequestError: If the backend rejected the request.
            ClientError: If the response is malformed.
            ConfigurationError: If the vectors do not have the configured dimensionality.
        """
        texts = [texts] if isinstance(texts, str) else list(texts)
        if not texts:
            return []

        vectors: list[list[float]] = []
        total_batches = (len(texts) + self.embed_max_batch_size - 1) // self.embed_max_batch_size
        for batch_number, batch_start in enumerate(range(0, len(texts), self.embed_max_batch_size), start=1):
            batch = texts[batch_start: batch_start + self.embed_max_batch_size]
            if total_batches > 1:
                self.logging.debug("Embedding batch %d of %d (%d texts)", batch_number, total_batches, len(batch))
            vectors.extend(await self._do_embed_request(batch))
        return vectors

    async def do_embed_one(self, text: str) -> list[float]:
        """Embed a single text.

        Args:
            text (str): The text to embed.

        Returns:
            list[float]: The embedding vector.
        """
        vectors = await self.do_embed([text])
        return vectors[0]
