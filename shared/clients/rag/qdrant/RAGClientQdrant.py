import httpx

from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.Scroll import ScrollResult
from shared.clients.rag.models.SearchHit import SearchHit
from shared.clients.rag.models.VectorPoint import VectorPoint
from shared.errors import ClientError, ConfigurationError
from shared.models.config import EnvConfig

QDRANT_DEFAULT_PORT = 6333


class RAGClientQdrant(RAGClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.normalize_base_url(
            raw_url=self.get_config_val("BASE_URL", default="http://localhost:6333", val_type="string"),
            port=int(self.get_config_val("PORT", default=0, val_type="number")),
            behind_proxy=self.get_config_val("BEHIND_PROXY", default=False, val_type="bool"),
        )
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._collection_name = self.get_config_val("COLLECTION", default="knowledge_base", val_type="string")

    @staticmethod
    def normalize_base_url(raw_url: str, port: int = 0, behind_proxy: bool = False) -> str:
        """Reconcile the configured URL and port into one base URL.

        - a missing scheme defaults to http://
        - an explicit port (> 0) replaces whatever port the URL carries
        - behind a reverse proxy the Qdrant default port 6333 is dropped, so the
          proxy's standard port (80/443) is used
        - trailing slashes are removed

        Args:
            raw_url (str): URL as configured, e.g. "qdrant:6333" or "https://vec.example.com/".
            port (int): Explicit port override, 0 for none.
            behind_proxy (bool): Whether Qdrant is reached through a reverse proxy.

        Returns:
            str: The normalized base URL.

        Raises:
            ConfigurationError: If the URL cannot be parsed.
        """
        raw_url = raw_url.strip()
        if "://" not in raw_url:
            raw_url = f"http://{raw_url}"
        try:
            url = httpx.URL(raw_url)
        except httpx.InvalidURL as e:
            raise ConfigurationError(f"Invalid Qdrant URL {raw_url!r}: {e}") from e
        if not url.host:
            raise ConfigurationError(f"Invalid Qdrant URL {raw_url!r}: missing host.")

        if port > 0:
            url = url.copy_with(port=port)
        elif behind_proxy and url.port == QDRANT_DEFAULT_PORT:
            url = url.copy_with(port=None)
        return str(url).rstrip("/")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Qdrant"

    def get_collection_name(self) -> str:
        return self._collection_name

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="http://localhost:6333"),
            EnvConfig(env_key="PORT", val_type="number", default=0),
            EnvConfig(env_key="BEHIND_PROXY", val_type="bool", default=False),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="COLLECTION", val_type="string", default="knowledge_base"),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"api-key": f"{self._api_key}"}
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/healthz"

    def _get_endpoint_check_collection_existence(self, collection: str) -> str:
        return f"/collections/{collection}/exists"

    def _get_endpoint_collection(self, collection: str) -> str:
        return f"/collections/{collection}"

    def _get_endpoint_payload_index(self, collection: str) -> str:
        return f"/collections/{collection}/index"

    def _get_endpoint_points(self, collection: str) -> str:
        return f"/collections/{collection}/points"

    def _get_endpoint_search(self, collection: str) -> str:
        return f"/collections/{collection}/points/search"

    def _get_endpoint_delete_points(self, collection: str) -> str:
        return f"/collections/{collection}/points/delete"

    def _get_endpoint_count(self, collection: str) -> str:
        return f"/collections/{collection}/points/count"

    def _get_endpoint_scroll(self, collection: str) -> str:
        return f"/collections/{collection}/points/scroll"

    def _get_write_params(self) -> dict:
        return {"wait": "true"}

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def build_match_condition(self, key: str, value: str) -> dict:
        return {"key": key, "match": {"value": value}}

    def build_filter(self, conditions: list[dict]) -> dict:
        return {"must": conditions}

    def get_create_collection_payload(self, vector_size: int, distance: str) -> dict:
        return {"vectors": {"size": vector_size, "distance": distance}}

    def get_payload_index_payload(self, field_name: str) -> dict:
        # keyword schema for exact matching of UUIDs and user ids
        return {"field_name": field_name, "field_schema": "keyword"}

    def get_upsert_payload(self, points: list[VectorPoint]) -> dict:
        return {"points": [point.model_dump() for point in points]}

    def get_search_payload(self, query_vector: list[float], filter: dict, limit: int, score_threshold: float | None = None) -> dict:
        payload = {
            "vector": query_vector,
            "filter": filter,
            "limit": limit,
            "with_payload": True,
            "with_vector": False,
        }
        if score_threshold is not None:
            payload["score_threshold"] = score_threshold
        return payload

    def get_delete_payload(self, filter: dict) -> dict:
        return {"filter": filter}

    def get_count_payload(self, filter: dict | None) -> dict:
        payload: dict = {"exact": True}
        if filter is not None:
            payload["filter"] = filter
        return payload

    def get_scroll_payload(self, filter: dict | None, with_payload: bool | list, with_vector: bool, limit: int | None = None, offset: str | int | None = None) -> dict:
        payload: dict = {
            "limit": limit,
            "with_payload": with_payload,
            "with_vector": with_vector,
        }
        if filter is not None:
            payload["filter"] = filter
        if offset is not None:
            payload["offset"] = offset
        return payload

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_existence(self, raw_response: dict) -> bool:
        return bool(raw_response.get("result", {}).get("exists"))

    def extract_vector_params(self, raw_response: dict) -> tuple[int, str]:
        vectors = (
            raw_response.get("result", {})
            .get("config", {})
            .get("params", {})
            .get("vectors", {})
        )
        if "size" not in vectors or "distance" not in vectors:
            # named vectors or an unexpected layout
            raise ConfigurationError(
                f"Collection {self._collection_name!r} does not use a single unnamed vector: {list(vectors.keys())}"
            )
        return int(vectors["size"]), str(vectors["distance"])

    def extract_indexed_fields(self, raw_response: dict) -> set[str]:
        schema = raw_response.get("result", {}).get("payload_schema") or {}
        return set(schema.keys())

    def extract_search_hits(self, raw_response: dict) -> list[SearchHit]:
        result = raw_response.get("result")
        if not isinstance(result, list):
            raise ClientError(f"Unexpected Qdrant search response: {str(raw_response)[:200]}")
        return [
            SearchHit(
                id=str(point.get("id")),
                score=float(point.get("score", 0.0)),
                payload=point.get("payload") or {},
            )
            for point in result
        ]

    def extract_count(self, raw_response: dict) -> int:
        return int(raw_response.get("result", {}).get("count", 0))

    def extract_scroll_content(self, raw_response: dict) -> ScrollResult:
        result = raw_response.get("result", {})
        return ScrollResult(
            result=result.get("points", []),
            status=raw_response.get("status", "ok"),
            time=raw_response.get("time", 0),
            next_page_offset=result.get("next_page_offset"),
        )
