from abc import ABC, abstractmethod
import logging

import httpx
from httpx._types import QueryParamTypes, RequestContent, RequestData, RequestFiles
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential
from typing import Any
from shared.errors import ClientRequestError, TransientClientError
from shared.models.config import EnvConfig

from shared.helper.HelperConfig import HelperConfig

# statuses worth another attempt, anything else in the 4xx range is final
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class ClientInterface(ABC):
    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        prefix = self.get_client_type().upper()
        self.timeout = helper_config.get_number_val(f"{prefix}_TIMEOUT", default=self._get_default_timeout())
        self.retry_attempts = int(helper_config.get_number_val(f"{prefix}_RETRY_ATTEMPTS", default=3))
        self.retry_backoff = helper_config.get_number_val(f"{prefix}_RETRY_BACKOFF", default=0.5)
        self.retry_max_wait = helper_config.get_number_val(f"{prefix}_RETRY_MAX_WAIT", default=10)
        if self.retry_attempts < 1:
            raise ValueError(f"{prefix}_RETRY_ATTEMPTS must be at least 1, got {self.retry_attempts}.")

        # client and config
        self._client: httpx.AsyncClient | None = None
        self.validate_full_configuration()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_full_configuration(self) -> None:
        """
        Validates that all required configuration values for the client are set and valid.

        Raises:
            ValueError: If any required configuration value is missing or invalid.
        """
        for config in self._get_required_config():
            _ = self.get_config_val(raw_key=config.env_key, default=config.default, val_type=config.val_type)

    def is_booted(self) -> bool:
        return self._client is not None

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def get_client_type(self) -> str:
        """
        Returns the type of the client in lowercase. E.g. "rag"
        """
        return self._get_client_type().lower()

    @abstractmethod
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        pass

    def get_engine_name(self) -> str:
        """
        Returns the name of the engine used by the client. E.g. "qdrant"
        """
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        """
        Returns the name of the engine used by the client. E.g. "qdrant"
        """
        pass

    def _get_default_timeout(self) -> float:
        """Request timeout in seconds used when <TYPE>_TIMEOUT is not set."""
        return 30.0

    ################ CONFIG ##################
    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        """
        Returns all required configurations for the client.

        Returns:
            list[EnvConfig]: A list containing the details of each required configuration key.
        """
        pass

    def _get_config_key_name(self, raw_key: str) -> str:
        """
        Returns:
            str: The full configuration key name for the client. E.g. "RAG_QDRANT_API_KEY"
        """
        key_prefix = f"{self.get_client_type().upper()}_{self.get_engine_name().upper()}"
        return f"{key_prefix}_{raw_key.upper()}"

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """
        Retrieves the value of a configuration key for the client.

        Args:
            raw_key (str): The raw configuration key name
            default (Any): The default value to return if the configuration key is not set
            val_type (str): The type of the configuration value ("string", "number", "bool", "list")
        """
        key = self._get_config_key_name(raw_key)
        if val_type == "string":
            return self._helper_config.get_string_val(key, default=default)
        elif val_type == "number":
            return self._helper_config.get_number_val(key, default=default)
        elif val_type == "bool":
            return self._helper_config.get_bool_val(key, default=default)
        elif val_type == "list":
            return self._helper_config.get_list_val(key, default=default)
        else:
            raise ValueError(f"Unsupported config value type '{val_type}' for env key '{raw_key}' in {self.get_client_type().upper()} client '{self.get_engine_name()}'.")

    ################ AUTH ##################
    @abstractmethod
    def _get_auth_header(self) -> dict:
        """
        Returns the authentication header for the client backend server, if an API key is set.

        Returns:
            dict: A dictionary containing the auth data
        """
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_base_url(self) -> str:
        """
        Returns the base URL of the client backend server.

        Returns:
            str: The base URL of the client backend server (e.g. "http://localhost:6333")
        """
        pass

    @abstractmethod
    def _get_endpoint_healthcheck(self) -> str:
        """
        Returns the endpoint path for healthcheck requests.

        Returns:
            str: The endpoint path for healthcheck requests (e.g. "/healthz")
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_healthcheck(self) -> httpx.Response:
        """Check if the client backend is healthy by sending a test request.

        Returns:
            httpx.Response: The response from the healthcheck request.
        """
        return await self.do_request(method="GET", endpoint=self._get_endpoint_healthcheck())

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Initialise the HTTP client.

        Args:
            transport (httpx.AsyncBaseTransport | None): Optional transport, e.g. an
                httpx.MockTransport in tests. None uses the default network transport.
        """
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)
        self.logging.info(
            "%s client '%s' booted for %s",
            self.get_client_type().upper(), self.get_engine_name(), self._get_base_url(),
        )

    async def close(self) -> None:
        """Close the HTTP client and any other resources."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def do_request(
        self,
        method: str = "GET",
        content: RequestContent | None = None,
        data: RequestData | None = None,
        files: RequestFiles | None = None,
        json: dict | None = None,
        params: QueryParamTypes | None = None,
        endpoint: str = "",
        additional_headers: dict | None = None,
        raise_on_error: bool = False,
    ) -> httpx.Response:
        """Send an HTTP request to the client backend, retrying transient failures.

        Timeouts, connection errors and 408/429/5xx answers are transient: they are
        retried with exponential backoff up to <TYPE>_RETRY_ATTEMPTS times and raised
        as TransientClientError once the attempts are used up.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE, …).
            content: Raw bytes / stream body.
            data: Form-encoded body (dict or list of tuples).
            files: Multipart file upload.
            json: JSON-serialisable body (sets Content-Type automatically).
            params: URL query parameters.
            endpoint: Path to append to the base URL (leading slash optional).
            additional_headers: Extra headers that override the defaults.
            raise_on_error: Raise ClientRequestError on any other non-2xx status.

        Returns:
            The raw httpx.Response.

        Raises:
            Exception: If the client is not initialised.
            TransientClientError: If the backend stayed unreachable or overloaded.
            ClientRequestError: If raise_on_error is set and the backend rejected the request.
        """
        if self._client is None:
            raise Exception("HTTP client not initialised. Call boot() before making requests.")

        endpoint = "/" + endpoint.strip().lstrip("/") if endpoint.strip() else ""

        # httpx sets Content-Type for json/data/files; raw content needs it in additional_headers
        headers: dict = {}
        headers.update(self._get_auth_header())
        if additional_headers:
            headers.update(additional_headers)

        kwargs: dict = {
            "url": f"{self._get_base_url().rstrip('/')}{endpoint}",
            "headers": headers,
            "timeout": self.timeout,
            "params": params,
        }

        # add exactly one body argument
        if content is not None:
            kwargs["content"] = content
        elif data is not None:
            kwargs["data"] = data
        elif files is not None:
            kwargs["files"] = files
        elif json is not None:
            kwargs["json"] = json

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_backoff, max=self.retry_max_wait),
            retry=retry_if_exception_type(TransientClientError),
            before_sleep=before_sleep_log(self.logging, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self._send(method, kwargs)

        if raise_on_error and response.status_code >= 300:
            self.logging.error(
                "Request to %s failed with status %d: %s",
                kwargs["url"],
                response.status_code,
                response.text[:500],
            )
            raise ClientRequestError(
                f"Request to {kwargs['url']} failed with status {response.status_code}",
                status_code=response.status_code,
            )

        return response

    async def _send(self, method: str, kwargs: dict) -> httpx.Response:
        """Single request attempt, translating transport failures into TransientClientError."""
        try:
            response = await self._client.request(method, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientClientError(f"Request to {kwargs['url']} timed out: {e!r}") from e
        except httpx.TransportError as e:
            raise TransientClientError(f"Request to {kwargs['url']} failed: {e!r}") from e

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise TransientClientError(
                f"Request to {kwargs['url']} returned retryable status {response.status_code}"
            )
        return response
