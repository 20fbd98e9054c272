from abc import ABC, abstractmethod

from shared.helper.HelperConfig import HelperConfig


class BlobClientInterface(ABC):
    """Durable storage for the raw bytes of uploaded files.

    Storing is best-effort for the ingestion pipeline: callers log failures and
    continue without a storage location.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config

    def get_engine_name(self) -> str:
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        pass

    def get_config_val(self, raw_key: str, default: str | None = None) -> str:
        """Read BLOB_<ENGINE>_<KEY> from the environment."""
        return self._helper_config.get_string_val(f"BLOB_{self.get_engine_name().upper()}_{raw_key.upper()}", default=default)

    @abstractmethod
    async def do_store(self, name: str, data: bytes, content_type: str) -> str:
        """Persist bytes under a name.

        Args:
            name (str): Object name, unique per document.
            data (bytes): The raw file content.
            content_type (str): Declared content type.

        Returns:
            str: The storage location (URL) of the stored object.
        """
        pass

    @abstractmethod
    async def do_delete(self, url: str) -> None:
        """Remove a stored object. Removing a missing object is not an error."""
        pass
