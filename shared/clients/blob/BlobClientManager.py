from shared.helper.HelperConfig import HelperConfig
from shared.clients.blob.BlobClientInterface import BlobClientInterface
from shared.errors import ConfigurationError


class BlobClientManager:
    """
    Manager class to handle the optional Blob client.

    Without BLOB_ENGINE no durable copy is kept, which is a valid deployment.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _initialize_client(self) -> BlobClientInterface | None:
        engine = self.helper_config.get_string_val("BLOB_ENGINE", default="")
        if not engine:
            self.logging.info("No BLOB_ENGINE configured, uploads are not stored durably.")
            return None

        engine = engine.strip().lower().capitalize()
        className = f"BlobClient{engine}"
        try:
            module = __import__(
                f"shared.clients.blob.{engine.lower()}.{className}",
                fromlist=[className],
            )
            client_class = getattr(module, className)
        except (ImportError, AttributeError) as e:
            raise ConfigurationError(f"Unsupported Blob engine specified: '{engine}'. Error: {e}")
        return client_class(helper_config=self.helper_config)

    def get_client(self) -> BlobClientInterface | None:
        return self.client
