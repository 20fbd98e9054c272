from pathlib import Path
from urllib.parse import unquote, urlparse

import aiofiles
import aiofiles.os

from shared.clients.blob.BlobClientInterface import BlobClientInterface
from shared.helper.HelperConfig import HelperConfig


class BlobClientLocal(BlobClientInterface):
    """Stores uploads on the local filesystem (or a mounted volume).

    Returned URLs are file:// URLs, or <PUBLIC_BASE_URL>/<name> when a public
    base URL is configured for a static file server in front of the directory.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._root = Path(self.get_config_val("ROOT_PATH")).resolve()
        self._public_base_url = self.get_config_val("PUBLIC_BASE_URL", default="").rstrip("/")

    def _get_engine_name(self) -> str:
        return "Local"

    def _path_for(self, name: str) -> Path:
        path = (self._root / name).resolve()
        if self._root not in path.parents:
            raise ValueError(f"Blob name {name!r} escapes the storage root.")
        return path

    def _url_for(self, name: str, path: Path) -> str:
        if self._public_base_url:
            return f"{self._public_base_url}/{name}"
        return path.as_uri()

    def _name_from_url(self, url: str) -> str:
        if self._public_base_url and url.startswith(self._public_base_url + "/"):
            return url[len(self._public_base_url) + 1:]
        path = Path(unquote(urlparse(url).path))
        return str(path.relative_to(self._root))

    async def do_store(self, name: str, data: bytes, content_type: str) -> str:
        path = self._path_for(name)
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        async with aiofiles.open(path, "wb") as f:
            await f.write(data)
        self.logging.debug("Stored %d bytes (%s) at %s", len(data), content_type, path)
        return self._url_for(name, path)

    async def do_delete(self, url: str) -> None:
        path = self._path_for(self._name_from_url(url))
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            self.logging.debug("Blob %s was already gone", path)
            return
        self.logging.debug("Deleted blob %s", path)
