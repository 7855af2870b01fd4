"""URL-addressed blob storage for raw HTML, SERP payloads and sitemap listings.

Blobs are written under a local base directory and addressed by ``file://``
URLs so rows can hold a single retrievable reference.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional
from urllib.parse import unquote, urlparse

from webpresence.utils.helpers import url_hash, utcnow

logger = logging.getLogger(__name__)

BLOB_PREFIX = "webpresence"


class BlobStore(ABC):
    """Abstract blob backend."""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store *data* under *key*.  Returns the blob URL."""

    @abstractmethod
    async def get(self, url: str) -> bytes:
        """Read a blob back by URL.  Raises ``FileNotFoundError`` if absent."""

    # Typed helpers shared by every backend.

    async def store_html(self, website_id: int, page_url: str, html: str) -> str:
        key = f"{BLOB_PREFIX}/html/{website_id}/{url_hash(page_url)}/{_timestamp()}.html"
        return await self.put(key, html.encode("utf-8"), "text/html")

    async def store_serp_data(self, owner_id: int, query: str, results: list[dict[str, Any]]) -> str:
        payload = {"results": results, "query": query, "timestamp": utcnow().isoformat()}
        key = f"{BLOB_PREFIX}/serp/{owner_id}/{url_hash(query)}/{_timestamp()}.json"
        return await self.put(key, _dump(payload), "application/json")

    async def store_sitemap(self, website_id: int, urls: list[dict[str, Any]]) -> str:
        key = f"{BLOB_PREFIX}/sitemap/{website_id}/{_timestamp()}.json"
        return await self.put(key, _dump({"urls": urls}), "application/json")

    async def load_json(self, url: str) -> Any:
        return json.loads((await self.get(url)).decode("utf-8"))


def _timestamp() -> str:
    return utcnow().strftime("%Y%m%dT%H%M%S%fZ")


def _dump(payload: Any) -> bytes:
    return json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8")


class FileBlobStore(BlobStore):
    """Filesystem backend rooted at ``base_path``."""

    def __init__(self, base_path: Optional[str] = None):
        if base_path is None:
            base_path = os.getenv("BLOB_STORAGE_PATH", "data/blobs")
        self.base_path = Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        logger.info("FileBlobStore initialized at %s", self.base_path)

    def _path_for_key(self, key: str) -> Path:
        safe_key = key.replace("..", "").lstrip("/")
        return self.base_path / safe_key

    def _path_for_url(self, url: str) -> Path:
        parsed = urlparse(url)
        if parsed.scheme != "file":
            raise ValueError(f"Unsupported blob URL scheme: {url}")
        path = Path(unquote(parsed.path)).resolve()
        if self.base_path not in path.parents:
            raise ValueError(f"Blob URL outside store root: {url}")
        return path

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path_for_key(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.debug("Stored blob %s (%s, %d bytes)", key, content_type, len(data))
        return path.as_uri()

    async def get(self, url: str) -> bytes:
        return self._path_for_url(url).read_bytes()
