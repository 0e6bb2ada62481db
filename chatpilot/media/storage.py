"""Short-lived signed URLs for agent assets kept in protected object storage."""

import logging
from typing import Optional
from urllib.parse import quote, unquote

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "ai-agent-media"
DEFAULT_SIGNED_URL_TTL = 3600
REQUEST_TIMEOUT = 15.0


class StorageSigner:
    """
    Signs object-storage URLs through the storage REST API.

    URLs that do not point into the protected bucket are returned as-is, and
    so are URLs whose signing fails: an unsigned link is still better than
    dropping the asset from the reply.
    """

    def __init__(
        self,
        base_url: Optional[str],
        service_key: Optional[str],
        bucket: str = DEFAULT_BUCKET,
        ttl_seconds: int = DEFAULT_SIGNED_URL_TTL,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self.ttl_seconds = ttl_seconds
        self._http = http_client

    @property
    def enabled(self) -> bool:
        return bool(self.base_url and self.service_key)

    def storage_path(self, url: Optional[str]) -> Optional[str]:
        """Object path inside the protected bucket, or None for other URLs."""
        marker = f"/{self.bucket}/"
        if not url or marker not in url:
            return None
        path = url.split(marker, 1)[1].split("?", 1)[0]
        return unquote(path) or None

    async def sign(self, url: Optional[str]) -> Optional[str]:
        path = self.storage_path(url)
        if path is None or not self.enabled:
            return url

        client = self._http or httpx.AsyncClient()
        try:
            response = await client.post(
                f"{self.base_url}/storage/v1/object/sign/{self.bucket}/{quote(path)}",
                headers={
                    "Authorization": f"Bearer {self.service_key}",
                    "apikey": self.service_key,
                    "Content-Type": "application/json",
                },
                json={"expiresIn": self.ttl_seconds},
                timeout=REQUEST_TIMEOUT,
            )
            if response.status_code != 200:
                logger.warning(f"Signed URL error for {path}: {response.status_code} - {response.text}")
                return url
            signed = response.json().get("signedURL") or response.json().get("signedUrl")
        except httpx.HTTPError as e:
            logger.warning(f"Signed URL request failed for {path}: {e}")
            return url
        finally:
            if self._http is None:
                await client.aclose()

        if not signed:
            return url
        if signed.startswith("http"):
            return signed
        return f"{self.base_url}/storage/v1{signed}"
