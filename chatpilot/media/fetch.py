"""Bounded media downloads."""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from ..errors import MediaFetchError, MediaTooLargeError
from .mime import normalize_mime

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 60.0


@dataclass
class FetchedMedia:
    data: bytes
    mime_type: str
    url: str

    @property
    def size(self) -> int:
        return len(self.data)


async def fetch_media(
    url: str,
    max_bytes: int,
    http_client: Optional[httpx.AsyncClient] = None,
    timeout: float = REQUEST_TIMEOUT,
) -> FetchedMedia:
    """
    Download ``url`` into memory, refusing anything above ``max_bytes``.

    The declared Content-Length is checked first; the body is then streamed
    and the download aborted as soon as the ceiling is crossed, so oversize
    assets are rejected rather than truncated.

    Raises:
        MediaTooLargeError: asset exceeds ``max_bytes``
        MediaFetchError: HTTP error status or transport failure
    """
    client = http_client or httpx.AsyncClient(follow_redirects=True)
    try:
        async with client.stream("GET", url, timeout=timeout) as response:
            if response.status_code != 200:
                raise MediaFetchError(f"Download failed: HTTP {response.status_code}")

            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > max_bytes:
                raise MediaTooLargeError(int(declared), max_bytes)

            buffer = bytearray()
            async for chunk in response.aiter_bytes():
                buffer.extend(chunk)
                if len(buffer) > max_bytes:
                    raise MediaTooLargeError(len(buffer), max_bytes)

            mime_type = normalize_mime(response.headers.get("content-type"))
    except httpx.HTTPError as e:
        raise MediaFetchError(f"Download failed: {e}") from e
    finally:
        if http_client is None:
            await client.aclose()

    logger.info(f"Downloaded {len(buffer) / 1024 / 1024:.2f}MB from {url[:60]}")
    return FetchedMedia(data=bytes(buffer), mime_type=mime_type, url=url)
