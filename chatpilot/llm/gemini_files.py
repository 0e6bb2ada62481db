"""
Gemini File API client - upload, analyze and delete remote media

Large media (audio, video, long documents) is uploaded once to the vendor
file store, analyzed by reference and then removed. Uploaded files are also
auto-expired by the vendor after 48 hours.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..errors import VendorFileError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_MODEL = "gemini-2.5-flash"
REQUEST_TIMEOUT = 120.0


def _plain_mime(mime_type: str) -> str:
    return (mime_type or "").split(";")[0].strip()


@dataclass
class VendorFile:
    """A file living in the vendor store."""
    uri: str
    name: str


class GeminiFileClient:
    """
    Thin httpx wrapper over the Gemini File API.

    Usage:
        client = GeminiFileClient(api_key="...")
        f = await client.upload(data, "audio/ogg", display_name="media-1")
        text = await client.analyze(f, "audio/ogg", "Transcreva este áudio...")
        await client.delete(f.name)
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = http_client

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout)
        return self._http

    async def upload(
        self,
        data: bytes,
        mime_type: str,
        display_name: Optional[str] = None,
    ) -> VendorFile:
        """Resumable upload (start, then upload+finalize in one PUT)."""
        mime = _plain_mime(mime_type) or "application/octet-stream"
        size = str(len(data))
        client = self._client()

        try:
            init = await client.post(
                f"{self.base_url}/upload/v1beta/files",
                params={"key": self.api_key},
                headers={
                    "Content-Type": "application/json",
                    "X-Goog-Upload-Protocol": "resumable",
                    "X-Goog-Upload-Command": "start",
                    "X-Goog-Upload-Header-Content-Length": size,
                    "X-Goog-Upload-Header-Content-Type": mime,
                },
                json={"file": {"display_name": display_name or "chatpilot-media"}},
            )
            if init.status_code != 200:
                raise VendorFileError(f"Upload init failed: {init.status_code} - {init.text}")

            upload_url = init.headers.get("x-goog-upload-url")
            if not upload_url:
                raise VendorFileError("Upload init returned no upload URL")

            uploaded = await client.put(
                upload_url,
                headers={
                    "Content-Length": size,
                    "X-Goog-Upload-Offset": "0",
                    "X-Goog-Upload-Command": "upload, finalize",
                },
                content=data,
            )
            if uploaded.status_code != 200:
                raise VendorFileError(f"Upload failed: {uploaded.status_code} - {uploaded.text}")

            file_info = uploaded.json().get("file") or {}
        except httpx.HTTPError as e:
            raise VendorFileError(f"Upload transport error: {e}") from e

        uri, name = file_info.get("uri"), file_info.get("name")
        if not uri or not name:
            raise VendorFileError(f"Upload response without file uri: {file_info}")

        logger.info(f"[GeminiFiles] Uploaded {name} ({len(data)} bytes, {mime})")
        return VendorFile(uri=uri, name=name)

    async def analyze(
        self,
        file: VendorFile,
        mime_type: str,
        prompt: str,
        temperature: float = 0.2,
        max_output_tokens: int = 2048,
        model: Optional[str] = None,
    ) -> Optional[str]:
        """Run ``prompt`` against an uploaded file. Returns the text or None."""
        body: Dict[str, Any] = {
            "contents": [{
                "parts": [
                    {"file_data": {"mime_type": _plain_mime(mime_type), "file_uri": file.uri}},
                    {"text": prompt},
                ]
            }],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_output_tokens,
            },
        }
        try:
            response = await self._client().post(
                f"{self.base_url}/v1beta/models/{model or self.model}:generateContent",
                params={"key": self.api_key},
                json=body,
            )
        except httpx.HTTPError as e:
            raise VendorFileError(f"Analysis transport error: {e}") from e

        if response.status_code != 200:
            raise VendorFileError(f"Analysis failed: {response.status_code} - {response.text}")

        candidates = response.json().get("candidates") or []
        if not candidates:
            return None
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts).strip()
        if text:
            logger.info(f"[GeminiFiles] Analysis complete ({len(text)} chars)")
        return text or None

    async def delete(self, name: str) -> bool:
        """Delete an uploaded file. A 404 (already expired) counts as success."""
        response = await self._client().delete(
            f"{self.base_url}/v1beta/{name}",
            params={"key": self.api_key},
        )
        if response.status_code == 404:
            logger.debug(f"[GeminiFiles] {name} already deleted/expired")
            return True
        if response.status_code >= 400:
            logger.warning(f"[GeminiFiles] Delete {name} failed: {response.status_code}")
            return False
        return True

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
