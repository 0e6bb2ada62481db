"""
ChatPilot Media Analyzer - cached analysis of remote media via the vendor file store

Flow for one asset:
    cache check -> download -> upload -> analysis call
    -> background delete of the uploaded file -> cache write

A cache hit returns immediately and never touches the vendor.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from ..background import BackgroundTasks
from ..constants import (
    MAX_FILE_API_BYTES,
    MEDIA_CACHE_TTL_DAYS,
    MSG_AUDIO,
    MSG_DOCUMENT,
    MSG_IMAGE,
    MSG_VIDEO,
    PREFIX_AUDIO,
    PREFIX_DOCUMENT,
    PREFIX_IMAGE,
    PREFIX_VIDEO,
)
from ..errors import MediaFetchError, VendorFileError
from ..llm.gemini_files import GeminiFileClient
from .cache import MediaCache, analysis_text, make_cache_key
from .fetch import fetch_media
from .mime import infer_media_type, resolve_mime

logger = logging.getLogger(__name__)

TRANSCRIPTION_PROMPT = (
    "Transcreva este áudio em português brasileiro. Retorne APENAS o texto "
    "transcrito, sem formatação ou comentários adicionais."
)
IMAGE_PROMPT = (
    "Descreva esta imagem de forma detalhada e objetiva para contexto de "
    "atendimento ao cliente."
)
VIDEO_PROMPT = (
    "Descreva este vídeo de forma detalhada. Inclua ações, objetos, pessoas, "
    "áudio e contexto geral."
)

DEFAULT_PROMPTS = {
    MSG_AUDIO: TRANSCRIPTION_PROMPT,
    MSG_IMAGE: (
        "Descreva esta imagem de forma detalhada e objetiva. Inclua: objetos, "
        "pessoas, texto visível, cores e contexto geral."
    ),
    MSG_VIDEO: (
        "Descreva este vídeo de forma detalhada. Inclua: ações, objetos, pessoas, "
        "áudio/narração se houver, e contexto geral."
    ),
    MSG_DOCUMENT: (
        "Extraia as informações principais deste documento. Inclua: tipo do "
        "documento, dados importantes, números, datas e resumo do conteúdo."
    ),
}

TRANSCRIPTION_TEMPERATURE = 0.1
ANALYSIS_TEMPERATURE = 0.2


def document_prompt(file_name: Optional[str]) -> str:
    return (
        f'Extraia as informações principais deste documento "{file_name or "documento"}". '
        "Inclua: tipo, dados importantes, números, datas e resumo."
    )


@dataclass
class AnalysisResult:
    text: Optional[str]
    from_cache: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return bool(self.text)


class MediaAnalyzer:
    """
    Analyze (transcribe/describe/summarize) remote media with caching.

    Failures are reported in ``AnalysisResult.error``; callers decide how to
    degrade. Only the cache is tenant-scoped: without a ``company_id`` the
    analysis still runs, uncached.
    """

    def __init__(
        self,
        files: GeminiFileClient,
        cache: Optional[MediaCache] = None,
        background: Optional[BackgroundTasks] = None,
        max_bytes: int = MAX_FILE_API_BYTES,
        cache_ttl_days: int = MEDIA_CACHE_TTL_DAYS,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.files = files
        self.cache = cache
        self.background = background or BackgroundTasks()
        self.max_bytes = max_bytes
        self.cache_ttl_days = cache_ttl_days
        self._http = http_client

    async def analyze(
        self,
        media_url: str,
        mime_type: str,
        prompt: Optional[str] = None,
        company_id: Optional[str] = None,
        cache_prefix: Optional[str] = None,
        temperature: float = ANALYSIS_TEMPERATURE,
    ) -> AnalysisResult:
        cache_key = make_cache_key(media_url, cache_prefix)
        use_cache = self.cache is not None and bool(company_id)

        if use_cache:
            cached = analysis_text(await self.cache.get(company_id, cache_key))
            if cached:
                return AnalysisResult(text=cached, from_cache=True)
            logger.info("[MediaAnalyzer] Cache MISS, using file API")

        media_type = infer_media_type(mime_type)
        if media_type is None:
            logger.error(f"[MediaAnalyzer] Unsupported MIME type: {mime_type}")
            return AnalysisResult(text=None, error=f"Unsupported MIME type: {mime_type}")

        start = time.monotonic()
        try:
            fetched = await fetch_media(media_url, self.max_bytes, http_client=self._http)
            uploaded = await self.files.upload(
                fetched.data, mime_type, display_name=f"media-{int(time.time() * 1000)}"
            )
        except (MediaFetchError, VendorFileError) as e:
            logger.error(f"[MediaAnalyzer] Upload of {media_url[:60]} failed: {e}")
            return AnalysisResult(text=None, error=str(e))

        try:
            text = await self.files.analyze(
                uploaded,
                mime_type,
                prompt or DEFAULT_PROMPTS[media_type],
                temperature=temperature,
            )
        except VendorFileError as e:
            logger.error(f"[MediaAnalyzer] Analysis failed: {e}")
            text = None
        finally:
            self.background.spawn(self.files.delete(uploaded.name), label="vendor-file-delete")

        if not text:
            return AnalysisResult(text=None, error="Empty analysis")

        logger.info(
            f"[MediaAnalyzer] {media_type} analyzed in {int((time.monotonic() - start) * 1000)}ms"
        )
        if use_cache:
            await self.cache.put(
                company_id, cache_key, media_type, {"analysis": text}, self.cache_ttl_days
            )
        return AnalysisResult(text=text)

    # -- Convenience wrappers --

    async def transcribe_audio(
        self, audio_url: str, company_id: Optional[str] = None, file_name: Optional[str] = None,
    ) -> Optional[str]:
        result = await self.analyze(
            audio_url,
            resolve_mime(MSG_AUDIO, file_name, audio_url),
            TRANSCRIPTION_PROMPT,
            company_id=company_id,
            cache_prefix=PREFIX_AUDIO,
            temperature=TRANSCRIPTION_TEMPERATURE,
        )
        return result.text

    async def describe_image(
        self, image_url: str, company_id: Optional[str] = None, prompt: Optional[str] = None,
    ) -> Optional[str]:
        result = await self.analyze(
            image_url,
            resolve_mime(MSG_IMAGE, image_url),
            prompt or IMAGE_PROMPT,
            company_id=company_id,
            cache_prefix=PREFIX_IMAGE,
        )
        return result.text

    async def describe_video(
        self, video_url: str, company_id: Optional[str] = None, prompt: Optional[str] = None,
    ) -> Optional[str]:
        result = await self.analyze(
            video_url,
            resolve_mime(MSG_VIDEO, video_url),
            prompt or VIDEO_PROMPT,
            company_id=company_id,
            cache_prefix=PREFIX_VIDEO,
        )
        return result.text

    async def summarize_document(
        self,
        document_url: str,
        company_id: Optional[str] = None,
        file_name: Optional[str] = None,
        prompt: Optional[str] = None,
    ) -> Optional[str]:
        result = await self.analyze(
            document_url,
            resolve_mime(MSG_DOCUMENT, file_name, document_url),
            prompt or document_prompt(file_name),
            company_id=company_id,
            cache_prefix=PREFIX_DOCUMENT,
        )
        return result.text
