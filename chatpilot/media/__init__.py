"""Media download, analysis caching and storage signing."""

from .analyzer import AnalysisResult, MediaAnalyzer
from .cache import MediaCache, analysis_text, hash_cache_key, make_cache_key
from .fetch import FetchedMedia, fetch_media
from .mime import infer_media_type, infer_mime_from_filename, resolve_mime
from .storage import StorageSigner

__all__ = [
    "AnalysisResult",
    "MediaAnalyzer",
    "MediaCache",
    "analysis_text",
    "hash_cache_key",
    "make_cache_key",
    "FetchedMedia",
    "fetch_media",
    "infer_media_type",
    "infer_mime_from_filename",
    "resolve_mime",
    "StorageSigner",
]
