"""MIME tables and media-type inference for the vendor file store."""

from typing import Dict, List, Optional
from urllib.parse import unquote, urlparse

from ..constants import MSG_AUDIO, MSG_DOCUMENT, MSG_IMAGE, MSG_VIDEO

SUPPORTED_MIME_TYPES: Dict[str, List[str]] = {
    MSG_IMAGE: [
        "image/png", "image/jpeg", "image/webp", "image/heic", "image/heif", "image/gif",
    ],
    MSG_VIDEO: [
        "video/mp4", "video/mpeg", "video/mov", "video/avi", "video/x-flv", "video/mpg",
        "video/webm", "video/wmv", "video/3gpp", "video/quicktime", "video/x-msvideo",
        "video/x-matroska",
    ],
    MSG_AUDIO: [
        "audio/wav", "audio/mp3", "audio/mpeg", "audio/aiff", "audio/aac", "audio/ogg",
        "audio/flac", "audio/webm", "audio/mp4",
    ],
    MSG_DOCUMENT: [
        "application/pdf", "text/plain", "text/html", "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "text/csv", "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "text/rtf", "application/rtf", "text/javascript", "text/x-python", "text/xml",
        "application/xml", "application/json", "text/markdown",
    ],
}

EXTENSION_MIME: Dict[str, str] = {
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "txt": "text/plain",
    "csv": "text/csv",
    "html": "text/html",
    "htm": "text/html",
    "md": "text/markdown",
    "rtf": "text/rtf",
    "json": "application/json",
    "xml": "text/xml",
    "js": "text/javascript",
    "py": "text/x-python",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "heic": "image/heic",
    "heif": "image/heif",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "wmv": "video/wmv",
    "3gp": "video/3gpp",
    "mp3": "audio/mp3",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "oga": "audio/ogg",
    "opus": "audio/ogg",
    "aac": "audio/aac",
    "flac": "audio/flac",
    "m4a": "audio/mp4",
}

# Used when neither the file name nor the URL reveals the type
DEFAULT_MIME: Dict[str, str] = {
    MSG_IMAGE: "image/jpeg",
    MSG_VIDEO: "video/mp4",
    MSG_AUDIO: "audio/ogg",
    MSG_DOCUMENT: "application/pdf",
}


def normalize_mime(mime_type: Optional[str]) -> str:
    """Drop parameters (``audio/ogg; codecs=opus`` -> ``audio/ogg``)."""
    if not mime_type:
        return ""
    return mime_type.split(";")[0].strip().lower()


def infer_media_type(mime_type: Optional[str]) -> Optional[str]:
    """Map a MIME type onto image/video/audio/document, or None if unsupported."""
    mime = normalize_mime(mime_type)
    if not mime:
        return None
    for media_type in (MSG_IMAGE, MSG_VIDEO, MSG_AUDIO):
        if mime in SUPPORTED_MIME_TYPES[media_type] or mime.startswith(f"{media_type}/"):
            return media_type
    if mime in SUPPORTED_MIME_TYPES[MSG_DOCUMENT]:
        return MSG_DOCUMENT
    return None


def infer_mime_from_filename(name: Optional[str]) -> Optional[str]:
    """Guess a MIME type from a file name or URL (query string ignored)."""
    if not name:
        return None
    path = urlparse(name).path if "://" in name else name
    path = unquote(path)
    base = path.rsplit("/", 1)[-1]
    if "." not in base:
        return None
    ext = base.rsplit(".", 1)[-1].lower()
    return EXTENSION_MIME.get(ext)


def resolve_mime(media_type: str, *names: Optional[str]) -> str:
    """First MIME inferable from ``names``, else the default for ``media_type``."""
    for name in names:
        mime = infer_mime_from_filename(name)
        if mime:
            return mime
    return DEFAULT_MIME.get(media_type, "application/octet-stream")
