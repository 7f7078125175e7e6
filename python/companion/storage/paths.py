"""Storage path building utilities.

Path Invariant:
    chats/{chat_id}/{object_id}.{ext}

Rules:
    - No leading slash
    - No user identifiers in paths
"""

from uuid import UUID, uuid4

# Recorder output formats -> file extension
AUDIO_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/mp4": "m4a",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
}


def normalize_mime(mime_type: str) -> str:
    """Strip parameters, e.g. 'audio/webm;codecs=opus' -> 'audio/webm'."""
    return mime_type.split(";", 1)[0].strip().lower()


def get_audio_extension(mime_type: str) -> str:
    """Get file extension for an audio MIME type.

    Unknown audio subtypes fall back to the subtype itself.

    Raises:
        ValueError: If the MIME type is not audio/*.
    """
    base = normalize_mime(mime_type)
    if not base.startswith("audio/") or base == "audio/":
        raise ValueError(f"Not an audio MIME type: {mime_type}")
    return AUDIO_EXTENSIONS.get(base, base.split("/", 1)[1].replace("x-", ""))


def build_audio_path(chat_id: UUID, mime_type: str, object_id: UUID | None = None) -> str:
    """Build the storage path for a recorded audio message."""
    ext = get_audio_extension(mime_type)
    return f"chats/{chat_id}/{object_id or uuid4()}.{ext}"
