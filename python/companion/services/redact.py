"""Redaction, hashing, and log guard utilities.

- hash_text: stable SHA-256 hex digest for log correlation
- safe_kv: log guard that blocks forbidden keys at call site

Never-log policy:
- Profile API keys (plaintext)
- Bearer tokens
- Message content (text or audio URLs)
- Raw webhook bodies

Allowed (with suffix):
- _chars, _length: length of text
- _sha256, _hash: hash of text
- _prefix: leading characters of an API key
"""

import hashlib
import os

import structlog

FORBIDDEN_KEYS = frozenset(
    {
        "content",
        "message",
        "api_key",
        "bearer",
        "token",
        "secret",
        "password",
        "audio_data",
        "raw_body",
    }
)

REDACTED_SUFFIXES = ("_sha256", "_hash", "_length", "_chars", "_prefix")


def hash_text(value: str) -> str:
    """SHA-256 hex digest of a string.

    Stable: same input always produces same output. Used both for log
    correlation and as the stored form of profile API keys.
    """
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _has_redacted_suffix(key: str) -> bool:
    return any(key.endswith(suffix) for suffix in REDACTED_SUFFIXES)


def safe_kv(*, _env: str | None = None, **kwargs) -> dict:
    """Validate that no forbidden keys are present unless already redacted.

    Raises ValueError in local/test environments if a forbidden key is used
    without a redacted suffix. In staging/prod, logs a warning instead.

    Usage:
        logger.info("relay.started", **safe_kv(
            chat_id=str(chat_id),
            message_chars=42,        # OK: _chars suffix
            # content="hello",       # BLOCKED: forbidden key
        ))

    Args:
        _env: Override for COMPANION_ENV (test-only). If None, reads from env.
        **kwargs: Keyword arguments to validate and return.

    Returns:
        The same kwargs dict, after validation.
    """
    violations = [
        key for key in kwargs if key in FORBIDDEN_KEYS and not _has_redacted_suffix(key)
    ]

    if violations:
        msg = f"Forbidden log keys without redacted suffix: {violations}"
        env = _env or os.environ.get("COMPANION_ENV", "local")
        if env in ("local", "test"):
            raise ValueError(msg)
        structlog.get_logger("companion.services.redact").warning(
            "safe_kv_violation", forbidden_keys=violations
        )

    return kwargs
