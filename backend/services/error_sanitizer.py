import re
from typing import Optional


_SUSPICIOUS_ERROR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"traceback", re.IGNORECASE),
    re.compile(r"\bfile\s+\".*?\.py\"", re.IGNORECASE),
    re.compile(r"/home/|/users/|/workspace/|[a-z]:\\", re.IGNORECASE),
)

# Google API keys and key query params that SDK errors sometimes echo back.
_SECRET_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"AIza[0-9A-Za-z_\-]{35}"),
    re.compile(r"([?&]key=)[^&\s]+", re.IGNORECASE),
)


def sanitize_public_error_message(
    message: Optional[str],
    *,
    fallback: str = "Generation failed",
    max_chars: int = 240,
) -> str:
    """
    Sanitize a generation error before returning it to clients.

    Treat `message` as untrusted: it is usually `str(exception)` from the
    Gemini SDK and may contain stack traces, file paths or API keys.
    """
    if not message:
        return fallback

    safe = message.encode("utf-8", errors="replace").decode("utf-8", errors="replace")
    safe = re.sub(r"\s+", " ", safe).strip()
    if not safe:
        return fallback

    if any(p.search(safe) for p in _SUSPICIOUS_ERROR_PATTERNS):
        return fallback

    safe = _SECRET_PATTERNS[0].sub("[redacted]", safe)
    safe = _SECRET_PATTERNS[1].sub(r"\1[redacted]", safe)

    if len(safe) > max_chars:
        return f"{safe[:max_chars]}…"
    return safe
