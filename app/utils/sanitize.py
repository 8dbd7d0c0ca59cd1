import re

_SCRIPT_RE = re.compile(r"<\s*(script|style)\b[^>]*>.*?<\s*/\s*\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<\s*/?\s*[a-zA-Z][^>]*>")
_JS_URL_RE = re.compile(r"javascript\s*:", re.IGNORECASE)


def sanitize_text(text: str | None) -> str:
    """Strip script blocks, HTML tags and javascript: URLs from free text."""
    if not text:
        return ""
    cleaned = _SCRIPT_RE.sub("", text)
    cleaned = _TAG_RE.sub("", cleaned)
    cleaned = _JS_URL_RE.sub("", cleaned)
    return cleaned.strip()
