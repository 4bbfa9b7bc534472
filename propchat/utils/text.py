import re


_TAG_RE = re.compile(r"<[^>]*>")


def sanitize_text(value: str | None, max_length: int) -> str:
    """Strip markup, trim and cap a message body. Returns "" for blank input."""
    if not value:
        return ""
    return _TAG_RE.sub("", value).strip()[:max_length]


def make_preview(body: str, length: int) -> str:
    return body[:length]
