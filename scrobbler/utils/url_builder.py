"""
URL building for API requests.
Query strings come from ordered key/value lists produced by each request type.
"""
from typing import Optional, Sequence
from urllib.parse import urlencode, urlparse

QueryParams = Sequence[tuple[str, str]]


class URLValidationError(ValueError):
    pass


def validate_base_url(url: str) -> str:
    """
    Validate a service base URL.
    Returns the URL without trailing slashes or raises URLValidationError.
    """
    if not isinstance(url, str):
        raise URLValidationError("URL must be a string")

    url = url.strip()
    parsed = _safe_parse(url)
    if parsed is None:
        raise URLValidationError("Malformed URL")

    if parsed.scheme not in ("http", "https"):
        raise URLValidationError("Only http/https URLs are accepted")

    if parsed.query or parsed.fragment:
        raise URLValidationError("Base URL must not carry a query or fragment")

    return url.rstrip("/")


def build_url(
    base_url: str,
    endpoint: str,
    query: Optional[QueryParams] = None,
    *,
    version: Optional[str] = None,
) -> str:
    """Join base URL, optional API version and endpoint; append the query if any."""
    parts = [base_url.rstrip("/")]
    if version:
        parts.append(version)
    parts.append(endpoint.lstrip("/"))
    url = "/".join(parts)
    if query:
        url = f"{url}?{urlencode(list(query))}"
    return url


def _safe_parse(url: str):
    try:
        parsed = urlparse(url)
        if not parsed.netloc:
            return None
        return parsed
    except ValueError:
        return None
