from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

UTM_KEYS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")


def apply_utm_params(url: str, utm_params: Optional[dict]) -> str:
    """Set the given UTM parameters on the URL's query string.

    Existing parameters are kept, UTM keys already present are overwritten and
    empty values are skipped.

    Args:
        url (str): The destination URL.
        utm_params (Optional[dict]): Mapping of UTM key to value.

    Returns:
        str: The URL carrying the UTM parameters.
    """
    if not utm_params:
        return url

    updates = {key: utm_params[key] for key in UTM_KEYS if utm_params.get(key)}
    if not updates:
        return url

    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update(updates)
    return urlunsplit(parts._replace(query=urlencode(query)))


def client_ip(forwarded_for: Optional[str], peer_host: Optional[str]) -> str:
    """Pick the originating client address for click tracking."""
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return peer_host or "unknown"
