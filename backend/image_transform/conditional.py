"""
Conditional Request Evaluation

Decides whether a request can be answered with 304 Not Modified, and
formats HTTP dates for Last-Modified headers.
"""

import time
from email.utils import formatdate
from typing import Optional


def http_date(timestamp: Optional[float] = None) -> str:
    """Format a unix timestamp (default: now) as an RFC 7231 HTTP date."""
    return formatdate(time.time() if timestamp is None else timestamp, usegmt=True)


def is_not_modified(client_etag: Optional[str], computed_etag: str) -> bool:
    """
    True iff the client's If-None-Match equals the computed entity tag.

    Exact string comparison only: no weak tags, no lists, no "*".
    """
    if client_etag is None:
        return False
    return client_etag == computed_etag


def not_modified_last_modified(if_modified_since: Optional[str]) -> str:
    """
    Last-Modified value for a 304 response.

    The client's If-Modified-Since is echoed back when present; the origin
    is not consulted again.
    """
    return if_modified_since or http_date()
