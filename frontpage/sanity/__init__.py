"""
Content API access.

This package handles HTTP queries and listen streams against the
document content API.
"""

from .client import ListenSubscription, SanityClient, SSEDecoder, parse_sse_lines

__all__ = [
    "SanityClient",
    "ListenSubscription",
    "SSEDecoder",
    "parse_sse_lines",
]
