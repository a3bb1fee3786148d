"""Upstream paginated data API."""

from parking_pipeline.upstream.client import SUCCESS_CODE, UpstreamClient, parse_envelope
from parking_pipeline.upstream.fetcher import PagedFetcher

__all__ = [
    "PagedFetcher",
    "SUCCESS_CODE",
    "UpstreamClient",
    "parse_envelope",
]
