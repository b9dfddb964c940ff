"""
Coastal Dashboard - Collector Module
Resilient fetching from the observations backend and the same-origin proxy.
"""

from .resilient_fetcher import (
    FetchState,
    NetworkExhausted,
    RetryPolicy,
    RetryingRequest,
    TransientNetworkError,
    UpstreamExhausted,
    fetch_json,
    fetch_response,
    proxy_policy,
)
from .backend_client import BackendClient, api, range_path

__all__ = [
    "fetch_json", "fetch_response", "proxy_policy",
    "FetchState", "RetryPolicy", "RetryingRequest",
    "TransientNetworkError", "UpstreamExhausted", "NetworkExhausted",
    "BackendClient", "api", "range_path",
]
