"""GitHub REST API client."""

from .errors import RateLimitSnapshot, classify_response
from .github_client import GitHubClient, decode_content, encode_content

__all__ = [
    "GitHubClient",
    "RateLimitSnapshot",
    "classify_response",
    "decode_content",
    "encode_content",
]
