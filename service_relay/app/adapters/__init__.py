"""
Adapters package for the Relay Service.

HTTP client wrappers for the upstream dependencies. Each adapter maps
transport and status failures onto the shared error types.
"""

from .rss_client import RssSourceClient
from .gemini_client import GeminiClient, GenerationBackend, extract_candidate_text

__all__ = [
    "RssSourceClient",
    "GeminiClient",
    "GenerationBackend",
    "extract_candidate_text",
]
