"""
xhs-writer - Main Package

Hot-post acquisition and post generation for a rate-limited,
cookie-authenticated content search API and unreliable chat backends.

Modules:
    clients: HTTP clients for the search API and the chat-completion API
    parsers: Model-response validation and streamed-output filtering
    orchestrator: Credential pool, cache, fetch pipeline, failover and scheduling
    normalizer: Pydantic models and search-item normalization
    utils: Logging and the exception hierarchy
"""

__version__ = "1.0.0"
__author__ = "xhs-writer team"

__all__ = [
    "__version__",
    "__author__",
]
