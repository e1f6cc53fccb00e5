"""
HTTP Clients Module

Asynchronous clients for the upstream services.

Components:
    - SearchClient: Paginated, cookie-authenticated note search (also the credential prober)
    - SearchClientConfig: Configuration for the search client
    - ChatClient: OpenAI-compatible chat completions, plain and streamed
    - ChatClientConfig: Configuration for the chat client
"""

from .chat_client import ChatClient, ChatClientConfig
from .search_client import SearchClient, SearchClientConfig

__all__ = [
    "SearchClient",
    "SearchClientConfig",
    "ChatClient",
    "ChatClientConfig",
]
