"""
Orchestrator Module

Resilience layer between the upstream services and the callers.

Components:
    - CredentialPool: Round-robin credentials with quarantine and cooldown
    - CacheManager: File-per-key cache with TTL and category fallback
    - HotPostFetcher: Live fetch of hot posts through the credential pool
    - HotPostSource: Cache -> fetch -> fallback pipeline plus analysis/generation
    - RequestOrchestrator: Multi-backend retry and failover under a shared deadline
    - MaintenanceScheduler: APScheduler-based cache sweep and credential revalidation
"""

__all__ = [
    "CredentialPool",
    "CacheManager",
    "HotPostFetcher",
    "HotPostSource",
    "RequestOrchestrator",
    "MaintenanceScheduler",
]

# Lazy imports to avoid circular dependencies
def __getattr__(name):
    if name == "CredentialPool":
        from .credential_pool import CredentialPool
        return CredentialPool
    elif name == "CacheManager":
        from .cache_manager import CacheManager
        return CacheManager
    elif name == "HotPostFetcher":
        from .hot_posts import HotPostFetcher
        return HotPostFetcher
    elif name == "HotPostSource":
        from .hot_posts import HotPostSource
        return HotPostSource
    elif name == "RequestOrchestrator":
        from .request_orchestrator import RequestOrchestrator
        return RequestOrchestrator
    elif name == "MaintenanceScheduler":
        from .scheduler import MaintenanceScheduler
        return MaintenanceScheduler
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
