"""
Request orchestration core.

Provides:
- TokenBucketLimiter: Per-service admission control
- CacheStore: TTL caches (memory, disk, redis)
- WorkerPool / Optimizer: Bounded per-service execution
- Monitor: Request, widget and process metrics
- ServiceManager: Rate limit -> pool -> fallback orchestration
"""

from feedboard.services.errors import (
    ServiceError,
    ServiceNotFoundError,
    RejectedError,
    RateLimitError,
    QueueFullError,
    ContextCancelledError,
    UpstreamError,
    AllServicesFailedError,
    CacheError,
)
from feedboard.services.types import APIRequest, APIResponse
from feedboard.services.ratelimit import TokenBucketLimiter
from feedboard.services.cache import (
    CacheStore,
    CacheResult,
    MemoryCache,
    DiskCache,
    RedisCache,
    create_cache,
)
from feedboard.services.pool import Job, WorkerPool
from feedboard.services.optimizer import Optimizer
from feedboard.services.monitor import Monitor, MetricsSnapshot
from feedboard.services.client import APIClient, HTTPClient
from feedboard.services.manager import ServiceManager

__all__ = [
    # Errors
    "ServiceError",
    "ServiceNotFoundError",
    "RejectedError",
    "RateLimitError",
    "QueueFullError",
    "ContextCancelledError",
    "UpstreamError",
    "AllServicesFailedError",
    "CacheError",
    # Types
    "APIRequest",
    "APIResponse",
    # Rate limiting
    "TokenBucketLimiter",
    # Cache
    "CacheStore",
    "CacheResult",
    "MemoryCache",
    "DiskCache",
    "RedisCache",
    "create_cache",
    # Execution
    "Job",
    "WorkerPool",
    "Optimizer",
    # Metrics
    "Monitor",
    "MetricsSnapshot",
    # Clients
    "APIClient",
    "HTTPClient",
    # Orchestration
    "ServiceManager",
]
