"""
kvstress - Concurrent load generator for Redis-protocol key-value caches.

Resolves a run's bounds into an execution mode, drives N async workers of
read/write/delete operations, classifies each outcome and reports latency
percentiles, throughput and before/after server metric deltas.
"""

from .exceptions import (
    ClientConnectionError,
    ConfigurationError,
    KvStressError,
    MetricsCollectionError,
    OperationError,
    OperationTimeout,
    SecretResolutionError,
)

__all__ = [
    "__version__",
    "ClientConnectionError",
    "ConfigurationError",
    "KvStressError",
    "MetricsCollectionError",
    "OperationError",
    "OperationTimeout",
    "SecretResolutionError",
]

__version__ = "1.0.0"
