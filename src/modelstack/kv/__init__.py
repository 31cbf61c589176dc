"""
In-process key/value store with TTL expiration.
"""

from .locks import AsyncRWLock, RWLock
from .store import Bucket, BucketStats, ExpirationQueue, KVDatabase

__all__ = [
    "AsyncRWLock",
    "Bucket",
    "BucketStats",
    "ExpirationQueue",
    "KVDatabase",
    "RWLock",
]
