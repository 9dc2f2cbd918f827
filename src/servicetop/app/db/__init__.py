"""Persistent key-value storage backends."""

from .kv_store import CloudflareKVStore

__all__ = ["CloudflareKVStore"]
