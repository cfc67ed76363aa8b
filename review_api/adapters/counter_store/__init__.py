"""Counter store adapter layer - abstracts over shared and local backends."""

from review_api.adapters.counter_store.base import AbstractCounterStore
from review_api.adapters.counter_store.factory import create_counter_store
from review_api.adapters.counter_store.in_memory import InMemoryCounterStore
from review_api.adapters.counter_store.redis_store import RedisCounterStore

__all__ = [
    "AbstractCounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "create_counter_store",
]
