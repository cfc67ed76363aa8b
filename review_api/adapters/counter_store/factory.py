"""Factory pattern for creating counter store instances."""

from review_api.adapters.counter_store.base import AbstractCounterStore
from review_api.adapters.counter_store.in_memory import InMemoryCounterStore
from review_api.adapters.counter_store.redis_store import RedisCounterStore
from review_api.core.config import CounterStoreSettings, settings
from review_api.core.errors import ConfigurationAppError


def create_counter_store(store_settings: CounterStoreSettings | None = None) -> AbstractCounterStore:
    """Instantiate the counter store selected by configuration.

    Args:
        store_settings: ``COUNTER_STORE_*`` settings; defaults to global settings.

    Returns:
        AbstractCounterStore: Configured store instance.

    Raises:
        ConfigurationAppError: If the backend is unknown or misconfigured.
    """
    cfg = store_settings or settings.counter_store
    backend = cfg.backend.lower()

    if backend == "redis":
        if not cfg.redis_url:
            raise ConfigurationAppError(
                code="counter_store_missing_url",
                message="Redis counter store requires COUNTER_STORE_REDIS_URL",
                details={"backend": backend},
            )
        return RedisCounterStore.from_url(cfg.redis_url, timeout_seconds=cfg.timeout_seconds)

    if backend == "memory":
        return InMemoryCounterStore()

    raise ConfigurationAppError(
        code="counter_store_unknown_backend",
        message=f"Unknown counter store backend: '{backend}'. Supported backends: redis, memory",
        details={"backend": backend},
    )
