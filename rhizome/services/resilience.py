"""
Resilience utilities for the relationship graph engine.

Provides:
- The engine's error taxonomy (not found, validation, storage, cancellation)
- Retry logic for transient storage failures
"""
import functools
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class GraphEngineError(Exception):
    """Base class for all engine errors."""


class NotFoundError(GraphEngineError):
    """A referenced person, encounter, suggestion or goal does not exist in the tenant."""

    def __init__(self, entity: str, entity_id: str, tenant_id: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        self.tenant_id = tenant_id
        where = f" in workspace {tenant_id}" if tenant_id else ""
        super().__init__(f"{entity} {entity_id} not found{where}")


class ValidationError(GraphEngineError):
    """Malformed input, e.g. an event naming a person outside its own encounter."""


class StorageError(GraphEngineError):
    """Transient I/O failure from the storage collaborator."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")


class ReferencedEntityError(GraphEngineError):
    """Deletion rejected because the entity is still referenced by an edge."""

    def __init__(self, entity: str, entity_id: str, reference_count: int):
        self.entity = entity
        self.entity_id = entity_id
        self.reference_count = reference_count
        super().__init__(
            f"{entity} {entity_id} is referenced by {reference_count} edge(s); remove them first"
        )


class SweepCancelledError(GraphEngineError):
    """A batch sweep was cancelled before completion. Nothing was persisted for the unfinished part."""


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    retryable_exceptions: tuple = (StorageError,)

    def delay_for(self, attempt: int) -> float:
        """Backoff delay before retry number `attempt` (0-based)."""
        return min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)


DEFAULT_RETRY_CONFIG = RetryConfig()


def retry_sync(
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
):
    """
    Decorator for sync functions with retry logic.

    Only exceptions listed in `config.retryable_exceptions` are retried;
    anything else propagates on the first failure.

    Args:
        config: Retry configuration
        on_retry: Optional callback on each retry (retry_num, exception)
    """
    cfg = config or DEFAULT_RETRY_CONFIG

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            last_exception = None

            for attempt in range(cfg.max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except cfg.retryable_exceptions as e:
                    last_exception = e

                    if attempt < cfg.max_retries:
                        delay = cfg.delay_for(attempt)
                        logger.warning(
                            f"Retry {attempt + 1}/{cfg.max_retries} for {func.__name__}: {e}. "
                            f"Waiting {delay:.1f}s..."
                        )

                        if on_retry:
                            on_retry(attempt + 1, e)

                        time.sleep(delay)
                    else:
                        logger.error(
                            f"All {cfg.max_retries} retries exhausted for {func.__name__}: {e}"
                        )

            raise last_exception

        return wrapper
    return decorator
