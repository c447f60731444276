"""
Event Bus - Deliver domain events to the graph builder off the write path.

Writers publish an event after committing their own record and return at
once. A single background worker drains a bounded queue and dispatches each
event to its subscribers. Delivery is at-least-once: a handler that raises is
retried with exponential backoff, and an event that still fails after
`event_max_retries` redeliveries is parked in `dead_letters` and logged.

Handlers must therefore be idempotent. The graph builder's are: encounter
edges accumulate per delivery by design, while intro and goal_link edges are
created exactly once.
"""
import logging
import queue
import threading
import time
from collections import defaultdict
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel, Field, field_validator

from config.settings import settings
from rhizome.services.graph_builder import GraphBuilder
from rhizome.services.resilience import RetryConfig
from rhizome.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class DomainEvent(BaseModel):
    tenant_id: str = Field(..., min_length=1)
    owner_id: str = Field(..., min_length=1)
    emitted_at: datetime = Field(default_factory=utc_now)


class EncounterRecorded(DomainEvent):
    encounter_id: str = Field(..., min_length=1)


class SuggestionAccepted(DomainEvent):
    suggestion_id: str = Field(..., min_length=1)


class GoalReferencesPeople(DomainEvent):
    goal_id: str = Field(..., min_length=1)
    person_ids: list[str] = Field(default_factory=list)

    @field_validator("person_ids")
    @classmethod
    def drop_blank_ids(cls, v: list[str]) -> list[str]:
        return [pid for pid in v if pid and pid.strip()]


Handler = Callable[[DomainEvent], object]


class DeadLetter(BaseModel):
    event: DomainEvent
    handler: str
    error: str
    attempts: int
    failed_at: datetime = Field(default_factory=utc_now)


class EventBus:
    """
    Bounded in-process queue with one worker thread.

    publish() never raises into the caller. When the queue is full the event
    is dropped and logged; a later signals or overlap sweep reconciles state.
    """

    def __init__(
        self,
        max_size: Optional[int] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self._queue: queue.Queue = queue.Queue(maxsize=max_size or settings.event_queue_size)
        self._handlers: dict[type, list[Handler]] = defaultdict(list)
        self.retry_config = retry_config or RetryConfig(
            max_retries=settings.event_max_retries,
            base_delay=settings.event_retry_base_delay,
            retryable_exceptions=(Exception,),
        )
        self.dead_letters: list[DeadLetter] = []
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def for_builder(cls, builder: GraphBuilder, **kwargs) -> "EventBus":
        """Bus with the graph builder subscribed to all three domain events."""
        bus = cls(**kwargs)
        bus.subscribe(EncounterRecorded, lambda e: builder.on_encounter_recorded(
            e.encounter_id, e.tenant_id, e.owner_id))
        bus.subscribe(SuggestionAccepted, lambda e: builder.on_suggestion_accepted(
            e.suggestion_id, e.tenant_id, e.owner_id))
        bus.subscribe(GoalReferencesPeople, lambda e: builder.on_goal_references_people(
            e.goal_id, e.person_ids, e.tenant_id, e.owner_id))
        return bus

    def subscribe(self, event_type: type, handler: Handler):
        self._handlers[event_type].append(handler)

    def publish(self, event: DomainEvent) -> bool:
        """
        Enqueue an event for asynchronous delivery.

        Returns:
            True if queued, False if dropped
        """
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            logger.error(f"Event queue full; dropped {type(event).__name__} for workspace {event.tenant_id}")
            return False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="GraphEventWorker",
        )
        self._thread.start()
        logger.info("Graph event worker started")

    def stop(self, timeout: float = 5.0):
        """Stop the worker after the event in flight. Queued events stay queued."""
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("Graph event worker stopped")

    def _run(self):
        while not self._stop_event.is_set():
            try:
                event = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            try:
                self.dispatch(event)
            finally:
                self._queue.task_done()

    def join(self):
        """Block until every queued event has been handled."""
        self._queue.join()

    def drain(self) -> int:
        """
        Handle every queued event on the calling thread.

        Used by batch scripts and tests that do not run the worker.

        Returns:
            Number of events handled
        """
        handled = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return handled
            try:
                self.dispatch(event)
                handled += 1
            finally:
                self._queue.task_done()

    def dispatch(self, event: DomainEvent):
        """Deliver one event to each subscriber, retrying each independently."""
        handlers = self._handlers.get(type(event), [])
        if not handlers:
            logger.debug(f"No subscribers for {type(event).__name__}")
            return
        for handler in handlers:
            self._deliver(event, handler)

    def _deliver(self, event: DomainEvent, handler: Handler):
        cfg = self.retry_config
        name = getattr(handler, "__name__", repr(handler))
        for attempt in range(cfg.max_retries + 1):
            try:
                handler(event)
                return
            except cfg.retryable_exceptions as e:
                if attempt < cfg.max_retries:
                    delay = cfg.delay_for(attempt)
                    logger.warning(
                        f"Redelivery {attempt + 1}/{cfg.max_retries} of {type(event).__name__} "
                        f"to {name}: {e}. Waiting {delay:.1f}s..."
                    )
                    time.sleep(delay)
                    continue
                self._dead_letter(event, name, e, attempt + 1)
            except Exception as e:
                self._dead_letter(event, name, e, attempt + 1)
                return

    def _dead_letter(self, event: DomainEvent, handler_name: str, error: Exception, attempts: int):
        logger.error(f"Dead-lettering {type(event).__name__} after {attempts} attempt(s): {error}")
        self.dead_letters.append(DeadLetter(
            event=event,
            handler=handler_name,
            error=str(error),
            attempts=attempts,
        ))
