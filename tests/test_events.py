"""Tests for domain events and the event bus."""
import pytest
from pydantic import ValidationError

from rhizome.services.events import (
    EncounterRecorded,
    EventBus,
    GoalReferencesPeople,
    SuggestionAccepted,
)
from rhizome.services.graph_builder import GraphBuilder
from rhizome.services.models import Goal, Suggestion
from rhizome.services.resilience import RetryConfig


def _fast_retry(max_retries=2):
    return RetryConfig(max_retries=max_retries, base_delay=0.001, retryable_exceptions=(Exception,))


@pytest.fixture
def bus(store):
    return EventBus.for_builder(GraphBuilder(store), retry_config=_fast_retry())


@pytest.fixture
def people(workspace, make_person):
    return [make_person("ws1", name) for name in ("Ann Lee", "Ben Kim", "Cara Diaz")]


@pytest.mark.unit
class TestEventModels:
    """Tests for event validation."""

    def test_encounter_event_requires_ids(self):
        """Blank ids are rejected at construction."""
        with pytest.raises(ValidationError):
            EncounterRecorded(tenant_id="", owner_id="alice@acme.com", encounter_id="e1")

    def test_goal_event_drops_blank_person_ids(self):
        event = GoalReferencesPeople(
            tenant_id="ws1", owner_id="alice@acme.com", goal_id="g1", person_ids=["p1", "", "  "]
        )
        assert event.person_ids == ["p1"]


@pytest.mark.unit
class TestEventBus:
    """Tests for synchronous dispatch through drain()."""

    def test_encounter_event_builds_edges(self, store, bus, people, make_encounter):
        """A published encounter event creates edges once drained."""
        encounter = make_encounter("ws1", [p.id for p in people])

        assert bus.publish(EncounterRecorded(
            tenant_id="ws1", owner_id="alice@acme.com", encounter_id=encounter.id
        )) is True
        assert store.list_edges("ws1") == []

        assert bus.drain() == 1
        assert len(store.list_edges("ws1")) == 3

    def test_redelivered_suggestion_is_idempotent(self, store, bus, people):
        """Delivering the same acceptance twice leaves one intro edge."""
        suggestion = store.add_suggestion(Suggestion(tenant_id="ws1", a_id=people[0].id, b_id=people[1].id))
        event = SuggestionAccepted(tenant_id="ws1", owner_id="alice@acme.com", suggestion_id=suggestion.id)

        bus.publish(event)
        bus.publish(event)
        bus.drain()

        edges = store.list_edges("ws1", edge_type="intro")
        assert len(edges) == 1
        assert edges[0].strength == 8

    def test_goal_event(self, store, bus, people):
        goal = store.add_goal(Goal(tenant_id="ws1", kind="raise", title="Seed round"))

        bus.publish(GoalReferencesPeople(
            tenant_id="ws1", owner_id="alice@acme.com", goal_id=goal.id, person_ids=[people[0].id]
        ))
        bus.drain()

        assert len(store.list_edges("ws1", edge_type="goal_link")) == 1

    def test_missing_record_does_not_dead_letter(self, bus):
        """Builder handlers absorb missing records, so nothing is dead-lettered."""
        bus.publish(EncounterRecorded(tenant_id="ws1", owner_id="alice@acme.com", encounter_id="missing"))
        bus.drain()
        assert bus.dead_letters == []

    def test_full_queue_drops_without_raising(self):
        """publish() reports a drop instead of raising into the writer."""
        bus = EventBus(max_size=1, retry_config=_fast_retry())
        event = EncounterRecorded(tenant_id="ws1", owner_id="alice@acme.com", encounter_id="e1")

        assert bus.publish(event) is True
        assert bus.publish(event) is False
        assert bus.pending == 1

    def test_failing_handler_retried_then_dead_lettered(self):
        """A handler that keeps failing is retried, then parked."""
        bus = EventBus(retry_config=_fast_retry(max_retries=2))
        attempts = []

        def broken(event):
            attempts.append(event)
            raise RuntimeError("boom")

        bus.subscribe(EncounterRecorded, broken)
        bus.publish(EncounterRecorded(tenant_id="ws1", owner_id="alice@acme.com", encounter_id="e1"))
        bus.drain()

        assert len(attempts) == 3
        assert len(bus.dead_letters) == 1
        assert bus.dead_letters[0].attempts == 3
        assert bus.dead_letters[0].error == "boom"

    def test_transient_failure_recovers(self):
        """A handler that fails once succeeds on redelivery."""
        bus = EventBus(retry_config=_fast_retry())
        attempts = []

        def flaky(event):
            attempts.append(event)
            if len(attempts) == 1:
                raise RuntimeError("transient")

        bus.subscribe(SuggestionAccepted, flaky)
        bus.publish(SuggestionAccepted(tenant_id="ws1", owner_id="alice@acme.com", suggestion_id="s1"))
        bus.drain()

        assert len(attempts) == 2
        assert bus.dead_letters == []


@pytest.mark.slow
class TestEventWorker:
    """Tests for the background worker thread."""

    def test_worker_processes_events(self, store, bus, people, make_encounter):
        encounter = make_encounter("ws1", [people[0].id, people[1].id])

        bus.start()
        try:
            bus.publish(EncounterRecorded(tenant_id="ws1", owner_id="alice@acme.com", encounter_id=encounter.id))
            bus.join()
        finally:
            bus.stop()

        edges = store.list_edges("ws1")
        assert len(edges) == 1
        assert edges[0].strength == 5
